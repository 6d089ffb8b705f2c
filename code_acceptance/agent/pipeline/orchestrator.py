"""Synthesize, execute, critique and refine until a candidate is accepted."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from code_acceptance.agent.pipeline.collaborators import BriefProvider, ContextRetriever, RepoChecks
from code_acceptance.agent.pipeline.config import AUTO_MODEL, PROVIDER_DEFAULT, PipelineConfig
from code_acceptance.agent.pipeline.judge import Judge
from code_acceptance.agent.pipeline.models import (
    CostBreakdown,
    ExecReport,
    FixOperation,
    GenResult,
    JudgeVerdict,
    PipelineResult,
    SourceFile,
)
from code_acceptance.agent.pipeline.prompts import build_refinement_spec
from code_acceptance.agent.pipeline.refiner import (
    Refiner,
    compute_patch_summary,
    merge_candidate_files,
    validate_public_api,
)
from code_acceptance.agent.pipeline.scoring import meets_acceptance_criteria, weighted_score
from code_acceptance.agent.pipeline.synthesizer import Synthesizer
from code_acceptance.agent.providers.base import ModelProvider, ProviderError
from code_acceptance.agent.providers.ollama_provider import OllamaProvider
from code_acceptance.agent.providers.openai_provider import HOSTED_PRESETS, OpenAICompatibleProvider
from code_acceptance.agent.providers.registry import ModelCriteria, ProviderRegistry
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient
from code_acceptance.agent.sandbox.base import SandboxExecutor
from code_acceptance.agent.sandbox.selection import select_sandbox

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    SYNTHESIZING = "synthesizing"
    REFINING = "refining"
    EXECUTING = "executing"
    JUDGING = "judging"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AttemptRecord:
    """Everything produced by one attempt."""

    number: int
    candidate: GenResult
    report: ExecReport
    verdict: JudgeVerdict
    score: float
    api_violations: tuple[str, ...] = ()


class AcceptancePipeline:
    """Runs the bounded attempt loop over the injected stages."""

    def __init__(
        self,
        synthesizer: Synthesizer,
        judge: Judge,
        sandbox: SandboxExecutor,
        refiner: Refiner | None = None,
    ) -> None:
        self.synthesizer = synthesizer
        self.judge = judge
        self.sandbox = sandbox
        self.refiner = refiner

    def run(self, spec: str, config: PipelineConfig) -> PipelineResult:
        """Return the first accepted candidate, or the best one once attempts run out.

        SynthesisError, RefinementError and SandboxError propagate unchanged.
        """
        if not spec.strip():
            raise ValueError("spec must be non-empty.")

        costs = CostBreakdown()
        best: AttemptRecord | None = None
        previous: AttemptRecord | None = None
        files_before_previous: tuple[SourceFile, ...] | None = None

        for number in range(1, config.max_attempts + 1):
            current_spec = spec
            if previous is not None:
                current_spec = build_refinement_spec(spec, previous.verdict, previous.report)

            edit_violations: tuple[str, ...] = ()
            if previous is not None and config.refine_strategy == "fix" and self.refiner:
                self._transition(PipelineState.REFINING, number, config)
                candidate, edit_violations = self._refine(previous, files_before_previous, config)
                costs = costs.add(refine=candidate.cost)
            else:
                self._transition(PipelineState.SYNTHESIZING, number, config)
                candidate = self.synthesizer.generate(
                    current_spec, config, previous.verdict if previous else None
                )
                costs = costs.add(synthesize=candidate.cost)

            self._transition(PipelineState.EXECUTING, number, config)
            report = self.sandbox.execute(candidate, config).with_edit_violations(edit_violations)

            self._transition(PipelineState.JUDGING, number, config)
            verdict = self.judge.evaluate(
                current_spec,
                report,
                compute_patch_summary(
                    previous.candidate.all_files() if previous else None, candidate.all_files()
                ),
                candidate.notes,
                config=config,
                gen_result=candidate,
            )
            costs = costs.add(judge=verdict.cost)

            record = AttemptRecord(
                number=number,
                candidate=candidate,
                report=report,
                verdict=verdict,
                score=weighted_score(verdict.scores, config.weights),
                api_violations=edit_violations,
            )
            logger.info(
                "Attempt %s/%s scored %.3f (verdict=%s).",
                number,
                config.max_attempts,
                record.score,
                verdict.verdict.value,
            )
            if best is None or record.score > best.score:
                best = record

            if meets_acceptance_criteria(verdict, config):
                self._transition(PipelineState.ACCEPTED, number, config)
                return PipelineResult(
                    ok=True,
                    files=candidate.files,
                    tests=candidate.tests,
                    score=record.score,
                    attempts=number,
                    verdict=verdict,
                    exec_report=report,
                    cost_breakdown=costs,
                )

            files_before_previous = previous.candidate.all_files() if previous else None
            previous = record

        assert best is not None
        self._transition(PipelineState.EXHAUSTED, config.max_attempts, config)
        logger.info(
            "No candidate accepted; returning attempt %s with score %.3f.",
            best.number,
            best.score,
        )
        final_report = self.sandbox.execute(best.candidate, config).with_edit_violations(
            best.api_violations
        )
        return PipelineResult(
            ok=False,
            files=best.candidate.files,
            tests=best.candidate.tests,
            score=best.score,
            attempts=config.max_attempts,
            verdict=best.verdict,
            exec_report=final_report,
            cost_breakdown=costs,
        )

    def _refine(
        self,
        previous: AttemptRecord,
        files_before_previous: tuple[SourceFile, ...] | None,
        config: PipelineConfig,
    ) -> tuple[GenResult, tuple[str, ...]]:
        assert self.refiner is not None
        refined = self.refiner.fix(
            previous.verdict,
            previous.candidate.all_files(),
            previous.report,
            files_before_previous,
            config=config,
        )
        plan = previous.verdict.fix_plan
        files = merge_candidate_files(previous.candidate.files, refined.files, plan)
        tests = merge_candidate_files(previous.candidate.tests, refined.tests, plan)
        removed = {item.file for item in plan if item.operation is FixOperation.REMOVE}
        api = validate_public_api(
            (item for item in previous.candidate.files if item.path not in removed), files
        )
        if not api.ok:
            logger.warning(
                "Refined candidate changed the public API: %s", "; ".join(api.violations)
            )
        candidate = GenResult(
            files=files,
            tests=tests,
            conventions_used=previous.candidate.conventions_used,
            notes=refined.notes,
            cost=refined.cost,
        )
        return candidate, api.violations

    def _transition(self, state: PipelineState, attempt: int, config: PipelineConfig) -> None:
        logger.info("Attempt %s/%s: %s", attempt, config.max_attempts, state.value)


def default_registry() -> ProviderRegistry:
    """Registry with the local Ollama backend and every hosted preset."""
    registry = ProviderRegistry()
    registry.register(OllamaProvider())
    for name in sorted(HOSTED_PRESETS):
        registry.register(OpenAICompatibleProvider.for_backend(name))
    return registry


def default_models(provider: str) -> tuple[str, str | None]:
    """Return the primary and fallback model ids a provider uses when none are configured."""
    if provider == OllamaProvider.name:
        return OllamaProvider.default_model, OllamaProvider.fallback_model
    preset = HOSTED_PRESETS[provider]
    return preset.default_model, preset.fallback_model


def resolve_model(config: PipelineConfig, registry: ProviderRegistry) -> tuple[ModelProvider, str]:
    """Return the provider and model id to use, resolving ``model="auto"``."""
    model = config.model or default_models(config.provider)[0]
    if model != AUTO_MODEL:
        return registry.get(config.provider), model
    info = registry.select_model(
        ModelCriteria(task="code", complexity="medium", prefer_local=config.is_local_provider)
    )
    if info is None:
        raise ProviderError("No model available for automatic selection.", provider=config.provider)
    return registry.get(info.provider), info.id


def resolve_fallback_model(config: PipelineConfig, provider: str) -> str | None:
    """Return the fallback model for ``provider``; ``None`` disables the retry."""
    if config.fallback_model != PROVIDER_DEFAULT:
        return config.fallback_model
    if provider != OllamaProvider.name and provider not in HOSTED_PRESETS:
        return None
    return default_models(provider)[1]


def build_pipeline(
    config: PipelineConfig,
    *,
    registry: ProviderRegistry | None = None,
    brief_provider: BriefProvider | None = None,
    retriever: ContextRetriever | None = None,
    repo_checks: RepoChecks | None = None,
    sandbox: SandboxExecutor | None = None,
) -> AcceptancePipeline:
    """Wire providers, stages and the sandbox for one run."""
    registry = registry or default_registry()
    provider, model = resolve_model(config, registry)
    fallback = resolve_fallback_model(config, provider.name)
    client = FallbackModelClient(provider, model, fallback)
    logger.info("Using model %s/%s (fallback %s).", provider.name, model, fallback or "none")
    return AcceptancePipeline(
        synthesizer=Synthesizer(client, brief_provider=brief_provider, retriever=retriever),
        judge=Judge(client, brief_provider=brief_provider),
        sandbox=sandbox or select_sandbox(config, repo_checks=repo_checks),
        refiner=Refiner(client),
    )


def run_pipeline(spec: str, config: PipelineConfig | None = None) -> PipelineResult:
    """Build a pipeline from ``config`` (defaults when omitted) and run it on ``spec``."""
    config = config or PipelineConfig()
    return build_pipeline(config).run(spec, config)
