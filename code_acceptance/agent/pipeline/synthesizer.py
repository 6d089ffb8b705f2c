"""Synthesize stage: produce candidate source files and tests from a task."""

from __future__ import annotations

import logging
from typing import Any

from code_acceptance.agent.pipeline.collaborators import (
    BriefProvider,
    CodeSnippet,
    ContextRetriever,
    NullContextRetriever,
    StaticBriefProvider,
    extract_keywords,
)
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import (
    GenResult,
    JudgeVerdict,
    SourceFile,
    parse_source_files,
)
from code_acceptance.agent.pipeline.prompts import (
    SYNTHESIS_SYSTEM_PROMPT,
    TESTS_SYSTEM_PROMPT,
    build_synthesis_user_prompt,
    build_tests_user_prompt,
)
from code_acceptance.agent.providers.json_output import ModelResponseError
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient, ModelCallError

logger = logging.getLogger(__name__)

SYNTHESIS_MAX_TOKENS = 8192


class SynthesisError(RuntimeError):
    """Raised when no usable candidate could be generated."""

    def __init__(self, message: str, *, cost: float = 0.0) -> None:
        super().__init__(message)
        self.cost = cost


def _parse_tests_only(data: dict[str, Any]) -> tuple[SourceFile, ...]:
    tests = parse_source_files(data.get("tests"), "tests")
    if not tests:
        raise ModelResponseError("Expected 'tests' to contain at least one file.")
    return tests


class Synthesizer:
    """Generates a candidate with the primary model, falling back once."""

    def __init__(
        self,
        client: FallbackModelClient,
        *,
        brief_provider: BriefProvider | None = None,
        retriever: ContextRetriever | None = None,
    ) -> None:
        self.client = client
        self.brief_provider = brief_provider or StaticBriefProvider()
        self.retriever = retriever or NullContextRetriever()

    def generate(
        self,
        spec: str,
        config: PipelineConfig,
        previous_verdict: JudgeVerdict | None = None,
    ) -> GenResult:
        """Return a candidate for ``spec``; ``GenResult.cost`` covers every call made."""
        prompt = build_synthesis_user_prompt(
            spec,
            brief=self.brief_provider.get_brief(),
            snippets=self._retrieve(spec),
            allowed_libraries=config.allowed_libraries,
            previous_verdict=previous_verdict,
        )
        try:
            reply = self.client.generate_json(
                system=SYNTHESIS_SYSTEM_PROMPT,
                prompt=prompt,
                timeout_seconds=config.stage_timeout("synthesize"),
                fallback_timeout_seconds=config.fallback_timeout("synthesize"),
                validate=GenResult.from_dict,
                max_tokens=SYNTHESIS_MAX_TOKENS,
            )
        except ModelCallError as exc:
            raise SynthesisError(f"Code generation failed: {exc}", cost=exc.cost) from exc

        result = reply.value
        cost = reply.cost
        if not result.tests:
            logger.warning("Candidate arrived without tests; requesting tests separately.")
            try:
                tests_reply = self.client.generate_json(
                    system=TESTS_SYSTEM_PROMPT,
                    prompt=build_tests_user_prompt(spec, result.files),
                    timeout_seconds=config.stage_timeout("tests"),
                    fallback_timeout_seconds=config.fallback_timeout("tests"),
                    validate=_parse_tests_only,
                )
            except ModelCallError as exc:
                cost += exc.cost
                logger.warning("Test generation failed; continuing without tests: %s", exc)
            else:
                cost += tests_reply.cost
                result = result.with_tests(tests_reply.value)

        logger.info(
            "Synthesized %s file(s) and %s test file(s) with %s (cost $%.4f).",
            len(result.files),
            len(result.tests),
            reply.model,
            cost,
        )
        return result.with_cost(cost)

    def _retrieve(self, spec: str) -> list[CodeSnippet]:
        keywords = extract_keywords(spec)
        if not keywords:
            return []
        try:
            return list(self.retriever.retrieve(keywords))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Context retrieval failed; continuing without examples: %s", exc)
            return []
