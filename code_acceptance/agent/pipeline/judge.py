"""Critique stage: rubric judgement of one executed candidate."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import assert_never

from code_acceptance.agent.pipeline.collaborators import (
    BriefProvider,
    StaticBriefProvider,
    calculate_convention_score,
)
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import (
    ExecReport,
    Explanations,
    FixOperation,
    FixPlanItem,
    GenResult,
    JudgeVerdict,
    PatchSummary,
    Scores,
    Verdict,
)
from code_acceptance.agent.pipeline.prompts import JUDGE_SYSTEM_PROMPT, build_judge_user_prompt
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient, ModelCallError

logger = logging.getLogger(__name__)

JUDGE_MAX_TOKENS = 2048
_LINT_PENALTY = 0.1
_EDGE_TESTS_MIN_PASSED = 3


def apply_hard_overrides(verdict: JudgeVerdict, report: ExecReport) -> JudgeVerdict:
    """Force scores the execution signals contradict; any override demotes accept to revise."""
    updates: dict[str, float] = {}
    if not report.compiled:
        updates["compilation"] = 0.0
    if report.security.violations:
        updates["security"] = 0.0
    if report.test.failed > 0:
        updates["tests_functional"] = 0.0
    if report.boundary_errors or report.custom_rule_errors:
        updates["style"] = 0.0
    if not updates:
        return verdict
    logger.info("Judge overrides applied: %s", ", ".join(sorted(updates)))
    outcome = verdict.verdict
    match outcome:
        case Verdict.ACCEPT:
            outcome = Verdict.REVISE
        case Verdict.REVISE | Verdict.REJECT:
            pass
        case _:
            assert_never(outcome)
    return replace(verdict, verdict=outcome, scores=replace(verdict.scores, **updates))


def _automatic_fix_plan(report: ExecReport) -> tuple[FixPlanItem, ...]:
    plan: list[FixPlanItem] = []
    if report.type_errors:
        plan.append(
            FixPlanItem(
                file="unknown",
                operation=FixOperation.EDIT,
                brief=f"Fix type errors: {report.type_errors[0]}",
            )
        )
    if report.test.failed > 0:
        plan.append(
            FixPlanItem(
                file="tests",
                operation=FixOperation.EDIT,
                brief=f"Fix {report.test.failed} failing test(s)",
            )
        )
    if report.security.violations:
        plan.append(
            FixPlanItem(
                file="unknown",
                operation=FixOperation.EDIT,
                brief=f"Fix security violations: {report.security.violations[0]}",
            )
        )
    return tuple(plan)


def build_automatic_verdict(report: ExecReport, *, cost: float = 0.0) -> JudgeVerdict:
    """Derive a verdict from execution signals alone."""
    tests_ok = report.test.failed == 0 and report.test.passed > 0
    scores = Scores(
        compilation=1.0 if report.compiled else 0.0,
        tests_functional=1.0 if tests_ok else 0.0,
        tests_edge=0.8 if report.test.passed >= _EDGE_TESTS_MIN_PASSED else 0.5,
        types=0.0 if report.type_errors else 1.0,
        style=max(0.0, 1.0 - _LINT_PENALTY * len(report.lint_errors)),
        security=0.0 if report.security.violations else 1.0,
    )
    failing = scores.compilation == 0 or scores.security == 0 or scores.tests_functional == 0

    issues: list[str] = []
    if not report.compiled:
        issues.append("compilation failed")
    if report.type_errors:
        issues.append(f"{len(report.type_errors)} type error(s)")
    if report.test.failed > 0:
        issues.append(f"{report.test.failed} test(s) failed")
    elif report.test.passed == 0:
        issues.append("no tests passed")
    if report.security.violations:
        issues.append(f"{len(report.security.violations)} security violation(s)")
    if report.lint_errors:
        issues.append(f"{len(report.lint_errors)} lint error(s)")

    return JudgeVerdict(
        verdict=Verdict.REVISE if failing else Verdict.ACCEPT,
        scores=scores,
        explanations=Explanations(
            root_cause="; ".join(issues) if issues else "All automated checks passed",
            minimal_fix="Fix the issues listed above" if issues else "No changes needed",
        ),
        fix_plan=_automatic_fix_plan(report),
        cost=cost,
    )


class Judge:
    """Scores a candidate with the rubric model, or from signals when the model fails."""

    def __init__(
        self,
        client: FallbackModelClient,
        *,
        brief_provider: BriefProvider | None = None,
    ) -> None:
        self.client = client
        self.brief_provider = brief_provider or StaticBriefProvider()

    def evaluate(
        self,
        spec: str,
        report: ExecReport,
        patch: PatchSummary,
        notes: str,
        *,
        config: PipelineConfig,
        gen_result: GenResult | None = None,
    ) -> JudgeVerdict:
        try:
            reply = self.client.generate_json(
                system=JUDGE_SYSTEM_PROMPT,
                prompt=build_judge_user_prompt(spec, report, patch, notes),
                timeout_seconds=config.stage_timeout("judge"),
                fallback_timeout_seconds=config.fallback_timeout("judge"),
                validate=JudgeVerdict.from_dict,
                max_tokens=JUDGE_MAX_TOKENS,
            )
        except ModelCallError as exc:
            logger.warning("Judge model unavailable, using automatic verdict: %s", exc)
            verdict = build_automatic_verdict(report, cost=exc.cost)
        else:
            verdict = replace(apply_hard_overrides(reply.value, report), cost=reply.cost)

        if gen_result is not None:
            conventions = calculate_convention_score(
                gen_result,
                self.brief_provider.get_brief(),
                report.boundary_errors,
                report.custom_rule_errors,
            )
            scores = replace(verdict.scores, conventions=conventions.total)
            verdict = replace(verdict, scores=scores)
        logger.info("Judge verdict: %s", verdict.verdict.value)
        return verdict
