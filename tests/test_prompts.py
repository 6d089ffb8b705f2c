"""Tests for prompt construction."""

from __future__ import annotations

from code_acceptance.agent.pipeline.collaborators import CodeSnippet, ProjectBrief
from code_acceptance.agent.pipeline.models import (
    ExecReport,
    Explanations,
    FixOperation,
    FixPlanItem,
    JudgeVerdict,
    PatchSummary,
    Scores,
    SecuritySummary,
    SourceFile,
    TestSummary,
    Verdict,
)
from code_acceptance.agent.pipeline.prompts import (
    build_judge_user_prompt,
    build_refine_user_prompt,
    build_refinement_spec,
    build_synthesis_user_prompt,
    format_snippets,
)


def _verdict() -> JudgeVerdict:
    return JudgeVerdict(
        verdict=Verdict.REVISE,
        scores=Scores(0, 0, 0.5, 0, 0.7, 1),
        explanations=Explanations(
            root_cause="divide() crashes on zero", minimal_fix="raise ValueError for zero"
        ),
        fix_plan=(
            FixPlanItem("calc/core.py", FixOperation.EDIT, "guard divisor"),
            FixPlanItem("tests/test_core.py", FixOperation.ADD, "zero divisor test"),
        ),
    )


def _failing_report() -> ExecReport:
    return ExecReport(
        compiled=False,
        lint_errors=("calc/core.py:1:1: F401 unused import",),
        type_errors=("calc/core.py:3: SyntaxError: invalid syntax",),
        test=TestSummary(passed=1, failed=2, details=("FAILED test_divide: ZeroDivisionError",)),
        security=SecuritySummary(violations=("Disallowed import: socket in calc/core.py:1",)),
    )


def test_refinement_spec_embeds_previous_verdict_and_issues() -> None:
    spec = build_refinement_spec("Write divide(a, b).", _verdict(), _failing_report())

    assert spec.startswith("ORIGINAL TASK:\nWrite divide(a, b).")
    assert "divide() crashes on zero" in spec
    assert "raise ValueError for zero" in spec
    assert "1. edit calc/core.py: guard divisor" in spec
    assert "2. add tests/test_core.py: zero divisor test" in spec
    assert "2 test(s) failed" in spec
    assert "Security violations (1)" in spec
    assert "1 lint error(s)" in spec
    assert spec.rstrip().endswith("DO NOT repeat the same mistakes. Use REAL APIs only.")


def test_refinement_spec_without_gate_failures_mentions_threshold() -> None:
    spec = build_refinement_spec("task", _verdict(), ExecReport(compiled=True))

    assert "quality scores were below the threshold" in spec


def test_synthesis_prompt_lists_allowlist_and_previous_failure() -> None:
    prompt = build_synthesis_user_prompt(
        "Write divide(a, b).",
        brief=ProjectBrief(),
        snippets=[],
        allowed_libraries=("json", "pytest"),
        previous_verdict=_verdict(),
    )

    assert "TASK:\nWrite divide(a, b)." in prompt
    assert "   - json\n   - pytest" in prompt
    assert "PREVIOUS ATTEMPT FAILED" in prompt
    assert "DO NOT repeat these mistakes" in prompt
    assert "WRONG (overcomplicated, invented API)" in prompt


def test_synthesis_prompt_omits_failure_section_on_first_attempt() -> None:
    prompt = build_synthesis_user_prompt(
        "task", brief=ProjectBrief(), snippets=[], allowed_libraries=("json",)
    )

    assert "PREVIOUS ATTEMPT FAILED" not in prompt


def test_format_snippets_keeps_three_snippets_of_thirty_lines() -> None:
    body = "\n".join(f"line_{index} = {index}" for index in range(50))
    snippets = [CodeSnippet(f"mod{index}.py", "similar", body) for index in range(5)]

    rendered = format_snippets(snippets)

    assert "mod2.py" in rendered
    assert "mod3.py" not in rendered
    assert "line_29 = 29" in rendered
    assert "line_30 = 30" not in rendered


def test_judge_prompt_reports_signals_and_rubric() -> None:
    prompt = build_judge_user_prompt(
        "task",
        _failing_report(),
        PatchSummary(files_changed=("calc/core.py",), additions=4, deletions=1),
        "",
    )

    assert "- Compiled: NO" in prompt
    assert "- Failed: 2" in prompt
    assert "- Diff: +4 -1" in prompt
    assert "Coverage: N/A%" in prompt
    assert "EVALUATION RUBRIC" in prompt


def test_refine_prompt_prefers_diff_when_available() -> None:
    files = (SourceFile("calc/core.py", "def divide(a, b):\n    return a / b\n"),)

    with_diff = build_refine_user_prompt(_verdict(), files, _failing_report(), "--- a\n+++ b\n")
    without_diff = build_refine_user_prompt(_verdict(), files, _failing_report(), None)

    assert with_diff.startswith("DIFF (what changed from the previous attempt):")
    assert without_diff.startswith("CURRENT FILES:")
    assert "Required fix: raise ValueError for zero" in with_diff
