"""Prompt templates for synthesis, judging and refinement."""

from __future__ import annotations

from collections.abc import Iterable

from code_acceptance.agent.pipeline.collaborators import (
    CodeSnippet,
    ProjectBrief,
    format_brief_for_prompt,
)
from code_acceptance.agent.pipeline.models import (
    ExecReport,
    FixPlanItem,
    JudgeVerdict,
    PatchSummary,
    SourceFile,
)

MAX_SNIPPETS = 3
SNIPPET_LINES = 30

SYNTHESIS_SYSTEM_PROMPT = """
You are writing production-quality Python for a specific repository.
Return STRICT JSON only, with no prose before or after the object.
""".strip()

TESTS_SYSTEM_PROMPT = """
You write pytest test suites for existing Python code.
Return STRICT JSON only.
""".strip()

JUDGE_SYSTEM_PROMPT = """
You are a code quality judge. Evaluate the candidate against the rubric.
Return STRICT JSON only.
""".strip()

REFINE_SYSTEM_PROMPT = """
You fix Python code using build/test errors and a reviewer's fix plan.
Make the smallest change that passes every gate. Return STRICT JSON only.
""".strip()

GEN_RESULT_SCHEMA = """
{
  "files": [
    {"path": "calculator/core.py", "content": "...full file content..."}
  ],
  "tests": [
    {"path": "tests/test_core.py", "content": "...full test file content..."}
  ],
  "conventions_used": [
    {"new": "customer_plan_id", "mirrors": "customer_id, plan_id in models/plan.py"}
  ],
  "notes": "optional brief notes about implementation decisions"
}
""".strip()

SYNTHESIS_EXAMPLES = r"""
EXAMPLES:

CORRECT (simple task, simple code):
Task: "Create a function that adds two numbers"
{
  "files": [
    {"path": "mathops.py", "content": "def add(a: float, b: float) -> float:\n    return a + b\n"}
  ],
  "tests": [
    {"path": "tests/test_mathops.py", "content": "from mathops import add\n\n\ndef test_adds_two_numbers() -> None:\n    assert add(2, 3) == 5\n\n\ndef test_handles_negative_numbers() -> None:\n    assert add(-1, 1) == 0\n\n\ndef test_handles_zero() -> None:\n    assert add(0, 0) == 0\n"}
  ],
  "notes": "Pure function, no external dependencies"
}

WRONG (overcomplicated, invented API):
{
  "files": [
    {"path": "mathops.py", "content": "from boto3.arith import remote_sum\n\n\ndef add(a, b):\n    return remote_sum(a, b)\n"}
  ],
  "tests": [],
  "notes": "Uses a cloud service for addition"
}
""".strip()

JUDGE_RUBRIC = """
EVALUATION RUBRIC (answer YES or NO for each):

1. COMPILATION: Does every module parse and import without errors?
2. TESTS - FUNCTIONAL: Do the basic tests pass? Do they cover the main use cases?
3. TESTS - EDGE CASES: Are empty, large and invalid inputs tested? Are error conditions tested?
4. TYPES: Does mypy report no errors? Are all signatures annotated and correct?
5. STYLE: Does ruff report no lint errors? Is the code formatted?
6. SECURITY: Are all imports from allowed libraries? Is the audit clean?
   Does the code avoid globals, nondeterminism and time-based logic?
7. CORRECTNESS: Are only real, documented APIs used? Does the code match the task exactly?
8. COMPLETENESS: Is the code free of TODOs and placeholders? Is every function implemented?

HARD RULES:
- Compilation fails: compilation = 0, verdict = revise
- Security violations exist: security = 0, verdict = revise
- Tests fail: tests_functional = 0, verdict = revise
- Boundary or custom rule violations exist: style = 0, verdict = revise

Return ONLY valid JSON in this exact format:
{
  "verdict": "accept|revise|reject",
  "scores": {
    "compilation": 0 or 1,
    "tests_functional": 0 to 1,
    "tests_edge": 0 to 1,
    "types": 0 or 1,
    "style": 0 to 1,
    "security": 0 or 1
  },
  "explanations": {
    "root_cause": "brief explanation of the main issue",
    "minimal_fix": "what needs to change"
  },
  "fix_plan": [
    {"file": "calculator/core.py", "operation": "edit", "brief": "fix type error on line 42"},
    {"file": "tests/test_core.py", "operation": "add", "brief": "add edge case test for empty input"}
  ]
}
""".strip()


def _listing(items: Iterable[str], empty: str = "None") -> str:
    rendered = "\n".join(items)
    return rendered or empty


def format_fix_plan(fix_plan: Iterable[FixPlanItem]) -> str:
    """Render fix plan items as a numbered list."""
    return _listing(
        (
            f"{index}. {item.operation.value} {item.file}: {item.brief}"
            for index, item in enumerate(fix_plan, start=1)
        ),
        empty="(no fix plan provided)",
    )


def format_files(files: Iterable[SourceFile]) -> str:
    return "\n\n---\n\n".join(f"{item.path}:\n{item.content}" for item in files)


def format_snippets(snippets: list[CodeSnippet]) -> str:
    """Render up to three retrieved snippets, first thirty lines each."""
    if not snippets:
        return ""
    sections = ["## EXAMPLES FROM THIS REPO (mirror these patterns)", ""]
    for snippet in snippets[:MAX_SNIPPETS]:
        head = "\n".join(snippet.content.splitlines()[:SNIPPET_LINES])
        sections.extend([f"### {snippet.file} ({snippet.reason})", "```python", head, "```", ""])
    return "\n".join(sections)


def build_synthesis_user_prompt(
    spec: str,
    *,
    brief: ProjectBrief,
    snippets: list[CodeSnippet],
    allowed_libraries: Iterable[str],
    previous_verdict: JudgeVerdict | None = None,
) -> str:
    """Build the code-and-tests generation prompt."""
    libraries = "\n".join(f"   - {name}" for name in allowed_libraries)
    parts = [
        format_brief_for_prompt(brief),
        format_snippets(snippets),
        "Return ONLY valid JSON in this exact format:",
        GEN_RESULT_SCHEMA,
        f"TASK:\n{spec.strip()}",
        f"""CRITICAL REQUIREMENTS (MANDATORY):

1. REAL APIs ONLY
   - Use only real, documented APIs from the allowed libraries
   - Do not invent methods, classes or functions; if unsure an API exists, do not use it
   - For simple tasks write simple code

2. REPO-NATIVE CODE
   - Naming: {brief.naming.variables} variables, {brief.naming.types} types, {brief.naming.constants} constants
   - File naming: {brief.naming.files}
   - Testing: {brief.testing_framework} with pattern {brief.test_pattern}
   - Reuse glossary names instead of inventing new ones

3. ALLOWED LIBRARIES (any other import is a security violation):
{libraries}

4. NO PLACEHOLDERS
   - No TODO, FIXME, TBD, stub bodies or "not implemented"
   - Every function and every test must be complete and runnable

5. TESTS
   - Cover the happy path, edge cases (empty, None, large values) and error cases
   - Tests must be independent and deterministic; use plain pytest functions

6. CODE QUALITY
   - Must pass ruff check, ruff format --check and mypy
   - Annotate every function signature
   - Prefer pure functions; no globals, no nondeterminism, no time-based logic

7. SECURITY
   - No network access, no subprocess, no eval or exec
   - Validate all inputs""",
    ]
    if previous_verdict is not None:
        parts.append(
            "PREVIOUS ATTEMPT FAILED:\n"
            f"- Root cause: {previous_verdict.explanations.root_cause}\n"
            f"- Required fix: {previous_verdict.explanations.minimal_fix}\n\n"
            f"Fix plan:\n{format_fix_plan(previous_verdict.fix_plan)}\n\n"
            "DO NOT repeat these mistakes. Generate CORRECTED code."
        )
    parts.append(SYNTHESIS_EXAMPLES)
    return "\n\n".join(part for part in parts if part)


def build_tests_user_prompt(spec: str, files: Iterable[SourceFile]) -> str:
    """Build the follow-up prompt used when a candidate arrived without tests."""
    return (
        "Generate comprehensive pytest tests for this code.\n\n"
        f"FILES:\n{format_files(files)}\n\n"
        f"SPECIFICATION:\n{spec.strip()}\n\n"
        "Return ONLY valid JSON:\n"
        '{\n  "tests": [\n    {"path": "tests/test_example.py", "content": "...full test content..."}\n  ]\n}\n\n'
        "Tests must cover the happy path, edge cases (empty, None, large values) and "
        "error cases (invalid input, exceptions). Make tests independent and deterministic."
    )


def build_judge_user_prompt(
    spec: str,
    report: ExecReport,
    patch: PatchSummary,
    notes: str,
) -> str:
    """Build the rubric prompt from the execution signals."""
    coverage = "N/A" if report.test.coverage_pct is None else f"{report.test.coverage_pct:.1f}"
    return f"""PROBLEM SPECIFICATION:
{spec.strip()}

EXECUTION SIGNALS:
- Compiled: {"YES" if report.compiled else "NO"}

LINT ERRORS ({len(report.lint_errors)} total):
{_listing(report.lint_errors)}

TYPE ERRORS ({len(report.type_errors)} total):
{_listing(report.type_errors)}

BOUNDARY VIOLATIONS ({len(report.boundary_errors)} total):
{_listing(report.boundary_errors)}

CUSTOM RULE VIOLATIONS ({len(report.custom_rule_errors)} total):
{_listing(report.custom_rule_errors)}

EDIT VIOLATIONS ({len(report.edit_violations)} total):
{_listing(report.edit_violations)}

TESTS:
- Passed: {report.test.passed}
- Failed: {report.test.failed}
- Coverage: {coverage}%
- Details:
{_listing(report.test.details)}

SECURITY VIOLATIONS ({len(report.security.violations)} total):
{_listing(report.security.violations)}

CHANGES:
- Files: {", ".join(patch.files_changed) or "None"}
- Diff: +{patch.additions} -{patch.deletions}

MODEL NOTES:
{notes.strip() or "None"}

RECENT LOGS (last 50 lines):
{_listing(report.logs_tail[-50:])}

---

{JUDGE_RUBRIC}"""


def build_refine_user_prompt(
    verdict: JudgeVerdict,
    current_files: tuple[SourceFile, ...],
    report: ExecReport,
    diff_text: str | None,
) -> str:
    """Build the minimal-edit fixer prompt."""
    if diff_text:
        changes = (
            "DIFF (what changed from the previous attempt):\n"
            f"{diff_text}\n\n"
            "CURRENT FILES:\n"
            f"{format_files(current_files)}\n\n"
            "Fix ONLY the areas named by the errors below. Keep all other code unchanged."
        )
    else:
        changes = f"CURRENT FILES:\n{format_files(current_files)}"
    return f"""{changes}

BUILD/TEST ERRORS (FULL LOGS):
- Compilation: {"OK" if report.compiled else "FAILED"}

TYPE ERRORS ({len(report.type_errors)} total):
{_listing(report.type_errors)}

LINT ERRORS ({len(report.lint_errors)} total):
{_listing(report.lint_errors)}

TESTS FAILED: {report.test.failed}
TEST DETAILS:
{_listing(report.test.details)}

SECURITY VIOLATIONS:
{_listing(report.security.violations)}

JUDGE'S VERDICT:
- Root cause: {verdict.explanations.root_cause}
- Required fix: {verdict.explanations.minimal_fix}

FIX PLAN:
{format_fix_plan(verdict.fix_plan)}

INSTRUCTIONS:
Output ONLY JSON with MINIMAL edits that pass all gates.
Do not change public signatures unless the task requires it.
Do not add features or refactor unrelated code.

Return ONLY valid JSON in this format:
{{
  "files": [
    {{"path": "calculator/core.py", "content": "...CORRECTED full file content..."}}
  ],
  "tests": [
    {{"path": "tests/test_core.py", "content": "...CORRECTED full test content..."}}
  ],
  "notes": "brief description of changes made"
}}

Use REAL APIs only."""


def build_refinement_spec(original_spec: str, verdict: JudgeVerdict, report: ExecReport) -> str:
    """Fold the previous verdict and execution issues into the next attempt's task."""
    issues: list[str] = []
    if not report.compiled or report.type_errors:
        issues.append(f"- Compilation/type errors ({len(report.type_errors)}):")
        issues.extend(f"  {error}" for error in report.type_errors[:10])
    if report.test.failed > 0:
        issues.append(f"- {report.test.failed} test(s) failed:")
        issues.extend(f"  {detail}" for detail in report.test.details[:10])
    if report.security.violations:
        issues.append(f"- Security violations ({len(report.security.violations)}):")
        issues.extend(f"  {violation}" for violation in report.security.violations[:10])
    if report.lint_errors:
        issues.append(f"- {len(report.lint_errors)} lint error(s)")
    if report.boundary_errors or report.custom_rule_errors:
        issues.append(
            f"- {len(report.boundary_errors) + len(report.custom_rule_errors)} "
            "boundary/custom rule violation(s)"
        )
    if report.edit_violations:
        issues.append(f"- Edit violations ({len(report.edit_violations)}):")
        issues.extend(f"  {violation}" for violation in report.edit_violations[:10])
    return f"""ORIGINAL TASK:
{original_spec.strip()}

PREVIOUS ATTEMPT FAILED WITH THESE ISSUES:
{_listing(issues, empty="- No gate failures; quality scores were below the threshold.")}

ROOT CAUSE:
{verdict.explanations.root_cause}

REQUIRED FIX:
{verdict.explanations.minimal_fix}

FIX PLAN:
{format_fix_plan(verdict.fix_plan)}

DO NOT repeat the same mistakes. Use REAL APIs only."""
