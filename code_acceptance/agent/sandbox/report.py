"""Aggregation of gate results into one ExecReport."""

from __future__ import annotations

import ast
from dataclasses import dataclass

from code_acceptance.agent.pipeline.collaborators import RepoChecks, run_repo_checks
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import (
    LOGS_TAIL_LINES,
    ExecReport,
    GenResult,
    SecuritySummary,
    SourceFile,
    TestSummary,
)
from code_acceptance.agent.sandbox.executor import CommandResult
from code_acceptance.agent.sandbox.gates import (
    GateCommand,
    GateName,
    parse_bandit,
    parse_mypy,
    parse_pip_audit,
    parse_pytest,
    parse_ruff_format,
    parse_ruff_json,
)
from code_acceptance.agent.sandbox.imports import scan_disallowed_imports
from code_acceptance.agent.sandbox.workspace import SandboxWorkspace, top_level_names
from code_acceptance.agent.security import redact_sensitive_text, scan_texts_for_secrets

_TAIL_PER_SOURCE = LOGS_TAIL_LINES // 2


@dataclass(frozen=True)
class GateRun:
    command: GateCommand
    result: CommandResult


def find_syntax_errors(files: tuple[SourceFile, ...]) -> list[str]:
    """Compile-check every Python file without executing it."""
    errors: list[str] = []
    for item in files:
        if not item.path.endswith(".py"):
            continue
        try:
            ast.parse(item.content, filename=item.path)
        except SyntaxError as exc:
            errors.append(f"{item.path}:{exc.lineno or 0}: SyntaxError: {exc.msg}")
    return errors


def _tail(text: str, limit: int) -> list[str]:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-limit:]


def assemble_report(
    *,
    workspace: SandboxWorkspace,
    gen_result: GenResult,
    config: PipelineConfig,
    runs: list[GateRun],
    skipped: tuple[str, ...] = (),
    root_prefixes: tuple[str, ...] = (),
    repo_checks: RepoChecks | None = None,
) -> ExecReport:
    """Combine gate outcomes, host-side scans and repository checks."""
    prefixes = (*root_prefixes, str(workspace.root), str(workspace.root.resolve()))
    syntax_errors = find_syntax_errors(gen_result.all_files())
    lint_errors: list[str] = []
    type_errors: list[str] = list(syntax_errors)
    violations: list[str] = []
    test_summary: TestSummary | None = None
    test_log: list[str] = []
    type_log: list[str] = []

    for run in runs:
        gate = run.command.gate
        if gate is GateName.FORMAT:
            lint_errors.extend(parse_ruff_format(run.result))
        elif gate is GateName.LINT:
            lint_errors.extend(parse_ruff_json(run.result, prefixes))
        elif gate is GateName.TYPECHECK:
            type_errors.extend(parse_mypy(run.result))
            type_log = _tail(run.result.output, _TAIL_PER_SOURCE)
        elif gate is GateName.TEST:
            test_summary = parse_pytest(run.result, workspace.root)
            test_log = _tail(run.result.output, _TAIL_PER_SOURCE)
        elif gate is GateName.AUDIT and run.command.label == "bandit":
            violations.extend(parse_bandit(run.result, prefixes))
        elif gate is GateName.AUDIT:
            violations.extend(parse_pip_audit(run.result))

    if test_summary is None:
        detail = "No tests were provided." if not gen_result.tests else "Tests were not run."
        test_summary = TestSummary(details=(detail,))
    coverage = test_summary.coverage_pct
    if coverage is not None and coverage < config.min_coverage:
        test_summary = TestSummary(
            passed=test_summary.passed,
            failed=test_summary.failed,
            details=(
                *test_summary.details,
                f"Coverage {coverage:.1f}% is below the minimum of {config.min_coverage:g}%.",
            ),
            coverage_pct=coverage,
        )

    source_paths = [item.path for item in gen_result.files]
    violations = [
        *scan_disallowed_imports(
            gen_result.files,
            config.allowed_libraries,
            first_party=top_level_names(source_paths),
        ),
        *violations,
        *scan_texts_for_secrets((item.path, item.content) for item in gen_result.all_files()),
    ]

    checks = repo_checks or RepoChecks()
    boundary_errors = run_repo_checks(checks.boundary, workspace.root, gen_result)
    custom_rule_errors = run_repo_checks(checks.custom_rules, workspace.root, gen_result)
    edit_violations = run_repo_checks(checks.edit, workspace.root, gen_result)

    logs = [*skipped, *test_log, *type_log][-LOGS_TAIL_LINES:]
    return ExecReport(
        compiled=not syntax_errors,
        lint_errors=tuple(lint_errors),
        type_errors=tuple(type_errors),
        boundary_errors=tuple(boundary_errors),
        custom_rule_errors=tuple(custom_rule_errors),
        edit_violations=tuple(edit_violations),
        test=test_summary,
        security=SecuritySummary(violations=tuple(violations)),
        logs_tail=tuple(redact_sensitive_text(line) for line in logs),
    )
