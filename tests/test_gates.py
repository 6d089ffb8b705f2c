"""Tests for the gate command plan and tool output parsers."""

from __future__ import annotations

import json
from pathlib import Path

from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.sandbox.executor import TIMEOUT_EXIT_CODE, CommandResult
from code_acceptance.agent.sandbox.gates import (
    COVERAGE_REPORT,
    JUNIT_REPORT,
    GateName,
    GatePlan,
    build_gate_plan,
    parse_bandit,
    parse_coverage,
    parse_mypy,
    parse_pip_audit,
    parse_pytest,
    parse_ruff_format,
    parse_ruff_json,
)


def _result(
    exit_code: int = 0, stdout: str = "", stderr: str = "", *, timed_out: bool = False
) -> CommandResult:
    return CommandResult(
        command=("tool",),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration_seconds=0.1,
        timed_out=timed_out,
    )


def _plan(
    available: set[str], *, has_network: bool = True, has_requirements: bool = False
) -> GatePlan:
    return build_gate_plan(
        python="py",
        source_paths=["calc/core.py", "calc/__init__.py"],
        test_paths=["tests/test_core.py"],
        config=PipelineConfig(test_timeout=5, global_timeout=30),
        tool_available=lambda module: module in available,
        has_network=has_network,
        has_requirements=has_requirements,
    )


ALL_TOOLS = {"ruff", "mypy", "pytest", "pytest_cov", "pytest_timeout", "bandit", "pip_audit"}


def test_plan_runs_gates_in_fixed_order_with_their_timeouts() -> None:
    plan = _plan(ALL_TOOLS, has_requirements=True)

    assert [command.gate for command in plan.commands] == [
        GateName.FORMAT,
        GateName.LINT,
        GateName.TYPECHECK,
        GateName.TEST,
        GateName.AUDIT,
        GateName.AUDIT,
    ]
    assert [command.timeout_seconds for command in plan.commands] == [10, 15, 20, 30, 10, 10]
    assert plan.skipped == ()


def test_pytest_command_uses_coverage_timeout_and_memory_limit() -> None:
    pytest_command = next(c for c in _plan(ALL_TOOLS).commands if c.gate is GateName.TEST)

    assert f"--junitxml={JUNIT_REPORT}" in pytest_command.argv
    assert "--cov=calc" in pytest_command.argv
    assert f"--cov-report=json:{COVERAGE_REPORT}" in pytest_command.argv
    assert "--timeout=5" in pytest_command.argv
    assert pytest_command.argv[-1] == "tests/test_core.py"
    assert pytest_command.limit_memory


def test_missing_tools_are_skipped_not_failed() -> None:
    plan = _plan({"pytest"})

    assert [command.label for command in plan.commands] == ["pytest"]
    assert any("ruff is not available" in note for note in plan.skipped)
    assert any("mypy is not available" in note for note in plan.skipped)
    assert any("bandit is not available" in note for note in plan.skipped)
    pytest_argv = plan.commands[0].argv
    assert not any(arg.startswith("--cov") for arg in pytest_argv)
    assert not any(arg.startswith("--timeout") for arg in pytest_argv)


def test_pip_audit_needs_network() -> None:
    plan = _plan(ALL_TOOLS, has_network=False, has_requirements=True)

    assert "pip-audit" not in [command.label for command in plan.commands]
    assert any("pip-audit needs network" in note for note in plan.skipped)


def test_parse_ruff_format_lists_files() -> None:
    result = _result(1, stdout="Would reformat: calc/core.py\n1 file would be reformatted\n")

    assert parse_ruff_format(result) == ["format: calc/core.py is not formatted"]
    assert parse_ruff_format(_result(0)) == []


def test_parse_ruff_json_relativizes_paths() -> None:
    findings = [
        {
            "filename": "/workspace/calc/core.py",
            "code": "F401",
            "message": "`os` imported but unused",
            "location": {"row": 1, "column": 8},
        }
    ]

    entries = parse_ruff_json(_result(1, stdout=json.dumps(findings)), ("/workspace",))

    assert entries == ["calc/core.py:1:8: F401 `os` imported but unused"]


def test_parse_mypy_keeps_error_lines_and_reports_timeouts() -> None:
    output = "calc/core.py:3: error: Incompatible return value\ncalc/core.py:3: note: see docs\n"
    timed_out = _result(TIMEOUT_EXIT_CODE, timed_out=True)

    assert parse_mypy(_result(1, stdout=output)) == [
        "calc/core.py:3: error: Incompatible return value"
    ]
    assert parse_mypy(timed_out)[0].startswith("mypy timed out")


def _write_junit(workspace: Path, body: str) -> None:
    path = workspace / JUNIT_REPORT
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f'<?xml version="1.0"?><testsuites><testsuite>{body}</testsuite></testsuites>')


def test_parse_pytest_reads_junit_and_coverage(tmp_path: Path) -> None:
    _write_junit(
        tmp_path,
        '<testcase classname="tests.test_core" name="test_add"/>'
        '<testcase classname="tests.test_core" name="test_div">'
        '<failure message="ZeroDivisionError: division by zero">trace</failure></testcase>'
        '<testcase classname="tests.test_core" name="test_skip"><skipped/></testcase>',
    )
    (tmp_path / COVERAGE_REPORT).write_text(json.dumps({"totals": {"percent_covered": 87.5}}))

    summary = parse_pytest(_result(1), tmp_path)

    assert summary.passed == 1
    assert summary.failed == 1
    assert summary.details == (
        "FAILED tests.test_core::test_div: ZeroDivisionError: division by zero",
    )
    assert summary.coverage_pct == 87.5


def test_parse_pytest_timeout_counts_as_failure(tmp_path: Path) -> None:
    summary = parse_pytest(_result(TIMEOUT_EXIT_CODE, timed_out=True), tmp_path)

    assert summary.failed == 1
    assert "global timeout" in summary.details[0]


def test_parse_pytest_without_report_uses_last_output_line(tmp_path: Path) -> None:
    summary = parse_pytest(_result(2, stderr="ImportError: no module named calc\n"), tmp_path)

    assert summary.failed == 1
    assert summary.details == ("ImportError: no module named calc",)


def test_parse_coverage_missing_file_is_none(tmp_path: Path) -> None:
    assert parse_coverage(tmp_path / "absent.json") is None


def test_parse_bandit_keeps_medium_and_high_only() -> None:
    payload = {
        "results": [
            {
                "filename": "calc/core.py",
                "issue_severity": "LOW",
                "test_id": "B101",
                "line_number": 3,
                "issue_text": "assert used",
            },
            {
                "filename": "calc/core.py",
                "issue_severity": "HIGH",
                "test_id": "B307",
                "line_number": 9,
                "issue_text": "Use of eval",
            },
        ]
    }

    assert parse_bandit(_result(1, stdout=json.dumps(payload))) == [
        "bandit B307 (high) calc/core.py:9: Use of eval"
    ]


def test_parse_pip_audit_lists_vulnerabilities() -> None:
    payload = {
        "dependencies": [
            {"name": "requests", "version": "2.0.0", "vulns": [{"id": "PYSEC-1"}]},
            {"name": "attrs", "version": "23.1.0", "vulns": []},
        ]
    }

    assert parse_pip_audit(_result(1, stdout=json.dumps(payload))) == [
        "pip-audit: requests 2.0.0 PYSEC-1"
    ]
