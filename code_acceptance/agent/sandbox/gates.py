"""Gate command plan and parsers for gate tool output."""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET  # nosec B405
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path, PurePosixPath

from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import TestSummary
from code_acceptance.agent.sandbox.executor import CommandResult
from code_acceptance.agent.sandbox.workspace import ARTIFACT_DIR

logger = logging.getLogger(__name__)

FORMAT_TIMEOUT_SECONDS = 10.0
LINT_TIMEOUT_SECONDS = 15.0
TYPECHECK_TIMEOUT_SECONDS = 20.0
AUDIT_TIMEOUT_SECONDS = 10.0

JUNIT_REPORT = f"{ARTIFACT_DIR}/junit.xml"
COVERAGE_REPORT = f"{ARTIFACT_DIR}/coverage.json"

# pytest exit code when no tests were collected.
_PYTEST_NO_TESTS = 5


class GateName(StrEnum):
    FORMAT = "format"
    LINT = "lint"
    TYPECHECK = "typecheck"
    TEST = "test"
    AUDIT = "audit"


@dataclass(frozen=True)
class GateCommand:
    """One tool invocation belonging to a gate."""

    gate: GateName
    label: str
    argv: tuple[str, ...]
    timeout_seconds: float
    limit_memory: bool = False


@dataclass(frozen=True)
class GatePlan:
    commands: tuple[GateCommand, ...]
    skipped: tuple[str, ...] = ()


def build_gate_plan(
    *,
    python: str,
    source_paths: list[str],
    test_paths: list[str],
    config: PipelineConfig,
    tool_available: Callable[[str], bool],
    has_network: bool,
    has_requirements: bool,
) -> GatePlan:
    """Build the ordered tool commands; tools that are missing are skipped."""
    commands: list[GateCommand] = []
    skipped: list[str] = []

    def _module(python_module: str, gate: GateName) -> bool:
        if tool_available(python_module):
            return True
        skipped.append(f"{gate.value}: {python_module} is not available; skipping.")
        return False

    if _module("ruff", GateName.FORMAT):
        commands.append(
            GateCommand(
                gate=GateName.FORMAT,
                label="ruff format",
                argv=(python, "-m", "ruff", "format", "--check", "--no-cache", "."),
                timeout_seconds=FORMAT_TIMEOUT_SECONDS,
            )
        )
        commands.append(
            GateCommand(
                gate=GateName.LINT,
                label="ruff check",
                argv=(
                    python, "-m", "ruff", "check", "--no-cache", "--output-format", "json", ".",
                ),
                timeout_seconds=LINT_TIMEOUT_SECONDS,
            )
        )
    else:
        skipped.append("lint: ruff is not available; skipping.")

    if source_paths and _module("mypy", GateName.TYPECHECK):
        commands.append(
            GateCommand(
                gate=GateName.TYPECHECK,
                label="mypy",
                argv=(
                    python,
                    "-m",
                    "mypy",
                    "--ignore-missing-imports",
                    "--explicit-package-bases",
                    "--no-error-summary",
                    "--cache-dir",
                    f"{ARTIFACT_DIR}/mypy-cache",
                    *source_paths,
                ),
                timeout_seconds=TYPECHECK_TIMEOUT_SECONDS,
            )
        )

    if test_paths and _module("pytest", GateName.TEST):
        argv = [
            python, "-m", "pytest", "-q", "-p", "no:cacheprovider", f"--junitxml={JUNIT_REPORT}",
        ]
        if tool_available("pytest_cov"):
            for name in sorted(_coverage_targets(source_paths)):
                argv.append(f"--cov={name}")
            argv.append(f"--cov-report=json:{COVERAGE_REPORT}")
        if tool_available("pytest_timeout"):
            argv.append(f"--timeout={config.test_timeout:g}")
        argv.extend(test_paths)
        commands.append(
            GateCommand(
                gate=GateName.TEST,
                label="pytest",
                argv=tuple(argv),
                timeout_seconds=config.global_timeout,
                limit_memory=True,
            )
        )

    if source_paths and _module("bandit", GateName.AUDIT):
        commands.append(
            GateCommand(
                gate=GateName.AUDIT,
                label="bandit",
                argv=(python, "-m", "bandit", "-q", "-f", "json", *source_paths),
                timeout_seconds=AUDIT_TIMEOUT_SECONDS,
            )
        )
    if has_requirements:
        if not has_network:
            skipped.append("audit: pip-audit needs network access; skipping.")
        elif _module("pip_audit", GateName.AUDIT):
            commands.append(
                GateCommand(
                    gate=GateName.AUDIT,
                    label="pip-audit",
                    argv=(
                        python,
                        "-m",
                        "pip_audit",
                        "-r",
                        "requirements.txt",
                        "-f",
                        "json",
                        "--progress-spinner",
                        "off",
                    ),
                    timeout_seconds=AUDIT_TIMEOUT_SECONDS,
                )
            )
    return GatePlan(commands=tuple(commands), skipped=tuple(skipped))


def _coverage_targets(source_paths: list[str]) -> set[str]:
    targets: set[str] = set()
    for raw in source_paths:
        parts = PurePosixPath(raw).parts
        if len(parts) == 1:
            targets.add(PurePosixPath(raw).stem)
        elif parts[0] == "src" and len(parts) > 2:
            targets.add(f"src/{parts[1]}")
        else:
            targets.add(parts[0])
    return targets


def _timeout_line(result: CommandResult, label: str) -> list[str]:
    if result.timed_out:
        return [f"{label} timed out after {result.duration_seconds:.1f}s"]
    return []


def parse_ruff_format(result: CommandResult) -> list[str]:
    """Return one lint entry per file ruff would reformat."""
    if result.passed:
        return []
    entries = [
        f"format: {match.group(1).strip()} is not formatted"
        for match in re.finditer(r"^Would reformat: (.+)$", result.output, flags=re.MULTILINE)
    ]
    return entries or _timeout_line(result, "ruff format") or ["format: ruff format --check failed"]


def parse_ruff_json(result: CommandResult, root_prefixes: tuple[str, ...] = ()) -> list[str]:
    """Return ``path:row:col: CODE message`` entries from ruff's JSON output."""
    if result.passed:
        return []
    try:
        findings = json.loads(result.stdout or "[]")
    except json.JSONDecodeError:
        return _timeout_line(result, "ruff check") or [
            line for line in result.output.splitlines() if line.strip()
        ][:20]
    entries: list[str] = []
    for item in findings if isinstance(findings, list) else []:
        if not isinstance(item, dict):
            continue
        location = item.get("location") or {}
        filename = _relativize(str(item.get("filename", "")), root_prefixes)
        entries.append(
            f"{filename}:{location.get('row', 0)}:{location.get('column', 0)}: "
            f"{item.get('code') or 'E'} {item.get('message', '').strip()}"
        )
    return entries


def parse_mypy(result: CommandResult) -> list[str]:
    """Return mypy ``error:`` lines."""
    if result.passed:
        return []
    errors = [line.strip() for line in result.output.splitlines() if ": error:" in line]
    return errors or _timeout_line(result, "mypy")


def parse_pytest(result: CommandResult, workspace: Path) -> TestSummary:
    """Build a test summary from the junit report, falling back to exit status."""
    junit_path = workspace / JUNIT_REPORT
    coverage = parse_coverage(workspace / COVERAGE_REPORT)
    if result.timed_out:
        return TestSummary(
            passed=0,
            failed=1,
            details=(f"Test run exceeded the global timeout ({result.duration_seconds:.1f}s).",),
            coverage_pct=coverage,
        )
    if junit_path.is_file():
        try:
            passed, failed, details = _parse_junit(junit_path)
        except ET.ParseError as exc:
            logger.warning("Unreadable junit report: %s", exc)
        else:
            if result.exit_code not in (0, _PYTEST_NO_TESTS) and failed == 0:
                failed = 1
                details.append(_last_meaningful_line(result.output, "pytest exited abnormally"))
            return TestSummary(
                passed=passed, failed=failed, details=tuple(details), coverage_pct=coverage
            )
    if result.exit_code == _PYTEST_NO_TESTS:
        return TestSummary(details=("No tests were collected.",), coverage_pct=coverage)
    if result.passed:
        return TestSummary(coverage_pct=coverage)
    return TestSummary(
        passed=0,
        failed=1,
        details=(_last_meaningful_line(result.output, "pytest failed before reporting results"),),
        coverage_pct=coverage,
    )


def _parse_junit(path: Path) -> tuple[int, int, list[str]]:
    tree = ET.parse(path)  # noqa: S314  # nosec B314
    passed = 0
    failed = 0
    details: list[str] = []
    for case in tree.getroot().iter("testcase"):
        name = f"{case.get('classname', '')}::{case.get('name', '')}".lstrip(":")
        problem = case.find("failure")
        if problem is None:
            problem = case.find("error")
        if problem is not None:
            failed += 1
            message = (problem.get("message") or problem.text or "").strip().splitlines()
            details.append(f"FAILED {name}: {message[0] if message else problem.tag}")
        elif case.find("skipped") is None:
            passed += 1
    return passed, failed, details


def parse_coverage(path: Path) -> float | None:
    if not path.is_file():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    totals = payload.get("totals") if isinstance(payload, dict) else None
    value = totals.get("percent_covered") if isinstance(totals, dict) else None
    return float(value) if isinstance(value, int | float) else None


def parse_bandit(result: CommandResult, root_prefixes: tuple[str, ...] = ()) -> list[str]:
    """Return medium and high severity bandit findings."""
    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return _timeout_line(result, "bandit")
    findings: list[str] = []
    for item in payload.get("results", []) if isinstance(payload, dict) else []:
        severity = str(item.get("issue_severity", "")).upper()
        if severity not in {"MEDIUM", "HIGH"}:
            continue
        filename = _relativize(str(item.get("filename", "")), root_prefixes)
        findings.append(
            f"bandit {item.get('test_id', '?')} ({severity.lower()}) "
            f"{filename}:{item.get('line_number', 0)}: {item.get('issue_text', '').strip()}"
        )
    return findings


def parse_pip_audit(result: CommandResult) -> list[str]:
    """Return one entry per known vulnerability in the declared requirements."""
    try:
        payload = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        return _timeout_line(result, "pip-audit")
    dependencies = payload.get("dependencies", []) if isinstance(payload, dict) else payload
    findings: list[str] = []
    for dependency in dependencies if isinstance(dependencies, list) else []:
        for vuln in dependency.get("vulns", []) or []:
            findings.append(
                f"pip-audit: {dependency.get('name')} {dependency.get('version')} "
                f"{vuln.get('id', 'unknown')}"
            )
    return findings


def _relativize(filename: str, root_prefixes: tuple[str, ...]) -> str:
    normalized = filename.replace("\\", "/")
    for prefix in root_prefixes:
        cleaned = prefix.replace("\\", "/").rstrip("/") + "/"
        if normalized.startswith(cleaned):
            return normalized[len(cleaned) :]
    return normalized.removeprefix("./")


def _last_meaningful_line(output: str, default: str) -> str:
    for line in reversed(output.splitlines()):
        if line.strip():
            return line.strip()
    return default
