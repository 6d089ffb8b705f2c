"""Run the repository's own quality gates in the same order the sandbox uses."""

from __future__ import annotations

import os
import subprocess  # nosec B404
import sys
from collections.abc import Sequence

PACKAGE = "code_acceptance"
STRICT_AUDIT_ENV = "CODE_ACCEPTANCE_CI_PIP_AUDIT_REQUIRED"


def _run(args: Sequence[str]) -> int:
    command = " ".join(args)
    print(f"$ {command}")
    result = subprocess.run(args, check=False)  # nosec B603
    if result.returncode != 0:
        print(f"Command failed with exit code {result.returncode}: {command}")
    return int(result.returncode)


def _strict_audit() -> bool:
    return os.environ.get(STRICT_AUDIT_ENV, "").lower() in {"1", "true", "yes"}


def main() -> int:
    """Format, lint, type-check, test, scan; stop at the first blocking failure."""
    python = sys.executable
    blocking: list[list[str]] = [
        [python, "-m", "ruff", "format", "--check", "."],
        [python, "-m", "ruff", "check", "."],
        [python, "-m", "mypy", PACKAGE],
        [
            python,
            "-m",
            "pytest",
            f"--cov={PACKAGE}",
            "--cov-report=term-missing",
            "--cov-fail-under=80",
        ],
        [python, "-m", "bandit", "-q", "-r", PACKAGE, "--severity-level", "medium"],
    ]
    for args in blocking:
        exit_code = _run(args)
        if exit_code != 0:
            return exit_code

    audit_exit = _run([python, "-m", "pip_audit", "--progress-spinner", "off"])
    if audit_exit != 0 and _strict_audit():
        return audit_exit
    if audit_exit != 0:
        print(f"pip_audit reported vulnerabilities; set {STRICT_AUDIT_ENV}=1 to fail on them.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
