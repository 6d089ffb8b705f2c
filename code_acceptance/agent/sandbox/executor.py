"""Command execution utilities for sandbox gates."""

from __future__ import annotations

import logging
import os
import subprocess  # nosec B404
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from code_acceptance.agent.security import scrub_environment

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command."""

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class CommandRunner(Protocol):
    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        memory_limit_mb: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult: ...


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _memory_limiter(memory_limit_mb: int | None) -> Callable[[], None] | None:
    """Return a preexec hook capping the address space, on POSIX only."""
    if memory_limit_mb is None or os.name != "posix":
        return None
    import resource

    limit_bytes = memory_limit_mb * 1024 * 1024

    def _apply() -> None:
        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))

    return _apply


class LocalCommandRunner:
    """Runs argv commands as local subprocesses with a hard timeout.

    With ``inherit_secrets=False`` the child environment drops host variables
    named like credentials (``*_API_KEY``, ``*_TOKEN``, ...).
    """

    def __init__(self, *, inherit_secrets: bool = True) -> None:
        self.inherit_secrets = inherit_secrets

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        memory_limit_mb: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Execute one command; a timeout kills it and yields exit code 124."""
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero.")
        command = tuple(argv)
        base_env = dict(os.environ) if self.inherit_secrets else scrub_environment(os.environ)
        merged_env = {**base_env, **(env or {})}
        start = time.perf_counter()
        try:
            completed = subprocess.run(  # noqa: S603  # nosec B603
                command,
                cwd=str(cwd),
                text=True,
                capture_output=True,
                timeout=timeout_seconds,
                check=False,
                env=merged_env,
                preexec_fn=_memory_limiter(memory_limit_mb),  # noqa: PLW1509
            )
        except subprocess.TimeoutExpired as exc:
            duration = time.perf_counter() - start
            logger.warning("Command timed out after %.1fs: %s", timeout_seconds, " ".join(command))
            stderr = _decode(exc.stderr)
            note = f"Command timed out after {timeout_seconds:g}s"
            return CommandResult(
                command=command,
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(exc.stdout),
                stderr=f"{stderr}\n{note}" if stderr else note,
                duration_seconds=duration,
                timed_out=True,
            )
        duration = time.perf_counter() - start
        return CommandResult(
            command=command,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_seconds=duration,
        )
