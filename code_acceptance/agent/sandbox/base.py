"""Sandbox executor abstraction shared by the Docker and local strategies."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol

from code_acceptance.agent.pipeline.collaborators import RepoChecks
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import ExecReport, GenResult
from code_acceptance.agent.sandbox.executor import CommandResult
from code_acceptance.agent.sandbox.gates import GateCommand, build_gate_plan
from code_acceptance.agent.sandbox.report import GateRun, assemble_report
from code_acceptance.agent.sandbox.workspace import SandboxWorkspace, disposable_workspace
from code_acceptance.agent.security import SecurityError

logger = logging.getLogger(__name__)


class SandboxError(RuntimeError):
    """Raised when the sandbox itself fails, as opposed to a gate failing."""


class SandboxExecutor(Protocol):
    def execute(self, gen_result: GenResult, config: PipelineConfig) -> ExecReport: ...


class GateSandbox(ABC):
    """Materialize a candidate, run every gate in order, and report.

    Subclasses decide where commands run. Gate failures are recorded in the
    report; only infrastructure problems raise SandboxError. The workspace is
    removed on every exit path.
    """

    strategy: str = "abstract"
    python: str = "python"
    has_network: bool = False

    def __init__(
        self,
        *,
        repo_checks: RepoChecks | None = None,
        workspace_parent: Path | None = None,
    ) -> None:
        self.repo_checks = repo_checks or RepoChecks()
        self.workspace_parent = workspace_parent

    @abstractmethod
    def run_command(
        self,
        command: GateCommand,
        workspace: SandboxWorkspace,
        config: PipelineConfig,
    ) -> CommandResult:
        """Run one gate command for the materialized candidate."""

    @abstractmethod
    def tool_available(self, module: str) -> bool:
        """Return whether a Python tool module can be run by this strategy."""

    def root_prefixes(self, workspace: SandboxWorkspace) -> tuple[str, ...]:
        """Path prefixes tools report that map to the workspace root."""
        _ = workspace
        return ()

    def execute(self, gen_result: GenResult, config: PipelineConfig) -> ExecReport:
        try:
            with disposable_workspace(self.workspace_parent) as workspace:
                workspace.materialize(gen_result)
                plan = build_gate_plan(
                    python=self.python,
                    source_paths=workspace.source_paths(gen_result),
                    test_paths=sorted(
                        {item.path for item in gen_result.tests if item.path.endswith(".py")}
                    ),
                    config=config,
                    tool_available=self.tool_available,
                    has_network=self.has_network,
                    has_requirements=(workspace.root / "requirements.txt").is_file(),
                )
                for note in plan.skipped:
                    logger.info("Sandbox (%s): %s", self.strategy, note)
                runs: list[GateRun] = []
                for command in plan.commands:
                    result = self.run_command(command, workspace, config)
                    logger.debug(
                        "Gate %s (%s) exited %s in %.2fs",
                        command.gate.value,
                        command.label,
                        result.exit_code,
                        result.duration_seconds,
                    )
                    runs.append(GateRun(command=command, result=result))
                report = assemble_report(
                    workspace=workspace,
                    gen_result=gen_result,
                    config=config,
                    runs=runs,
                    skipped=plan.skipped,
                    root_prefixes=self.root_prefixes(workspace),
                    repo_checks=self.repo_checks,
                )
        except SecurityError as exc:
            raise SandboxError(f"Candidate rejected before execution: {exc}") from exc
        except OSError as exc:
            raise SandboxError(f"Sandbox infrastructure failure: {exc}") from exc

        logger.info(
            "Sandbox (%s): compiled=%s lint=%s type=%s tests=%s/%s security=%s",
            self.strategy,
            report.compiled,
            len(report.lint_errors),
            len(report.type_errors),
            report.test.passed,
            report.test.passed + report.test.failed,
            len(report.security.violations),
        )
        return report
