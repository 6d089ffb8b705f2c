"""Local-process sandbox strategy."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path

from code_acceptance.agent.pipeline.collaborators import RepoChecks
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.sandbox.base import GateSandbox
from code_acceptance.agent.sandbox.executor import CommandResult, CommandRunner, LocalCommandRunner
from code_acceptance.agent.sandbox.gates import GateCommand
from code_acceptance.agent.sandbox.workspace import SandboxWorkspace

_ISOLATED_ENV = {
    "PYTHONDONTWRITEBYTECODE": "1",
    "PYTHONHASHSEED": "0",
    "PIP_NO_INPUT": "1",
}


def _module_available(module_name: str) -> bool:
    """Return whether a Python module can be imported in current runtime."""
    return importlib.util.find_spec(module_name) is not None


class LocalSandbox(GateSandbox):
    """Runs gates as subprocesses of the current interpreter.

    Weaker isolation than Docker: there is no network or filesystem fence,
    only the per-gate timeout and an address-space ceiling for the test run.
    """

    strategy = "local"
    has_network = True

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        repo_checks: RepoChecks | None = None,
        workspace_parent: Path | None = None,
        python: str | None = None,
    ) -> None:
        super().__init__(repo_checks=repo_checks, workspace_parent=workspace_parent)
        self.runner = runner or LocalCommandRunner(inherit_secrets=False)
        self.python = python or sys.executable

    def tool_available(self, module: str) -> bool:
        return _module_available(module)

    def run_command(
        self,
        command: GateCommand,
        workspace: SandboxWorkspace,
        config: PipelineConfig,
    ) -> CommandResult:
        return self.runner.run(
            command.argv,
            cwd=workspace.root,
            timeout_seconds=command.timeout_seconds,
            memory_limit_mb=config.memory_limit if command.limit_memory else None,
            env=_ISOLATED_ENV,
        )
