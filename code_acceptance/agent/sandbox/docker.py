"""Docker-isolated sandbox strategy."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path

from code_acceptance.agent.pipeline.collaborators import RepoChecks
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.sandbox.base import GateSandbox, SandboxError
from code_acceptance.agent.sandbox.executor import CommandResult, CommandRunner, LocalCommandRunner
from code_acceptance.agent.sandbox.gates import GateCommand
from code_acceptance.agent.sandbox.workspace import SandboxWorkspace

logger = logging.getLogger(__name__)

CONTAINER_WORKDIR = "/workspace"
PROBE_TIMEOUT_SECONDS = 5.0
BUILD_TIMEOUT_SECONDS = 300.0
CLEANUP_TIMEOUT_SECONDS = 10.0
# Grace period for container start-up on top of the gate timeout.
STARTUP_GRACE_SECONDS = 5.0
# docker run exits 125 when the daemon could not start the container.
_DOCKER_RUN_FAILURE = 125

DOCKERFILE_TEMPLATE = "\n".join(
    [
        "FROM python:3.12-slim",
        "RUN pip install --no-cache-dir --upgrade pip && pip install --no-cache-dir \\",
        "    ruff mypy pytest pytest-cov pytest-timeout hypothesis bandit pip-audit",
        "RUN useradd --create-home --uid 1000 sandbox",
        "USER sandbox",
        f"WORKDIR {CONTAINER_WORKDIR}",
    ]
) + "\n"


class DockerSandbox(GateSandbox):
    """Runs every gate in a fresh, network-less, read-only container."""

    strategy = "docker"
    python = "python"
    has_network = False

    def __init__(
        self,
        *,
        image: str | None = None,
        docker_binary: str | None = None,
        runner: CommandRunner | None = None,
        repo_checks: RepoChecks | None = None,
        workspace_parent: Path | None = None,
    ) -> None:
        super().__init__(repo_checks=repo_checks, workspace_parent=workspace_parent)
        self.image = image
        self.docker_binary = docker_binary or shutil.which("docker") or "docker"
        self.runner = runner or LocalCommandRunner()

    def is_available(self, image: str) -> bool:
        """Return whether the daemon answers and the sandbox image exists."""
        try:
            daemon = self.runner.run(
                [self.docker_binary, "ps", "-q"],
                cwd=Path.cwd(),
                timeout_seconds=PROBE_TIMEOUT_SECONDS,
            )
            if not daemon.passed:
                return False
            images = self.runner.run(
                [self.docker_binary, "images", "-q", image],
                cwd=Path.cwd(),
                timeout_seconds=PROBE_TIMEOUT_SECONDS,
            )
        except OSError:
            return False
        return images.passed and bool(images.stdout.strip())

    def build_image(self, image: str) -> None:
        """Build the sandbox image from the bundled Dockerfile template."""
        with tempfile.TemporaryDirectory(prefix="code-acceptance-image-") as context:
            (Path(context) / "Dockerfile").write_text(DOCKERFILE_TEMPLATE, encoding="utf-8")
            logger.info("Building sandbox image %s", image)
            result = self.runner.run(
                [self.docker_binary, "build", "-t", image, "."],
                cwd=Path(context),
                timeout_seconds=BUILD_TIMEOUT_SECONDS,
            )
        if not result.passed:
            raise SandboxError(f"Failed to build Docker image {image}: {result.stderr.strip()}")

    def tool_available(self, module: str) -> bool:
        _ = module
        return True

    def root_prefixes(self, workspace: SandboxWorkspace) -> tuple[str, ...]:
        return (CONTAINER_WORKDIR,)

    def container_argv(
        self,
        command: GateCommand,
        workspace: SandboxWorkspace,
        config: PipelineConfig,
        container_name: str,
    ) -> list[str]:
        argv = [
            self.docker_binary,
            "run",
            "--rm",
            "--name",
            container_name,
            "--network",
            "none",
            "--memory",
            f"{config.memory_limit}m",
            "--cpus",
            "1",
            "--read-only",
            "--tmpfs",
            "/tmp:rw,noexec,nosuid,size=100m",
            "-e",
            "HOME=/tmp",
            "-e",
            "PYTHONDONTWRITEBYTECODE=1",
        ]
        if hasattr(os, "getuid") and hasattr(os, "getgid"):
            argv.extend(["--user", f"{os.getuid()}:{os.getgid()}"])
        argv.extend(
            [
                "-v",
                f"{workspace.root.resolve()}:{CONTAINER_WORKDIR}:rw",
                "-w",
                CONTAINER_WORKDIR,
                self.image or config.docker_image,
                *command.argv,
            ]
        )
        return argv

    def run_command(
        self,
        command: GateCommand,
        workspace: SandboxWorkspace,
        config: PipelineConfig,
    ) -> CommandResult:
        container_name = f"code-acceptance-{uuid.uuid4().hex[:12]}"
        try:
            result = self.runner.run(
                self.container_argv(command, workspace, config, container_name),
                cwd=workspace.root,
                timeout_seconds=command.timeout_seconds + STARTUP_GRACE_SECONDS,
            )
        finally:
            self._force_remove(container_name, workspace.root)
        if result.exit_code == _DOCKER_RUN_FAILURE and not result.timed_out:
            raise SandboxError(f"docker run failed for {command.label}: {result.stderr.strip()}")
        return CommandResult(
            command=command.argv,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_seconds=result.duration_seconds,
            timed_out=result.timed_out,
        )

    def _force_remove(self, container_name: str, cwd: Path) -> None:
        try:
            self.runner.run(
                [self.docker_binary, "rm", "-f", container_name],
                cwd=cwd,
                timeout_seconds=CLEANUP_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            logger.warning("Could not remove container %s: %s", container_name, exc)
