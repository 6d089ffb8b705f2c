"""Choose the sandbox strategy for a run."""

from __future__ import annotations

import logging
from pathlib import Path

from code_acceptance.agent.pipeline.collaborators import RepoChecks
from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.sandbox.base import GateSandbox, SandboxError
from code_acceptance.agent.sandbox.docker import DockerSandbox
from code_acceptance.agent.sandbox.local import LocalSandbox

logger = logging.getLogger(__name__)


def select_sandbox(
    config: PipelineConfig,
    *,
    repo_checks: RepoChecks | None = None,
    workspace_parent: Path | None = None,
    docker: DockerSandbox | None = None,
) -> GateSandbox:
    """Prefer Docker; fall back to local processes unless Docker is required."""
    if config.sandbox == "local":
        return LocalSandbox(repo_checks=repo_checks, workspace_parent=workspace_parent)

    candidate = docker or DockerSandbox(repo_checks=repo_checks, workspace_parent=workspace_parent)
    if candidate.is_available(config.docker_image):
        logger.info("Using Docker sandbox with image %s.", config.docker_image)
        return candidate
    if config.sandbox == "docker":
        raise SandboxError(
            f"Docker sandbox requested but Docker or image {config.docker_image} is unavailable."
        )
    logger.warning(
        "Docker or image %s unavailable; falling back to local sandbox with weaker isolation.",
        config.docker_image,
    )
    return LocalSandbox(repo_checks=repo_checks, workspace_parent=workspace_parent)
