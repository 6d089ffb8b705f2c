"""Sandbox strategies that execute candidates behind quality gates."""

from code_acceptance.agent.sandbox.base import GateSandbox, SandboxError, SandboxExecutor
from code_acceptance.agent.sandbox.docker import DockerSandbox
from code_acceptance.agent.sandbox.local import LocalSandbox
from code_acceptance.agent.sandbox.selection import select_sandbox

__all__ = [
    "DockerSandbox",
    "GateSandbox",
    "LocalSandbox",
    "SandboxError",
    "SandboxExecutor",
    "select_sandbox",
]
