"""Tests for the Docker sandbox and sandbox strategy selection."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import GenResult, SourceFile
from code_acceptance.agent.sandbox import DockerSandbox, LocalSandbox, SandboxError, select_sandbox
from code_acceptance.agent.sandbox.executor import CommandResult
from code_acceptance.agent.sandbox.gates import JUNIT_REPORT

_JUNIT = (
    '<?xml version="1.0"?><testsuite>'
    '<testcase classname="tests.test_app" name="test_ok"/>'
    '<testcase classname="tests.test_app" name="test_bad">'
    '<failure message="assert 1 == 2"/></testcase>'
    "</testsuite>"
)


class _FakeDocker:
    """Records docker invocations and answers like a healthy daemon."""

    def __init__(
        self,
        *,
        daemon_up: bool = True,
        image_present: bool = True,
        run_exit_code: int = 0,
        raise_on_run: bool = False,
    ) -> None:
        self.daemon_up = daemon_up
        self.image_present = image_present
        self.run_exit_code = run_exit_code
        self.raise_on_run = raise_on_run
        self.calls: list[tuple[str, ...]] = []
        self.dockerfile = ""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        memory_limit_mb: int | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = tuple(argv)
        self.calls.append(command)
        subcommand = command[1]
        if subcommand == "ps":
            return CommandResult(command, 0 if self.daemon_up else 1, "", "", 0.01)
        if subcommand == "images":
            return CommandResult(command, 0, "abc123\n" if self.image_present else "", "", 0.01)
        if subcommand == "build":
            self.dockerfile = (cwd / "Dockerfile").read_text(encoding="utf-8")
            return CommandResult(command, self.run_exit_code, "", "no space left", 1.0)
        if subcommand == "run":
            if self.raise_on_run:
                raise OSError("docker binary vanished")
            if "pytest" in command:
                (cwd / JUNIT_REPORT).write_text(_JUNIT, encoding="utf-8")
                return CommandResult(command, 1, "1 failed, 1 passed", "", 0.3)
            stderr = "Unable to find image" if self.run_exit_code == 125 else ""
            return CommandResult(command, self.run_exit_code, "", stderr, 0.1)
        return CommandResult(command, 0, "", "", 0.01)

    def runs(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[1] == "run"]

    def removals(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[1:3] == ("rm", "-f")]


def _candidate() -> GenResult:
    return GenResult(
        files=(SourceFile("app.py", "def ok() -> bool:\n    return True\n"),),
        tests=(SourceFile("tests/test_app.py", "from app import ok\n"),),
    )


def test_every_gate_runs_in_an_isolated_container(tmp_path: Path) -> None:
    fake = _FakeDocker()
    sandbox = DockerSandbox(docker_binary="docker", runner=fake, workspace_parent=tmp_path)

    report = sandbox.execute(_candidate(), PipelineConfig(memory_limit=256))

    runs = fake.runs()
    assert runs
    for argv in runs:
        assert argv[argv.index("--network") + 1] == "none"
        assert argv[argv.index("--memory") + 1] == "256m"
        assert "--read-only" in argv
        assert "--rm" in argv
        assert PipelineConfig().docker_image in argv
    assert len(fake.removals()) == len(runs)
    assert report.test.passed == 1
    assert report.test.failed == 1
    assert report.test.details == ("FAILED tests.test_app::test_bad: assert 1 == 2",)
    assert list(tmp_path.iterdir()) == []


def test_docker_never_runs_pip_audit_without_network(tmp_path: Path) -> None:
    fake = _FakeDocker()
    candidate = GenResult(
        files=(
            SourceFile("app.py", "x = 1\n"),
            SourceFile("requirements.txt", "requests==2.0\n"),
        )
    )

    report = DockerSandbox(runner=fake, workspace_parent=tmp_path).execute(
        candidate, PipelineConfig()
    )

    assert not any("pip_audit" in argv for argv in fake.runs())
    assert "audit: pip-audit needs network access; skipping." in report.logs_tail


def test_container_is_removed_even_when_docker_run_raises(tmp_path: Path) -> None:
    fake = _FakeDocker(raise_on_run=True)
    sandbox = DockerSandbox(runner=fake, workspace_parent=tmp_path)

    with pytest.raises(SandboxError, match="infrastructure failure"):
        sandbox.execute(_candidate(), PipelineConfig())

    assert len(fake.removals()) == 1
    assert list(tmp_path.iterdir()) == []


def test_daemon_failure_to_start_container_raises(tmp_path: Path) -> None:
    sandbox = DockerSandbox(runner=_FakeDocker(run_exit_code=125), workspace_parent=tmp_path)

    with pytest.raises(SandboxError, match="docker run failed"):
        sandbox.execute(_candidate(), PipelineConfig())



def test_build_image_writes_dockerfile_and_tags_image() -> None:
    fake = _FakeDocker()

    DockerSandbox(docker_binary="docker", runner=fake).build_image("sandbox:test")

    assert ("docker", "build", "-t", "sandbox:test", ".") in fake.calls
    assert fake.dockerfile.startswith("FROM python:3.12-slim")
    assert "pytest-timeout" in fake.dockerfile


def test_build_image_failure_raises() -> None:
    with pytest.raises(SandboxError, match="no space left"):
        DockerSandbox(runner=_FakeDocker(run_exit_code=1)).build_image("sandbox:test")

@pytest.mark.parametrize(
    ("daemon_up", "image_present", "expected"),
    [(True, True, True), (False, True, False), (True, False, False)],
)
def test_is_available_requires_daemon_and_image(
    daemon_up: bool, image_present: bool, expected: bool
) -> None:
    fake = _FakeDocker(daemon_up=daemon_up, image_present=image_present)

    assert DockerSandbox(runner=fake).is_available("img:latest") is expected


def test_select_local_sandbox_skips_docker_probe() -> None:
    fake = _FakeDocker()
    docker = DockerSandbox(runner=fake)

    chosen = select_sandbox(PipelineConfig(sandbox="local"), docker=docker)

    assert isinstance(chosen, LocalSandbox)
    assert fake.calls == []


def test_select_auto_prefers_docker_when_available() -> None:
    docker = DockerSandbox(runner=_FakeDocker())

    assert select_sandbox(PipelineConfig(sandbox="auto"), docker=docker) is docker


def test_select_auto_falls_back_to_local(caplog: pytest.LogCaptureFixture) -> None:
    docker = DockerSandbox(runner=_FakeDocker(daemon_up=False))

    chosen = select_sandbox(PipelineConfig(sandbox="auto"), docker=docker)

    assert isinstance(chosen, LocalSandbox)
    assert "weaker isolation" in caplog.text


def test_select_required_docker_raises_when_unavailable() -> None:
    docker = DockerSandbox(runner=_FakeDocker(image_present=False))

    with pytest.raises(SandboxError, match="Docker sandbox requested"):
        select_sandbox(PipelineConfig(sandbox="docker"), docker=docker)
