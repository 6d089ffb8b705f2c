"""Disposable workspaces that hold one candidate while its gates run."""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

from code_acceptance.agent.pipeline.models import GenResult
from code_acceptance.agent.security import SecurityError, ensure_safe_relative_path

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "code-acceptance-"
ARTIFACT_DIR = ".sandbox"

SCAFFOLD_PYPROJECT = """\
[project]
name = "candidate"
version = "0.0.0"
requires-python = ">=3.11"

[tool.pytest.ini_options]
pythonpath = [".", "src"]
addopts = "-p no:cacheprovider"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
ignore_missing_imports = true
"""


class SandboxWorkspace:
    """A bounded directory the candidate is written into."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.written: list[str] = []

    @property
    def artifacts(self) -> Path:
        return self.root / ARTIFACT_DIR

    def write_file(self, relative_path: str, content: str) -> None:
        """Write UTF-8 content under the workspace root."""
        target = ensure_safe_relative_path(self.root, relative_path)
        if target.is_dir():
            raise SecurityError(f"Cannot write file over directory: {relative_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        self.written.append(target.relative_to(self.root.resolve()).as_posix())

    def materialize(self, gen_result: GenResult) -> None:
        """Write every candidate file, then scaffold project config if absent."""
        seen: set[str] = set()
        for item in gen_result.all_files():
            if item.path in seen:
                logger.warning("Candidate file %s supplied twice; later copy wins.", item.path)
            seen.add(item.path)
            self.write_file(item.path, item.content)
        if not (self.root / "pyproject.toml").exists():
            self.write_file("pyproject.toml", SCAFFOLD_PYPROJECT)
        self.artifacts.mkdir(exist_ok=True)

    def source_paths(self, gen_result: GenResult) -> list[str]:
        """Return candidate source paths that are Python modules."""
        return sorted({item.path for item in gen_result.files if item.path.endswith(".py")})


def top_level_names(paths: list[str]) -> set[str]:
    """Return importable top-level module/package names for candidate paths."""
    names: set[str] = set()
    for raw in paths:
        parts = PurePosixPath(raw).parts
        if not parts:
            continue
        head = parts[0]
        if len(parts) == 1:
            if head.endswith(".py"):
                names.add(head[:-3])
            continue
        if head in {"src", "lib"} and len(parts) > 1:
            head = parts[1] if len(parts) > 2 else PurePosixPath(parts[1]).stem
        names.add(head)
    return names


@contextmanager
def disposable_workspace(parent: Path | None = None) -> Iterator[SandboxWorkspace]:
    """Create a fresh temporary workspace and remove it on every exit path."""
    root = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=str(parent) if parent else None))
    logger.debug("Created sandbox workspace %s", root)
    try:
        yield SandboxWorkspace(root)
    finally:
        shutil.rmtree(root, ignore_errors=True)
        if root.exists():
            logger.warning("Sandbox workspace %s could not be fully removed.", root)
        else:
            logger.debug("Removed sandbox workspace %s", root)
