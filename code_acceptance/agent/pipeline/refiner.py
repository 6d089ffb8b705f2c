"""Refine stage: minimal edits to a failed candidate guided by the fix plan."""

from __future__ import annotations

import ast
import difflib
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from typing import assert_never

from code_acceptance.agent.pipeline.config import PipelineConfig
from code_acceptance.agent.pipeline.models import (
    ExecReport,
    FixOperation,
    FixPlanItem,
    GenResult,
    JudgeVerdict,
    PatchSummary,
    SourceFile,
)
from code_acceptance.agent.pipeline.prompts import REFINE_SYSTEM_PROMPT, build_refine_user_prompt
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient, ModelCallError

logger = logging.getLogger(__name__)

REFINE_MAX_TOKENS = 8192
_PUBLIC_DEF = re.compile(r"^(?:async\s+def|def|class)\s+([A-Za-z]\w*)", re.M)
_PUBLIC_ASSIGN = re.compile(r"^([A-Za-z]\w*)\s*(?::[^=\n]+)?=", re.M)


class RefinementError(RuntimeError):
    """Raised when the fixer could not produce a candidate."""

    def __init__(self, message: str, *, cost: float = 0.0) -> None:
        super().__init__(message)
        self.cost = cost


@dataclass(frozen=True)
class ApiCheckResult:
    ok: bool
    violations: tuple[str, ...] = ()


def _literal_all(tree: ast.Module) -> set[str] | None:
    for node in tree.body:
        if isinstance(node, ast.Assign) and any(
            isinstance(target, ast.Name) and target.id == "__all__" for target in node.targets
        ):
            try:
                value = ast.literal_eval(node.value)
            except ValueError:
                return None
            if isinstance(value, list | tuple):
                return {str(item) for item in value}
    return None


def public_names(source: str) -> set[str]:
    """Return the public top-level names of a module.

    ``__all__`` wins when it is a literal; otherwise every top-level function,
    class, constant and type alias not starting with an underscore counts.
    Unparsable sources are scanned with regular expressions instead.
    """
    try:
        tree = ast.parse(source)
    except SyntaxError:
        names = set(_PUBLIC_DEF.findall(source)) | set(_PUBLIC_ASSIGN.findall(source))
        return {name for name in names if not name.startswith("_")}

    exported = _literal_all(tree)
    if exported is not None:
        return exported
    names: set[str] = set()
    for node in tree.body:
        if isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef):
            names.add(node.name)
        elif isinstance(node, ast.Assign):
            names.update(target.id for target in node.targets if isinstance(target, ast.Name))
        elif isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
            names.add(node.target.id)
        elif isinstance(node, ast.TypeAlias) and isinstance(node.name, ast.Name):
            names.add(node.name.id)
    return {name for name in names if not name.startswith("_")}


def validate_public_api(
    before: Iterable[SourceFile],
    after: Iterable[SourceFile],
) -> ApiCheckResult:
    """Flag files and public names present before an edit but missing after it."""
    after_by_path = {item.path: item for item in after}
    violations: list[str] = []
    for item in before:
        updated = after_by_path.get(item.path)
        if updated is None:
            violations.append(f"File removed: {item.path}")
            continue
        for name in sorted(public_names(item.content) - public_names(updated.content)):
            violations.append(f"Removed export: {name} from {item.path}")
    return ApiCheckResult(ok=not violations, violations=tuple(violations))


def unified_diff(before: Iterable[SourceFile], after: Iterable[SourceFile]) -> str:
    """Return a unified diff across every file of two candidates."""
    old = {item.path: item.content for item in before}
    new = {item.path: item.content for item in after}
    chunks: list[str] = []
    for path in sorted(old.keys() | new.keys()):
        chunks.extend(
            difflib.unified_diff(
                old.get(path, "").splitlines(keepends=True),
                new.get(path, "").splitlines(keepends=True),
                fromfile=f"a/{path}",
                tofile=f"b/{path}",
            )
        )
    return "".join(chunks)


def compute_patch_summary(
    previous: Iterable[SourceFile] | None,
    current: Iterable[SourceFile],
) -> PatchSummary:
    """Count changed files and added/removed lines between two candidates."""
    old = {item.path: item.content for item in previous or ()}
    new = {item.path: item.content for item in current}
    changed: list[str] = []
    additions = deletions = 0
    for path in sorted(old.keys() | new.keys()):
        if old.get(path) == new.get(path):
            continue
        changed.append(path)
        for line in difflib.unified_diff(
            old.get(path, "").splitlines(), new.get(path, "").splitlines(), lineterm="", n=0
        ):
            if line.startswith("+") and not line.startswith("+++"):
                additions += 1
            elif line.startswith("-") and not line.startswith("---"):
                deletions += 1
    return PatchSummary(files_changed=tuple(changed), additions=additions, deletions=deletions)


def merge_candidate_files(
    previous: tuple[SourceFile, ...],
    updated: tuple[SourceFile, ...],
    fix_plan: Iterable[FixPlanItem] = (),
) -> tuple[SourceFile, ...]:
    """Overlay fixer output on the previous files, dropping files the plan removes."""
    merged = {item.path: item for item in previous}
    for item in fix_plan:
        operation = item.operation
        match operation:
            case FixOperation.REMOVE:
                merged.pop(item.file, None)
            case FixOperation.EDIT | FixOperation.ADD:
                pass
            case _:
                assert_never(operation)
    for item in updated:
        merged[item.path] = item
    return tuple(merged.values())


class Refiner:
    """Asks the model for the smallest edit that addresses the fix plan."""

    def __init__(self, client: FallbackModelClient) -> None:
        self.client = client

    def fix(
        self,
        verdict: JudgeVerdict,
        current_files: tuple[SourceFile, ...],
        report: ExecReport,
        previous_files: tuple[SourceFile, ...] | None = None,
        *,
        config: PipelineConfig,
    ) -> GenResult:
        diff_text = unified_diff(previous_files, current_files) if previous_files else None
        try:
            reply = self.client.generate_json(
                system=REFINE_SYSTEM_PROMPT,
                prompt=build_refine_user_prompt(verdict, current_files, report, diff_text),
                timeout_seconds=config.stage_timeout("refine"),
                fallback_timeout_seconds=config.fallback_timeout("refine"),
                validate=GenResult.from_dict,
                max_tokens=REFINE_MAX_TOKENS,
            )
        except ModelCallError as exc:
            raise RefinementError(f"Refinement failed: {exc}", cost=exc.cost) from exc
        logger.info(
            "Refiner returned %s file(s) and %s test file(s).",
            len(reply.value.files),
            len(reply.value.tests),
        )
        return replace(reply.value, cost=reply.cost)
