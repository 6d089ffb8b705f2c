"""Narrow interfaces to external collaborators and their default implementations.

The pipeline consumes a project brief, retrieved code snippets and
repository checks, but does not own how any of them are produced. Each
collaborator is a Protocol with a trivial default so a run works without a
brief extractor or a retrieval engine.
"""

from __future__ import annotations

import ast
import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from code_acceptance.agent.pipeline.models import GenResult, SourceFile

logger = logging.getLogger(__name__)

BRIEF_CACHE_TTL_SECONDS = 300.0
MAX_KEYWORDS = 5
_PROGRAMMING_TERMS = (
    "function",
    "class",
    "protocol",
    "type",
    "module",
    "service",
    "util",
    "helper",
)
_CAPITALIZED_WORD = re.compile(r"\b([A-Z][a-z]+(?:[A-Z][a-z]+)*)\b")
_DEF_OR_CLASS = re.compile(r"^\s*(?:async\s+)?(?:def|class)\s+(\w+)", re.M)

_NAMING_PATTERNS: dict[str, re.Pattern[str]] = {
    "snake_case": re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$"),
    "kebab-case": re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$"),
    "camelCase": re.compile(r"^[a-z][a-zA-Z0-9]*$"),
    "PascalCase": re.compile(r"^[A-Z][a-zA-Z0-9]*$"),
}


@dataclass(frozen=True)
class Glossary:
    entities: tuple[str, ...] = ()
    enums: tuple[str, ...] = ()
    constants: tuple[str, ...] = ()

    def terms(self) -> tuple[str, ...]:
        return self.entities + self.enums + self.constants


@dataclass(frozen=True)
class NamingConventions:
    variables: str = "snake_case"
    types: str = "PascalCase"
    constants: str = "UPPER_SNAKE_CASE"
    files: str = "snake_case"


@dataclass(frozen=True)
class ProjectBrief:
    """Conventions of the repository the candidate should blend into."""

    language: str = "python"
    naming: NamingConventions = field(default_factory=NamingConventions)
    glossary: Glossary = field(default_factory=Glossary)
    testing_framework: str = "pytest"
    test_pattern: str = "tests/test_*.py"
    layering: str = "single"
    boundaries: str = ""
    do_list: tuple[str, ...] = ()
    dont_list: tuple[str, ...] = ()


class BriefProvider(Protocol):
    def get_brief(self) -> ProjectBrief: ...


class StaticBriefProvider:
    """Return the same brief every time (the default collaborator)."""

    def __init__(self, brief: ProjectBrief | None = None) -> None:
        self.brief = brief or ProjectBrief()

    def get_brief(self) -> ProjectBrief:
        return self.brief


class CachedBriefProvider:
    """Cache another provider's brief for a fixed time-to-live."""

    def __init__(
        self,
        inner: BriefProvider,
        *,
        ttl_seconds: float = BRIEF_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: tuple[ProjectBrief, float] | None = None

    def get_brief(self) -> ProjectBrief:
        now = self._clock()
        if self._cached is not None and (now - self._cached[1]) < self.ttl_seconds:
            return self._cached[0]
        brief = self.inner.get_brief()
        self._cached = (brief, now)
        return brief


def format_brief_for_prompt(brief: ProjectBrief) -> str:
    """Render the brief as the prompt section the synthesizer embeds."""
    lines = [
        "## PROJECT CONVENTIONS",
        f"- Language: {brief.language}",
        f"- Naming: variables {brief.naming.variables}, types {brief.naming.types}, "
        f"constants {brief.naming.constants}, files {brief.naming.files}",
        f"- Testing: {brief.testing_framework} ({brief.test_pattern})",
        f"- Layering: {brief.layering}",
    ]
    if brief.boundaries:
        lines.append(f"- Boundaries: {brief.boundaries}")
    entities = brief.glossary.entities[:10]
    if entities:
        lines.append(f"- Use existing domain names from glossary: {', '.join(entities)}")
    lines.extend(f"- DO: {item}" for item in brief.do_list)
    lines.extend(f"- DON'T: {item}" for item in brief.dont_list)
    return "\n".join(lines)


@dataclass(frozen=True)
class CodeSnippet:
    file: str
    reason: str
    content: str


class ContextRetriever(Protocol):
    def retrieve(self, keywords: list[str]) -> list[CodeSnippet]: ...


class NullContextRetriever:
    """Retriever that never finds anything."""

    def retrieve(self, keywords: list[str]) -> list[CodeSnippet]:
        _ = keywords
        return []


def extract_keywords(spec: str) -> list[str]:
    """Return up to five retrieval keywords: capitalized words, then known terms."""
    keywords = [match.group(1) for match in _CAPITALIZED_WORD.finditer(spec)]
    lowered = spec.lower()
    keywords.extend(term for term in _PROGRAMMING_TERMS if term in lowered)
    return keywords[:MAX_KEYWORDS]


RepoCheck = Callable[[Path, GenResult], list[str]]


@dataclass(frozen=True)
class RepoChecks:
    """Pure checks run against a materialized candidate after the gates."""

    boundary: tuple[RepoCheck, ...] = ()
    custom_rules: tuple[RepoCheck, ...] = ()
    edit: tuple[RepoCheck, ...] = ()


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts = re.split(r"(\*\*|\*)", pattern)
    translated = "".join(
        ".*" if part == "**" else "[^/]*" if part == "*" else re.escape(part) for part in parts
    )
    return re.compile(f"^{translated}$")


def path_matches(path: str, pattern: str) -> bool:
    """Return whether path equals, lies under, or glob-matches pattern."""
    return path.startswith(pattern) or bool(_glob_to_regex(pattern).match(path))


@dataclass(frozen=True)
class ReadOnlyPathCheck:
    """Flag candidate files written to read-only locations."""

    read_only_paths: tuple[str, ...]
    allowed_paths: tuple[str, ...] = ()

    def __call__(self, workspace_dir: Path, gen_result: GenResult) -> list[str]:
        _ = workspace_dir
        violations: list[str] = []
        for item in gen_result.all_files():
            if any(path_matches(item.path, allowed) for allowed in self.allowed_paths):
                continue
            if any(path_matches(item.path, read_only) for read_only in self.read_only_paths):
                violations.append(f"{item.path}: File is read-only and cannot be modified")
        return violations


def run_repo_checks(
    checks: Iterable[RepoCheck],
    workspace_dir: Path,
    gen_result: GenResult,
) -> list[str]:
    findings: list[str] = []
    for check in checks:
        findings.extend(check(workspace_dir, gen_result))
    return findings


@dataclass(frozen=True)
class ConventionScore:
    total: float
    identifier_match: float
    file_naming: float
    boundaries: float


def levenshtein_distance(left: str, right: str) -> int:
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            cost = 0 if left_char == right_char else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def extract_identifiers(files: Iterable[SourceFile]) -> list[str]:
    """Collect function, class and UPPER_CASE constant names from Python sources."""
    identifiers: list[str] = []
    for item in files:
        try:
            tree = ast.parse(item.content)
        except SyntaxError:
            identifiers.extend(
                match.group(1)
                for match in _DEF_OR_CLASS.finditer(item.content)
            )
            continue
        for node in ast.walk(tree):
            if isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef):
                identifiers.append(node.name)
            elif isinstance(node, ast.Assign):
                for target in node.targets:
                    if isinstance(target, ast.Name) and target.id.isupper():
                        identifiers.append(target.id)
    return identifiers


def _identifier_match_score(identifiers: list[str], glossary: tuple[str, ...]) -> float:
    if not identifiers or not glossary:
        return 1.0
    lowered_terms = [term.lower() for term in glossary]
    matched = 0
    for identifier in identifiers:
        if identifier in glossary:
            matched += 1
            continue
        lowered = identifier.lower()
        if min(levenshtein_distance(lowered, term) for term in lowered_terms) <= 2:
            matched += 1
    return matched / len(identifiers)


def _file_naming_score(files: tuple[SourceFile, ...], pattern_name: str) -> float:
    pattern = _NAMING_PATTERNS.get(pattern_name)
    named = [
        PurePosixPath(item.path).stem
        for item in files
        if not PurePosixPath(item.path).stem.startswith("__")
    ]
    if pattern is None or not named:
        return 1.0
    return sum(1 for stem in named if pattern.match(stem)) / len(named)


def _boundaries_score(violations: int) -> float:
    if violations == 0:
        return 1.0
    if violations <= 5:
        return 0.8
    if violations <= 10:
        return 0.6
    if violations <= 20:
        return 0.4
    return 0.2


def calculate_convention_score(
    gen_result: GenResult,
    brief: ProjectBrief,
    boundary_errors: Iterable[str] = (),
    custom_rule_errors: Iterable[str] = (),
) -> ConventionScore:
    """Score how well a candidate follows the brief (40/30/30 weighting)."""
    identifier_match = _identifier_match_score(
        extract_identifiers(gen_result.files), brief.glossary.terms()
    )
    file_naming = _file_naming_score(gen_result.files, brief.naming.files)
    boundaries = _boundaries_score(len(list(boundary_errors)) + len(list(custom_rule_errors)))
    total = identifier_match * 0.4 + file_naming * 0.3 + boundaries * 0.3
    return ConventionScore(
        total=total,
        identifier_match=identifier_match,
        file_naming=file_naming,
        boundaries=boundaries,
    )
