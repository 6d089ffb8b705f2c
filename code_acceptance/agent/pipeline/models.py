"""Data models exchanged between the pipeline stages."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from code_acceptance.agent.providers.json_output import ModelResponseError

SCORE_DIMENSIONS: tuple[str, ...] = (
    "compilation",
    "tests_functional",
    "tests_edge",
    "types",
    "style",
    "security",
    "conventions",
)
BINARY_DIMENSIONS = frozenset({"compilation", "types", "security"})
LOGS_TAIL_LINES = 50


def _require_string(value: Any, field_name: str) -> str:
    """Validate and return a non-empty string."""
    if not isinstance(value, str):
        raise ModelResponseError(f"Expected '{field_name}' to be a string.")
    cleaned = value.strip()
    if not cleaned:
        raise ModelResponseError(f"Expected '{field_name}' to be non-empty.")
    return cleaned


def _optional_string(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ModelResponseError(f"Expected '{field_name}' to be a string.")
    return value.strip()


def _require_list(value: Any, field_name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ModelResponseError(f"Expected '{field_name}' to be a list.")
    return value


def _require_dict(value: Any, field_name: str) -> dict[str, Any]:
    """Validate and return a dictionary object."""
    if not isinstance(value, dict):
        raise ModelResponseError(f"Expected '{field_name}' to be an object.")
    return value


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class SourceFile:
    """One file of a candidate, addressed by a relative POSIX path."""

    path: str
    content: str

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "file") -> SourceFile:
        payload = _require_dict(data, field_name)
        content = payload.get("content")
        if not isinstance(content, str):
            raise ModelResponseError(f"Expected '{field_name}.content' to be a string.")
        return cls(path=_require_string(payload.get("path"), f"{field_name}.path"), content=content)

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass(frozen=True)
class ConventionUse:
    """A new identifier and the existing convention it mirrors."""

    new: str
    mirrors: str

    @classmethod
    def from_dict(cls, data: Any) -> ConventionUse:
        payload = _require_dict(data, "conventions_used[]")
        return cls(
            new=_optional_string(payload.get("new"), "conventions_used[].new"),
            mirrors=_optional_string(payload.get("mirrors"), "conventions_used[].mirrors"),
        )


def parse_source_files(value: Any, field_name: str) -> tuple[SourceFile, ...]:
    items = _require_list(value, field_name)
    return tuple(
        SourceFile.from_dict(item, f"{field_name}[{index}]") for index, item in enumerate(items)
    )


@dataclass(frozen=True)
class GenResult:
    """A candidate: source files, test files and bookkeeping from generation."""

    files: tuple[SourceFile, ...]
    tests: tuple[SourceFile, ...] = ()
    conventions_used: tuple[ConventionUse, ...] = ()
    notes: str = ""
    cost: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, require_files: bool = True) -> GenResult:
        """Build a candidate from model JSON; ``files`` must be a non-empty list."""
        files = parse_source_files(data.get("files"), "files")
        if require_files and not files:
            raise ModelResponseError("Expected 'files' to contain at least one file.")
        conventions = _require_list(
            _first_present(data, "conventions_used", "conventionsUsed"), "conventions_used"
        )
        return cls(
            files=files,
            tests=parse_source_files(data.get("tests"), "tests"),
            conventions_used=tuple(ConventionUse.from_dict(item) for item in conventions),
            notes=_optional_string(data.get("notes"), "notes"),
        )

    def all_files(self) -> tuple[SourceFile, ...]:
        return self.files + self.tests

    def with_tests(self, tests: tuple[SourceFile, ...]) -> GenResult:
        return replace(self, tests=tests)

    def with_cost(self, cost: float) -> GenResult:
        return replace(self, cost=cost)

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": [item.to_dict() for item in self.files],
            "tests": [item.to_dict() for item in self.tests],
            "conventions_used": [
                {"new": item.new, "mirrors": item.mirrors} for item in self.conventions_used
            ],
            "notes": self.notes,
        }


@dataclass(frozen=True)
class TestSummary:
    """Outcome of the test gate."""

    __test__ = False

    passed: int = 0
    failed: int = 0
    details: tuple[str, ...] = ()
    coverage_pct: float | None = None


@dataclass(frozen=True)
class SecuritySummary:
    """Outcome of the audit gate."""

    violations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecReport:
    """Aggregated result of running every gate against one candidate."""

    compiled: bool
    lint_errors: tuple[str, ...] = ()
    type_errors: tuple[str, ...] = ()
    boundary_errors: tuple[str, ...] = ()
    custom_rule_errors: tuple[str, ...] = ()
    edit_violations: tuple[str, ...] = ()
    test: TestSummary = field(default_factory=TestSummary)
    security: SecuritySummary = field(default_factory=SecuritySummary)
    logs_tail: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if len(self.logs_tail) > LOGS_TAIL_LINES:
            object.__setattr__(self, "logs_tail", self.logs_tail[-LOGS_TAIL_LINES:])

    def with_edit_violations(self, extra: list[str] | tuple[str, ...]) -> ExecReport:
        if not extra:
            return self
        return replace(self, edit_violations=self.edit_violations + tuple(extra))

    def to_dict(self) -> dict[str, Any]:
        return {
            "compiled": self.compiled,
            "lint_errors": list(self.lint_errors),
            "type_errors": list(self.type_errors),
            "boundary_errors": list(self.boundary_errors),
            "custom_rule_errors": list(self.custom_rule_errors),
            "edit_violations": list(self.edit_violations),
            "test": {
                "passed": self.test.passed,
                "failed": self.test.failed,
                "details": list(self.test.details),
                "coverage_pct": self.test.coverage_pct,
            },
            "security": {"violations": list(self.security.violations)},
            "logs_tail": list(self.logs_tail),
        }


class Verdict(StrEnum):
    ACCEPT = "accept"
    REVISE = "revise"
    REJECT = "reject"


class FixOperation(StrEnum):
    EDIT = "edit"
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class Scores:
    """Per-dimension rubric scores in [0, 1]."""

    compilation: float
    tests_functional: float
    tests_edge: float
    types: float
    style: float
    security: float
    conventions: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Scores:
        """Parse scores, clamping to [0, 1] and rounding binary dimensions."""
        payload = _require_dict(data, "scores")
        values: dict[str, float | None] = {}
        for name in SCORE_DIMENSIONS:
            raw = payload.get(name)
            if raw is None:
                if name == "conventions":
                    values[name] = None
                    continue
                raise ModelResponseError(f"Missing score '{name}'.")
            if isinstance(raw, bool) or not isinstance(raw, int | float):
                raise ModelResponseError(f"Expected score '{name}' to be a number.")
            if not math.isfinite(raw):
                raise ModelResponseError(f"Expected score '{name}' to be a finite number.")
            value = _clamp(float(raw))
            if name in BINARY_DIMENSIONS:
                value = 1.0 if value >= 0.5 else 0.0
            values[name] = value
        return cls(**values)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, float | None]:
        return {name: getattr(self, name) for name in SCORE_DIMENSIONS}


@dataclass(frozen=True)
class Explanations:
    root_cause: str
    minimal_fix: str


@dataclass(frozen=True)
class FixPlanItem:
    """One targeted change the next attempt should make."""

    file: str
    operation: FixOperation
    brief: str

    @classmethod
    def from_dict(cls, data: Any) -> FixPlanItem:
        payload = _require_dict(data, "fix_plan[]")
        raw_operation = _first_present(payload, "operation", "op")
        try:
            operation = FixOperation(str(raw_operation).strip().lower())
        except ValueError:
            raise ModelResponseError(f"Unknown fix operation: {raw_operation!r}") from None
        return cls(
            file=_optional_string(payload.get("file"), "fix_plan[].file") or "unknown",
            operation=operation,
            brief=_optional_string(payload.get("brief"), "fix_plan[].brief"),
        )


@dataclass(frozen=True)
class JudgeVerdict:
    """Structured rubric assessment of one attempt."""

    verdict: Verdict
    scores: Scores
    explanations: Explanations
    fix_plan: tuple[FixPlanItem, ...] = ()
    cost: float = 0.0

    def __post_init__(self) -> None:
        if self.verdict is Verdict.ACCEPT and (
            self.scores.compilation == 0 or self.scores.security == 0
        ):
            object.__setattr__(self, "verdict", Verdict.REVISE)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JudgeVerdict:
        raw_verdict = data.get("verdict")
        try:
            verdict = Verdict(str(raw_verdict).strip().lower())
        except ValueError:
            raise ModelResponseError(f"Unknown verdict: {raw_verdict!r}") from None
        explanations = data.get("explanations") or {}
        explanations = _require_dict(explanations, "explanations")
        return cls(
            verdict=verdict,
            scores=Scores.from_dict(data.get("scores")),
            explanations=Explanations(
                root_cause=_optional_string(
                    explanations.get("root_cause"), "explanations.root_cause"
                ),
                minimal_fix=_optional_string(
                    explanations.get("minimal_fix"), "explanations.minimal_fix"
                ),
            ),
            fix_plan=tuple(
                FixPlanItem.from_dict(item)
                for item in _require_list(data.get("fix_plan"), "fix_plan")
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "scores": self.scores.to_dict(),
            "explanations": {
                "root_cause": self.explanations.root_cause,
                "minimal_fix": self.explanations.minimal_fix,
            },
            "fix_plan": [
                {"file": item.file, "operation": item.operation.value, "brief": item.brief}
                for item in self.fix_plan
            ],
        }


@dataclass(frozen=True)
class PatchSummary:
    """Line-level change summary between two consecutive candidates."""

    files_changed: tuple[str, ...] = ()
    additions: int = 0
    deletions: int = 0


@dataclass(frozen=True)
class CostBreakdown:
    synthesize: float = 0.0
    judge: float = 0.0
    refine: float = 0.0

    @property
    def total(self) -> float:
        return self.synthesize + self.judge + self.refine

    def add(
        self, *, synthesize: float = 0.0, judge: float = 0.0, refine: float = 0.0
    ) -> CostBreakdown:
        return CostBreakdown(
            synthesize=self.synthesize + synthesize,
            judge=self.judge + judge,
            refine=self.refine + refine,
        )


@dataclass(frozen=True)
class PipelineResult:
    """Final outcome of a pipeline run."""

    ok: bool
    files: tuple[SourceFile, ...]
    tests: tuple[SourceFile, ...]
    score: float
    attempts: int
    verdict: JudgeVerdict | None = None
    exec_report: ExecReport | None = None
    cost_breakdown: CostBreakdown = field(default_factory=CostBreakdown)

    @property
    def total_cost(self) -> float:
        return self.cost_breakdown.total

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "files": [item.to_dict() for item in self.files],
            "tests": [item.to_dict() for item in self.tests],
            "score": self.score,
            "attempts": self.attempts,
            "verdict": self.verdict.to_dict() if self.verdict is not None else None,
            "exec_report": self.exec_report.to_dict() if self.exec_report is not None else None,
            "total_cost": self.total_cost,
            "cost_breakdown": {
                "synthesize": self.cost_breakdown.synthesize,
                "judge": self.cost_breakdown.judge,
                "refine": self.cost_breakdown.refine,
            },
        }
