"""Pipeline configuration: defaults, validation and file loading."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

import yaml

from code_acceptance.agent.config_validation import (
    require_fraction,
    require_percentage,
    require_positive_int,
    require_positive_number,
    validate_choice,
)
from code_acceptance.agent.providers.base import LOCAL_PROVIDERS

PROVIDERS = {"ollama", "openai", "groq", "together"}
SANDBOX_MODES = {"auto", "docker", "local"}
REFINE_STRATEGIES = {"resynthesize", "fix"}
AUTO_MODEL = "auto"
PROVIDER_DEFAULT = "default"
WEIGHT_TOLERANCE = 1e-6

Stage = Literal["synthesize", "tests", "judge", "refine"]

DEFAULT_ALLOWED_LIBRARIES: tuple[str, ...] = (
    # Standard library
    "__future__",
    "abc",
    "argparse",
    "array",
    "asyncio",
    "base64",
    "bisect",
    "calendar",
    "collections",
    "contextlib",
    "copy",
    "csv",
    "dataclasses",
    "datetime",
    "decimal",
    "enum",
    "fractions",
    "functools",
    "hashlib",
    "heapq",
    "hmac",
    "html",
    "io",
    "itertools",
    "json",
    "logging",
    "math",
    "numbers",
    "operator",
    "os.path",
    "pathlib",
    "pprint",
    "queue",
    "random",
    "re",
    "secrets",
    "statistics",
    "string",
    "struct",
    "textwrap",
    "threading",
    "time",
    "types",
    "typing",
    "unicodedata",
    "uuid",
    "warnings",
    "zoneinfo",
    # Common safe libraries
    "attrs",
    "pydantic",
    "requests",
    # Testing
    "pytest",
    "hypothesis",
    "unittest",
    "unittest.mock",
)

# (local backend, hosted backend) timeouts in seconds.
_STAGE_TIMEOUTS: dict[str, tuple[float, float]] = {
    "synthesize": (300.0, 60.0),
    "tests": (120.0, 30.0),
    "judge": (120.0, 60.0),
    "refine": (120.0, 60.0),
}
_FALLBACK_TIMEOUTS: dict[str, float] = {
    "synthesize": 60.0,
    "tests": 30.0,
    "judge": 30.0,
    "refine": 30.0,
}

_CAMEL_CASE_ALIASES: dict[str, str] = {
    "maxAttempts": "max_attempts",
    "acceptThreshold": "accept_threshold",
    "allowedLibraries": "allowed_libraries",
    "minCoverage": "min_coverage",
    "testTimeout": "test_timeout",
    "globalTimeout": "global_timeout",
    "memoryLimit": "memory_limit",
    "fallbackModel": "fallback_model",
    "dockerImage": "docker_image",
    "refineStrategy": "refine_strategy",
}
# The camelCase timeouts were expressed in milliseconds.
_MILLISECOND_ALIASES = frozenset({"testTimeout", "globalTimeout"})


@dataclass(frozen=True)
class ScoreWeights:
    """Relative importance of each rubric dimension; must sum to 1.0."""

    compilation: float = 0.15
    tests_functional: float = 0.25
    tests_edge: float = 0.15
    types: float = 0.10
    security: float = 0.10
    style: float = 0.05
    conventions: float = 0.20

    def __post_init__(self) -> None:
        total = 0.0
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"weights.{item.name} must be a number.")
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"weights.{item.name} must be a non-negative number.")
            total += value
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"weights must sum to 1.0 (got {total:.6f}).")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> ScoreWeights:
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown score weights: {', '.join(unknown)}.")
        return cls(**data)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable settings for one pipeline run."""

    max_attempts: int = 5
    accept_threshold: float = 0.9
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    allowed_libraries: tuple[str, ...] = DEFAULT_ALLOWED_LIBRARIES
    min_coverage: float = 80.0
    provider: str = "ollama"
    model: str | None = None
    fallback_model: str | None = PROVIDER_DEFAULT
    test_timeout: float = 5.0
    global_timeout: float = 30.0
    memory_limit: int = 512
    sandbox: str = "auto"
    docker_image: str = "code-acceptance-sandbox:latest"
    refine_strategy: str = "resynthesize"

    def __post_init__(self) -> None:
        require_positive_int(self.max_attempts, "max_attempts")
        require_fraction(self.accept_threshold, "accept_threshold")
        require_percentage(self.min_coverage, "min_coverage")
        require_positive_number(self.test_timeout, "test_timeout")
        require_positive_number(self.global_timeout, "global_timeout")
        require_positive_int(self.memory_limit, "memory_limit")
        validate_choice(self.provider, "provider", PROVIDERS)
        validate_choice(self.sandbox, "sandbox", SANDBOX_MODES)
        validate_choice(self.refine_strategy, "refine_strategy", REFINE_STRATEGIES)
        if not isinstance(self.weights, ScoreWeights):
            raise ValueError("weights must be a ScoreWeights instance.")
        if self.model is not None and not self.model.strip():
            raise ValueError("model must be non-empty when set.")
        if self.fallback_model is not None and not self.fallback_model.strip():
            raise ValueError("fallback_model must be non-empty when set.")
        if self.fallback_model == AUTO_MODEL:
            raise ValueError("fallback_model cannot be 'auto'.")
        if not self.docker_image.strip():
            raise ValueError("docker_image must be non-empty.")
        if isinstance(self.allowed_libraries, str):
            raise ValueError("allowed_libraries must be a list of module names.")
        object.__setattr__(self, "allowed_libraries", tuple(self.allowed_libraries))
        for index, name in enumerate(self.allowed_libraries):
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"allowed_libraries[{index}] must be a non-empty string.")

    @property
    def is_local_provider(self) -> bool:
        return self.provider in LOCAL_PROVIDERS

    def stage_timeout(self, stage: Stage) -> float:
        """Return the primary-model timeout for a stage in seconds."""
        local, hosted = _STAGE_TIMEOUTS[stage]
        return local if self.is_local_provider else hosted

    def fallback_timeout(self, stage: Stage) -> float:
        """Return the shorter timeout used for the fallback model."""
        return _FALLBACK_TIMEOUTS[stage]

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> PipelineConfig:
        """Build a config from snake_case or legacy camelCase keys."""
        if not isinstance(data, dict):
            raise ValueError("Pipeline configuration must be a mapping.")
        normalized: dict[str, Any] = {}
        for key, value in data.items():
            target = _CAMEL_CASE_ALIASES.get(key, key)
            if key in _MILLISECOND_ALIASES and isinstance(value, int | float):
                value = value / 1000.0
            normalized[target] = value

        known = {item.name for item in fields(cls)}
        unknown = sorted(set(normalized) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}.")
        if "weights" in normalized:
            weights = normalized["weights"]
            if not isinstance(weights, dict):
                raise ValueError("weights must be a mapping.")
            normalized["weights"] = ScoreWeights.from_mapping(weights)
        if "allowed_libraries" in normalized:
            libraries = normalized["allowed_libraries"]
            if not isinstance(libraries, list | tuple):
                raise ValueError("allowed_libraries must be a list of module names.")
            normalized["allowed_libraries"] = tuple(libraries)
        return cls(**normalized)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["allowed_libraries"] = list(self.allowed_libraries)
        return payload


def load_pipeline_config(path: Path) -> PipelineConfig:
    """Load configuration from a YAML or JSON file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if data is None:
        return PipelineConfig()
    return PipelineConfig.from_mapping(data)
