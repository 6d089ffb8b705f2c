"""Provider abstraction for model interactions."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Literal, Protocol

Speed = Literal["fast", "medium", "slow"]
Quality = Literal["good", "better", "best"]

LOCAL_PROVIDERS = frozenset({"ollama"})


class ProviderError(RuntimeError):
    """Raised when a backend call fails (network, timeout, quota, HTTP status)."""

    def __init__(self, message: str, *, provider: str = "", model: str = "") -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model


@dataclass(frozen=True)
class ModelPricing:
    """Price in USD per million tokens."""

    input_per_million: float
    output_per_million: float


@dataclass(frozen=True)
class ModelInfo:
    """Static description of a model a provider can serve."""

    id: str
    name: str
    provider: str
    context_length: int
    capabilities: tuple[str, ...] = ("chat",)
    speed: Speed = "medium"
    quality: Quality = "good"
    size: int | None = None
    pricing: ModelPricing | None = None

    @property
    def is_free(self) -> bool:
        """Return whether calls to this model cost nothing."""
        if self.pricing is None:
            return True
        return self.pricing.input_per_million == 0 and self.pricing.output_per_million == 0

    @property
    def is_local(self) -> bool:
        """Return whether the model runs on a local backend."""
        return self.provider in LOCAL_PROVIDERS


@dataclass(frozen=True)
class GenerateRequest:
    """A single text-generation call."""

    prompt: str
    model: str
    system: str | None = None
    temperature: float = 0.2
    max_tokens: int = 4096
    timeout_seconds: float = 60.0
    json_mode: bool = True
    stop: tuple[str, ...] = field(default_factory=tuple)

    def for_model(self, model: str, *, timeout_seconds: float | None = None) -> GenerateRequest:
        """Return a copy targeting another model, optionally with a new timeout."""
        if timeout_seconds is None:
            return replace(self, model=model)
        return replace(self, model=model, timeout_seconds=timeout_seconds)


@dataclass(frozen=True)
class GenerateResponse:
    """Normalized result of a text-generation call."""

    text: str
    model: str
    provider: str
    tokens_input: int
    tokens_output: int
    cost: float
    time_ms: int
    finish_reason: str = "stop"

    @property
    def tokens_total(self) -> int:
        """Return input plus output token count."""
        return self.tokens_input + self.tokens_output


class ModelProvider(Protocol):
    """Interface implemented by all model backends."""

    name: str

    def is_available(self) -> bool:
        """Return whether the backend can currently serve requests."""
        ...

    def discover_models(self) -> list[ModelInfo]:
        """Return the models this backend offers."""
        ...

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Run one generation call or raise ProviderError."""
        ...

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        """Return metadata for one model, if known."""
        ...


def estimate_tokens(text: str) -> int:
    """Approximate token count as one token per four characters."""
    return math.ceil(len(text) / 4)


def calculate_cost(model: ModelInfo | None, tokens_input: int, tokens_output: int) -> float:
    """Return USD cost for a call given the model's per-million pricing."""
    if model is None or model.pricing is None:
        return 0.0
    return (tokens_input / 1_000_000) * model.pricing.input_per_million + (
        tokens_output / 1_000_000
    ) * model.pricing.output_per_million
