"""Registry routing generation calls to providers and selecting models."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelProvider,
    ProviderError,
    Quality,
)

logger = logging.getLogger(__name__)

DISCOVERY_TTL_SECONDS = 300.0
# Typical request size used to compare prices against ``max_cost``.
_ESTIMATE_INPUT_TOKENS = 1000
_ESTIMATE_OUTPUT_TOKENS = 500

Complexity = Literal["simple", "medium", "complex"]
Task = Literal["code", "chat", "analysis"]

_TARGET_QUALITY: dict[str, Quality] = {"simple": "good", "medium": "better", "complex": "best"}
_SPEED_ORDER = {"fast": 0, "medium": 1, "slow": 2}


@dataclass
class DiscoveryCache:
    """Models discovered across providers and when they were fetched."""

    models: dict[str, ModelInfo] = field(default_factory=dict)
    fetched_at: float | None = None

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        if self.fetched_at is None or not self.models:
            return False
        return (now - self.fetched_at) < ttl_seconds

    def replace(self, models: list[ModelInfo], now: float) -> None:
        self.models = {info.id: info for info in models}
        self.fetched_at = now


@dataclass(frozen=True)
class ModelCriteria:
    """Constraints used by ``ProviderRegistry.select_model``."""

    task: Task = "code"
    complexity: Complexity = "medium"
    prefer_local: bool = False
    max_cost: float | None = None
    required_capabilities: tuple[str, ...] = ()


def estimated_request_cost(model: ModelInfo) -> float:
    """Return the price of a typical request (1000 in / 500 out tokens)."""
    if model.pricing is None:
        return 0.0
    return (_ESTIMATE_INPUT_TOKENS / 1_000_000) * model.pricing.input_per_million + (
        _ESTIMATE_OUTPUT_TOKENS / 1_000_000
    ) * model.pricing.output_per_million


class ProviderRegistry:
    """Holds providers and a TTL-bounded cache of their models."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DISCOVERY_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._providers: dict[str, ModelProvider] = {}
        self.cache = DiscoveryCache()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def register(self, provider: ModelProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> ModelProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderError(f"Provider '{name}' is not registered.", provider=name) from None

    def providers(self) -> list[ModelProvider]:
        return list(self._providers.values())

    def discover_all_models(self, *, force: bool = False) -> list[ModelInfo]:
        """Return models from all available providers, cached for the TTL."""
        now = self._clock()
        if not force and self.cache.is_fresh(now, self.ttl_seconds):
            return list(self.cache.models.values())

        discovered: list[ModelInfo] = []
        for provider in self._providers.values():
            try:
                if not provider.is_available():
                    logger.info("Provider %s not available; skipping discovery.", provider.name)
                    continue
                models = provider.discover_models()
            except ProviderError as exc:
                logger.warning("Model discovery failed for %s: %s", provider.name, exc)
                continue
            logger.info("Discovered %s models from %s.", len(models), provider.name)
            discovered.extend(models)
        self.cache.replace(discovered, now)
        return discovered

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        cached = self.cache.models.get(model_id)
        if cached is not None:
            return cached
        for provider in self._providers.values():
            try:
                info = provider.get_model_info(model_id)
            except ProviderError:
                continue
            if info is not None:
                self.cache.models[model_id] = info
                return info
        return None

    def generate(self, model_id: str, request: GenerateRequest) -> GenerateResponse:
        """Route a request to whichever provider serves ``model_id``."""
        info = self.get_model_info(model_id)
        if info is None:
            raise ProviderError(f"Model {model_id} not found in any provider.", model=model_id)
        provider = self.get(info.provider)
        return provider.generate(request.for_model(model_id))

    def select_model(self, criteria: ModelCriteria) -> ModelInfo | None:
        """Pick the best discovered model for the given criteria.

        Candidates are filtered by required capabilities and by the estimated
        cost of a typical request, narrowed to local models when asked (and
        when any exist), then ordered: free first, then quality matching the
        task complexity, then speed for simple tasks.
        """
        candidates = self.discover_all_models()
        if criteria.required_capabilities:
            candidates = [
                info
                for info in candidates
                if all(cap in info.capabilities for cap in criteria.required_capabilities)
            ]
        if criteria.max_cost is not None:
            limit = criteria.max_cost
            candidates = [info for info in candidates if estimated_request_cost(info) <= limit]
        if criteria.prefer_local:
            local = [info for info in candidates if info.is_local]
            if local:
                candidates = local
        if not candidates:
            return None

        target = _TARGET_QUALITY[criteria.complexity]

        def _rank(info: ModelInfo) -> tuple[int, int, int]:
            speed = _SPEED_ORDER[info.speed] if criteria.complexity == "simple" else 0
            return (0 if info.is_free else 1, 0 if info.quality == target else 1, speed)

        chosen = sorted(candidates, key=_rank)[0]
        logger.info(
            "Selected model %s/%s for %s task (%s).",
            chosen.provider,
            chosen.id,
            criteria.task,
            criteria.complexity,
        )
        return chosen
