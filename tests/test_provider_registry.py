"""Tests for provider registration, discovery caching and model selection."""

from __future__ import annotations

import pytest

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    ModelInfo,
    ModelPricing,
    ProviderError,
    calculate_cost,
    estimate_tokens,
)
from code_acceptance.agent.providers.mock_provider import MockProvider
from code_acceptance.agent.providers.registry import (
    ModelCriteria,
    ProviderRegistry,
    estimated_request_cost,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _model(
    model_id: str,
    provider: str,
    *,
    quality: str = "good",
    speed: str = "medium",
    price: float | None = None,
    capabilities: tuple[str, ...] = ("chat", "code"),
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=model_id,
        provider=provider,
        context_length=8192,
        capabilities=capabilities,
        speed=speed,  # type: ignore[arg-type]
        quality=quality,  # type: ignore[arg-type]
        pricing=None if price is None else ModelPricing(price, price),
    )


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


def test_calculate_cost_uses_per_million_pricing() -> None:
    info = _model("m", "openai", price=2.0)
    assert calculate_cost(info, 1_000_000, 500_000) == pytest.approx(3.0)
    assert calculate_cost(_model("free", "ollama"), 10, 10) == 0.0


def test_discovery_is_cached_for_ttl_and_refreshed_after() -> None:
    clock = _Clock()
    provider = MockProvider([], name="ollama", models=[_model("qwen", "ollama")])
    registry = ProviderRegistry(ttl_seconds=300, clock=clock)
    registry.register(provider)

    registry.discover_all_models()
    clock.now = 299
    registry.discover_all_models()
    assert provider.discover_calls == 1

    clock.now = 301
    registry.discover_all_models()
    assert provider.discover_calls == 2

    registry.discover_all_models(force=True)
    assert provider.discover_calls == 3


def test_unavailable_providers_are_skipped_during_discovery() -> None:
    registry = ProviderRegistry()
    registry.register(MockProvider([], name="groq", models=[_model("g", "groq")], available=False))
    registry.register(MockProvider([], name="ollama", models=[_model("o", "ollama")]))

    assert [info.id for info in registry.discover_all_models()] == ["o"]


def test_get_unknown_provider_raises() -> None:
    with pytest.raises(ProviderError, match="not registered"):
        ProviderRegistry().get("nope")


def test_generate_routes_to_owning_provider() -> None:
    ollama = MockProvider(["{}"], name="ollama", models=[_model("qwen", "ollama")])
    groq = MockProvider([], name="groq", models=[_model("llama", "groq", price=0.5)])
    registry = ProviderRegistry()
    registry.register(ollama)
    registry.register(groq)

    response = registry.generate("qwen", GenerateRequest(prompt="hi", model="ignored"))

    assert response.provider == "ollama"
    assert ollama.requests[0].model == "qwen"
    assert not groq.requests


def test_generate_unknown_model_raises() -> None:
    registry = ProviderRegistry()
    registry.register(MockProvider([], name="ollama"))

    with pytest.raises(ProviderError, match="not found"):
        registry.generate("ghost", GenerateRequest(prompt="hi", model="ghost"))


def _selection_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(
        MockProvider(
            [],
            name="ollama",
            models=[
                _model("local-small", "ollama", quality="good", speed="fast"),
                _model("local-mid", "ollama", quality="better", speed="slow"),
            ],
        )
    )
    registry.register(
        MockProvider(
            [],
            name="openai",
            models=[
                _model("hosted-best", "openai", quality="best", price=5.0),
                _model("hosted-vision", "openai", price=0.1, capabilities=("chat", "vision")),
            ],
        )
    )
    return registry


def test_select_model_prefers_free_models_matching_complexity() -> None:
    chosen = _selection_registry().select_model(ModelCriteria(complexity="medium"))
    assert chosen is not None
    assert chosen.id == "local-mid"


def test_select_model_prefers_speed_for_simple_tasks() -> None:
    chosen = _selection_registry().select_model(ModelCriteria(complexity="simple"))
    assert chosen is not None
    assert chosen.id == "local-small"


def test_select_model_filters_by_capability_and_cost() -> None:
    registry = _selection_registry()

    vision = registry.select_model(ModelCriteria(required_capabilities=("vision",)))
    assert vision is not None
    assert vision.id == "hosted-vision"

    assert registry.select_model(
        ModelCriteria(required_capabilities=("vision",), max_cost=0.0001)
    ) is None


def test_estimated_request_cost_uses_typical_request_size() -> None:
    info = _model("m", "openai", price=1.0)
    assert estimated_request_cost(info) == pytest.approx(0.0015)


def test_mock_provider_raises_when_queue_is_empty() -> None:
    provider = MockProvider([])

    with pytest.raises(ProviderError, match="no remaining responses"):
        provider.generate(GenerateRequest(prompt="x", model="m"))
