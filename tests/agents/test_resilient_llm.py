"""Tests for the fallback-model client."""

from __future__ import annotations

from typing import Any

import pytest

from code_acceptance.agent.providers.base import ProviderError
from code_acceptance.agent.providers.mock_provider import MockProvider
from code_acceptance.agent.providers.resilient_llm import FallbackModelClient, ModelCallError


def _keep(data: dict[str, Any]) -> dict[str, Any]:
    return data


def _call(client: FallbackModelClient, validate: Any = _keep) -> Any:
    return client.generate_json(
        system="sys",
        prompt="usr",
        timeout_seconds=60,
        fallback_timeout_seconds=30,
        validate=validate,
    )


def test_primary_success_does_not_touch_fallback() -> None:
    provider = MockProvider([{"ok": True}], cost_per_call=0.01)
    client = FallbackModelClient(provider, "primary", "secondary")

    reply = _call(client)

    assert reply.value == {"ok": True}
    assert reply.model == "primary"
    assert not reply.used_fallback
    assert reply.cost == pytest.approx(0.01)
    assert [request.model for request in provider.requests] == ["primary"]


def test_fallback_used_after_provider_error_with_shorter_timeout() -> None:
    provider = MockProvider([ProviderError("down"), {"ok": True}])
    client = FallbackModelClient(provider, "primary", "secondary")

    reply = _call(client)

    assert reply.used_fallback
    assert reply.model == "secondary"
    assert [request.timeout_seconds for request in provider.requests] == [60, 30]


def test_malformed_output_triggers_fallback_and_accumulates_cost() -> None:
    provider = MockProvider(["this is not json", "```json\n{\"ok\": 1}\n```"], cost_per_call=0.5)
    client = FallbackModelClient(provider, "primary", "secondary")

    reply = _call(client)

    assert reply.value == {"ok": 1}
    assert reply.cost == pytest.approx(1.0)


def test_validation_failure_on_both_models_raises_with_cost() -> None:
    def _reject(data: dict[str, Any]) -> dict[str, Any]:
        raise ValueError("wrong shape")

    provider = MockProvider([{"a": 1}, {"b": 2}], cost_per_call=0.25)
    client = FallbackModelClient(provider, "primary", "secondary")

    with pytest.raises(ModelCallError) as excinfo:
        _call(client, _reject)

    assert excinfo.value.cost == pytest.approx(0.5)
    assert "wrong shape" in str(excinfo.value)


def test_same_fallback_model_is_not_retried() -> None:
    provider = MockProvider([ProviderError("down")])
    client = FallbackModelClient(provider, "primary", "primary")

    with pytest.raises(ModelCallError):
        _call(client)

    assert len(provider.requests) == 1


def test_fallback_provider_can_differ_from_primary() -> None:
    primary = MockProvider([ProviderError("quota")], name="groq")
    fallback = MockProvider([{"ok": True}], name="ollama")
    client = FallbackModelClient(primary, "big", "small", fallback_provider=fallback)

    reply = _call(client)

    assert reply.used_fallback
    assert fallback.requests[0].model == "small"
