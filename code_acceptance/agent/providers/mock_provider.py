"""Test provider that returns queued responses."""

from __future__ import annotations

import json
from collections.abc import Iterable
from copy import deepcopy
from typing import Any

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderError,
    estimate_tokens,
)


class MockProvider:
    """A deterministic provider for unit/integration tests.

    Queued items may be dicts (serialized to JSON), raw strings, or exception
    instances which are raised in place of a response.
    """

    def __init__(
        self,
        responses: Iterable[dict[str, Any] | str | Exception],
        *,
        name: str = "mock",
        models: Iterable[ModelInfo] = (),
        cost_per_call: float = 0.0,
        available: bool = True,
    ) -> None:
        self.name = name
        self._responses = [
            item if isinstance(item, Exception) else deepcopy(item) for item in responses
        ]
        self._models = {info.id: info for info in models}
        self.cost_per_call = cost_per_call
        self.available = available
        self.requests: list[GenerateRequest] = []
        self.discover_calls = 0

    @property
    def prompts(self) -> list[str]:
        """Return recorded user prompts in call order."""
        return [request.prompt for request in self.requests]

    @property
    def remaining(self) -> int:
        return len(self._responses)

    def is_available(self) -> bool:
        return self.available

    def discover_models(self) -> list[ModelInfo]:
        self.discover_calls += 1
        return list(self._models.values())

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        return self._models.get(model_id)

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Return next queued response and record the request."""
        self.requests.append(request)
        if not self._responses:
            raise ProviderError(
                "MockProvider has no remaining responses.",
                provider=self.name,
                model=request.model,
            )
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item if isinstance(item, str) else json.dumps(item)
        return GenerateResponse(
            text=text,
            model=request.model,
            provider=self.name,
            tokens_input=estimate_tokens(request.prompt),
            tokens_output=estimate_tokens(text),
            cost=self.cost_per_call,
            time_ms=0,
        )
