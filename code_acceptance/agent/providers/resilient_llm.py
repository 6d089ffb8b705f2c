"""Model client that retries once on a smaller fallback model."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    ModelProvider,
    ProviderError,
)
from code_acceptance.agent.providers.json_output import ModelResponseError, parse_json_object

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ModelReply(Generic[T]):
    """Validated model output plus what it cost to obtain."""

    value: T
    model: str
    cost: float
    used_fallback: bool


class ModelCallError(ProviderError):
    """Raised when both the primary and the fallback model failed."""

    def __init__(self, message: str, *, cost: float = 0.0, model: str = "") -> None:
        super().__init__(message, model=model)
        self.cost = cost


class FallbackModelClient:
    """Call the primary model, then the fallback model once on any failure.

    Failures are provider errors and output that does not validate. Costs of
    failed attempts that still produced a response are carried forward.
    """

    def __init__(
        self,
        provider: ModelProvider,
        model: str,
        fallback_model: str | None = None,
        *,
        fallback_provider: ModelProvider | None = None,
    ) -> None:
        if not model:
            raise ValueError("model must be non-empty.")
        self.provider = provider
        self.model = model
        self.fallback_model = fallback_model if fallback_model != model else None
        self.fallback_provider = fallback_provider or provider

    def generate_json(
        self,
        *,
        system: str,
        prompt: str,
        timeout_seconds: float,
        fallback_timeout_seconds: float,
        validate: Callable[[dict[str, Any]], T],
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> ModelReply[T]:
        """Generate a JSON object and convert it with ``validate``."""
        request = GenerateRequest(
            prompt=prompt,
            model=self.model,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )
        attempts: list[tuple[ModelProvider, GenerateRequest, bool]] = [
            (self.provider, request, False)
        ]
        if self.fallback_model:
            attempts.append(
                (
                    self.fallback_provider,
                    request.for_model(
                        self.fallback_model, timeout_seconds=fallback_timeout_seconds
                    ),
                    True,
                )
            )

        spent = 0.0
        last_error: Exception | None = None
        for provider, attempt_request, is_fallback in attempts:
            try:
                response = provider.generate(attempt_request)
                spent += response.cost
                value = validate(parse_json_object(response.text))
            except (ProviderError, ModelResponseError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "Model %s failed%s: %s",
                    attempt_request.model,
                    " (fallback)" if is_fallback else "",
                    exc,
                )
                continue
            return ModelReply(
                value=value,
                model=attempt_request.model,
                cost=spent,
                used_fallback=is_fallback,
            )
        raise ModelCallError(
            f"Model call failed after {len(attempts)} attempt(s): {last_error}",
            cost=spent,
            model=self.model,
        ) from last_error
