"""Hosted OpenAI-compatible providers (OpenAI, Groq, Together) via the OpenAI SDK."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    RateLimitError,
)

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ModelPricing,
    ProviderError,
    Quality,
    Speed,
    calculate_cost,
    estimate_tokens,
)
from code_acceptance.agent.providers.rate_limit import (
    RateLimitBackoff,
    RateLimitEvent,
    extract_rate_limit_event,
)

logger = logging.getLogger(__name__)


def _known(
    provider: str,
    model_id: str,
    name: str,
    *,
    context_length: int,
    speed: Speed,
    quality: Quality,
    price_in: float,
    price_out: float,
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        provider=provider,
        context_length=context_length,
        capabilities=("chat", "code"),
        speed=speed,
        quality=quality,
        pricing=ModelPricing(input_per_million=price_in, output_per_million=price_out),
    )


@dataclass(frozen=True)
class HostedPreset:
    """Connection defaults and model catalogue for one hosted backend."""

    name: str
    base_url: str | None
    api_key_env: str
    default_model: str
    fallback_model: str | None
    known_models: tuple[ModelInfo, ...]
    fallback_pricing: ModelPricing
    fallback_speed: Speed
    infer_from_name: bool


OPENAI_PRESET = HostedPreset(
    name="openai",
    base_url=None,
    api_key_env="OPENAI_API_KEY",
    default_model="gpt-4o",
    fallback_model="gpt-4o-mini",
    known_models=(
        _known(
            "openai", "gpt-4o-mini", "GPT-4o mini",
            context_length=128000, speed="fast", quality="better", price_in=0.15, price_out=0.60,
        ),
        _known(
            "openai", "gpt-4o", "GPT-4o",
            context_length=128000, speed="medium", quality="best", price_in=2.50, price_out=10.00,
        ),
    ),
    fallback_pricing=ModelPricing(2.50, 10.00),
    fallback_speed="medium",
    infer_from_name=False,
)

GROQ_PRESET = HostedPreset(
    name="groq",
    base_url="https://api.groq.com/openai/v1",
    api_key_env="GROQ_API_KEY",
    default_model="llama-3.3-70b-versatile",
    fallback_model="llama-3.1-8b-instant",
    known_models=(
        _known(
            "groq", "llama-3.3-70b-versatile", "Llama 3.3 70B",
            context_length=128000, speed="fast", quality="best", price_in=0.59, price_out=0.79,
        ),
        _known(
            "groq", "llama-3.1-70b-versatile", "Llama 3.1 70B",
            context_length=128000, speed="fast", quality="best", price_in=0.59, price_out=0.79,
        ),
        _known(
            "groq", "llama-3.1-8b-instant", "Llama 3.1 8B",
            context_length=128000, speed="fast", quality="good", price_in=0.05, price_out=0.08,
        ),
        _known(
            "groq", "mixtral-8x7b-32768", "Mixtral 8x7B",
            context_length=32768, speed="fast", quality="better", price_in=0.24, price_out=0.24,
        ),
        _known(
            "groq", "gemma2-9b-it", "Gemma 2 9B",
            context_length=8192, speed="fast", quality="good", price_in=0.20, price_out=0.20,
        ),
    ),
    fallback_pricing=ModelPricing(0.50, 0.50),
    fallback_speed="fast",
    infer_from_name=False,
)

TOGETHER_PRESET = HostedPreset(
    name="together",
    base_url="https://api.together.xyz/v1",
    api_key_env="TOGETHER_API_KEY",
    default_model="Qwen/Qwen2.5-Coder-32B-Instruct",
    fallback_model="Qwen/Qwen2.5-Coder-7B-Instruct",
    known_models=(
        _known(
            "together", "meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo", "Llama 3.1 70B Turbo",
            context_length=128000, speed="fast", quality="best", price_in=0.88, price_out=0.88,
        ),
        _known(
            "together", "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo", "Llama 3.1 8B Turbo",
            context_length=128000, speed="fast", quality="good", price_in=0.18, price_out=0.18,
        ),
        _known(
            "together", "Qwen/Qwen2.5-Coder-32B-Instruct", "Qwen 2.5 Coder 32B",
            context_length=32768, speed="medium", quality="best", price_in=0.80, price_out=0.80,
        ),
        _known(
            "together", "Qwen/Qwen2.5-Coder-7B-Instruct", "Qwen 2.5 Coder 7B",
            context_length=32768, speed="fast", quality="better", price_in=0.20, price_out=0.20,
        ),
        _known(
            "together", "deepseek-ai/deepseek-coder-33b-instruct", "DeepSeek Coder 33B",
            context_length=16384, speed="medium", quality="best", price_in=0.80, price_out=0.80,
        ),
        _known(
            "together", "mistralai/Mixtral-8x7B-Instruct-v0.1", "Mixtral 8x7B",
            context_length=32768, speed="fast", quality="better", price_in=0.60, price_out=0.60,
        ),
    ),
    fallback_pricing=ModelPricing(0.60, 0.60),
    fallback_speed="medium",
    infer_from_name=True,
)

HOSTED_PRESETS: dict[str, HostedPreset] = {
    preset.name: preset for preset in (OPENAI_PRESET, GROQ_PRESET, TOGETHER_PRESET)
}


class OpenAICompatibleProvider:
    """Chat-completions provider for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        preset: HostedPreset,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: Any | None = None,
        backoff: RateLimitBackoff | None = None,
    ) -> None:
        self.preset = preset
        self.name = preset.name
        self.api_key = api_key or os.getenv(preset.api_key_env)
        self.base_url = base_url or preset.base_url
        self.backoff = backoff or RateLimitBackoff()
        self.last_rate_limit: RateLimitEvent | None = None
        self._client = client
        self._models: dict[str, ModelInfo] = {info.id: info for info in preset.known_models}

    @classmethod
    def for_backend(cls, name: str, **kwargs: Any) -> OpenAICompatibleProvider:
        """Build a provider from a preset name: openai, groq or together."""
        try:
            preset = HOSTED_PRESETS[name]
        except KeyError:
            options = ", ".join(sorted(HOSTED_PRESETS))
            raise ValueError(
                f"Unknown hosted provider '{name}'; expected one of: {options}."
            ) from None
        return cls(preset, **kwargs)

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ProviderError(
                    f"{self.preset.api_key_env} is required for provider '{self.name}'.",
                    provider=self.name,
                )
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    def is_available(self) -> bool:
        if self._client is None and not self.api_key:
            return False
        try:
            self.client.models.list()
        except APIError as exc:
            logger.debug("Provider %s unavailable: %s", self.name, exc)
            return False
        return True

    def discover_models(self) -> list[ModelInfo]:
        if self._client is None and not self.api_key:
            return []
        try:
            listing = self.client.models.list()
        except APIError as exc:
            logger.warning("Model discovery for %s failed; using known models: %s", self.name, exc)
            return list(self._models.values())
        models: list[ModelInfo] = []
        for item in getattr(listing, "data", None) or []:
            model_id = getattr(item, "id", None)
            if not model_id:
                continue
            info = self._models.get(model_id) or self._infer_model(item)
            self._models[info.id] = info
            models.append(info)
        return models

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        if model_id not in self._models:
            self.discover_models()
        return self._models.get(model_id)

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        last_error: Exception | None = None
        total_attempts = self.backoff.max_retries + 1
        for attempt in range(1, total_attempts + 1):
            try:
                return self._generate_once(request)
            except RateLimitError as exc:
                last_error = exc
                self.last_rate_limit = extract_rate_limit_event(exc)
                if attempt >= total_attempts:
                    break
                delay = self._resolve_retry_delay(attempt, self.last_rate_limit)
                logger.warning(
                    "%s rate limit hit; retrying in %.2fs (attempt %s/%s).",
                    self.name,
                    delay,
                    attempt,
                    total_attempts,
                )
                time.sleep(delay)
            except (APIConnectionError, APITimeoutError) as exc:
                raise ProviderError(
                    f"{self.name} connection failed: {exc}",
                    provider=self.name,
                    model=request.model,
                ) from exc
            except APIStatusError as exc:
                raise ProviderError(
                    f"{self.name} returned HTTP {exc.status_code}: {exc.message}",
                    provider=self.name,
                    model=request.model,
                ) from exc
            except APIError as exc:
                raise ProviderError(
                    f"{self.name} request failed: {exc}",
                    provider=self.name,
                    model=request.model,
                ) from exc
        raise ProviderError(
            f"{self.name} rate limit retries exhausted.",
            provider=self.name,
            model=request.model,
        ) from last_error

    def _generate_once(self, request: GenerateRequest) -> GenerateResponse:
        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        messages.append({"role": "user", "content": request.prompt})
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if request.stop:
            payload["stop"] = list(request.stop)

        start = time.perf_counter()
        client = self.client.with_options(timeout=request.timeout_seconds)
        response = client.chat.completions.create(**payload)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        choice = response.choices[0] if response.choices else None
        text = str(getattr(getattr(choice, "message", None), "content", None) or "")
        usage = getattr(response, "usage", None)
        tokens_input = getattr(usage, "prompt_tokens", None) or estimate_tokens(
            request.prompt + (request.system or "")
        )
        tokens_output = getattr(usage, "completion_tokens", None) or estimate_tokens(text)
        model_info = self._models.get(request.model)
        return GenerateResponse(
            text=text,
            model=request.model,
            provider=self.name,
            tokens_input=int(tokens_input),
            tokens_output=int(tokens_output),
            cost=calculate_cost(model_info, int(tokens_input), int(tokens_output)),
            time_ms=elapsed_ms,
            finish_reason=str(getattr(choice, "finish_reason", None) or "stop"),
        )

    def _resolve_retry_delay(self, attempt: int, event: RateLimitEvent | None) -> float:
        retry_after = event.retry_after_seconds if event is not None else None
        return self.backoff.next_delay(attempt=attempt, retry_after=retry_after)

    def _infer_model(self, item: Any) -> ModelInfo:
        model_id = str(item.id)
        lowered = model_id.lower()
        capabilities: tuple[str, ...] = ("chat",)
        quality: Quality = "good"
        if self.preset.infer_from_name:
            if "code" in lowered:
                capabilities = ("chat", "code")
            if any(marker in lowered for marker in ("70b", "33b", "32b")):
                quality = "best"
            elif any(marker in lowered for marker in ("13b", "8x7b")):
                quality = "better"
        return ModelInfo(
            id=model_id,
            name=str(getattr(item, "display_name", None) or model_id),
            provider=self.name,
            context_length=int(getattr(item, "context_length", None) or 8192),
            capabilities=capabilities,
            speed=self.preset.fallback_speed,
            quality=quality,
            pricing=self.preset.fallback_pricing,
        )
