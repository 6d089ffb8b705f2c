"""Local Ollama model provider over the Ollama HTTP API."""

from __future__ import annotations

import http.client
import json
import logging
import os
import re
import socket
import time
import urllib.error
import urllib.request
from typing import Any

from code_acceptance.agent.providers.base import (
    GenerateRequest,
    GenerateResponse,
    ModelInfo,
    ProviderError,
    Quality,
    Speed,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

_FAMILY_CONTEXT_LENGTH: dict[str, int] = {
    "qwen": 32768,
    "llama": 8192,
    "mistral": 8192,
}
_FAMILIES = ("qwen", "deepseek", "codellama", "llama", "mistral", "phi", "gemma")
_GIGABYTE = 1024**3


class OllamaProvider:
    """Provider for models served by a local Ollama daemon. Calls cost nothing."""

    name = "ollama"
    default_model = "qwen2.5-coder:7b"
    fallback_model = "qwen2.5:3b"

    def __init__(self, base_url: str | None = None, *, probe_timeout_seconds: float = 5.0) -> None:
        self.base_url = (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.probe_timeout_seconds = probe_timeout_seconds
        self._models: dict[str, ModelInfo] = {}

    def is_available(self) -> bool:
        try:
            self._request("/api/tags", timeout=self.probe_timeout_seconds)
        except ProviderError:
            return False
        return True

    def discover_models(self) -> list[ModelInfo]:
        try:
            payload = self._request("/api/tags", timeout=self.probe_timeout_seconds)
        except ProviderError as exc:
            logger.warning("Ollama model discovery failed: %s", exc)
            return []
        models: list[ModelInfo] = []
        for raw in payload.get("models", []) if isinstance(payload, dict) else []:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            info = parse_ollama_model(raw)
            models.append(info)
        self._models = {info.id: info for info in models}
        return models

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        body: dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }
        if request.system:
            body["system"] = request.system
        if request.json_mode:
            body["format"] = "json"
        if request.stop:
            body["options"]["stop"] = list(request.stop)

        start = time.perf_counter()
        data = self._request(
            "/api/generate",
            payload=body,
            timeout=request.timeout_seconds,
            model=request.model,
        )
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        if not isinstance(data, dict):
            raise ProviderError(
                "Ollama returned a non-object response.",
                provider=self.name,
                model=request.model,
            )
        text = str(data.get("response") or "")
        tokens_input = _int_or_none(data.get("prompt_eval_count")) or estimate_tokens(
            request.prompt + (request.system or "")
        )
        tokens_output = _int_or_none(data.get("eval_count")) or estimate_tokens(text)
        return GenerateResponse(
            text=text,
            model=request.model,
            provider=self.name,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            cost=0.0,
            time_ms=elapsed_ms,
            finish_reason="stop" if data.get("done", True) else "length",
        )

    def get_model_info(self, model_id: str) -> ModelInfo | None:
        if model_id not in self._models:
            self.discover_models()
        return self._models.get(model_id)

    def _request(
        self,
        endpoint: str,
        *,
        payload: dict[str, Any] | None = None,
        timeout: float,
        model: str = "",
    ) -> Any:
        data = None
        method = "GET"
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
            method = "POST"
        request = urllib.request.Request(
            url=f"{self.base_url}{endpoint}",
            method=method,
            data=data,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310  # nosec B310
                return json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise ProviderError(
                f"Ollama request failed: HTTP {exc.code}",
                provider=self.name,
                model=model,
            ) from exc
        except (
            urllib.error.URLError,
            http.client.HTTPException,
            socket.timeout,
            TimeoutError,
            ConnectionError,
        ) as exc:
            raise ProviderError(
                f"Ollama request failed: {exc}",
                provider=self.name,
                model=model,
            ) from exc
        except json.JSONDecodeError as exc:
            raise ProviderError(
                "Ollama returned invalid JSON.",
                provider=self.name,
                model=model,
            ) from exc


def parse_ollama_model(raw: dict[str, Any]) -> ModelInfo:
    """Infer capabilities, speed, quality and context length from a tag entry."""
    name = str(raw["name"])
    size = _int_or_none(raw.get("size")) or 0
    base_name, _, tag = name.partition(":")
    lowered = base_name.lower()
    family = next((item for item in _FAMILIES if item in lowered), "unknown")

    capabilities = ["chat"]
    if "code" in lowered or family == "codellama":
        capabilities.append("code")
    if "vision" in lowered or "llava" in lowered:
        capabilities.append("vision")
    if "embed" in lowered:
        capabilities.append("embedding")

    size_gb = size / _GIGABYTE
    speed: Speed = "fast" if size_gb < 2 else "medium" if size_gb < 5 else "slow"

    params = _parameter_billions(tag)
    if params is None:
        details = raw.get("details")
        if isinstance(details, dict):
            params = _parameter_billions(str(details.get("parameter_size", "")))
    quality: Quality
    if params is None or params < 7:
        quality = "good"
    elif params < 20:
        quality = "better"
    else:
        quality = "best"

    return ModelInfo(
        id=name,
        name=name,
        provider="ollama",
        context_length=_FAMILY_CONTEXT_LENGTH.get(family, 4096),
        capabilities=tuple(capabilities),
        speed=speed,
        quality=quality,
        size=size,
    )


def _parameter_billions(text: str) -> float | None:
    match = re.match(r"^\s*(\d+(?:\.\d+)?)", text)
    if match is None:
        return None
    return float(match.group(1))


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return int(value)
