"""Extraction of JSON objects from noisy model output."""

from __future__ import annotations

import json
import re
from typing import Any


class ModelResponseError(ValueError):
    """Raised when model output is not the JSON shape a stage expects."""


_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def parse_json_object(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating code fences and surrounding prose."""
    cleaned = raw_text.strip()
    if not cleaned:
        raise ModelResponseError("Model output was empty.")
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", cleaned))
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = _first_embedded_object(cleaned)
    if not isinstance(parsed, dict):
        raise ModelResponseError("Expected top-level JSON object from model.")
    return parsed


def _first_embedded_object(text: str) -> Any:
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            parsed, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ModelResponseError("Model output did not contain JSON.")
