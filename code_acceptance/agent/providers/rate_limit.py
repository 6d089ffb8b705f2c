"""Rate limit handling utilities for hosted model providers."""

from __future__ import annotations

import math
import re
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any


@dataclass(frozen=True)
class RateLimitEvent:
    """Captured rate limit event metadata."""

    retry_after_seconds: float
    reset_at: datetime | None
    reason: str


@dataclass(frozen=True)
class RateLimitBackoff:
    """Exponential backoff with jitter for rate-limited calls."""

    max_retries: int = 4
    min_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = 0.15

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative.")
        if self.min_delay_seconds <= 0:
            raise ValueError("min_delay_seconds must be greater than zero.")
        if self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError(
                "max_delay_seconds must be greater than or equal to min_delay_seconds."
            )
        if not 0.0 <= self.jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0 and 1 inclusive.")

    def next_delay(self, *, attempt: int, retry_after: float | None) -> float:
        """Return delay in seconds for given attempt and optional retry-after."""
        if attempt < 1:
            raise ValueError("attempt must be greater than or equal to 1.")
        if retry_after is not None and not (math.isfinite(retry_after) and retry_after >= 0):
            raise ValueError("retry_after must be a non-negative finite number.")
        base = self.min_delay_seconds * (2 ** (attempt - 1))
        bounded = min(base, self.max_delay_seconds)
        if retry_after is not None:
            bounded = max(bounded, retry_after)
        jitter = bounded * self.jitter_ratio
        if jitter <= 0:
            return bounded
        random_fraction = float(secrets.randbelow(10_000)) / 10_000
        return bounded + (jitter * random_fraction)


def extract_rate_limit_event(error: Any) -> RateLimitEvent | None:
    """Parse retry headers from a provider error when available."""
    response = getattr(error, "response", None)
    raw_headers = getattr(response, "headers", None) if response is not None else None
    if not raw_headers:
        return None
    headers = {str(key).lower(): str(value) for key, value in dict(raw_headers).items()}

    retry_after_value = headers.get("retry-after")
    reset_value = next(
        (
            headers[key]
            for key in (
                "x-ratelimit-reset-requests",
                "x-ratelimit-reset-tokens",
                "x-ratelimit-reset",
            )
            if headers.get(key)
        ),
        None,
    )
    retry_after_seconds = _parse_retry_after(retry_after_value) if retry_after_value else None
    reset_at = _parse_reset_at(reset_value) if reset_value else None

    if retry_after_seconds is None and reset_at is not None:
        retry_after_seconds = max(0.0, (reset_at - datetime.now(tz=UTC)).total_seconds())
    return RateLimitEvent(
        retry_after_seconds=retry_after_seconds or 0.0,
        reset_at=reset_at,
        reason=getattr(error, "message", None) or str(error),
    )


def _parse_retry_after(value: str) -> float | None:
    stripped = value.strip()
    try:
        return float(stripped)
    except ValueError:
        parsed_date = _parse_http_date(stripped)
        if parsed_date is not None:
            return max(0.0, (parsed_date - datetime.now(tz=UTC)).total_seconds())
    return _parse_duration_seconds(stripped)


def _parse_reset_at(value: str) -> datetime | None:
    stripped = value.strip()
    parsed_date = _parse_http_date(stripped)
    if parsed_date is not None:
        return parsed_date
    duration_seconds = _parse_duration_seconds(stripped)
    if duration_seconds is None:
        return None
    return datetime.now(tz=UTC) + timedelta(seconds=duration_seconds)


def _parse_http_date(value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None or parsed.tzinfo is None:
        return None
    return parsed.astimezone(UTC)


def _parse_duration_seconds(value: str) -> float | None:
    """Parse a duration like '1s', '250ms', '2m' into seconds."""
    match = re.fullmatch(r"(?P<number>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)?", value.lower())
    if not match:
        return None
    number = float(match.group("number"))
    unit = match.group("unit") or "s"
    if unit == "ms":
        return number / 1000.0
    if unit == "m":
        return number * 60.0
    if unit == "h":
        return number * 3600.0
    return number
