"""Shared configuration validation helpers."""

from __future__ import annotations

import math


def require_positive_int(value: int, field_name: str) -> int:
    """Validate a positive integer input and return it."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer.")
    if value <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return value


def require_positive_number(value: float, field_name: str) -> float:
    """Validate a finite positive number and return it as float."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"{field_name} must be a number.")
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{field_name} must be greater than zero.")
    return float(value)


def require_fraction(value: float, field_name: str) -> float:
    """Validate a number within the closed interval [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"{field_name} must be a number.")
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{field_name} must be between 0 and 1.")
    return float(value)


def require_percentage(value: float, field_name: str) -> float:
    """Validate a percentage within [0, 100]."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"{field_name} must be a number.")
    if not 0.0 <= value <= 100.0:
        raise ValueError(f"{field_name} must be between 0 and 100.")
    return float(value)


def validate_choice(value: str, field_name: str, allowed: set[str]) -> str:
    """Validate that a string value is within a set of allowed options."""
    if value not in allowed:
        options = ", ".join(sorted(allowed))
        raise ValueError(f"{field_name} must be one of: {options}.")
    return value
