"""Tests for config validation helpers."""

from __future__ import annotations

import math

import pytest

from code_acceptance.agent.config_validation import (
    require_fraction,
    require_percentage,
    require_positive_int,
    require_positive_number,
    validate_choice,
)


def test_require_positive_int_rejects_bool() -> None:
    """Booleans are ints in Python but never valid counts."""
    with pytest.raises(ValueError, match="max_attempts must be an integer"):
        require_positive_int(True, "max_attempts")


def test_require_positive_int_rejects_zero() -> None:
    with pytest.raises(ValueError, match="greater than zero"):
        require_positive_int(0, "max_attempts")


def test_require_positive_number_rejects_infinity() -> None:
    with pytest.raises(ValueError):
        require_positive_number(math.inf, "test_timeout")


def test_require_positive_number_returns_float() -> None:
    assert require_positive_number(5, "test_timeout") == 5.0


@pytest.mark.parametrize("value", [-0.01, 1.01])
def test_require_fraction_rejects_out_of_range(value: float) -> None:
    with pytest.raises(ValueError, match="between 0 and 1"):
        require_fraction(value, "accept_threshold")


def test_require_percentage_accepts_bounds() -> None:
    assert require_percentage(0, "min_coverage") == 0.0
    assert require_percentage(100, "min_coverage") == 100.0


def test_validate_choice_lists_options() -> None:
    with pytest.raises(ValueError, match="auto, docker, local"):
        validate_choice("podman", "sandbox", {"auto", "docker", "local"})
