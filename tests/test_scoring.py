"""Tests for weighted scoring and the acceptance rule."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from code_acceptance.agent.pipeline.config import PipelineConfig, ScoreWeights
from code_acceptance.agent.pipeline.models import (
    SCORE_DIMENSIONS,
    Explanations,
    JudgeVerdict,
    Scores,
    Verdict,
)
from code_acceptance.agent.pipeline.scoring import meets_acceptance_criteria, weighted_score

_unit = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
_binary = st.sampled_from([0.0, 1.0])


@st.composite
def _weights(draw: st.DrawFn) -> ScoreWeights:
    raw = draw(
        st.lists(
            st.floats(min_value=0.01, max_value=1.0, allow_nan=False),
            min_size=len(SCORE_DIMENSIONS),
            max_size=len(SCORE_DIMENSIONS),
        )
    )
    total = sum(raw)
    normalized = [value / total for value in raw]
    normalized[-1] = 1.0 - sum(normalized[:-1])
    return ScoreWeights(**dict(zip(SCORE_DIMENSIONS, normalized, strict=True)))


@st.composite
def _scores(draw: st.DrawFn) -> Scores:
    return Scores(
        compilation=draw(_binary),
        tests_functional=draw(_unit),
        tests_edge=draw(_unit),
        types=draw(_binary),
        style=draw(_unit),
        security=draw(_binary),
        conventions=draw(_unit),
    )


def _verdict(scores: Scores, verdict: Verdict = Verdict.ACCEPT) -> JudgeVerdict:
    return JudgeVerdict(
        verdict=verdict,
        scores=scores,
        explanations=Explanations(root_cause="", minimal_fix=""),
    )


@given(scores=_scores(), weights=_weights())
def test_weighted_score_is_dot_product(scores: Scores, weights: ScoreWeights) -> None:
    expected = sum(
        (getattr(scores, name) or 0.0) * getattr(weights, name) for name in SCORE_DIMENSIONS
    )
    assert weighted_score(scores, weights) == pytest.approx(expected)


@given(scores=_scores(), weights=_weights(), threshold=_unit)
def test_never_accepts_without_compilation_and_security(
    scores: Scores, weights: ScoreWeights, threshold: float
) -> None:
    config = PipelineConfig(weights=weights, accept_threshold=threshold)
    if scores.compilation == 0 or scores.security == 0:
        assert not meets_acceptance_criteria(_verdict(scores), config)


def test_perfect_scores_are_accepted() -> None:
    scores = Scores(1, 1, 1, 1, 1, 1, 1)
    assert weighted_score(scores, ScoreWeights()) == pytest.approx(1.0)
    assert meets_acceptance_criteria(_verdict(scores), PipelineConfig())


def test_missing_conventions_counts_as_zero() -> None:
    scores = Scores(1, 1, 1, 1, 1, 1, None)
    assert weighted_score(scores, ScoreWeights()) == pytest.approx(0.8)


def test_threshold_is_inclusive() -> None:
    scores = Scores(1, 1, 1, 1, 1, 1, 0.5)
    config = PipelineConfig(accept_threshold=weighted_score(scores, ScoreWeights()))
    assert meets_acceptance_criteria(_verdict(scores), config)


def test_security_zero_blocks_acceptance_even_with_high_score() -> None:
    scores = Scores(1, 1, 1, 1, 1, 0, 1)
    config = PipelineConfig(accept_threshold=0.5)
    assert not meets_acceptance_criteria(_verdict(scores), config)
