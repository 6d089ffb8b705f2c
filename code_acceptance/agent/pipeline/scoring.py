"""Weighted scoring and the acceptance rule."""

from __future__ import annotations

from code_acceptance.agent.pipeline.config import PipelineConfig, ScoreWeights
from code_acceptance.agent.pipeline.models import JudgeVerdict, Scores


def weighted_score(scores: Scores, weights: ScoreWeights) -> float:
    """Return the dot product of scores and weights; missing conventions count as 0."""
    return (
        scores.compilation * weights.compilation
        + scores.tests_functional * weights.tests_functional
        + scores.tests_edge * weights.tests_edge
        + scores.types * weights.types
        + scores.style * weights.style
        + scores.security * weights.security
        + (scores.conventions or 0.0) * weights.conventions
    )


def meets_acceptance_criteria(verdict: JudgeVerdict, config: PipelineConfig) -> bool:
    """Accept only above threshold with compilation and security both passing."""
    if verdict.scores.compilation != 1 or verdict.scores.security != 1:
        return False
    return weighted_score(verdict.scores, config.weights) >= config.accept_threshold
