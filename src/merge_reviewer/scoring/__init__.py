"""Merge score computation."""

from merge_reviewer.scoring.merge_score import (
    MergeRecommendation,
    MergeScoreEngine,
    Recommendation,
    ScoreBreakdown,
    derive_code_analysis,
    merge_recommendation,
)

__all__ = [
    "MergeRecommendation",
    "MergeScoreEngine",
    "Recommendation",
    "ScoreBreakdown",
    "derive_code_analysis",
    "merge_recommendation",
]
