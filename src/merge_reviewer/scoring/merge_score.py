"""Deterministic merge-readiness scoring."""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from merge_reviewer.models.context import RawCodeChanges, clamp
from merge_reviewer.models.review import (
    AIReview,
    CodeAnalysis,
    CodeIssue,
    ComplexityMetrics,
    QualityMetrics,
    RuleEvaluation,
    RuleSeverity,
    SuggestionSeverity,
    TestCoverageMetrics,
)

logger = logging.getLogger(__name__)

SCORING_WEIGHTS = {
    "rule_compliance": 0.35,
    "code_quality": 0.25,
    "test_coverage": 0.20,
    "complexity": 0.15,
    "documentation": 0.05,
}

QUALITY_WEIGHTS = {
    "code_style": 0.20,
    "security": 0.30,
    "performance": 0.25,
    "maintainability": 0.25,
}

NEUTRAL_COVERAGE_SCORE = 50
NEUTRAL_COMPLEXITY_SCORE = 75
NEUTRAL_MAINTAINABILITY = 75


@dataclass(frozen=True)
class ComplexityThresholds:
    """Breakpoints for inverting a complexity metric into a score."""

    excellent: float
    good: float
    acceptable: float
    poor: float


CYCLOMATIC_THRESHOLDS = ComplexityThresholds(excellent=5, good=10, acceptable=15, poor=25)
COGNITIVE_THRESHOLDS = ComplexityThresholds(excellent=10, good=20, acceptable=30, poor=50)


class Recommendation(Enum):
    """Merge recommendation buckets."""

    READY = "ready"
    REVIEW_NEEDED = "review_needed"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class MergeRecommendation:
    """Recommendation with a display message and color."""

    recommendation: Recommendation
    message: str
    color: str


@dataclass(frozen=True)
class ScoreComponent:
    """One weighted component of the merge score."""

    score: int
    weight: float
    contribution: int


@dataclass(frozen=True)
class ScoreBreakdown:
    """Every component of a merge score, for transparency."""

    total: int
    rule_compliance: ScoreComponent
    code_quality: ScoreComponent
    test_coverage: ScoreComponent
    complexity: ScoreComponent
    documentation: ScoreComponent
    recommendation: MergeRecommendation

    def components(self) -> dict[str, ScoreComponent]:
        """Components keyed by name, in weight order."""
        return {
            "rule_compliance": self.rule_compliance,
            "code_quality": self.code_quality,
            "test_coverage": self.test_coverage,
            "complexity": self.complexity,
            "documentation": self.documentation,
        }


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative scores."""
    return int(math.floor(value + 0.5))


def _bounded(value: float) -> int:
    return round_half_up(clamp(value, 0.0, 100.0))


def rule_compliance_score(evaluation: RuleEvaluation) -> int:
    """Severity-weighted share of rules that passed.

    Returns 100 when there are no rules to evaluate.
    """
    total_weight = sum(r.severity.weight for r in evaluation.passed + evaluation.violated)
    if total_weight == 0:
        return 100
    violated_weight = sum(r.severity.weight for r in evaluation.violated)
    return max(0, round_half_up(100 * (1 - violated_weight / total_weight)))


def code_quality_score(metrics: QualityMetrics) -> int:
    weighted = sum(getattr(metrics, name) * weight for name, weight in QUALITY_WEIGHTS.items())
    return _bounded(weighted)


def test_coverage_score(coverage: TestCoverageMetrics | None) -> int:
    """Piecewise-linear coverage curve anchored at 50/70/80/90%.

    Returns the neutral 50 when there is no coverage data.
    """
    if coverage is None or coverage.total_lines == 0:
        return NEUTRAL_COVERAGE_SCORE

    pct = coverage.percentage
    if pct >= 90:
        score = 100.0
    elif pct >= 80:
        score = 85 + (pct - 80) * 1.5
    elif pct >= 70:
        score = 70 + (pct - 70) * 1.5
    elif pct >= 50:
        score = 50 + (pct - 50)
    else:
        score = max(0.0, pct)
    return _bounded(score)


def normalize_complexity(value: float, thresholds: ComplexityThresholds) -> float:
    """Invert a complexity metric onto a 0-100 scale (lower is better)."""
    t = thresholds
    if value <= t.excellent:
        return 100.0
    if value <= t.good:
        return 85 - ((value - t.excellent) / (t.good - t.excellent)) * 15
    if value <= t.acceptable:
        return 70 - ((value - t.good) / (t.acceptable - t.good)) * 15
    if value <= t.poor:
        return 40 - ((value - t.acceptable) / (t.poor - t.acceptable)) * 30
    return max(0.0, 40 - (value - t.poor) * 0.5)


def complexity_score(complexity: ComplexityMetrics | None) -> int:
    """Blend cyclomatic, cognitive and maintainability at 0.4/0.4/0.2."""
    if complexity is None or (complexity.cyclomatic is None and complexity.cognitive is None):
        return NEUTRAL_COMPLEXITY_SCORE

    cyclomatic = (
        normalize_complexity(complexity.cyclomatic, CYCLOMATIC_THRESHOLDS)
        if complexity.cyclomatic is not None
        else NEUTRAL_COMPLEXITY_SCORE
    )
    cognitive = (
        normalize_complexity(complexity.cognitive, COGNITIVE_THRESHOLDS)
        if complexity.cognitive is not None
        else NEUTRAL_COMPLEXITY_SCORE
    )
    maintainability = complexity.maintainability_index or NEUTRAL_MAINTAINABILITY
    return _bounded(cyclomatic * 0.4 + cognitive * 0.4 + maintainability * 0.2)


def documentation_score(documentation: float) -> int:
    return _bounded(documentation)


def merge_recommendation(score: float) -> MergeRecommendation:
    """Map a merge score onto a recommendation bucket."""
    if score >= 85:
        return MergeRecommendation(
            Recommendation.READY, "✅ Ready for merge - Excellent quality!", "green"
        )
    if score >= 70:
        return MergeRecommendation(
            Recommendation.REVIEW_NEEDED,
            "⚠️ Review recommended - Good quality with minor issues",
            "yellow",
        )
    return MergeRecommendation(
        Recommendation.NOT_READY,
        "❌ Not ready for merge - Significant issues need attention",
        "red",
    )


class MergeScoreEngine:
    """Computes the weighted merge score from a code analysis and rule evaluation."""

    def __init__(self, weights: dict[str, float] | None = None) -> None:
        self.weights = dict(weights or SCORING_WEIGHTS)

    def component_scores(self, analysis: CodeAnalysis, evaluation: RuleEvaluation) -> dict[str, int]:
        return {
            "rule_compliance": rule_compliance_score(evaluation),
            "code_quality": code_quality_score(analysis.quality),
            "test_coverage": test_coverage_score(analysis.coverage),
            "complexity": complexity_score(analysis.complexity),
            "documentation": documentation_score(analysis.quality.documentation),
        }

    def score(self, analysis: CodeAnalysis, evaluation: RuleEvaluation) -> int:
        """Compute the merge score.

        Args:
            analysis: Derived code analysis
            evaluation: Rule evaluation

        Returns:
            Score in [0, 100]
        """
        components = self.component_scores(analysis, evaluation)
        weighted = sum(components[name] * weight for name, weight in self.weights.items())
        final = _bounded(weighted)
        logger.debug(f"Merge score {final} from components {components}")
        return final

    def breakdown(self, analysis: CodeAnalysis, evaluation: RuleEvaluation) -> ScoreBreakdown:
        """Score plus each component's score, weight and contribution."""
        components = self.component_scores(analysis, evaluation)
        total = self.score(analysis, evaluation)

        def component(name: str) -> ScoreComponent:
            weight = self.weights[name]
            return ScoreComponent(
                score=components[name],
                weight=weight,
                contribution=round_half_up(components[name] * weight),
            )

        return ScoreBreakdown(
            total=total,
            rule_compliance=component("rule_compliance"),
            code_quality=component("code_quality"),
            test_coverage=component("test_coverage"),
            complexity=component("complexity"),
            documentation=component("documentation"),
            recommendation=merge_recommendation(total),
        )

    def summary(self, analysis: CodeAnalysis, evaluation: RuleEvaluation) -> dict[str, Any]:
        """Scoring summary suitable for logs and API responses."""
        breakdown = self.breakdown(analysis, evaluation)
        quality = analysis.quality
        complexity = analysis.complexity
        return {
            "score": breakdown.total,
            "recommendation": breakdown.recommendation.recommendation.value,
            "components": {name: c.score for name, c in breakdown.components().items()},
            "rules": {
                "total": evaluation.total,
                "passed": len(evaluation.passed),
                "violated": len(evaluation.violated),
                "critical": sum(
                    1 for r in evaluation.violated if r.severity is RuleSeverity.CRITICAL
                ),
                "high": sum(1 for r in evaluation.violated if r.severity is RuleSeverity.HIGH),
            },
            "flags": {
                "security": quality.security < 70,
                "performance": quality.performance < 70,
                "complexity": (complexity.cyclomatic or 0) > 15 or (complexity.cognitive or 0) > 30,
                "test_coverage": analysis.coverage.total_lines > 0
                and analysis.coverage.percentage < 70,
                "documentation": quality.documentation < 60,
            },
        }


def validate_score_inputs(analysis: CodeAnalysis | None, evaluation: RuleEvaluation | None) -> list[str]:
    """Check that scoring inputs are present and in range.

    Returns:
        List of problems (empty if the inputs are usable)
    """
    errors = []
    if analysis is None:
        errors.append("Code analysis is required")
    else:
        for name in QUALITY_WEIGHTS.keys() | {"documentation", "test_coverage"}:
            value = getattr(analysis.quality, name, None)
            if not isinstance(value, (int, float)) or not 0 <= value <= 100:
                errors.append(f"{name} must be a number between 0 and 100")
    if evaluation is None:
        errors.append("Rule evaluation is required")
    return errors


_SUGGESTION_WEIGHT = {
    SuggestionSeverity.HIGH: 2.0,
    SuggestionSeverity.MEDIUM: 1.0,
    SuggestionSeverity.LOW: 0.25,
}


def derive_code_analysis(
    review: AIReview,
    evaluation: RuleEvaluation,
    changes: RawCodeChanges | None = None,
) -> CodeAnalysis:
    """Build the scoring inputs from an AI review and rule evaluation.

    Coverage and complexity are estimates, not measurements: coverage applies
    the AI's test-coverage assessment to the added lines, and complexity grows
    with added lines per file and with weighted suggestion counts.

    Args:
        review: AI review
        evaluation: Rule evaluation
        changes: Raw changes, when available

    Returns:
        CodeAnalysis for the merge score engine
    """
    issues = [
        CodeIssue(
            source="rule",
            severity=result.severity.value.lower(),
            file=", ".join(result.affected_files),
            message=f"{result.rule_name}: {result.description}",
        )
        for result in evaluation.violated
    ]
    issues.extend(
        CodeIssue(
            source="ai",
            severity=s.severity.value,
            file=s.file,
            message=s.description,
        )
        for s in review.suggestions
    )

    coverage = TestCoverageMetrics()
    complexity = ComplexityMetrics(maintainability_index=review.quality.maintainability)

    if changes is not None and changes.totals.additions > 0:
        added = changes.totals.additions
        coverage = TestCoverageMetrics(
            covered_lines=round_half_up(added * review.quality.test_coverage / 100),
            total_lines=added,
        )
        per_file = added / max(1, changes.totals.files)
        suggestion_load = sum(_SUGGESTION_WEIGHT[s.severity] for s in review.suggestions)
        cyclomatic = 1 + per_file / 10 + suggestion_load
        complexity = ComplexityMetrics(
            cyclomatic=round(cyclomatic, 2),
            cognitive=round(cyclomatic * 1.5 + len(evaluation.violated), 2),
            maintainability_index=review.quality.maintainability,
        )

    return CodeAnalysis(
        quality=review.quality,
        complexity=complexity,
        coverage=coverage,
        issues=issues,
    )
