"""Tests for merge score computation."""

import pytest


def rule(severity, rule_id="r"):
    from merge_reviewer.models.review import RuleResult

    return RuleResult(rule_id=rule_id, rule_name=rule_id, severity=severity, description="d")


def analysis(quality=None, coverage=None, complexity=None):
    from merge_reviewer.models.review import (
        CodeAnalysis,
        ComplexityMetrics,
        QualityMetrics,
        TestCoverageMetrics,
    )

    return CodeAnalysis(
        quality=quality or QualityMetrics(),
        complexity=complexity or ComplexityMetrics(),
        coverage=coverage or TestCoverageMetrics(),
    )


class TestComponentScores:
    """Tests for the individual component scores."""

    def test_rule_compliance_critical_violation(self):
        """One CRITICAL violation and one LOW pass scores 6."""
        from merge_reviewer.models.review import RuleEvaluation, RuleSeverity
        from merge_reviewer.scoring.merge_score import rule_compliance_score

        evaluation = RuleEvaluation(
            passed=[rule(RuleSeverity.LOW)], violated=[rule(RuleSeverity.CRITICAL)]
        )

        assert rule_compliance_score(evaluation) == 6

    def test_rule_compliance_without_rules(self):
        from merge_reviewer.models.review import RuleEvaluation
        from merge_reviewer.scoring.merge_score import rule_compliance_score

        assert rule_compliance_score(RuleEvaluation()) == 100

    @pytest.mark.parametrize(
        "covered,expected",
        [(85, 93), (95, 100), (90, 100), (75, 78), (60, 60), (30, 30), (0, 0)],
    )
    def test_coverage_curve(self, covered, expected):
        """85% coverage scores 93; the curve is anchored at 50/70/80/90%."""
        from merge_reviewer.models.review import TestCoverageMetrics
        from merge_reviewer.scoring import merge_score

        coverage = TestCoverageMetrics(covered_lines=covered, total_lines=100)

        assert merge_score.test_coverage_score(coverage) == expected

    def test_coverage_without_data_is_neutral(self):
        from merge_reviewer.models.review import TestCoverageMetrics
        from merge_reviewer.scoring import merge_score

        assert merge_score.test_coverage_score(TestCoverageMetrics()) == 50
        assert merge_score.test_coverage_score(None) == 50

    def test_code_quality_weights(self):
        from merge_reviewer.models.review import QualityMetrics
        from merge_reviewer.scoring.merge_score import code_quality_score

        metrics = QualityMetrics(code_style=100, security=0, performance=100, maintainability=100)

        assert code_quality_score(metrics) == 70

    @pytest.mark.parametrize(
        "value,expected",
        [(3, 100.0), (5, 100.0), (10, 70.0), (15, 55.0), (25, 10.0), (45, 30.0), (200, 0.0)],
    )
    def test_normalize_cyclomatic(self, value, expected):
        from merge_reviewer.scoring.merge_score import CYCLOMATIC_THRESHOLDS, normalize_complexity

        assert normalize_complexity(value, CYCLOMATIC_THRESHOLDS) == pytest.approx(expected)

    def test_complexity_without_data_is_neutral(self):
        from merge_reviewer.models.review import ComplexityMetrics
        from merge_reviewer.scoring.merge_score import complexity_score

        assert complexity_score(None) == 75
        assert complexity_score(ComplexityMetrics(maintainability_index=10)) == 75

    def test_complexity_blend(self):
        from merge_reviewer.models.review import ComplexityMetrics
        from merge_reviewer.scoring.merge_score import complexity_score

        metrics = ComplexityMetrics(cyclomatic=4, cognitive=8, maintainability_index=50)

        assert complexity_score(metrics) == 90


class TestMergeScoreEngine:
    """Tests for the weighted merge score."""

    def test_neutral_inputs(self):
        from merge_reviewer.models.review import RuleEvaluation
        from merge_reviewer.scoring import MergeScoreEngine

        # 100*0.35 + 50*0.25 + 50*0.20 + 75*0.15 + 50*0.05 = 71.25
        assert MergeScoreEngine().score(analysis(), RuleEvaluation()) == 71

    def test_score_is_bounded(self):
        from merge_reviewer.models.review import (
            ComplexityMetrics,
            QualityMetrics,
            RuleEvaluation,
            RuleSeverity,
            TestCoverageMetrics,
        )
        from merge_reviewer.scoring import MergeScoreEngine

        engine = MergeScoreEngine()
        best = analysis(
            QualityMetrics(100, 100, 100, 100, 100, 100),
            TestCoverageMetrics(covered_lines=100, total_lines=100),
            ComplexityMetrics(cyclomatic=1, cognitive=1, maintainability_index=100),
        )
        worst = analysis(
            QualityMetrics(0, 0, 0, 0, 0, 0),
            TestCoverageMetrics(covered_lines=0, total_lines=100),
            ComplexityMetrics(cyclomatic=500, cognitive=500, maintainability_index=1),
        )

        assert engine.score(best, RuleEvaluation()) == 100
        assert engine.score(worst, RuleEvaluation(violated=[rule(RuleSeverity.HIGH)])) == 0

    def test_breakdown_contributions(self):
        from merge_reviewer.models.review import RuleEvaluation
        from merge_reviewer.scoring import MergeScoreEngine, Recommendation

        breakdown = MergeScoreEngine().breakdown(analysis(), RuleEvaluation())

        assert breakdown.total == 71
        assert breakdown.rule_compliance.contribution == 35
        assert breakdown.complexity.score == 75
        assert breakdown.recommendation.recommendation is Recommendation.REVIEW_NEEDED
        assert list(breakdown.components()) == [
            "rule_compliance",
            "code_quality",
            "test_coverage",
            "complexity",
            "documentation",
        ]

    @pytest.mark.parametrize(
        "score,expected",
        [(100, "ready"), (85, "ready"), (84, "review_needed"), (70, "review_needed"), (69, "not_ready")],
    )
    def test_recommendation_thresholds(self, score, expected):
        from merge_reviewer.scoring import merge_recommendation

        assert merge_recommendation(score).recommendation.value == expected

    def test_summary_flags(self):
        from merge_reviewer.models.review import QualityMetrics, RuleEvaluation, RuleSeverity
        from merge_reviewer.scoring import MergeScoreEngine

        evaluation = RuleEvaluation(violated=[rule(RuleSeverity.CRITICAL)])
        summary = MergeScoreEngine().summary(analysis(QualityMetrics(security=40)), evaluation)

        assert summary["rules"]["critical"] == 1
        assert summary["flags"]["security"] is True
        assert summary["flags"]["test_coverage"] is False

    def test_validate_score_inputs(self):
        from merge_reviewer.models.review import RuleEvaluation
        from merge_reviewer.scoring.merge_score import validate_score_inputs

        assert validate_score_inputs(analysis(), RuleEvaluation()) == []
        assert validate_score_inputs(None, None) == [
            "Code analysis is required",
            "Rule evaluation is required",
        ]


class TestDeriveCodeAnalysis:
    """Tests for estimating scoring inputs from a review."""

    def test_without_changes_has_no_coverage_data(self):
        from merge_reviewer.ai.review_generator import fallback_review
        from merge_reviewer.models.review import RuleEvaluation
        from merge_reviewer.scoring import derive_code_analysis

        result = derive_code_analysis(fallback_review("down"), RuleEvaluation())

        assert result.coverage.total_lines == 0
        assert result.complexity.cyclomatic is None
        assert [issue.source for issue in result.issues] == ["ai"]

    def test_coverage_follows_ai_assessment(self):
        from merge_reviewer.models.context import ChangeTotals, RawCodeChanges
        from merge_reviewer.models.review import AIReview, QualityMetrics, RuleEvaluation, RuleSeverity
        from merge_reviewer.scoring import derive_code_analysis

        review = AIReview(
            merge_score=80,
            quality=QualityMetrics(test_coverage=85),
            suggestions=[],
            summary="fine",
            confidence=0.9,
        )
        changes = RawCodeChanges(
            installation_id=1,
            repository_name="acme/api",
            pr_number=1,
            title="t",
            author="a",
            totals=ChangeTotals(additions=200, deletions=0, files=2),
            file_changes=[],
            raw_diff="",
        )
        evaluation = RuleEvaluation(violated=[rule(RuleSeverity.LOW)])

        result = derive_code_analysis(review, evaluation, changes)

        assert result.coverage.covered_lines == 170
        assert result.coverage.percentage == 85
        assert result.complexity.cyclomatic == 11
        assert result.complexity.cognitive == 17.5
        assert result.issues[0].source == "rule"
