"""
Tests for discrepancy identification and risk scoring.
"""
from decimal import Decimal
from typing import List, Optional

import pytest

from estimate_audit.supplement_engine.models import (
    DataQualityIssue,
    DataQualityMetrics,
    Discrepancy,
    IssueType,
    PatternType,
    RiskLevel,
    SeverityLevel,
    SuspiciousPattern,
    VarianceStatistics,
)
from estimate_audit.supplement_engine.risk import RiskScorer, score_to_level


def statistics(
    percent: Optional[str],
    total_variance: str = "0",
    patterns: int = 0,
    issues: Optional[List[DataQualityIssue]] = None,
) -> VarianceStatistics:
    return VarianceStatistics(
        original_total=Decimal("1000"),
        revised_total=Decimal("1000") + Decimal(total_variance),
        total_variance=Decimal(total_variance),
        total_variance_percent=None if percent is None else Decimal(percent),
        suspicious_patterns=[
            SuspiciousPattern(
                pattern_type=PatternType.SHOTGUN_REPAIR,
                description="pattern",
                confidence=0.6,
                affected_item_ids=[f"r{i}"],
                potential_impact=Decimal("0"),
            )
            for i in range(patterns)
        ],
        data_quality=DataQualityMetrics(issues=issues or []),
    )


def critical(count: int) -> List[Discrepancy]:
    return [
        Discrepancy(
            id=f"dq-{i}",
            discrepancy_type=IssueType.CALCULATION_INCONSISTENCY,
            severity=SeverityLevel.CRITICAL,
            description="breakdown mismatch",
            affected_item_ids=[f"r{i}"],
            potential_impact=Decimal("0"),
            recommended_action="Verify",
        )
        for i in range(count)
    ]


class TestScoreToLevel:
    """Tests for risk buckets."""

    @pytest.mark.parametrize("score,expected", [
        ("0", RiskLevel.LOW),
        ("24.99", RiskLevel.LOW),
        ("25", RiskLevel.MEDIUM),
        ("49.9", RiskLevel.MEDIUM),
        ("50", RiskLevel.HIGH),
        ("75", RiskLevel.CRITICAL),
        ("100", RiskLevel.CRITICAL),
    ])
    def test_buckets(self, score, expected):
        assert score_to_level(Decimal(score)) == expected


class TestRiskScorer:
    """Tests for the composite score."""

    @pytest.fixture
    def scorer(self) -> RiskScorer:
        return RiskScorer()

    def test_variance_only(self, scorer: RiskScorer):
        """Test a 50% increase alone."""
        assessment = scorer.assess(statistics("50", "500"), [])

        assert assessment.overall_risk_score == 20
        assert assessment.risk_level == RiskLevel.LOW
        assert [f.factor_type for f in assessment.risk_factors] == ["high_variance"]
        assert assessment.recommendations == [
            "Standard processing acceptable",
            "Compare high-variance items line by line against the original estimate",
        ]

    def test_all_terms_capped(self, scorer: RiskScorer):
        """Test each term saturates at its cap."""
        assessment = scorer.assess(statistics("180", "1800", patterns=3), critical(4))

        # 0.4 * 100 + 0.3 * 60 + 0.3 * 30
        assert assessment.overall_risk_score == 67
        assert assessment.risk_level == RiskLevel.HIGH
        assert [f.factor_type for f in assessment.risk_factors] == [
            "high_variance", "critical_discrepancies", "suspicious_patterns",
        ]
        assert assessment.recommendations[:2] == [
            "Detailed review of high-variance items recommended",
            "Verify pricing against industry standards",
        ]

    def test_undefined_percent_increase(self, scorer: RiskScorer):
        """Test growth from a zero original counts as full variance."""
        assessment = scorer.assess(statistics(None, "200"), [])
        assert assessment.overall_risk_score == 40
        assert assessment.risk_level == RiskLevel.MEDIUM

    def test_decrease_carries_no_variance_risk(self, scorer: RiskScorer):
        """Test reductions do not add risk."""
        assessment = scorer.assess(statistics("-30", "-300"), [])
        assert assessment.overall_risk_score == 0
        assert assessment.risk_factors == []
        assert assessment.risk_level == RiskLevel.LOW

    def test_small_variance_no_factor(self, scorer: RiskScorer):
        """Test variance at or below 10% is not a named factor."""
        assessment = scorer.assess(statistics("10", "100"), [])
        assert assessment.overall_risk_score == 4
        assert assessment.risk_factors == []

    def test_score_bounded(self, scorer: RiskScorer):
        """Test the score never exceeds the sum of the capped terms."""
        assessment = scorer.assess(statistics("1000", "10000", patterns=10), critical(10))
        assert assessment.overall_risk_score == 67
        assert 0 <= assessment.overall_risk_score <= 100

    def test_identify_discrepancies(self, scorer: RiskScorer, context):
        """Test one discrepancy per issue with sequential ids."""
        issues = [
            DataQualityIssue(
                issue_type=IssueType.MISSING_DATA,
                severity=SeverityLevel.HIGH,
                description="missing price",
                affected_item_ids=["o1"],
                suggested_fix="Review and complete missing item information",
            ),
            DataQualityIssue(
                issue_type=IssueType.MATCHING_AMBIGUITY,
                severity=SeverityLevel.MEDIUM,
                description="tie",
                affected_item_ids=["r1", "o1", "o2"],
                suggested_fix="Confirm the pairing manually",
            ),
        ]
        discrepancies = scorer.identify_discrepancies(statistics("0", issues=issues), context)

        assert [d.id for d in discrepancies] == ["dq-0", "dq-1"]
        assert [d.discrepancy_type for d in discrepancies] == [
            IssueType.MISSING_DATA, IssueType.MATCHING_AMBIGUITY,
        ]
        assert discrepancies[0].severity == SeverityLevel.HIGH
        assert discrepancies[1].recommended_action == "Confirm the pairing manually"
