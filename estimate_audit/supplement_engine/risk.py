"""
Risk scoring for the supplement comparison engine.

Pass 5: Turn data-quality issues into discrepancies and combine variance
magnitude, critical discrepancies and suspicious patterns into a single
0-100 score with a risk level and recommendations.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

import structlog

from estimate_audit.supplement_engine.context import AnalysisContext
from estimate_audit.supplement_engine.models import (
    Discrepancy,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
    SeverityLevel,
    VarianceStatistics,
)
from estimate_audit.utils.decimal_math import HUNDRED, ZERO

logger = structlog.get_logger(__name__)

# Term weights
VARIANCE_WEIGHT = Decimal("0.4")
DISCREPANCY_WEIGHT = Decimal("0.3")
PATTERN_WEIGHT = Decimal("0.3")

# Per-occurrence points and caps for the count-based terms
POINTS_PER_CRITICAL = Decimal("20")
CRITICAL_CAP = Decimal("60")
POINTS_PER_PATTERN = Decimal("15")
PATTERN_CAP = Decimal("30")

HIGH_VARIANCE_PERCENT = Decimal("10")

RISK_LEVEL_BOUNDS = [
    (Decimal("25"), RiskLevel.LOW),
    (Decimal("50"), RiskLevel.MEDIUM),
    (Decimal("75"), RiskLevel.HIGH),
]

LEVEL_RECOMMENDATIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: [
        "Immediate manual review required before approval",
        "Consider requesting additional documentation",
    ],
    RiskLevel.HIGH: [
        "Detailed review of high-variance items recommended",
        "Verify pricing against industry standards",
    ],
    RiskLevel.MEDIUM: [
        "Standard review process with attention to flagged items",
    ],
    RiskLevel.LOW: [
        "Standard processing acceptable",
    ],
}


def score_to_level(score: Decimal) -> RiskLevel:
    for bound, level in RISK_LEVEL_BOUNDS:
        if score < bound:
            return level
    return RiskLevel.CRITICAL


class RiskScorer:
    """
    Composite risk score.

    score = 0.4 * variance% (clamped to 0..100)
          + 0.3 * min(20 * critical discrepancies, 60)
          + 0.3 * min(15 * suspicious patterns, 30)
    """

    def identify_discrepancies(
        self,
        statistics: VarianceStatistics,
        context: AnalysisContext,
    ) -> List[Discrepancy]:
        """One discrepancy per data-quality issue, ids drawn from the run context."""
        discrepancies = []
        for issue in statistics.data_quality.issues:
            discrepancies.append(Discrepancy(
                id=context.next_id("dq"),
                discrepancy_type=issue.issue_type,
                severity=issue.severity,
                description=issue.description,
                affected_item_ids=list(issue.affected_item_ids),
                potential_impact=ZERO,
                recommended_action=issue.suggested_fix or "Manual review required",
            ))
        return discrepancies

    def assess(
        self,
        statistics: VarianceStatistics,
        discrepancies: List[Discrepancy],
    ) -> RiskAssessment:
        """
        Score a comparison.

        Args:
            statistics: Variance statistics for the comparison.
            discrepancies: Discrepancies identified for it.

        Returns:
            RiskAssessment with score, level, factors and recommendations.
        """
        factors: List[RiskFactor] = []

        variance_term = self._variance_term(statistics)
        if variance_term > HIGH_VARIANCE_PERCENT:
            factors.append(RiskFactor(
                factor_type="high_variance",
                description=self._variance_description(statistics),
                impact=variance_term,
                mitigation="Compare high-variance items line by line against the original estimate",
            ))

        critical = sum(1 for d in discrepancies if d.severity == SeverityLevel.CRITICAL)
        discrepancy_term = min(POINTS_PER_CRITICAL * critical, CRITICAL_CAP)
        if critical:
            factors.append(RiskFactor(
                factor_type="critical_discrepancies",
                description=f"{critical} critical discrepancies found",
                impact=discrepancy_term,
                mitigation="Resolve critical discrepancies before approval",
            ))

        pattern_count = len(statistics.suspicious_patterns)
        pattern_term = min(POINTS_PER_PATTERN * pattern_count, PATTERN_CAP)
        if pattern_count:
            factors.append(RiskFactor(
                factor_type="suspicious_patterns",
                description=f"{pattern_count} suspicious patterns detected",
                impact=pattern_term,
                mitigation="Investigate suspicious patterns for potential fraud",
            ))

        score = (
            VARIANCE_WEIGHT * variance_term +
            DISCREPANCY_WEIGHT * discrepancy_term +
            PATTERN_WEIGHT * pattern_term
        )
        level = score_to_level(score)

        recommendations = list(LEVEL_RECOMMENDATIONS[level])
        recommendations.extend(f.mitigation for f in factors)

        assessment = RiskAssessment(
            overall_risk_score=int(score.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            risk_level=level,
            risk_factors=factors,
            recommendations=recommendations,
        )

        logger.info(
            "Risk assessment complete",
            score=assessment.overall_risk_score,
            level=level.value,
            factors=[f.factor_type for f in factors],
        )
        return assessment

    def _variance_term(self, statistics: VarianceStatistics) -> Decimal:
        """Variance percent clamped to 0..100; undefined percent counts as 100 on an increase."""
        percent: Optional[Decimal] = statistics.total_variance_percent
        if percent is None:
            return HUNDRED if statistics.total_variance > ZERO else ZERO
        return min(max(percent, ZERO), HUNDRED)

    def _variance_description(self, statistics: VarianceStatistics) -> str:
        if statistics.total_variance_percent is None:
            return f"Revised estimate adds {statistics.total_variance} to a zero original total"
        return (
            f"Total variance of {statistics.total_variance_percent}% exceeds normal thresholds"
        )


def get_risk_scorer() -> RiskScorer:
    """Get RiskScorer instance."""
    return RiskScorer()
