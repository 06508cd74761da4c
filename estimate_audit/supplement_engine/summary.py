"""
Analysis summary for reporting collaborators.

Condenses a ComparisonAnalysis into grand totals, change counts and a
category breakdown ordered by impact.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from estimate_audit.supplement_engine.models import (
    CategoryVariance,
    ChangeType,
    ComparisonAnalysis,
    RiskLevel,
)

SIGNIFICANT_CHANGE_PERCENT = Decimal("10")
CRITICAL_CHANGE_PERCENT = Decimal("50")


@dataclass
class AnalysisSummary:
    """Headline figures of a comparison."""
    original_total: Decimal
    revised_total: Decimal
    net_change: Decimal
    net_change_percent: Optional[Decimal]
    items_added: int
    items_removed: int
    items_changed: int
    items_unchanged: int
    is_significant_change: bool
    is_critical_change: bool
    risk_score: int
    risk_level: RiskLevel
    category_breakdown: List[CategoryVariance] = field(default_factory=list)


def build_summary(analysis: ComparisonAnalysis) -> AnalysisSummary:
    """Summarize a comparison for display."""
    stats = analysis.statistics
    counts = {entry.change_type: entry.count for entry in stats.variance_distribution}
    percent = stats.total_variance_percent

    if percent is None:
        significant = critical = stats.total_variance != 0
    else:
        significant = abs(percent) >= SIGNIFICANT_CHANGE_PERCENT
        critical = abs(percent) >= CRITICAL_CHANGE_PERCENT

    return AnalysisSummary(
        original_total=stats.original_total,
        revised_total=stats.revised_total,
        net_change=stats.total_variance,
        net_change_percent=percent,
        items_added=counts.get(ChangeType.NEW, 0),
        items_removed=counts.get(ChangeType.REMOVED, 0),
        items_changed=counts.get(ChangeType.QUANTITY_CHANGED, 0) + counts.get(ChangeType.PRICE_CHANGED, 0),
        items_unchanged=counts.get(ChangeType.UNCHANGED, 0),
        is_significant_change=significant,
        is_critical_change=critical,
        risk_score=analysis.risk_assessment.overall_risk_score,
        risk_level=analysis.risk_assessment.risk_level,
        category_breakdown=sorted(
            stats.category_variances,
            key=lambda c: (-abs(c.variance), c.category.value),
        ),
    )
