"""
Variance analysis for the supplement comparison engine.

Pass 4: Compute per-pair deltas, aggregate totals, category rollups,
change-type distribution, dispersion and data quality.
"""

import statistics
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog

from estimate_audit.supplement_engine.context import AnalysisContext
from estimate_audit.supplement_engine.models import (
    CategoryVariance,
    ChangeDistribution,
    ChangeType,
    ClassifiedLineItem,
    CostCategory,
    DataQualityIssue,
    DataQualityMetrics,
    IssueType,
    ItemVariance,
    MatchedPair,
    ReconciliationResult,
    SeverityLevel,
    Significance,
    VarianceDetail,
    VarianceStatistics,
)
from estimate_audit.supplement_engine.normalization import normalize_description
from estimate_audit.supplement_engine.patterns import get_pattern_detector
from estimate_audit.utils.decimal_math import (
    HUNDRED,
    MONEY_TOLERANCE,
    ZERO,
    percent_change,
    quantize,
    quantize_money,
    to_decimal,
)

logger = structlog.get_logger(__name__)

# Inclusive upper bounds (percent) for each significance bucket
SIGNIFICANCE_BOUNDS: List[Tuple[Decimal, Significance]] = [
    (Decimal("1"), Significance.NEGLIGIBLE),
    (Decimal("5"), Significance.MINOR),
    (Decimal("15"), Significance.MODERATE),
    (Decimal("50"), Significance.MAJOR),
]

# Inclusive upper bounds (percent) for a pair's risk level
PAIR_RISK_BOUNDS: List[Tuple[Decimal, SeverityLevel]] = [
    (Decimal("5"), SeverityLevel.LOW),
    (Decimal("15"), SeverityLevel.MEDIUM),
    (Decimal("50"), SeverityLevel.HIGH),
]


def classify_significance(percent: Optional[Decimal], absolute: Decimal) -> Significance:
    """Bucket a delta by its absolute percent."""
    if percent is None:
        return Significance.NEGLIGIBLE if absolute == ZERO else Significance.EXTREME
    magnitude = abs(percent)
    for bound, significance in SIGNIFICANCE_BOUNDS:
        if magnitude <= bound:
            return significance
    return Significance.EXTREME


def classify_pair_risk(percent: Optional[Decimal], absolute: Decimal) -> SeverityLevel:
    if percent is None:
        return SeverityLevel.LOW if absolute == ZERO else SeverityLevel.CRITICAL
    magnitude = abs(percent)
    for bound, level in PAIR_RISK_BOUNDS:
        if magnitude <= bound:
            return level
    return SeverityLevel.CRITICAL


def variance_detail(original: Decimal, revised: Decimal, places: Optional[int] = None) -> VarianceDetail:
    """
    Delta between two values.

    Args:
        original: Value on the original estimate.
        revised: Value on the revised estimate.
        places: Round the absolute delta half-up when given (money).

    Returns:
        VarianceDetail; percent is None when the original is zero.
    """
    absolute = revised - original
    if places is not None:
        absolute = quantize_money(absolute, places)
    percent = percent_change(original, revised)
    return VarianceDetail(
        original=original,
        revised=revised,
        absolute=absolute,
        percent=percent,
        is_increase=absolute > ZERO,
        significance=classify_significance(percent, absolute),
    )


class VarianceAnalyzer:
    """
    Computes variance statistics over a reconciliation.

    Totals are summed exactly; only derived ratios and averages are rounded.
    """

    def analyze(
        self,
        reconciliation: ReconciliationResult,
        context: AnalysisContext,
    ) -> VarianceStatistics:
        """
        Analyze a reconciliation.

        Fills in each MatchedPair.variance and returns aggregate statistics.

        Args:
            reconciliation: Matcher output.
            context: Run context (options).

        Returns:
            VarianceStatistics for the comparison.
        """
        options = context.options
        places = options.calculation_precision
        threshold = to_decimal(options.significance_threshold_percent)

        for pair in reconciliation.matched_pairs:
            pair.variance = self.pair_variance(pair, threshold, places)

        original_total = (
            sum((p.original.total for p in reconciliation.matched_pairs), ZERO) +
            sum((o.total for o in reconciliation.unmatched_original), ZERO)
        )
        revised_total = (
            sum((p.revised.total for p in reconciliation.matched_pairs), ZERO) +
            sum((r.total for r in reconciliation.new_supplement_items), ZERO)
        )
        total_variance = revised_total - original_total

        deltas = [p.variance.total.absolute for p in reconciliation.matched_pairs]
        mean, median, std_dev, low, high = self._dispersion(deltas, places)

        high_variance = sorted(
            (p for p in reconciliation.matched_pairs if p.variance.is_significant),
            key=lambda p: (-abs(p.variance.total.absolute), p.revised.id),
        )

        result = VarianceStatistics(
            original_total=original_total,
            revised_total=revised_total,
            total_variance=total_variance,
            total_variance_percent=percent_change(original_total, revised_total),
            category_variances=self._category_variances(reconciliation),
            variance_distribution=self._distribution(reconciliation, places),
            mean_variance=mean,
            median_variance=median,
            std_deviation=std_dev,
            min_variance=low,
            max_variance=high,
            high_variance_items=high_variance,
            suspicious_patterns=get_pattern_detector().detect(reconciliation, context),
            data_quality=get_data_quality_assessor().assess(reconciliation),
        )

        logger.info(
            "Variance analysis complete",
            total_variance=str(result.total_variance),
            total_variance_percent=str(result.total_variance_percent),
            high_variance=len(result.high_variance_items),
            patterns=len(result.suspicious_patterns),
            issues=len(result.data_quality.issues),
        )
        return result

    def pair_variance(self, pair: MatchedPair, threshold: Decimal, places: int) -> ItemVariance:
        """Per-field deltas, change type and significance for one pair."""
        original, revised = pair.original.item, pair.revised.item
        quantity = variance_detail(original.quantity, revised.quantity)
        unit_price = variance_detail(original.unit_price, revised.unit_price, places)
        total = variance_detail(original.total, revised.total, places)

        if quantity.absolute != ZERO:
            change_type = ChangeType.QUANTITY_CHANGED
        elif unit_price.absolute != ZERO or total.absolute != ZERO:
            change_type = ChangeType.PRICE_CHANGED
        else:
            change_type = ChangeType.UNCHANGED

        if total.percent is None:
            is_significant = total.absolute != ZERO
        else:
            is_significant = abs(total.percent) > threshold

        return ItemVariance(
            quantity=quantity,
            unit_price=unit_price,
            total=total,
            change_type=change_type,
            description_changed=(
                normalize_description(original.description) != normalize_description(revised.description)
            ),
            is_significant=is_significant,
            risk_level=classify_pair_risk(total.percent, total.absolute),
        )

    def _category_variances(self, reconciliation: ReconciliationResult) -> List[CategoryVariance]:
        """Roll up by cost category; matched pairs use the revised item's category."""
        buckets: Dict[CostCategory, List] = {}

        def bucket(category: CostCategory) -> List:
            return buckets.setdefault(category, [ZERO, ZERO, 0])

        for pair in reconciliation.matched_pairs:
            entry = bucket(pair.revised.attributes.cost_category)
            entry[0] += pair.original.total
            entry[1] += pair.revised.total
            entry[2] += 1
        for item in reconciliation.unmatched_original:
            entry = bucket(item.attributes.cost_category)
            entry[0] += item.total
            entry[2] += 1
        for item in reconciliation.new_supplement_items:
            entry = bucket(item.attributes.cost_category)
            entry[1] += item.total
            entry[2] += 1

        return [
            CategoryVariance(
                category=category,
                original_total=buckets[category][0],
                revised_total=buckets[category][1],
                variance=buckets[category][1] - buckets[category][0],
                variance_percent=percent_change(buckets[category][0], buckets[category][1]),
                item_count=buckets[category][2],
            )
            for category in CostCategory
            if category in buckets
        ]

    def _distribution(self, reconciliation: ReconciliationResult, places: int) -> List[ChangeDistribution]:
        amounts: Dict[ChangeType, List[Decimal]] = {change_type: [] for change_type in ChangeType}

        for pair in reconciliation.matched_pairs:
            amounts[pair.variance.change_type].append(abs(pair.variance.total.absolute))
        for item in reconciliation.new_supplement_items:
            amounts[ChangeType.NEW].append(abs(item.total))
        for item in reconciliation.unmatched_original:
            amounts[ChangeType.REMOVED].append(abs(item.total))

        item_count = sum(len(values) for values in amounts.values())
        distribution = []
        for change_type, values in amounts.items():
            total_amount = sum(values, ZERO)
            count = len(values)
            distribution.append(ChangeDistribution(
                change_type=change_type,
                count=count,
                total_amount=total_amount,
                percentage=quantize(Decimal(count) / item_count * HUNDRED, 2) if item_count else ZERO,
                average_amount=quantize_money(total_amount / count, places) if count else ZERO,
            ))
        return distribution

    def _dispersion(
        self, deltas: List[Decimal], places: int
    ) -> Tuple[Decimal, Decimal, Decimal, Decimal, Decimal]:
        """Mean, median, population std-dev, min and max of matched deltas."""
        if not deltas:
            return ZERO, ZERO, ZERO, ZERO, ZERO
        return (
            quantize_money(statistics.mean(deltas), places),
            quantize_money(statistics.median(deltas), places),
            quantize_money(statistics.pstdev(deltas), places),
            min(deltas),
            max(deltas),
        )


# =============================================================================
# Data Quality
# =============================================================================

class DataQualityAssessor:
    """Per-item data-quality checks over both estimates."""

    def assess(self, reconciliation: ReconciliationResult) -> DataQualityMetrics:
        """
        Check every compared item and every ambiguous pairing.

        Returns:
            DataQualityMetrics with one issue per affected item or pair.
        """
        items = self._all_items(reconciliation)
        issues: List[DataQualityIssue] = []
        missing = mismatched = inconsistent = 0

        for side, item in items:
            line = item.item
            if line.quantity <= ZERO or line.unit_price <= ZERO:
                missing += 1
                issues.append(DataQualityIssue(
                    issue_type=IssueType.MISSING_DATA,
                    severity=SeverityLevel.HIGH,
                    description=f"{side.capitalize()} item '{line.description}' has a missing or invalid quantity or price",
                    affected_item_ids=[line.id],
                    suggested_fix="Review and complete missing item information",
                ))
            elif abs(line.total - quantize_money(line.extended_price)) > MONEY_TOLERANCE:
                mismatched += 1
                issues.append(DataQualityIssue(
                    issue_type=IssueType.EXTENDED_PRICE_MISMATCH,
                    severity=SeverityLevel.MEDIUM,
                    description=(
                        f"{side.capitalize()} item '{line.description}' total {line.total} "
                        f"differs from quantity x price {quantize_money(line.extended_price)}"
                    ),
                    affected_item_ids=[line.id],
                    suggested_fix="Confirm whether the line is a lump-sum charge",
                ))

            breakdown = item.cost_breakdown
            if (
                breakdown is not None
                and breakdown.validation_variance is not None
                and abs(breakdown.validation_variance) > MONEY_TOLERANCE
            ):
                inconsistent += 1
                issues.append(DataQualityIssue(
                    issue_type=IssueType.CALCULATION_INCONSISTENCY,
                    severity=SeverityLevel.CRITICAL,
                    description=(
                        f"{side.capitalize()} item '{line.description}' cost breakdown "
                        f"{breakdown.component_total} does not sum to total {line.total}"
                    ),
                    affected_item_ids=[line.id],
                    suggested_fix="Verify labor hours and labor rate against the charged total",
                ))

        ambiguous = reconciliation.ambiguous_pairs
        for pair in ambiguous:
            issues.append(DataQualityIssue(
                issue_type=IssueType.MATCHING_AMBIGUITY,
                severity=SeverityLevel.MEDIUM,
                description=(
                    f"Revised item '{pair.revised.item.description}' matched equally well to "
                    f"{len(pair.alternative_original_ids) + 1} original items"
                ),
                affected_item_ids=[pair.revised.id, pair.original.id] + pair.alternative_original_ids,
                suggested_fix="Confirm the pairing manually",
            ))

        count = len(items)
        return DataQualityMetrics(
            completeness=self._score(missing, count),
            accuracy=self._score(mismatched, count),
            consistency=self._score(inconsistent + len(ambiguous), count),
            issues=issues,
        )

    def _all_items(self, reconciliation: ReconciliationResult) -> List[Tuple[str, ClassifiedLineItem]]:
        items = [("original", p.original) for p in reconciliation.matched_pairs]
        items += [("original", o) for o in reconciliation.unmatched_original]
        items += [("revised", p.revised) for p in reconciliation.matched_pairs]
        items += [("revised", r) for r in reconciliation.new_supplement_items]
        return items

    def _score(self, failures: int, count: int) -> float:
        if count == 0:
            return 1.0
        return round(max(0.0, 1.0 - failures / count), 4)


def get_variance_analyzer() -> VarianceAnalyzer:
    """Get VarianceAnalyzer instance."""
    return VarianceAnalyzer()


def get_data_quality_assessor() -> DataQualityAssessor:
    """Get DataQualityAssessor instance."""
    return DataQualityAssessor()
