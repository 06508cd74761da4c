"""
Suspicious billing pattern detection.

Detectors run over the classified, reconciled dataset and report
patterns a reviewer should look at. They never change the variance
figures.
"""

import statistics
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from estimate_audit.supplement_engine.classification import default_labor_rate
from estimate_audit.supplement_engine.context import AnalysisContext
from estimate_audit.supplement_engine.models import (
    ClassifiedLineItem,
    PatternType,
    ReconciliationResult,
    SeverityLevel,
    SuspiciousPattern,
    VehicleSystem,
)
from estimate_audit.supplement_engine.normalization import normalize_description
from estimate_audit.supplement_engine.reference_data import (
    BENFORD_CHI_SQUARE_CRITICAL,
    BENFORD_DIGIT_DEVIATION,
    BENFORD_DISTRIBUTION,
    DEFAULT_MAX_LABOR_HOURS,
    MAX_REASONABLE_LABOR_HOURS,
    MIN_BENFORD_SAMPLE,
    MIN_OUTLIER_SAMPLE,
    RARELY_DAMAGED_PATTERN,
    Z_SCORE_CRITICAL,
    Z_SCORE_HIGH,
    Z_SCORE_MEDIUM,
)
from estimate_audit.utils.decimal_math import (
    SCORE_PLACES,
    ZERO,
    percent_change,
    quantize,
    quantize_money,
)

logger = structlog.get_logger(__name__)

ROUND_NUMBER_SHARE = Decimal("0.30")
ROUND_NUMBER_BASE = Decimal("10")
OVERPRICED_PERCENT = Decimal("50")


def max_reasonable_labor_hours(vehicle_system: Optional[VehicleSystem]) -> Decimal:
    if vehicle_system is None:
        return DEFAULT_MAX_LABOR_HOURS
    return MAX_REASONABLE_LABOR_HOURS.get(vehicle_system, DEFAULT_MAX_LABOR_HOURS)


def _systems(items: Iterable[ClassifiedLineItem]) -> List[VehicleSystem]:
    present = {i.attributes.vehicle_system for i in items if i.attributes.vehicle_system}
    return [system for system in VehicleSystem if system in present]


class SuspiciousPatternDetector:
    """
    Detects billing patterns associated with padded supplements.

    Detectors (fixed order):
    - duplicate descriptions on the revised estimate
    - round-number price bias among re-priced items
    - OEM parts swapped for aftermarket at OEM prices
    - labor hours above the cap for the vehicle system
    - components rarely damaged in a typical collision
    - large unit price increases
    - price, quantity or total values two or more standard deviations out
    - first digits of prices or totals departing from Benford's law
    """

    def detect(
        self,
        reconciliation: ReconciliationResult,
        context: AnalysisContext,
    ) -> List[SuspiciousPattern]:
        """
        Run every detector.

        Args:
            reconciliation: Matcher output with pair variances filled in.
            context: Run context (options).

        Returns:
            Detected patterns in detector order.
        """
        places = context.options.calculation_precision
        revised_side = [p.revised for p in reconciliation.matched_pairs]
        revised_side += reconciliation.new_supplement_items

        detectors = [
            self._duplicate_items(revised_side),
            self._round_number_bias(reconciliation),
            self._premium_parts_bias(reconciliation),
            self._unnecessary_labor(revised_side, places),
            self._shotgun_repair(revised_side),
            self._overpriced_parts(reconciliation),
            self._statistical_outliers(revised_side, places),
            self._benford_violation(revised_side),
        ]
        patterns = [p for p in detectors if p is not None]

        if patterns:
            logger.info(
                "Suspicious patterns detected",
                patterns=[p.pattern_type.value for p in patterns],
            )
        return patterns

    def _duplicate_items(self, items: List[ClassifiedLineItem]) -> Optional[SuspiciousPattern]:
        groups: Dict[str, List[ClassifiedLineItem]] = {}
        for item in items:
            groups.setdefault(normalize_description(item.item.description), []).append(item)

        duplicated = [group for _, group in sorted(groups.items()) if len(group) > 1]
        if not duplicated:
            return None

        affected = [item for group in duplicated for item in group]
        return SuspiciousPattern(
            pattern_type=PatternType.DUPLICATE_ITEMS,
            description=f"{len(duplicated)} descriptions appear more than once on the revised estimate",
            confidence=0.8,
            affected_item_ids=[item.id for item in affected],
            potential_impact=sum((item.total for group in duplicated for item in group[1:]), ZERO),
            vehicle_systems=_systems(affected),
        )

    def _round_number_bias(self, reconciliation: ReconciliationResult) -> Optional[SuspiciousPattern]:
        changed = [
            p for p in reconciliation.matched_pairs
            if p.original.item.unit_price != p.revised.item.unit_price
        ]
        rounded = [
            p for p in changed
            if p.revised.item.unit_price != ZERO
            and p.revised.item.unit_price % ROUND_NUMBER_BASE == ZERO
        ]
        if not changed or Decimal(len(rounded)) / len(changed) <= ROUND_NUMBER_SHARE:
            return None

        return SuspiciousPattern(
            pattern_type=PatternType.ROUND_NUMBER_BIAS,
            description=(
                f"{len(rounded)} of {len(changed)} re-priced items use round-number prices"
            ),
            confidence=0.6,
            affected_item_ids=[p.revised.id for p in rounded],
            potential_impact=sum((p.revised.total - p.original.total for p in rounded), ZERO),
            vehicle_systems=_systems(p.revised for p in rounded),
        )

    def _premium_parts_bias(self, reconciliation: ReconciliationResult) -> Optional[SuspiciousPattern]:
        switched = [
            p for p in reconciliation.matched_pairs
            if p.original.attributes.is_oem is True
            and p.revised.attributes.is_oem is False
            and p.revised.item.unit_price >= p.original.item.unit_price
        ]
        if not switched:
            return None

        return SuspiciousPattern(
            pattern_type=PatternType.PREMIUM_PARTS_BIAS,
            description=f"{len(switched)} OEM parts switched to aftermarket but billed at OEM prices",
            confidence=0.9,
            affected_item_ids=[p.revised.id for p in switched],
            potential_impact=sum((p.revised.total for p in switched), ZERO),
            vehicle_systems=_systems(p.revised for p in switched),
        )

    def _unnecessary_labor(
        self, items: List[ClassifiedLineItem], places: int
    ) -> Optional[SuspiciousPattern]:
        excessive = []
        impact = ZERO
        for item in items:
            hours = item.item.labor_hours
            if hours is None:
                continue
            system = item.attributes.vehicle_system
            cap = max_reasonable_labor_hours(system)
            if hours > cap:
                excessive.append(item)
                rate = item.item.labor_rate or default_labor_rate(system)
                impact += quantize_money((hours - cap) * rate, places)

        if not excessive:
            return None

        return SuspiciousPattern(
            pattern_type=PatternType.UNNECESSARY_LABOR,
            description=f"{len(excessive)} items bill more labor hours than typical for their system",
            confidence=0.8,
            affected_item_ids=[item.id for item in excessive],
            potential_impact=impact,
            vehicle_systems=_systems(excessive),
        )

    def _shotgun_repair(self, items: List[ClassifiedLineItem]) -> Optional[SuspiciousPattern]:
        unlikely = [item for item in items if RARELY_DAMAGED_PATTERN.search(item.item.description)]
        if not unlikely:
            return None

        return SuspiciousPattern(
            pattern_type=PatternType.SHOTGUN_REPAIR,
            description=f"{len(unlikely)} items are rarely damaged in typical accidents",
            confidence=0.6,
            affected_item_ids=[item.id for item in unlikely],
            potential_impact=sum((item.total for item in unlikely), ZERO),
            vehicle_systems=_systems(unlikely),
        )

    def _overpriced_parts(self, reconciliation: ReconciliationResult) -> Optional[SuspiciousPattern]:
        overpriced = []
        for pair in reconciliation.matched_pairs:
            change = percent_change(pair.original.item.unit_price, pair.revised.item.unit_price)
            if change is not None and change > OVERPRICED_PERCENT:
                overpriced.append(pair)

        if not overpriced:
            return None

        return SuspiciousPattern(
            pattern_type=PatternType.OVERPRICED_PARTS,
            description=f"{len(overpriced)} items increased in unit price by more than {OVERPRICED_PERCENT}%",
            confidence=0.7,
            affected_item_ids=[p.revised.id for p in overpriced],
            potential_impact=sum((p.revised.total - p.original.total for p in overpriced), ZERO),
            vehicle_systems=_systems(p.revised for p in overpriced),
        )

    def _statistical_outliers(
        self, items: List[ClassifiedLineItem], places: int
    ) -> Optional[SuspiciousPattern]:
        if len(items) < MIN_OUTLIER_SAMPLE:
            return None

        metrics = [
            ("price", [item.item.unit_price for item in items]),
            ("quantity", [item.item.quantity for item in items]),
            ("total", [item.total for item in items]),
        ]
        flagged_metrics: List[str] = []
        outlier_ids = set()
        max_z_score = ZERO

        for name, values in metrics:
            std_dev = statistics.pstdev(values)
            if std_dev == ZERO:
                continue
            mean = statistics.mean(values)
            z_scores = [abs(value - mean) / std_dev for value in values]
            flagged = [item.id for item, z in zip(items, z_scores) if z >= Z_SCORE_MEDIUM]
            if flagged:
                flagged_metrics.append(name)
                outlier_ids.update(flagged)
                max_z_score = max(max_z_score, max(z_scores))

        if not outlier_ids:
            return None

        outliers = [item for item in items if item.id in outlier_ids]
        mean_total = statistics.mean(item.total for item in items)
        impact = sum((max(item.total - mean_total, ZERO) for item in outliers), ZERO)

        return SuspiciousPattern(
            pattern_type=PatternType.STATISTICAL_OUTLIER,
            description=(
                f"{len(outliers)} items are statistical outliers in "
                f"{', '.join(flagged_metrics)} (max z-score {quantize(max_z_score, 2)})"
            ),
            confidence=float(quantize(min(max_z_score / Z_SCORE_CRITICAL, Decimal("1")), SCORE_PLACES)),
            affected_item_ids=[item.id for item in outliers],
            potential_impact=quantize_money(impact, places),
            vehicle_systems=_systems(outliers),
            severity=z_score_severity(max_z_score),
        )

    def _benford_violation(self, items: List[ClassifiedLineItem]) -> Optional[SuspiciousPattern]:
        if len(items) < MIN_BENFORD_SAMPLE:
            return None

        findings = []
        for name, values in (
            ("price", [item.item.unit_price for item in items]),
            ("total", [item.total for item in items]),
        ):
            digits = [d for d in (first_digit(value) for value in values) if d > 0]
            if not digits:
                continue
            chi_square, suspicious = benford_test(digits)
            if chi_square > BENFORD_CHI_SQUARE_CRITICAL:
                findings.append((name, chi_square, suspicious))

        if not findings:
            return None

        details = "; ".join(
            f"{name} (chi-square {quantize(chi_square, 2)}, digits {', '.join(map(str, suspicious))})"
            for name, chi_square, suspicious in findings
        )
        return SuspiciousPattern(
            pattern_type=PatternType.BENFORD_VIOLATION,
            description=f"First digits depart from Benford's law in {details}",
            confidence=0.99,
            affected_item_ids=[item.id for item in items],
            potential_impact=ZERO,
            vehicle_systems=_systems(items),
            severity=SeverityLevel.HIGH,
        )


def z_score_severity(z_score: Decimal) -> SeverityLevel:
    if z_score >= Z_SCORE_CRITICAL:
        return SeverityLevel.CRITICAL
    if z_score >= Z_SCORE_HIGH:
        return SeverityLevel.HIGH
    if z_score >= Z_SCORE_MEDIUM:
        return SeverityLevel.MEDIUM
    return SeverityLevel.LOW


def first_digit(value: Decimal) -> int:
    """Leading significant digit of a value, 0 for zero."""
    if value == ZERO:
        return 0
    return value.as_tuple().digits[0]


def benford_test(digits: List[int]) -> Tuple[Decimal, List[int]]:
    """
    Chi-square goodness of fit of first digits against Benford's law.

    Args:
        digits: Leading digits, 1 to 9.

    Returns:
        The chi-square statistic and the digits whose observed share
        deviates from the expected share by more than five points.
    """
    n = Decimal(len(digits))
    counts = [digits.count(digit) for digit in range(1, 10)]

    chi_square = ZERO
    suspicious = []
    for digit, (count, share) in enumerate(zip(counts, BENFORD_DISTRIBUTION), start=1):
        expected = share * n
        chi_square += (count - expected) ** 2 / expected
        if abs(count / n - share) > BENFORD_DIGIT_DEVIATION:
            suspicious.append(digit)
    return chi_square, suspicious


def get_pattern_detector() -> SuspiciousPatternDetector:
    """Get SuspiciousPatternDetector instance."""
    return SuspiciousPatternDetector()
