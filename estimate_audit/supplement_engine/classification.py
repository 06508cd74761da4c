"""
Charge classifier for estimate line items.

Pass 2: Assign each item a charge type, a confidence and, for combined
charges, a part / labor / material cost breakdown.

Decision cascade (first match wins):
1. Operation code table
2. Part-category hint
3. Part number present
4. Description keyword sets
5. Labor hours present, else unknown
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from estimate_audit.supplement_engine.models import (
    ChargeType,
    ClassifiedLineItem,
    CostBreakdown,
    CostCategory,
    ItemAttributes,
    LaborType,
    LineItem,
    MaterialType,
    SubletType,
    VehicleSystem,
)
from estimate_audit.supplement_engine.reference_data import (
    AFTERMARKET_INDICATORS,
    CATEGORY_HINT_TYPES,
    CHARGE_TYPE_CATEGORIES,
    COST_CATEGORY_PATTERNS,
    DEFAULT_LABOR_RATE,
    DEFAULT_PART_RATIO,
    KEYWORD_SETS,
    LABOR_OPERATION_PATTERN,
    LABOR_RATES,
    LABOR_TYPE_PATTERNS,
    MATERIAL_TYPE_PATTERNS,
    NON_OEM_HINTS,
    OEM_HINTS,
    OEM_INDICATORS,
    OPERATION_CODE_RULES,
    OPERATION_GROUP_TYPES,
    PAINT_MATERIAL_PATTERN,
    SUBLET_TYPE_PATTERNS,
    TYPICAL_COST_RATIOS,
    VEHICLE_SYSTEM_PATTERNS,
    normalize_hint,
)
from estimate_audit.utils.decimal_math import MONEY_TOLERANCE, ZERO, quantize_money

logger = structlog.get_logger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.7
LOW_CONFIDENCE_WARNING = "Low confidence classification - manual review recommended"
UNVALIDATED_BREAKDOWN_WARNING = "Cost breakdown could not be validated - estimates used"


@dataclass
class ChargeDecision:
    """Outcome of the decision cascade."""
    charge_type: ChargeType
    rule: str
    operation_group: Optional[str] = None
    keyword_set: Optional[str] = None
    keyword_strength: float = 0.0
    matched_keywords: Tuple[str, ...] = ()


# =============================================================================
# Attribute Inference
# =============================================================================

def infer_vehicle_system(item: LineItem) -> Optional[VehicleSystem]:
    """Explicit vehicle system, else the first system whose keywords match."""
    if item.vehicle_system:
        try:
            return VehicleSystem(item.vehicle_system.strip().lower())
        except ValueError:
            logger.debug("Unknown vehicle system", item_id=item.id, value=item.vehicle_system)
    for system, pattern in VEHICLE_SYSTEM_PATTERNS:
        if pattern.search(item.description):
            return system
    return None


def infer_is_oem(item: LineItem) -> Optional[bool]:
    if item.category_hint:
        hint = normalize_hint(item.category_hint)
        if hint in OEM_HINTS:
            return True
        if hint in NON_OEM_HINTS:
            return False
    if OEM_INDICATORS.search(item.description):
        return True
    if AFTERMARKET_INDICATORS.search(item.description):
        return False
    return None


def infer_cost_category(item: LineItem, charge_type: ChargeType) -> CostCategory:
    for category, pattern in COST_CATEGORY_PATTERNS:
        if pattern.search(item.description):
            return category
    return CHARGE_TYPE_CATEGORIES[charge_type]


def _first_match(patterns, text: str):
    for value, pattern in patterns:
        if pattern.search(text):
            return value
    return None


def infer_labor_type(item: LineItem, charge_type: ChargeType) -> Optional[LaborType]:
    """Labor type code for items that bill labor, from description keywords."""
    is_labor = (
        _has_hours(item)
        or charge_type == ChargeType.LABOR_ONLY
        or (item.operation_code and LABOR_OPERATION_PATTERN.search(item.operation_code))
    )
    if not is_labor:
        return None
    return _first_match(LABOR_TYPE_PATTERNS, item.description)


def infer_material_type(item: LineItem, charge_type: ChargeType) -> Optional[MaterialType]:
    if charge_type != ChargeType.MATERIAL:
        return None
    return _first_match(MATERIAL_TYPE_PATTERNS, item.description) or MaterialType.OTHER


def infer_sublet_type(item: LineItem, charge_type: ChargeType) -> Optional[SubletType]:
    if charge_type != ChargeType.SUBLET:
        return None
    return _first_match(SUBLET_TYPE_PATTERNS, item.description) or SubletType.OTHER


# =============================================================================
# Cost Separation
# =============================================================================

def default_labor_rate(vehicle_system: Optional[VehicleSystem]) -> Decimal:
    """Shop labor rate used when an estimate gives hours but no rate."""
    if vehicle_system is None:
        return DEFAULT_LABOR_RATE
    return LABOR_RATES.get(vehicle_system, DEFAULT_LABOR_RATE)


def _typical_ratio(operation_code: Optional[str]) -> Optional[Tuple[Decimal, Decimal]]:
    if not operation_code:
        return None
    code = operation_code.strip()
    for pattern, part_ratio, labor_ratio in TYPICAL_COST_RATIOS:
        if pattern.match(code):
            return part_ratio, labor_ratio
    return None


def _has_hours(item: LineItem) -> bool:
    return item.labor_hours is not None and item.labor_hours > ZERO


def _has_rate(item: LineItem) -> bool:
    return item.labor_rate is not None and item.labor_rate > ZERO


def _labor_only_from_hours(
    item: LineItem, vehicle_system: Optional[VehicleSystem], places: int
) -> CostBreakdown:
    rate = item.labor_rate if _has_rate(item) else default_labor_rate(vehicle_system)
    labor = quantize_money(item.labor_hours * rate, places)
    return CostBreakdown(
        part_cost=ZERO,
        labor_cost=labor,
        material_cost=ZERO,
        is_validated=False,
        method="zero_total_hours",
    )


def _split_part_with_labor(
    item: LineItem, vehicle_system: Optional[VehicleSystem], places: int
) -> CostBreakdown:
    total = item.total

    # Warranty / no-charge lines: price the labor, nothing to reconcile against
    if total == ZERO and _has_hours(item):
        return _labor_only_from_hours(item, vehicle_system, places)

    if _has_hours(item):
        explicit_rate = _has_rate(item)
        rate = item.labor_rate if explicit_rate else default_labor_rate(vehicle_system)
        labor = quantize_money(item.labor_hours * rate, places)
        method = "explicit_rate" if explicit_rate else "inferred_rate"

        if labor <= total:
            part = total - labor
        else:
            part = ZERO
        gap = total - (part + labor)
        validated = explicit_rate and abs(gap) <= MONEY_TOLERANCE
        return CostBreakdown(
            part_cost=part,
            labor_cost=labor,
            material_cost=ZERO,
            is_validated=validated,
            method=method,
            validation_variance=gap if explicit_rate else None,
        )

    ratio = _typical_ratio(item.operation_code)
    if ratio is not None:
        part = quantize_money(total * ratio[0], places)
        method = "operation_ratio"
    else:
        part = quantize_money(total * DEFAULT_PART_RATIO, places)
        method = "default_ratio"

    return CostBreakdown(
        part_cost=part,
        labor_cost=total - part,
        material_cost=ZERO,
        is_validated=False,
        method=method,
    )


def _split_labor_only(
    item: LineItem, vehicle_system: Optional[VehicleSystem], places: int
) -> CostBreakdown:
    if item.total == ZERO and _has_hours(item):
        return _labor_only_from_hours(item, vehicle_system, places)
    return CostBreakdown(
        part_cost=ZERO,
        labor_cost=item.total,
        material_cost=ZERO,
        is_validated=True,
        method="labor_total",
    )


def _split_material(
    item: LineItem, vehicle_system: Optional[VehicleSystem], places: int
) -> CostBreakdown:
    return CostBreakdown(
        part_cost=ZERO,
        labor_cost=ZERO,
        material_cost=item.total,
        is_validated=True,
        method="material_total",
    )


def _no_breakdown(
    item: LineItem, vehicle_system: Optional[VehicleSystem], places: int
) -> Optional[CostBreakdown]:
    return None


_BREAKDOWN_STRATEGIES: Dict[
    ChargeType, Callable[[LineItem, Optional[VehicleSystem], int], Optional[CostBreakdown]]
] = {
    ChargeType.PART_WITH_LABOR: _split_part_with_labor,
    ChargeType.LABOR_ONLY: _split_labor_only,
    ChargeType.MATERIAL: _split_material,
    ChargeType.SUBLET: _no_breakdown,
    ChargeType.MISCELLANEOUS: _no_breakdown,
    ChargeType.UNKNOWN: _no_breakdown,
}


def separate_costs(
    item: LineItem,
    charge_type: ChargeType,
    vehicle_system: Optional[VehicleSystem] = None,
    places: int = 2,
) -> Optional[CostBreakdown]:
    """
    Split an item total into part, labor and material components.

    Args:
        item: The line item.
        charge_type: Its classified charge type.
        vehicle_system: Used to pick a default labor rate.
        places: Monetary decimal places.

    Returns:
        CostBreakdown, or None for sublet, miscellaneous and unknown charges.
    """
    return _BREAKDOWN_STRATEGIES[charge_type](item, vehicle_system, places)


# =============================================================================
# Classifier
# =============================================================================

class ChargeClassifier:
    """
    Rule-driven charge classifier.

    Confidence is computed separately from the decision path and only
    reported alongside it.
    """

    BASE_CONFIDENCE = 0.5

    def __init__(self, calculation_precision: int = 2):
        self._places = calculation_precision

    def classify(self, item: LineItem) -> ClassifiedLineItem:
        """
        Classify a single line item.

        Args:
            item: Normalized line item.

        Returns:
            ClassifiedLineItem with charge type, confidence and breakdown.
        """
        decision = self._decide(item)
        confidence = self._confidence(item, decision)
        vehicle_system = infer_vehicle_system(item)
        breakdown = separate_costs(item, decision.charge_type, vehicle_system, self._places)

        warnings: List[str] = []
        if confidence < LOW_CONFIDENCE_THRESHOLD:
            warnings.append(LOW_CONFIDENCE_WARNING)
        if breakdown is not None and not breakdown.is_validated:
            warnings.append(UNVALIDATED_BREAKDOWN_WARNING)

        return ClassifiedLineItem(
            item=item,
            charge_type=decision.charge_type,
            confidence=confidence,
            cost_breakdown=breakdown,
            attributes=ItemAttributes(
                cost_category=infer_cost_category(item, decision.charge_type),
                vehicle_system=vehicle_system,
                is_oem=infer_is_oem(item),
                labor_type=infer_labor_type(item, decision.charge_type),
                material_type=infer_material_type(item, decision.charge_type),
                sublet_type=infer_sublet_type(item, decision.charge_type),
            ),
            matched_keywords=list(decision.matched_keywords),
            warnings=warnings,
        )

    def classify_all(self, items: List[LineItem]) -> List[ClassifiedLineItem]:
        """Classify items, preserving order."""
        classified = [self.classify(item) for item in items]
        logger.debug(
            "Classified line items",
            count=len(classified),
            low_confidence=sum(1 for c in classified if c.confidence < LOW_CONFIDENCE_THRESHOLD),
        )
        return classified

    def _decide(self, item: LineItem) -> ChargeDecision:
        group = self._operation_group(item.operation_code)
        if group is not None:
            charge_type = OPERATION_GROUP_TYPES[group]
            if group == "refinish" and PAINT_MATERIAL_PATTERN.search(item.description):
                charge_type = ChargeType.MATERIAL
            return ChargeDecision(charge_type, rule="operation_code", operation_group=group)

        if item.category_hint:
            hinted = CATEGORY_HINT_TYPES.get(normalize_hint(item.category_hint))
            if hinted is not None:
                return ChargeDecision(hinted, rule="category_hint")

        if item.part_number:
            return ChargeDecision(ChargeType.PART_WITH_LABOR, rule="part_number")

        for set_name, charge_type, pattern, strength in KEYWORD_SETS:
            found = pattern.findall(item.description)
            if found:
                return ChargeDecision(
                    charge_type,
                    rule="keyword",
                    keyword_set=set_name,
                    keyword_strength=strength,
                    matched_keywords=tuple(k.lower() for k in found),
                )

        if _has_hours(item):
            return ChargeDecision(ChargeType.LABOR_ONLY, rule="labor_hours")
        return ChargeDecision(ChargeType.UNKNOWN, rule="fallback")

    def _operation_group(self, operation_code: Optional[str]) -> Optional[str]:
        if not operation_code:
            return None
        for group, pattern in OPERATION_CODE_RULES:
            if pattern.search(operation_code):
                return group
        return None

    def _confidence(self, item: LineItem, decision: ChargeDecision) -> float:
        charge_type = decision.charge_type
        confidence = self.BASE_CONFIDENCE

        group = self._operation_group(item.operation_code)
        if group == "sublet" and charge_type == ChargeType.SUBLET:
            confidence = max(confidence, 0.95)
        elif group == "replace" and charge_type == ChargeType.PART_WITH_LABOR:
            confidence = max(confidence, 0.85)
        elif group in ("remove_install", "refinish") and charge_type == ChargeType.LABOR_ONLY:
            confidence = max(confidence, 0.90)

        if item.part_number and charge_type == ChargeType.PART_WITH_LABOR:
            confidence = max(confidence, 0.95 if _has_hours(item) else 0.80)

        if _has_hours(item) and charge_type in (ChargeType.LABOR_ONLY, ChargeType.PART_WITH_LABOR):
            confidence = max(confidence, 0.75)

        if item.category_hint:
            hinted = CATEGORY_HINT_TYPES.get(normalize_hint(item.category_hint))
            if hinted == charge_type:
                confidence = max(confidence, 0.85)

        # Keyword agreement counts even when another rule made the decision
        for _, keyword_type, pattern, strength in KEYWORD_SETS:
            if pattern.search(item.description):
                if keyword_type == charge_type:
                    confidence = max(confidence, strength)
                break

        return min(max(confidence, 0.0), 1.0)


def get_charge_classifier(calculation_precision: int = 2) -> ChargeClassifier:
    """Get ChargeClassifier instance."""
    return ChargeClassifier(calculation_precision)
