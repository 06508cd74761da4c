"""
Data model for the supplement comparison engine.

Implements the records passed between the comparison passes:
- LineItem records as accepted from the extraction collaborator
- ClassifiedLineItem with charge type, confidence and cost breakdown
- MatchedPair / ReconciliationResult from the matcher
- VarianceStatistics with category rollups, patterns and data quality
- Discrepancy and RiskAssessment records
- ComparisonAnalysis bundling a whole run
"""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from estimate_audit.exceptions import ErrorKind


class ChargeType(str, Enum):
    """Nature of a billed line item."""
    PART_WITH_LABOR = "part_with_labor"
    LABOR_ONLY = "labor_only"
    MATERIAL = "material"
    SUBLET = "sublet"
    MISCELLANEOUS = "miscellaneous"
    UNKNOWN = "unknown"


class CostCategory(str, Enum):
    """Reporting roll-up bucket."""
    LABOR = "labor"
    PARTS = "parts"
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    OVERHEAD = "overhead"
    SUBLET = "sublet"
    OTHER = "other"


class VehicleSystem(str, Enum):
    """Major vehicle assembly an item belongs to."""
    ENGINE = "engine"
    TRANSMISSION = "transmission"
    BRAKES = "brakes"
    SUSPENSION = "suspension"
    ELECTRICAL = "electrical"
    BODY = "body"
    EXHAUST = "exhaust"
    STEERING = "steering"
    PAINT = "paint"
    FRAME = "frame"


class LaborType(str, Enum):
    """Estimating-system labor type codes."""
    MECHANICAL = "M"
    STRUCTURAL = "S"
    FRAME = "F"
    ELECTRICAL = "E"
    GLASS = "G"
    DIAGNOSTIC = "D"
    PAINT = "P"


class MaterialType(str, Enum):
    """Kind of shop material."""
    PAINT = "paint"
    FLUIDS = "fluids"
    SUPPLIES = "supplies"
    OTHER = "other"


class SubletType(str, Enum):
    """Kind of work sent to an outside vendor."""
    GLASS = "glass"
    ALIGNMENT = "alignment"
    ADAS = "adas"
    UPHOLSTERY = "upholstery"
    OTHER = "other"


class MatchingAlgorithm(str, Enum):
    """Candidate generation strategy for reconciliation."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    HYBRID = "hybrid"


class ChangeType(str, Enum):
    """How an item changed between the two estimates."""
    NEW = "new"
    REMOVED = "removed"
    QUANTITY_CHANGED = "quantity_changed"
    PRICE_CHANGED = "price_changed"
    UNCHANGED = "unchanged"


class Significance(str, Enum):
    """Magnitude bucket for a percent delta."""
    NEGLIGIBLE = "negligible"  # <= 1%
    MINOR = "minor"            # <= 5%
    MODERATE = "moderate"      # <= 15%
    MAJOR = "major"            # <= 50%
    EXTREME = "extreme"        # > 50%


class SeverityLevel(str, Enum):
    """Severity for pairs, issues and discrepancies."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Overall risk bucket."""
    LOW = "low"            # < 25
    MEDIUM = "medium"      # < 50
    HIGH = "high"          # < 75
    CRITICAL = "critical"  # >= 75


class PatternType(str, Enum):
    """Suspicious billing patterns."""
    DUPLICATE_ITEMS = "duplicate_items"
    ROUND_NUMBER_BIAS = "round_number_bias"
    PREMIUM_PARTS_BIAS = "premium_parts_bias"
    UNNECESSARY_LABOR = "unnecessary_labor"
    SHOTGUN_REPAIR = "shotgun_repair"
    OVERPRICED_PARTS = "overpriced_parts"
    STATISTICAL_OUTLIER = "statistical_outlier"
    BENFORD_VIOLATION = "benford_violation"


class IssueType(str, Enum):
    """Data-quality issue types."""
    MISSING_DATA = "missing_data"
    EXTENDED_PRICE_MISMATCH = "extended_price_mismatch"
    CALCULATION_INCONSISTENCY = ErrorKind.CALCULATION_INCONSISTENCY.value
    MATCHING_AMBIGUITY = ErrorKind.MATCHING_AMBIGUITY.value


# =============================================================================
# Line Items
# =============================================================================

@dataclass(frozen=True)
class LineItem:
    """A single billed entry on a repair estimate."""
    id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    operation_code: Optional[str] = None
    part_number: Optional[str] = None
    labor_hours: Optional[Decimal] = None
    labor_rate: Optional[Decimal] = None
    category_hint: Optional[str] = None
    vehicle_system: Optional[str] = None

    @property
    def extended_price(self) -> Decimal:
        """Advisory quantity x unit price."""
        return self.quantity * self.unit_price


@dataclass
class RejectedRecord:
    """A raw record dropped by the normalizer."""
    side: str  # "original" or "revised"
    index: int
    reason: str
    record_id: Optional[str] = None
    kind: ErrorKind = ErrorKind.INVALID_INPUT


@dataclass
class ItemAttributes:
    """Attributes inferred from an item's description and hints."""
    cost_category: CostCategory = CostCategory.OTHER
    vehicle_system: Optional[VehicleSystem] = None
    is_oem: Optional[bool] = None
    labor_type: Optional[LaborType] = None
    material_type: Optional[MaterialType] = None
    sublet_type: Optional[SubletType] = None


@dataclass
class CostBreakdown:
    """Part / labor / material split of a line item total."""
    part_cost: Decimal
    labor_cost: Decimal
    material_cost: Decimal
    is_validated: bool
    method: str
    validation_variance: Optional[Decimal] = None

    @property
    def component_total(self) -> Decimal:
        return self.part_cost + self.labor_cost + self.material_cost


@dataclass
class ClassifiedLineItem:
    """LineItem plus its charge classification."""
    item: LineItem
    charge_type: ChargeType
    confidence: float
    cost_breakdown: Optional[CostBreakdown] = None
    attributes: ItemAttributes = field(default_factory=ItemAttributes)
    matched_keywords: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.item.id

    @property
    def total(self) -> Decimal:
        return self.item.total


# =============================================================================
# Reconciliation
# =============================================================================

@dataclass
class MatchCriteria:
    """Component scores behind a match score."""
    exact_description: float = 0.0
    fuzzy_description: float = 0.0
    category: float = 0.0
    price_range: float = 0.0


@dataclass
class VarianceDetail:
    """Delta between an original and revised value."""
    original: Decimal
    revised: Decimal
    absolute: Decimal
    percent: Optional[Decimal]
    is_increase: bool
    significance: Significance


@dataclass
class ItemVariance:
    """Per-field deltas for a matched pair."""
    quantity: VarianceDetail
    unit_price: VarianceDetail
    total: VarianceDetail
    change_type: ChangeType
    description_changed: bool
    is_significant: bool
    risk_level: SeverityLevel


@dataclass
class MatchedPair:
    """Exactly one original item paired with exactly one revised item."""
    original: ClassifiedLineItem
    revised: ClassifiedLineItem
    match_score: float
    match_criteria: MatchCriteria
    variance: Optional[ItemVariance] = None
    is_ambiguous: bool = False
    alternative_original_ids: List[str] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    """Partition of both estimates into matched, removed and new items."""
    matched_pairs: List[MatchedPair] = field(default_factory=list)
    unmatched_original: List[ClassifiedLineItem] = field(default_factory=list)
    new_supplement_items: List[ClassifiedLineItem] = field(default_factory=list)
    matching_accuracy: float = 0.0

    @property
    def ambiguous_pairs(self) -> List[MatchedPair]:
        return [p for p in self.matched_pairs if p.is_ambiguous]


# =============================================================================
# Variance Statistics
# =============================================================================

@dataclass
class CategoryVariance:
    """Roll-up of one cost category across both estimates."""
    category: CostCategory
    original_total: Decimal
    revised_total: Decimal
    variance: Decimal
    variance_percent: Optional[Decimal]
    item_count: int


@dataclass
class ChangeDistribution:
    """Distribution entry for one change type."""
    change_type: ChangeType
    count: int
    total_amount: Decimal
    percentage: Decimal
    average_amount: Decimal


@dataclass
class SuspiciousPattern:
    """A billing pattern worth a reviewer's attention."""
    pattern_type: PatternType
    description: str
    confidence: float
    affected_item_ids: List[str]
    potential_impact: Decimal
    vehicle_systems: List[VehicleSystem] = field(default_factory=list)
    severity: Optional[SeverityLevel] = None


@dataclass
class DataQualityIssue:
    """A non-fatal, per-item finding."""
    issue_type: IssueType
    severity: SeverityLevel
    description: str
    affected_item_ids: List[str]
    suggested_fix: str


@dataclass
class DataQualityMetrics:
    """Completeness, accuracy and consistency of the compared items."""
    completeness: float = 1.0
    accuracy: float = 1.0
    consistency: float = 1.0
    issues: List[DataQualityIssue] = field(default_factory=list)


@dataclass
class VarianceStatistics:
    """Aggregate variance over a reconciliation."""
    original_total: Decimal
    revised_total: Decimal
    total_variance: Decimal
    total_variance_percent: Optional[Decimal]
    category_variances: List[CategoryVariance] = field(default_factory=list)
    variance_distribution: List[ChangeDistribution] = field(default_factory=list)
    mean_variance: Decimal = Decimal("0")
    median_variance: Decimal = Decimal("0")
    std_deviation: Decimal = Decimal("0")
    min_variance: Decimal = Decimal("0")
    max_variance: Decimal = Decimal("0")
    high_variance_items: List[MatchedPair] = field(default_factory=list)
    suspicious_patterns: List[SuspiciousPattern] = field(default_factory=list)
    data_quality: DataQualityMetrics = field(default_factory=DataQualityMetrics)


# =============================================================================
# Risk
# =============================================================================

@dataclass
class Discrepancy:
    """A reviewable finding derived from a data-quality issue."""
    id: str
    discrepancy_type: IssueType
    severity: SeverityLevel
    description: str
    affected_item_ids: List[str]
    potential_impact: Decimal
    recommended_action: str


@dataclass
class RiskFactor:
    """One contributor to the overall risk score."""
    factor_type: str
    description: str
    impact: Decimal
    mitigation: str


@dataclass
class RiskAssessment:
    """Overall risk for a comparison."""
    overall_risk_score: int
    risk_level: RiskLevel
    risk_factors: List[RiskFactor] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


# =============================================================================
# Comparison Result
# =============================================================================

@dataclass
class ComparisonAnalysis:
    """Complete result of one comparison run."""
    analysis_id: str
    options: Any
    original_items: List[ClassifiedLineItem]
    revised_items: List[ClassifiedLineItem]
    reconciliation: ReconciliationResult
    statistics: VarianceStatistics
    discrepancies: List[Discrepancy]
    risk_assessment: RiskAssessment
    rejected_records: List[RejectedRecord] = field(default_factory=list)
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return _to_jsonable(self)


def new_analysis_id() -> str:
    """Generate a fresh analysis id."""
    return str(uuid.uuid4())


def _to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, Decimals and Enums for serialization."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    return value
