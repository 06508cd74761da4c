"""
Static reference tables for charge classification and pattern detection.

Keywords, operation codes, labor rates and labor caps are data. Extend
these tables rather than adding branches to the classifier.
"""

import re
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, List, Pattern, Tuple

from estimate_audit.supplement_engine.models import (
    ChargeType,
    CostCategory,
    LaborType,
    MaterialType,
    SubletType,
    VehicleSystem,
)


def compile_keywords(keywords: Iterable[str]) -> Pattern:
    """
    Compile a keyword set into one word-bounded regex.

    Longer phrases are tried first so "brake fluid" wins over "brake".
    A trailing plural "s"/"es" is allowed.
    """
    ordered = sorted(set(keywords), key=lambda k: (-len(k), k))
    alternation = "|".join(re.escape(k) for k in ordered)
    return re.compile(rf"(?<!\w)(?:{alternation})(?:e?s)?(?!\w)", re.IGNORECASE)


# =============================================================================
# Charge Classification Keywords
# =============================================================================

PART_NOUNS: FrozenSet[str] = frozenset({
    "bumper", "fender", "door", "hood", "panel", "mirror", "lamp", "headlight",
    "taillight", "grille", "molding", "trim", "bracket", "sensor", "camera",
    "module", "switch", "actuator", "motor", "pump", "compressor", "alternator",
    "starter", "battery", "brake pad", "rotor", "caliper", "strut", "shock",
    "spring", "control arm", "tie rod", "ball joint", "bearing", "hub",
    "filter", "belt", "hose", "gasket", "seal", "windshield", "radiator",
    "condenser", "reinforcement", "absorber", "liner", "emblem", "wheel",
})

REPLACEMENT_VERBS: FrozenSet[str] = frozenset({
    "replace", "replacement", "install", "installation", "r&r", "r & r",
})

LABOR_VERBS: FrozenSet[str] = frozenset({
    "diagnostic", "diagnosis", "inspection", "test", "testing", "alignment",
    "balance", "calibration", "adjustment", "setup", "programming", "scan",
    "check", "verify", "measure", "remove and install", "r&i", "r & i",
    "disassemble", "reassemble", "refinish", "blend", "paint", "prep", "sand",
    "mask", "detail", "clean", "polish", "buff",
})

MATERIAL_NOUNS: FrozenSet[str] = frozenset({
    "primer", "clear coat", "sealer", "adhesive", "fluid", "oil", "coolant",
    "brake fluid", "transmission fluid", "supplies", "shop supplies",
    "materials", "consumables", "sandpaper", "masking", "tape", "thinner",
    "reducer", "paint materials", "body materials", "hazardous waste",
})

SUBLET_NOUNS: FrozenSet[str] = frozenset({
    "sublet", "outside", "vendor", "third party", "glass shop",
    "alignment shop", "tire shop", "adas calibration", "camera calibration",
    "radar calibration", "upholstery", "interior repair", "dent repair", "pdr",
})

# Keyword sets in evaluation order; the first set that matches wins.
KEYWORD_SETS: List[Tuple[str, ChargeType, Pattern, float]] = [
    ("part", ChargeType.PART_WITH_LABOR, compile_keywords(PART_NOUNS | REPLACEMENT_VERBS), 0.75),
    ("labor", ChargeType.LABOR_ONLY, compile_keywords(LABOR_VERBS), 0.80),
    ("material", ChargeType.MATERIAL, compile_keywords(MATERIAL_NOUNS), 0.85),
    ("sublet", ChargeType.SUBLET, compile_keywords(SUBLET_NOUNS), 0.90),
]

PAINT_MATERIAL_PATTERN = compile_keywords({
    "paint", "primer", "clear coat", "sealer", "base coat", "supplies", "materials",
})


# =============================================================================
# Operation Codes
# =============================================================================

# Operation code groups, evaluated in order.
OPERATION_CODE_RULES: List[Tuple[str, Pattern]] = [
    ("sublet", re.compile(r"subl", re.IGNORECASE)),
    ("replace", re.compile(r"repl|r\s*&\s*r|replace|o/h|overhaul", re.IGNORECASE)),
    ("remove_install", re.compile(r"r\s*&\s*i|remove.*install", re.IGNORECASE)),
    ("refinish", re.compile(r"refn|blnd|refinish|blend", re.IGNORECASE)),
]

OPERATION_GROUP_TYPES: Dict[str, ChargeType] = {
    "sublet": ChargeType.SUBLET,
    "replace": ChargeType.PART_WITH_LABOR,
    "remove_install": ChargeType.LABOR_ONLY,
    "refinish": ChargeType.LABOR_ONLY,
}

# Typical (part, labor) share of a combined charge by operation code.
TYPICAL_COST_RATIOS: List[Tuple[Pattern, Decimal, Decimal]] = [
    (re.compile(r"^(?:o/h|overhaul)$", re.IGNORECASE), Decimal("0.70"), Decimal("0.30")),
    (re.compile(r"^r\s*&\s*r$", re.IGNORECASE), Decimal("0.55"), Decimal("0.45")),
    (re.compile(r"^(?:repl|replace)$", re.IGNORECASE), Decimal("0.60"), Decimal("0.40")),
]

DEFAULT_PART_RATIO = Decimal("0.60")


# =============================================================================
# Category Hints
# =============================================================================

CATEGORY_HINT_TYPES: Dict[str, ChargeType] = {
    "OEM": ChargeType.PART_WITH_LABOR,
    "AFTERMARKET": ChargeType.PART_WITH_LABOR,
    "USED": ChargeType.PART_WITH_LABOR,
    "RECYCLED": ChargeType.PART_WITH_LABOR,
    "LKQ": ChargeType.PART_WITH_LABOR,
    "LABOR": ChargeType.LABOR_ONLY,
    "PAINT_MATERIALS": ChargeType.MATERIAL,
    "CONSUMABLES": ChargeType.MATERIAL,
    "SUBLET": ChargeType.SUBLET,
    "RENTAL": ChargeType.MISCELLANEOUS,
    "STORAGE": ChargeType.MISCELLANEOUS,
    "TOWING": ChargeType.MISCELLANEOUS,
}

OEM_HINTS = frozenset({"OEM"})
NON_OEM_HINTS = frozenset({"AFTERMARKET", "USED", "RECYCLED", "LKQ"})


def normalize_hint(hint: str) -> str:
    """Canonical form of a category hint ("paint materials" -> PAINT_MATERIALS)."""
    return re.sub(r"[\s\-/]+", "_", hint.strip()).upper()


# =============================================================================
# Attribute Inference
# =============================================================================

COST_CATEGORY_PATTERNS: List[Tuple[CostCategory, Pattern]] = [
    (CostCategory.LABOR, compile_keywords({
        "labor", "work", "hour", "service", "technician", "mechanic", "install", "repair",
    })),
    (CostCategory.PARTS, compile_keywords({
        "part", "component", "replacement", "oem", "aftermarket", "filter", "belt",
        "brake", "engine",
    })),
    (CostCategory.MATERIALS, compile_keywords({
        "material", "paint", "primer", "adhesive", "sealant", "fluid", "oil", "coolant",
    })),
    (CostCategory.EQUIPMENT, compile_keywords({
        "rental", "tool", "equipment", "machinery", "lift", "diagnostic",
    })),
    (CostCategory.OVERHEAD, compile_keywords({
        "shop", "overhead", "admin", "disposal", "environmental", "fee", "charge",
    })),
]

CHARGE_TYPE_CATEGORIES: Dict[ChargeType, CostCategory] = {
    ChargeType.PART_WITH_LABOR: CostCategory.PARTS,
    ChargeType.LABOR_ONLY: CostCategory.LABOR,
    ChargeType.MATERIAL: CostCategory.MATERIALS,
    ChargeType.SUBLET: CostCategory.SUBLET,
    ChargeType.MISCELLANEOUS: CostCategory.OTHER,
    ChargeType.UNKNOWN: CostCategory.OTHER,
}

VEHICLE_SYSTEM_PATTERNS: List[Tuple[VehicleSystem, Pattern]] = [
    (VehicleSystem.ENGINE, compile_keywords({
        "engine", "motor", "cylinder", "piston", "valve", "timing", "camshaft",
        "crankshaft", "oil pan", "intake", "throttle", "fuel injector",
    })),
    (VehicleSystem.TRANSMISSION, compile_keywords({
        "transmission", "clutch", "gearbox", "differential", "axle", "cv joint",
        "driveshaft", "transfer case",
    })),
    (VehicleSystem.BRAKES, compile_keywords({
        "brake", "rotor", "caliper", "brake pad", "brake line", "master cylinder", "abs",
    })),
    (VehicleSystem.SUSPENSION, compile_keywords({
        "suspension", "strut", "shock", "spring", "control arm", "ball joint",
        "sway bar", "bushing",
    })),
    (VehicleSystem.STEERING, compile_keywords({
        "steering", "tie rod", "rack", "power steering", "steering wheel",
    })),
    (VehicleSystem.EXHAUST, compile_keywords({
        "exhaust", "muffler", "catalytic converter", "tailpipe", "exhaust manifold",
    })),
    (VehicleSystem.ELECTRICAL, compile_keywords({
        "battery", "alternator", "starter", "wiring", "fuse", "relay", "sensor",
        "module", "ecu", "pcm", "headlight", "taillight", "lamp", "camera",
    })),
    (VehicleSystem.PAINT, compile_keywords({
        "refinish", "paint", "clear coat", "blend", "primer",
    })),
    (VehicleSystem.FRAME, compile_keywords({
        "frame", "unibody", "rail", "frame straightening", "pillar",
    })),
    (VehicleSystem.BODY, compile_keywords({
        "bumper", "fender", "door", "hood", "panel", "quarter panel", "trunk",
        "roof", "grille", "mirror", "molding", "trim", "windshield",
    })),
]

OEM_INDICATORS = compile_keywords({
    "genuine", "oem", "original", "factory", "mopar", "motorcraft", "acdelco",
})

AFTERMARKET_INDICATORS = compile_keywords({
    "aftermarket", "dorman", "beck arnley", "febi", "lemforder", "corteco",
    "gates", "dayco", "bosch", "denso", "ngk", "champion", "capa", "lkq",
})


# =============================================================================
# Labor Rates and Caps
# =============================================================================

DEFAULT_LABOR_RATE = Decimal("120")

MECHANICAL_LABOR_RATE = Decimal("150")

LABOR_RATES: Dict[VehicleSystem, Decimal] = {
    VehicleSystem.BODY: Decimal("120"),
    VehicleSystem.PAINT: Decimal("120"),
    VehicleSystem.FRAME: Decimal("130"),
    VehicleSystem.ELECTRICAL: Decimal("140"),
    VehicleSystem.ENGINE: MECHANICAL_LABOR_RATE,
    VehicleSystem.TRANSMISSION: MECHANICAL_LABOR_RATE,
    VehicleSystem.BRAKES: MECHANICAL_LABOR_RATE,
    VehicleSystem.SUSPENSION: MECHANICAL_LABOR_RATE,
    VehicleSystem.EXHAUST: MECHANICAL_LABOR_RATE,
    VehicleSystem.STEERING: MECHANICAL_LABOR_RATE,
}

DEFAULT_MAX_LABOR_HOURS = Decimal("8")

MAX_REASONABLE_LABOR_HOURS: Dict[VehicleSystem, Decimal] = {
    VehicleSystem.ENGINE: Decimal("20"),
    VehicleSystem.TRANSMISSION: Decimal("15"),
    VehicleSystem.BRAKES: Decimal("4"),
    VehicleSystem.SUSPENSION: Decimal("6"),
    VehicleSystem.ELECTRICAL: Decimal("8"),
    VehicleSystem.BODY: Decimal("12"),
    VehicleSystem.EXHAUST: Decimal("3"),
    VehicleSystem.STEERING: Decimal("5"),
}

# Components rarely damaged in a typical collision.
RARELY_DAMAGED_PATTERN = compile_keywords({
    "transmission", "engine block", "differential", "catalytic converter",
    "ecu", "pcm", "airbag module",
})


# =============================================================================
# Item Detail Types
# =============================================================================

# First match wins.
LABOR_TYPE_PATTERNS: List[Tuple[LaborType, Pattern]] = [
    (LaborType.DIAGNOSTIC, compile_keywords({"diagnostic", "scan", "test"})),
    (LaborType.PAINT, compile_keywords({"paint", "refinish", "blend"})),
    (LaborType.GLASS, compile_keywords({"glass", "windshield"})),
    (LaborType.FRAME, compile_keywords({"frame", "rail"})),
    (LaborType.STRUCTURAL, compile_keywords({"body", "panel", "bumper", "fender"})),
    (LaborType.ELECTRICAL, compile_keywords({"electrical", "wiring", "sensor", "module"})),
    (LaborType.MECHANICAL, compile_keywords({"engine", "transmission", "brake", "suspension"})),
]

LABOR_OPERATION_PATTERN = re.compile(r"r\s*&\s*i|refn|blnd|diagnostic", re.IGNORECASE)

MATERIAL_TYPE_PATTERNS: List[Tuple[MaterialType, Pattern]] = [
    (MaterialType.PAINT, compile_keywords({"paint", "primer", "clear coat", "sealer"})),
    (MaterialType.FLUIDS, compile_keywords({"fluid", "oil", "coolant"})),
    (MaterialType.SUPPLIES, compile_keywords({"supplies", "supply", "materials", "material"})),
]

SUBLET_TYPE_PATTERNS: List[Tuple[SubletType, Pattern]] = [
    (SubletType.GLASS, compile_keywords({"glass", "windshield"})),
    (SubletType.ALIGNMENT, compile_keywords({"alignment"})),
    (SubletType.ADAS, compile_keywords({"adas", "calibration", "camera", "radar"})),
    (SubletType.UPHOLSTERY, compile_keywords({"upholstery", "interior"})),
]


# =============================================================================
# Statistical Checks
# =============================================================================

# z-score grades for statistical outliers
Z_SCORE_MEDIUM = Decimal("2.0")
Z_SCORE_HIGH = Decimal("2.5")
Z_SCORE_CRITICAL = Decimal("3.0")
MIN_OUTLIER_SAMPLE = 3

# Expected first-digit shares under Benford's law, digits 1 to 9
BENFORD_DISTRIBUTION: Tuple[Decimal, ...] = tuple(
    Decimal(p) for p in ("0.301", "0.176", "0.125", "0.097", "0.079", "0.067", "0.058", "0.051", "0.046")
)
MIN_BENFORD_SAMPLE = 30
# Chi-square with 8 degrees of freedom; above this the fit is rejected at p < 0.01
BENFORD_CHI_SQUARE_CRITICAL = Decimal("20")
BENFORD_DIGIT_DEVIATION = Decimal("0.05")
