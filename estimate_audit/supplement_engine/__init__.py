"""
Supplement Engine - Original vs. revised repair estimate comparison.

A deterministic engine that reconciles an original collision repair
estimate against its supplemented revision and scores the cost changes.

Key Principles:
1. Decimal-exact money - half-up rounding at every monetary boundary
2. Deterministic-first - identical inputs give identical output
3. Linear pipeline - normalize, classify, reconcile, analyze, score
4. No shared state - every run owns its AnalysisContext
5. Report, don't guess - ambiguity and data problems surface as discrepancies
"""

from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.models import (
    ChargeType,
    ComparisonAnalysis,
    LineItem,
    MatchingAlgorithm,
    RiskLevel,
)
from estimate_audit.supplement_engine.orchestrator import (
    run_comparison,
    run_comparison_with_timeout,
)
from estimate_audit.supplement_engine.summary import AnalysisSummary, build_summary

__version__ = "1.0.0"
__all__ = [
    "run_comparison",
    "run_comparison_with_timeout",
    "build_summary",
    "AnalysisSummary",
    "AnalysisContext",
    "ComparisonOptions",
    "ComparisonAnalysis",
    "LineItem",
    "ChargeType",
    "MatchingAlgorithm",
    "RiskLevel",
]
