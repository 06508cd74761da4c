"""
Per-run options and context for the supplement comparison engine.

Everything a run needs (options, id counters, cancellation) travels in
an AnalysisContext so concurrent comparisons never share state.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Optional

from estimate_audit.config import Settings, get_settings
from estimate_audit.exceptions import ComparisonCancelledError, InvalidOptionsError
from estimate_audit.supplement_engine.models import MatchingAlgorithm, new_analysis_id

MAX_CALCULATION_PRECISION = 6


@dataclass
class ComparisonOptions:
    """Configuration options for a comparison."""
    # Matching
    matching_algorithm: MatchingAlgorithm = MatchingAlgorithm.HYBRID
    fuzzy_threshold: float = 0.7
    # Variance
    significance_threshold_percent: float = 5.0
    calculation_precision: int = 2
    # Similarity matrix construction
    matrix_workers: int = 1
    parallel_matrix_min_cells: int = 2500

    def __post_init__(self):
        if not isinstance(self.matching_algorithm, MatchingAlgorithm):
            try:
                self.matching_algorithm = MatchingAlgorithm(str(self.matching_algorithm).lower())
            except ValueError:
                raise InvalidOptionsError(
                    "matching_algorithm",
                    self.matching_algorithm,
                    "expected one of exact, fuzzy, hybrid",
                ) from None
        if not 0.0 <= self.fuzzy_threshold <= 1.0:
            raise InvalidOptionsError("fuzzy_threshold", self.fuzzy_threshold, "must be within [0, 1]")
        if self.significance_threshold_percent < 0:
            raise InvalidOptionsError(
                "significance_threshold_percent",
                self.significance_threshold_percent,
                "must not be negative",
            )
        if not 0 <= self.calculation_precision <= MAX_CALCULATION_PRECISION:
            raise InvalidOptionsError(
                "calculation_precision",
                self.calculation_precision,
                f"must be within [0, {MAX_CALCULATION_PRECISION}]",
            )
        if self.matrix_workers < 1:
            raise InvalidOptionsError("matrix_workers", self.matrix_workers, "must be at least 1")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ComparisonOptions":
        """Build options from application settings."""
        settings = settings or get_settings()
        return cls(
            matching_algorithm=settings.matching_algorithm,
            fuzzy_threshold=settings.fuzzy_threshold,
            significance_threshold_percent=settings.significance_threshold_percent,
            calculation_precision=settings.calculation_precision,
            matrix_workers=settings.matrix_workers,
            parallel_matrix_min_cells=settings.parallel_matrix_min_cells,
        )


@dataclass
class AnalysisContext:
    """State owned by a single comparison run."""
    options: ComparisonOptions = field(default_factory=ComparisonOptions)
    analysis_id: str = field(default_factory=new_analysis_id)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    _counters: Dict[str, int] = field(default_factory=lambda: defaultdict(int), repr=False)

    def next_id(self, prefix: str) -> str:
        """Deterministic, per-run sequential id: dq-0, dq-1, ..."""
        value = self._counters[prefix]
        self._counters[prefix] = value + 1
        return f"{prefix}-{value}"

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def check_cancelled(self) -> None:
        """Raise if the run has been cancelled."""
        if self.cancel_event.is_set():
            raise ComparisonCancelledError(analysis_id=self.analysis_id)
