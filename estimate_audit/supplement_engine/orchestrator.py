"""
Orchestrator for the supplement comparison engine.

Main entry point that coordinates the linear pipeline:
Pass 1: Normalize (validate, coerce, order)
Pass 2: Classify (charge type, confidence, cost breakdown)
Pass 3: Reconcile (greedy best-first matching)
Pass 4: Analyze (variance, patterns, data quality)
Pass 5: Score (discrepancies + risk assessment)
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Iterable, Optional

import structlog

from estimate_audit.exceptions import ComparisonTimeoutError, EstimateAuditError
from estimate_audit.logging_config import bind_analysis_id
from estimate_audit.supplement_engine.classification import get_charge_classifier
from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.matching import get_reconciliation_matcher
from estimate_audit.supplement_engine.models import ComparisonAnalysis
from estimate_audit.supplement_engine.normalization import RawRecord, get_line_item_normalizer
from estimate_audit.supplement_engine.risk import get_risk_scorer
from estimate_audit.supplement_engine.variance import get_variance_analyzer

logger = structlog.get_logger(__name__)


def run_comparison(
    original_records: Iterable[RawRecord],
    revised_records: Iterable[RawRecord],
    options: Optional[ComparisonOptions] = None,
    context: Optional[AnalysisContext] = None,
) -> ComparisonAnalysis:
    """
    Main entry point for the supplement comparison engine.

    Orchestrates the complete pipeline:
    1. Normalize both estimates
    2. Classify every charge
    3. Reconcile original against revised items
    4. Analyze variance
    5. Identify discrepancies and assess risk

    Args:
        original_records: Raw line items of the original estimate.
        revised_records: Raw line items of the revised (supplemented) estimate.
        options: Comparison options. Ignored when a context is given.
        context: Run context; a fresh one is created when omitted.

    Returns:
        ComparisonAnalysis bundling reconciliation, statistics,
        discrepancies and risk.

    Raises:
        InsufficientDataError: if neither estimate has a valid item.
        ComparisonCancelledError: if the context is cancelled mid-run.
    """
    if context is None:
        context = AnalysisContext(options=options or ComparisonOptions())
    options = context.options
    start_time = time.perf_counter()

    with bind_analysis_id(context.analysis_id):
        logger.info(
            "Starting supplement comparison",
            algorithm=options.matching_algorithm.value,
            threshold=options.fuzzy_threshold,
            precision=options.calculation_precision,
        )

        try:
            # =================================================================
            # Pass 1: NORMALIZATION
            # =================================================================
            logger.info("Pass 1: Normalization")
            normalized = get_line_item_normalizer().normalize(original_records, revised_records)

            # =================================================================
            # Pass 2: CLASSIFICATION
            # =================================================================
            logger.info("Pass 2: Classification")
            classifier = get_charge_classifier(options.calculation_precision)
            original_items = classifier.classify_all(normalized.original)
            revised_items = classifier.classify_all(normalized.revised)

            # =================================================================
            # Pass 3: RECONCILIATION
            # =================================================================
            logger.info("Pass 3: Reconciliation")
            reconciliation = get_reconciliation_matcher().reconcile(
                original_items, revised_items, context
            )

            # =================================================================
            # Pass 4: VARIANCE ANALYSIS
            # =================================================================
            logger.info("Pass 4: Variance analysis")
            statistics = get_variance_analyzer().analyze(reconciliation, context)

            # =================================================================
            # Pass 5: RISK
            # =================================================================
            logger.info("Pass 5: Risk scoring")
            scorer = get_risk_scorer()
            discrepancies = scorer.identify_discrepancies(statistics, context)
            risk = scorer.assess(statistics, discrepancies)

        except EstimateAuditError as e:
            logger.error(
                "Supplement comparison failed",
                error_code=e.error_code,
                kind=e.kind.value,
                error=e.message,
            )
            raise

        processing_time = (time.perf_counter() - start_time) * 1000

        analysis = ComparisonAnalysis(
            analysis_id=context.analysis_id,
            options=options,
            original_items=original_items,
            revised_items=revised_items,
            reconciliation=reconciliation,
            statistics=statistics,
            discrepancies=discrepancies,
            risk_assessment=risk,
            rejected_records=normalized.rejected,
            processing_time_ms=processing_time,
        )

        logger.info(
            "Supplement comparison complete",
            matched=len(reconciliation.matched_pairs),
            total_variance=str(statistics.total_variance),
            risk_score=risk.overall_risk_score,
            risk_level=risk.risk_level.value,
            time_ms=round(processing_time, 2),
        )
        return analysis


def run_comparison_with_timeout(
    original_records: Iterable[RawRecord],
    revised_records: Iterable[RawRecord],
    options: Optional[ComparisonOptions] = None,
    timeout_seconds: Optional[float] = None,
    context: Optional[AnalysisContext] = None,
) -> ComparisonAnalysis:
    """
    Run a comparison under a deadline.

    The deadline covers the whole pipeline. On expiry the run is
    cancelled and no partial result is returned.

    Raises:
        ComparisonTimeoutError: if the deadline passes first.
    """
    if context is None:
        context = AnalysisContext(options=options or ComparisonOptions())
    if timeout_seconds is None:
        return run_comparison(original_records, revised_records, context=context)

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="supplement-comparison")
    try:
        future = executor.submit(
            run_comparison, original_records, revised_records, None, context
        )
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            context.cancel()
            logger.warning(
                "Supplement comparison timed out",
                analysis_id=context.analysis_id,
                timeout_seconds=timeout_seconds,
            )
            raise ComparisonTimeoutError(timeout_seconds, analysis_id=context.analysis_id) from None
    finally:
        executor.shutdown(wait=False)
