"""
Batch processor service for supplement comparisons.

Runs independent comparison requests (different claims) in parallel.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from estimate_audit.config import get_settings
from estimate_audit.exceptions import EstimateAuditError
from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.models import ComparisonAnalysis
from estimate_audit.supplement_engine.orchestrator import run_comparison_with_timeout

logger = structlog.get_logger(__name__)


@dataclass
class ComparisonRequest:
    """One claim to compare."""

    original: List[Any]
    revised: List[Any]
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    options: Optional[ComparisonOptions] = None


@dataclass
class BatchComparisonResult:
    """Result of a batch comparison."""

    total_requests: int
    successful: int
    failed: int
    results: Dict[str, ComparisonAnalysis]
    errors: List[Dict[str, Any]]
    processing_time_ms: float


class BatchComparisonProcessor:
    """
    Service for comparing many claims at once.

    Features:
    - Parallel processing with configurable concurrency
    - A fresh AnalysisContext per request, nothing shared
    - Error isolation (one failure doesn't stop the batch)
    - Optional per-request deadline
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        """Initialize batch processor."""
        settings = get_settings()
        self._max_concurrency = max_concurrency or settings.batch_concurrency
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.pipeline_timeout_seconds
        )

    async def process(self, requests: Iterable[ComparisonRequest]) -> BatchComparisonResult:
        """
        Process comparison requests asynchronously.

        Args:
            requests: Comparison requests to run.

        Returns:
            BatchComparisonResult with analyses keyed by request id and
            structured failures for the rest.
        """
        start_time = time.time()
        requests = list(requests)
        results: Dict[str, ComparisonAnalysis] = {}
        errors: List[Dict[str, Any]] = []

        semaphore = asyncio.Semaphore(self._max_concurrency)
        loop = asyncio.get_running_loop()

        async def process_request(request: ComparisonRequest) -> None:
            async with semaphore:
                try:
                    context = AnalysisContext(
                        options=request.options or ComparisonOptions.from_settings()
                    )
                    # CPU-bound: run in thread pool
                    results[request.request_id] = await loop.run_in_executor(
                        None,
                        self._compare,
                        request,
                        context,
                    )
                except EstimateAuditError as e:
                    errors.append({"request_id": request.request_id, **e.to_dict()})
                    logger.warning(
                        "Batch comparison failed",
                        request_id=request.request_id,
                        error_code=e.error_code,
                        error=e.message,
                    )
                except Exception as e:
                    errors.append({
                        "request_id": request.request_id,
                        "error": True,
                        "kind": "internal",
                        "error_code": EstimateAuditError.error_code,
                        "message": str(e),
                        "details": {"type": type(e).__name__},
                    })
                    logger.exception("Unexpected batch comparison error", request_id=request.request_id)

        await asyncio.gather(*(process_request(request) for request in requests))

        processing_time = (time.time() - start_time) * 1000
        result = BatchComparisonResult(
            total_requests=len(requests),
            successful=len(results),
            failed=len(errors),
            results=results,
            errors=sorted(errors, key=lambda e: e["request_id"]),
            processing_time_ms=processing_time,
        )

        logger.info(
            "Batch comparison completed",
            successful=result.successful,
            failed=result.failed,
            time_ms=processing_time,
        )
        return result

    def _compare(self, request: ComparisonRequest, context: AnalysisContext) -> ComparisonAnalysis:
        return run_comparison_with_timeout(
            request.original,
            request.revised,
            timeout_seconds=self._timeout_seconds,
            context=context,
        )


def get_batch_processor(
    max_concurrency: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
) -> BatchComparisonProcessor:
    """Get BatchComparisonProcessor instance."""
    return BatchComparisonProcessor(max_concurrency, timeout_seconds)
