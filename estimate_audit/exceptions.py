"""
Custom exceptions for the estimate audit engine.

Provides a hierarchy of exceptions with error codes and machine-readable
kinds so callers can turn a failed comparison into a structured response.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Machine-readable failure and issue kinds."""
    INTERNAL = "internal"
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_DATA = "insufficient_data"
    INVALID_OPTIONS = "invalid_options"
    CALCULATION_INCONSISTENCY = "calculation_inconsistency"
    MATCHING_AMBIGUITY = "matching_ambiguity"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class EstimateAuditError(Exception):
    """
    Base exception for all estimate audit errors.

    Attributes:
        error_code: Unique error code (e.g., EA-101)
        kind: Machine-readable error kind
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "EA-000"
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a structured failure record."""
        return {
            "error": True,
            "kind": self.kind.value,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Input Errors (EA-1XX)
class InvalidInputError(EstimateAuditError):
    """A raw line item is missing required fields or holds non-finite numbers."""
    error_code = "EA-100"
    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str = "Invalid line item", **kwargs):
        super().__init__(message, **kwargs)


class InsufficientDataError(EstimateAuditError):
    """Neither estimate has a usable line item."""
    error_code = "EA-101"
    kind = ErrorKind.INSUFFICIENT_DATA

    def __init__(self, rejected_count: int = 0, **kwargs):
        message = "No valid line items found in either estimate"
        super().__init__(message, details={"rejected_count": rejected_count}, **kwargs)


class InvalidOptionsError(EstimateAuditError):
    """Comparison options are out of range."""
    error_code = "EA-102"
    kind = ErrorKind.INVALID_OPTIONS

    def __init__(self, option: str, value: Any, reason: str, **kwargs):
        message = f"Invalid comparison option '{option}': {reason}"
        super().__init__(message, details={"option": option, "value": str(value)}, **kwargs)


# Execution Errors (EA-3XX)
class ComparisonTimeoutError(EstimateAuditError):
    """The comparison did not finish before its deadline."""
    error_code = "EA-300"
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout_seconds: float, analysis_id: str = "", **kwargs):
        message = f"Comparison timed out after {timeout_seconds}s"
        super().__init__(
            message,
            details={"timeout_seconds": timeout_seconds, "analysis_id": analysis_id},
            **kwargs,
        )


class ComparisonCancelledError(EstimateAuditError):
    """The comparison was cancelled while building the similarity matrix."""
    error_code = "EA-301"
    kind = ErrorKind.CANCELLED

    def __init__(self, analysis_id: str = "", **kwargs):
        message = "Comparison was cancelled"
        super().__init__(message, details={"analysis_id": analysis_id}, **kwargs)
