"""
Unit tests for custom exceptions.

Tests exception hierarchy and error formatting.
"""
import pytest

from estimate_audit.exceptions import (
    ComparisonCancelledError,
    ComparisonTimeoutError,
    ErrorKind,
    EstimateAuditError,
    InsufficientDataError,
    InvalidInputError,
    InvalidOptionsError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_base_exception(self):
        """Test base EstimateAuditError."""
        exc = EstimateAuditError("Test error")

        assert exc.error_code == "EA-000"
        assert exc.kind == ErrorKind.INTERNAL
        assert exc.message == "Test error"
        assert str(exc) == "Test error"

    def test_invalid_input_error(self):
        """Test InvalidInputError inherits correctly."""
        exc = InvalidInputError()

        assert isinstance(exc, EstimateAuditError)
        assert exc.error_code == "EA-100"
        assert exc.kind == ErrorKind.INVALID_INPUT
        assert exc.message == "Invalid line item"

    def test_insufficient_data_error(self):
        """Test InsufficientDataError."""
        exc = InsufficientDataError(rejected_count=3)

        assert exc.error_code == "EA-101"
        assert exc.kind == ErrorKind.INSUFFICIENT_DATA
        assert exc.details["rejected_count"] == 3

    def test_invalid_options_error(self):
        """Test InvalidOptionsError."""
        exc = InvalidOptionsError("fuzzy_threshold", 1.5, "must be within [0, 1]")

        assert exc.error_code == "EA-102"
        assert "fuzzy_threshold" in exc.message
        assert exc.details == {"option": "fuzzy_threshold", "value": "1.5"}

    def test_timeout_error(self):
        """Test ComparisonTimeoutError."""
        exc = ComparisonTimeoutError(2.5, analysis_id="abc")

        assert exc.error_code == "EA-300"
        assert exc.kind == ErrorKind.TIMEOUT
        assert "2.5" in exc.message
        assert exc.details["analysis_id"] == "abc"

    def test_cancelled_error(self):
        """Test ComparisonCancelledError."""
        exc = ComparisonCancelledError(analysis_id="abc")

        assert exc.error_code == "EA-301"
        assert exc.kind == ErrorKind.CANCELLED


class TestExceptionDetails:
    """Tests for exception details handling."""

    def test_custom_details(self):
        """Test exceptions with custom details."""
        exc = InvalidInputError("Bad quantity", details={"record_id": "7"})

        assert exc.details["record_id"] == "7"

    def test_error_code_override(self):
        """Test the error code can be overridden per instance."""
        exc = EstimateAuditError("Custom", error_code="EA-999")

        assert exc.error_code == "EA-999"
        assert EstimateAuditError.error_code == "EA-000"

    def test_to_dict(self):
        """Test structured failure record."""
        exc = InsufficientDataError(rejected_count=1)

        assert exc.to_dict() == {
            "error": True,
            "kind": "insufficient_data",
            "error_code": "EA-101",
            "message": "No valid line items found in either estimate",
            "details": {"rejected_count": 1},
        }

    def test_exception_can_be_raised(self):
        """Test that exceptions can be raised and caught."""
        with pytest.raises(EstimateAuditError) as exc_info:
            raise InvalidInputError("Test error")

        assert exc_info.value.error_code == "EA-100"
