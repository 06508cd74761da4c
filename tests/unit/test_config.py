"""
Unit tests for settings, comparison options and logging setup.
"""
import pytest
import structlog

from estimate_audit.config import Settings, get_settings
from estimate_audit.exceptions import InvalidOptionsError
from estimate_audit.logging_config import (
    add_analysis_id_processor,
    bind_analysis_id,
    configure_logging,
    get_analysis_id,
)
from estimate_audit.supplement_engine.context import AnalysisContext, ComparisonOptions
from estimate_audit.supplement_engine.models import MatchingAlgorithm


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self):
        """Test default settings."""
        settings = Settings(_env_file=None)

        assert settings.matching_algorithm == "hybrid"
        assert settings.fuzzy_threshold == 0.7
        assert settings.significance_threshold_percent == 5.0
        assert settings.calculation_precision == 2
        assert settings.pipeline_timeout_seconds is None

    def test_environment_override(self, monkeypatch):
        """Test ESTIMATE_AUDIT_* variables override defaults."""
        monkeypatch.setenv("ESTIMATE_AUDIT_FUZZY_THRESHOLD", "0.8")
        monkeypatch.setenv("ESTIMATE_AUDIT_MATCHING_ALGORITHM", "exact")

        settings = get_settings()

        assert settings.fuzzy_threshold == 0.8
        assert settings.matching_algorithm == "exact"

    def test_cached(self):
        """Test settings are cached."""
        assert get_settings() is get_settings()


class TestComparisonOptions:
    """Tests for option validation."""

    def test_defaults(self):
        options = ComparisonOptions()

        assert options.matching_algorithm == MatchingAlgorithm.HYBRID
        assert options.fuzzy_threshold == 0.7
        assert options.calculation_precision == 2

    def test_algorithm_from_string(self):
        assert ComparisonOptions(matching_algorithm="FUZZY").matching_algorithm == MatchingAlgorithm.FUZZY

    @pytest.mark.parametrize("kwargs", [
        {"matching_algorithm": "nearest"},
        {"fuzzy_threshold": 1.5},
        {"fuzzy_threshold": -0.1},
        {"significance_threshold_percent": -1},
        {"calculation_precision": 7},
        {"matrix_workers": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidOptionsError):
            ComparisonOptions(**kwargs)

    def test_from_settings(self, monkeypatch):
        """Test options built from configuration."""
        monkeypatch.setenv("ESTIMATE_AUDIT_CALCULATION_PRECISION", "3")

        options = ComparisonOptions.from_settings()

        assert options.calculation_precision == 3


class TestAnalysisContext:
    """Tests for per-run context."""

    def test_sequential_ids_per_prefix(self):
        context = AnalysisContext()

        assert [context.next_id("dq") for _ in range(3)] == ["dq-0", "dq-1", "dq-2"]
        assert context.next_id("other") == "other-0"

    def test_contexts_do_not_share_counters(self):
        first, second = AnalysisContext(), AnalysisContext()
        first.next_id("dq")

        assert second.next_id("dq") == "dq-0"
        assert first.analysis_id != second.analysis_id

    def test_cancel(self):
        context = AnalysisContext()
        assert not context.cancelled

        context.cancel()

        assert context.cancelled


class TestLogging:
    """Tests for logging configuration."""

    def test_bind_analysis_id(self):
        """Test the analysis id is bound only inside the block."""
        with bind_analysis_id("run-1"):
            assert get_analysis_id() == "run-1"
            event = add_analysis_id_processor(None, "info", {"event": "x"})
            assert event["analysis_id"] == "run-1"
        assert get_analysis_id() == ""
        assert "analysis_id" not in add_analysis_id_processor(None, "info", {"event": "x"})

    def test_configure_logging(self):
        """Test structlog can be configured for console output."""
        configure_logging(level="DEBUG", json_logs=False)
        try:
            assert structlog.is_configured()
        finally:
            structlog.reset_defaults()
