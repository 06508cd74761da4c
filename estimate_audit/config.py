"""
Application configuration using pydantic-settings.

Loads comparison defaults from environment variables (ESTIMATE_AUDIT_*)
or a local .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ESTIMATE_AUDIT_",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    # Matching
    matching_algorithm: str = "hybrid"
    fuzzy_threshold: float = 0.7

    # Variance
    significance_threshold_percent: float = 5.0
    calculation_precision: int = 2

    # Similarity matrix
    matrix_workers: int = 1
    parallel_matrix_min_cells: int = 2500

    # Execution
    pipeline_timeout_seconds: Optional[float] = None
    batch_concurrency: int = 3


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
