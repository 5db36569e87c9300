"""Application configuration for sqltrace."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings loaded from environment (``SQLTRACE_*``) or ``.env``.

    Advisor thresholds and significance cutoffs are policy constants; they
    live here so they can be calibrated per workload without code changes.
    """

    # Database
    database_url: str = ""
    explain_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    # Advisor thresholds
    large_scan_rows: int = 10_000
    nested_loop_rows: int = 1_000
    sort_spill_cost_per_row: float = 0.01
    estimated_cost_per_row: float = 0.01
    expensive_cost_threshold: float = 1000.0
    index_filter_removed_ratio: float = 10.0
    index_filter_removed_min: int = 1_000

    # Benchmark defaults
    warmup_runs: int = 2
    benchmark_runs: int = 5
    timeout_seconds: float = 30.0
    include_execution_plans: bool = True
    include_advisor_analysis: bool = True

    # Significance cutoffs (p-values)
    p_highly_significant: float = 0.01
    p_significant: float = 0.05
    p_marginal: float = 0.10

    class Config:
        env_prefix = "SQLTRACE_"
        env_file = ".env"

    @property
    def has_database(self) -> bool:
        """Check if a database DSN is configured."""
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
