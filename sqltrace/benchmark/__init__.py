"""Benchmarking: repeated runs, statistics and A/B comparison."""

from .comparison import ComparisonEngine, SignificanceThresholds, compare_results, welch_test
from .runner import BenchmarkRunner, run_benchmark
from .schemas import (
    BenchmarkConfig,
    BenchmarkResult,
    BenchmarkStatistics,
    ComparisonMetrics,
    ComparisonResult,
    RunSample,
    RunStatus,
    StatisticalSignificance,
)
from .statistics import StatisticsEngine, compute_statistics

__all__ = [
    "BenchmarkConfig",
    "BenchmarkResult",
    "BenchmarkRunner",
    "BenchmarkStatistics",
    "ComparisonEngine",
    "ComparisonMetrics",
    "ComparisonResult",
    "RunSample",
    "RunStatus",
    "SignificanceThresholds",
    "StatisticalSignificance",
    "StatisticsEngine",
    "compare_results",
    "compute_statistics",
    "run_benchmark",
    "welch_test",
]
