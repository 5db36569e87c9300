"""sqltrace - execution plan normalization, advisor scoring and query benchmarking."""

from .analyzers import AdvisorAnalysis, AdvisorConfig, AdvisorEngine, Severity, Suggestion, SuggestionType
from .benchmark import (
    BenchmarkConfig,
    BenchmarkResult,
    BenchmarkRunner,
    BenchmarkStatistics,
    ComparisonEngine,
    ComparisonResult,
    StatisticalSignificance,
    StatisticsEngine,
)
from .errors import ExecutionError, InsufficientSamples, ParseError, QueryTimeoutError, SqlTraceError
from .plan import MetricsAggregator, PlanMetrics, PlanNode, PlanNormalizer, PlanTree, adapt_plan
from .service import ExplainOutcome, SqlTraceService

__version__ = "0.1.0"

__all__ = [
    "AdvisorAnalysis",
    "AdvisorConfig",
    "AdvisorEngine",
    "BenchmarkConfig",
    "BenchmarkResult",
    "BenchmarkRunner",
    "BenchmarkStatistics",
    "ComparisonEngine",
    "ComparisonResult",
    "ExecutionError",
    "ExplainOutcome",
    "InsufficientSamples",
    "MetricsAggregator",
    "ParseError",
    "PlanMetrics",
    "PlanNode",
    "PlanNormalizer",
    "PlanTree",
    "QueryTimeoutError",
    "Severity",
    "SqlTraceError",
    "SqlTraceService",
    "StatisticalSignificance",
    "StatisticsEngine",
    "Suggestion",
    "SuggestionType",
    "adapt_plan",
]
