"""Data models for benchmarking and comparison."""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..errors import InsufficientSamples

if TYPE_CHECKING:
    from ..config import Settings
    from ..plan.models import PlanTree


class RunStatus(str, Enum):
    """Lifecycle of one benchmark run."""

    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class StatisticalSignificance(str, Enum):
    """Welch t-test p-value bucket."""

    NOT_SIGNIFICANT = "NotSignificant"
    MARGINALLY_SIGNIFICANT = "MarginallySignificant"
    SIGNIFICANT = "Significant"
    HIGHLY_SIGNIFICANT = "HighlySignificant"


def _safe_float(value: Optional[float], digits: int = 4) -> Optional[float]:
    """Convert float to JSON-safe value (handle inf/nan)."""
    if value is None or math.isinf(value) or math.isnan(value):
        return None
    return round(value, digits)


@dataclass(frozen=True)
class BenchmarkConfig:
    """How a query is benchmarked."""

    warmup_runs: int = 2
    benchmark_runs: int = 5
    timeout_seconds: float = 30.0
    include_execution_plans: bool = True
    include_advisor_analysis: bool = True

    def __post_init__(self) -> None:
        if self.warmup_runs < 0:
            raise ValueError(f"warmup_runs must be >= 0, got {self.warmup_runs}")
        if self.benchmark_runs < 1:
            raise ValueError(f"benchmark_runs must be >= 1, got {self.benchmark_runs}")
        if not self.timeout_seconds > 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "BenchmarkConfig":
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        return cls(
            warmup_runs=settings.warmup_runs,
            benchmark_runs=settings.benchmark_runs,
            timeout_seconds=settings.timeout_seconds,
            include_execution_plans=settings.include_execution_plans,
            include_advisor_analysis=settings.include_advisor_analysis,
        )

    @classmethod
    def from_dict(
        cls, data: Optional[Mapping[str, Any]], defaults: Optional["BenchmarkConfig"] = None
    ) -> "BenchmarkConfig":
        """Build from a request ``config`` object; missing keys use ``defaults``."""
        base = defaults or cls()
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown benchmark config keys: {', '.join(sorted(unknown))}")
        values = {name: data.get(name, getattr(base, name)) for name in known}
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return {
            "warmup_runs": self.warmup_runs,
            "benchmark_runs": self.benchmark_runs,
            "timeout_seconds": self.timeout_seconds,
            "include_execution_plans": self.include_execution_plans,
            "include_advisor_analysis": self.include_advisor_analysis,
        }


@dataclass(frozen=True)
class RunSample:
    """One measured run. Warmup runs never produce a sample."""

    run_number: int
    status: RunStatus
    execution_time_ms: float
    error: Optional[str] = None
    cost: Optional[float] = None
    advisor_score: Optional[int] = None
    plan: Optional["PlanTree"] = None
    abandoned: bool = False
    """A timed-out statement was still running when the next run started."""

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def to_dict(self, include_plan: bool = False) -> dict[str, Any]:
        data = {
            "run_number": self.run_number,
            "status": self.status.value,
            "success": self.success,
            "execution_time_ms": _safe_float(self.execution_time_ms),
            "error": self.error,
            "cost": _safe_float(self.cost),
            "advisor_score": self.advisor_score,
            "abandoned": self.abandoned,
        }
        if include_plan and self.plan is not None:
            data["plan"] = self.plan.to_dict()
        return data


@dataclass(frozen=True)
class BenchmarkStatistics:
    """Statistics over successful runs.

    With no successful runs every timing field is ``None``.
    """

    successful_runs: int = 0
    failed_runs: int = 0
    timed_out_runs: int = 0
    avg_execution_time_ms: Optional[float] = None
    min_execution_time_ms: Optional[float] = None
    max_execution_time_ms: Optional[float] = None
    p95_execution_time_ms: Optional[float] = None
    std_deviation_ms: Optional[float] = None
    avg_cost: Optional[float] = None
    avg_advisor_score: Optional[float] = None

    @property
    def has_data(self) -> bool:
        return self.successful_runs > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "timed_out_runs": self.timed_out_runs,
            "avg_execution_time_ms": _safe_float(self.avg_execution_time_ms),
            "min_execution_time_ms": _safe_float(self.min_execution_time_ms),
            "max_execution_time_ms": _safe_float(self.max_execution_time_ms),
            "p95_execution_time_ms": _safe_float(self.p95_execution_time_ms),
            "std_deviation_ms": _safe_float(self.std_deviation_ms),
            "avg_cost": _safe_float(self.avg_cost),
            "avg_advisor_score": _safe_float(self.avg_advisor_score, 2),
        }


@dataclass(frozen=True)
class BenchmarkResult:
    """Samples and statistics for one benchmarked query."""

    query: str
    config: BenchmarkConfig
    runs: tuple[RunSample, ...]
    statistics: BenchmarkStatistics

    def __post_init__(self) -> None:
        object.__setattr__(self, "runs", tuple(self.runs))

    @property
    def status(self) -> str:
        """One of ok, degraded (some runs failed) or insufficient_samples."""
        if self.statistics.successful_runs == 0:
            return "insufficient_samples"
        if self.statistics.successful_runs < len(self.runs):
            return "degraded"
        return "ok"

    @property
    def successful(self) -> list[RunSample]:
        return [r for r in self.runs if r.success]

    def raise_for_samples(self) -> "BenchmarkResult":
        """Raise InsufficientSamples when no run succeeded."""
        if self.statistics.successful_runs == 0:
            errors = sorted({r.error for r in self.runs if r.error})
            detail = f": {'; '.join(errors)}" if errors else ""
            raise InsufficientSamples(
                f"All {len(self.runs)} benchmark runs failed{detail}",
                successful_runs=0,
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "config": self.config.to_dict(),
            "status": self.status,
            "statistics": self.statistics.to_dict(),
            "runs": [r.to_dict(include_plan=self.config.include_execution_plans) for r in self.runs],
        }


@dataclass(frozen=True)
class ComparisonMetrics:
    """Signed differences, B minus A."""

    avg_time_diff_ms: float
    cost_diff: Optional[float] = None
    advisor_score_diff: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_time_diff_ms": _safe_float(self.avg_time_diff_ms),
            "cost_diff": _safe_float(self.cost_diff),
            "advisor_score_diff": _safe_float(self.advisor_score_diff, 2),
        }


@dataclass(frozen=True)
class ComparisonResult:
    """A vs B comparison. Positive improvement means B is faster."""

    label_a: str
    label_b: str
    statistics_a: BenchmarkStatistics
    statistics_b: BenchmarkStatistics
    metrics: ComparisonMetrics
    performance_improvement_percent: float
    statistical_significance: StatisticalSignificance
    p_value: float = 1.0
    t_statistic: Optional[float] = None
    confidence_interval_ms: Optional[tuple[float, float]] = None
    """95% Welch interval for avg_b - avg_a, when both sides have 2+ samples."""

    @property
    def is_significant(self) -> bool:
        return self.statistical_significance in (
            StatisticalSignificance.SIGNIFICANT,
            StatisticalSignificance.HIGHLY_SIGNIFICANT,
        )

    @property
    def faster_label(self) -> Optional[str]:
        """Label of the faster query, or None when the difference is not significant."""
        if not self.is_significant or self.performance_improvement_percent == 0:
            return None
        return self.label_b if self.performance_improvement_percent > 0 else self.label_a

    def to_dict(self) -> dict[str, Any]:
        interval = None
        if self.confidence_interval_ms is not None:
            interval = [_safe_float(v) for v in self.confidence_interval_ms]
        return {
            "label_a": self.label_a,
            "label_b": self.label_b,
            "statistics_a": self.statistics_a.to_dict(),
            "statistics_b": self.statistics_b.to_dict(),
            "metrics": self.metrics.to_dict(),
            "performance_improvement_percent": round(self.performance_improvement_percent, 2),
            "statistical_significance": self.statistical_significance.value,
            "p_value": _safe_float(self.p_value, 6),
            "t_statistic": _safe_float(self.t_statistic),
            "confidence_interval_ms": interval,
        }
