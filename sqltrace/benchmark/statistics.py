"""Reduce run samples to summary statistics."""

from __future__ import annotations

import math
from typing import Iterable, Sequence, Union

from .schemas import BenchmarkStatistics, RunSample, RunStatus

Sample = Union[RunSample, float, int]


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def sample_std(values: Sequence[float]) -> float:
    """Sample standard deviation (N - 1); 0 when N <= 1."""
    n = len(values)
    if n <= 1:
        return 0.0
    avg = mean(values)
    return math.sqrt(sum((v - avg) ** 2 for v in values) / (n - 1))


def percentile_nearest_rank(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile: sorted[ceil(pct/100 * N) - 1], clamped."""
    if not values:
        raise ValueError("percentile of empty sample")
    ordered = sorted(values)
    rank = math.ceil(pct / 100.0 * len(ordered)) - 1
    return ordered[min(max(rank, 0), len(ordered) - 1)]


class StatisticsEngine:
    """Compute BenchmarkStatistics from RunSamples.

    Only successful samples contribute to timing, cost and score figures.
    Plain numbers are treated as successful durations in milliseconds.
    """

    def compute(self, samples: Iterable[Sample]) -> BenchmarkStatistics:
        runs = [self._as_sample(pos, s) for pos, s in enumerate(samples, start=1)]
        ok = [r for r in runs if r.success]
        failed = sum(1 for r in runs if r.status == RunStatus.FAILED)
        timed_out = sum(1 for r in runs if r.status == RunStatus.TIMED_OUT)

        if not ok:
            return BenchmarkStatistics(
                successful_runs=0, failed_runs=failed, timed_out_runs=timed_out
            )

        times = [r.execution_time_ms for r in ok]
        costs = [r.cost for r in ok if r.cost is not None]
        scores = [r.advisor_score for r in ok if r.advisor_score is not None]

        return BenchmarkStatistics(
            successful_runs=len(ok),
            failed_runs=failed,
            timed_out_runs=timed_out,
            avg_execution_time_ms=mean(times),
            min_execution_time_ms=min(times),
            max_execution_time_ms=max(times),
            p95_execution_time_ms=percentile_nearest_rank(times, 95),
            std_deviation_ms=sample_std(times),
            avg_cost=mean(costs) if costs else None,
            avg_advisor_score=mean(scores) if scores else None,
        )

    @staticmethod
    def _as_sample(run_number: int, sample: Sample) -> RunSample:
        if isinstance(sample, RunSample):
            return sample
        if isinstance(sample, bool) or not isinstance(sample, (int, float)):
            raise TypeError(f"Expected RunSample or duration, got {type(sample).__name__}")
        return RunSample(
            run_number=run_number,
            status=RunStatus.SUCCEEDED,
            execution_time_ms=float(sample),
        )


def compute_statistics(samples: Iterable[Sample]) -> BenchmarkStatistics:
    return StatisticsEngine().compute(samples)

