"""Compare two benchmark results with a Welch t-test."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Union

from scipy import stats

from ..config import Settings, get_settings
from ..errors import InsufficientSamples
from .schemas import (
    BenchmarkResult,
    BenchmarkStatistics,
    ComparisonMetrics,
    ComparisonResult,
    StatisticalSignificance,
)

logger = logging.getLogger(__name__)

StatsLike = Union[BenchmarkStatistics, BenchmarkResult]


@dataclass(frozen=True)
class SignificanceThresholds:
    """p-value cutoffs for the significance buckets."""
    highly_significant: float = 0.01
    significant: float = 0.05
    marginal: float = 0.10

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SignificanceThresholds":
        settings = settings or get_settings()
        return cls(
            highly_significant=settings.p_highly_significant,
            significant=settings.p_significant,
            marginal=settings.p_marginal,
        )

    def classify(self, p_value: float) -> StatisticalSignificance:
        if p_value < self.highly_significant:
            return StatisticalSignificance.HIGHLY_SIGNIFICANT
        if p_value < self.significant:
            return StatisticalSignificance.SIGNIFICANT
        if p_value < self.marginal:
            return StatisticalSignificance.MARGINALLY_SIGNIFICANT
        return StatisticalSignificance.NOT_SIGNIFICANT


@dataclass(frozen=True)
class WelchTest:
    t_statistic: Optional[float]
    p_value: float
    confidence_interval: Optional[tuple[float, float]]


def welch_test(
    mean_a: float, std_a: float, n_a: int,
    mean_b: float, std_b: float, n_b: int,
    confidence: float = 0.95,
) -> WelchTest:
    """Two-sided Welch test on summary statistics.

    The interval is for ``mean_b - mean_a``. Fewer than two samples on either
    side leaves the variance unestimable: p = 1.0 and no interval.
    """
    if n_a < 2 or n_b < 2:
        return WelchTest(t_statistic=None, p_value=1.0, confidence_interval=None)

    var_a = std_a ** 2 / n_a
    var_b = std_b ** 2 / n_b
    se = math.sqrt(var_a + var_b)
    diff = mean_b - mean_a

    if se == 0:
        # No spread on either side: the means either match exactly or they don't
        p_value = 1.0 if diff == 0 else 0.0
        return WelchTest(t_statistic=None, p_value=p_value, confidence_interval=(diff, diff))

    result = stats.ttest_ind_from_stats(
        mean1=mean_b, std1=std_b, nobs1=n_b,
        mean2=mean_a, std2=std_a, nobs2=n_a,
        equal_var=False,
    )
    # Welch-Satterthwaite degrees of freedom
    dof = (var_a + var_b) ** 2 / (
        var_a ** 2 / (n_a - 1) + var_b ** 2 / (n_b - 1)
    )
    margin = stats.t.ppf(0.5 + confidence / 2, dof) * se

    p_value = float(result.pvalue)
    if math.isnan(p_value):
        p_value = 1.0
    return WelchTest(
        t_statistic=float(result.statistic),
        p_value=p_value,
        confidence_interval=(diff - margin, diff + margin),
    )


class ComparisonEngine:
    """Compare benchmark statistics for queries A and B.

    Example:
        engine = ComparisonEngine()
        result = engine.compare(stats_a, stats_b, "original", "rewrite")
        print(result.performance_improvement_percent)
    """

    def __init__(self, thresholds: Optional[SignificanceThresholds] = None):
        self.thresholds = thresholds or SignificanceThresholds()

    def compare(
        self,
        a: StatsLike,
        b: StatsLike,
        label_a: str = "A",
        label_b: str = "B",
    ) -> ComparisonResult:
        """Compare A against B.

        Raises:
            InsufficientSamples: Either side has no successful runs.
        """
        stats_a = a.statistics if isinstance(a, BenchmarkResult) else a
        stats_b = b.statistics if isinstance(b, BenchmarkResult) else b

        for label, side in ((label_a, stats_a), (label_b, stats_b)):
            if side.successful_runs < 1 or side.avg_execution_time_ms is None:
                raise InsufficientSamples(
                    f"'{label}' has no successful runs to compare",
                    successful_runs=side.successful_runs,
                )

        avg_a = stats_a.avg_execution_time_ms
        avg_b = stats_b.avg_execution_time_ms
        improvement = 0.0 if avg_a == 0 else (avg_a - avg_b) / avg_a * 100.0

        test = welch_test(
            avg_a, stats_a.std_deviation_ms or 0.0, stats_a.successful_runs,
            avg_b, stats_b.std_deviation_ms or 0.0, stats_b.successful_runs,
        )
        significance = self.thresholds.classify(test.p_value)

        metrics = ComparisonMetrics(
            avg_time_diff_ms=avg_b - avg_a,
            cost_diff=_diff(stats_a.avg_cost, stats_b.avg_cost),
            advisor_score_diff=_diff(stats_a.avg_advisor_score, stats_b.avg_advisor_score),
        )

        logger.info(
            "Compared %s vs %s: %.1f%% improvement, p=%.4f (%s)",
            label_a, label_b, improvement, test.p_value, significance.value,
        )

        return ComparisonResult(
            label_a=label_a,
            label_b=label_b,
            statistics_a=stats_a,
            statistics_b=stats_b,
            metrics=metrics,
            performance_improvement_percent=improvement,
            statistical_significance=significance,
            p_value=test.p_value,
            t_statistic=test.t_statistic,
            confidence_interval_ms=test.confidence_interval,
        )


def _diff(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return b - a


def compare_results(
    a: StatsLike, b: StatsLike, label_a: str = "A", label_b: str = "B"
) -> ComparisonResult:
    return ComparisonEngine().compare(a, b, label_a, label_b)
