"""Repeated, timed execution of one query.

Pattern per query:
1. Warmup runs (discarded entirely)
2. Benchmark runs, strictly one after another
3. Statistics over the successful runs

Each run is bounded by ``timeout_seconds``. A run that times out or fails
is recorded and the loop moves on; only the caller decides whether zero
successful runs is fatal (see ``BenchmarkResult.raise_for_samples``).
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

from ..analyzers.advisor import AdvisorEngine
from ..errors import ParseError, QueryTimeoutError, SqlTraceError
from ..execution.base import ExplainResult, PlanExecutor
from ..plan.adapters import adapt_plan
from ..plan.metrics import MetricsAggregator
from ..plan.normalizer import PlanNormalizer
from .schemas import BenchmarkConfig, BenchmarkResult, RunSample, RunStatus
from .statistics import StatisticsEngine

logger = logging.getLogger(__name__)

TIMEOUT_ERROR = "timeout"

# How long a cancelled run may keep the connection busy before the next run starts
CANCEL_GRACE_SECONDS = 5.0


class BenchmarkRunner:
    """Run a query N times against one executor and collect samples.

    Runs are never executed concurrently with each other. Each run is
    dispatched to a single worker thread so the timeout can be enforced on
    the caller's side even when the driver blocks. On expiry the executor's
    ``cancel()`` is called and the runner waits up to ``cancel_grace_seconds``
    for the statement to stop before the next run starts. A statement that
    outlives the grace period is flagged ``abandoned`` on its sample.

    Sample durations are the engine-reported execution time when the executor
    provides one, otherwise the wall time around ``explain()``.

    Example:
        runner = BenchmarkRunner(executor)
        result = runner.run("SELECT ...", BenchmarkConfig(benchmark_runs=10))
        print(result.statistics.avg_execution_time_ms)
    """

    def __init__(
        self,
        executor: PlanExecutor,
        advisor: Optional[AdvisorEngine] = None,
        normalizer: Optional[PlanNormalizer] = None,
        cancel_grace_seconds: float = CANCEL_GRACE_SECONDS,
    ):
        self.executor = executor
        self.cancel_grace_seconds = cancel_grace_seconds
        self.advisor = advisor or AdvisorEngine()
        self.normalizer = normalizer or PlanNormalizer()
        self._metrics = MetricsAggregator()
        self._statistics = StatisticsEngine()

    def run(self, query: str, config: Optional[BenchmarkConfig] = None) -> BenchmarkResult:
        """Benchmark ``query``. Never raises for failed or timed-out runs."""
        config = config or BenchmarkConfig()
        logger.info(
            "Benchmarking query: %d warmup + %d runs, timeout %.1fs",
            config.warmup_runs, config.benchmark_runs, config.timeout_seconds,
        )

        for i in range(config.warmup_runs):
            sample = self._execute_run(query, config, run_number=0)
            logger.debug("Warmup %d/%d: %s", i + 1, config.warmup_runs, sample.status.value)

        runs: list[RunSample] = []
        for i in range(1, config.benchmark_runs + 1):
            sample = self._execute_run(query, config, run_number=i)
            if sample.success:
                logger.debug(
                    "Run %d/%d: %.2fms", i, config.benchmark_runs, sample.execution_time_ms
                )
            else:
                logger.warning(
                    "Run %d/%d %s: %s", i, config.benchmark_runs, sample.status.value, sample.error
                )
            runs.append(sample)

        statistics = self._statistics.compute(runs)
        result = BenchmarkResult(query=query, config=config, runs=tuple(runs), statistics=statistics)

        if statistics.has_data:
            logger.info(
                "Benchmark done: %d/%d successful, avg %.2fms, p95 %.2fms",
                statistics.successful_runs, len(runs),
                statistics.avg_execution_time_ms, statistics.p95_execution_time_ms,
            )
        else:
            logger.warning("Benchmark done: all %d runs failed", len(runs))
        return result

    def _execute_run(self, query: str, config: BenchmarkConfig, run_number: int) -> RunSample:
        """Pending -> Executing -> Succeeded | Failed | TimedOut."""
        timeout_ms = int(config.timeout_seconds * 1000)

        def _timed() -> tuple[ExplainResult, float]:
            start = time.perf_counter()
            explained = self.executor.explain(query, timeout_ms=timeout_ms)
            return explained, (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sqltrace-run")
        future = pool.submit(_timed)
        try:
            explained, elapsed_ms = future.result(timeout=config.timeout_seconds)
        except (FutureTimeout, QueryTimeoutError):
            elapsed_ms = (time.perf_counter() - start) * 1000
            self._cancel()
            return RunSample(
                run_number=run_number,
                status=RunStatus.TIMED_OUT,
                execution_time_ms=elapsed_ms,
                error=TIMEOUT_ERROR,
                abandoned=not self._drain(future),
            )
        except Exception as e:
            return RunSample(
                run_number=run_number,
                status=RunStatus.FAILED,
                execution_time_ms=(time.perf_counter() - start) * 1000,
                error=str(e) or type(e).__name__,
            )
        finally:
            # _drain already bounded the wait for a cancelled run
            pool.shutdown(wait=False)

        if explained.execution_time_ms is not None:
            elapsed_ms = explained.execution_time_ms
        try:
            return self._build_sample(run_number, explained, elapsed_ms, config)
        except ParseError as e:
            return RunSample(
                run_number=run_number,
                status=RunStatus.FAILED,
                execution_time_ms=elapsed_ms,
                error=f"Could not parse plan: {e}",
            )

    def _build_sample(
        self, run_number: int, explained: ExplainResult, elapsed_ms: float, config: BenchmarkConfig
    ) -> RunSample:
        if not (config.include_execution_plans or config.include_advisor_analysis):
            return RunSample(
                run_number=run_number, status=RunStatus.SUCCEEDED, execution_time_ms=elapsed_ms
            )

        tree = self.normalizer.normalize(adapt_plan(explained.engine, explained.raw_plan))
        metrics = self._metrics.aggregate(tree)
        score = None
        if config.include_advisor_analysis:
            score = self.advisor.analyze(tree, metrics).performance_score

        return RunSample(
            run_number=run_number,
            status=RunStatus.SUCCEEDED,
            execution_time_ms=elapsed_ms,
            cost=metrics.max_total_cost if metrics.has_cost else None,
            advisor_score=score,
            plan=tree if config.include_execution_plans else None,
        )

    def _drain(self, future: Future) -> bool:
        """Wait for a cancelled run to stop. False if it is still executing."""
        done, _ = wait([future], timeout=self.cancel_grace_seconds)
        if not done:
            logger.warning(
                "Cancelled run still executing after %.1fs; the next run may overlap it",
                self.cancel_grace_seconds,
            )
            return False
        return True

    def _cancel(self) -> None:
        try:
            self.executor.cancel()
        except SqlTraceError as e:
            logger.warning("Cancelling timed-out run failed: %s", e)


def run_benchmark(
    executor: PlanExecutor, query: str, config: Optional[BenchmarkConfig] = None
) -> BenchmarkResult:
    return BenchmarkRunner(executor).run(query, config)
