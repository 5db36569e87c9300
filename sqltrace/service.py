"""Explain, benchmark and compare call contracts.

``SqlTraceService`` wires the executor, normalizer, advisor, runner and
comparison engine together. The ``*_response`` methods return the JSON
shapes a transport layer serves:

    explain   -> {"plan": {...}, "advisor_analysis": {...}, "error": null}
    benchmark -> {"result": {"statistics": {...}, "runs": [...], "status": "ok"}, "error": null}
    compare   -> {"comparison": {...}, "error": null}

Any ``SqlTraceError`` becomes the ``"error"`` member; anything else propagates.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .analyzers.advisor import AdvisorConfig, AdvisorEngine
from .analyzers.schemas import AdvisorAnalysis
from .benchmark.comparison import ComparisonEngine, SignificanceThresholds
from .benchmark.runner import BenchmarkRunner
from .benchmark.schemas import BenchmarkConfig, BenchmarkResult, ComparisonResult
from .config import Settings, get_settings
from .errors import ExecutionError, InsufficientSamples, SqlTraceError
from .execution.base import PlanExecutor, validate_query
from .plan.adapters import adapt_plan
from .plan.metrics import MetricsAggregator, PlanMetrics
from .plan.models import PlanTree
from .plan.normalizer import PlanNormalizer

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[], PlanExecutor]
ConfigLike = Union[BenchmarkConfig, Mapping[str, Any], None]


# =============================================================================
# Request models
# =============================================================================

class BenchmarkConfigRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    warmup_runs: Optional[int] = Field(default=None, ge=0)
    benchmark_runs: Optional[int] = Field(default=None, ge=1)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    include_execution_plans: Optional[bool] = None
    include_advisor_analysis: Optional[bool] = None


class ExplainRequest(BaseModel):
    query: str = Field(..., min_length=1)


class BenchmarkRequest(BaseModel):
    query: str = Field(..., min_length=1)
    config: Optional[BenchmarkConfigRequest] = None


class CompareRequest(BaseModel):
    query_a: str = Field(..., min_length=1)
    query_b: str = Field(..., min_length=1)
    label_a: str = "A"
    label_b: str = "B"
    config: Optional[BenchmarkConfigRequest] = None


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class ExplainOutcome:
    """Normalized plan plus advisor output for one explain call."""

    plan: PlanTree
    analysis: AdvisorAnalysis
    metrics: PlanMetrics
    execution_time_ms: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "advisor_analysis": self.analysis.to_dict(),
            "metrics": self.metrics.to_dict(),
            "execution_time_ms": self.execution_time_ms,
        }


class SqlTraceService:
    """Entry point for explain, benchmark and compare.

    Args:
        executor: Executor for explain and benchmark calls (optional when
            only ``explain_raw_plan`` is used).
        settings: Thresholds and defaults; ``get_settings()`` when omitted.
        advisor: Advisor override; built from settings when omitted.
        executor_factory: Creates a fresh executor. When given, ``compare``
            benchmarks both queries concurrently on separate executors.
    """

    def __init__(
        self,
        executor: Optional[PlanExecutor] = None,
        settings: Optional[Settings] = None,
        advisor: Optional[AdvisorEngine] = None,
        executor_factory: Optional[ExecutorFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.executor = executor
        self.executor_factory = executor_factory
        self.advisor = advisor or AdvisorEngine(AdvisorConfig.from_settings(self.settings))
        self.normalizer = PlanNormalizer()
        self.comparison = ComparisonEngine(SignificanceThresholds.from_settings(self.settings))
        self._metrics = MetricsAggregator()

    # ── Explain ──────────────────────────────────────────────────────────

    def explain(self, query: str) -> ExplainOutcome:
        """Run the query under EXPLAIN and analyze its plan.

        Raises:
            ExecutionError, QueryTimeoutError, ParseError
        """
        executor = self._require_executor()
        timeout_ms = int(self.settings.explain_timeout_seconds * 1000)
        explained = executor.explain(query, timeout_ms=timeout_ms)
        outcome = self.explain_raw_plan(explained.engine, explained.raw_plan)
        return ExplainOutcome(
            plan=outcome.plan,
            analysis=outcome.analysis,
            metrics=outcome.metrics,
            execution_time_ms=explained.execution_time_ms,
        )

    def explain_raw_plan(self, engine: str, raw: Any) -> ExplainOutcome:
        """Analyze already-captured EXPLAIN output; no database needed."""
        tree = self.normalizer.normalize(adapt_plan(engine, raw))
        metrics = self._metrics.aggregate(tree)
        analysis = self.advisor.analyze(tree, metrics)
        logger.info(
            "Explained %s plan: %d nodes, score %d", engine, len(tree), analysis.performance_score
        )
        return ExplainOutcome(plan=tree, analysis=analysis, metrics=metrics)

    def explain_response(self, query: str) -> dict[str, Any]:
        try:
            request = ExplainRequest(query=query)
            outcome = self.explain(request.query)
        except ValidationError as e:
            return {"plan": None, "advisor_analysis": None, "error": _validation_message(e)}
        except SqlTraceError as e:
            return {"plan": None, "advisor_analysis": None, "error": str(e)}
        return {
            "plan": outcome.plan.to_dict(),
            "advisor_analysis": outcome.analysis.to_dict(),
            "error": None,
        }

    # ── Benchmark ────────────────────────────────────────────────────────

    def benchmark(self, query: str, config: ConfigLike = None) -> BenchmarkResult:
        """Benchmark one query. Failed runs are recorded, not raised.

        Raises:
            ExecutionError: The query is not a single read-only SELECT.
        """
        self._validate(query)
        executor = self._require_executor()
        return BenchmarkRunner(executor, advisor=self.advisor).run(query, self._config(config))

    def benchmark_response(self, query: str, config: ConfigLike = None) -> dict[str, Any]:
        try:
            request = BenchmarkRequest(query=query, config=_config_request(config))
            result = self.benchmark(request.query, _merge_request(request.config, config))
        except ValidationError as e:
            return {"result": None, "error": _validation_message(e)}
        except (SqlTraceError, ValueError) as e:
            return {"result": None, "error": str(e)}

        error = None
        try:
            result.raise_for_samples()
        except InsufficientSamples as e:
            error = str(e)

        include_plans = result.config.include_execution_plans
        return {
            "result": {
                "statistics": result.statistics.to_dict(),
                "runs": [r.to_dict(include_plan=include_plans) for r in result.runs],
                "status": result.status,
            },
            "error": error,
        }

    # ── Compare ──────────────────────────────────────────────────────────

    def compare(
        self,
        query_a: str,
        query_b: str,
        label_a: str = "A",
        label_b: str = "B",
        config: ConfigLike = None,
    ) -> ComparisonResult:
        """Benchmark both queries and compare them.

        Raises:
            ExecutionError: Either query is rejected before running.
            InsufficientSamples: Either side has no successful run.
        """
        self._validate(query_a)
        self._validate(query_b)
        bench_config = self._config(config)

        if self.executor_factory is not None:
            # Independent executors share nothing; join before comparing
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sqltrace-compare") as pool:
                future_a = pool.submit(self._benchmark_isolated, query_a, bench_config)
                future_b = pool.submit(self._benchmark_isolated, query_b, bench_config)
                result_a, result_b = future_a.result(), future_b.result()
        else:
            runner = BenchmarkRunner(self._require_executor(), advisor=self.advisor)
            result_a = runner.run(query_a, bench_config)
            result_b = runner.run(query_b, bench_config)

        return self.comparison.compare(result_a, result_b, label_a, label_b)

    def compare_response(
        self,
        query_a: str,
        query_b: str,
        label_a: str = "A",
        label_b: str = "B",
        config: ConfigLike = None,
    ) -> dict[str, Any]:
        try:
            request = CompareRequest(
                query_a=query_a,
                query_b=query_b,
                label_a=label_a,
                label_b=label_b,
                config=_config_request(config),
            )
            comparison = self.compare(
                request.query_a,
                request.query_b,
                request.label_a,
                request.label_b,
                _merge_request(request.config, config),
            )
        except ValidationError as e:
            return {"comparison": None, "error": _validation_message(e)}
        except (SqlTraceError, ValueError) as e:
            return {"comparison": None, "error": str(e)}
        return {"comparison": comparison.to_dict(), "error": None}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _benchmark_isolated(self, query: str, config: BenchmarkConfig) -> BenchmarkResult:
        assert self.executor_factory is not None
        executor = self.executor_factory()
        with executor:
            return BenchmarkRunner(executor, advisor=self.advisor).run(query, config)

    def _validate(self, query: str) -> str:
        # Parse in the executor's dialect when one is attached
        engine = getattr(self.executor, "engine", None)
        return validate_query(query, dialect=engine if isinstance(engine, str) else None)

    def _require_executor(self) -> PlanExecutor:
        if self.executor is None:
            raise ExecutionError("No database executor configured")
        return self.executor

    def _config(self, config: ConfigLike) -> BenchmarkConfig:
        defaults = BenchmarkConfig.from_settings(self.settings)
        if config is None:
            return defaults
        if isinstance(config, BenchmarkConfig):
            return config
        return BenchmarkConfig.from_dict(config, defaults=defaults)


def _config_request(config: ConfigLike) -> Optional[BenchmarkConfigRequest]:
    if config is None or isinstance(config, BenchmarkConfig):
        return None
    return BenchmarkConfigRequest(**config)


def _merge_request(request: Optional[BenchmarkConfigRequest], config: ConfigLike) -> ConfigLike:
    """Validated request values win; a BenchmarkConfig passes through untouched."""
    if isinstance(config, BenchmarkConfig) or request is None:
        return config
    return request.model_dump(exclude_none=True)


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "Invalid request: " + "; ".join(parts)
