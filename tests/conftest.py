"""Pytest configuration and fixtures for sqltrace tests."""

import threading
import time
from typing import Any, Callable, List, Optional

import pytest

from sqltrace.config import Settings
from sqltrace.errors import ExecutionError, QueryTimeoutError
from sqltrace.execution.base import ExplainResult


# =============================================================================
# SAMPLE PLAN FIXTURES
# =============================================================================

@pytest.fixture
def seq_scan_plan() -> dict:
    """Single large sequential scan, no index condition."""
    return {
        "Node Type": "Seq Scan",
        "Relation Name": "orders",
        "Alias": "o",
        "Startup Cost": 0.0,
        "Total Cost": 9000.0,
        "Actual Startup Time": 0.01,
        "Actual Total Time": 120.5,
        "Actual Rows": 500000,
        "Filter": "((status)::text = 'shipped'::text)",
        "Rows Removed by Filter": 12,
    }


@pytest.fixture
def join_plan() -> list:
    """EXPLAIN (ANALYZE, FORMAT JSON) output with a nested loop over two scans."""
    return [
        {
            "Plan": {
                "Node Type": "Nested Loop",
                "Join Type": "Inner",
                "Startup Cost": 0.5,
                "Total Cost": 450.0,
                "Actual Startup Time": 0.1,
                "Actual Total Time": 35.0,
                "Actual Rows": 5000,
                "Plans": [
                    {
                        "Node Type": "Seq Scan",
                        "Relation Name": "customers",
                        "Alias": "c",
                        "Startup Cost": 0.0,
                        "Total Cost": 35.0,
                        "Actual Rows": 2500,
                    },
                    {
                        "Node Type": "Index Scan",
                        "Relation Name": "orders",
                        "Alias": "o",
                        "Index Name": "orders_customer_id_idx",
                        "Index Cond": "(customer_id = c.id)",
                        "Startup Cost": 0.29,
                        "Total Cost": 0.4,
                        "Actual Rows": 2,
                    },
                ],
            },
            "Planning Time": 0.2,
            "Execution Time": 36.1,
        }
    ]


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None)


# =============================================================================
# FAKE EXECUTOR
# =============================================================================

SIMPLE_PLAN = [
    {
        "Plan": {
            "Node Type": "Index Scan",
            "Relation Name": "users",
            "Index Name": "users_pkey",
            "Index Cond": "(id = 1)",
            "Startup Cost": 0.29,
            "Total Cost": 8.3,
            "Actual Rows": 1,
        },
        "Execution Time": 0.05,
    }
]


class FakeExecutor:
    """In-memory PlanExecutor that returns canned PostgreSQL plans.

    ``behaviour`` is called with the 1-based call number before each
    explain and may raise or sleep to simulate failures.
    """

    engine = "postgres"

    def __init__(
        self,
        raw_plan: Any = None,
        delay_s: float = 0.0,
        behaviour: Optional[Callable[[int], None]] = None,
        reported_ms: Optional[float] = 0.05,
    ):
        self.raw_plan = SIMPLE_PLAN if raw_plan is None else raw_plan
        self.reported_ms = reported_ms
        self.delay_s = delay_s
        self.behaviour = behaviour
        self.calls: List[str] = []
        self.cancel_count = 0
        self.connected = False
        self.closed = False
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.closed = True
        self.connected = False

    def explain(self, sql: str, timeout_ms: int = 30_000) -> ExplainResult:
        with self._lock:
            self.calls.append(sql)
            call_number = len(self.calls)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.behaviour is not None:
                self.behaviour(call_number)
            if self.delay_s:
                time.sleep(self.delay_s)
        finally:
            with self._lock:
                self.active -= 1
        return ExplainResult(engine=self.engine, raw_plan=self.raw_plan, execution_time_ms=self.reported_ms)

    def cancel(self) -> None:
        self.cancel_count += 1

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *args):
        self.close()


def fail_always(call_number: int) -> None:
    raise ExecutionError("relation \"missing\" does not exist")


def fail_on(*call_numbers: int) -> Callable[[int], None]:
    def _behaviour(call_number: int) -> None:
        if call_number in call_numbers:
            raise ExecutionError(f"boom on call {call_number}")
    return _behaviour


def slow_on(seconds: float, *call_numbers: int) -> Callable[[int], None]:
    def _behaviour(call_number: int) -> None:
        if call_number in call_numbers:
            time.sleep(seconds)
    return _behaviour


def engine_timeout_on(*call_numbers: int) -> Callable[[int], None]:
    def _behaviour(call_number: int) -> None:
        if call_number in call_numbers:
            raise QueryTimeoutError(0.5)
    return _behaviour


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()
