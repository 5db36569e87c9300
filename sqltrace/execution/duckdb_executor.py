"""DuckDB executor for EXPLAIN ANALYZE profiles."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any

try:
    import duckdb
except ImportError as e:
    raise ImportError(
        "DuckDB is not installed. Install with: pip install duckdb"
    ) from e

from ..errors import ExecutionError, QueryTimeoutError
from .base import ExplainResult, validate_query

logger = logging.getLogger(__name__)

# EXPLAIN output rows, preferred first
PLAN_TYPES = ("analyzed_plan", "physical_plan")


class DuckDBExecutor:
    """DuckDB executor producing ``EXPLAIN (ANALYZE, FORMAT JSON)`` profiles.

    Usage:
        with DuckDBExecutor("warehouse.duckdb", read_only=True) as db:
            result = db.explain("SELECT count(*) FROM lineitem")

    Args:
        database: Path to database file or ":memory:" for in-memory database.
        read_only: If True, open database in read-only mode.
    """

    engine = "duckdb"

    def __init__(self, database: str = ":memory:", read_only: bool = False):
        self.database = database
        self.read_only = read_only
        self._conn: duckdb.DuckDBPyConnection | None = None

    def connect(self) -> None:
        """Open connection to DuckDB."""
        if self._conn is not None:
            return

        try:
            self._conn = duckdb.connect(database=self.database, read_only=self.read_only)
        except duckdb.Error as e:
            raise ExecutionError(f"Could not open DuckDB database {self.database}: {e}") from e

    def close(self) -> None:
        """Close connection to DuckDB."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DuckDBExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _ensure_connected(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self.connect()
        assert self._conn is not None
        return self._conn

    def execute_script(self, sql_script: str) -> None:
        """Execute a multi-statement script (schema setup, seeding)."""
        self._ensure_connected().execute(sql_script)

    def explain(self, sql: str, timeout_ms: int = 30_000) -> ExplainResult:
        """Run ``EXPLAIN (ANALYZE, FORMAT JSON)``; interrupt the query on timeout.

        Raises:
            QueryTimeoutError: The query was interrupted by the timeout.
            ExecutionError: Validation or any other DuckDB error.
        """
        query = validate_query(sql, dialect=self.engine)
        conn = self._ensure_connected()

        fired = threading.Event()

        def _interrupt() -> None:
            fired.set()
            conn.interrupt()

        timer = threading.Timer(timeout_ms / 1000.0, _interrupt)
        timer.daemon = True
        timer.start()
        try:
            start = time.perf_counter()
            rows = conn.execute(f"EXPLAIN (ANALYZE, FORMAT JSON) {query}").fetchall()
            elapsed_ms = (time.perf_counter() - start) * 1000
        except duckdb.Error as e:
            if fired.is_set():
                raise QueryTimeoutError(timeout_ms / 1000.0) from e
            raise ExecutionError(str(e).strip()) from e
        finally:
            timer.cancel()

        plans = {plan_type: plan_json for plan_type, plan_json in rows}
        for plan_type in PLAN_TYPES:
            if plan_type in plans:
                raw_plan = json.loads(plans[plan_type])
                break
        else:
            raise ExecutionError(
                f"DuckDB EXPLAIN returned no JSON plan (got {', '.join(plans) or 'nothing'})"
            )

        execution_time = elapsed_ms
        if isinstance(raw_plan, dict) and isinstance(raw_plan.get("latency"), (int, float)):
            execution_time = raw_plan["latency"] * 1000.0
        return ExplainResult(engine=self.engine, raw_plan=raw_plan, execution_time_ms=execution_time)

    def cancel(self) -> None:
        """Interrupt the running query."""
        if self._conn is not None:
            self._conn.interrupt()
