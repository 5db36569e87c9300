"""SQLite executor: EXPLAIN QUERY PLAN plus a timed run of the query."""

from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Optional

from ..errors import ExecutionError, QueryTimeoutError
from .base import ExplainResult, validate_query

logger = logging.getLogger(__name__)

# Progress handler granularity (SQLite VM instructions between checks)
PROGRESS_STEPS = 1_000


class SQLiteExecutor:
    """SQLite executor.

    SQLite reports no costs or actual figures in its plan, so the query is
    also executed and fully fetched to time it.

    Usage:
        with SQLiteExecutor("app.db") as db:
            result = db.explain("SELECT * FROM users WHERE email = 'a@b.c'")
    """

    engine = "sqlite"

    def __init__(self, database: str = ":memory:", read_only: bool = False):
        self.database = database
        self.read_only = read_only
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        """Open connection to SQLite."""
        if self._conn is not None:
            return

        target, uri = self.database, False
        if self.read_only and self.database != ":memory:":
            target, uri = f"file:{self.database}?mode=ro", True
        try:
            # Benchmark runs execute on a worker thread
            self._conn = sqlite3.connect(target, uri=uri, check_same_thread=False)
        except sqlite3.Error as e:
            raise ExecutionError(f"Could not open SQLite database {self.database}: {e}") from e

    def close(self) -> None:
        """Close connection to SQLite."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SQLiteExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        assert self._conn is not None
        return self._conn

    def execute_script(self, sql_script: str) -> None:
        """Execute a multi-statement script (schema setup, seeding)."""
        conn = self._ensure_connected()
        conn.executescript(sql_script)
        conn.commit()

    def explain(self, sql: str, timeout_ms: int = 30_000) -> ExplainResult:
        """Return EXPLAIN QUERY PLAN rows and the wall time of a full fetch.

        Raises:
            QueryTimeoutError: The fetch exceeded ``timeout_ms``.
            ExecutionError: Validation or any other SQLite error.
        """
        query = validate_query(sql, dialect=self.engine)
        conn = self._ensure_connected()

        try:
            plan_rows = [tuple(row) for row in conn.execute(f"EXPLAIN QUERY PLAN {query}")]
        except sqlite3.Error as e:
            raise ExecutionError(str(e)) from e

        deadline = time.perf_counter() + timeout_ms / 1000.0
        expired = False

        def _check_deadline() -> int:
            nonlocal expired
            if time.perf_counter() > deadline:
                expired = True
                return 1  # non-zero aborts the statement
            return 0

        conn.set_progress_handler(_check_deadline, PROGRESS_STEPS)
        try:
            start = time.perf_counter()
            row_count = len(conn.execute(query).fetchall())
            elapsed_ms = (time.perf_counter() - start) * 1000
        except sqlite3.OperationalError as e:
            if expired:
                raise QueryTimeoutError(timeout_ms / 1000.0) from e
            raise ExecutionError(str(e)) from e
        except sqlite3.Error as e:
            raise ExecutionError(str(e)) from e
        finally:
            conn.set_progress_handler(None, 0)

        logger.debug("SQLite fetched %d rows in %.2fms", row_count, elapsed_ms)
        return ExplainResult(engine=self.engine, raw_plan=plan_rows, execution_time_ms=elapsed_ms)

    def cancel(self) -> None:
        """Interrupt the running query."""
        if self._conn is not None:
            self._conn.interrupt()
