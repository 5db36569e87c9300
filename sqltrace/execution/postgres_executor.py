"""PostgreSQL executor for EXPLAIN ANALYZE plans."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Optional

try:
    import psycopg2
    import psycopg2.errors
except ImportError as e:
    raise ImportError(
        "psycopg2 is not installed. Install with: pip install psycopg2-binary"
    ) from e

from ..errors import ExecutionError, QueryTimeoutError
from .base import ExplainResult, validate_query

logger = logging.getLogger(__name__)


class PostgresExecutor:
    """PostgreSQL executor producing ``EXPLAIN (ANALYZE, FORMAT JSON)`` plans.

    Usage:
        with PostgresExecutor(host="localhost", database="shop") as db:
            result = db.explain("SELECT * FROM orders WHERE status = 'open'")

    Environment variables (used as defaults):
        - SQLTRACE_POSTGRES_HOST
        - SQLTRACE_POSTGRES_PORT
        - SQLTRACE_POSTGRES_DATABASE
        - SQLTRACE_POSTGRES_USER
        - SQLTRACE_POSTGRES_PASSWORD
    """

    engine = "postgres"

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        database: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        schema: str = "public",
    ):
        self.host = host or os.getenv("SQLTRACE_POSTGRES_HOST", "localhost")
        self.port = port or int(os.getenv("SQLTRACE_POSTGRES_PORT", "5432"))
        self.database = database or os.getenv("SQLTRACE_POSTGRES_DATABASE", "postgres")
        self.user = user or os.getenv("SQLTRACE_POSTGRES_USER", "postgres")
        self.password = password or os.getenv("SQLTRACE_POSTGRES_PASSWORD", "postgres")
        self.schema = schema
        self._conn: Optional[psycopg2.extensions.connection] = None

    def connect(self) -> None:
        """Open connection to PostgreSQL."""
        if self._conn is not None and not self._conn.closed:
            return

        try:
            self._conn = psycopg2.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
            )
        except psycopg2.Error as e:
            raise ExecutionError(f"Could not connect to PostgreSQL: {e}") from e

        with self._conn.cursor() as cur:
            cur.execute(f"SET search_path TO {self.schema}, public")
        self._conn.commit()
        logger.debug("Connected to PostgreSQL %s:%s/%s", self.host, self.port, self.database)

    def close(self) -> None:
        """Close connection to PostgreSQL."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "PostgresExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _ensure_connected(self) -> psycopg2.extensions.connection:
        if self._conn is None or self._conn.closed:
            self.connect()
        assert self._conn is not None
        return self._conn

    def explain(self, sql: str, timeout_ms: int = 30_000) -> ExplainResult:
        """Run ``EXPLAIN (ANALYZE, FORMAT JSON)`` under a statement timeout.

        Raises:
            QueryTimeoutError: The server cancelled the statement.
            ExecutionError: Validation or any other database error.
        """
        query = validate_query(sql, dialect=self.engine)
        conn = self._ensure_connected()

        try:
            with conn.cursor() as cur:
                # SET LOCAL so the timeout reverts automatically on commit/rollback
                cur.execute(f"SET LOCAL statement_timeout = {int(timeout_ms)}")
                start = time.perf_counter()
                cur.execute(f"EXPLAIN (ANALYZE, FORMAT JSON, COSTS, TIMING) {query}")
                rows = cur.fetchall()
                elapsed_ms = (time.perf_counter() - start) * 1000
            conn.commit()
        except psycopg2.errors.QueryCanceled as e:
            conn.rollback()
            raise QueryTimeoutError(timeout_ms / 1000.0) from e
        except psycopg2.Error as e:
            conn.rollback()
            raise ExecutionError(str(e).strip()) from e

        if not rows:
            raise ExecutionError("EXPLAIN returned no rows")

        plan_json = rows[0][0]
        execution_time = elapsed_ms
        if isinstance(plan_json, list) and plan_json and isinstance(plan_json[0], dict):
            execution_time = plan_json[0].get("Execution Time", elapsed_ms)
        return ExplainResult(engine=self.engine, raw_plan=plan_json, execution_time_ms=execution_time)

    def cancel(self) -> None:
        """Ask the server to cancel the running statement."""
        if self._conn is not None and not self._conn.closed:
            try:
                self._conn.cancel()
            except psycopg2.Error as e:
                logger.warning("PostgreSQL cancel request failed: %s", e)
