"""Execution collaborator protocol and shared helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import sqlglot
import sqlglot.errors
from sqlglot import exp

from ..errors import ExecutionError


@dataclass(frozen=True)
class ExplainResult:
    """Raw EXPLAIN output from one execution of a query."""

    engine: str
    """Engine name understood by ``plan.adapters.adapt_plan``."""

    raw_plan: Any
    """Engine-native EXPLAIN output, untouched."""

    execution_time_ms: Optional[float] = None
    """Execution time reported by the engine, when it reports one."""


class PlanExecutor(Protocol):
    """Protocol for database executors used by the explain and benchmark paths."""

    engine: str

    def connect(self) -> None:
        """Open connection to database."""
        ...

    def close(self) -> None:
        """Close connection."""
        ...

    def explain(self, sql: str, timeout_ms: int = 30_000) -> ExplainResult:
        """Execute the query under EXPLAIN and return the raw plan."""
        ...

    def cancel(self) -> None:
        """Best-effort cancellation of the statement currently running."""
        ...

    def __enter__(self) -> "PlanExecutor":
        ...

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        ...


# Statement types that modify data or schema; EXPLAIN ANALYZE would run them
WRITE_EXPRESSIONS = (
    exp.Insert, exp.Update, exp.Delete, exp.Merge,
    exp.Create, exp.Drop, exp.Alter, exp.TruncateTable,
    exp.Into, exp.Command,
)


def validate_query(sql: str, dialect: Optional[str] = None) -> str:
    """Reject anything but a single read-only SELECT/WITH statement.

    The query is parsed with sqlglot so string literals, comments and
    statement separators are tokenized the way the engine sees them.

    Args:
        sql: Query text.
        dialect: sqlglot dialect name (``"postgres"``, ``"duckdb"``, ...).

    Returns:
        The query stripped of surrounding whitespace and a trailing
        semicolon.

    Raises:
        ExecutionError: Empty, unparseable, non-SELECT, multi-statement or
            data-modifying query.
    """
    query = sql.strip().rstrip(";").strip()
    if not query:
        raise ExecutionError("Query is empty")

    try:
        statements = [s for s in sqlglot.parse(query, read=dialect) if s is not None]
    except sqlglot.errors.SqlglotError as e:
        raise ExecutionError(f"Could not parse query: {e}") from e

    if not statements:
        raise ExecutionError("Query is empty")
    if len(statements) > 1:
        raise ExecutionError("Only a single statement can be analyzed")

    statement = statements[0]
    if not isinstance(statement, exp.Query):
        raise ExecutionError("Only SELECT queries can be analyzed")

    write = next(statement.find_all(*WRITE_EXPRESSIONS), None)
    if write is not None:
        raise ExecutionError(
            f"Query contains a data-modifying statement: {write.key.upper()}"
        )
    return query
