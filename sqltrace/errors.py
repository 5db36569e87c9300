"""Error taxonomy for plan analysis and benchmarking.

- ParseError: raw plan output is malformed (fatal to that explain call)
- ExecutionError: the engine rejected or failed the query (fatal to that run)
- QueryTimeoutError: a run exceeded its bound (recoverable inside a benchmark)
- InsufficientSamples: no successful runs to build statistics or a comparison
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

PathElement = Union[int, str]


class SqlTraceError(Exception):
    """Base class for all sqltrace errors."""


class ParseError(SqlTraceError):
    """Raw plan description could not be normalized.

    Attributes:
        path: Keys/indices from the root of the raw input to the offending
            element, e.g. ``[0, "Plans", 1, "Node Type"]``.
    """

    def __init__(self, message: str, path: Optional[Sequence[PathElement]] = None):
        self.message = message
        self.path: list[PathElement] = list(path or [])
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.path:
            return self.message
        rendered = "".join(f"[{p!r}]" for p in self.path)
        return f"{self.message} (at {rendered})"


class ExecutionError(SqlTraceError):
    """The database rejected or failed the query."""


class QueryTimeoutError(SqlTraceError, TimeoutError):
    """A query run exceeded its timeout."""

    def __init__(self, timeout_seconds: float, message: str = ""):
        self.timeout_seconds = timeout_seconds
        super().__init__(message or f"Query exceeded timeout of {timeout_seconds:g}s")


class InsufficientSamples(SqlTraceError):
    """No successful benchmark runs are available."""

    def __init__(self, message: str = "", successful_runs: int = 0):
        self.successful_runs = successful_runs
        super().__init__(message or "No successful benchmark runs")
