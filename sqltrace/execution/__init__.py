"""Execution collaborators: engine executors and the DSN factory.

Executor modules import their drivers at load time, so they are only
imported when an executor for that engine is created.
"""

from .base import ExplainResult, PlanExecutor, validate_query
from .factory import (
    DatabaseConfig,
    DuckDBConfig,
    PostgresConfig,
    SQLiteConfig,
    create_executor,
    create_executor_from_dsn,
    detect_engine,
    get_config_class,
    register_config,
)

__all__ = [
    "ExplainResult",
    "PlanExecutor",
    "validate_query",
    "DatabaseConfig",
    "DuckDBConfig",
    "PostgresConfig",
    "SQLiteConfig",
    "create_executor",
    "create_executor_from_dsn",
    "detect_engine",
    "get_config_class",
    "register_config",
]
