"""End-to-end tests against an in-memory SQLite database (execution.sqlite_executor)."""

import pytest

from sqltrace.benchmark.schemas import BenchmarkConfig
from sqltrace.errors import ExecutionError, QueryTimeoutError
from sqltrace.execution.sqlite_executor import SQLiteExecutor
from sqltrace.service import SqlTraceService


SCHEMA = """
CREATE TABLE customers (id INTEGER PRIMARY KEY, region TEXT);
CREATE TABLE orders (id INTEGER PRIMARY KEY, customer_id INTEGER, status TEXT);
CREATE INDEX idx_orders_customer ON orders (customer_id);
INSERT INTO customers (id, region) VALUES (1, 'EU'), (2, 'US'), (3, 'EU');
INSERT INTO orders (customer_id, status) VALUES (1, 'open'), (1, 'shipped'), (2, 'open'), (3, 'open');
"""

ENDLESS = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT count(*) FROM c"


@pytest.fixture
def db():
    executor = SQLiteExecutor(":memory:")
    with executor:
        executor.execute_script(SCHEMA)
        yield executor


class TestSQLiteExecutor:
    def test_explain_returns_plan_rows(self, db):
        result = db.explain("SELECT * FROM orders WHERE status = 'open'")
        assert result.engine == "sqlite"
        assert result.execution_time_ms >= 0
        assert all(len(row) == 4 for row in result.raw_plan)
        assert any("orders" in row[3] for row in result.raw_plan)

    def test_scan_normalized(self, db, settings):
        outcome = SqlTraceService(db, settings=settings).explain("SELECT * FROM orders WHERE status = 'open'")
        node = outcome.plan[outcome.plan.root_indices[0]]
        assert node.node_type == "SCAN"
        assert node.relation_name == "orders"
        assert outcome.metrics.has_cost is False
        assert outcome.analysis.performance_score == 100

    def test_index_search_normalized(self, db, settings):
        outcome = SqlTraceService(db, settings=settings).explain("SELECT * FROM orders WHERE customer_id = 1")
        node = outcome.plan[outcome.plan.root_indices[0]]
        assert node.node_type == "SEARCH"
        assert node.extra["Index Name"] == "idx_orders_customer"

    def test_rejects_writes(self, db):
        with pytest.raises(ExecutionError):
            db.explain("DELETE FROM orders")

    def test_statement_hidden_behind_literal_is_rejected(self, db):
        with pytest.raises(ExecutionError, match="single statement"):
            db.explain("SELECT '--'; DROP TABLE orders")
        assert db.explain("SELECT count(*) FROM orders").raw_plan is not None

    def test_engine_error(self, db):
        with pytest.raises(ExecutionError, match="no such table"):
            db.explain("SELECT * FROM missing")

    def test_timeout(self, db):
        with pytest.raises(QueryTimeoutError):
            db.explain(ENDLESS, timeout_ms=50)

    def test_connection_usable_after_timeout(self, db):
        with pytest.raises(QueryTimeoutError):
            db.explain(ENDLESS, timeout_ms=50)
        assert db.explain("SELECT count(*) FROM customers").raw_plan is not None

    def test_close(self):
        executor = SQLiteExecutor(":memory:")
        executor.connect()
        executor.close()
        assert executor._conn is None


class TestSQLiteBenchmark:
    def test_benchmark(self, db, settings):
        config = BenchmarkConfig(warmup_runs=1, benchmark_runs=3, timeout_seconds=5.0)
        result = SqlTraceService(db, settings=settings).benchmark("SELECT * FROM customers WHERE region = 'EU'", config)
        assert result.status == "ok"
        assert result.statistics.successful_runs == 3
        assert result.statistics.avg_cost is None
        assert result.statistics.avg_advisor_score == 100

