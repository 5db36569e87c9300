"""Tests for per-engine EXPLAIN adapters (plan.adapters)."""

import json

import pytest

from sqltrace.analyzers.advisor import AdvisorEngine
from sqltrace.analyzers.schemas import Severity, SuggestionType
from sqltrace.errors import ParseError
from sqltrace.plan.adapters import (
    adapt_duckdb,
    adapt_mysql,
    adapt_plan,
    adapt_postgres,
    adapt_sqlite,
    supported_engines,
)
from sqltrace.plan.normalizer import normalize_plan


MYSQL_PLAN = {
    "query_block": {
        "select_id": 1,
        "cost_info": {"query_cost": "1210.50"},
        "ordering_operation": {
            "using_filesort": True,
            "cost_info": {"sort_cost": "100.00"},
            "nested_loop": [
                {
                    "table": {
                        "table_name": "c",
                        "access_type": "ALL",
                        "rows_examined_per_scan": 1000,
                        "cost_info": {"read_cost": "10.00", "eval_cost": "100.00", "prefix_cost": "110.00"},
                        "attached_condition": "(`shop`.`c`.`region` = 'EU')",
                    }
                },
                {
                    "table": {
                        "table_name": "o",
                        "access_type": "ref",
                        "key": "idx_customer",
                        "ref": ["shop.c.id"],
                        "rows_examined_per_scan": 10,
                        "cost_info": {"read_cost": "1000.00", "eval_cost": "0.50", "prefix_cost": "1110.50"},
                    }
                },
            ],
        },
    }
}

DUCKDB_PROFILE = {
    "latency": 0.01,
    "rows_returned": 3,
    "children": [
        {
            "operator_name": "PROJECTION",
            "operator_timing": 0.0001,
            "operator_cardinality": 3,
            "extra_info": {"Projections": ["a"]},
            "children": [
                {
                    "operator_name": "SEQ_SCAN ",
                    "operator_timing": 0.002,
                    "operator_cardinality": 20000,
                    "extra_info": {
                        "Table": "events",
                        "Filters": ["x=1", "y=2"],
                        "Estimated Cardinality": "20000",
                    },
                    "children": [],
                }
            ],
        }
    ],
}


# ── PostgreSQL ───────────────────────────────────────────────────────────────


class TestPostgresAdapter:
    def test_explain_json_output(self, join_plan):
        roots = adapt_postgres(join_plan)
        assert len(roots) == 1
        assert roots[0]["Node Type"] == "Nested Loop"
        assert roots[0]["Execution Time"] == 36.1
        assert roots[0]["Planning Time"] == 0.2

    def test_does_not_mutate_input(self, join_plan):
        adapt_postgres(join_plan)
        assert "Execution Time" not in join_plan[0]["Plan"]

    def test_json_text(self, join_plan):
        tree = normalize_plan(adapt_plan("postgresql", json.dumps(join_plan)))
        assert len(tree) == 3
        assert tree[0].extra["Execution Time"] == 36.1

    def test_bare_node(self, seq_scan_plan):
        assert adapt_postgres(seq_scan_plan) == [seq_scan_plan]

    def test_invalid_json(self):
        with pytest.raises(ParseError):
            adapt_plan("postgres", "[{not json")

    def test_plan_not_an_object(self):
        with pytest.raises(ParseError) as exc_info:
            adapt_postgres([{"Plan": "Seq Scan"}])
        assert exc_info.value.path == [0, "Plan"]


# ── MySQL ────────────────────────────────────────────────────────────────────


class TestMySQLAdapter:
    def test_tree_shape(self):
        tree = normalize_plan(adapt_mysql(MYSQL_PLAN))
        assert [n.node_type for n in tree.nodes] == ["Sort", "Nested Loop", "Table Scan", "Index Lookup"]
        assert tree[0].children == (1,)
        assert tree[1].children == (2, 3)

    def test_costs_are_numbers(self):
        tree = normalize_plan(adapt_mysql(MYSQL_PLAN))
        scan, lookup = tree[2], tree[3]
        assert scan.total_cost == 110.0
        assert scan.startup_cost == 100.0
        assert lookup.total_cost == 1110.5
        assert tree[1].total_cost == 1110.5
        assert tree[0].startup_cost == 1110.5
        assert tree[0].total_cost == 1210.5

    def test_table_fields(self):
        tree = normalize_plan(adapt_mysql(MYSQL_PLAN))
        scan, lookup = tree[2], tree[3]
        assert scan.relation_name == "c"
        assert scan.extra["Plan Rows"] == 1000
        assert scan.extra["Filter"] == "(`shop`.`c`.`region` = 'EU')"
        assert lookup.extra["Index Name"] == "idx_customer"
        assert lookup.extra["Index Cond"] == "idx_customer = (shop.c.id)"
        assert tree[0].extra["Using Filesort"] is True
        assert tree[0].extra["Select Id"] == 1

    def test_json_text_row(self):
        roots = adapt_plan("mysql", json.dumps([MYSQL_PLAN]))
        assert roots[0]["Node Type"] == "Sort"

    def test_query_cost_used_when_block_has_none(self):
        roots = adapt_mysql({
            "query_block": {
                "select_id": 1,
                "cost_info": {"query_cost": "2.50"},
                "table": {"table_name": "t", "access_type": "const"},
            }
        })
        assert roots[0]["Node Type"] == "Index Lookup"
        assert roots[0]["Total Cost"] == 2.5

    def test_message_block(self):
        roots = adapt_mysql({"query_block": {"select_id": 1, "message": "No tables used"}})
        assert roots[0]["Node Type"] == "Result"
        assert roots[0]["Message"] == "No tables used"

    def test_union(self):
        roots = adapt_mysql({
            "query_block": {
                "union_result": {
                    "table_name": "<union1,2>",
                    "query_specifications": [
                        {"query_block": {"select_id": 1, "table": {"table_name": "a", "access_type": "ALL"}}},
                        {"query_block": {"select_id": 2, "table": {"table_name": "b", "access_type": "ALL"}}},
                    ],
                }
            }
        })
        tree = normalize_plan(roots)
        assert tree[0].node_type == "Union"
        assert [tree[c].relation_name for c in tree[0].children] == ["a", "b"]

    def test_missing_query_block(self):
        with pytest.raises(ParseError):
            adapt_mysql({"table": {}})

    def test_bad_cost(self):
        plan = {"query_block": {"table": {"access_type": "ALL", "cost_info": {"prefix_cost": "n/a"}}}}
        with pytest.raises(ParseError) as exc_info:
            adapt_mysql(plan)
        assert exc_info.value.path == ["query_block", "table", "cost_info", "prefix_cost"]


# ── SQLite ───────────────────────────────────────────────────────────────────


class TestSQLiteAdapter:
    def test_rows_to_tree(self):
        rows = [
            (3, 0, 0, "CO-ROUTINE recent"),
            (6, 3, 0, "SCAN orders AS o"),
            (12, 0, 0, "SEARCH customers AS c USING INDEX idx_customers_region (region=?)"),
            (20, 0, 0, "USE TEMP B-TREE FOR ORDER BY"),
        ]
        tree = normalize_plan(adapt_sqlite(rows))
        assert tree.root_indices == (0, 2, 3)
        assert tree[0].node_type == "CO-ROUTINE recent"
        assert tree[0].children == (1,)

        scan = tree[1]
        assert scan.node_type == "SCAN"
        assert scan.relation_name == "orders"
        assert scan.alias == "o"

        search = tree[2]
        assert search.node_type == "SEARCH"
        assert search.extra["Index Name"] == "idx_customers_region"
        assert search.extra["Index Cond"] == "region=?"

        assert tree[3].node_type == "Sort"

    def test_integer_primary_key(self):
        roots = adapt_sqlite([(2, 0, 0, "SEARCH t USING INTEGER PRIMARY KEY (rowid=?)")])
        assert roots[0]["Index Name"] == "INTEGER PRIMARY KEY"
        assert roots[0]["Index Cond"] == "rowid=?"

    def test_covering_index(self):
        roots = adapt_sqlite([(2, 0, 0, "SCAN t USING COVERING INDEX idx_t_a")])
        assert roots[0]["Index Name"] == "idx_t_a"
        assert "Index Cond" not in roots[0]

    @pytest.mark.parametrize("detail,node_type", [
        ("USE TEMP B-TREE FOR GROUP BY", "Aggregate"),
        ("USE TEMP B-TREE FOR DISTINCT", "Unique"),
        ("USE TEMP B-TREE FOR RIGHT PART OF ORDER BY", "Sort"),
    ])
    def test_temp_btree(self, detail, node_type):
        assert adapt_sqlite([(1, 0, 0, detail)])[0]["Node Type"] == node_type

    def test_dict_rows(self):
        roots = adapt_sqlite([{"id": 2, "parent": 0, "notused": 0, "detail": "SCAN users"}])
        assert roots[0]["Relation Name"] == "users"
        assert roots[0]["Node Id"] == 2

    def test_unknown_parent(self):
        with pytest.raises(ParseError) as exc_info:
            adapt_sqlite([(2, 0, 0, "SCAN a"), (4, 99, 0, "SCAN b")])
        assert exc_info.value.path == [1]

    def test_malformed_row(self):
        with pytest.raises(ParseError):
            adapt_sqlite([(2, 0, "SCAN a")])

    def test_not_a_list(self):
        with pytest.raises(ParseError):
            adapt_sqlite("SCAN a")


# ── DuckDB ───────────────────────────────────────────────────────────────────


class TestDuckDBAdapter:
    def test_profile_output(self):
        tree = normalize_plan(adapt_duckdb(DUCKDB_PROFILE))
        assert tree.root_indices == (0,)
        projection, scan = tree[0], tree[1]
        assert projection.node_type == "PROJECTION"
        assert projection.actual_rows == 3
        assert projection.actual_total_time == pytest.approx(0.1)
        assert projection.extra["Projections"] == ["a"]
        assert scan.node_type == "SEQ_SCAN"
        assert scan.relation_name == "events"
        assert scan.actual_rows == 20000
        assert scan.extra["Filter"] == "x=1 AND y=2"
        assert scan.extra["Plan Rows"] == 20000

    def test_advisor_flags_duckdb_scan(self):
        tree = normalize_plan(adapt_plan("duckdb", json.dumps(DUCKDB_PROFILE)))
        analysis = AdvisorEngine().analyze(tree)
        top = analysis.top_suggestion
        assert top.severity == Severity.HIGH
        assert top.suggestion_type == SuggestionType.MISSING_INDEX
        assert top.node_index == 1
        assert top.recommendation == "CREATE INDEX ON events (x, y);"

    def test_legacy_keys_and_string_extra_info(self):
        roots = adapt_duckdb({"name": "HASH_JOIN", "timing": 0.5, "cardinality": 10, "extra_info": "INNER\nid = id"})
        assert roots[0]["Node Type"] == "HASH_JOIN"
        assert roots[0]["Actual Total Time"] == 500.0
        assert roots[0]["Actual Rows"] == 10
        assert roots[0]["Extra Info"] == "INNER\nid = id"

    def test_node_without_operator(self):
        with pytest.raises(ParseError) as exc_info:
            adapt_duckdb({"children": [{"operator_timing": 0.1}]})
        assert exc_info.value.path == ["children", 0, "operator_name"]


# ── Registry ─────────────────────────────────────────────────────────────────


class TestRegistry:
    def test_supported_engines(self):
        engines = supported_engines()
        for name in ("postgres", "mysql", "sqlite", "duckdb"):
            assert name in engines

    def test_engine_name_case_insensitive(self, seq_scan_plan):
        assert adapt_plan("PostgreSQL", seq_scan_plan)[0]["Node Type"] == "Seq Scan"

    def test_unknown_engine(self):
        with pytest.raises(ValueError, match="Unsupported engine"):
            adapt_plan("oracle", {})
