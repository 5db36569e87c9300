"""Tests for the rule-based plan advisor (analyzers.advisor)."""

import pytest

from sqltrace.analyzers.advisor import (
    AdvisorConfig,
    AdvisorEngine,
    analyze_plan,
    filter_columns,
    most_expensive_index,
    potential_improvement,
)
from sqltrace.analyzers.schemas import Severity, SuggestionType
from sqltrace.config import Settings
from sqltrace.plan.normalizer import normalize_plan


@pytest.fixture
def advisor() -> AdvisorEngine:
    return AdvisorEngine(AdvisorConfig())


def _large_scan(relation: str = "events", rows: int = 20_000) -> dict:
    return {"Node Type": "Seq Scan", "Relation Name": relation, "Actual Rows": rows}


# ── Scoring ──────────────────────────────────────────────────────────────────


class TestScoring:
    def test_single_large_seq_scan(self, advisor, seq_scan_plan):
        analysis = advisor.analyze(normalize_plan(seq_scan_plan))
        assert len(analysis.suggestions) == 1
        suggestion = analysis.suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.MISSING_INDEX
        assert suggestion.severity == Severity.HIGH
        assert suggestion.node_index == 0
        assert analysis.performance_score == 80
        assert analysis.summary.high_severity_count == 1
        assert analysis.summary.total_suggestions == 1

    def test_empty_tree_scores_100(self, advisor):
        analysis = advisor.analyze(normalize_plan([]))
        assert analysis.suggestions == ()
        assert analysis.performance_score == 100
        assert analysis.summary.most_expensive_operation == "Unknown"
        assert analysis.summary.potential_improvement == "Query is well optimized"

    def test_clean_plan_scores_100(self, advisor, fake_executor):
        plan = fake_executor.raw_plan[0]["Plan"]
        analysis = advisor.analyze(normalize_plan(plan))
        assert analysis.performance_score == 100
        assert analysis.top_suggestion is None

    def test_score_floors_at_zero(self, advisor):
        tree = normalize_plan([_large_scan(f"t{i}") for i in range(6)])
        analysis = advisor.analyze(tree)
        assert len(analysis.suggestions) == 6
        assert analysis.performance_score == 0
        assert analysis.summary.potential_improvement == "Significant optimization recommended"

    def test_penalties_are_additive(self, advisor):
        tree = normalize_plan([_large_scan("a"), _large_scan("b")])
        assert advisor.analyze(tree).performance_score == 60

    @pytest.mark.parametrize("score,expected", [
        (100, "Query is well optimized"),
        (80, "Query is well optimized"),
        (79, "Moderate improvement available"),
        (60, "Moderate improvement available"),
        (59, "Significant optimization recommended"),
        (0, "Significant optimization recommended"),
    ])
    def test_potential_improvement_bands(self, score, expected):
        assert potential_improvement(score) == expected


# ── Rules ────────────────────────────────────────────────────────────────────


class TestLargeSeqScan:
    def test_recommendation_names_filter_columns(self, advisor, seq_scan_plan):
        suggestion = advisor.analyze(normalize_plan(seq_scan_plan)).suggestions[0]
        assert suggestion.recommendation == "CREATE INDEX ON orders (status);"
        assert "status" in suggestion.description
        assert "500,000" in suggestion.description

    def test_index_condition_suppresses(self, advisor):
        node = dict(_large_scan(), **{"Index Cond": "(id = 1)"})
        assert advisor.analyze(normalize_plan(node)).suggestions == ()

    def test_below_threshold(self, advisor):
        assert advisor.analyze(normalize_plan(_large_scan(rows=10_000))).suggestions == ()

    def test_scan_without_filter_is_missing_index(self, advisor):
        analysis = advisor.analyze(normalize_plan({"Node Type": "Seq Scan", "Actual Rows": 500_000}))
        assert [s.suggestion_type for s in analysis.suggestions] == [SuggestionType.MISSING_INDEX]
        assert analysis.suggestions[0].recommendation.startswith("Add an index")
        assert analysis.performance_score == 80

    def test_rows_estimated_from_cost(self, advisor):
        tree = normalize_plan({"Node Type": "Seq Scan", "Relation Name": "logs", "Total Cost": 500.0})
        analysis = advisor.analyze(tree)
        assert [s.suggestion_type for s in analysis.suggestions] == [SuggestionType.MISSING_INDEX]
        assert "estimated" in analysis.suggestions[0].description

    def test_other_engine_scan_names(self, advisor):
        tree = normalize_plan([
            {"Node Type": "Table Scan", "Actual Rows": 50_000},
            {"Node Type": "SEQ_SCAN", "Actual Rows": 50_000},
        ])
        assert len(advisor.analyze(tree).by_severity(Severity.HIGH)) == 2

    def test_disabled_index_suggestions(self, seq_scan_plan):
        advisor = AdvisorEngine(AdvisorConfig(enable_index_suggestions=False))
        analysis = advisor.analyze(normalize_plan(seq_scan_plan))
        assert analysis.suggestions == ()
        assert analysis.performance_score == 100

    def test_custom_threshold(self, seq_scan_plan):
        advisor = AdvisorEngine(AdvisorConfig(large_scan_rows=1_000_000))
        assert advisor.analyze(normalize_plan(seq_scan_plan)).suggestions == ()


class TestNestedLoop:
    def test_large_outer_input(self, advisor, join_plan):
        analysis = advisor.analyze(normalize_plan(join_plan[0]["Plan"]))
        assert len(analysis.suggestions) == 1
        suggestion = analysis.suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.INEFFICIENT_JOIN
        assert suggestion.severity == Severity.MEDIUM
        assert suggestion.node_index == 0
        assert analysis.performance_score == 90

    def test_small_inputs(self, advisor):
        tree = normalize_plan({
            "Node Type": "Nested Loop",
            "Plans": [{"Node Type": "Index Scan", "Actual Rows": 10}, {"Node Type": "Index Scan", "Actual Rows": 1}],
        })
        assert advisor.analyze(tree).suggestions == ()

    def test_engine_spelling(self, advisor):
        tree = normalize_plan({
            "Node Type": "NESTED_LOOP_JOIN",
            "Plans": [{"Node Type": "FILTER", "Actual Rows": 5000}],
        })
        types = [s.suggestion_type for s in advisor.analyze(tree).suggestions]
        assert types == [SuggestionType.INEFFICIENT_JOIN]

    def test_disabled_rewrite_suggestions(self, join_plan):
        advisor = AdvisorEngine(AdvisorConfig(enable_rewrite_suggestions=False))
        assert advisor.analyze(normalize_plan(join_plan[0]["Plan"])).suggestions == ()


class TestExpensiveJoin:
    @pytest.mark.parametrize("node_type", ["Hash Join", "Merge Join", "HASH_JOIN"])
    def test_join_over_cost_threshold(self, advisor, node_type):
        tree = normalize_plan({
            "Node Type": node_type,
            "Total Cost": 2500.0,
            "Hash Cond": "(o.customer_id = c.id)",
            "Plans": [
                {"Node Type": "Index Scan", "Relation Name": "orders", "Total Cost": 900.0, "Index Cond": "(id > 0)"},
                {"Node Type": "Index Scan", "Relation Name": "customers", "Total Cost": 40.0, "Index Cond": "(id > 0)"},
            ],
        })
        analysis = advisor.analyze(tree)
        assert len(analysis.suggestions) == 1
        suggestion = analysis.suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.INEFFICIENT_JOIN
        assert suggestion.severity == Severity.MEDIUM
        assert suggestion.node_index == 0
        assert "2,500.00" in suggestion.description
        assert analysis.performance_score == 90

    def test_cheap_join(self, advisor):
        tree = normalize_plan({"Node Type": "Hash Join", "Total Cost": 1000.0, "Hash Cond": "(a = b)"})
        assert advisor.analyze(tree).suggestions == ()

    def test_one_join_suggestion_per_node(self, advisor):
        tree = normalize_plan({
            "Node Type": "NESTED_LOOP_JOIN",
            "Total Cost": 5000.0,
            "Plans": [{"Node Type": "FILTER", "Actual Rows": 5000}],
        })
        suggestions = advisor.analyze(tree).suggestions
        assert [(s.suggestion_type, s.node_index) for s in suggestions] == [
            (SuggestionType.INEFFICIENT_JOIN, 0)
        ]
        assert suggestions[0].title == "Expensive nested loop join"

    def test_disabled_rewrite_suggestions(self):
        advisor = AdvisorEngine(AdvisorConfig(enable_rewrite_suggestions=False))
        tree = normalize_plan({"Node Type": "Hash Join", "Total Cost": 2500.0, "Hash Cond": "(a = b)"})
        assert advisor.analyze(tree).suggestions == ()


class TestSortSpill:
    def test_disk_sort(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort",
            "Sort Method": "external merge",
            "Sort Space Type": "Disk",
            "Actual Rows": 100,
        })
        suggestion = advisor.analyze(tree).suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.SORT_SPILL_RISK
        assert suggestion.severity == Severity.MEDIUM
        assert "external merge" in suggestion.description

    def test_cost_growth_heuristic(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort", "Startup Cost": 100.0, "Total Cost": 300.0, "Actual Rows": 1000,
        })
        assert [s.suggestion_type for s in advisor.analyze(tree).suggestions] == [
            SuggestionType.SORT_SPILL_RISK
        ]

    def test_cost_growth_under_threshold(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort", "Startup Cost": 100.0, "Total Cost": 105.0, "Actual Rows": 1000,
        })
        assert advisor.analyze(tree).suggestions == ()

    def test_uses_plan_rows_when_not_analyzed(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort", "Startup Cost": 0.0, "Total Cost": 50.0, "Plan Rows": 200,
        })
        assert len(advisor.analyze(tree).suggestions) == 1

    def test_zero_rows_never_fires(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort", "Startup Cost": 0.0, "Total Cost": 50.0, "Actual Rows": 0,
        })
        assert advisor.analyze(tree).suggestions == ()

    def test_in_memory_sort(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort", "Sort Method": "quicksort", "Sort Space Type": "Memory",
        })
        assert advisor.analyze(tree).suggestions == ()


class TestIndexFilter:
    def test_unselective_index(self, advisor):
        tree = normalize_plan({
            "Node Type": "Index Scan",
            "Relation Name": "orders",
            "Index Name": "orders_created_idx",
            "Actual Rows": 10,
            "Rows Removed by Filter": 5000,
        })
        analysis = advisor.analyze(tree)
        suggestion = analysis.suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.UNUSED_INDEX_HINT
        assert suggestion.severity == Severity.LOW
        assert "orders_created_idx" in suggestion.title
        assert analysis.performance_score == 95

    def test_few_rows_removed(self, advisor):
        tree = normalize_plan({
            "Node Type": "Index Scan", "Actual Rows": 10, "Rows Removed by Filter": 500,
        })
        assert advisor.analyze(tree).suggestions == ()

    def test_removed_relative_to_kept(self, advisor):
        tree = normalize_plan({
            "Node Type": "Index Only Scan", "Actual Rows": 1000, "Rows Removed by Filter": 5000,
        })
        assert advisor.analyze(tree).suggestions == ()


class TestHighCostRoot:
    def test_expensive_node_without_condition(self, advisor):
        tree = normalize_plan({
            "Node Type": "Limit",
            "Total Cost": 5000.0,
            "Plans": [{"Node Type": "Hash Aggregate", "Total Cost": 4990.0}],
        })
        analysis = advisor.analyze(tree)
        assert len(analysis.suggestions) == 1
        suggestion = analysis.suggestions[0]
        assert suggestion.suggestion_type == SuggestionType.OTHER
        assert suggestion.severity == Severity.LOW
        assert suggestion.node_index == 0
        assert analysis.summary.most_expensive_operation == "Limit"

    def test_condition_suppresses(self, advisor):
        tree = normalize_plan({
            "Node Type": "HashAggregate", "Total Cost": 5000.0, "Group Key": ["region"],
        })
        assert advisor.analyze(tree).suggestions == ()

    def test_below_cost_threshold(self, advisor):
        tree = normalize_plan({"Node Type": "Aggregate", "Total Cost": 999.0})
        assert advisor.analyze(tree).suggestions == ()

    def test_not_repeated_on_flagged_node(self, advisor):
        tree = normalize_plan({"Node Type": "Seq Scan", "Total Cost": 50_000.0, "Actual Rows": 80_000})
        types = [s.suggestion_type for s in advisor.analyze(tree).suggestions]
        assert types == [SuggestionType.MISSING_INDEX]

    def test_most_expensive_tie_goes_to_lowest_index(self):
        tree = normalize_plan([
            {"Node Type": "A", "Total Cost": 10.0},
            {"Node Type": "B", "Total Cost": 10.0},
        ])
        assert most_expensive_index(tree) == 0

    def test_no_costs(self):
        assert most_expensive_index(normalize_plan([{"Node Type": "SCAN"}])) is None


# ── Ordering ─────────────────────────────────────────────────────────────────


class TestOrdering:
    def test_severity_then_preorder(self, advisor):
        tree = normalize_plan({
            "Node Type": "Sort",
            "Sort Method": "external merge",
            "Sort Space Type": "Disk",
            "Plans": [
                {
                    "Node Type": "Index Scan",
                    "Actual Rows": 5,
                    "Rows Removed by Filter": 9000,
                },
                _large_scan("a"),
                _large_scan("b"),
            ],
        })
        analysis = advisor.analyze(tree)
        assert [(s.severity, s.node_index) for s in analysis.suggestions] == [
            (Severity.HIGH, 2),
            (Severity.HIGH, 3),
            (Severity.MEDIUM, 0),
            (Severity.LOW, 1),
        ]
        assert analysis.performance_score == 100 - 20 - 20 - 10 - 5
        assert analysis.for_node(0)[0].suggestion_type == SuggestionType.SORT_SPILL_RISK


# ── Summary / config / helpers ───────────────────────────────────────────────


class TestSummary:
    def test_total_cost_is_max_cost(self, advisor, join_plan):
        analysis = advisor.analyze(normalize_plan(join_plan[0]["Plan"]))
        assert analysis.summary.total_cost == 450.0
        assert analysis.summary.most_expensive_operation == "Nested Loop"

    def test_to_dict(self, seq_scan_plan):
        data = analyze_plan(normalize_plan(seq_scan_plan)).to_dict()
        assert data["performance_score"] == 80
        assert data["suggestions"][0]["severity"] == "High"
        assert data["suggestions"][0]["suggestion_type"] == "missing_index"
        assert data["summary"]["total_suggestions"] == 1

    def test_config_from_settings(self):
        settings = Settings(_env_file=None, large_scan_rows=5, nested_loop_rows=7)
        config = AdvisorConfig.from_settings(settings)
        assert config.large_scan_rows == 5
        assert config.nested_loop_rows == 7


class TestFilterColumns:
    def test_postgres_cast_filter(self):
        assert filter_columns("((status)::text = 'shipped'::text)") == ["status"]

    def test_multiple_columns_in_order(self):
        assert filter_columns("(o.region = 'EU') AND (o.total > 100) AND (o.region <> 'X')") == [
            "region", "total"
        ]

    def test_empty_and_non_string(self):
        assert filter_columns("") == []
        assert filter_columns(None) == []
        assert filter_columns(["a = 1"]) == []

    def test_unparseable(self):
        assert filter_columns("((((") == []
