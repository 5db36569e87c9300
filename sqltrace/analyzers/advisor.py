"""Rule-based plan advisor.

Each rule is a small predicate/template function registered against a
RuleKind. Node rules run over every node in pre-order; the high-cost rule
runs once afterwards because it depends on what the node rules found.

Scoring is additive: 100 minus a fixed penalty per suggestion
(High 20, Medium 10, Low 5), floored at 0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..config import Settings, get_settings
from ..plan.metrics import MetricsAggregator, PlanMetrics
from ..plan.models import PlanNode, PlanTree
from .schemas import AdvisorAnalysis, AnalysisSummary, Severity, Suggestion, SuggestionType

logger = logging.getLogger(__name__)


# Full-table scan operators across engines (compared upper-cased)
FULL_SCAN_TYPES = {
    "SEQ SCAN",
    "PARALLEL SEQ SCAN",
    "TABLE SCAN",
    "FULL TABLE SCAN",
    "SEQ_SCAN",
    "TABLE_SCAN",
    "SCAN",
}

# Extra keys that show the scan is driven by an index
INDEX_CONDITION_KEYS = ("Index Cond", "Recheck Cond")

# Extra key suffixes that count as a redeeming condition on an expensive node
CONDITION_KEY_SUFFIXES = ("Cond", "Filter", "Key", "Index Name")


@dataclass(frozen=True)
class AdvisorConfig:
    """Thresholds and switches for the advisor rules."""
    large_scan_rows: int = 10_000
    nested_loop_rows: int = 1_000
    sort_spill_cost_per_row: float = 0.01
    estimated_cost_per_row: float = 0.01
    expensive_cost_threshold: float = 1000.0
    index_filter_removed_ratio: float = 10.0
    index_filter_removed_min: int = 1_000
    enable_index_suggestions: bool = True
    enable_rewrite_suggestions: bool = True

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AdvisorConfig":
        settings = settings or get_settings()
        return cls(
            large_scan_rows=settings.large_scan_rows,
            nested_loop_rows=settings.nested_loop_rows,
            sort_spill_cost_per_row=settings.sort_spill_cost_per_row,
            estimated_cost_per_row=settings.estimated_cost_per_row,
            expensive_cost_threshold=settings.expensive_cost_threshold,
            index_filter_removed_ratio=settings.index_filter_removed_ratio,
            index_filter_removed_min=settings.index_filter_removed_min,
        )


class RuleKind(str, Enum):
    """Advisor rules, in evaluation order."""
    LARGE_SEQ_SCAN = "large_seq_scan"
    NESTED_LOOP = "nested_loop"
    EXPENSIVE_JOIN = "expensive_join"
    SORT_SPILL = "sort_spill"
    INDEX_FILTER = "index_filter"
    HIGH_COST_ROOT = "high_cost_root"


@dataclass(frozen=True)
class RuleContext:
    tree: PlanTree
    metrics: PlanMetrics
    config: AdvisorConfig


NodeRule = Callable[[RuleContext, int, PlanNode], Optional[Suggestion]]


# =============================================================================
# Helpers
# =============================================================================

def _operator(node: PlanNode) -> str:
    """Lower-cased operator with underscores as spaces (NESTED_LOOP_JOIN -> nested loop join)."""
    return node.node_type.strip().lower().replace("_", " ")


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _where(node: PlanNode) -> str:
    return f" on {node.relation_name}" if node.relation_name else ""


def filter_columns(condition: Any) -> list[str]:
    """Column names referenced by a filter expression, in order of appearance.

    Engine filters are SQL-ish (e.g. ``((status)::text = 'shipped'::text)``);
    unparseable text yields no columns.
    """
    if not isinstance(condition, str) or not condition.strip():
        return []
    try:
        parsed = sqlglot.parse_one(f"SELECT 1 WHERE {condition}", read="postgres")
    except SqlglotError as e:
        logger.debug("Could not parse filter %r: %s", condition, e)
        return []

    columns: list[str] = []
    for column in parsed.find_all(exp.Column, bfs=False):
        name = column.name
        if name and name not in columns:
            columns.append(name)
    return columns


def _row_estimate(node: PlanNode, config: AdvisorConfig) -> Optional[float]:
    if node.actual_rows is not None:
        return float(node.actual_rows)
    if node.total_cost is not None and config.estimated_cost_per_row > 0:
        return node.total_cost / config.estimated_cost_per_row
    return None


# =============================================================================
# Node rules
# =============================================================================

def check_large_seq_scan(ctx: RuleContext, index: int, node: PlanNode) -> Optional[Suggestion]:
    if not ctx.config.enable_index_suggestions:
        return None
    if node.node_type.strip().upper() not in FULL_SCAN_TYPES:
        return None
    if any(key in node.extra for key in INDEX_CONDITION_KEYS):
        return None

    rows = _row_estimate(node, ctx.config)
    if rows is None or rows <= ctx.config.large_scan_rows:
        return None

    measured = "reads" if node.actual_rows is not None else "is estimated to read"
    columns = filter_columns(node.extra.get("Filter"))
    description = f"{node.node_type}{_where(node)} {measured} {rows:,.0f} rows without an index."
    if columns:
        description += f" Filter columns: {', '.join(columns)}."

    if columns and node.relation_name:
        recommendation = f"CREATE INDEX ON {node.relation_name} ({', '.join(columns)});"
    else:
        recommendation = "Add an index on the columns this scan filters or joins on."

    return Suggestion(
        suggestion_type=SuggestionType.MISSING_INDEX,
        severity=Severity.HIGH,
        title=f"Large sequential scan{_where(node)}",
        description=description,
        recommendation=recommendation,
        impact="High - index access can cut rows read by orders of magnitude",
        node_index=index,
    )


def check_nested_loop(ctx: RuleContext, index: int, node: PlanNode) -> Optional[Suggestion]:
    if not ctx.config.enable_rewrite_suggestions:
        return None
    if "nested loop" not in _operator(node):
        return None

    child_rows = [
        ctx.tree[c].actual_rows for c in node.children if ctx.tree[c].actual_rows is not None
    ]
    if not child_rows:
        return None
    largest = max(child_rows)
    if largest <= ctx.config.nested_loop_rows:
        return None

    return Suggestion(
        suggestion_type=SuggestionType.INEFFICIENT_JOIN,
        severity=Severity.MEDIUM,
        title="Expensive nested loop join",
        description=(
            f"{node.node_type} iterates over an input of {largest:,} rows; "
            "the inner side is re-evaluated for every outer row."
        ),
        recommendation=(
            "Index the join columns or restructure the query so the planner "
            "can choose a hash or merge join."
        ),
        impact="Medium - join cost grows with the product of both inputs",
        node_index=index,
    )


def check_expensive_join(ctx: RuleContext, index: int, node: PlanNode) -> Optional[Suggestion]:
    if not ctx.config.enable_rewrite_suggestions:
        return None
    if "join" not in _operator(node):
        return None
    if node.total_cost is None or node.total_cost <= ctx.config.expensive_cost_threshold:
        return None

    return Suggestion(
        suggestion_type=SuggestionType.INEFFICIENT_JOIN,
        severity=Severity.MEDIUM,
        title=f"Expensive {node.node_type}",
        description=(
            f"{node.node_type} has a high cost ({node.total_cost:,.2f}); "
            "the join strategy may not suit these inputs."
        ),
        recommendation=(
            "Index the join columns, refresh table statistics (ANALYZE) or "
            "restructure the query to shrink the join inputs."
        ),
        impact="Medium - a cheaper join strategy can cut the dominant cost",
        node_index=index,
    )


def check_sort_spill(ctx: RuleContext, index: int, node: PlanNode) -> Optional[Suggestion]:
    operator = _operator(node)
    if "sort" not in operator and operator != "order by":
        return None

    space_type = str(node.extra.get("Sort Space Type", "")).lower()
    method = str(node.extra.get("Sort Method", "")).lower()
    if space_type == "disk" or "external" in method:
        detail = f"{node.node_type} wrote to disk ({node.extra.get('Sort Method', 'disk')})."
    else:
        delta = node.cost_delta
        rows = node.actual_rows
        if rows is None:
            plan_rows = _numeric(node.extra.get("Plan Rows"))
            rows = int(plan_rows) if plan_rows is not None else None
        if delta is None or not rows:
            return None
        threshold = ctx.config.sort_spill_cost_per_row * rows
        if delta <= threshold:
            return None
        detail = (
            f"{node.node_type} cost grows by {delta:,.2f} over {rows:,} rows "
            f"(threshold {threshold:,.2f})."
        )

    return Suggestion(
        suggestion_type=SuggestionType.SORT_SPILL_RISK,
        severity=Severity.MEDIUM,
        title="Sort likely spilling to disk",
        description=detail,
        recommendation=(
            "Add an index matching the ORDER BY columns or raise the sort memory "
            "setting (work_mem) for this query."
        ),
        impact="Medium - in-memory or index-ordered sorts avoid temporary files",
        node_index=index,
    )


def check_index_filter(ctx: RuleContext, index: int, node: PlanNode) -> Optional[Suggestion]:
    if not ctx.config.enable_index_suggestions:
        return None
    operator = _operator(node)
    if not (("index" in operator and "scan" in operator) or operator == "index lookup"):
        return None

    removed = _numeric(node.extra.get("Rows Removed by Filter"))
    if removed is None:
        return None
    kept = node.actual_rows or 0
    threshold = max(ctx.config.index_filter_removed_min, ctx.config.index_filter_removed_ratio * kept)
    if removed <= threshold:
        return None

    index_name = node.extra.get("Index Name")
    using = f" using {index_name}" if index_name else ""
    return Suggestion(
        suggestion_type=SuggestionType.UNUSED_INDEX_HINT,
        severity=Severity.LOW,
        title=f"Index{using} is not selective for the filter",
        description=(
            f"{node.node_type}{_where(node)} discards {removed:,.0f} rows after the "
            f"index lookup and keeps {kept:,}."
        ),
        recommendation="Extend the index with the filtered columns or add a partial index.",
        impact="Low - fewer heap fetches for rows that are thrown away",
        node_index=index,
    )


_NODE_RULES: dict[RuleKind, NodeRule] = {
    RuleKind.LARGE_SEQ_SCAN: check_large_seq_scan,
    RuleKind.NESTED_LOOP: check_nested_loop,
    RuleKind.EXPENSIVE_JOIN: check_expensive_join,
    RuleKind.SORT_SPILL: check_sort_spill,
    RuleKind.INDEX_FILTER: check_index_filter,
}

_RULE_ORDER: dict[RuleKind, int] = {kind: pos for pos, kind in enumerate(RuleKind)}


def most_expensive_index(tree: PlanTree) -> Optional[int]:
    """Index of the node with the highest total_cost; lowest index wins ties."""
    best: Optional[int] = None
    for idx, node in enumerate(tree.nodes):
        if node.total_cost is None:
            continue
        if best is None or node.total_cost > tree[best].total_cost:
            best = idx
    return best


def check_high_cost_root(
    ctx: RuleContext, index: Optional[int], attributed: set[int]
) -> Optional[Suggestion]:
    if index is None or index in attributed:
        return None
    node = ctx.tree[index]
    if node.total_cost is None or node.total_cost < ctx.config.expensive_cost_threshold:
        return None
    if any(key.endswith(CONDITION_KEY_SUFFIXES) for key in node.extra):
        return None

    return Suggestion(
        suggestion_type=SuggestionType.OTHER,
        severity=Severity.LOW,
        title=f"Most expensive operation: {node.node_type}",
        description=(
            f"{node.node_type}{_where(node)} has the highest cost in the plan "
            f"({node.total_cost:,.2f}) and no filter or index condition."
        ),
        recommendation="Check whether the query can restrict this step earlier.",
        impact="Low - informational",
        node_index=index,
    )


# =============================================================================
# Engine
# =============================================================================

def potential_improvement(score: int) -> str:
    if score >= 80:
        return "Query is well optimized"
    if score >= 60:
        return "Moderate improvement available"
    return "Significant optimization recommended"


class AdvisorEngine:
    """Evaluate advisor rules over a normalized plan.

    Stateless between calls and safe to share across threads.

    Example:
        advisor = AdvisorEngine()
        analysis = advisor.analyze(tree)
        print(analysis.performance_score)
    """

    def __init__(self, config: Optional[AdvisorConfig] = None):
        self.config = config or AdvisorConfig()
        self._metrics = MetricsAggregator()

    def analyze(self, tree: PlanTree, metrics: Optional[PlanMetrics] = None) -> AdvisorAnalysis:
        if metrics is None:
            metrics = self._metrics.aggregate(tree)
        if tree.is_empty:
            return AdvisorAnalysis(
                suggestions=(),
                performance_score=100,
                summary=AnalysisSummary(potential_improvement=potential_improvement(100)),
            )

        ctx = RuleContext(tree=tree, metrics=metrics, config=self.config)
        position = self._preorder_positions(tree)

        # (type, node) -> ((severity rank, pre-order position, rule order), suggestion)
        found: dict[tuple[SuggestionType, int], tuple[tuple[int, int, int], Suggestion]] = {}
        for idx in sorted(position, key=position.__getitem__):
            node = tree[idx]
            for kind, rule in _NODE_RULES.items():
                suggestion = rule(ctx, idx, node)
                if suggestion is not None:
                    self._add(found, suggestion, (position[idx], _RULE_ORDER[kind]))

        costliest = most_expensive_index(tree)
        attributed = {s.node_index for _, s in found.values()}
        high_cost = check_high_cost_root(ctx, costliest, attributed)
        if high_cost is not None:
            self._add(
                found, high_cost, (position[costliest], _RULE_ORDER[RuleKind.HIGH_COST_ROOT])
            )

        suggestions = tuple(s for _, s in sorted(found.values(), key=lambda item: item[0]))
        score = max(0, 100 - sum(s.severity.penalty for s in suggestions))

        summary = AnalysisSummary(
            total_suggestions=len(suggestions),
            high_severity_count=sum(1 for s in suggestions if s.severity == Severity.HIGH),
            total_cost=metrics.max_total_cost,
            most_expensive_operation=(
                tree[costliest].node_type if costliest is not None else "Unknown"
            ),
            potential_improvement=potential_improvement(score),
        )

        logger.debug(
            "Advisor: %d nodes, %d suggestions, score %d",
            len(tree), len(suggestions), score,
        )
        return AdvisorAnalysis(suggestions=suggestions, performance_score=score, summary=summary)

    @staticmethod
    def _add(found, suggestion: Suggestion, order: tuple[int, int]) -> None:
        key = (suggestion.suggestion_type, suggestion.node_index)
        if key in found:
            return
        found[key] = ((suggestion.severity.rank,) + order, suggestion)

    @staticmethod
    def _preorder_positions(tree: PlanTree) -> dict[int, int]:
        position: dict[int, int] = {}
        for idx, _depth in tree.walk():
            position.setdefault(idx, len(position))
        # Nodes not reachable from a root still get evaluated, after the rest
        for idx in range(len(tree)):
            position.setdefault(idx, len(position))
        return position


def analyze_plan(tree: PlanTree, config: Optional[AdvisorConfig] = None) -> AdvisorAnalysis:
    return AdvisorEngine(config).analyze(tree)
