"""Whole-plan summary metrics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .models import PlanTree


@dataclass(frozen=True)
class PlanMetrics:
    """Aggregates over every node in a PlanTree.

    A field no node reports aggregates to zero. The ``has_*`` flags tell a
    zero that was measured apart from a zero that means "no data".
    """

    max_total_cost: float = 0.0
    total_actual_time: float = 0.0
    total_actual_rows: int = 0
    node_count: int = 0
    has_cost: bool = False
    has_actual_time: bool = False
    has_actual_rows: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_total_cost": self.max_total_cost,
            "total_actual_time": self.total_actual_time,
            "total_actual_rows": self.total_actual_rows,
            "node_count": self.node_count,
        }


class MetricsAggregator:
    """Derive PlanMetrics from a normalized tree. Pure and reentrant."""

    def aggregate(self, tree: PlanTree) -> PlanMetrics:
        costs = [n.total_cost for n in tree.nodes if n.total_cost is not None]
        times = [n.actual_total_time for n in tree.nodes if n.actual_total_time is not None]
        rows = [n.actual_rows for n in tree.nodes if n.actual_rows is not None]

        return PlanMetrics(
            max_total_cost=max(costs) if costs else 0.0,
            total_actual_time=sum(times) if times else 0.0,
            total_actual_rows=sum(rows) if rows else 0,
            node_count=len(tree.nodes),
            has_cost=bool(costs),
            has_actual_time=bool(times),
            has_actual_rows=bool(rows),
        )


def aggregate_metrics(tree: PlanTree) -> PlanMetrics:
    return MetricsAggregator().aggregate(tree)
