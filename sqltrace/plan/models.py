"""Canonical, engine-agnostic plan representation."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional


@dataclass(frozen=True)
class PlanNode:
    """One operation in a normalized execution plan.

    Numeric fields are ``None`` when the engine did not report them. A
    ``None`` is not a zero and is never coerced to one.
    """

    node_type: str
    """Engine operator label (e.g. 'Seq Scan', 'Hash Join', 'SEARCH')."""

    relation_name: Optional[str] = None
    alias: Optional[str] = None

    startup_cost: Optional[float] = None
    total_cost: Optional[float] = None
    """Optimizer estimates, present only when the engine reports them."""

    actual_startup_time: Optional[float] = None
    actual_total_time: Optional[float] = None
    """Measured times in milliseconds, present only for analyzed plans."""

    actual_rows: Optional[int] = None

    extra: Mapping[str, Any] = field(default_factory=dict)
    """Every engine field outside the recognized set, keyed by its native label."""

    children: tuple[int, ...] = ()
    """Indices of child nodes in the owning PlanTree."""

    def __post_init__(self) -> None:
        # Read-only view so the tree stays immutable after construction
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def cost_delta(self) -> Optional[float]:
        """total_cost - startup_cost, when both are reported."""
        if self.total_cost is None or self.startup_cost is None:
            return None
        return self.total_cost - self.startup_cost

    @property
    def label(self) -> str:
        """Short display label, e.g. 'Seq Scan on orders'."""
        if self.relation_name:
            return f"{self.node_type} on {self.relation_name}"
        return self.node_type

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "node_type": self.node_type,
            "relation_name": self.relation_name,
            "alias": self.alias,
            "startup_cost": self.startup_cost,
            "total_cost": self.total_cost,
            "actual_startup_time": self.actual_startup_time,
            "actual_total_time": self.actual_total_time,
            "actual_rows": self.actual_rows,
            "extra": dict(self.extra),
            "children": list(self.children),
        }


@dataclass(frozen=True)
class PlanTree:
    """Flat node array plus root indices.

    Built once per explain call and never mutated afterwards. Parent links
    form a forest: each index is the child of at most one node.
    """

    nodes: tuple[PlanNode, ...] = ()
    root_indices: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "root_indices", tuple(self.root_indices))

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> PlanNode:
        return self.nodes[index]

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def parent_map(self) -> dict[int, int]:
        """Map child index -> parent index."""
        parents: dict[int, int] = {}
        for idx, node in enumerate(self.nodes):
            for child in node.children:
                parents[child] = idx
        return parents

    def walk(self) -> Iterator[tuple[int, int]]:
        """Yield (index, depth) in pre-order from each root."""
        stack = [(idx, 0) for idx in reversed(self.root_indices)]
        while stack:
            idx, depth = stack.pop()
            yield idx, depth
            for child in reversed(self.nodes[idx].children):
                stack.append((child, depth + 1))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the ``{"nodes": [...], "root_indices": [...]}`` shape."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "root_indices": list(self.root_indices),
        }
