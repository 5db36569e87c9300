"""Normalize nested EXPLAIN output into a flat PlanTree.

The normalizer accepts the canonical raw nested form (see ``adapters``):
each node is a mapping with a ``"Node Type"`` and optional child plans under
``"Plans"``. It knows nothing about advisor semantics; every field outside
the recognized set is carried into ``PlanNode.extra`` unmodified.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence, Union

from ..errors import ParseError, PathElement
from .models import PlanNode, PlanTree

# Canonical keys -> PlanNode attribute
STRING_FIELDS: dict[str, str] = {
    "Relation Name": "relation_name",
    "Alias": "alias",
}

FLOAT_FIELDS: dict[str, str] = {
    "Startup Cost": "startup_cost",
    "Total Cost": "total_cost",
    "Actual Startup Time": "actual_startup_time",
    "Actual Total Time": "actual_total_time",
}

INT_FIELDS: dict[str, str] = {
    "Actual Rows": "actual_rows",
}

RawPlan = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


class PlanNormalizer:
    """Flatten a nested plan description into a PlanTree.

    Nodes are numbered in pre-order. A node's index is reserved before its
    children are visited and its children list is filled in afterwards, so
    a parent always has a lower index than any of its descendants.

    Example:
        >>> tree = PlanNormalizer().normalize({"Node Type": "Seq Scan"})
        >>> tree.root_indices
        (0,)
    """

    def __init__(self, type_key: str = "Node Type", children_key: str = "Plans"):
        self.type_key = type_key
        self.children_key = children_key
        self._recognized = (
            {type_key, children_key}
            | set(STRING_FIELDS)
            | set(FLOAT_FIELDS)
            | set(INT_FIELDS)
        )

    def normalize(self, raw: RawPlan) -> PlanTree:
        """Normalize raw plan output.

        Args:
            raw: A single root node mapping, or a sequence of root mappings
                (one entry per root, in order).

        Returns:
            Immutable PlanTree. An empty sequence yields an empty tree.

        Raises:
            ParseError: Input is malformed. ``path`` locates the offending
                element from the root of ``raw``.
        """
        if isinstance(raw, Mapping):
            roots: Sequence[Any] = [raw]
            root_path: list[PathElement] = []
            single = True
        elif isinstance(raw, (list, tuple)):
            roots = raw
            root_path = []
            single = False
        else:
            raise ParseError(
                f"Plan must be a mapping or a list of mappings, got {type(raw).__name__}",
                [],
            )

        slots: list[Optional[PlanNode]] = []
        root_indices: list[int] = []
        for pos, root in enumerate(roots):
            path = root_path if single else root_path + [pos]
            root_indices.append(self._visit(root, path, slots))

        return PlanTree(nodes=tuple(slots), root_indices=tuple(root_indices))

    def _visit(
        self, raw: Any, path: list[PathElement], slots: list[Optional[PlanNode]]
    ) -> int:
        if not isinstance(raw, Mapping):
            raise ParseError(
                f"Plan node must be a mapping, got {type(raw).__name__}", path
            )

        node_type = raw.get(self.type_key)
        if not isinstance(node_type, str) or not node_type:
            raise ParseError(
                f"Plan node is missing a '{self.type_key}'", path + [self.type_key]
            )

        index = len(slots)
        slots.append(None)  # reserve; filled once children are numbered

        children: list[int] = []
        raw_children = raw.get(self.children_key)
        if raw_children is not None:
            if not isinstance(raw_children, (list, tuple)):
                raise ParseError(
                    f"'{self.children_key}' must be a list, got {type(raw_children).__name__}",
                    path + [self.children_key],
                )
            for pos, child in enumerate(raw_children):
                children.append(
                    self._visit(child, path + [self.children_key, pos], slots)
                )

        fields: dict[str, Any] = {}
        for key, attr in STRING_FIELDS.items():
            fields[attr] = _string_field(raw, key, path)
        for key, attr in FLOAT_FIELDS.items():
            fields[attr] = _float_field(raw, key, path)
        for key, attr in INT_FIELDS.items():
            fields[attr] = _int_field(raw, key, path)

        extra = {k: v for k, v in raw.items() if k not in self._recognized}

        slots[index] = PlanNode(
            node_type=node_type,
            extra=extra,
            children=tuple(children),
            **fields,
        )
        return index


def _string_field(raw: Mapping[str, Any], key: str, path: list[PathElement]) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ParseError(f"'{key}' must be a string, got {type(value).__name__}", path + [key])
    return value


def _number(raw: Mapping[str, Any], key: str, path: list[PathElement]) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseError(f"'{key}' must be a number, got {type(value).__name__}", path + [key])
    if math.isnan(value) or value < 0:
        raise ParseError(f"'{key}' must be a non-negative number, got {value!r}", path + [key])
    return value


def _float_field(raw: Mapping[str, Any], key: str, path: list[PathElement]) -> Optional[float]:
    value = _number(raw, key, path)
    return None if value is None else float(value)


def _int_field(raw: Mapping[str, Any], key: str, path: list[PathElement]) -> Optional[int]:
    value = _number(raw, key, path)
    if value is None:
        return None
    if isinstance(value, float):
        if math.isinf(value):
            raise ParseError(f"'{key}' must be finite", path + [key])
        # Newer PostgreSQL reports per-loop averages as fractional rows
        return int(round(value))
    return value


def normalize_plan(raw: RawPlan) -> PlanTree:
    """Normalize canonical raw plan output with the default keys."""
    return PlanNormalizer().normalize(raw)
