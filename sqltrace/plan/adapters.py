"""Per-engine EXPLAIN adapters.

Each adapter converts engine-native EXPLAIN output into the canonical raw
nested form PlanNormalizer expects: a list of root mappings keyed by
``"Node Type"``, ``"Relation Name"``, ``"Total Cost"``, ``"Actual Rows"``
and so on, with child plans under ``"Plans"``. Keys an adapter does not
translate are carried through unchanged.

Supported formats:
- PostgreSQL: EXPLAIN (ANALYZE, FORMAT JSON)
- MySQL: EXPLAIN FORMAT=JSON (estimates only)
- SQLite: EXPLAIN QUERY PLAN rows (no costs)
- DuckDB: EXPLAIN (ANALYZE, FORMAT JSON)
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterable, Optional

from ..errors import ParseError, PathElement

CanonicalPlan = list[dict[str, Any]]
Adapter = Callable[[Any], CanonicalPlan]


def _decode_json(raw: Any, engine: str) -> Any:
    """Decode JSON text; pass parsed structures through."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid {engine} EXPLAIN JSON: {e.msg}") from e
    return raw


def _to_float(value: Any, path: list[PathElement]) -> Optional[float]:
    """MySQL reports costs as strings ("123.45")."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ParseError(f"Expected a number, got {value!r}", path)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Expected a number, got {value!r}", path) from e


# =============================================================================
# PostgreSQL
# =============================================================================

def adapt_postgres(raw: Any) -> CanonicalPlan:
    """PostgreSQL JSON plans already use the canonical keys.

    Accepts ``[{"Plan": ...}]``, a single ``{"Plan": ...}`` object or a bare
    plan node. Top-level "Planning Time"/"Execution Time" are copied onto
    the root node.
    """
    raw = _decode_json(raw, "PostgreSQL")
    entries = raw if isinstance(raw, list) else [raw]

    roots: CanonicalPlan = []
    for pos, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ParseError(
                f"PostgreSQL plan entry must be an object, got {type(entry).__name__}",
                [pos] if isinstance(raw, list) else [],
            )
        if "Plan" not in entry:
            roots.append(entry)
            continue

        plan = entry["Plan"]
        if not isinstance(plan, dict):
            path: list[PathElement] = [pos, "Plan"] if isinstance(raw, list) else ["Plan"]
            raise ParseError("PostgreSQL 'Plan' must be an object", path)
        root = dict(plan)
        for key in ("Planning Time", "Execution Time"):
            if key in entry and key not in root:
                root[key] = entry[key]
        roots.append(root)
    return roots


# =============================================================================
# MySQL
# =============================================================================

# Operation wrappers inside a query_block, in nesting order
MYSQL_OPERATIONS: dict[str, str] = {
    "ordering_operation": "Sort",
    "grouping_operation": "Aggregate",
    "duplicates_removal": "Unique",
    "windowing": "WindowAgg",
}

MYSQL_ACCESS_TYPES: dict[str, str] = {
    "ALL": "Table Scan",
    "index": "Full Index Scan",
}


def adapt_mysql(raw: Any) -> CanonicalPlan:
    """Convert MySQL ``EXPLAIN FORMAT=JSON`` into canonical nodes."""
    raw = _decode_json(raw, "MySQL")
    if isinstance(raw, list):
        # Some clients return one row with the JSON document
        if len(raw) != 1:
            raise ParseError("MySQL EXPLAIN must contain exactly one document", [])
        return adapt_mysql(raw[0])
    if not isinstance(raw, dict) or "query_block" not in raw:
        raise ParseError("MySQL EXPLAIN JSON has no 'query_block'", ["query_block"])

    block = raw["query_block"]
    root = _mysql_query_block(block, ["query_block"])
    return [root]


def _mysql_query_block(block: Any, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(block, dict):
        raise ParseError("MySQL query_block must be an object", path)

    node = _mysql_block(block, path)
    query_cost = _to_float(
        (block.get("cost_info") or {}).get("query_cost"), path + ["cost_info", "query_cost"]
    )
    if query_cost is not None and "Total Cost" not in node:
        node["Total Cost"] = query_cost
    if "select_id" in block:
        node.setdefault("Select Id", block["select_id"])
    return node


def _mysql_block(block: dict[str, Any], path: list[PathElement]) -> dict[str, Any]:
    for key, node_type in MYSQL_OPERATIONS.items():
        if key in block:
            return _mysql_operation(block[key], node_type, path + [key])

    if "nested_loop" in block:
        return _mysql_nested_loop(block["nested_loop"], path + ["nested_loop"])
    if "table" in block:
        return _mysql_table(block["table"], path + ["table"])
    if "union_result" in block:
        return _mysql_union(block["union_result"], path + ["union_result"])
    if "message" in block:
        # e.g. "No tables used", "Impossible WHERE"
        return {"Node Type": "Result", "Message": block["message"]}

    raise ParseError("Unrecognized MySQL plan block", path)


def _mysql_operation(op: Any, node_type: str, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(op, dict):
        raise ParseError(f"MySQL {node_type} block must be an object", path)

    child = _mysql_block(op, path)
    node: dict[str, Any] = {"Node Type": node_type, "Plans": [child]}

    child_cost = child.get("Total Cost")
    own_cost = None
    for key, value in (op.get("cost_info") or {}).items():
        if key.endswith("_cost"):
            own_cost = _to_float(value, path + ["cost_info", key])
    if child_cost is not None:
        node["Startup Cost"] = child_cost
        node["Total Cost"] = child_cost + (own_cost or 0.0)

    for key, value in op.items():
        if key in ("cost_info", "table", "nested_loop", "union_result") or key in MYSQL_OPERATIONS:
            continue
        node[_mysql_label(key)] = value
    return node


def _mysql_nested_loop(entries: Any, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(entries, list):
        raise ParseError("MySQL nested_loop must be a list", path)

    children = []
    for pos, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ParseError("MySQL nested_loop entry must be an object", path + [pos])
        children.append(_mysql_block(entry, path + [pos]))

    node: dict[str, Any] = {"Node Type": "Nested Loop", "Plans": children}
    # prefix_cost of the last table is the cumulative cost of the join
    if children and children[-1].get("Total Cost") is not None:
        node["Total Cost"] = children[-1]["Total Cost"]
    return node


def _mysql_table(table: Any, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(table, dict):
        raise ParseError("MySQL table block must be an object", path)

    access_type = table.get("access_type")
    node: dict[str, Any] = {
        "Node Type": MYSQL_ACCESS_TYPES.get(access_type, "Index Lookup"),
        "Access Type": access_type,
    }
    if "table_name" in table:
        node["Relation Name"] = table["table_name"]

    cost_info = table.get("cost_info") or {}
    prefix_cost = _to_float(cost_info.get("prefix_cost"), path + ["cost_info", "prefix_cost"])
    read_cost = _to_float(cost_info.get("read_cost"), path + ["cost_info", "read_cost"])
    if prefix_cost is not None:
        node["Total Cost"] = prefix_cost
        if read_cost is not None:
            node["Startup Cost"] = max(0.0, prefix_cost - read_cost)

    if table.get("rows_examined_per_scan") is not None:
        node["Plan Rows"] = table["rows_examined_per_scan"]
    if table.get("attached_condition") is not None:
        node["Filter"] = table["attached_condition"]
    if table.get("key") is not None:
        node["Index Name"] = table["key"]
        ref = table.get("ref")
        if ref:
            ref_text = ", ".join(str(r) for r in ref) if isinstance(ref, list) else str(ref)
            node["Index Cond"] = f"{table['key']} = ({ref_text})"

    skip = {"table_name", "access_type", "cost_info", "rows_examined_per_scan",
            "attached_condition", "key", "ref"}
    for key, value in table.items():
        if key not in skip:
            node[_mysql_label(key)] = value

    subquery = table.get("materialized_from_subquery")
    if isinstance(subquery, dict) and "query_block" in subquery:
        node.pop(_mysql_label("materialized_from_subquery"), None)
        node["Plans"] = [
            _mysql_query_block(
                subquery["query_block"], path + ["materialized_from_subquery", "query_block"]
            )
        ]
    return node


def _mysql_union(union: Any, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(union, dict):
        raise ParseError("MySQL union_result must be an object", path)

    specs = union.get("query_specifications") or []
    children = []
    for pos, spec in enumerate(specs):
        spec_path = path + ["query_specifications", pos]
        if not isinstance(spec, dict) or "query_block" not in spec:
            raise ParseError("MySQL union member has no query_block", spec_path)
        children.append(_mysql_query_block(spec["query_block"], spec_path + ["query_block"]))

    node: dict[str, Any] = {"Node Type": "Union", "Plans": children}
    if "table_name" in union:
        node["Relation Name"] = union["table_name"]
    return node


def _mysql_label(key: str) -> str:
    """using_filesort -> Using Filesort"""
    return " ".join(part.capitalize() for part in key.split("_"))


# =============================================================================
# SQLite
# =============================================================================

SQLITE_TEMP_BTREE: dict[str, str] = {
    "ORDER BY": "Sort",
    "GROUP BY": "Aggregate",
    "DISTINCT": "Unique",
}

_SQLITE_ACCESS = re.compile(
    r"^(?P<verb>SCAN|SEARCH)\s+(?:TABLE\s+)?(?P<table>\S+)"
    r"(?:\s+AS\s+(?P<alias>\S+))?"
    r"(?:\s+USING\s+(?P<using>.*))?$"
)
_SQLITE_INDEX = re.compile(
    r"^(?:COVERING\s+)?INDEX\s+(?P<index>\S+)(?:\s+\((?P<cond>.*)\))?$"
    r"|^INTEGER PRIMARY KEY(?:\s+\((?P<pk_cond>.*)\))?$"
)


def adapt_sqlite(raw: Any) -> CanonicalPlan:
    """Rebuild the tree from ``EXPLAIN QUERY PLAN`` rows.

    Rows are ``(id, parent, notused, detail)`` tuples (or mappings with
    those keys). A parent id of 0 marks a root.
    """
    if not isinstance(raw, (list, tuple)):
        raise ParseError(
            f"SQLite EXPLAIN QUERY PLAN must be a list of rows, got {type(raw).__name__}", []
        )

    by_id: dict[int, dict[str, Any]] = {}
    roots: CanonicalPlan = []
    for pos, row in enumerate(raw):
        node_id, parent_id, detail = _sqlite_row(row, [pos])
        node = _sqlite_node(detail)
        node["Node Id"] = node_id

        if parent_id == 0:
            roots.append(node)
        elif parent_id in by_id:
            by_id[parent_id].setdefault("Plans", []).append(node)
        else:
            raise ParseError(f"SQLite plan row references unknown parent {parent_id}", [pos])
        by_id[node_id] = node
    return roots


def _sqlite_row(row: Any, path: list[PathElement]) -> tuple[int, int, str]:
    if isinstance(row, dict):
        try:
            values = (row["id"], row["parent"], row["detail"])
        except KeyError as e:
            raise ParseError(f"SQLite plan row is missing {e.args[0]!r}", path) from e
    elif isinstance(row, (list, tuple)) and len(row) == 4:
        values = (row[0], row[1], row[3])
    else:
        raise ParseError("SQLite plan row must be (id, parent, notused, detail)", path)

    node_id, parent_id, detail = values
    if not isinstance(node_id, int) or not isinstance(parent_id, int):
        raise ParseError("SQLite plan row ids must be integers", path)
    if not isinstance(detail, str):
        raise ParseError("SQLite plan row detail must be a string", path)
    return node_id, parent_id, detail


def _sqlite_node(detail: str) -> dict[str, Any]:
    text = detail.strip()
    node: dict[str, Any] = {"Detail": text}

    if text.startswith("USE TEMP B-TREE FOR "):
        purpose = text[len("USE TEMP B-TREE FOR "):]
        for key, node_type in SQLITE_TEMP_BTREE.items():
            if purpose.endswith(key):
                node["Node Type"] = node_type
                return node

    match = _SQLITE_ACCESS.match(text)
    if not match:
        node["Node Type"] = text
        return node

    node["Node Type"] = match.group("verb")
    node["Relation Name"] = match.group("table")
    if match.group("alias"):
        node["Alias"] = match.group("alias")

    using = match.group("using")
    if using:
        index = _SQLITE_INDEX.match(using)
        if index and index.group("index"):
            node["Index Name"] = index.group("index")
            if index.group("cond"):
                node["Index Cond"] = index.group("cond")
        elif index:
            node["Index Name"] = "INTEGER PRIMARY KEY"
            if index.group("pk_cond"):
                node["Index Cond"] = index.group("pk_cond")
        else:
            node["Using"] = using
    return node


# =============================================================================
# DuckDB
# =============================================================================

DUCKDB_TYPE_KEYS = ("operator_name", "operator_type", "name")
DUCKDB_TIMING_KEYS = ("operator_timing", "timing")
DUCKDB_ROW_KEYS = ("operator_cardinality", "cardinality")


def adapt_duckdb(raw: Any) -> CanonicalPlan:
    """Convert DuckDB JSON profiling output into canonical nodes.

    The analyzed plan is wrapped in a query-level object (latency,
    rows_returned, ...) that carries no operator name; its children are the
    plan roots.
    """
    raw = _decode_json(raw, "DuckDB")
    if isinstance(raw, list):
        entries, path = raw, []
    elif isinstance(raw, dict) and not _duckdb_type(raw):
        entries, path = raw.get("children", []), ["children"]
    else:
        entries, path = [raw], []

    if not isinstance(entries, list):
        raise ParseError("DuckDB 'children' must be a list", path)
    return [_duckdb_node(e, path + [pos]) for pos, e in enumerate(entries)]


def _duckdb_type(node: dict[str, Any]) -> Optional[str]:
    for key in DUCKDB_TYPE_KEYS:
        value = node.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first(node: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if node.get(key) is not None:
            return node[key]
    return None


def _duckdb_node(node: Any, path: list[PathElement]) -> dict[str, Any]:
    if not isinstance(node, dict):
        raise ParseError("DuckDB plan node must be an object", path)

    node_type = _duckdb_type(node)
    if node_type is None:
        raise ParseError("DuckDB plan node has no operator name", path + ["operator_name"])

    out: dict[str, Any] = {"Node Type": node_type}

    timing = _first(node, DUCKDB_TIMING_KEYS)
    if timing is not None:
        out["Actual Total Time"] = _to_float(timing, path + ["operator_timing"]) * 1000.0
    rows = _first(node, DUCKDB_ROW_KEYS)
    if rows is not None:
        out["Actual Rows"] = rows

    extra_info = node.get("extra_info") or {}
    if isinstance(extra_info, dict):
        for key, value in extra_info.items():
            if key == "Table" and isinstance(value, str):
                out["Relation Name"] = value
            elif key == "Filters":
                out["Filter"] = " AND ".join(value) if isinstance(value, list) else value
            elif key == "Estimated Cardinality":
                try:
                    out["Plan Rows"] = int(value)
                except (TypeError, ValueError):
                    out[key] = value
            else:
                out[key] = value
    elif isinstance(extra_info, str) and extra_info:
        out["Extra Info"] = extra_info

    skip = set(DUCKDB_TYPE_KEYS) | set(DUCKDB_TIMING_KEYS) | set(DUCKDB_ROW_KEYS)
    skip |= {"extra_info", "children"}
    for key, value in node.items():
        if key not in skip:
            out[key] = value

    children = node.get("children") or []
    if not isinstance(children, list):
        raise ParseError("DuckDB 'children' must be a list", path + ["children"])
    if children:
        out["Plans"] = [
            _duckdb_node(child, path + ["children", pos]) for pos, child in enumerate(children)
        ]
    return out


# =============================================================================
# Registry
# =============================================================================

_ADAPTER_REGISTRY: dict[str, Adapter] = {
    "postgres": adapt_postgres,
    "postgresql": adapt_postgres,
    "pg": adapt_postgres,
    "mysql": adapt_mysql,
    "mariadb": adapt_mysql,
    "sqlite": adapt_sqlite,
    "sqlite3": adapt_sqlite,
    "duckdb": adapt_duckdb,
}


def supported_engines() -> list[str]:
    return sorted(_ADAPTER_REGISTRY)


def adapt_plan(engine: str, raw: Any) -> CanonicalPlan:
    """Convert engine-native EXPLAIN output into the canonical nested form.

    Raises:
        ValueError: Unknown engine.
        ParseError: Malformed EXPLAIN output.
    """
    adapter = _ADAPTER_REGISTRY.get(engine.lower())
    if adapter is None:
        raise ValueError(
            f"Unsupported engine: {engine}. Supported: {', '.join(supported_engines())}"
        )
    return adapter(raw)
