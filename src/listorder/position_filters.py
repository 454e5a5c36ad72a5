"""Typed predicate system for partition filters and position lookups.

Store bindings translate these objects into their own query form, so the
ordering core never builds query strings itself.

Three node types:

* **FieldMatch** (leaf) — equality on a record field, optionally negated.
* **PositionCompare** (leaf) — ``<``, ``<=``, ``=``, ``>=``, ``>`` or ``!=``
  against the ``position`` field.
* **FilterGroup** (compound) — AND/OR of children.

Functions:

* ``build_filter_sql`` / ``build_order_sql`` — parameterised SQL for DuckDB.
* ``evaluate_filter`` / ``sort_records`` — the same semantics over in-memory records.
* ``filter_expr_to_json`` — JSON form, used as a stable partition identity.
* ``combine_filters`` — AND together optional partition and lookup filters.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from listorder.io_utils import dumps

# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class FieldMatch:
    """Leaf: equality against ``id``, ``partition_key`` or ``attributes.<name>``."""

    field: str
    value: Any
    negate: bool = False


@dataclass(frozen=True, slots=True)
class PositionCompare:
    """Leaf: compare the record position against a number."""

    operator: str  # "<" | "<=" | "=" | ">=" | ">" | "!="
    value: float


@dataclass(frozen=True, slots=True)
class FilterGroup:
    """Compound: AND/OR of children."""

    operator: str  # "and" | "or"
    children: tuple[FilterExpression, ...]


FilterExpression = FieldMatch | PositionCompare | FilterGroup


@dataclass(frozen=True, slots=True)
class OrderBy:
    """Sort specification. ``nulls`` is ``"first"``, ``"last"`` or ``None`` (last)."""

    field: str = "position"
    direction: str = "asc"
    nulls: str | None = None


POSITION_ASC = OrderBy("position", "asc")
POSITION_DESC = OrderBy("position", "desc")


_COMPARE_OPS: frozenset[str] = frozenset({"<", "<=", "=", ">=", ">", "!="})
_GROUP_OPS: frozenset[str] = frozenset({"and", "or"})
_PLAIN_FIELDS: frozenset[str] = frozenset({"id", "partition_key"})
_ORDER_FIELDS: frozenset[str] = frozenset({"id", "partition_key", "position"})
_ATTRIBUTE_RE = re.compile(r"^attributes\.([A-Za-z_][A-Za-z0-9_]*)$")


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------

def combine_filters(*exprs: FilterExpression | None) -> FilterExpression | None:
    """AND together the non-``None`` expressions; ``None`` if there are none."""
    present = tuple(e for e in exprs if e is not None)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return FilterGroup(operator="and", children=present)


# ---------------------------------------------------------------------------
# SQL generation
# ---------------------------------------------------------------------------

def field_column_sql(field: str) -> str:
    """Map a filter field name to a SQL column expression."""
    if field in _PLAIN_FIELDS:
        return field
    m = _ATTRIBUTE_RE.match(field)
    if m is None:
        raise ValueError(f"Unknown filter field: {field!r}")
    return f"json_extract_string(attributes, '$.{m.group(1)}')"


def attribute_text(value: Any) -> str | None:
    """Text form of an attribute value, as ``json_extract_string`` returns it.

    Strings come back unquoted, JSON ``null`` and missing keys as ``None``,
    everything else in its JSON rendering (``1`` and ``1.0`` stay distinct).
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return dumps(value)


def build_filter_sql(expr: FilterExpression) -> tuple[str, list[Any]]:
    """Compile *expr* into a parenthesised SQL fragment + parameter list.

    Returns
    -------
    tuple[str, list[Any]]
        ``(sql_fragment, params)`` where *params* are the positional ``?``
        bind values.
    """
    if isinstance(expr, FieldMatch):
        column = field_column_sql(expr.field)
        value = expr.value
        if expr.field.startswith("attributes."):
            value = attribute_text(value)
        op = "IS DISTINCT FROM" if expr.negate else "IS NOT DISTINCT FROM"
        return (f"{column} {op} ?", [value])
    if isinstance(expr, PositionCompare):
        if expr.operator not in _COMPARE_OPS:
            raise ValueError(f"Invalid position operator: {expr.operator!r}")
        return (f"position {expr.operator} ?", [float(expr.value)])
    # FilterGroup
    if expr.operator not in _GROUP_OPS:
        raise ValueError(f"Invalid filter group operator: {expr.operator!r}")
    if not expr.children:
        # Degenerate empty group — vacuously true
        return ("(1=1)", [])

    parts: list[str] = []
    params: list[Any] = []
    joiner = " AND " if expr.operator == "and" else " OR "
    for child in expr.children:
        child_sql, child_params = build_filter_sql(child)
        parts.append(child_sql)
        params.extend(child_params)
    return ("(" + joiner.join(parts) + ")", params)


def build_order_sql(order_by: OrderBy | None) -> str:
    """Compile an ORDER BY clause; ``id`` is appended as a tie-breaker."""
    if order_by is None:
        return "ORDER BY position ASC NULLS LAST, id ASC"
    if order_by.field not in _ORDER_FIELDS:
        raise ValueError(f"Unknown order field: {order_by.field!r}")
    direction = order_by.direction.lower()
    if direction not in ("asc", "desc"):
        raise ValueError(f"Invalid order direction: {order_by.direction!r}")
    nulls = (order_by.nulls or "last").lower()
    if nulls not in ("first", "last"):
        raise ValueError(f"Invalid nulls placement: {order_by.nulls!r}")
    clause = f"ORDER BY {order_by.field} {direction.upper()} NULLS {nulls.upper()}"
    if order_by.field != "id":
        clause += f", id {direction.upper()}"
    return clause


# ---------------------------------------------------------------------------
# In-memory evaluation
# ---------------------------------------------------------------------------

def record_field(record: Any, field: str) -> Any:
    """Read *field* from a record object (``attributes.x`` reads a mapping key)."""
    if field in _ORDER_FIELDS:
        return getattr(record, field)
    m = _ATTRIBUTE_RE.match(field)
    if m is None:
        raise ValueError(f"Unknown filter field: {field!r}")
    return record.attributes.get(m.group(1))


def _compare(left: float, operator: str, right: float) -> bool:
    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    if operator == "=":
        return left == right
    if operator == ">=":
        return left >= right
    if operator == ">":
        return left > right
    if operator == "!=":
        return left != right
    raise ValueError(f"Invalid position operator: {operator!r}")


def evaluate_filter(expr: FilterExpression | None, record: Any) -> bool:
    """Evaluate *expr* against *record* with the same semantics as the SQL form."""
    if expr is None:
        return True
    if isinstance(expr, FieldMatch):
        actual, expected = record_field(record, expr.field), expr.value
        if expr.field.startswith("attributes."):
            actual, expected = attribute_text(actual), attribute_text(expected)
        matched = actual == expected
        return not matched if expr.negate else matched
    if isinstance(expr, PositionCompare):
        if expr.operator not in _COMPARE_OPS:
            raise ValueError(f"Invalid position operator: {expr.operator!r}")
        # NULL comparisons are never true in SQL
        if record.position is None:
            return False
        return _compare(record.position, expr.operator, expr.value)
    if expr.operator not in _GROUP_OPS:
        raise ValueError(f"Invalid filter group operator: {expr.operator!r}")
    if not expr.children:
        return True
    if expr.operator == "and":
        return all(evaluate_filter(c, record) for c in expr.children)
    return any(evaluate_filter(c, record) for c in expr.children)


def sort_records(records: list[Any], order_by: OrderBy | None) -> list[Any]:
    """Sort records in place the way ``build_order_sql`` orders rows."""
    order = order_by or POSITION_ASC
    if order.field not in _ORDER_FIELDS:
        raise ValueError(f"Unknown order field: {order.field!r}")
    descending = order.direction.lower() == "desc"
    nulls_first = (order.nulls or "last").lower() == "first"

    # Two passes: id tie-breaker first, then the primary key (sort is stable).
    records.sort(key=lambda r: r.id, reverse=descending)
    present = [r for r in records if getattr(r, order.field) is not None]
    missing = [r for r in records if getattr(r, order.field) is None]
    present.sort(key=lambda r: getattr(r, order.field), reverse=descending)
    records[:] = missing + present if nulls_first else present + missing
    return records


# ---------------------------------------------------------------------------
# JSON serialization
# ---------------------------------------------------------------------------

def filter_expr_to_json(expr: FilterExpression) -> dict[str, Any]:
    """Serialize a FilterExpression AST to a JSON-compatible dict.

    Leaves::

        {"field": "partition_key", "value": "list-1"}
        {"field": "attributes.archived", "value": true, "negate": true}
        {"compare": "<", "value": 20.0}

    Group::

        {"op": "and", "children": [...]}
    """
    if isinstance(expr, FieldMatch):
        d: dict[str, Any] = {"field": expr.field, "value": expr.value}
        if expr.negate:
            d["negate"] = True
        return d
    if isinstance(expr, PositionCompare):
        return {"compare": expr.operator, "value": expr.value}
    return {
        "op": expr.operator,
        "children": [filter_expr_to_json(c) for c in expr.children],
    }
