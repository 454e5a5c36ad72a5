"""In-memory ordering of positioned records.

``compare`` treats a missing position as ``0``, so unpositioned records sort
ahead of anything with a positive position. Records with equal positions end
up in whatever order the stable sort leaves them; that order is not part of
the contract. Pass ``compare_with_id`` (or another comparator with a
secondary key) when a total order is needed.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from functools import cmp_to_key
from typing import Any, TypeVar

T = TypeVar("T")

Comparator = Callable[[Any, Any], float]


def position_of(item: Any) -> float:
    """Position of a record, attribute-bearing object or mapping (``None`` -> 0)."""
    if isinstance(item, Mapping):
        value = item.get("position")
    else:
        value = getattr(item, "position", None)
    return 0 if value is None else value


def compare(a: Any, b: Any) -> float:
    return position_of(a) - position_of(b)


def compare_with_id(a: Any, b: Any) -> float:
    """``compare`` with the record id as a tie-breaker."""
    diff = compare(a, b)
    if diff:
        return diff
    a_id = a.get("id") if isinstance(a, Mapping) else getattr(a, "id", None)
    b_id = b.get("id") if isinstance(b, Mapping) else getattr(b, "id", None)
    a_key, b_key = str(a_id or ""), str(b_id or "")
    return (a_key > b_key) - (a_key < b_key)


def sort(items: list[T], comparison: Comparator | None = None) -> list[T]:
    """Sort *items* in place by position and return the same list."""
    items.sort(key=cmp_to_key(comparison or compare))
    return items
