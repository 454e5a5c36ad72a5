"""Boundary and adjacency lookups within a partition.

These are the primitives callers use to compute "insert before X" /
"insert after Y" positions. Each returns ``Some(item)`` or ``NOTHING``;
a missing neighbor is never an error.
"""
from __future__ import annotations

from typing import Any

from listorder.optional import Option
from listorder.position_filters import (
    POSITION_ASC,
    POSITION_DESC,
    FilterExpression,
    OrderBy,
    PositionCompare,
    combine_filters,
)
from listorder.store import IDENTITY, PositionStore, RecordAdapter


async def find_element(
    store: PositionStore,
    partition: FilterExpression | None,
    position_where: FilterExpression,
    *,
    order_by: OrderBy | None = None,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
) -> Option[Any]:
    """First record matching *position_where* (and *where*), mapped through *adapter*."""
    found = await store.query_one(
        partition,
        combine_filters(where, position_where),
        order_by,
    )
    return found.map(adapter.from_record)


async def find_next(
    store: PositionStore,
    partition: FilterExpression | None,
    position: float,
    *,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
) -> Option[Any]:
    return await find_element(
        store,
        partition,
        PositionCompare(">", position),
        order_by=POSITION_ASC,
        where=where,
        adapter=adapter,
    )


async def find_previous(
    store: PositionStore,
    partition: FilterExpression | None,
    position: float,
    *,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
) -> Option[Any]:
    return await find_element(
        store,
        partition,
        PositionCompare("<", position),
        order_by=POSITION_DESC,
        where=where,
        adapter=adapter,
    )


async def find_first(
    store: PositionStore,
    partition: FilterExpression | None,
    *,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
) -> Option[Any]:
    """Record with the lowest position. Records without one sort after all others."""
    found = await store.query_one(partition, where, POSITION_ASC)
    return found.map(adapter.from_record)


async def find_last(
    store: PositionStore,
    partition: FilterExpression | None,
    *,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
) -> Option[Any]:
    found = await store.query_one(partition, where, POSITION_DESC)
    return found.map(adapter.from_record)
