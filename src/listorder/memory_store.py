"""In-process ``PositionStore`` backed by a dict."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from listorder.errors import RecordNotFoundError, raise_if_cancelled
from listorder.optional import NOTHING, Option, Some
from listorder.position_filters import (
    FilterExpression,
    OrderBy,
    combine_filters,
    evaluate_filter,
    sort_records,
)
from listorder.store import PositionRecord

log = logging.getLogger(__name__)


class InMemoryPositionStore:
    """Dict-backed store. Batch updates are applied copy-then-swap."""

    def __init__(self, records: Iterable[PositionRecord] = ()) -> None:
        self._records: dict[str, PositionRecord] = {}
        self.add_records(records)

    def add_records(self, records: Iterable[PositionRecord]) -> None:
        for record in records:
            self._records[record.id] = record

    def delete(self, record_id: str) -> None:
        if self._records.pop(record_id, None) is None:
            raise RecordNotFoundError(record_id)

    def get(self, record_id: str) -> PositionRecord:
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    def __len__(self) -> int:
        return len(self._records)

    def _select(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None,
        order_by: OrderBy | None,
    ) -> list[PositionRecord]:
        expr = combine_filters(partition, where)
        rows = [r for r in self._records.values() if evaluate_filter(expr, r)]
        return sort_records(rows, order_by)

    async def query_one(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Option[PositionRecord]:
        rows = self._select(partition, where, order_by)
        return Some(rows[0]) if rows else NOTHING

    async def query_all(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Iterator[PositionRecord]:
        return iter(self._select(partition, where, order_by))

    async def update_by_id(
        self, record_id: str, changes: Mapping[str, Any]
    ) -> PositionRecord:
        updated = self.get(record_id).with_changes(changes)
        self._records[record_id] = updated
        return updated

    async def update_positions(
        self,
        updates: Sequence[tuple[str, float]],
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[PositionRecord]:
        staged = dict(self._records)
        applied: list[PositionRecord] = []
        for record_id, position in updates:
            raise_if_cancelled(cancel, "Position batch")
            current = staged.get(record_id)
            if current is None:
                raise RecordNotFoundError(record_id)
            updated = current.with_changes({"position": position})
            staged[record_id] = updated
            applied.append(updated)
        self._records = staged
        log.debug("Applied %d position updates", len(applied))
        return applied
