"""Place and move records within a partition.

``PositionManager`` runs the full placement flow for one record:

1. compute a desired position (explicit, or from neighbor lookups),
2. resolve it against collisions,
3. write it with ``update_by_id``,
4. reform the partition if the new gap to the predecessor is too small.

When resolution runs out of attempts the partition is reformed and the
desired position recomputed once before giving up. All of this happens under
a per-partition ``asyncio.Lock``, so two placements in the same partition can
never both claim the same free position.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from listorder.errors import ExhaustedRetries, RecordNotFoundError
from listorder.io_utils import dumps
from listorder.neighbors import find_first, find_last, find_next, find_previous
from listorder.position_filters import (
    FieldMatch,
    FilterExpression,
    combine_filters,
    filter_expr_to_json,
)
from listorder.reformer import (
    ReformedCallback,
    UpdateCallback,
    reform_if_needed,
    reform_partition,
)
from listorder.resolver import calculate_new_position_min_collision, resolve_position
from listorder.settings import ReorderSettings
from listorder.store import IDENTITY, PositionRecord, PositionStore, RecordAdapter

log = logging.getLogger(__name__)


def partition_key(partition: FilterExpression | None) -> str:
    """Stable string identity for a partition filter."""
    if partition is None:
        return "*"
    return dumps(filter_expr_to_json(partition))


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class PartitionLocks:
    """One ``asyncio.Lock`` per partition filter, held only while in use.

    An entry is dropped as soon as its last holder or waiter leaves, so the
    table never grows past the number of partitions with placements in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, partition: FilterExpression | None) -> AsyncIterator[None]:
        key = partition_key(partition)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, partition: FilterExpression | None) -> bool:
        return partition_key(partition) in self._locks


def _excluding(record_id: str) -> FieldMatch:
    return FieldMatch("id", record_id, negate=True)


class PositionManager:
    """Serialized place/move operations over a ``PositionStore``."""

    def __init__(
        self,
        store: PositionStore,
        settings: ReorderSettings | None = None,
        *,
        locks: PartitionLocks | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or ReorderSettings()
        self._locks = locks if locks is not None else PartitionLocks()

    @property
    def settings(self) -> ReorderSettings:
        return self._settings

    async def _require(
        self, partition: FilterExpression | None, record_id: str
    ) -> PositionRecord:
        found = await self._store.query_one(partition, FieldMatch("id", record_id))
        if not found.has_value:
            raise RecordNotFoundError(record_id)
        return found.value_or_fail()

    # ─── Desired-position helpers ─────────────────────────────────

    async def append_position(
        self,
        partition: FilterExpression | None,
        *,
        where: FilterExpression | None = None,
    ) -> float:
        """Position one increment past the current last record."""
        increment = self._settings.position_increment
        last = await find_last(self._store, partition, where=where)
        return last.map(lambda r: (r.position or 0) + increment).value_or(increment)

    async def _position_before(
        self, partition: FilterExpression | None, record_id: str, target_id: str
    ) -> float:
        target = await self._require(partition, target_id)
        upper = target.position or 0
        previous = await find_previous(
            self._store, partition, upper, where=_excluding(record_id)
        )
        default_lower = 0.0 if upper > 0 else upper - self._settings.position_increment
        lower = previous.map(lambda r: r.position).value_or(default_lower)
        return calculate_new_position_min_collision(lower, upper)

    async def _position_after(
        self, partition: FilterExpression | None, record_id: str, target_id: str
    ) -> float:
        target = await self._require(partition, target_id)
        lower = target.position or 0
        following = await find_next(
            self._store, partition, lower, where=_excluding(record_id)
        )
        return following.map(
            lambda r: calculate_new_position_min_collision(lower, r.position)
        ).value_or(lower + self._settings.position_increment)

    async def _position_first(
        self, partition: FilterExpression | None, record_id: str
    ) -> float:
        increment = self._settings.position_increment
        first = await find_first(self._store, partition, where=_excluding(record_id))
        if not first.has_value:
            return increment
        upper = first.value_or_fail().position or 0
        if upper > 0:
            return calculate_new_position_min_collision(0.0, upper)
        return upper - increment

    # ─── Placement ────────────────────────────────────────────────

    async def place(
        self,
        record_id: str,
        desired_position: float,
        partition: FilterExpression | None,
        *,
        adapter: RecordAdapter[Any] = IDENTITY,
        on_update: UpdateCallback | None = None,
        on_reformed: ReformedCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PositionRecord:
        """Move *record_id* as close to *desired_position* as collisions allow."""

        async def _desired() -> float:
            return desired_position

        return await self._place(
            record_id, _desired, partition,
            adapter=adapter, on_update=on_update, on_reformed=on_reformed, cancel=cancel,
        )

    async def move_before(
        self,
        record_id: str,
        target_id: str,
        partition: FilterExpression | None,
        **kwargs: Any,
    ) -> PositionRecord:
        return await self._place(
            record_id,
            lambda: self._position_before(partition, record_id, target_id),
            partition,
            **kwargs,
        )

    async def move_after(
        self,
        record_id: str,
        target_id: str,
        partition: FilterExpression | None,
        **kwargs: Any,
    ) -> PositionRecord:
        return await self._place(
            record_id,
            lambda: self._position_after(partition, record_id, target_id),
            partition,
            **kwargs,
        )

    async def move_to_first(
        self,
        record_id: str,
        partition: FilterExpression | None,
        **kwargs: Any,
    ) -> PositionRecord:
        return await self._place(
            record_id,
            lambda: self._position_first(partition, record_id),
            partition,
            **kwargs,
        )

    async def move_to_last(
        self,
        record_id: str,
        partition: FilterExpression | None,
        **kwargs: Any,
    ) -> PositionRecord:
        return await self._place(
            record_id,
            lambda: self.append_position(partition, where=_excluding(record_id)),
            partition,
            **kwargs,
        )

    async def _place(
        self,
        record_id: str,
        desired: Callable[[], Awaitable[float]],
        partition: FilterExpression | None,
        *,
        adapter: RecordAdapter[Any] = IDENTITY,
        on_update: UpdateCallback | None = None,
        on_reformed: ReformedCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> PositionRecord:
        settings = self._settings
        async with self._locks.hold(partition):
            await self._require(partition, record_id)
            others = combine_filters(partition, _excluding(record_id))
            try:
                final = await resolve_position(
                    self._store, others, await desired(),
                    attempts_left=settings.max_attempts, cancel=cancel,
                )
            except ExhaustedRetries as exc:
                log.info(
                    "Reforming partition %s after %d failed attempts",
                    partition_key(partition), exc.attempts,
                )
                await reform_partition(
                    self._store, partition,
                    increment=settings.position_increment,
                    adapter=adapter, on_update=on_update, on_reformed=on_reformed,
                    cancel=cancel,
                )
                final = await resolve_position(
                    self._store, others, await desired(),
                    attempts_left=settings.max_attempts, cancel=cancel,
                )

            placed = await self._store.update_by_id(record_id, {"position": final})
            if on_update is not None:
                result = on_update(adapter.from_record(placed))
                if inspect.isawaitable(result):
                    await result

            previous = await find_previous(self._store, others, final)
            previous_position = previous.map(lambda r: r.position).value_or(0.0)
            reformed = await reform_if_needed(
                self._store, partition, previous_position, final,
                threshold=settings.reformation_threshold,
                increment=settings.position_increment,
                adapter=adapter, on_update=on_update, on_reformed=on_reformed,
                cancel=cancel,
            )
            for record in reformed.updated:
                if record.id == record_id:
                    return record
            return placed
