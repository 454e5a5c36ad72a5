"""Partition reformation (full renumbering).

Repeated midpoint inserts shrink the gaps between neighbors. Once a new
position lands closer than ``threshold`` to its predecessor, the whole
partition is renumbered to ``increment, 2 * increment, ...`` in its current
order. The renumbering is applied as one atomic batch through
``PositionStore.update_positions``: either every record moves or none does,
so a failed or cancelled pass can simply be run again.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from listorder.errors import raise_if_cancelled
from listorder.ordering import compare_with_id, sort
from listorder.position_filters import POSITION_ASC, FilterExpression
from listorder.store import IDENTITY, PositionRecord, PositionStore, RecordAdapter

log = logging.getLogger(__name__)

DEFAULT_REFORMATION_THRESHOLD = 1 / 1024
DEFAULT_POSITION_INCREMENT = 1024.0

UpdateCallback = Callable[[Any], Any]
ReformedCallback = Callable[[], Any]


@dataclass(frozen=True, slots=True)
class ReformationResult:
    """Outcome of ``reform_if_needed`` / ``reform_partition``."""

    triggered: bool
    scanned: int = 0
    updated: tuple[PositionRecord, ...] = field(default_factory=tuple)


NOT_TRIGGERED = ReformationResult(triggered=False)


def trigger_reformation(
    previous_position: float,
    position: float,
    threshold: float = DEFAULT_REFORMATION_THRESHOLD,
) -> bool:
    """True when the two positions sit closer together than *threshold*."""
    return abs(position - previous_position) < threshold


def reformat_positions(
    records: Iterable[PositionRecord],
    increment: float = DEFAULT_POSITION_INCREMENT,
) -> list[tuple[str, float]]:
    """Evenly spaced ``(id, position)`` pairs preserving the current order.

    Equal positions are ordered by id so repeated passes agree.
    """
    if increment <= 0:
        raise ValueError(f"increment must be positive, got {increment}")
    ordered = sort(list(records), compare_with_id)
    return [(r.id, (i + 1) * increment) for i, r in enumerate(ordered)]


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def reform_partition(
    store: PositionStore,
    partition: FilterExpression | None,
    *,
    increment: float = DEFAULT_POSITION_INCREMENT,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
    on_update: UpdateCallback | None = None,
    on_reformed: ReformedCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> ReformationResult:
    """Renumber every record in *partition* unconditionally."""
    raise_if_cancelled(cancel, "Reformation")
    records = list(await store.query_all(partition, where, POSITION_ASC))
    current = {r.id: r.position for r in records}
    changes = [
        (record_id, position)
        for record_id, position in reformat_positions(records, increment)
        if current[record_id] != position
    ]

    updated: list[PositionRecord] = []
    if changes:
        updated = await store.update_positions(changes, cancel=cancel)
    log.info(
        "Reformed partition: %d records scanned, %d repositioned",
        len(records), len(updated),
    )

    if on_update is not None:
        for record in updated:
            await _call(on_update, adapter.from_record(record))
    if on_reformed is not None:
        await _call(on_reformed)
    return ReformationResult(triggered=True, scanned=len(records), updated=tuple(updated))


async def reform_if_needed(
    store: PositionStore,
    partition: FilterExpression | None,
    previous_position: float,
    new_position: float,
    *,
    threshold: float = DEFAULT_REFORMATION_THRESHOLD,
    increment: float = DEFAULT_POSITION_INCREMENT,
    where: FilterExpression | None = None,
    adapter: RecordAdapter[Any] = IDENTITY,
    on_update: UpdateCallback | None = None,
    on_reformed: ReformedCallback | None = None,
    cancel: asyncio.Event | None = None,
) -> ReformationResult:
    """Reform *partition* when *new_position* is too close to *previous_position*."""
    if not trigger_reformation(previous_position, new_position, threshold):
        return NOT_TRIGGERED
    log.debug(
        "Gap %r -> %r is below %r; reforming",
        previous_position, new_position, threshold,
    )
    return await reform_partition(
        store,
        partition,
        increment=increment,
        where=where,
        adapter=adapter,
        on_update=on_update,
        on_reformed=on_reformed,
        cancel=cancel,
    )
