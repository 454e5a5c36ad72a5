"""Store capability consumed by the ordering core.

A store holds ``PositionRecord`` rows and answers partition-scoped queries
expressed as typed filters (``listorder.position_filters``). Two bindings ship
with the package: ``InMemoryPositionStore`` and ``DuckDBPositionStore``.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from listorder.optional import Option
from listorder.position_filters import FilterExpression, OrderBy

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

UPDATABLE_FIELDS: frozenset[str] = frozenset({"position", "partition_key", "attributes"})


@dataclass(frozen=True, slots=True)
class PositionRecord:
    """One member of an ordered collection."""

    id: str
    position: float | None
    partition_key: str = ""
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def with_changes(self, changes: Mapping[str, Any]) -> PositionRecord:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        return replace(self, **dict(changes))


@runtime_checkable
class RecordAdapter(Protocol[T_co]):
    """Converts a store record into a caller's domain object."""

    def from_record(self, record: PositionRecord) -> T_co: ...


class IdentityAdapter:
    """Returns records unchanged."""

    def from_record(self, record: PositionRecord) -> PositionRecord:
        return record


class FunctionAdapter(Generic[T]):
    """Wraps a plain ``record -> domain`` function as a ``RecordAdapter``."""

    def __init__(self, fn: Callable[[PositionRecord], T]) -> None:
        self._fn = fn

    def from_record(self, record: PositionRecord) -> T:
        return self._fn(record)


IDENTITY = IdentityAdapter()


class PositionStore(Protocol):
    """Minimal async capability the resolver, reformer and lookups rely on."""

    async def query_one(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Option[PositionRecord]: ...

    async def query_all(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Iterator[PositionRecord]: ...

    async def update_by_id(
        self, record_id: str, changes: Mapping[str, Any]
    ) -> PositionRecord: ...

    async def update_positions(
        self,
        updates: Sequence[tuple[str, float]],
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[PositionRecord]:
        """Apply every ``(id, position)`` pair or none of them."""
        ...
