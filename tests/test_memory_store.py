"""Tests for listorder.memory_store — dict-backed position store."""
from __future__ import annotations

import asyncio

import pytest

from listorder.errors import OperationCancelled, RecordNotFoundError
from listorder.memory_store import InMemoryPositionStore
from listorder.position_filters import POSITION_DESC, FieldMatch, PositionCompare
from listorder.store import PositionRecord

LIST_A = FieldMatch("partition_key", "list-a")


@pytest.fixture()
def store() -> InMemoryPositionStore:
    return InMemoryPositionStore([
        PositionRecord("a1", 10.0, "list-a"),
        PositionRecord("a2", 20.0, "list-a"),
        PositionRecord("a3", 30.0, "list-a"),
        PositionRecord("b1", 20.0, "list-b"),
    ])


class TestQueries:
    def test_query_one_scoped_to_partition(self, store: InMemoryPositionStore) -> None:
        found = asyncio.run(store.query_one(LIST_A, PositionCompare("=", 20)))
        assert found.value_or_fail().id == "a2"

    def test_query_one_nothing(self, store: InMemoryPositionStore) -> None:
        found = asyncio.run(store.query_one(LIST_A, PositionCompare(">", 30)))
        assert not found.has_value

    def test_query_all_order(self, store: InMemoryPositionStore) -> None:
        rows = asyncio.run(store.query_all(LIST_A, None, POSITION_DESC))
        assert [r.id for r in rows] == ["a3", "a2", "a1"]

    def test_query_all_without_partition(self, store: InMemoryPositionStore) -> None:
        rows = list(asyncio.run(store.query_all(None)))
        assert [r.id for r in rows] == ["a1", "a2", "b1", "a3"]


class TestUpdates:
    def test_update_by_id(self, store: InMemoryPositionStore) -> None:
        updated = asyncio.run(store.update_by_id("a1", {"position": 5.0}))
        assert updated == PositionRecord("a1", 5.0, "list-a")
        assert store.get("a1").position == 5.0

    def test_update_missing(self, store: InMemoryPositionStore) -> None:
        with pytest.raises(RecordNotFoundError):
            asyncio.run(store.update_by_id("nope", {"position": 1.0}))

    def test_batch_is_all_or_nothing(self, store: InMemoryPositionStore) -> None:
        with pytest.raises(RecordNotFoundError):
            asyncio.run(store.update_positions([("a1", 1.0), ("nope", 2.0)]))
        assert store.get("a1").position == 10.0

    def test_batch_cancelled(self, store: InMemoryPositionStore) -> None:
        async def _run() -> None:
            cancel = asyncio.Event()
            cancel.set()
            await store.update_positions([("a1", 1.0)], cancel=cancel)

        with pytest.raises(OperationCancelled):
            asyncio.run(_run())
        assert store.get("a1").position == 10.0

    def test_delete(self, store: InMemoryPositionStore) -> None:
        store.delete("a1")
        assert len(store) == 3
        with pytest.raises(RecordNotFoundError):
            store.get("a1")
