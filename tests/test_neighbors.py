"""Tests for listorder.neighbors — first/last/next/previous lookups."""
from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest

from listorder.duckdb_store import DuckDBPositionStore
from listorder.memory_store import InMemoryPositionStore
from listorder.neighbors import (
    find_element,
    find_first,
    find_last,
    find_next,
    find_previous,
)
from listorder.optional import NOTHING
from listorder.position_filters import POSITION_DESC, FieldMatch, PositionCompare
from listorder.store import FunctionAdapter, PositionRecord, PositionStore

LIST = FieldMatch("partition_key", "L")
EMPTY = FieldMatch("partition_key", "empty")

RECORDS = [
    PositionRecord("r10", 10.0, "L", {"kind": "task"}),
    PositionRecord("r20", 20.0, "L", {"kind": "note"}),
    PositionRecord("r30", 30.0, "L", {"kind": "task"}),
    PositionRecord("other", 25.0, "M"),
]


@pytest.fixture(params=["memory", "duckdb"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[PositionStore]:
    if request.param == "memory":
        yield InMemoryPositionStore(RECORDS)
        return
    s = DuckDBPositionStore(tmp_path / "neighbors.duckdb", create_if_missing=True)
    s.add_records(RECORDS)
    yield s
    s.close()


def _id(option: object) -> str | None:
    return option.map(lambda r: r.id).value_or(None)  # type: ignore[attr-defined]


class TestEmptyPartition:
    def test_all_lookups_empty(self, store: PositionStore) -> None:
        async def _run() -> list[object]:
            return [
                await find_first(store, EMPTY),
                await find_last(store, EMPTY),
                await find_next(store, EMPTY, 10),
                await find_previous(store, EMPTY, 10),
            ]

        assert asyncio.run(_run()) == [NOTHING] * 4


class TestAdjacent:
    def test_next(self, store: PositionStore) -> None:
        assert _id(asyncio.run(find_next(store, LIST, 10))) == "r20"

    def test_previous(self, store: PositionStore) -> None:
        assert _id(asyncio.run(find_previous(store, LIST, 30))) == "r20"

    def test_next_between_positions(self, store: PositionStore) -> None:
        # 25 belongs to another partition
        assert _id(asyncio.run(find_next(store, LIST, 21))) == "r30"

    def test_no_next_after_last(self, store: PositionStore) -> None:
        assert asyncio.run(find_next(store, LIST, 30)) is NOTHING

    def test_no_previous_before_first(self, store: PositionStore) -> None:
        assert asyncio.run(find_previous(store, LIST, 10)) is NOTHING

    def test_filter_narrows_partition(self, store: PositionStore) -> None:
        task = FieldMatch("attributes.kind", "task")
        assert _id(asyncio.run(find_next(store, LIST, 10, where=task))) == "r30"


class TestBoundaries:
    def test_first(self, store: PositionStore) -> None:
        assert _id(asyncio.run(find_first(store, LIST))) == "r10"

    def test_first_skips_unpositioned(self, store: PositionStore) -> None:
        store.add_records([PositionRecord("blank", None, "L")])  # type: ignore[attr-defined]
        assert _id(asyncio.run(find_first(store, LIST))) == "r10"
        assert _id(asyncio.run(find_last(store, LIST))) == "r30"

    def test_first_of_unpositioned_only(self, store: PositionStore) -> None:
        store.add_records([PositionRecord("blank", None, "B")])  # type: ignore[attr-defined]
        assert _id(asyncio.run(find_first(store, FieldMatch("partition_key", "B")))) == "blank"

    def test_last(self, store: PositionStore) -> None:
        assert _id(asyncio.run(find_last(store, LIST))) == "r30"

    def test_last_with_filter(self, store: PositionStore) -> None:
        note = FieldMatch("attributes.kind", "note")
        assert _id(asyncio.run(find_last(store, LIST, where=note))) == "r20"

    def test_without_partition(self, store: PositionStore) -> None:
        assert _id(asyncio.run(find_last(store, None))) == "r30"


class TestFindElement:
    def test_adapter_maps_result(self, store: PositionStore) -> None:
        adapter = FunctionAdapter(lambda r: (r.id, r.position))
        found = asyncio.run(
            find_element(store, LIST, PositionCompare("<=", 20), order_by=POSITION_DESC, adapter=adapter)
        )
        assert found.value_or_fail() == ("r20", 20.0)

    def test_no_match(self, store: PositionStore) -> None:
        found = asyncio.run(find_element(store, LIST, PositionCompare(">", 100)))
        assert found is NOTHING


class TestAttributeMatching:
    def test_stores_agree_on_attribute_text(self, store: PositionStore) -> None:
        store.add_records([  # type: ignore[attr-defined]
            PositionRecord("a", 1.0, "R", {"rank": 1.0}),
            PositionRecord("b", 2.0, "R", {"rank": "1"}),
            PositionRecord("c", 3.0, "R", {"rank": 1}),
            PositionRecord("d", 4.0, "R"),
        ])
        ranked = FieldMatch("partition_key", "R")

        def _ids(where: FieldMatch) -> list[str]:
            return [r.id for r in asyncio.run(store.query_all(ranked, where))]

        assert _ids(FieldMatch("attributes.rank", 1)) == ["b", "c"]
        assert _ids(FieldMatch("attributes.rank", 1, negate=True)) == ["a", "d"]
        assert _ids(FieldMatch("attributes.rank", None)) == ["d"]
