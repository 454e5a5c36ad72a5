"""Tests for listorder.duckdb_store — DuckDB-backed position store."""
from __future__ import annotations

import asyncio
from pathlib import Path

import duckdb
import pytest

from listorder.duckdb_store import SCHEMA_VERSION, TABLE, DuckDBPositionStore, SchemaVersionError
from listorder.errors import OperationCancelled, RecordNotFoundError
from listorder.position_filters import POSITION_DESC, FieldMatch, PositionCompare
from listorder.store import PositionRecord

LIST_A = FieldMatch("partition_key", "list-a")


# ───────────────────── Fixtures ──────────────────────────────────────


@pytest.fixture()
def store(tmp_path: Path) -> DuckDBPositionStore:
    """Create a fresh store in a temp directory with two partitions."""
    s = DuckDBPositionStore(tmp_path / "positions.duckdb", create_if_missing=True)
    s.add_records([
        PositionRecord("a1", 10.0, "list-a", {"title": "first"}),
        PositionRecord("a2", 20.0, "list-a", {"title": "second", "done": True}),
        PositionRecord("a3", 30.0, "list-a"),
        PositionRecord("b1", 15.0, "list-b"),
    ])
    yield s  # type: ignore[misc]
    s.close()


# ───────────────────── Initialization ────────────────────────────────


class TestInit:
    def test_create_new_db(self, tmp_path: Path) -> None:
        db_path = tmp_path / "new.duckdb"
        s = DuckDBPositionStore(db_path, create_if_missing=True)
        assert db_path.exists()
        s.close()

    def test_missing_db_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            DuckDBPositionStore(tmp_path / "does_not_exist.duckdb")

    def test_in_memory(self) -> None:
        with DuckDBPositionStore(":memory:") as s:
            assert s.count() == 0

    def test_schema_version_tracked(self, store: DuckDBPositionStore) -> None:
        row = store._conn.execute(
            "SELECT version FROM _schema_version WHERE table_name = ?", [TABLE]
        ).fetchone()
        assert row is not None
        assert row[0] == SCHEMA_VERSION

    def test_schema_version_mismatch(self, tmp_path: Path) -> None:
        db_path = tmp_path / "old.duckdb"
        conn = duckdb.connect(str(db_path))
        conn.execute(
            "CREATE TABLE _schema_version (table_name VARCHAR PRIMARY KEY, version VARCHAR NOT NULL)"
        )
        conn.execute("INSERT INTO _schema_version VALUES (?, '0.0.1')", [TABLE])
        conn.close()
        with pytest.raises(SchemaVersionError):
            DuckDBPositionStore(db_path)

    def test_reopen_keeps_records(self, tmp_path: Path) -> None:
        db_path = tmp_path / "keep.duckdb"
        with DuckDBPositionStore(db_path, create_if_missing=True) as s:
            s.add_records([PositionRecord("x", 1.0, "L", {"n": 1})])
        with DuckDBPositionStore(db_path) as s:
            assert s.get("x") == PositionRecord("x", 1.0, "L", {"n": 1})


# ───────────────────── Queries ───────────────────────────────────────


class TestQueries:
    def test_query_one_in_partition(self, store: DuckDBPositionStore) -> None:
        found = asyncio.run(store.query_one(LIST_A, PositionCompare("=", 20)))
        assert found.value_or_fail().id == "a2"

    def test_query_one_respects_partition(self, store: DuckDBPositionStore) -> None:
        found = asyncio.run(store.query_one(LIST_A, PositionCompare("=", 15)))
        assert not found.has_value

    def test_query_one_ordering(self, store: DuckDBPositionStore) -> None:
        found = asyncio.run(store.query_one(LIST_A, None, POSITION_DESC))
        assert found.value_or_fail().id == "a3"

    def test_query_all_is_ordered_iterator(self, store: DuckDBPositionStore) -> None:
        rows = asyncio.run(store.query_all(LIST_A, None, POSITION_DESC))
        assert [r.id for r in rows] == ["a3", "a2", "a1"]
        assert list(rows) == []

    def test_attribute_filter(self, store: DuckDBPositionStore) -> None:
        rows = asyncio.run(store.query_all(LIST_A, FieldMatch("attributes.done", True)))
        assert [r.id for r in rows] == ["a2"]

    def test_negated_attribute_filter_includes_missing(self, store: DuckDBPositionStore) -> None:
        rows = asyncio.run(
            store.query_all(LIST_A, FieldMatch("attributes.done", True, negate=True))
        )
        assert [r.id for r in rows] == ["a1", "a3"]

    def test_attributes_decoded(self, store: DuckDBPositionStore) -> None:
        assert store.get("a1").attributes == {"title": "first"}


# ───────────────────── Updates ───────────────────────────────────────


class TestUpdates:
    def test_update_by_id(self, store: DuckDBPositionStore) -> None:
        updated = asyncio.run(store.update_by_id("a1", {"position": 12.5}))
        assert updated.position == 12.5
        assert store.get("a1").position == 12.5

    def test_update_attributes(self, store: DuckDBPositionStore) -> None:
        asyncio.run(store.update_by_id("a3", {"attributes": {"done": False}}))
        assert store.get("a3").attributes == {"done": False}

    def test_update_missing_raises(self, store: DuckDBPositionStore) -> None:
        with pytest.raises(RecordNotFoundError):
            asyncio.run(store.update_by_id("zz", {"position": 1.0}))

    def test_update_rejects_id_change(self, store: DuckDBPositionStore) -> None:
        with pytest.raises(ValueError):
            asyncio.run(store.update_by_id("a1", {"id": "other"}))

    def test_batch_update(self, store: DuckDBPositionStore) -> None:
        applied = asyncio.run(store.update_positions([("a1", 1.0), ("a2", 2.0)]))
        assert [(r.id, r.position) for r in applied] == [("a1", 1.0), ("a2", 2.0)]
        assert store.get("a2").position == 2.0

    def test_batch_rolls_back_on_missing_record(self, store: DuckDBPositionStore) -> None:
        with pytest.raises(RecordNotFoundError):
            asyncio.run(store.update_positions([("a1", 1.0), ("missing", 2.0)]))
        assert store.get("a1").position == 10.0

    def test_batch_cancelled_before_start(self, store: DuckDBPositionStore) -> None:
        async def _run() -> None:
            cancel = asyncio.Event()
            cancel.set()
            await store.update_positions([("a1", 1.0)], cancel=cancel)

        with pytest.raises(OperationCancelled):
            asyncio.run(_run())
        assert store.get("a1").position == 10.0

    def test_delete(self, store: DuckDBPositionStore) -> None:
        store.delete("b1")
        assert store.count() == 3
        with pytest.raises(RecordNotFoundError):
            store.delete("b1")
