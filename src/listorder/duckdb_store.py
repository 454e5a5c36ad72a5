"""DuckDB-backed ``PositionStore``.

Manages a single ``ordered_records`` table:

* ``id`` — record identifier (primary key)
* ``partition_key`` — the usual partition discriminator
* ``position`` — DOUBLE, nullable
* ``attributes`` — JSON text (orjson) addressable as ``attributes.<name>``

Every call runs on a worker thread via ``asyncio.to_thread``; a lock keeps
the single connection to one statement sequence at a time. Batch position
updates run inside one transaction and roll back on any failure.
"""
from __future__ import annotations

import asyncio
import contextlib
import importlib
import logging
import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from listorder.errors import RecordNotFoundError, raise_if_cancelled
from listorder.io_utils import dumps, loads
from listorder.optional import NOTHING, Option, Some
from listorder.position_filters import (
    FilterExpression,
    OrderBy,
    build_filter_sql,
    build_order_sql,
    combine_filters,
)
from listorder.store import UPDATABLE_FIELDS, PositionRecord

# Dynamic DuckDB import for pyright compatibility
_duckdb_mod = importlib.import_module("duckdb")

log = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"
TABLE = "ordered_records"
_COLUMNS = "id, position, partition_key, attributes"


class SchemaVersionError(RuntimeError):
    """Raised when an existing database carries an unexpected schema version."""


# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_DDL = f"""
-- Schema version tracking
CREATE TABLE IF NOT EXISTS _schema_version (
    table_name VARCHAR PRIMARY KEY,
    version VARCHAR NOT NULL
);

-- ─── ORDERED RECORDS ──────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS {TABLE} (
    id VARCHAR PRIMARY KEY,
    position DOUBLE,
    partition_key VARCHAR NOT NULL DEFAULT '',
    attributes VARCHAR NOT NULL DEFAULT '{{}}'
)
"""


def _row_to_record(row: tuple[Any, ...]) -> PositionRecord:
    record_id, position, partition_key, attributes = row
    return PositionRecord(
        id=str(record_id),
        position=None if position is None else float(position),
        partition_key=partition_key or "",
        attributes=loads(attributes) if attributes else {},
    )


def _where_sql(expr: FilterExpression | None) -> tuple[str, list[Any]]:
    if expr is None:
        return ("", [])
    sql, params = build_filter_sql(expr)
    return (f" WHERE {sql}", params)


# ---------------------------------------------------------------------------
# DuckDBPositionStore class
# ---------------------------------------------------------------------------

class DuckDBPositionStore:
    """Read/write position store on a DuckDB file (or ``:memory:``)."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        create_if_missing: bool = False,
    ) -> None:
        self._db_path = db_path if db_path == ":memory:" else Path(db_path)
        if (
            isinstance(self._db_path, Path)
            and not self._db_path.exists()
            and not create_if_missing
        ):
            raise FileNotFoundError(f"Position database not found: {self._db_path}")

        self._conn: Any = _duckdb_mod.connect(str(self._db_path))
        self._lock = threading.Lock()
        self._create_schema()

    def _create_schema(self) -> None:
        """Create tables if they don't exist and stamp the schema version."""
        for stmt in _SCHEMA_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                self._conn.execute(stmt)
        row = self._conn.execute(
            "SELECT version FROM _schema_version WHERE table_name = ?", [TABLE]
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO _schema_version (table_name, version) VALUES (?, ?)",
                [TABLE, SCHEMA_VERSION],
            )
        elif row[0] != SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Schema version mismatch in {self._db_path}: "
                f"expected {SCHEMA_VERSION}, got {row[0]}"
            )

    def __enter__(self) -> DuckDBPositionStore:
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the DuckDB connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    # ─── Record management ────────────────────────────────────────

    def add_records(self, records: Iterable[PositionRecord]) -> int:
        """Insert or replace records. Returns the number written."""
        rows = [
            [r.id, r.position, r.partition_key, dumps(dict(r.attributes))]
            for r in records
        ]
        if not rows:
            return 0
        with self._lock:
            self._conn.executemany(
                f"INSERT OR REPLACE INTO {TABLE} ({_COLUMNS}) VALUES (?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def delete(self, record_id: str) -> None:
        with self._lock:
            row = self._conn.execute(
                f"DELETE FROM {TABLE} WHERE id = ? RETURNING id", [record_id]
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(record_id)

    def get(self, record_id: str) -> PositionRecord:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM {TABLE} WHERE id = ?", [record_id]
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(record_id)
        return _row_to_record(row)

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {TABLE}").fetchone()
        return int(row[0]) if row else 0

    # ─── Queries ──────────────────────────────────────────────────

    def _select_sync(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None,
        order_by: OrderBy | None,
        limit: int | None,
    ) -> list[PositionRecord]:
        where_sql, params = _where_sql(combine_filters(partition, where))
        sql = f"SELECT {_COLUMNS} FROM {TABLE}{where_sql} {build_order_sql(order_by)}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    async def query_one(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Option[PositionRecord]:
        rows = await asyncio.to_thread(self._select_sync, partition, where, order_by, 1)
        return Some(rows[0]) if rows else NOTHING

    async def query_all(
        self,
        partition: FilterExpression | None,
        where: FilterExpression | None = None,
        order_by: OrderBy | None = None,
    ) -> Iterator[PositionRecord]:
        rows = await asyncio.to_thread(self._select_sync, partition, where, order_by, None)
        return iter(rows)

    # ─── Updates ──────────────────────────────────────────────────

    def _update_sync(self, record_id: str, changes: Mapping[str, Any]) -> PositionRecord:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not changes:
            return self.get(record_id)
        assignments: list[str] = []
        params: list[Any] = []
        for name, value in changes.items():
            assignments.append(f"{name} = ?")
            params.append(dumps(dict(value)) if name == "attributes" else value)
        params.append(record_id)
        with self._lock:
            row = self._conn.execute(
                f"UPDATE {TABLE} SET {', '.join(assignments)} WHERE id = ? "
                f"RETURNING {_COLUMNS}",
                params,
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(record_id)
        return _row_to_record(row)

    async def update_by_id(
        self, record_id: str, changes: Mapping[str, Any]
    ) -> PositionRecord:
        return await asyncio.to_thread(self._update_sync, record_id, changes)

    def _update_positions_sync(
        self,
        updates: Sequence[tuple[str, float]],
        cancel: asyncio.Event | None,
    ) -> list[PositionRecord]:
        applied: list[PositionRecord] = []
        with self._lock:
            self._conn.execute("BEGIN TRANSACTION")
            try:
                for record_id, position in updates:
                    raise_if_cancelled(cancel, "Position batch")
                    row = self._conn.execute(
                        f"UPDATE {TABLE} SET position = ? WHERE id = ? "
                        f"RETURNING {_COLUMNS}",
                        [position, record_id],
                    ).fetchone()
                    if row is None:
                        raise RecordNotFoundError(record_id)
                    applied.append(_row_to_record(row))
                self._conn.execute("COMMIT")
            except Exception:
                with contextlib.suppress(Exception):
                    self._conn.execute("ROLLBACK")
                log.warning("Rolled back position batch of %d updates", len(updates))
                raise
        return applied

    async def update_positions(
        self,
        updates: Sequence[tuple[str, float]],
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[PositionRecord]:
        return await asyncio.to_thread(self._update_positions_sync, updates, cancel)
