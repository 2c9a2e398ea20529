"""Async SQLite backend for the key/value state tables."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from tunegate.storage.keys import TABLE_NAMES
from tunegate.storage.models import StorageRecord

log = structlog.get_logger(__name__)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS playback_store (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS favorites_store (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

_KNOWN_TABLES = frozenset(TABLE_NAMES.values())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_table(table: str) -> str:
    # Table names are interpolated into SQL, so only the two fixed ones pass.
    if table not in _KNOWN_TABLES:
        msg = f"Unknown storage table: {table}"
        raise ValueError(msg)
    return table


class Database:
    """Async SQLite wrapper for the two state tables.

    Every call opens its own connection and commits before returning, so two
    batches running side by side are separate transactions.
    """

    def __init__(self, path: Path, *, busy_timeout: float = 30.0) -> None:
        self.path = path
        self.busy_timeout = busy_timeout

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path, timeout=self.busy_timeout)
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def ensure_schema(self) -> None:
        """Create both tables if they are missing. Safe to call repeatedly."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with self.connection() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()

    # -- reads -----------------------------------------------------------------

    async def select_all(self, table: str) -> list[StorageRecord]:
        async with self.connection() as conn:
            cur = await conn.execute(
                f"SELECT key, value, updated_at FROM {_check_table(table)}"  # noqa: S608
            )
            rows = await cur.fetchall()
        return [self._row_to_record(r) for r in rows]

    async def select_keys(self, table: str, keys: Sequence[str]) -> list[StorageRecord]:
        if not keys:
            return []
        placeholders = ",".join("?" for _ in keys)
        async with self.connection() as conn:
            cur = await conn.execute(
                f"SELECT key, value, updated_at FROM {_check_table(table)} WHERE key IN ({placeholders})",  # noqa: S608
                tuple(keys),
            )
            rows = await cur.fetchall()
        return [self._row_to_record(r) for r in rows]

    # -- writes ----------------------------------------------------------------

    async def upsert_many(self, table: str, entries: Sequence[tuple[str, str]]) -> None:
        """Insert or overwrite every (key, value) pair in one transaction."""
        if not entries:
            return
        now = _now_iso()
        async with self.connection() as conn:
            await conn.executemany(
                f"""
                INSERT INTO {_check_table(table)} (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,  # noqa: S608
                [(key, value, now) for key, value in entries],
            )
            await conn.commit()
        log.debug("storage_upsert", table=table, count=len(entries))

    async def delete_many(self, table: str, keys: Sequence[str]) -> None:
        if not keys:
            return
        async with self.connection() as conn:
            await conn.executemany(
                f"DELETE FROM {_check_table(table)} WHERE key = ?",  # noqa: S608
                [(key,) for key in keys],
            )
            await conn.commit()
        log.debug("storage_delete", table=table, count=len(keys))

    # -- row → model helpers ---------------------------------------------------

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> StorageRecord:
        return StorageRecord(
            key=row["key"],
            value=row["value"] if row["value"] is not None else "",
            updated_at=row["updated_at"],
        )
