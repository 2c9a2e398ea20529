"""Key-routed persistence façade over the playback and favorites tables."""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Awaitable, Iterable, Mapping
from typing import TypeVar

import structlog

from tunegate.errors import InvalidPayload
from tunegate.storage.database import Database
from tunegate.storage.keys import TABLE_NAMES, TableId, route

log = structlog.get_logger(__name__)

T = TypeVar("T")


def coerce_value(value: object) -> str:
    """Render a stored value as text. ``None`` becomes the empty string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def parse_key_list(raw: str) -> list[str]:
    """Split a ``k1,k2,...`` query value into distinct, non-empty keys."""
    keys = (part.strip() for part in raw.split(","))
    return list(dict.fromkeys(k for k in keys if k))


def _group_by_table(keys: Iterable[str]) -> dict[TableId, list[str]]:
    groups: dict[TableId, list[str]] = {"playback": [], "favorites": []}
    for key in keys:
        groups[route(key)].append(key)
    return groups


async def _join(aws: Iterable[Awaitable[T]]) -> list[T]:
    """Wait for every table group, then re-raise the first failure.

    Groups are independent transactions: a failure in one does not undo a
    group that already committed.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results  # type: ignore[return-value]


class PersistenceStore:
    """Batched get/put/delete over the two state tables.

    ``db`` is resolved once at startup; ``None`` means no backend is
    configured and every operation degrades to an empty result.
    """

    def __init__(self, db: Database | None) -> None:
        self._db = db

    def is_available(self) -> bool:
        return self._db is not None

    async def ensure_schema(self) -> None:
        if self._db is None:
            return
        await self._db.ensure_schema()

    # -- reads -----------------------------------------------------------------

    async def get_all(self) -> dict[str, str]:
        """Dump every row of both tables into one mapping."""
        if self._db is None:
            return {}
        await self._db.ensure_schema()
        groups = await _join(self._db.select_all(table) for table in TABLE_NAMES.values())
        data: dict[str, str] = {}
        for records in groups:
            for record in records:
                data[record.key] = record.value
        return data

    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        """Read the given keys; keys without a row map to ``None``."""
        if self._db is None:
            return {}
        data: dict[str, str | None] = dict.fromkeys(keys)
        if not data:
            return data
        await self._db.ensure_schema()
        groups = {table: group for table, group in _group_by_table(data).items() if group}
        results = await _join(
            self._db.select_keys(TABLE_NAMES[table], group) for table, group in groups.items()
        )
        for records in results:
            for record in records:
                data[record.key] = record.value
        return data

    # -- writes ----------------------------------------------------------------

    async def put_many(self, entries: object) -> int:
        """Upsert a flat key/value mapping and return the number of accepted keys.

        Raises :class:`InvalidPayload` when *entries* is not a mapping.
        """
        if not isinstance(entries, Mapping):
            raise InvalidPayload
        if self._db is None:
            return 0

        accepted = {str(k): coerce_value(v) for k, v in entries.items() if k}
        if not accepted:
            return 0

        await self._db.ensure_schema()
        grouped: dict[TableId, list[tuple[str, str]]] = {"playback": [], "favorites": []}
        for key, value in accepted.items():
            grouped[route(key)].append((key, value))

        await _join(
            self._db.upsert_many(TABLE_NAMES[table], rows)
            for table, rows in grouped.items()
            if rows
        )
        log.info("storage_put", count=len(accepted))
        return len(accepted)

    async def delete_many(self, keys: object) -> int:
        """Delete the given keys and return how many were accepted.

        The count reflects accepted input, not rows actually removed.
        Anything that is not a list of strings contributes nothing.
        """
        if self._db is None:
            return 0
        if not isinstance(keys, (list, tuple, set, frozenset)):
            return 0
        accepted = [k for k in keys if isinstance(k, str) and k]
        if not accepted:
            return 0

        await self._db.ensure_schema()
        await _join(
            self._db.delete_many(TABLE_NAMES[table], group)
            for table, group in _group_by_table(accepted).items()
            if group
        )
        log.info("storage_delete", count=len(accepted))
        return len(accepted)
