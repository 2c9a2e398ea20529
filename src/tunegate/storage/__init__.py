"""Tunegate storage layer: key-routed SQLite tables for player state."""

from tunegate.storage.database import Database
from tunegate.storage.keys import FAVORITE_KEYS, TABLE_NAMES, TableId, route
from tunegate.storage.models import StorageRecord
from tunegate.storage.store import PersistenceStore

__all__ = [
    "FAVORITE_KEYS",
    "TABLE_NAMES",
    "Database",
    "PersistenceStore",
    "StorageRecord",
    "TableId",
    "route",
]
