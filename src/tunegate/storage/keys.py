"""Routing of logical storage keys to their backing table."""

from __future__ import annotations

from typing import Literal

TableId = Literal["playback", "favorites"]

FAVORITE_KEYS: frozenset[str] = frozenset(
    {
        "favoriteSongs",
        "currentFavoriteIndex",
        "favoritePlayMode",
        "favoritePlaybackTime",
    }
)

TABLE_NAMES: dict[TableId, str] = {
    "playback": "playback_store",
    "favorites": "favorites_store",
}


def route(key: str) -> TableId:
    """Return the table a key lives in.

    Used for reads and writes alike so a key always round-trips through the
    same table.
    """
    if key in FAVORITE_KEYS:
        return "favorites"
    return "playback"
