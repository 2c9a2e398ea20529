"""Pydantic models for the Tunegate storage layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class StorageRecord(BaseModel):
    """One row of a key/value table."""

    key: str
    value: str = ""
    updated_at: datetime | None = None
