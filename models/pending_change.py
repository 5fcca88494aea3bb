"""SQLModel table for entries with unconfirmed outgoing changes."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class PendingChange(SQLModel, table=True):
    entry_id: str = Field(primary_key=True)
    marked_at: datetime = Field(default_factory=utc_now, index=True)


__all__ = ["PendingChange"]
