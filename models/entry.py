"""SQLModel table for journal entries ("stamps")."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


def new_entry_id() -> str:
    return str(uuid.uuid4())


class Entry(SQLModel, table=True):
    id: str = Field(default_factory=new_entry_id, primary_key=True)
    title: str = ""
    location: str = ""
    notes: str = ""
    date: datetime = Field(default_factory=utc_now, index=True)
    photo_data: Optional[bytes] = None
    edit_timestamp: datetime = Field(default_factory=utc_now, index=True)
    is_archived: bool = Field(default=False, index=True)
    # NULL means "no location".
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


__all__ = ["Entry", "new_entry_id"]
