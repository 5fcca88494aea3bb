# stamp/services/entries.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlmodel import Session, select

from datetime_utils import ensure_utc, next_edit_timestamp, utc_now
from models.entry import Entry
from storage.db import get_session


logger = logging.getLogger(__name__)

EVENTS = ("after_create", "after_update", "after_archive", "after_restore", "after_delete")

_EDITABLE_FIELDS = ("title", "location", "notes", "date", "photo_data", "latitude", "longitude")


def _clean_coordinate(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return float(value)


class EntryService:
    """Local journal store: CRUD plus the queries the sync engine needs."""

    def __init__(self, session_factory: Callable[[], Session] = get_session) -> None:
        self._session_factory = session_factory
        self._listeners: Dict[str, Set[Callable[[str], None]]] = {event: set() for event in EVENTS}

    # ----- listeners -----
    def subscribe(self, event: str, callback: Callable[[str], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unsupported event: {event}")
        self._listeners[event].add(callback)

    def unsubscribe(self, event: str, callback: Callable[[str], None]) -> None:
        if event not in self._listeners:
            return
        self._listeners[event].discard(callback)

    def _emit(self, event: str, entry_id: str) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(entry_id)
            except Exception:
                logger.exception("Listener for %s failed on entry %s", event, entry_id)

    # ----- local mutations -----
    def create(
        self,
        title: str,
        location: str = "",
        date: Optional[datetime] = None,
        notes: str = "",
        photo_data: Optional[bytes] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        *,
        entry_id: Optional[str] = None,
        emit: bool = True,
    ) -> Entry:
        now = utc_now()
        with self._session_factory() as s:
            entry = Entry(
                title=title.strip(),
                location=(location or "").strip(),
                notes=notes or "",
                date=ensure_utc(date) or now,
                photo_data=photo_data or None,
                edit_timestamp=now,
                created_at=now,
                latitude=_clean_coordinate(latitude),
                longitude=_clean_coordinate(longitude),
            )
            if entry_id:
                entry.id = entry_id
            s.add(entry)
            s.commit()
            s.refresh(entry)
        if emit:
            self._emit("after_create", entry.id)
        return entry

    def update(self, entry_id: str, *, emit: bool = True, **fields) -> Optional[Entry]:
        unknown = set(fields) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported fields: {', '.join(sorted(unknown))}")
        with self._session_factory() as s:
            entry = s.get(Entry, entry_id)
            if not entry:
                return None
            for name, value in fields.items():
                if name == "date":
                    value = ensure_utc(value) or entry.date
                elif name in ("latitude", "longitude"):
                    value = _clean_coordinate(value)
                elif name == "title":
                    value = (value or "").strip()
                elif name == "photo_data":
                    value = value or None
                setattr(entry, name, value)
            entry.edit_timestamp = next_edit_timestamp(entry.edit_timestamp)
            s.add(entry)
            s.commit()
            s.refresh(entry)
        if emit:
            self._emit("after_update", entry.id)
        return entry

    def archive(self, entry_id: str, *, emit: bool = True) -> Optional[Entry]:
        return self._set_archived(entry_id, True, "after_archive" if emit else None)

    def restore(self, entry_id: str, *, emit: bool = True) -> Optional[Entry]:
        return self._set_archived(entry_id, False, "after_restore" if emit else None)

    def _set_archived(self, entry_id: str, archived: bool, event: Optional[str]) -> Optional[Entry]:
        with self._session_factory() as s:
            entry = s.get(Entry, entry_id)
            if not entry:
                return None
            entry.is_archived = archived
            # Archival time must be visible to the next delta sync.
            entry.edit_timestamp = next_edit_timestamp(entry.edit_timestamp)
            s.add(entry)
            s.commit()
            s.refresh(entry)
        if event:
            self._emit(event, entry.id)
        return entry

    def delete_permanently(self, entry_id: str, *, emit: bool = True) -> bool:
        with self._session_factory() as s:
            entry = s.get(Entry, entry_id)
            if not entry:
                return False
            s.delete(entry)
            s.commit()
        if emit:
            self._emit("after_delete", entry_id)
        return True

    # ----- sync primitives -----
    def upsert(self, incoming: Entry) -> Entry:
        """Write an entry received from the remote store.

        The incoming ``edit_timestamp`` is kept as-is and no listeners fire:
        applying a download is not a local mutation.
        """

        with self._session_factory() as s:
            entry = s.get(Entry, incoming.id)
            if entry is None:
                entry = Entry(id=incoming.id)
                entry.created_at = ensure_utc(incoming.created_at) or utc_now()
            entry.title = incoming.title or ""
            entry.location = incoming.location or ""
            entry.notes = incoming.notes or ""
            entry.date = ensure_utc(incoming.date)
            entry.photo_data = incoming.photo_data
            entry.edit_timestamp = ensure_utc(incoming.edit_timestamp)
            entry.is_archived = bool(incoming.is_archived)
            entry.latitude = _clean_coordinate(incoming.latitude)
            entry.longitude = _clean_coordinate(incoming.longitude)
            s.add(entry)
            s.commit()
            s.refresh(entry)
            return entry

    # ----- queries -----
    def get(self, entry_id: str) -> Optional[Entry]:
        with self._session_factory() as s:
            return s.get(Entry, entry_id)

    def fetch_all(self) -> List[Entry]:
        with self._session_factory() as s:
            return list(s.exec(select(Entry)))

    def fetch_active(self) -> List[Entry]:
        with self._session_factory() as s:
            stmt = select(Entry).where(Entry.is_archived == False).order_by(Entry.date.desc())  # noqa: E712
            return list(s.exec(stmt))

    def fetch_archived(self) -> List[Entry]:
        with self._session_factory() as s:
            stmt = select(Entry).where(Entry.is_archived == True).order_by(Entry.date.desc())  # noqa: E712
            return list(s.exec(stmt))

    def fetch_with_locations(self) -> List[Entry]:
        with self._session_factory() as s:
            stmt = (
                select(Entry)
                .where(
                    Entry.is_archived == False,  # noqa: E712
                    Entry.latitude.is_not(None),
                    Entry.longitude.is_not(None),
                )
                .order_by(Entry.date.desc())
            )
            return list(s.exec(stmt))

    def fetch_modified_since(self, moment: datetime) -> List[Entry]:
        since = ensure_utc(moment)
        with self._session_factory() as s:
            stmt = select(Entry).where(Entry.edit_timestamp > since).order_by(Entry.edit_timestamp.asc())
            return list(s.exec(stmt))

    def fetch_by_ids(self, entry_ids: Iterable[str]) -> List[Entry]:
        ids = sorted({str(entry_id) for entry_id in entry_ids if entry_id})
        if not ids:
            return []
        with self._session_factory() as s:
            return list(s.exec(select(Entry).where(Entry.id.in_(ids))))

    def existing_ids(self) -> Set[str]:
        with self._session_factory() as s:
            return set(s.exec(select(Entry.id)))


__all__ = ["EntryService", "EVENTS"]
