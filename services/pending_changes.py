from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Set

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from datetime_utils import utc_now
from models.pending_change import PendingChange
from storage.db import get_session


logger = logging.getLogger(__name__)


class PendingChangeTracker:
    """Persistent set of entry ids whose local changes are not uploaded yet.

    Every operation persists immediately. Storage failures are logged and
    reported through the return value; the next sync cycle retries.
    """

    def __init__(self, session_factory: Callable[[], Session] = get_session) -> None:
        self._session_factory = session_factory
        self._observers: List[Callable[[bool], None]] = []

    # ----- observers -----
    def subscribe(self, callback: Callable[[bool], None]) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def unsubscribe(self, callback: Callable[[bool], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def _notify(self) -> None:
        has_pending = not self.is_empty
        for observer in list(self._observers):
            try:
                observer(has_pending)
            except Exception:
                logger.exception("Pending-change observer failed")

    # ----- mutations -----
    def mark_pending(self, entry_id: str) -> bool:
        try:
            with self._session_factory() as session:
                record = session.get(PendingChange, entry_id)
                if record is None:
                    session.add(PendingChange(entry_id=entry_id, marked_at=utc_now()))
                    session.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not mark entry %s pending: %s", entry_id, exc)
            return False
        self._notify()
        return True

    def clear_pending(self, entry_ids: Iterable[str]) -> bool:
        ids = {str(entry_id) for entry_id in entry_ids if entry_id}
        if not ids:
            return True
        try:
            with self._session_factory() as session:
                rows = session.exec(select(PendingChange).where(PendingChange.entry_id.in_(ids)))
                for record in rows.all():
                    session.delete(record)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not clear %d pending entries: %s", len(ids), exc)
            return False
        self._notify()
        return True

    def prune_orphans(self, existing_ids: Iterable[str]) -> Set[str]:
        existing = set(existing_ids)
        orphans = self.pending_ids() - existing
        if orphans and self.clear_pending(orphans):
            logger.info("Pruned %d orphaned pending entries", len(orphans))
            return orphans
        return set()

    def clear_all(self) -> bool:
        try:
            with self._session_factory() as session:
                for record in session.exec(select(PendingChange)).all():
                    session.delete(record)
                session.commit()
        except SQLAlchemyError as exc:
            logger.error("Could not clear pending entries: %s", exc)
            return False
        self._notify()
        return True

    # ----- queries -----
    def pending_ids(self) -> Set[str]:
        try:
            with self._session_factory() as session:
                return set(session.exec(select(PendingChange.entry_id)))
        except SQLAlchemyError as exc:
            logger.error("Could not read pending entries: %s", exc)
            return set()

    def count(self) -> int:
        try:
            with self._session_factory() as session:
                return int(session.exec(select(func.count()).select_from(PendingChange)).one())
        except SQLAlchemyError as exc:
            logger.error("Could not count pending entries: %s", exc)
            return 0

    @property
    def is_empty(self) -> bool:
        return self.count() == 0


__all__ = ["PendingChangeTracker"]
