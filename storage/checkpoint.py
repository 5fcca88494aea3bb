"""Durable sync checkpoint kept next to the local database."""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.settings import SYNC
from datetime_utils import EPOCH, ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now


logger = logging.getLogger(__name__)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return ensure_utc(parse_rfc3339(value)) if value else None


class CheckpointStorage:
    """JSON document holding ``lastSyncTimestamp`` and related sync state."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or SYNC.checkpoint_path)

    # ------------------------------------------------------------------
    # generic helpers
    def _load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Unreadable sync checkpoint %s: %s", self.path, exc)
            return {}
        if isinstance(data, dict):
            return data
        return {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, ensure_ascii=False, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError:
                    pass

    # ------------------------------------------------------------------
    # Checkpoint
    @property
    def last_sync(self) -> datetime:
        data = self._load()
        return _parse_datetime(data.get("lastSyncTimestamp")) or EPOCH

    def set_last_sync(self, moment: datetime) -> None:
        data = self._load()
        data["lastSyncTimestamp"] = to_rfc3339_utc(moment)
        self._save(data)

    # ------------------------------------------------------------------
    # Outcome bookkeeping
    def record_success(self, moment: Optional[datetime] = None) -> None:
        data = self._load()
        data["lastSuccessAt"] = to_rfc3339_utc(ensure_utc(moment) if moment else utc_now())
        data.pop("lastError", None)
        self._save(data)

    def record_error(self, message: str, moment: Optional[datetime] = None) -> None:
        data = self._load()
        data["lastError"] = {
            "message": message[:1000],
            "at": to_rfc3339_utc(ensure_utc(moment) if moment else utc_now()),
        }
        self._save(data)

    def get_last_success(self) -> Optional[datetime]:
        return _parse_datetime(self._load().get("lastSuccessAt"))

    def get_last_error(self) -> Optional[Dict[str, Any]]:
        value = self._load().get("lastError")
        return value if isinstance(value, dict) else None

    # ------------------------------------------------------------------
    # Remote deletions that could not be confirmed yet
    def pending_deletes(self) -> List[str]:
        value = self._load().get("pendingDeletes")
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item]

    def add_pending_delete(self, entry_id: str) -> None:
        data = self._load()
        current = [str(item) for item in data.get("pendingDeletes") or [] if item]
        if entry_id not in current:
            current.append(entry_id)
        data["pendingDeletes"] = current
        self._save(data)

    def discard_pending_delete(self, entry_id: str) -> None:
        data = self._load()
        current = [str(item) for item in data.get("pendingDeletes") or [] if item]
        if entry_id in current:
            current.remove(entry_id)
            data["pendingDeletes"] = current
            self._save(data)

    # ------------------------------------------------------------------
    def reset(self) -> None:
        if self.path.exists():
            self.path.unlink()


__all__ = ["CheckpointStorage"]
