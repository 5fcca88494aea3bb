from __future__ import annotations

import io
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from PIL import Image
from sqlmodel import Session, SQLModel, create_engine

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import models  # noqa: F401  (registers the tables)
from datetime_utils import UTC, parse_rfc3339
from services.codec import PayloadCodec
from services.entries import EntryService
from services.errors import RemoteRequestError, RemoteUnavailable
from services.pending_changes import PendingChangeTracker
from services.sync_service import SyncService
from services.sync_status import SyncStatusPublisher
from storage.checkpoint import CheckpointStorage


def make_session_factory():
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def session_factory():
    return make_session_factory()


class FakeTable:
    """In-memory stand-in for :class:`services.remote.SupabaseTable`."""

    def __init__(self, rows: Optional[List[dict]] = None):
        self.rows: Dict[str, dict] = {}
        self.extra_rows: List[object] = []
        for row in rows or []:
            self.rows[str(row["id"])] = dict(row)
        self.select_calls: list = []
        self.upserted: List[dict] = []
        self.deleted: List[str] = []
        self.fail_select: Optional[Exception] = None
        self.fail_upsert_ids: Dict[str, Exception] = {}
        self.fail_delete: Optional[Exception] = None
        self.before_select = None

    @staticmethod
    def _matches(row: dict, flt) -> bool:
        value = row.get(flt.column)
        if flt.operator == "gte":
            left = parse_rfc3339(value) if isinstance(value, str) else value
            right = parse_rfc3339(flt.value)
            return left is not None and right is not None and left >= right
        if flt.operator == "eq":
            return str(value) == flt.value
        raise AssertionError(f"unexpected operator {flt.operator}")

    async def select(self, filters=(), *, order_by=None, descending=False, columns="*"):
        self.select_calls.append((list(filters), order_by, descending))
        if self.before_select is not None:
            await self.before_select()
        if self.fail_select is not None:
            raise self.fail_select
        rows = [dict(r) for r in self.rows.values() if all(self._matches(r, f) for f in filters)]
        if order_by:
            rows.sort(key=lambda r: parse_rfc3339(r.get(order_by)) or datetime.min.replace(tzinfo=UTC), reverse=descending)
        return rows + list(self.extra_rows)

    async def upsert(self, rows, *, on_conflict="id"):
        for row in rows:
            failure = self.fail_upsert_ids.get(row["id"])
            if failure is not None:
                raise failure
            merged = dict(self.rows.get(row["id"], {}))
            merged.update(row)
            self.rows[row["id"]] = merged
            self.upserted.append(dict(row))

    async def insert(self, rows):
        for row in rows:
            key = str(row.get("id") or row.get("stamp_id"))
            self.rows[key] = dict(row)

    async def delete_where(self, filters):
        if self.fail_delete is not None:
            raise self.fail_delete
        for key, row in list(self.rows.items()):
            if all(self._matches(row, f) for f in filters):
                del self.rows[key]
                self.deleted.append(key)

    async def delete(self, entry_id):
        if self.fail_delete is not None:
            raise self.fail_delete
        self.rows.pop(entry_id, None)
        self.deleted.append(entry_id)


class FakeStorage:
    BASE = "https://project.supabase.test/storage/v1/object/public/stamp-photos/"

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.removed: List[str] = []
        self.fail_upload: Optional[Exception] = None
        self.fail_download: Optional[Exception] = None

    async def upload(self, path, data, *, content_type="image/jpeg", overwrite=True):
        if self.fail_upload is not None:
            raise self.fail_upload
        if not overwrite and path in self.objects:
            raise RemoteRequestError(409, "exists")
        self.objects[path] = bytes(data)

    def public_url(self, path):
        return self.BASE + path

    async def download(self, url):
        if self.fail_download is not None:
            raise self.fail_download
        path = url[len(self.BASE):] if url.startswith(self.BASE) else None
        if path not in self.objects:
            raise RemoteRequestError(404, "not found")
        return self.objects[path]

    async def remove(self, paths):
        for path in paths:
            self.objects.pop(path, None)
            self.removed.append(path)


class StepClock:
    """Monotonic fake clock: every call moves forward one second."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


def jpeg_bytes(color: str = "red", size=(8, 6)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


class Device:
    """Local side of one installation: store, tracker, checkpoint and engine."""

    def __init__(self, tmp_path, name, remote, storage=None, clock=None):
        self.session_factory = make_session_factory()
        self.entries = EntryService(self.session_factory)
        self.tracker = PendingChangeTracker(self.session_factory)
        self.checkpoint = CheckpointStorage(tmp_path / f"{name}_sync_state.json")
        self.codec = PayloadCodec(storage)
        self.status = SyncStatusPublisher(reset_delay=0.05)
        self.service = SyncService(
            self.entries,
            self.tracker,
            self.checkpoint,
            remote,
            self.codec,
            self.status,
            storage=storage,
            clock=clock or StepClock(),
        )
        self.service.attach()


@pytest.fixture()
def remote():
    return FakeTable()


@pytest.fixture()
def storage():
    return FakeStorage()


@pytest.fixture()
def device(tmp_path, remote):
    return Device(tmp_path, "device", remote)


__all__ = [
    "Device",
    "FakeStorage",
    "FakeTable",
    "RemoteRequestError",
    "RemoteUnavailable",
    "StepClock",
    "jpeg_bytes",
    "make_session_factory",
]
