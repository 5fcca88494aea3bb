from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from core.settings import SUPABASE, SYNC, SupabaseSettings
from datetime_utils import ensure_utc, to_rfc3339_utc, utc_now
from models.entry import Entry
from services.blob_storage import SupabaseStorage
from services.codec import PayloadCodec, photo_path
from services.entries import EntryService
from services.errors import (
    DELETE_FAILED,
    NETWORK_ERROR,
    UPDATE_FAILED,
    UPLOAD_FAILED,
    DecodingError,
    RemoteError,
    RemoteUnavailable,
    SyncError,
)
from services.pending_changes import PendingChangeTracker
from services.remote import SupabaseTable, build_client, gte
from services.sync_status import SyncStatus, SyncStatusPublisher
from storage.checkpoint import CheckpointStorage


def _ensure_logger() -> logging.Logger:
    logger = logging.getLogger("stamp.sync")
    if not logger.handlers:
        log_path = Path(SYNC.log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_path,
            maxBytes=SYNC.log_max_bytes,
            backupCount=SYNC.log_backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


@dataclass
class SyncResult:
    skipped: bool = False
    error: Optional[SyncError] = None
    downloaded: int = 0
    unchanged: int = 0
    uploaded: int = 0
    conflicts_kept_local: int = 0
    decode_failures: int = 0
    apply_failures: int = 0
    pruned: int = 0
    skipped_deleted: int = 0

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None


class SyncService:
    """Two-way delta sync between the local entry store and the remote table.

    One pass: download rows changed since the checkpoint, apply them locally,
    upload local changes (edited since the checkpoint or pending), then move
    the checkpoint to the instant the pass started. At most one pass runs at
    a time; the checkpoint only moves after a fully successful pass.
    """

    def __init__(
        self,
        entries: EntryService,
        tracker: PendingChangeTracker,
        checkpoint: CheckpointStorage,
        remote: SupabaseTable,
        codec: PayloadCodec,
        status: Optional[SyncStatusPublisher] = None,
        *,
        storage: Optional[SupabaseStorage] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.entries = entries
        self.tracker = tracker
        self.checkpoint = checkpoint
        self.remote = remote
        self.codec = codec
        self.status_publisher = status or SyncStatusPublisher(SYNC.status_reset_delay_sec)
        self.storage = storage
        self.clock = clock
        self.logger = _ensure_logger()
        self._lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Event hooks from EntryService
    def attach(self, entries: Optional[EntryService] = None) -> None:
        store = entries or self.entries
        for event in ("after_create", "after_update", "after_archive", "after_restore"):
            store.subscribe(event, self.on_entry_changed)
        store.subscribe("after_delete", self.on_entry_deleted)

    def on_entry_changed(self, entry_id: str) -> None:
        self.logger.debug("Entry changed locally: %s", entry_id)
        self.tracker.mark_pending(entry_id)

    def on_entry_deleted(self, entry_id: str) -> None:
        self.logger.debug("Entry deleted locally: %s", entry_id)
        self.tracker.clear_pending([entry_id])

    # ------------------------------------------------------------------
    # Public API
    @property
    def status(self) -> SyncStatus:
        return self.status_publisher.status

    @property
    def has_pending_changes(self) -> bool:
        return not self.tracker.is_empty

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def mark_for_sync(self, entry_id: str) -> bool:
        return self.tracker.mark_pending(entry_id)

    def clear_pending_changes(self) -> bool:
        self.logger.warning("Pending changes cleared manually")
        return self.tracker.clear_all()

    def sync_in_background(self) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning("Background sync requested without a running event loop")
            return None
        task = loop.create_task(self.perform_sync())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def perform_sync(self) -> SyncResult:
        if self._lock.locked():
            self.logger.info("Sync already in progress, skipping")
            return SyncResult(skipped=True)

        async with self._lock:
            self.status_publisher.begin()
            result = SyncResult()
            try:
                await self._run_pass(result)
            except asyncio.CancelledError:
                self.logger.warning("Sync cancelled; checkpoint left unchanged")
                self._record_error("Sync cancelled")
                self.status_publisher.fail("Sync cancelled")
                raise
            except SyncError as exc:
                result.error = exc
            except Exception as exc:  # pragma: no cover
                self.logger.exception("Sync crashed")
                result.error = SyncError(UPDATE_FAILED, str(exc) or exc.__class__.__name__)

            if result.error is not None:
                self.logger.error("Sync failed: %s", result.error.description)
                self._record_error(result.error.description)
                self.status_publisher.fail(result.error.description)
            else:
                self.status_publisher.succeed()
            return result

    async def delete_entry_permanently(self, entry_id: str) -> SyncResult:
        """Delete locally, drop from the pending set and delete remotely.

        A remote failure keeps the id in the checkpoint's deletion queue; the
        next sync pass retries it.
        """

        result = SyncResult()
        async with self._lock:
            try:
                self.entries.delete_permanently(entry_id, emit=False)
            except SQLAlchemyError as exc:
                self.logger.error("Local delete of %s failed: %s", entry_id, exc)
                result.error = SyncError(UPDATE_FAILED, f"local delete of {entry_id}: {exc}")
                return result
            self.tracker.clear_pending([entry_id])
            try:
                await self._delete_remote(entry_id)
            except SyncError as exc:
                self.logger.warning("Remote delete of %s deferred: %s", entry_id, exc)
                self._queue_delete(entry_id)
                result.error = exc
        return result

    def status_report(self) -> dict:
        last_error = self.checkpoint.get_last_error()
        return {
            "state": str(self.status),
            "lastSyncTimestamp": to_rfc3339_utc(self.checkpoint.last_sync),
            "lastSuccessAt": to_rfc3339_utc(self.checkpoint.get_last_success()),
            "lastError": last_error,
            "pendingChanges": self.tracker.count(),
            "pendingDeletes": self.checkpoint.pending_deletes(),
        }

    # ------------------------------------------------------------------
    # One pass
    async def _run_pass(self, result: SyncResult) -> None:
        since = self.checkpoint.last_sync
        started_at = self.clock()
        self.logger.info("Sync started; changes since %s", to_rfc3339_utc(since))

        await self._retry_pending_deletes()

        rows = await self._download(since)
        applied = await self._apply_remote(rows, result)
        await self._upload(since, applied, result)

        try:
            self.checkpoint.set_last_sync(started_at)
            self.checkpoint.record_success(self.clock())
        except OSError as exc:
            # Next pass re-fetches from the old checkpoint.
            self.logger.error("Could not persist sync checkpoint: %s", exc)
        self.logger.info(
            "Sync finished: downloaded=%s unchanged=%s uploaded=%s kept_local=%s skipped_rows=%s",
            result.downloaded,
            result.unchanged,
            result.uploaded,
            result.conflicts_kept_local,
            result.decode_failures + result.apply_failures,
        )

    # ------------------------------------------------------------------
    # Download helpers
    async def _download(self, since: datetime) -> List[dict]:
        try:
            rows = await self.remote.select(
                [gte("updated_at", since)],
                order_by="updated_at",
                descending=True,
            )
        except RemoteError as exc:
            raise SyncError(NETWORK_ERROR, f"download failed: {exc}") from exc
        self.logger.info("Downloaded %d remote rows", len(rows))
        return rows

    async def _apply_remote(self, rows: List[dict], result: SyncResult) -> Set[str]:
        applied: Set[str] = set()
        deleted = set(self.checkpoint.pending_deletes())
        for row in rows:
            try:
                decoded = self.codec.decode(row)
            except DecodingError as exc:
                result.decode_failures += 1
                self.logger.warning("Skipping malformed remote row: %s", exc.message)
                continue

            entry_id = decoded.id
            if entry_id in deleted:
                # Remote delete still queued; the row must not come back.
                result.skipped_deleted += 1
                self.logger.info("Skipping remote row %s: deleted locally, remote delete pending", entry_id)
                continue
            try:
                local = self.entries.get(entry_id)
            except SQLAlchemyError as exc:
                result.apply_failures += 1
                self.logger.error("Could not read local entry %s: %s", entry_id, exc)
                continue

            remote_edit = ensure_utc(decoded.entry.edit_timestamp)
            if local is not None:
                local_edit = ensure_utc(local.edit_timestamp)
                if remote_edit == local_edit:
                    result.unchanged += 1
                    continue
                if remote_edit < local_edit:
                    self.logger.info("Local entry %s newer than remote copy, keeping local", entry_id)
                    self.tracker.mark_pending(entry_id)
                    result.conflicts_kept_local += 1
                    continue

            entry = await self.codec.resolve_photo(decoded)
            if decoded.photo_reference and entry.photo_data is None and local is not None:
                # Unreachable photo: do not wipe the copy we already have.
                entry.photo_data = local.photo_data
            if not self._apply_entry(entry, result):
                continue
            applied.add(entry_id)
            if entry.is_archived:
                self.logger.info("Remote entry %s is archived; stored as archived", entry_id)

        if applied:
            # Remote copies are newer than any pending local edit of these ids.
            self.tracker.clear_pending(applied)
        return applied

    def _apply_entry(self, entry: Entry, result: SyncResult) -> bool:
        try:
            self.entries.upsert(entry)
        except SQLAlchemyError as exc:
            result.apply_failures += 1
            self.logger.error("%s: entry %s: %s", UPDATE_FAILED, entry.id, exc)
            return False
        result.downloaded += 1
        return True

    # ------------------------------------------------------------------
    # Upload helpers
    def _collect_changes(self, since: datetime, applied: Set[str], result: SyncResult) -> List[Entry]:
        try:
            pruned = self.tracker.prune_orphans(self.entries.existing_ids())
            result.pruned = len(pruned)
            pending = self.tracker.pending_ids()
            changes: Dict[str, Entry] = {
                entry.id: entry
                for entry in self.entries.fetch_modified_since(since)
                if entry.id not in applied
            }
            for entry in self.entries.fetch_by_ids(pending - set(changes)):
                changes.setdefault(entry.id, entry)
        except SQLAlchemyError as exc:
            raise SyncError(UPDATE_FAILED, f"could not read local changes: {exc}") from exc
        return sorted(changes.values(), key=lambda e: ensure_utc(e.edit_timestamp))

    async def _upload(self, since: datetime, applied: Set[str], result: SyncResult) -> None:
        changes = self._collect_changes(since, applied, result)
        if not changes:
            self.logger.info("Nothing to upload")
            return

        uploaded: List[str] = []
        for entry in changes:
            try:
                row = await self.codec.encode_for_upload(entry, updated_at=self.clock())
                await self.remote.upsert([row])
            except RemoteUnavailable as exc:
                raise SyncError(NETWORK_ERROR, f"upload of {entry.id} failed: {exc}") from exc
            except RemoteError as exc:
                raise SyncError(UPLOAD_FAILED, f"upload of {entry.id} failed: {exc}") from exc
            uploaded.append(entry.id)
            self.logger.debug("Uploaded entry %s", entry.id)

        # Only a fully uploaded batch clears the pending set.
        self.tracker.clear_pending(uploaded)
        result.uploaded = len(uploaded)

    # ------------------------------------------------------------------
    # Remote deletions
    async def _delete_remote(self, entry_id: str) -> None:
        try:
            await self.remote.delete(entry_id)
        except RemoteError as exc:
            raise SyncError(DELETE_FAILED, f"remote delete of {entry_id}: {exc}") from exc
        self._discard_queued_delete(entry_id)
        if self.storage is not None:
            try:
                await self.storage.remove([photo_path(entry_id)])
            except RemoteError as exc:
                self.logger.warning("Photo of deleted entry %s left in storage: %s", entry_id, exc)

    async def _retry_pending_deletes(self) -> None:
        for entry_id in self.checkpoint.pending_deletes():
            try:
                await self._delete_remote(entry_id)
                self.logger.info("Deferred remote delete of %s done", entry_id)
            except SyncError as exc:
                self.logger.warning("Deferred remote delete still failing: %s", exc.message)

    def _queue_delete(self, entry_id: str) -> None:
        try:
            self.checkpoint.add_pending_delete(entry_id)
        except OSError as exc:
            self.logger.error("Could not queue remote delete of %s: %s", entry_id, exc)

    def _discard_queued_delete(self, entry_id: str) -> None:
        try:
            self.checkpoint.discard_pending_delete(entry_id)
        except OSError as exc:
            self.logger.error("Could not update deletion queue for %s: %s", entry_id, exc)

    def _record_error(self, message: str) -> None:
        try:
            self.checkpoint.record_error(message, self.clock())
        except OSError as exc:
            self.logger.error("Could not persist sync error: %s", exc)


def build_sync_service(
    settings: SupabaseSettings = SUPABASE,
    *,
    entries: Optional[EntryService] = None,
    tracker: Optional[PendingChangeTracker] = None,
    checkpoint: Optional[CheckpointStorage] = None,
    client=None,
) -> SyncService:
    """Wire a :class:`SyncService` against the configured Supabase project."""

    if not settings.enabled:
        raise RuntimeError("Supabase is not configured (STAMP_SUPABASE_URL / STAMP_SUPABASE_KEY)")
    client = client or build_client(settings)
    remote = SupabaseTable(client, settings.entries_table)
    storage = SupabaseStorage(client, settings.photo_bucket)
    codec = PayloadCodec(storage if settings.photo_storage else None, downloader=storage)
    service = SyncService(
        entries or EntryService(),
        tracker or PendingChangeTracker(),
        checkpoint or CheckpointStorage(),
        remote,
        codec,
        storage=storage,
    )
    service.attach()
    return service


__all__ = ["SyncResult", "SyncService", "build_sync_service"]
