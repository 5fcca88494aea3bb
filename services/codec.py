"""Conversion between local entries and rows of the remote ``stamps`` table."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from core.settings import SYNC
from datetime_utils import ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now
from models.entry import Entry
from services.errors import DecodingError, RemoteError
from services.photos import compress_jpeg, decode_inline, encode_inline, is_remote_reference


logger = logging.getLogger(__name__)

PHOTO_FIELD = "photo_url"


def photo_path(entry_id: str) -> str:
    return f"{entry_id}.jpg"


def _wire_coordinate(value: Optional[float]) -> Optional[float]:
    # Zero on either side means "no location".
    if value is None:
        return None
    number = float(value)
    return None if number == 0 else number


def _local_coordinate(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed coordinate %r", value)
        return None
    return None if number == 0 else number


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes"}
    return bool(value)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _timestamp(payload: Mapping[str, Any], *keys: str) -> Optional[datetime]:
    for key in keys:
        raw = payload.get(key)
        if raw in (None, ""):
            continue
        parsed = parse_rfc3339(str(raw))
        if parsed is None:
            raise DecodingError(f"invalid timestamp in {key!r}: {raw!r}")
        return parsed
    return None


@dataclass
class DecodedEntry:
    """A remote row converted to an entry; ``photo_reference`` still needs a download."""

    entry: Entry
    photo_reference: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.entry.id


class PayloadCodec:
    def __init__(
        self,
        storage=None,
        *,
        downloader=None,
        jpeg_quality: int = SYNC.photo_jpeg_quality,
    ) -> None:
        # ``storage`` receives uploads; ``downloader`` fetches URL photos and
        # may be set without it when uploads go inline.
        self.storage = storage
        self.downloader = downloader or storage
        self.jpeg_quality = jpeg_quality

    # ------------------------------------------------------------------
    # Encoding
    def encode(self, entry: Entry, *, updated_at: Optional[datetime] = None) -> Dict[str, Any]:
        """Build a wire row with the photo inlined as Base64."""

        row = self._base_row(entry, updated_at)
        row[PHOTO_FIELD] = encode_inline(entry.photo_data)
        return row

    async def encode_for_upload(
        self, entry: Entry, *, updated_at: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Build a wire row, moving the photo to object storage when available.

        A failed photo upload drops the photo column so the remote keeps
        whatever photo it already had; the rest of the entry still syncs.
        """

        if self.storage is None or not entry.photo_data:
            return self.encode(entry, updated_at=updated_at)

        row = self._base_row(entry, updated_at)
        data = compress_jpeg(entry.photo_data, self.jpeg_quality) or entry.photo_data
        path = photo_path(entry.id)
        try:
            await self.storage.upload(path, data, content_type="image/jpeg", overwrite=True)
            row[PHOTO_FIELD] = self.storage.public_url(path)
        except RemoteError as exc:
            logger.warning("Photo upload for entry %s failed, syncing without it: %s", entry.id, exc)
        return row

    def _base_row(self, entry: Entry, updated_at: Optional[datetime]) -> Dict[str, Any]:
        edited = ensure_utc(entry.edit_timestamp)
        changed = ensure_utc(updated_at) or utc_now()
        if edited is not None and changed < edited:
            changed = edited
        created = ensure_utc(entry.created_at) or edited
        return {
            "id": entry.id,
            "title": entry.title or "",
            "content": entry.notes or "",
            "location": entry.location or "",
            "date": to_rfc3339_utc(entry.date),
            "edit_date": to_rfc3339_utc(edited),
            "is_archived": bool(entry.is_archived),
            "latitude": _wire_coordinate(entry.latitude),
            "longitude": _wire_coordinate(entry.longitude),
            "created_at": to_rfc3339_utc(created),
            "updated_at": to_rfc3339_utc(changed),
        }

    # ------------------------------------------------------------------
    # Decoding
    def decode(self, payload: Any) -> DecodedEntry:
        """Convert a wire row; raises :class:`DecodingError` for malformed rows."""

        if not isinstance(payload, Mapping):
            raise DecodingError(f"expected an object, got {type(payload).__name__}")

        raw_id = payload.get("id")
        if not raw_id:
            raise DecodingError("row without id")
        entry_id = str(raw_id).strip()
        try:
            uuid.UUID(entry_id)
        except ValueError:
            raise DecodingError(f"row id is not a UUID: {entry_id!r}") from None

        # ``edit`` and ``deleted`` are column names of the first schema.
        edited = _timestamp(payload, "edit_date", "edit")
        if edited is None:
            raise DecodingError(f"row {entry_id} has no edit timestamp")
        event_date = _timestamp(payload, "date") or edited
        created = _timestamp(payload, "created_at") or edited
        updated = _timestamp(payload, "updated_at")

        archived = payload.get("is_archived")
        if archived is None:
            archived = payload.get("deleted", False)

        photo_value = payload.get(PHOTO_FIELD)
        if photo_value is None:
            photo_value = payload.get("photoData")
        photo_reference: Optional[str] = None
        photo_data: Optional[bytes] = None
        if isinstance(photo_value, str) and photo_value.strip():
            if is_remote_reference(photo_value):
                photo_reference = photo_value.strip()
            else:
                photo_data = decode_inline(photo_value)
                if photo_data is None:
                    logger.info("Entry %s carries an unreadable inline photo", entry_id)

        content = payload.get("content")
        if content is None:
            content = payload.get("notes")

        entry = Entry(
            id=entry_id,
            title=_as_text(payload.get("title")),
            location=_as_text(payload.get("location")),
            notes=_as_text(content),
            date=event_date,
            photo_data=photo_data,
            edit_timestamp=edited,
            is_archived=_as_bool(archived),
            latitude=_local_coordinate(payload.get("latitude")),
            longitude=_local_coordinate(payload.get("longitude")),
            created_at=created,
        )
        return DecodedEntry(entry=entry, photo_reference=photo_reference, updated_at=updated)

    async def resolve_photo(self, decoded: DecodedEntry) -> Entry:
        """Download a URL photo into the entry; any failure leaves it without one."""

        entry = decoded.entry
        if not decoded.photo_reference:
            return entry
        if self.downloader is None:
            logger.warning("No HTTP client to fetch the photo of entry %s", entry.id)
            return entry
        try:
            data = await self.downloader.download(decoded.photo_reference)
        except RemoteError as exc:
            logger.warning("Photo download for entry %s failed: %s", entry.id, exc)
            return entry
        entry.photo_data = data or None
        return entry

    async def decode_with_photo(self, payload: Any) -> Entry:
        return await self.resolve_photo(self.decode(payload))


__all__ = ["DecodedEntry", "PayloadCodec", "PHOTO_FIELD", "photo_path"]
