"""Favourite flags for stamps, kept only on the remote side."""
from __future__ import annotations

import logging

from datetime_utils import to_rfc3339_utc, utc_now
from services.errors import (
    DELETE_FAILED,
    NETWORK_ERROR,
    UPLOAD_FAILED,
    RemoteError,
    RemoteUnavailable,
    SyncError,
)
from services.remote import SupabaseTable, eq


logger = logging.getLogger(__name__)


def _as_sync_error(exc: RemoteError, kind: str, action: str) -> SyncError:
    if isinstance(exc, RemoteUnavailable):
        return SyncError(NETWORK_ERROR, f"{action}: {exc}")
    return SyncError(kind, f"{action}: {exc}")


class FavoritesService:
    def __init__(self, table: SupabaseTable) -> None:
        self.table = table

    async def is_favorite(self, stamp_id: str) -> bool:
        try:
            rows = await self.table.select([eq("stamp_id", stamp_id)], columns="stamp_id")
        except RemoteError as exc:
            raise _as_sync_error(exc, NETWORK_ERROR, f"favourite status of {stamp_id}") from exc
        return bool(rows)

    async def toggle_favorite(self, stamp_id: str) -> bool:
        """Flip the favourite flag and return the new state."""

        if await self.is_favorite(stamp_id):
            try:
                await self.table.delete_where([eq("stamp_id", stamp_id)])
            except RemoteError as exc:
                raise _as_sync_error(exc, DELETE_FAILED, f"unfavourite {stamp_id}") from exc
            logger.info("Stamp %s removed from favourites", stamp_id)
            return False

        try:
            await self.table.insert([{"stamp_id": stamp_id, "created_at": to_rfc3339_utc(utc_now())}])
        except RemoteError as exc:
            raise _as_sync_error(exc, UPLOAD_FAILED, f"favourite {stamp_id}") from exc
        logger.info("Stamp %s added to favourites", stamp_id)
        return True


__all__ = ["FavoritesService"]
