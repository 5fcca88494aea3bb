"""Error types shared by the sync clients and the sync engine."""
from __future__ import annotations

from typing import Optional


NETWORK_ERROR = "network_error"
UPLOAD_FAILED = "upload_failed"
DELETE_FAILED = "delete_failed"
UPDATE_FAILED = "update_failed"
DECODING_ERROR = "decoding_error"

ERROR_KINDS = {NETWORK_ERROR, UPLOAD_FAILED, DELETE_FAILED, UPDATE_FAILED, DECODING_ERROR}


class SyncError(Exception):
    """A failure the sync engine reports through its status."""

    def __init__(self, kind: str, message: str):
        if kind not in ERROR_KINDS:
            raise ValueError(f"Unsupported sync error kind: {kind}")
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def description(self) -> str:
        labels = {
            NETWORK_ERROR: "Network error",
            UPLOAD_FAILED: "Upload failed",
            DELETE_FAILED: "Delete failed",
            UPDATE_FAILED: "Update failed",
            DECODING_ERROR: "Decoding error",
        }
        return f"{labels[self.kind]}: {self.message}"

    def __repr__(self) -> str:
        return f"SyncError({self.kind!r}, {self.message!r})"


class DecodingError(SyncError):
    def __init__(self, message: str):
        super().__init__(DECODING_ERROR, message)


class RemoteError(Exception):
    """Base class for failures talking to the hosted backend."""


class RemoteUnavailable(RemoteError):
    """Transport failure: DNS, connect, TLS, timeout."""


class RemoteRequestError(RemoteError):
    """The backend answered with a non-success status."""

    def __init__(self, status: int, message: str, *, code: Optional[str] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.code = code


__all__ = [
    "DECODING_ERROR",
    "DELETE_FAILED",
    "NETWORK_ERROR",
    "UPDATE_FAILED",
    "UPLOAD_FAILED",
    "DecodingError",
    "RemoteError",
    "RemoteRequestError",
    "RemoteUnavailable",
    "SyncError",
]
