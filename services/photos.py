"""Photo helpers: JPEG recompression and the inline Base64 wire form."""
from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)

REMOTE_PREFIXES = ("http://", "https://")
DATA_URI_PREFIX = "data:"


def is_remote_reference(value: Optional[str]) -> bool:
    """True when a wire photo value points at object storage."""

    if not value:
        return False
    return value.strip().lower().startswith(REMOTE_PREFIXES)


def compress_jpeg(data: bytes, quality: int = 70) -> Optional[bytes]:
    """Re-encode image bytes as JPEG; ``None`` when the bytes are not an image."""

    if not data:
        return None
    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=max(1, min(int(quality), 95)))
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.debug("Photo is not a decodable image: %s", exc)
        return None


def encode_inline(data: Optional[bytes]) -> Optional[str]:
    if not data:
        return None
    return base64.b64encode(data).decode("ascii")


def decode_inline(value: Optional[str]) -> Optional[bytes]:
    """Decode plain Base64 or a ``data:...;base64,`` URI; junk decodes to ``None``."""

    if not value:
        return None
    text = value.strip()
    if text.lower().startswith(DATA_URI_PREFIX):
        header, sep, text = text.partition(",")
        if not sep or ";base64" not in header.lower():
            return None
    try:
        raw = base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw or None


__all__ = [
    "compress_jpeg",
    "decode_inline",
    "encode_inline",
    "is_remote_reference",
]
