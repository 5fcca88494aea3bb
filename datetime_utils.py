from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


UTC = timezone.utc

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def next_edit_timestamp(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return a timestamp strictly later than ``previous``.

    Clocks may report the same instant twice (or step backwards); edits must
    still order after each other on one device.
    """

    current = ensure_utc(now) if now is not None else utc_now()
    last = ensure_utc(previous)
    if last is not None and current <= last:
        return last + timedelta(microseconds=1)
    return current


def _normalize_fraction(s: str) -> str:
    """Pad or trim fractional seconds to 6 digits."""

    digits = s[:6]
    if len(digits) < 6:
        digits = digits + "0" * (6 - len(digits))
    return digits


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse a RFC3339 string and return a timezone-aware UTC datetime.

    PostgREST renders ``timestamptz`` as ``2024-01-01T00:00:00.123+00:00`` and
    sometimes with a space separator; both forms are accepted.
    """

    if not s:
        return None

    value = str(s).strip()
    if not value:
        return None

    if len(value) > 10 and value[10] == " ":
        value = value[:10] + "T" + value[11:]

    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    elif len(value) > 19 and value[-3] in "+-" and value[-2:].isdigit():
        value = value + ":00"

    if "." in value:
        head, tail = value.split(".", 1)
        tz_sign = "+"
        tz_suffix = "00:00"
        if "+" in tail:
            frac, tz_suffix = tail.split("+", 1)
            tz_sign = "+"
        elif "-" in tail:
            frac, tz_suffix = tail.split("-", 1)
            tz_sign = "-"
        else:
            frac = tail
        if len(tz_suffix) == 2:
            tz_suffix = f"{tz_suffix}:00"
        frac = _normalize_fraction(frac)
        value = f"{head}.{frac}{tz_sign}{tz_suffix}"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def to_rfc3339_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to RFC3339 in UTC, keeping microseconds."""

    if dt is None:
        return None
    value = ensure_utc(dt)
    if value is None:
        return None
    text = value.isoformat(timespec="microseconds" if value.microsecond else "seconds")
    return text.replace("+00:00", "Z")


__all__ = [
    "EPOCH",
    "UTC",
    "ensure_utc",
    "next_edit_timestamp",
    "parse_rfc3339",
    "to_rfc3339_utc",
    "utc_now",
]
