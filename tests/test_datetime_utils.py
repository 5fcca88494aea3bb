from datetime import datetime, timedelta, timezone

from datetime_utils import UTC, ensure_utc, parse_rfc3339, to_rfc3339_utc


def test_parse_rfc3339_postgrest_forms():
    expected = datetime(2024, 1, 1, 12, 30, 0, 123000, tzinfo=UTC)
    assert parse_rfc3339("2024-01-01T12:30:00.123Z") == expected
    assert parse_rfc3339("2024-01-01 12:30:00.123+00:00") == expected
    assert parse_rfc3339("2024-01-01T14:30:00.123+02") == expected
    assert parse_rfc3339("2024-01-01T12:30:00.123456789Z") == expected.replace(microsecond=123456)
    assert parse_rfc3339("2024-01-01T12:30:00+00") == expected.replace(microsecond=0)


def test_parse_rfc3339_rejects_garbage():
    assert parse_rfc3339(None) is None
    assert parse_rfc3339("") is None
    assert parse_rfc3339("yesterday") is None


def test_to_rfc3339_utc_keeps_microseconds_only_when_present():
    assert to_rfc3339_utc(datetime(2024, 1, 1, tzinfo=UTC)) == "2024-01-01T00:00:00Z"
    assert to_rfc3339_utc(datetime(2024, 1, 1, 0, 0, 0, 5, tzinfo=UTC)) == "2024-01-01T00:00:00.000005Z"
    assert to_rfc3339_utc(None) is None


def test_ensure_utc_treats_naive_as_utc():
    naive = datetime(2024, 1, 1, 8, 0)
    assert ensure_utc(naive) == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)
    shifted = datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(shifted).hour == 8
    assert ensure_utc(None) is None
