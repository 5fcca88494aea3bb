import base64
import uuid
from datetime import datetime, timedelta

import pytest

from conftest import FakeStorage, jpeg_bytes
from datetime_utils import UTC, parse_rfc3339
from models.entry import Entry
from services.codec import PHOTO_FIELD, PayloadCodec, photo_path
from services.errors import DECODING_ERROR, DecodingError, RemoteUnavailable
from services.photos import compress_jpeg, decode_inline, is_remote_reference


EDITED = datetime(2024, 4, 2, 9, 30, 15, 250000, tzinfo=UTC)


def _entry(**overrides):
    values = dict(
        id=str(uuid.uuid4()),
        title="Lisbon",
        location="Portugal",
        notes="Tram 28",
        date=datetime(2024, 4, 1, tzinfo=UTC),
        edit_timestamp=EDITED,
        created_at=datetime(2024, 3, 30, tzinfo=UTC),
    )
    values.update(overrides)
    return Entry(**values)


def test_encode_maps_notes_to_content_and_keeps_microseconds():
    row = PayloadCodec().encode(_entry(), updated_at=EDITED + timedelta(seconds=5))

    assert row["content"] == "Tram 28"
    assert row["edit_date"] == "2024-04-02T09:30:15.250000Z"
    assert row["updated_at"] == "2024-04-02T09:30:20.250000Z"
    assert row["is_archived"] is False
    assert row[PHOTO_FIELD] is None


def test_encode_never_stamps_updated_at_before_the_edit():
    row = PayloadCodec().encode(_entry(), updated_at=EDITED - timedelta(days=1))
    assert parse_rfc3339(row["updated_at"]) == EDITED


def test_missing_location_goes_out_as_null_and_zero_comes_back_as_none():
    codec = PayloadCodec()
    row = codec.encode(_entry(latitude=0.0, longitude=0.0), updated_at=EDITED)
    assert row["latitude"] is None and row["longitude"] is None

    row["latitude"] = 0
    row["longitude"] = 0
    decoded = codec.decode(row)
    assert decoded.entry.latitude is None
    assert decoded.entry.longitude is None
    assert not decoded.entry.has_location


def test_real_coordinates_survive_the_trip():
    codec = PayloadCodec()
    decoded = codec.decode(codec.encode(_entry(latitude=38.71, longitude=-9.14), updated_at=EDITED))
    assert decoded.entry.latitude == pytest.approx(38.71)
    assert decoded.entry.longitude == pytest.approx(-9.14)


def test_inline_photo_is_decoded_from_plain_base64_and_data_uri():
    codec = PayloadCodec()
    image = jpeg_bytes()
    row = codec.encode(_entry(photo_data=image), updated_at=EDITED)
    assert codec.decode(row).entry.photo_data == image

    row[PHOTO_FIELD] = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")
    decoded = codec.decode(row)
    assert decoded.entry.photo_data == image
    assert decoded.photo_reference is None


def test_url_photo_is_left_for_download():
    codec = PayloadCodec()
    row = codec.encode(_entry(), updated_at=EDITED)
    row[PHOTO_FIELD] = FakeStorage.BASE + "abc.jpg"

    decoded = codec.decode(row)

    assert decoded.photo_reference == FakeStorage.BASE + "abc.jpg"
    assert decoded.entry.photo_data is None


def test_malformed_base64_photo_means_no_photo():
    codec = PayloadCodec()
    row = codec.encode(_entry(), updated_at=EDITED)
    row[PHOTO_FIELD] = "%%% not base64 %%%"

    decoded = codec.decode(row)

    assert decoded.entry.photo_data is None
    assert decoded.entry.title == "Lisbon"


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "an", "object"],
        {"title": "no id", "edit_date": "2024-01-01T00:00:00Z"},
        {"id": "12345", "edit_date": "2024-01-01T00:00:00Z"},
        {"id": str(uuid.uuid4()), "title": "no edit date"},
        {"id": str(uuid.uuid4()), "edit_date": "yesterday"},
    ],
)
def test_malformed_rows_raise_decoding_error(payload):
    with pytest.raises(DecodingError) as excinfo:
        PayloadCodec().decode(payload)
    assert excinfo.value.kind == DECODING_ERROR


def test_first_schema_column_names_are_accepted():
    entry_id = str(uuid.uuid4())
    decoded = PayloadCodec().decode(
        {
            "id": entry_id,
            "title": "Old row",
            "notes": "from the first schema",
            "edit": "2023-07-01 10:00:00+00",
            "deleted": True,
            "photoData": base64.b64encode(b"\xff\xd8raw").decode("ascii"),
        }
    )

    assert decoded.id == entry_id
    assert decoded.entry.notes == "from the first schema"
    assert decoded.entry.is_archived is True
    assert decoded.entry.edit_timestamp == datetime(2023, 7, 1, 10, tzinfo=UTC)
    assert decoded.entry.photo_data == b"\xff\xd8raw"


@pytest.mark.asyncio
async def test_encode_for_upload_moves_photo_to_storage():
    storage = FakeStorage()
    codec = PayloadCodec(storage)
    entry = _entry(photo_data=jpeg_bytes("green"))

    row = await codec.encode_for_upload(entry, updated_at=EDITED)

    assert row[PHOTO_FIELD] == FakeStorage.BASE + photo_path(entry.id)
    assert storage.objects[photo_path(entry.id)][:2] == b"\xff\xd8"


@pytest.mark.asyncio
async def test_encode_for_upload_omits_photo_column_when_storage_fails():
    storage = FakeStorage()
    storage.fail_upload = RemoteUnavailable("offline")
    codec = PayloadCodec(storage)

    row = await codec.encode_for_upload(_entry(photo_data=jpeg_bytes()), updated_at=EDITED)

    assert PHOTO_FIELD not in row
    assert row["title"] == "Lisbon"


@pytest.mark.asyncio
async def test_encode_for_upload_without_storage_inlines_photo():
    image = jpeg_bytes()
    row = await PayloadCodec().encode_for_upload(_entry(photo_data=image), updated_at=EDITED)
    assert base64.b64decode(row[PHOTO_FIELD]) == image


@pytest.mark.asyncio
async def test_unreachable_photo_url_decodes_without_photo():
    storage = FakeStorage()
    codec = PayloadCodec(downloader=storage)
    row = codec.encode(_entry(), updated_at=EDITED)
    row[PHOTO_FIELD] = FakeStorage.BASE + "missing.jpg"

    entry = await codec.decode_with_photo(row)

    assert entry.photo_data is None
    assert entry.title == "Lisbon"


def test_compress_jpeg_rejects_non_images_and_recompresses_images():
    assert compress_jpeg(b"plain text") is None
    assert compress_jpeg(b"") is None
    compressed = compress_jpeg(jpeg_bytes(size=(20, 20)), quality=40)
    assert compressed is not None and compressed[:2] == b"\xff\xd8"


def test_photo_value_helpers():
    assert is_remote_reference("https://example.com/a.jpg")
    assert is_remote_reference(" HTTP://example.com/a.jpg")
    assert not is_remote_reference("aGVsbG8=")
    assert decode_inline("aGVsbG8=") == b"hello"
    assert decode_inline("data:text/plain,hello") is None
    assert decode_inline("") is None
