import pytest

from conftest import FakeTable
from services.errors import NETWORK_ERROR, UPLOAD_FAILED, RemoteRequestError, RemoteUnavailable, SyncError
from services.favorites import FavoritesService


class FavoritesTable(FakeTable):
    def __init__(self):
        super().__init__()
        self.fail_insert = None

    async def insert(self, rows):
        if self.fail_insert is not None:
            raise self.fail_insert
        await super().insert(rows)


@pytest.mark.asyncio
async def test_toggle_adds_then_removes():
    table = FavoritesTable()
    favorites = FavoritesService(table)

    assert await favorites.is_favorite("stamp-1") is False
    assert await favorites.toggle_favorite("stamp-1") is True
    assert await favorites.is_favorite("stamp-1") is True
    assert table.rows["stamp-1"]["stamp_id"] == "stamp-1"

    assert await favorites.toggle_favorite("stamp-1") is False
    assert await favorites.is_favorite("stamp-1") is False
    assert table.deleted == ["stamp-1"]


@pytest.mark.asyncio
async def test_unreachable_backend_reports_network_error():
    table = FavoritesTable()
    table.fail_select = RemoteUnavailable("offline")

    with pytest.raises(SyncError) as excinfo:
        await FavoritesService(table).toggle_favorite("stamp-1")

    assert excinfo.value.kind == NETWORK_ERROR


@pytest.mark.asyncio
async def test_rejected_insert_reports_upload_failure():
    table = FavoritesTable()
    table.fail_insert = RemoteRequestError(403, "permission denied")

    with pytest.raises(SyncError) as excinfo:
        await FavoritesService(table).toggle_favorite("stamp-1")

    assert excinfo.value.kind == UPLOAD_FAILED
    assert "permission denied" in excinfo.value.description
