"""Tests for the HTTP query and registration endpoints."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from scrobbles.config import Settings
from scrobbles.lastfm.base import Record, ScanWatermark
from scrobbles.main import create_app
from scrobbles.storage.history import RECORDS_KEY, HistoryStore, user_bucket
from scrobbles.storage.kv import KeyValueStore, StorePersistenceError
from scrobbles.tests.conftest import TEST_USER, make_record


def read_only_settings(db_path: Path) -> Settings:
    return Settings(db_path=str(db_path), sync_enabled=False, lastfm_api_key="")


@pytest.fixture
def app(store: HistoryStore, db_path: Path) -> FastAPI:
    application = create_app(read_only_settings(db_path))
    application.state.store = store
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_lists_registered_users(
        self, client: httpx.AsyncClient, store: HistoryStore
    ) -> None:
        await store.add_user("alice")
        await store.add_user("bob")

        response = await client.get("/status")

        assert response.status_code == 200
        assert response.json() == {"users": ["alice", "bob"]}

    @pytest.mark.asyncio
    async def test_status_empty(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/status")
        assert response.json() == {"users": []}

    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient, store: HistoryStore) -> None:
        await store.set_watermark(TEST_USER, ScanWatermark(TEST_USER, 1, 1, 1))

        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["synced_users"] == 1


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_user(self, client: httpx.AsyncClient, store: HistoryStore) -> None:
        response = await client.post(f"/user/{TEST_USER}")

        assert response.status_code == 200
        assert response.json() == {"username": TEST_USER}
        assert await store.get_users() == [TEST_USER]

    @pytest.mark.asyncio
    async def test_duplicate_registration_is_client_error(
        self, client: httpx.AsyncClient, store: HistoryStore
    ) -> None:
        await client.post(f"/user/{TEST_USER}")

        response = await client.post(f"/user/{TEST_USER}")

        assert response.status_code == 400
        assert response.json() == {"error": "user exist"}
        assert await store.get_users() == [TEST_USER]


class TestUserRecords:
    @pytest.mark.asyncio
    async def test_records_sorted_newest_first(
        self, client: httpx.AsyncClient, store: HistoryStore
    ) -> None:
        await store.append_records(TEST_USER, [make_record(200), make_record(100)])
        await store.append_records(TEST_USER, [make_record(400), make_record(300)])

        response = await client.get(f"/user/{TEST_USER}/records")

        assert response.status_code == 200
        assert [r["ts"] for r in response.json()] == [400, 300, 200, 100]

    @pytest.mark.asyncio
    async def test_record_shape(self, client: httpx.AsyncClient, store: HistoryStore) -> None:
        record = Record(
            track="Airbag", track_mbid="t-1", album="OK Computer", album_mbid="al-1",
            artist="Radiohead", artist_mbid="ar-1", date="23 Feb 2026, 21:00",
            timestamp=1771880400,
        )
        await store.append_records(TEST_USER, [record])

        body = (await client.get(f"/user/{TEST_USER}/records")).json()

        assert body == [{
            "track": {"name": "Airbag", "mbid": "t-1"},
            "album": {"name": "OK Computer", "mbid": "al-1"},
            "artist": {"name": "Radiohead", "mbid": "ar-1"},
            "ts": 1771880400,
        }]

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_records(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/user/nobody/records")
        assert response.status_code == 200
        assert response.json() == []


class TestUserStatus:
    @pytest.mark.asyncio
    async def test_status_after_scan(self, client: httpx.AsyncClient, store: HistoryStore) -> None:
        records = [make_record(300), make_record(200)]
        await store.commit_scan(TEST_USER, records, ScanWatermark(TEST_USER, 300, 1700, 2))

        response = await client.get(f"/user/{TEST_USER}/status")

        assert response.status_code == 200
        assert response.json() == {
            "lastScanRecordsFound": 2,
            "lastScanTimestamp": 1700,
            "lastScanMaxRecordTimestamp": 300,
            "totalRecords": 2,
        }

    @pytest.mark.asyncio
    async def test_unknown_user_status_is_zero(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/user/nobody/status")).json()
        assert body == {
            "lastScanRecordsFound": 0,
            "lastScanTimestamp": 0,
            "lastScanMaxRecordTimestamp": 0,
            "totalRecords": 0,
        }


class TestStoreErrors:
    @pytest.mark.asyncio
    async def test_store_failure_is_server_error(
        self, client: httpx.AsyncClient, store: HistoryStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            store, "get_records", AsyncMock(side_effect=StorePersistenceError("locked"))
        )

        response = await client.get(f"/user/{TEST_USER}/records")

        assert response.status_code == 500
        assert "error" in response.json()


class TestLifespan:
    def test_lifespan_opens_store_without_sync(self, db_path: Path) -> None:
        app = create_app(read_only_settings(db_path))

        with TestClient(app) as test_client:
            assert test_client.post("/user/alice").status_code == 200
            assert test_client.get("/status").json() == {"users": ["alice"]}
            assert test_client.get("/openapi.json").json()["info"]["title"] == "scrobbles API"

        assert db_path.exists()

    def test_sync_requires_api_key(self, db_path: Path) -> None:
        settings = Settings(db_path=str(db_path), sync_enabled=True, lastfm_api_key="")
        app = create_app(settings)

        with pytest.raises(RuntimeError, match="LASTFM_API_KEY"):
            with TestClient(app):
                pass


class TestCorruptHistory:
    @pytest.mark.asyncio
    async def test_wrong_shaped_record_log_is_server_error(
        self, client: httpx.AsyncClient, db_path: Path
    ) -> None:
        kv = KeyValueStore(db_path)
        async with kv.update() as tx:
            await tx.put(user_bucket(TEST_USER), RECORDS_KEY, "[1, 2]")

        for path in (f"/user/{TEST_USER}/records", f"/user/{TEST_USER}/status"):
            response = await client.get(path)
            assert response.status_code == 500
            assert response.json() == {"error": "Storage unavailable"}
