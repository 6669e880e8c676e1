"""Tests for the FastAPI app (app.py) routes and caching behaviour."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

from archive_index import ArchiveFiles
from helpers import local_ts, make_chat, zip_bytes


def _upload(client, data: bytes, filename: str = "export.zip", **params):
    return client.post(
        "/api/wrapped",
        files={"file": (filename, data, "application/zip")},
        params=params,
    )


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


# ── Health ───────────────────────────────────


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_healthz(self, client):
        assert client.get("/healthz").json() == {"status": "ok"}


# ── /api/data ────────────────────────────────


class TestApiData:
    def test_returns_payload(self, client):
        response = client.get("/api/data")
        assert response.status_code == 200
        data = response.json()
        assert data["year"] == 2025
        assert data["chats_and_messages"]["total_chats"] == 3
        assert data["days_active"]["total_days"] == 2
        assert data["generations"]["image_count"] == 1
        assert data["generations"]["sora_video_count"] == 1
        assert data["finale"]["days_used"] == 2

    def test_missing_export_returns_404(self, client, tmp_path: Path):
        with patch("app.EXPORT_PATH", tmp_path / "missing"):
            response = client.get("/api/data")
        assert response.status_code == 404

    def test_export_without_conversations_returns_404(self, client, tmp_path: Path):
        empty = tmp_path / "empty-export"
        empty.mkdir()
        (empty / "chat.html").write_text("<html></html>", encoding="utf-8")
        with patch("app.EXPORT_PATH", empty):
            response = client.get("/api/data")
        assert response.status_code == 404

    def test_export_loads_off_event_loop(self, client):
        import app as app_module

        load = app_module._load_export
        seen = []

        def spy():
            seen.append(_on_event_loop())
            return load()

        with patch("app._load_export", spy):
            assert client.get("/api/data").status_code == 200
        assert seen == [False]

    def test_zip_export(self, client, tmp_path: Path):
        archive = tmp_path / "export.zip"
        archive.write_bytes(zip_bytes({
            "conversations.json": json.dumps([make_chat("Zip chat", local_ts(2025, 8, 1))]).encode(),
        }))
        with patch("app.EXPORT_PATH", archive):
            data = client.get("/api/data").json()
        assert data["first_conversation"]["title"] == "Zip chat"


# ── /api/wrapped ─────────────────────────────


class TestApiWrapped:
    def test_upload_zip(self, client):
        data = zip_bytes({
            "export/conversations.json": json.dumps([
                make_chat("Uploaded", local_ts(2025, 3, 3)),
            ]).encode(),
            "export/user-1/pic.png": b"img",
        })
        response = _upload(client, data)
        assert response.status_code == 200
        payload = response.json()
        assert payload["first_conversation"]["title"] == "Uploaded"
        assert payload["generations"]["image_files"] == ["export/user-1/pic.png"]

    def test_year_parameter(self, client):
        data = zip_bytes({
            "conversations.json": json.dumps([make_chat("Last year", local_ts(2024, 3, 3))]).encode(),
        })
        response = _upload(client, data, year=2024)
        assert response.status_code == 200
        assert response.json()["year"] == 2024
        assert len(response.json()["days_active"]["contributions"]) == 366

    def test_out_of_range_year_returns_422(self, client):
        data = zip_bytes({
            "conversations.json": json.dumps([make_chat("Chat", local_ts(2025, 3, 3))]).encode(),
        })
        assert _upload(client, data, year=10000).status_code == 422
        assert _upload(client, data, year=1969).status_code == 422

    def test_extraction_runs_off_event_loop(self, client):
        extract = ArchiveFiles.from_zip
        seen = []

        def spy(source):
            seen.append(_on_event_loop())
            return extract(source)

        data = zip_bytes({
            "conversations.json": json.dumps([make_chat("Chat", local_ts(2025, 3, 3))]).encode(),
        })
        with patch("app.ArchiveFiles.from_zip", spy):
            assert _upload(client, data).status_code == 200
        assert seen == [False]

    def test_not_a_zip_returns_400(self, client):
        response = _upload(client, b"plain text", filename="notes.txt")
        assert response.status_code == 400

    def test_no_conversations_for_year_returns_422(self, client):
        data = zip_bytes({
            "conversations.json": json.dumps([make_chat("Old", local_ts(2023, 3, 3))]).encode(),
        })
        assert _upload(client, data).status_code == 422

    def test_upload_is_not_cached(self, client):
        import app as app_module

        data = zip_bytes({
            "conversations.json": json.dumps([make_chat("Uploaded", local_ts(2025, 3, 3))]).encode(),
        })
        _upload(client, data)
        assert app_module._cache["data"] is None


# ── Caching behaviour ────────────────────────


class TestCaching:
    def test_second_request_uses_cache(self, client):
        """After the first call populates the cache, build_wrapped_payload
        is called only once for two requests."""
        with patch("app.build_wrapped_payload", new_callable=AsyncMock) as mock_build:
            mock_build.return_value = {"generated_at": "2025-12-01T12:00:00"}

            client.get("/api/data")
            client.get("/api/data")
            assert mock_build.call_count == 1

    def test_refresh_forces_rebuild(self, client):
        """The /api/refresh endpoint rebuilds even when the cache is fresh."""
        with patch("app.build_wrapped_payload", new_callable=AsyncMock) as mock_build:
            mock_build.return_value = {"generated_at": "2025-12-01T12:00:00"}

            client.get("/api/data")
            assert mock_build.call_count == 1

            response = client.get("/api/refresh")
            assert mock_build.call_count == 2
            assert response.json() == {
                "status": "refreshed",
                "generated_at": "2025-12-01T12:00:00",
            }


# ── 404 for unknown routes ───────────────────


class TestNotFound:
    def test_unknown_route_returns_404(self, client):
        response = client.get("/nonexistent")
        assert response.status_code == 404

    def test_unknown_api_route_returns_404(self, client):
        response = client.get("/api/nonexistent")
        assert response.status_code == 404
