"""FastAPI service for the ChatGPT Wrapped summary.

Serves the wrapped payload for a configured export (cached, 1-hour TTL
since the data only changes on a new OpenAI export) and computes it on
demand for uploaded zip archives.

Deployment: uvicorn app:app --host 127.0.0.1 --port 8203
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, HTTPException, Query, UploadFile

from analytics import MAX_YEAR, MIN_YEAR, WRAPPED_YEAR, build_wrapped_payload
from archive_index import ArchiveError, ArchiveFiles, find_conversations_file

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
EXPORT_PATH = Path(__file__).parent / "export"
CACHE_TTL_SECONDS = 3600  # 1 hour

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="ChatGPT Wrapped",
    root_path="/chatgpt_wrapped",
)

# ---------------------------------------------------------------------------
# Thread-safe cache
# ---------------------------------------------------------------------------
_cache_lock = threading.Lock()
_cache: dict[str, Any] = {
    "data": None,
    "built_at": 0.0,
}


def _load_export() -> ArchiveFiles:
    try:
        files = ArchiveFiles.open(EXPORT_PATH)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Export not found")
    except ArchiveError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if find_conversations_file(files) is None:
        raise HTTPException(status_code=404, detail="conversations.json not found in export")
    return files


async def _get_cached_data(force_refresh: bool = False) -> dict[str, Any]:
    """Return cached wrapped data, rebuilding if stale or forced."""
    now = time.monotonic()
    with _cache_lock:
        if (
            not force_refresh
            and _cache["data"] is not None
            and (now - _cache["built_at"]) < CACHE_TTL_SECONDS
        ):
            return _cache["data"]

    files = await asyncio.to_thread(_load_export)
    data = await build_wrapped_payload(files, WRAPPED_YEAR)

    with _cache_lock:
        _cache["data"] = data
        _cache["built_at"] = time.monotonic()

    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/data")
async def api_data():
    """Return the wrapped payload for the configured export."""
    return await _get_cached_data()


@app.get("/api/refresh")
async def api_refresh():
    """Force a cache rebuild and return fresh data."""
    data = await _get_cached_data(force_refresh=True)
    return {
        "status": "refreshed",
        "generated_at": data["generated_at"],
    }


@app.post("/api/wrapped")
async def api_wrapped(
    file: UploadFile = File(...),
    year: int = Query(WRAPPED_YEAR, ge=MIN_YEAR, le=MAX_YEAR),
):
    """Compute the wrapped payload for an uploaded zip export (never cached)."""
    try:
        files = await asyncio.to_thread(ArchiveFiles.from_zip, await file.read())
    except ArchiveError as e:
        raise HTTPException(status_code=400, detail=str(e))

    data = await build_wrapped_payload(files, year)
    if data["chats_and_messages"] is None:
        raise HTTPException(
            status_code=422,
            detail=f"No usable conversations found for {year}",
        )
    return data
