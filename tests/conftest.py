"""Shared fixtures for chatgpt_wrapped tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from helpers import local_ts, make_chat


@pytest.fixture()
def sample_conversations() -> list[dict]:
    """Three 2025 chats on two days plus one 2024 chat."""
    return [
        make_chat("Trip planning to Italy", local_ts(2025, 6, 1, 10), conv_id="conv-italy"),
        make_chat("Python tips", local_ts(2025, 6, 1, 23)),
        make_chat("Italy food ideas", local_ts(2025, 6, 2, 9)),
        make_chat("Old chat", local_ts(2024, 12, 30, 12)),
    ]


@pytest.fixture()
def export_dir(tmp_path: Path, sample_conversations: list[dict]) -> Path:
    """An unpacked export folder on disk."""
    root = tmp_path / "export"
    (root / "user-abc123").mkdir(parents=True)
    (root / "conversations.json").write_text(json.dumps(sample_conversations), encoding="utf-8")
    (root / "user-abc123" / "file-1.png").write_bytes(b"\x89PNG fake")
    (root / "sora.json").write_text(
        json.dumps({"tasks": [{"id": "t1", "created_at": "2025-05-01T12:00:00"}]}),
        encoding="utf-8",
    )
    return root


@pytest.fixture()
def client(export_dir: Path):
    """TestClient for app.py serving *export_dir*.

    Resets the module-level cache between tests.
    """
    import app as app_module

    with patch.object(
        app_module, "_cache", {"data": None, "built_at": 0.0}
    ):
        with patch.object(app_module, "EXPORT_PATH", export_dir):
            with TestClient(app_module.app) as tc:
                yield tc
