"""Shared test helpers for chatgpt_wrapped tests.

Regular functions (not fixtures) that can be imported by any test module.
"""

from __future__ import annotations

import io
import json
import zipfile
from datetime import datetime

from archive_index import ArchiveFile, ArchiveFiles


def local_ts(year: int, month: int, day: int, hour: int = 10, minute: int = 0) -> float:
    """Unix epoch seconds for a local wall-clock time."""
    return datetime(year, month, day, hour, minute).timestamp()


def make_message(
    role: str,
    content: str | dict | None = "",
    create_time: float | None = None,
    *,
    recipient: str | None = None,
    hidden: bool = False,
    model_slug: str | None = None,
    reasoning_status: str | None = None,
    metadata: dict | None = None,
) -> dict:
    """Build a message payload as found in a mapping node."""
    meta = dict(metadata or {})
    if hidden:
        meta["is_visually_hidden_from_conversation"] = True
    if model_slug is not None:
        meta["model_slug"] = model_slug
    if reasoning_status is not None:
        meta["reasoning_status"] = reasoning_status
    message = {
        "author": {"role": role},
        "content": {"content_type": "text", "parts": [content]} if isinstance(content, str) else content,
        "metadata": meta,
    }
    if create_time is not None:
        message["create_time"] = create_time
    if recipient is not None:
        message["recipient"] = recipient
    return message


def make_linear_mapping(messages: list[dict], root_id: str = "client-created-root") -> dict:
    """Chain *messages* under a message-less root: root -> m0 -> m1 -> ..."""
    mapping: dict[str, dict] = {root_id: {"id": root_id, "parent": None, "children": []}}
    parent = root_id
    for i, message in enumerate(messages):
        node_id = f"node-{i}"
        mapping[node_id] = {"id": node_id, "parent": parent, "children": [], "message": message}
        mapping[parent]["children"].append(node_id)
        parent = node_id
    return mapping


def make_conversation(
    title: str = "Test Chat",
    create_time: float | None = None,
    messages: list[dict] | None = None,
    conv_id: str | None = None,
    mapping: dict | None = None,
) -> dict:
    """Build a raw conversation record as it appears in conversations.json."""
    if create_time is None:
        create_time = local_ts(2025, 6, 1)
    if mapping is None:
        mapping = make_linear_mapping(messages or [])
    conv = {
        "title": title,
        "create_time": create_time,
        "update_time": create_time + 60,
        "mapping": mapping,
    }
    if conv_id is not None:
        conv["id"] = conv_id
    return conv


def make_chat(title: str, create_time: float, conv_id: str | None = None) -> dict:
    """A conversation with one user turn and one assistant reply."""
    return make_conversation(
        title=title,
        create_time=create_time,
        conv_id=conv_id,
        messages=[
            make_message("user", f"About {title}", create_time),
            make_message("assistant", "Sure!", create_time + 5, model_slug="gpt-4o"),
        ],
    )


def make_archive(
    conversations: list[dict] | None = None,
    extra: dict[str, bytes] | None = None,
    folder: str = "export",
) -> ArchiveFiles:
    """Build an in-memory export; conversations=None leaves out conversations.json."""
    files: list[ArchiveFile] = []
    if conversations is not None:
        files.append(ArchiveFile(
            path=f"{folder}/conversations.json",
            source=json.dumps(conversations).encode("utf-8"),
        ))
    for path, data in (extra or {}).items():
        files.append(ArchiveFile(path=path, source=data))
    return ArchiveFiles(files)


def zip_bytes(entries: dict[str, bytes]) -> bytes:
    """Pack *entries* (path -> bytes) into a zip archive in memory."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for path, data in entries.items():
            zf.writestr(path, data)
    return buffer.getvalue()
