"""Decoding and traversal of the conversation trees in ``conversations.json``.

Each conversation in an OpenAI export stores its messages as a ``mapping``
of node id to node, where nodes point at their ``parent`` and list their
``children``.  Regenerated and edited turns show up as extra branches.
``walk_mapping`` flattens one such tree into ``MessageDescriptor`` records
in pre-order, visiting every reachable branch once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from archive_index import CONVERSATIONS_FILENAME, ArchiveFile, find_conversations_file

logger = logging.getLogger(__name__)

ROOT_SENTINEL_ID = "client-created-root"


class DecodeError(ValueError):
    """Raised when an export file does not have the expected JSON shape."""


@dataclass(frozen=True)
class Conversation:
    """A decoded conversation record.

    ``create_time`` and ``update_time`` are Unix epoch seconds.  ``mapping``
    is kept as the raw node dicts from the export.
    """

    title: str
    create_time: float
    update_time: float
    mapping: dict[str, Any] = field(default_factory=dict, repr=False)
    id: str | None = None

    @property
    def created_at(self) -> datetime:
        """Creation time as a local datetime."""
        return datetime.fromtimestamp(self.create_time)


@dataclass(frozen=True)
class MessageDescriptor:
    """One visible message reached while walking a conversation tree."""

    node_id: str
    role: str
    content: str
    create_time: float
    recipient: str | None = None
    model_slug: str | None = None
    reasoning_status: str | None = None
    conversation_hint: str | None = None


def _as_epoch(value: Any, field_name: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"'{field_name}' must be a number, got {type(value).__name__}")
    return float(value)


def _decode_conversation(raw: Any, index: int) -> Conversation:
    if not isinstance(raw, dict):
        raise DecodeError(f"Conversation #{index} is not an object")

    mapping = raw.get("mapping")
    if mapping is None:
        mapping = {}
    elif not isinstance(mapping, dict):
        raise DecodeError(f"Conversation #{index} has a non-object mapping")

    create_time = _as_epoch(raw.get("create_time"), "create_time")
    update_time = raw.get("update_time")
    conv_id = raw.get("id") or raw.get("conversation_id")
    return Conversation(
        title=str(raw.get("title") or ""),
        create_time=create_time,
        update_time=_as_epoch(update_time, "update_time") if update_time is not None else create_time,
        mapping=mapping,
        id=str(conv_id) if conv_id else None,
    )


def decode_conversations(text: str) -> list[Conversation]:
    """Decode the text of ``conversations.json`` into Conversation records.

    The whole file either decodes or fails; a single malformed entry is
    not skipped.

    Raises:
        DecodeError: If the text is not valid JSON, not a top-level array,
            or any entry has an unexpected shape.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, list):
        raise DecodeError(f"Expected a JSON array, got {type(data).__name__}")

    return [_decode_conversation(raw, i) for i, raw in enumerate(data)]


def decode_sora_tasks(text: str) -> list[Any]:
    """Decode ``sora.json`` and return its ``tasks`` array.

    Raises:
        DecodeError: If the text is not a JSON object or ``tasks`` is not
            an array.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")
    tasks = data.get("tasks")
    if tasks is None:
        return []
    if not isinstance(tasks, list):
        raise DecodeError("'tasks' must be an array")
    return tasks


# ---------------------------------------------------------------------------
# Tree walking
# ---------------------------------------------------------------------------

def find_root_id(mapping: dict[str, Any]) -> str | None:
    """Return the root node id of a conversation mapping.

    The ``client-created-root`` sentinel wins; otherwise the first node
    without a parent.  Returns None when neither exists.
    """
    if not isinstance(mapping, dict) or not mapping:
        return None
    if ROOT_SENTINEL_ID in mapping:
        return ROOT_SENTINEL_ID
    for node_id, node in mapping.items():
        if isinstance(node, dict) and not node.get("parent"):
            return node_id
    return None


def extract_text(message: dict) -> str:
    """Return a message's text: the plain string, or its first part."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        parts = content.get("parts")
        if isinstance(parts, list) and parts and isinstance(parts[0], str):
            return parts[0]
    return ""


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _describe_node(node_id: str, node: dict) -> MessageDescriptor | None:
    message = node.get("message")
    if not isinstance(message, dict):
        return None

    metadata = message.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    if metadata.get("is_visually_hidden_from_conversation"):
        return None

    author = message.get("author")
    role = author.get("role") if isinstance(author, dict) else None
    if not role:
        return None

    create_time = message.get("create_time")
    if isinstance(create_time, bool) or not isinstance(create_time, (int, float)):
        create_time = 0

    hint = (
        _optional_str(metadata.get("conversation_id"))
        or _optional_str(metadata.get("turn_exchange_id"))
        or _optional_str(metadata.get("parent_id"))
    )
    return MessageDescriptor(
        node_id=node_id,
        role=role,
        content=extract_text(message),
        create_time=float(create_time),
        recipient=_optional_str(message.get("recipient")),
        model_slug=_optional_str(metadata.get("model_slug")),
        reasoning_status=_optional_str(metadata.get("reasoning_status")),
        conversation_hint=hint,
    )


def walk_mapping(mapping: dict[str, Any]) -> list[MessageDescriptor]:
    """Flatten a conversation tree into its visible messages, pre-order.

    Starts at the root and follows ``children`` in listed order with an
    explicit stack, so very deep conversations cannot exhaust the
    interpreter's recursion limit.  Every node is visited at most once,
    which also stops cycles in malformed data.  Hidden messages and
    messages without a role are skipped, but their children are still
    walked.

    Args:
        mapping: The raw ``mapping`` dict of one conversation.

    Returns:
        Descriptors in traversal order; empty when no root is found.
    """
    root_id = find_root_id(mapping)
    if root_id is None:
        return []

    descriptors: list[MessageDescriptor] = []
    visited: set[str] = set()
    stack = [root_id]
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        node = mapping.get(node_id)
        if not isinstance(node, dict):
            continue
        visited.add(node_id)

        descriptor = _describe_node(node_id, node)
        if descriptor is not None:
            descriptors.append(descriptor)

        children = node.get("children")
        if isinstance(children, list):
            stack.extend(
                child for child in reversed(children)
                if isinstance(child, str) and child not in visited
            )
    return descriptors


# ---------------------------------------------------------------------------
# Year filtering and loading
# ---------------------------------------------------------------------------

def year_start_epoch(year: int) -> int:
    """Epoch seconds of local midnight on January 1 of *year*."""
    return int(datetime(year, 1, 1).timestamp())


def filter_by_year_start(
    conversations: Sequence[Conversation],
    year_start: float,
) -> list[Conversation]:
    """Keep conversations created on or after *year_start* (epoch seconds).

    Only a lower bound applies: conversations from later years are kept.
    """
    return [c for c in conversations if c.create_time >= year_start]


async def load_conversations(files: Sequence[ArchiveFile]) -> list[Conversation] | None:
    """Locate and decode ``conversations.json`` from an export.

    Returns:
        The decoded conversations, or None when the file is missing or
        cannot be decoded (the failure is logged).
    """
    conversations_file = find_conversations_file(files)
    if conversations_file is None:
        logger.info("No %s found in the export", CONVERSATIONS_FILENAME)
        return None

    try:
        text = await conversations_file.read_text()
        return decode_conversations(text)
    except (DecodeError, UnicodeDecodeError, OSError) as e:
        logger.warning("Could not decode %s: %s", conversations_file.path, e)
        return None


async def load_year_conversations(
    files: Sequence[ArchiveFile],
    year: int,
) -> list[Conversation] | None:
    """Load conversations and apply the year filter.

    Returns None for a missing or undecodable file and for an empty
    filtered set, so callers can treat all three the same way.
    """
    conversations = await load_conversations(files)
    if conversations is None:
        return None

    filtered = filter_by_year_start(conversations, year_start_epoch(year))
    if not filtered:
        logger.info(
            "Loaded %d conversations but none were created in or after %d",
            len(conversations),
            year,
        )
        return None
    return filtered
