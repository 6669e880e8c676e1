"""Core data processing for the ChatGPT yearly wrapped summary.

Turns an export's file collection into the wrapped views: first
conversation, days active, time of day, tools and models, generations,
chats and messages, and the combined finale.  Every view has a pure
``compute_*`` reducer over already-filtered conversations and an async
``parse_*_from_files`` entry point that loads, decodes and year-filters
the export first.  Used by both the CLI (chat_gpt_wrapped.py) and the web
service (app.py).
"""

from __future__ import annotations

import asyncio
import calendar
import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Sequence, TypeVar

from archive_index import ArchiveFile, find_generated_images, find_sora_file
from conversation_tree import (
    Conversation,
    DecodeError,
    decode_sora_tasks,
    load_year_conversations,
    walk_mapping,
)

logger = logging.getLogger(__name__)

WRAPPED_YEAR = 2025
# Years accepted from callers; earlier years predate the epoch.
MIN_YEAR = 1970
MAX_YEAR = 9999
TOP_WORDS_LIMIT = 100
UNTITLED_CONVERSATION = "Untitled Conversation"

NIGHT_OWL = "night owl"
EARLY_BIRD = "early bird"
ALL_DAY_CHATTER = "all-day chatter"

# Hours of the day per period; night wraps around midnight.
PERIOD_HOURS = {
    "night": (22, 23, 0, 1, 2, 3, 4, 5),
    "morning": tuple(range(6, 12)),
    "afternoon": tuple(range(12, 18)),
    "evening": tuple(range(18, 22)),
}
DOMINANT_PERIOD_PCT = 30

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can",
    "had", "her", "was", "one", "our", "out", "has", "him", "his", "how",
    "its", "may", "new", "now", "old", "see", "two", "way", "who", "did",
    "get", "got", "let", "say", "she", "too", "use", "via", "per", "yes",
    "with", "from", "into", "onto", "that", "this", "these", "those", "what",
    "when", "where", "which", "while", "why", "will", "would", "could",
    "should", "about", "after", "before", "between", "over", "under", "than",
    "then", "them", "they", "their", "there", "here", "have", "been", "being",
    "were", "your", "yours", "some", "such", "only", "also", "just", "more",
    "most", "very", "much", "many", "each", "other", "does", "doing", "done",
    "make", "need", "want", "like", "using", "used", "without", "within",
    "across", "through", "again",
})

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_FRACTION_RE = re.compile(r"\.(\d+)")

# (matcher, display name); first match wins.
_TOOL_RULES: list[tuple[Callable[[str], bool], str]] = [
    (lambda r: r in ("web", "web.search") or r.startswith("web."), "Web Search"),
    (lambda r: r == "python", "Code Interpreter"),
    (lambda r: r.startswith("canmore."), "Canvas"),
    (lambda r: r == "bio", "Memory"),
    (lambda r: r.startswith("browser."), "Web Browsing"),
    (lambda r: r.startswith("computer."), "Computer Use"),
    (lambda r: r.startswith("research_kickoff_tool."), "Deep Research"),
    (lambda r: r == "dalle.text2im", "DALL-E"),
]

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Result structures
# ---------------------------------------------------------------------------

class _Result:
    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict of this result."""
        return asdict(self)


@dataclass(frozen=True)
class FirstConversationData(_Result):
    date: datetime
    title: str
    first_user_message: str | None = None
    first_assistant_message: str | None = None
    conversation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class ContributionDay:
    date: str
    count: int
    level: int


@dataclass(frozen=True)
class DaysActiveData(_Result):
    total_days: int
    longest_streak: int
    active_days_in_year: int
    contributions: tuple[ContributionDay, ...] = ()


@dataclass(frozen=True)
class HourBucket:
    hour: int
    label: str
    count: int


@dataclass(frozen=True)
class TimeOfDayData(_Result):
    hourly_data: tuple[HourBucket, ...]
    weekday_count: int
    weekend_count: int
    weekday_percentage: float
    weekend_percentage: float
    personality_type: str
    total_conversations: int

    @property
    def most_active_hour(self) -> HourBucket:
        """Earliest hour holding the highest count."""
        return max(self.hourly_data, key=lambda b: b.count)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["most_active_hour"] = asdict(self.most_active_hour)
        return data


@dataclass(frozen=True)
class UsageCount:
    name: str
    count: int


@dataclass(frozen=True)
class ToolsAndModelsData(_Result):
    tools: tuple[UsageCount, ...]
    models: tuple[UsageCount, ...]
    thinking_mode_count: int


@dataclass(frozen=True)
class GenerationsData(_Result):
    """Generated media found in the export.

    ``image_files`` hands the matched files to the caller, who decides
    what to display and when to let go of them.
    """

    image_files: tuple[ArchiveFile, ...]
    image_count: int
    sora_video_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "image_files": [f.path for f in self.image_files],
            "image_count": self.image_count,
            "sora_video_count": self.sora_video_count,
        }


@dataclass(frozen=True)
class WordFrequency:
    word: str
    count: int


@dataclass(frozen=True)
class ChatsAndMessagesData(_Result):
    total_chats: int
    total_messages: int
    word_frequencies: tuple[WordFrequency, ...] = ()


@dataclass(frozen=True)
class FinaleSlideData(_Result):
    total_chats: int
    days_used: int
    personality_type: str
    image_files: tuple[ArchiveFile, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chats": self.total_chats,
            "days_used": self.days_used,
            "personality_type": self.personality_type,
            "image_files": [f.path for f in self.image_files],
        }


@dataclass(frozen=True)
class WrappedResult:
    """All wrapped views for one export; any of them may be None."""

    first_conversation: FirstConversationData | None = None
    days_active: DaysActiveData | None = None
    time_of_day: TimeOfDayData | None = None
    tools_and_models: ToolsAndModelsData | None = None
    generations: GenerationsData | None = None
    chats_and_messages: ChatsAndMessagesData | None = None
    finale: FinaleSlideData | None = None


# ---------------------------------------------------------------------------
# First conversation
# ---------------------------------------------------------------------------

def compute_first_conversation(
    conversations: Sequence[Conversation],
) -> FirstConversationData | None:
    """Describe the earliest conversation and its opening messages.

    The first user and first assistant messages are chosen independently
    by ascending message ``create_time``, so they need not be one turn.
    The conversation id comes from the record itself, else from message
    metadata, else from the first user-authored node.

    Args:
        conversations: Year-filtered conversations.

    Returns:
        FirstConversationData, or None when *conversations* is empty.
    """
    if not conversations:
        return None

    first = min(conversations, key=lambda c: c.create_time)
    messages = walk_mapping(first.mapping)
    with_content = [m for m in messages if m.content]

    conversation_id = first.id or next(
        (m.conversation_hint for m in with_content if m.conversation_hint), None
    )
    if not conversation_id:
        conversation_id = next((m.node_id for m in messages if m.role == "user"), None)

    ordered = sorted(with_content, key=lambda m: m.create_time)
    return FirstConversationData(
        date=first.created_at,
        title=first.title if first.title.strip() else UNTITLED_CONVERSATION,
        first_user_message=next((m.content for m in ordered if m.role == "user"), None),
        first_assistant_message=next((m.content for m in ordered if m.role == "assistant"), None),
        conversation_id=conversation_id,
    )


# ---------------------------------------------------------------------------
# Days active
# ---------------------------------------------------------------------------

def compute_longest_streak(days: Sequence[date]) -> int:
    """Length of the longest run of consecutive calendar days.

    Args:
        days: Distinct active days, in any order.

    Returns:
        0 for no days, otherwise at least 1.
    """
    longest = 0
    current = 0
    previous: date | None = None
    for day in sorted(days):
        if previous is not None and (day - previous).days == 1:
            current += 1
        else:
            current = 1
        longest = max(longest, current)
        previous = day
    return longest


def contribution_level(count: int, max_count: int) -> int:
    """Bucket a daily count into a 0-4 intensity level relative to the busiest day."""
    if count <= 0:
        return 0
    if max_count <= 1:
        return 1
    ratio = count / max_count
    if ratio >= 0.8:
        return 4
    if ratio >= 0.6:
        return 3
    if ratio >= 0.4:
        return 2
    return 1


def _days_of_year(year: int) -> list[date]:
    length = 366 if calendar.isleap(year) else 365
    start = date(year, 1, 1)
    return [start + timedelta(days=i) for i in range(length)]


def compute_days_active(
    conversations: Sequence[Conversation],
    year: int = WRAPPED_YEAR,
) -> DaysActiveData | None:
    """Count active local days, the longest streak and a full-year calendar.

    Args:
        conversations: Year-filtered conversations.
        year: Calendar year the contribution calendar spans.

    Returns:
        DaysActiveData whose ``contributions`` hold one entry per day of
        *year*, or None when *conversations* is empty.
    """
    if not conversations:
        return None

    day_counts: dict[date, int] = {}
    for conv in conversations:
        day = conv.created_at.date()
        day_counts[day] = day_counts.get(day, 0) + 1

    total_days = len(day_counts)
    max_count = max(day_counts.values(), default=1)
    contributions = tuple(
        ContributionDay(
            date=day.isoformat(),
            count=day_counts.get(day, 0),
            level=contribution_level(day_counts.get(day, 0), max_count),
        )
        for day in _days_of_year(year)
    )
    return DaysActiveData(
        total_days=total_days,
        longest_streak=compute_longest_streak(list(day_counts)),
        active_days_in_year=total_days,
        contributions=contributions,
    )


# ---------------------------------------------------------------------------
# Time of day
# ---------------------------------------------------------------------------

def hour_label(hour: int) -> str:
    """12-hour clock label: 0 -> '12am', 13 -> '1pm'."""
    suffix = "am" if hour < 12 else "pm"
    return f"{hour % 12 or 12}{suffix}"


def _percentage(part: int, total: int) -> float:
    return round(part * 100 / total, 1) if total else 0.0


def classify_personality(hourly_counts: Sequence[int]) -> str:
    """Classify a 24-hour histogram as night owl, early bird or all-day chatter.

    A period dominates when it holds more than 30% of all conversations
    or ties for the largest share with a positive share.  Night is
    checked before morning; afternoon and evening fall through to the
    all-day label.
    """
    total = sum(hourly_counts)
    if not total:
        return ALL_DAY_CHATTER

    shares = {
        period: sum(hourly_counts[h] for h in hours) * 100 / total
        for period, hours in PERIOD_HOURS.items()
    }
    top_share = max(shares.values())

    def dominates(period: str) -> bool:
        share = shares[period]
        return share > DOMINANT_PERIOD_PCT or (share == top_share and share > 0)

    if dominates("night"):
        return NIGHT_OWL
    if dominates("morning"):
        return EARLY_BIRD
    return ALL_DAY_CHATTER


def compute_time_of_day(conversations: Sequence[Conversation]) -> TimeOfDayData | None:
    """Hourly histogram, weekday/weekend split and personality type.

    Hours and weekdays are taken in local time from each conversation's
    creation time.

    Returns:
        TimeOfDayData, or None when *conversations* is empty.
    """
    if not conversations:
        return None

    hourly_counts = [0] * 24
    weekend_count = 0
    for conv in conversations:
        created = conv.created_at
        hourly_counts[created.hour] += 1
        if created.weekday() >= 5:  # Saturday, Sunday
            weekend_count += 1

    total = len(conversations)
    weekday_count = total - weekend_count
    return TimeOfDayData(
        hourly_data=tuple(
            HourBucket(hour=h, label=hour_label(h), count=c)
            for h, c in enumerate(hourly_counts)
        ),
        weekday_count=weekday_count,
        weekend_count=weekend_count,
        weekday_percentage=_percentage(weekday_count, total),
        weekend_percentage=_percentage(weekend_count, total),
        personality_type=classify_personality(hourly_counts),
        total_conversations=total,
    )


# ---------------------------------------------------------------------------
# Tools and models
# ---------------------------------------------------------------------------

def tool_name_for_recipient(recipient: str | None) -> str | None:
    """Map a message ``recipient`` to a tool display name.

    Returns None for a missing recipient, ``"all"`` and anything
    unrecognized.
    """
    if not recipient or recipient == "all":
        return None
    for matches, name in _TOOL_RULES:
        if matches(recipient):
            return name
    return None


def _is_thinking(model_slug: str | None, reasoning_status: str | None) -> bool:
    return bool(reasoning_status) or (model_slug is not None and "thinking" in model_slug)


def compute_tools_and_models(
    conversations: Sequence[Conversation],
) -> ToolsAndModelsData | None:
    """Tally tool calls, assistant model slugs and thinking-mode replies.

    Every branch of every conversation tree is counted.

    Returns:
        ToolsAndModelsData with tools sorted by name and models by
        descending count, or None when *conversations* is empty.
    """
    if not conversations:
        return None

    tool_counts: Counter[str] = Counter()
    model_counts: Counter[str] = Counter()
    thinking_mode_count = 0

    for conv in conversations:
        for msg in walk_mapping(conv.mapping):
            if msg.role not in ("user", "assistant"):
                continue
            tool = tool_name_for_recipient(msg.recipient)
            if tool:
                tool_counts[tool] += 1
            if msg.role != "assistant":
                continue
            if msg.model_slug:
                model_counts[msg.model_slug] += 1
            if _is_thinking(msg.model_slug, msg.reasoning_status):
                thinking_mode_count += 1

    return ToolsAndModelsData(
        tools=tuple(UsageCount(n, c) for n, c in sorted(tool_counts.items())),
        models=tuple(UsageCount(n, c) for n, c in model_counts.most_common()),
        thinking_mode_count=thinking_mode_count,
    )


# ---------------------------------------------------------------------------
# Generations
# ---------------------------------------------------------------------------

def _parse_created_at(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        text = value.strip().replace("Z", "+00:00")
        # fromisoformat on 3.10 only takes 3 or 6 fractional digits.
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        parsed = datetime.fromisoformat(text)
        return parsed.astimezone() if parsed.tzinfo else parsed
    except (ValueError, OverflowError):
        return None


def count_sora_tasks(tasks: Sequence[Any], year: int = WRAPPED_YEAR) -> int:
    """Count video tasks created in *year*.

    Tasks whose ``created_at`` is missing or unparseable are counted too,
    which over-counts when an export mixes years without timestamps.
    """
    count = 0
    for task in tasks:
        created_at = task.get("created_at") if isinstance(task, dict) else None
        parsed = _parse_created_at(created_at)
        if parsed is None or parsed.year == year:
            count += 1
    return count


async def parse_generations_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> GenerationsData | None:
    """Count generated images and Sora videos; needs no conversations.json.

    Returns:
        GenerationsData (counts may be zero), or None when ``sora.json``
        is present but cannot be decoded.
    """
    images = find_generated_images(files)

    sora_video_count = 0
    sora_file = find_sora_file(files)
    if sora_file is not None:
        try:
            tasks = decode_sora_tasks(await sora_file.read_text())
        except (DecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("Could not decode %s: %s", sora_file.path, e)
            return None
        sora_video_count = count_sora_tasks(tasks, year)

    return GenerationsData(
        image_files=tuple(images),
        image_count=len(images),
        sora_video_count=sora_video_count,
    )


# ---------------------------------------------------------------------------
# Chats and messages
# ---------------------------------------------------------------------------

def compute_word_frequencies(titles: Sequence[str]) -> list[WordFrequency]:
    """Rank title words by frequency.

    Titles are lowercased, punctuation becomes whitespace, and tokens of
    two characters or fewer or in ``STOP_WORDS`` are dropped.  Ties keep
    the order in which words were first seen.
    """
    counts: Counter[str] = Counter()
    for title in titles:
        if not title or not title.strip():
            continue
        for token in _PUNCTUATION_RE.sub(" ", title.lower()).split():
            if len(token) <= 2 or token in STOP_WORDS:
                continue
            counts[token] += 1
    return [WordFrequency(word, count) for word, count in counts.most_common()]


def count_user_messages(conv: Conversation) -> int:
    """Number of visible user-authored messages reachable in the tree."""
    return sum(1 for msg in walk_mapping(conv.mapping) if msg.role == "user")


def compute_chats_and_messages(
    conversations: Sequence[Conversation],
) -> ChatsAndMessagesData | None:
    """Chat count, user message count and ranked title words.

    Returns:
        ChatsAndMessagesData, or None when *conversations* is empty.
    """
    if not conversations:
        return None

    return ChatsAndMessagesData(
        total_chats=len(conversations),
        total_messages=sum(count_user_messages(c) for c in conversations),
        word_frequencies=tuple(compute_word_frequencies([c.title for c in conversations])),
    )


# ---------------------------------------------------------------------------
# Finale
# ---------------------------------------------------------------------------

def parse_finale_slide_data(
    chats_and_messages: ChatsAndMessagesData | None,
    days_active: DaysActiveData | None,
    time_of_day: TimeOfDayData | None,
    generations: GenerationsData | None = None,
) -> FinaleSlideData | None:
    """Combine already-computed views into the finale summary.

    Returns:
        FinaleSlideData, or None if any of the three required views is
        missing.
    """
    if chats_and_messages is None or days_active is None or time_of_day is None:
        return None
    return FinaleSlideData(
        total_chats=chats_and_messages.total_chats,
        days_used=days_active.total_days,
        personality_type=time_of_day.personality_type,
        image_files=generations.image_files if generations is not None else (),
    )


# ---------------------------------------------------------------------------
# File-based entry points
# ---------------------------------------------------------------------------

async def _reduce_year(
    files: Sequence[ArchiveFile],
    year: int,
    reducer: Callable[[list[Conversation]], T | None],
    view: str,
) -> T | None:
    try:
        conversations = await load_year_conversations(files, year)
        if conversations is None:
            return None
        return reducer(conversations)
    except (ValueError, OverflowError, OSError) as e:
        # Out-of-range years and timestamps surface here from datetime conversions.
        logger.warning("Could not compute %s: %s", view, e)
        return None


async def parse_first_conversation_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> FirstConversationData | None:
    return await _reduce_year(files, year, compute_first_conversation, "first conversation")


async def parse_days_active_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> DaysActiveData | None:
    return await _reduce_year(files, year, lambda convs: compute_days_active(convs, year), "days active")


async def parse_time_of_day_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> TimeOfDayData | None:
    return await _reduce_year(files, year, compute_time_of_day, "time of day")


async def parse_tools_and_models_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> ToolsAndModelsData | None:
    return await _reduce_year(files, year, compute_tools_and_models, "tools and models")


async def parse_chats_and_messages_from_files(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> ChatsAndMessagesData | None:
    return await _reduce_year(files, year, compute_chats_and_messages, "chats and messages")


async def build_wrapped(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> WrappedResult:
    """Run all six views concurrently, then combine the finale.

    Args:
        files: The export's file collection.
        year: Target calendar year.

    Returns:
        WrappedResult; views that could not be computed are None.
    """
    (
        first_conversation,
        days_active,
        time_of_day,
        tools_and_models,
        generations,
        chats_and_messages,
    ) = await asyncio.gather(
        parse_first_conversation_from_files(files, year),
        parse_days_active_from_files(files, year),
        parse_time_of_day_from_files(files, year),
        parse_tools_and_models_from_files(files, year),
        parse_generations_from_files(files, year),
        parse_chats_and_messages_from_files(files, year),
    )
    return WrappedResult(
        first_conversation=first_conversation,
        days_active=days_active,
        time_of_day=time_of_day,
        tools_and_models=tools_and_models,
        generations=generations,
        chats_and_messages=chats_and_messages,
        finale=parse_finale_slide_data(chats_and_messages, days_active, time_of_day, generations),
    )


def wrapped_payload(result: WrappedResult, year: int = WRAPPED_YEAR) -> dict[str, Any]:
    """JSON-ready dict of a WrappedResult.

    The word list is cut to ``TOP_WORDS_LIMIT`` entries.
    """
    def dump(view: _Result | None) -> dict[str, Any] | None:
        return view.to_dict() if view is not None else None

    chats = dump(result.chats_and_messages)
    if chats is not None:
        chats["word_frequencies"] = chats["word_frequencies"][:TOP_WORDS_LIMIT]

    return {
        "generated_at": datetime.now().isoformat(),
        "year": year,
        "first_conversation": dump(result.first_conversation),
        "days_active": dump(result.days_active),
        "time_of_day": dump(result.time_of_day),
        "tools_and_models": dump(result.tools_and_models),
        "generations": dump(result.generations),
        "chats_and_messages": chats,
        "finale": dump(result.finale),
    }


async def build_wrapped_payload(
    files: Sequence[ArchiveFile],
    year: int = WRAPPED_YEAR,
) -> dict[str, Any]:
    """One-call entry point: compute every view and return the JSON payload.

    This is the only function the FastAPI app needs to call.
    """
    result = await build_wrapped(files, year)
    return wrapped_payload(result, year)
