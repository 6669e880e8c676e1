"""chat_gpt_wrapped.py

Print a yearly "wrapped" summary of a ChatGPT data export.

The export can be the unpacked folder or the original zip archive.  Use
`--json FILE` to save the full payload and `--charts DIR` to render the
calendar, hourly and model charts.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from analytics import MAX_YEAR, MIN_YEAR, WRAPPED_YEAR, WrappedResult, build_wrapped, wrapped_payload
from archive_index import ArchiveError, ArchiveFiles, find_conversations_file

logger = logging.getLogger(__name__)


def _year(value: str) -> int:
    year = int(value)
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise argparse.ArgumentTypeError(f"year must be between {MIN_YEAR} and {MAX_YEAR}")
    return year


def _print_first_conversation(result: WrappedResult) -> None:
    first = result.first_conversation
    if first is None:
        return
    print(f"First Chat: {first.title} ({first.date.strftime('%Y-%m-%d %H:%M')})")
    if first.first_user_message:
        preview = first.first_user_message
        if len(preview) > 200:
            preview = preview[:200] + "..."
        print(f"  You asked: {preview}")


def print_wrapped_report(result: WrappedResult, year: int = WRAPPED_YEAR) -> None:
    """Print a human-readable wrapped summary to stdout.

    Views that could not be computed are skipped.

    Args:
        result: Output of ``analytics.build_wrapped``.
        year: The year the summary covers, for the heading.
    """
    print(f"\n{'='*60}")
    print(f"ChatGPT Wrapped {year}")
    print(f"{'='*60}")

    _print_first_conversation(result)

    chats = result.chats_and_messages
    if chats is not None:
        print(f"Total Chats: {chats.total_chats:,}")
        print(f"Total Messages: {chats.total_messages:,}")
        if chats.word_frequencies:
            top = ", ".join(f"{w.word} ({w.count})" for w in chats.word_frequencies[:10])
            print(f"Top Words: {top}")

    days = result.days_active
    if days is not None:
        print(f"Days Active: {days.total_days:,}")
        print(f"Longest Streak: {days.longest_streak:,} days")

    tod = result.time_of_day
    if tod is not None:
        peak = tod.most_active_hour
        print(f"Personality: {tod.personality_type}")
        print(f"Most Active Hour: {peak.label} ({peak.count:,} chats)")
        print(f"Weekdays / Weekends: {tod.weekday_percentage}% / {tod.weekend_percentage}%")

    tools = result.tools_and_models
    if tools is not None:
        if tools.models:
            print('\nTop Models:')
            for model in tools.models[:5]:
                print(f"  {model.name}: {model.count:,} replies")
        if tools.tools:
            print('\nTools Used:')
            for tool in tools.tools:
                print(f"  {tool.name}: {tool.count:,}")
        print(f"Thinking Mode Replies: {tools.thinking_mode_count:,}")

    gens = result.generations
    if gens is not None:
        print(f"\nImages Generated: {gens.image_count:,}")
        print(f"Sora Videos: {gens.sora_video_count:,}")
    print(f"{'='*60}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the wrapped summary."""
    parser = argparse.ArgumentParser(description='Yearly wrapped summary of a ChatGPT data export')
    parser.add_argument('path', nargs='?', default='.',
                        help='Export folder or zip archive (default: current directory)')
    parser.add_argument('--year', '-y', type=_year, default=WRAPPED_YEAR,
                        help=f'Year to summarize (default: {WRAPPED_YEAR})')
    parser.add_argument('--json', '-j', dest='json_file',
                        help='Write the full payload as JSON to this file')
    parser.add_argument('--charts', '-c', dest='charts_dir',
                        help='Render charts as PNG files into this directory')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log progress details')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        files = ArchiveFiles.open(args.path)
    except FileNotFoundError:
        print(f"Error: '{args.path}' not found.")
        sys.exit(1)
    except ArchiveError as e:
        print(f"Error: {e}")
        sys.exit(1)
    logger.info("Loaded %d files from %s", len(files), args.path)

    if find_conversations_file(files) is None:
        print(f"Error: no conversations.json found in '{args.path}'.")
        sys.exit(1)

    result = asyncio.run(build_wrapped(files, args.year))
    print_wrapped_report(result, args.year)

    if args.json_file:
        with open(args.json_file, 'w', encoding='utf-8') as f:
            json.dump(wrapped_payload(result, args.year), f, indent=2, ensure_ascii=False)
        print(f"\nWrapped data has been saved to {args.json_file}")

    if args.charts_dir:
        from chat_gpt_viz import save_wrapped_charts

        written = save_wrapped_charts(result, args.charts_dir)
        print(f"Charts saved: {', '.join(written) if written else 'none'}")


if __name__ == '__main__':
    main()
