"""Browse the meme feed and the local lesson store from the command line."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from feed import FeedClient, load_feed_page
from library import learning_stats, recent_lessons, saved_lessons
from store import open_store


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="Path to the lesson store (default: $STORE_PATH or airmems.db)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    feed = commands.add_parser("feed", help="Fetch a page of memes and cache it")
    feed.add_argument("--page", type=int, default=0, help="Page index (default: 0)")

    lessons = commands.add_parser("lessons", help="List generated lessons, newest first")
    lessons.add_argument("--saved", action="store_true", help="Only bookmarked lessons")

    commands.add_parser("stats", help="Show learning statistics")

    clear = commands.add_parser("clear", help="Delete lessons, progress and bookmarks")
    clear.add_argument("--yes", action="store_true", help="Confirm the deletion")
    return parser


def _lesson_summary(lesson) -> dict[str, Any]:
    return {
        "id": lesson.id,
        "memeId": lesson.media_id,
        "level": lesson.level,
        "createdAt": lesson.created_at,
        "vocabulary": len(lesson.vocabulary),
        "questions": len(lesson.questions),
    }


async def _run(args: argparse.Namespace) -> int:
    if args.command == "clear" and not args.yes:
        print("Refusing to delete learner data without --yes", file=sys.stderr)
        return 1

    async with open_store(args.store) as store:
        if args.command == "feed":
            async with FeedClient() as client:
                result = await load_feed_page(client, store, max(0, args.page))
            report: Any = {
                "outcome": result.outcome.value,
                "page": result.page_index,
                "sources": [
                    {"name": r.name, "items": r.item_count, "error": r.error}
                    for r in result.reports
                ],
                "items": [item.to_wire() for item in result.items],
            }
        elif args.command == "lessons":
            lessons = await (saved_lessons(store) if args.saved else recent_lessons(store))
            report = [_lesson_summary(lesson) for lesson in lessons]
        elif args.command == "stats":
            report = (await learning_stats(store)).as_dict()
        else:
            await store.clear_all()
            report = {"cleared": True}

    print(json.dumps(report, indent=2, ensure_ascii=False))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
