from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Awaitable, Callable

from .clients.api import ReaderAPI
from .dashboard.items import ItemFilters
from .dashboard.session import ReaderSession
from .errors import ApiError
from .query.result import Result

SessionFactory = Callable[[], ReaderSession]


def _positive_int(value: str) -> int:
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("value must be a positive integer")
    return ivalue


def _add_scope(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--category", "-c", default=None, help="Category id to scope to.")
    cmd.add_argument("--feed", "-f", default=None, help="Feed id to scope to.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m to_reads",
        description="Command-line front end for the to-reads dashboard.",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Backend API base URL (overrides TO_READS_API_BASE_URL).",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    subparsers.add_parser("categories", help="List categories.")

    feeds_cmd = subparsers.add_parser("feeds", help="List feeds.")
    feeds_cmd.add_argument("--category", "-c", default=None, help="Only feeds in this category.")

    items_cmd = subparsers.add_parser("items", help="List items.")
    _add_scope(items_cmd)
    items_cmd.add_argument("-q", "--query", default=None, help="Search text.")
    items_cmd.add_argument("--unread", action="store_true", help="Only unread items.")
    items_cmd.add_argument("--favorite", action="store_true", help="Only favorite items.")
    items_cmd.add_argument(
        "--pages",
        type=_positive_int,
        default=1,
        help="Number of pages to load (default: 1).",
    )

    unread_cmd = subparsers.add_parser("unread", help="Show the unread count.")
    _add_scope(unread_cmd)

    read_cmd = subparsers.add_parser("read", help="Mark an item as read.")
    read_cmd.add_argument("item_id")
    read_cmd.add_argument("--unread", action="store_true", help="Mark as unread instead.")

    fav_cmd = subparsers.add_parser("favorite", help="Favorite an item.")
    fav_cmd.add_argument("item_id")
    fav_cmd.add_argument("--off", action="store_true", help="Remove the favorite instead.")

    refresh_cmd = subparsers.add_parser("refresh", help="Ask the backend to refresh a feed now.")
    refresh_cmd.add_argument("feed_id")

    return parser


# ---------------------------------------------------------------------- #
# Commands
# ---------------------------------------------------------------------- #


async def _categories(session: ReaderSession, args: argparse.Namespace) -> int:
    for category in await session.feeds.list_categories():
        print(f"{category.id}\t{category.name}")
    return 0


async def _feeds(session: ReaderSession, args: argparse.Namespace) -> int:
    for feed in await session.feeds.list_feeds(args.category):
        category = feed.category_name or "-"
        status = feed.last_status or "never fetched"
        print(f"{feed.id}\t{feed.name}\t{category}\t{feed.url}\t{status}")
    return 0


async def _items(session: ReaderSession, args: argparse.Namespace) -> int:
    view = session.item_view(
        ItemFilters(
            category_id=args.category,
            feed_id=args.feed,
            q=args.query,
            unread=args.unread,
            favorite=args.favorite,
        )
    )
    await view.open()
    while view.pages.result.page_count < args.pages and view.has_next_page:
        await view.fetch_next_page()
    for item in view.items:
        flags = ("R" if item.is_read else "-") + ("*" if item.is_favorite else "-")
        print(f"{item.id}\t{flags}\t{item.feed_name}\t{item.title}")
    print(f"{len(view.items)} of {view.total_count} item(s)")
    view.close()
    return 0


async def _unread(session: ReaderSession, args: argparse.Namespace) -> int:
    print(await session.unread.get(args.category, args.feed))
    return 0


async def _read(session: ReaderSession, args: argparse.Namespace) -> int:
    return _report(await session.item_actions.set_read(args.item_id, not args.unread))


async def _favorite(session: ReaderSession, args: argparse.Namespace) -> int:
    return _report(await session.item_actions.set_favorite(args.item_id, not args.off))


async def _refresh(session: ReaderSession, args: argparse.Namespace) -> int:
    return _report(await session.feeds.refresh_feed(args.feed_id))


def _report(result: Result) -> int:
    if result.ok:
        print("ok")
        return 0
    print(f"error: {result.message}", file=sys.stderr)
    return 1


COMMANDS: dict[str, Callable[[ReaderSession, argparse.Namespace], Awaitable[int]]] = {
    "categories": _categories,
    "feeds": _feeds,
    "items": _items,
    "unread": _unread,
    "read": _read,
    "favorite": _favorite,
    "refresh": _refresh,
}


async def run(args: argparse.Namespace, session_factory: SessionFactory) -> int:
    session = session_factory()
    try:
        return await COMMANDS[args.command](session, args)
    except ApiError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await session.close()


def main(argv: list[str] | None = None, session_factory: SessionFactory | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if session_factory is None:
        session_factory = lambda: ReaderSession(ReaderAPI(args.base_url))

    return asyncio.run(run(args, session_factory))


__all__ = ["main", "build_parser", "run"]
