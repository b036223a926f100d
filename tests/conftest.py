import asyncio
import itertools
import os
import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Add the src directory to sys.path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

# Keep the settings deterministic regardless of the developer's .env
os.environ.setdefault("TO_READS_API_BASE_URL", "http://backend.test/api")
os.environ.setdefault("TO_READS_STALE_SECONDS", "30")
os.environ.setdefault("TO_READS_GC_SECONDS", "300")

from to_reads.dashboard.session import ReaderSession  # noqa: E402
from to_reads.errors import ServerRejected  # noqa: E402
from to_reads.models import (  # noqa: E402
    Category,
    Feed,
    Item,
    Page,
    TransferFeed,
    TransferPayload,
    UnreadCount,
)


class FakeBackend:
    """In-memory stand-in for :class:`to_reads.clients.api.ReaderAPI`.

    ``fail(method)`` makes the next call of ``method`` raise; ``hold(method)``
    returns an event that every call of ``method`` waits on until it is set.
    """

    def __init__(self) -> None:
        self.categories: dict[str, Category] = {}
        self.feeds: dict[str, Feed] = {}
        self.items: dict[str, Item] = {}
        self.calls: list[tuple[str, tuple, dict]] = []
        self.failures: dict[str, BaseException] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.closed = False
        self._ids = itertools.count(100)

    # -- test helpers ----------------------------------------------------

    def next_ids_from(self, start: int) -> None:
        self._ids = itertools.count(start)

    def _next_id(self) -> str:
        return str(next(self._ids))

    def add_category(self, name: str, category_id: str | None = None) -> Category:
        category = Category(id=category_id or self._next_id(), name=name)
        self.categories[category.id] = category
        return category

    def add_feed(self, name: str, category_id: str | None = None, feed_id: str | None = None) -> Feed:
        feed = Feed(
            id=feed_id or self._next_id(),
            name=name,
            url=f"https://example.com/{name.lower()}.xml",
            category_id=category_id,
            category_name=self.categories[category_id].name if category_id else None,
        )
        self.feeds[feed.id] = feed
        return feed

    def add_items(self, feed_id: str, count: int, *, read: bool = False) -> list[Item]:
        feed = self.feeds[feed_id]
        added = []
        for _ in range(count):
            item_id = self._next_id()
            item = Item(
                id=item_id,
                feed_id=feed.id,
                feed_name=feed.name,
                title=f"Article {item_id}",
                link=f"https://example.com/a/{item_id}",
                category_id=feed.category_id,
                category_name=feed.category_name,
                is_read=read,
            )
            self.items[item_id] = item
            added.append(item)
        return added

    def fail(self, method: str, exc: BaseException | None = None) -> None:
        self.failures[method] = exc or ServerRejected(500, "internal error")

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    def count(self, method: str) -> int:
        return sum(1 for name, _, _ in self.calls if name == method)

    async def _enter(self, method: str, *args, **kwargs) -> None:
        self.calls.append((method, args, kwargs))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        exc = self.failures.pop(method, None)
        if exc is not None:
            raise exc

    def _filtered(self, category_id=None, feed_id=None, q=None, unread=False, favorite=False) -> list[Item]:
        out = []
        for item in sorted(self.items.values(), key=lambda i: int(i.id)):
            if category_id and item.category_id != category_id:
                continue
            if feed_id and item.feed_id != feed_id:
                continue
            if q and q.lower() not in item.title.lower():
                continue
            if unread and item.is_read:
                continue
            if favorite and not item.is_favorite:
                continue
            out.append(item)
        return out

    # -- API surface -----------------------------------------------------

    async def list_categories(self):
        await self._enter("list_categories")
        return list(self.categories.values())

    async def create_category(self, name):
        await self._enter("create_category", name)
        return self.add_category(name)

    async def delete_category(self, category_id):
        await self._enter("delete_category", category_id)
        self.categories.pop(category_id, None)

    async def list_feeds(self, category_id=None):
        await self._enter("list_feeds", category_id=category_id)
        return [f for f in self.feeds.values() if category_id is None or f.category_id == category_id]

    async def create_feed(self, name, url, category_id=None):
        await self._enter("create_feed", name, url, category_id)
        feed = self.add_feed(name, category_id)
        feed = replace(feed, url=url)
        self.feeds[feed.id] = feed
        return feed

    async def update_feed(self, feed_id, *, name=None, category_id=...):
        await self._enter("update_feed", feed_id, name=name, category_id=category_id)
        feed = self.feeds[feed_id]
        if name is not None:
            feed = replace(feed, name=name)
        if category_id is not ...:
            feed = replace(feed, category_id=category_id)
        self.feeds[feed_id] = feed
        return feed

    async def delete_feed(self, feed_id):
        await self._enter("delete_feed", feed_id)
        self.feeds.pop(feed_id, None)
        self.items = {k: v for k, v in self.items.items() if v.feed_id != feed_id}

    async def refresh_feed(self, feed_id):
        await self._enter("refresh_feed", feed_id)
        return {"status": "ok"}

    async def list_items(self, *, page, page_size, **filters):
        await self._enter("list_items", page=page, page_size=page_size, **filters)
        matched = self._filtered(**filters)
        start = (page - 1) * page_size
        return Page(
            page_number=page,
            items=tuple(matched[start : start + page_size]),
            total_count=len(matched),
            page_size=page_size,
        )

    async def set_item_read(self, item_id, read):
        await self._enter("set_item_read", item_id, read)
        self.items[item_id] = replace(self.items[item_id], is_read=read)

    async def set_item_favorite(self, item_id, favorite):
        await self._enter("set_item_favorite", item_id, favorite)
        self.items[item_id] = replace(self.items[item_id], is_favorite=favorite)

    async def batch_read(self, item_ids, read=True):
        await self._enter("batch_read", list(item_ids), read)
        for item_id in item_ids:
            self.items[item_id] = replace(self.items[item_id], is_read=read)

    async def unread_count(self, category_id=None, feed_id=None):
        await self._enter("unread_count", category_id=category_id, feed_id=feed_id)
        return UnreadCount(len(self._filtered(category_id, feed_id, unread=True)))

    async def export_data(self):
        await self._enter("export_data")
        return TransferPayload(
            categories=tuple(c.name for c in self.categories.values()),
            feeds=tuple(
                TransferFeed(name=f.name, url=f.url, category=f.category_name) for f in self.feeds.values()
            ),
        )

    async def import_data(self, payload):
        await self._enter("import_data", payload)
        for name in payload.categories:
            self.add_category(name)
        return {"status": "ok"}

    async def close(self):
        self.closed = True


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def session(backend):
    return ReaderSession(backend, stale_seconds=30, gc_seconds=300, page_size=5)
