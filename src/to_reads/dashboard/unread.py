"""Unread-count queries and their optimistic adjustment."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from to_reads.models import Item, UnreadCount
from to_reads.query.fetch import FetchCoordinator
from to_reads.query.keys import QueryKey, derive_key
from to_reads.query.store import CacheEntry

logger = logging.getLogger(__name__)

UNREAD = "unread-count"


def unread_key(category_id: str | None = None, feed_id: str | None = None) -> QueryKey:
    return derive_key(UNREAD, category_id=category_id, feed_id=feed_id)


def in_scope(item: Item, key: QueryKey) -> bool:
    """True when ``item`` is counted by the unread-count entry ``key``."""

    feed_id = key.get("feed_id")
    if feed_id is not None and item.feed_id != feed_id:
        return False
    category_id = key.get("category_id")
    if category_id is not None and item.category_id != category_id:
        return False
    return True


def adjust_unread(key: QueryKey, payload: Any, changed: Iterable[Item], read: bool) -> Any:
    """Shift a cached count by the in-scope items whose read flag is flipping.

    ``changed`` must only hold items whose current ``is_read`` differs from
    ``read``; counts never go below zero.
    """

    if not isinstance(payload, UnreadCount):
        return payload
    delta = sum(1 for item in changed if in_scope(item, key))
    if not delta:
        return payload
    unread = payload.unread - delta if read else payload.unread + delta
    return UnreadCount(max(0, unread))


class UnreadCounter:
    """Reads unread counts per ``{category, feed}`` scope."""

    def __init__(self, fetcher: FetchCoordinator, api: Any) -> None:
        self._fetcher = fetcher
        self._api = api

    async def get(self, category_id: str | None = None, feed_id: str | None = None) -> int:
        key = unread_key(category_id, feed_id)

        async def _load() -> UnreadCount:
            return await self._api.unread_count(category_id=category_id, feed_id=feed_id)

        result = await self._fetcher.ensure_fresh(key, _load)
        return result.unread if isinstance(result, UnreadCount) else 0

    def cached(self, category_id: str | None = None, feed_id: str | None = None) -> int | None:
        payload = self._fetcher.store.get_payload(unread_key(category_id, feed_id))
        return payload.unread if isinstance(payload, UnreadCount) else None

    def subscribe(
        self,
        callback: Callable[[int | None], None],
        category_id: str | None = None,
        feed_id: str | None = None,
    ) -> Callable[[], None]:
        def _on_change(entry: CacheEntry) -> None:
            payload = entry.payload
            callback(payload.unread if isinstance(payload, UnreadCount) else None)

        return self._fetcher.store.subscribe(unread_key(category_id, feed_id), _on_change)


__all__ = ["UNREAD", "UnreadCounter", "adjust_unread", "in_scope", "unread_key"]
