"""
Categories and feeds.

Creates are optimistic: the new record appears under a ``temp-N`` id right
away and is renamed to its server id in every cached list once the backend
answers. Any later action on a temporary id first waits for that answer; if
the create failed the action is skipped.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Any

from to_reads.models import Category, Feed
from to_reads.query.fetch import FetchCoordinator
from to_reads.query.keys import QueryKey, derive_key, exact_matcher, resource_matcher
from to_reads.query.mutation import MutationCoordinator
from to_reads.query.result import Ok, Result

from .items import ITEMS
from .unread import UNREAD

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
FEEDS = "feeds"

_UNSET: Any = object()


def categories_key() -> QueryKey:
    return derive_key(CATEGORIES)


def feeds_key(category_id: str | None = None) -> QueryKey:
    return derive_key(FEEDS, category_id=category_id)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FeedManager:
    """Reads and writes for the category and feed lists."""

    def __init__(self, fetcher: FetchCoordinator, mutations: MutationCoordinator, api: Any) -> None:
        self._fetcher = fetcher
        self._mutations = mutations
        self._api = api

    @property
    def identities(self):
        return self._mutations.identities

    # ------------------------------------------------------------------ #
    # READ helpers
    # ------------------------------------------------------------------ #

    async def list_categories(self) -> tuple[Category, ...]:
        async def _load() -> tuple[Category, ...]:
            return tuple(await self._api.list_categories())

        return await self._fetcher.ensure_fresh(categories_key(), _load) or ()

    async def list_feeds(self, category_id: str | None = None) -> tuple[Feed, ...]:
        async def _load() -> tuple[Feed, ...]:
            return tuple(await self._api.list_feeds(category_id=category_id))

        return await self._fetcher.ensure_fresh(feeds_key(category_id), _load) or ()

    def category_name(self, category_id: str | None) -> str | None:
        if category_id is None:
            return None
        for category in self._fetcher.store.get_payload(categories_key(), ()):
            if category.id == category_id:
                return category.name
        return None

    # ------------------------------------------------------------------ #
    # Categories
    # ------------------------------------------------------------------ #

    async def create_category(self, name: str) -> Result:
        name = name.strip()
        if not name:
            raise ValueError("category name must not be empty")
        temp_id = self.identities.reserve()
        optimistic = Category(id=temp_id, name=name, created_at=_now())

        return await self._mutations.mutate(
            lambda: self._api.create_category(name),
            matcher=exact_matcher(categories_key()),
            optimistic_patch=lambda key, payload: (*payload, optimistic),
            temp_id=temp_id,
            resolve_id=lambda created: created.id,
            name="create_category",
            success_message="Category created",
            error_message="Failed to create category",
        )

    async def delete_category(self, category_id: str) -> Result:
        server_id = await self.identities.resolve(category_id)
        if server_id is None:
            logger.info("Skipping delete of category %s: it was never created", category_id)
            return Ok(None)

        def _patch(key: QueryKey, payload: Any) -> Any:
            kept = tuple(c for c in payload if c.id != server_id)
            return payload if len(kept) == len(payload) else kept

        return await self._mutations.mutate(
            lambda: self._api.delete_category(server_id),
            matcher=exact_matcher(categories_key()),
            optimistic_patch=_patch,
            invalidate=(resource_matcher(FEEDS),),
            name="delete_category",
            success_message="Category deleted",
            error_message="Failed to delete category",
        )

    # ------------------------------------------------------------------ #
    # Feeds
    # ------------------------------------------------------------------ #

    async def create_feed(self, name: str, url: str, category_id: str | None = None) -> Result:
        if category_id is not None:
            category_id = await self.identities.resolve(category_id)
            if category_id is None:
                logger.info("Skipping feed create: its category was never created")
                return Ok(None)

        temp_id = self.identities.reserve()
        optimistic = Feed(
            id=temp_id,
            name=name,
            url=url,
            category_id=category_id,
            category_name=self.category_name(category_id),
        )

        def _patch(key: QueryKey, payload: Any) -> Any:
            scope = key.get("category_id")
            if scope is not None and scope != category_id:
                return payload
            return (*payload, optimistic)

        return await self._mutations.mutate(
            lambda: self._api.create_feed(name, url, category_id),
            matcher=resource_matcher(FEEDS),
            optimistic_patch=_patch,
            temp_id=temp_id,
            resolve_id=lambda created: created.id,
            name="create_feed",
            success_message="Feed added",
            error_message="Failed to add feed",
        )

    async def update_feed(self, feed_id: str, *, name: str | None = None, category_id: Any = _UNSET) -> Result:
        """Rename a feed and/or move it; ``category_id=None`` clears its category."""

        server_id = await self.identities.resolve(feed_id)
        if server_id is None:
            logger.info("Skipping update of feed %s: it was never created", feed_id)
            return Ok(None)
        if category_id is not _UNSET and category_id is not None:
            category_id = await self.identities.resolve(category_id)
            if category_id is None:
                logger.info("Skipping update of feed %s: target category was never created", feed_id)
                return Ok(None)

        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if category_id is not _UNSET:
            changes["category_id"] = category_id
            changes["category_name"] = self.category_name(category_id)

        def _patch(key: QueryKey, payload: Any) -> Any:
            if not changes or not any(f.id == server_id for f in payload):
                return payload
            return tuple(replace(f, **changes) if f.id == server_id else f for f in payload)

        kwargs: dict[str, Any] = {"name": name}
        if category_id is not _UNSET:
            kwargs["category_id"] = category_id

        return await self._mutations.mutate(
            lambda: self._api.update_feed(server_id, **kwargs),
            matcher=resource_matcher(FEEDS),
            optimistic_patch=_patch,
            name="update_feed",
            success_message="Feed updated",
            error_message="Failed to update feed",
        )

    async def delete_feed(self, feed_id: str) -> Result:
        server_id = await self.identities.resolve(feed_id)
        if server_id is None:
            logger.info("Skipping delete of feed %s: it was never created", feed_id)
            return Ok(None)

        def _patch(key: QueryKey, payload: Any) -> Any:
            kept = tuple(f for f in payload if f.id != server_id)
            return payload if len(kept) == len(payload) else kept

        return await self._mutations.mutate(
            lambda: self._api.delete_feed(server_id),
            matcher=resource_matcher(FEEDS),
            optimistic_patch=_patch,
            invalidate=(resource_matcher(ITEMS), resource_matcher(UNREAD)),
            name="delete_feed",
            success_message="Feed deleted",
            error_message="Failed to delete feed",
        )

    async def refresh_feed(self, feed_id: str) -> Result:
        """Ask the backend to pull the feed now, then reload everything it feeds."""

        server_id = await self.identities.resolve(feed_id)
        if server_id is None:
            logger.info("Skipping refresh of feed %s: it was never created", feed_id)
            return Ok(None)
        return await self._mutations.mutate(
            lambda: self._api.refresh_feed(server_id),
            matcher=resource_matcher(FEEDS),
            invalidate=(resource_matcher(ITEMS), resource_matcher(UNREAD)),
            name="refresh_feed",
            success_message="Feed refreshed",
            error_message="Failed to refresh feed",
        )


__all__ = ["CATEGORIES", "FEEDS", "FeedManager", "categories_key", "feeds_key"]
