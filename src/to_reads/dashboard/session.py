"""
Process-wide reader state.

A :class:`ReaderSession` owns the cache store, both coordinators, the
identity map, the notification center and the API client, and hands the same
instances to every dashboard component. Nothing in the package keeps global
cache state; tests and the CLI each build their own session and close it.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any

from to_reads.clients.api import ReaderAPI
from to_reads.config import core
from to_reads.query.fetch import FetchCoordinator
from to_reads.query.identity import IdentityMap
from to_reads.query.keys import QueryKey
from to_reads.query.mutation import MutationCoordinator
from to_reads.query.store import CacheStore

from .feeds import FeedManager
from .items import ITEMS, ItemActions, ItemFilters, ItemListView
from .notifications import NotificationCenter
from .transfer import TransferService
from .unread import UnreadCounter

logger = logging.getLogger(__name__)


class ReaderSession:
    """Wires the synchronization core to one backend."""

    def __init__(
        self,
        api: Any = None,
        *,
        stale_seconds: float | None = None,
        gc_seconds: float | None = None,
        page_size: int | None = None,
    ) -> None:
        self.api = api if api is not None else ReaderAPI()
        self.page_size = page_size or core.PAGE_SIZE
        self.notifications = NotificationCenter()
        self.store = CacheStore(gc_seconds=gc_seconds)
        self.fetcher = FetchCoordinator(self.store, stale_seconds=stale_seconds, on_error=self._on_fetch_error)
        self.identities = IdentityMap()
        self.mutations = MutationCoordinator(
            self.store,
            self.fetcher,
            identities=self.identities,
            notifier=self.notifications,
        )
        self.item_actions = ItemActions(self.store, self.mutations, self.api)
        self.feeds = FeedManager(self.fetcher, self.mutations, self.api)
        self.unread = UnreadCounter(self.fetcher, self.api)
        self.transfer = TransferService(self.mutations, self.api, self.notifications)

        self.filters = ItemFilters()
        self._view: ItemListView | None = None
        self._closed = False

    async def __aenter__(self) -> "ReaderSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Views and selection
    # ------------------------------------------------------------------ #

    @property
    def view(self) -> ItemListView:
        """The item list for the current filters."""

        if self._view is None:
            self._view = self.item_view(self.filters)
        return self._view

    def item_view(self, filters: ItemFilters | None = None) -> ItemListView:
        return ItemListView(
            self.fetcher,
            self.item_actions,
            self.api,
            filters or self.filters,
            page_size=self.page_size,
        )

    def set_filters(self, **changes: Any) -> ItemListView:
        """Switch the active list; fetches for lists no longer shown are cancelled."""

        filters = replace(self.filters, **changes)
        if filters == self.filters and self._view is not None:
            return self._view
        if self._view is not None:
            self._view.close()
        self.filters = filters
        self._view = self.item_view(filters)
        active = self._view.key

        def _inactive(key: QueryKey) -> bool:
            return key.resource == ITEMS and key != active

        cancelled = self.fetcher.cancel(_inactive)
        if cancelled:
            logger.debug("Filter change cancelled %d item fetch(es)", len(cancelled))
        return self._view

    def select_category(self, category_id: str | None) -> ItemListView:
        return self.set_filters(category_id=category_id, feed_id=None)

    def select_feed(self, feed_id: str | None) -> ItemListView:
        return self.set_filters(feed_id=feed_id)

    def search(self, text: str | None) -> ItemListView:
        return self.set_filters(q=(text or "").strip() or None)

    def show_unread_only(self, enabled: bool) -> ItemListView:
        return self.set_filters(unread=enabled)

    def show_favorites_only(self, enabled: bool) -> ItemListView:
        return self.set_filters(favorite=enabled)

    async def unread_count(self) -> int:
        return await self.unread.get(self.filters.category_id, self.filters.feed_id)

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._view is not None:
            self._view.close()
            self._view = None
        await self.mutations.drain()
        self.fetcher.cancel()
        self.fetcher.forget()
        self.identities.clear()
        self.store.clear()
        await self.api.close()
        logger.debug("Reader session closed")

    def _on_fetch_error(self, key: QueryKey, exc: BaseException) -> None:
        self.notifications.notify(f"Failed to load {key.resource}", level="error", detail=str(exc))


__all__ = ["ReaderSession"]
