"""
Article lists and the item mutations.

:class:`ItemListView` is one filtered, paginated, windowed list of items.
:class:`ItemActions` holds the writes on items (read flag, favorite flag,
batch read). Every write patches *all* cached item lists holding the item,
not just the list the user is looking at, plus every cached unread count the
item contributes to.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, replace
import logging
from typing import Any, Callable, Iterable

from to_reads.config import core
from to_reads.errors import ConcurrencyConflict, ErrorKind
from to_reads.models import Item, Page
from to_reads.query.fetch import FetchCoordinator
from to_reads.query.keys import QueryKey, any_matcher, derive_key, resource_matcher
from to_reads.query.mutation import MutationCoordinator
from to_reads.query.pagination import PagedResult, PaginationController
from to_reads.query.result import Err, Ok, Result
from to_reads.query.store import CacheEntry, CacheStore
from to_reads.query.windower import ViewportWindower, VirtualRow

from .unread import UNREAD, adjust_unread

logger = logging.getLogger(__name__)

ITEMS = "items"


@dataclass(frozen=True, slots=True)
class ItemFilters:
    category_id: str | None = None
    feed_id: str | None = None
    q: str | None = None
    unread: bool = False
    favorite: bool = False

    def params(self) -> dict[str, Any]:
        return asdict(self)


def items_key(filters: ItemFilters, page_size: int) -> QueryKey:
    return derive_key(ITEMS, filters.params(), page_size=page_size)


def cached_items(store: CacheStore, ids: Iterable[str] | None = None) -> dict[str, Item]:
    """Return every cached item (optionally only ``ids``), first copy wins."""

    wanted = set(ids) if ids is not None else None
    found: dict[str, Item] = {}
    for entry in store.entries(resource_matcher(ITEMS)):
        if not isinstance(entry.payload, PagedResult):
            continue
        for page in entry.payload.pages:
            for item in page.items:
                if wanted is not None and item.id not in wanted:
                    continue
                found.setdefault(item.id, item)
    return found


def flag_patch(ids: frozenset[str], flag: str, value: bool) -> Callable[[Any], Any]:
    """Return a payload patch setting ``flag`` on the listed items."""

    def _item(item: Item) -> Item:
        if item.id in ids and getattr(item, flag) != value:
            return replace(item, **{flag: value})
        return item

    def _patch(payload: Any) -> Any:
        if isinstance(payload, PagedResult):
            return payload.map_items(_item)
        return payload

    return _patch


class ItemActions:
    """Optimistic writes on items."""

    def __init__(self, store: CacheStore, mutations: MutationCoordinator, api: Any) -> None:
        self._store = store
        self._mutations = mutations
        self._api = api

    async def set_read(self, item_id: str, read: bool = True) -> Result:
        return await self._set_read_flags(
            [item_id],
            read,
            lambda: self._api.set_item_read(item_id, read),
            name="set_read",
            error_message="Failed to update read status",
        )

    async def mark_read(self, item_ids: Iterable[str], read: bool = True) -> Result:
        """Batch read/unread; the backend applies it all-or-nothing."""

        ids = list(dict.fromkeys(item_ids))
        if not ids:
            return Ok(None)
        return await self._set_read_flags(
            ids,
            read,
            lambda: self._api.batch_read(ids, read),
            name="batch_read",
            success_message="Batch update completed",
            error_message="Batch update failed",
        )

    async def set_favorite(self, item_id: str, favorite: bool = True) -> Result:
        patch = flag_patch(frozenset({item_id}), "is_favorite", favorite)
        return await self._mutations.mutate(
            lambda: self._api.set_item_favorite(item_id, favorite),
            matcher=resource_matcher(ITEMS),
            optimistic_patch=lambda key, payload: patch(payload),
            name="set_favorite",
            error_message="Failed to update favorite status",
        )

    async def toggle_favorite(self, item_id: str) -> Result:
        """Flip the cached favorite flag; an item no longer cached cannot be toggled."""

        item = cached_items(self._store, [item_id]).get(item_id)
        if item is None:
            logger.warning("Cannot toggle favorite on %s: item is not cached", item_id)
            return Err(
                ErrorKind.CONCURRENCY_CONFLICT,
                ConcurrencyConflict(f"item {item_id} is not cached; its favorite flag is unknown"),
            )
        return await self.set_favorite(item_id, not item.is_favorite)

    async def _set_read_flags(
        self,
        ids: list[str],
        read: bool,
        operation: Callable[[], Any],
        **kwargs: Any,
    ) -> Result:
        id_set = frozenset(ids)
        changed = [item for item in cached_items(self._store, id_set).values() if item.is_read != read]
        items_patch = flag_patch(id_set, "is_read", read)

        def _patch(key: QueryKey, payload: Any) -> Any:
            if key.resource == ITEMS:
                return items_patch(payload)
            return adjust_unread(key, payload, changed, read)

        return await self._mutations.mutate(
            operation,
            matcher=any_matcher(resource_matcher(ITEMS), resource_matcher(UNREAD)),
            optimistic_patch=_patch,
            **kwargs,
        )


def _log_background(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        # Fetch failures are already recorded on the entry and notified.
        logger.debug("Background page load failed: %s", exc)


class ItemListView:
    """One filtered article list: pages, window and item actions."""

    def __init__(
        self,
        fetcher: FetchCoordinator,
        actions: ItemActions,
        api: Any,
        filters: ItemFilters | None = None,
        *,
        page_size: int | None = None,
        row_height: float | None = None,
        overscan: int | None = None,
        viewport_size: float | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._actions = actions
        self._api = api
        self.filters = filters or ItemFilters()
        self.page_size = page_size or core.PAGE_SIZE
        self.key = items_key(self.filters, self.page_size)
        self.pages = PaginationController(fetcher, self.key, self._load_page)
        self.windower = ViewportWindower(
            row_height=row_height,
            overscan=overscan,
            viewport_size=viewport_size,
            on_near_end=self._on_near_end,
        )
        self._unsubscribe: Callable[[], None] | None = None
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def open(self, on_change: Callable[[CacheEntry], None] | None = None) -> PagedResult:
        """Subscribe to this list's entry and load its first page(s)."""

        if self._unsubscribe is None:
            self._unsubscribe = self._fetcher.store.subscribe(self.key, on_change or (lambda entry: None))
        return await self.pages.load()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._background):
            task.cancel()

    @property
    def is_open(self) -> bool:
        return self._unsubscribe is not None

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    @property
    def items(self) -> list[Item]:
        return self.pages.items

    @property
    def has_next_page(self) -> bool:
        return self.pages.has_next_page

    @property
    def total_count(self) -> int:
        return self.pages.result.total_count

    async def fetch_next_page(self) -> PagedResult:
        return await self.pages.fetch_next_page()

    async def refresh(self) -> PagedResult:
        return await self.pages.refresh()

    def on_scroll(self, scroll_offset: float, viewport_size: float | None = None) -> list[VirtualRow]:
        """Recompute the window; schedules the next page when near the end."""

        return self.windower.update(
            len(self.items),
            self.has_next_page,
            scroll_offset=scroll_offset,
            viewport_size=viewport_size,
            is_fetching=self.pages.is_fetching,
        )

    def row_item(self, row: VirtualRow) -> Item | None:
        if row.is_loader:
            return None
        items = self.items
        return items[row.index] if row.index < len(items) else None

    async def _load_page(self, page_number: int) -> Page:
        return await self._api.list_items(page=page_number, page_size=self.page_size, **self.filters.params())

    def _on_near_end(self) -> None:
        if self._background:
            return
        task = asyncio.get_running_loop().create_task(self.pages.fetch_next_page(), name=f"next-page:{self.key}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_background)

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def mark_read(self, item_id: str, read: bool = True) -> Result:
        return await self._actions.set_read(item_id, read)

    async def toggle_favorite(self, item_id: str) -> Result:
        return await self._actions.toggle_favorite(item_id)

    async def mark_all_read(self) -> Result:
        """Mark every loaded item of this list as read."""

        return await self._actions.mark_read([item.id for item in self.items], True)


__all__ = [
    "ITEMS",
    "ItemActions",
    "ItemFilters",
    "ItemListView",
    "cached_items",
    "flag_patch",
    "items_key",
]
