"""
Incrementally loaded result lists.

A :class:`PagedResult` is the cached payload of one infinite list. It keeps
every page it has received keyed by page number and exposes the merged view
through :attr:`PagedResult.items`:

* only the contiguous run ``1..N`` is merged, so a page that arrives early
  never leaves a hole in the sequence;
* pages are concatenated in ascending page order, so the merge does not
  depend on arrival order;
* an item id seen on an earlier page wins over later duplicates (the backend
  pages by offset, so a new article can push one across a page boundary).

:class:`PaginationController` drives one list: it loads the first page,
refetches all loaded pages when the list goes stale, and fetches the next
page on demand through the shared :class:`~to_reads.query.fetch.FetchCoordinator`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from to_reads.models import Item, Page

from .fetch import FetchCoordinator
from .keys import QueryKey

logger = logging.getLogger(__name__)

PageLoader = Callable[[int], Awaitable[Page]]


def next_page_number(last_page: Page | None) -> int | None:
    """Return the page after ``last_page`` or ``None`` when it was the last."""

    if last_page is None:
        return 1
    if last_page.page_number * last_page.page_size < last_page.total_count:
        return last_page.page_number + 1
    return None


@dataclass(frozen=True, slots=True)
class PagedResult:
    """Pages of one list, ordered by page number."""

    pages: tuple[Page, ...] = ()

    def with_page(self, page: Page) -> "PagedResult":
        """Return a copy holding ``page`` (replacing any page with its number)."""

        kept = [p for p in self.pages if p.page_number != page.page_number]
        kept.append(page)
        kept.sort(key=lambda p: p.page_number)
        return PagedResult(tuple(kept))

    @property
    def contiguous_pages(self) -> tuple[Page, ...]:
        run: list[Page] = []
        for expected, page in enumerate(self.pages, start=1):
            if page.page_number != expected:
                break
            run.append(page)
        return tuple(run)

    @property
    def items(self) -> list[Item]:
        seen: set[str] = set()
        merged: list[Item] = []
        for page in self.contiguous_pages:
            for item in page.items:
                if item.id in seen:
                    continue
                seen.add(item.id)
                merged.append(item)
        return merged

    @property
    def last_page(self) -> Page | None:
        run = self.contiguous_pages
        return run[-1] if run else None

    @property
    def has_next_page(self) -> bool:
        last = self.last_page
        return last is not None and next_page_number(last) is not None

    @property
    def total_count(self) -> int:
        last = self.last_page
        return last.total_count if last is not None else 0

    @property
    def page_count(self) -> int:
        return len(self.contiguous_pages)

    def map_items(self, fn: Callable[[Item], Item]) -> "PagedResult":
        pages = tuple(page.map_items(fn) for page in self.pages)
        if all(a is b for a, b in zip(pages, self.pages)):
            return self
        return PagedResult(pages)

    def contains(self, item_id: str) -> bool:
        return any(item.id == item_id for page in self.pages for item in page.items)


def _append_page(current: PagedResult | None, page: Page) -> PagedResult:
    return (current or PagedResult()).with_page(page)


class PaginationController:
    """Loads the pages of one list key and merges them into a :class:`PagedResult`."""

    def __init__(self, fetcher: FetchCoordinator, key: QueryKey, loader: PageLoader) -> None:
        self._fetcher = fetcher
        self.key = key
        self._loader = loader

    @property
    def result(self) -> PagedResult:
        payload = self._fetcher.store.get_payload(self.key)
        return payload if isinstance(payload, PagedResult) else PagedResult()

    @property
    def items(self) -> list[Item]:
        return self.result.items

    @property
    def has_next_page(self) -> bool:
        return self.result.has_next_page

    @property
    def is_fetching(self) -> bool:
        return self._fetcher.is_fetching(self.key)

    async def get_page(self, page_number: int) -> Page:
        """Read one page from the backend."""

        if page_number < 1:
            raise ValueError("page_number must be >= 1")
        page = await self._loader(page_number)
        if page.page_number != page_number:
            logger.warning("Asked for page %d of %s, got page %d", page_number, self.key, page.page_number)
        return page

    async def load(self) -> PagedResult:
        """Return a fresh merged result, refetching loaded pages when stale."""

        return await self._fetcher.ensure_fresh(self.key, self._refetch_loaded_pages)

    async def refresh(self) -> PagedResult:
        return await self._fetcher.fetch(self.key, self._refetch_loaded_pages)

    async def fetch_next_page(self) -> PagedResult:
        """Append the next page, joining any request already running for this list."""

        if self._fetcher.is_fetching(self.key):
            return await self._fetcher.wait(self.key)
        current = self.result
        if not current.pages:
            return await self.load()
        number = next_page_number(current.last_page)
        if number is None:
            return current
        logger.debug("Fetching page %d of %s", number, self.key)
        return await self._fetcher.fetch(self.key, lambda: self.get_page(number), reduce=_append_page)

    async def _refetch_loaded_pages(self) -> PagedResult:
        # Keep the user's scroll depth: refetch as many pages as were loaded.
        wanted = max(1, self.result.page_count)
        result = PagedResult()
        number: int | None = 1
        while number is not None and number <= wanted:
            result = result.with_page(await self.get_page(number))
            number = next_page_number(result.last_page)
        return result


__all__ = ["PageLoader", "PagedResult", "PaginationController", "next_page_number"]
