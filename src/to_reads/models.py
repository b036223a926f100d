"""Dataclass models for reader records.

Records mirror the backend JSON schema::

    {"id": 3, "name": "Tech", "created_at": "..."}                      # category
    {"id": 5, "name": "...", "url": "...", "category_id": 3, ...}         # feed
    {"id": 9, "feed_id": 5, "feed_name": "...", "category": "Tech", ...}  # item

All ids are held as ``str`` on the client so optimistic records (``temp-1``)
and server records share one identity space. Records are frozen; patches use
:func:`dataclasses.replace` so cached payloads are never mutated in place.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import math
from typing import Any, Callable, Dict, Mapping, Optional

from to_reads.errors import MalformedResponse


def _id(value: Any) -> str:
    if value is None or value == "":
        raise MalformedResponse("record is missing an id")
    return str(value)


def _opt_id(value: Any) -> Optional[str]:
    if value is None or value == "" or value == 0:
        return None
    return str(value)


def _parse(cls_name: str, raw: Any, build: Callable[[Mapping[str, Any]], Any]) -> Any:
    if not isinstance(raw, Mapping):
        raise MalformedResponse(f"{cls_name} must be an object, got {type(raw).__name__}")
    try:
        return build(raw)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedResponse(f"invalid {cls_name}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    name: str
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Any) -> "Category":
        return _parse(
            "category",
            raw,
            lambda d: cls(id=_id(d["id"]), name=str(d["name"]), created_at=d.get("created_at")),
        )


@dataclass(frozen=True, slots=True)
class Feed:
    id: str
    name: str
    url: str
    category_id: Optional[str] = None
    fetch_interval_minutes: int = 60
    last_fetched_at: Optional[str] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    category_name: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Any) -> "Feed":
        return _parse(
            "feed",
            raw,
            lambda d: cls(
                id=_id(d["id"]),
                name=str(d["name"]),
                url=str(d["url"]),
                category_id=_opt_id(d.get("category_id")),
                fetch_interval_minutes=int(d.get("fetch_interval_minutes") or 60),
                last_fetched_at=d.get("last_fetched_at"),
                last_status=d.get("last_status"),
                last_error=d.get("last_error"),
                category_name=d.get("category_name"),
            ),
        )


@dataclass(frozen=True, slots=True)
class Item:
    id: str
    feed_id: str
    feed_name: str
    title: str
    link: str
    summary: str = ""
    category_id: Optional[str] = None
    category_name: Optional[str] = None
    published_at: Optional[str] = None
    is_read: bool = False
    is_favorite: bool = False

    @classmethod
    def from_api(cls, raw: Any) -> "Item":
        return _parse(
            "item",
            raw,
            lambda d: cls(
                id=_id(d["id"]),
                feed_id=_id(d["feed_id"]),
                feed_name=str(d.get("feed_name") or ""),
                title=str(d.get("title") or ""),
                link=str(d.get("link") or ""),
                summary=str(d.get("summary") or ""),
                category_id=_opt_id(d.get("category_id")),
                category_name=d.get("category"),
                published_at=d.get("published_at"),
                is_read=bool(d.get("is_read", False)),
                is_favorite=bool(d.get("is_favorite", False)),
            ),
        )


@dataclass(frozen=True, slots=True)
class Page:
    """One page of items as returned by ``GET /items``."""

    page_number: int
    items: tuple[Item, ...]
    total_count: int
    page_size: int

    def __post_init__(self) -> None:
        if self.page_number < 1:
            raise ValueError("page_number must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    @classmethod
    def from_api(cls, raw: Any) -> "Page":
        def build(d: Mapping[str, Any]) -> "Page":
            items = d["items"] or []
            if not isinstance(items, list):
                raise TypeError("items must be a list")
            return cls(
                page_number=int(d["page"]),
                items=tuple(Item.from_api(i) for i in items),
                total_count=int(d["total"]),
                page_size=int(d["page_size"]),
            )

        return _parse("items page", raw, build)

    def map_items(self, fn: Callable[[Item], Item]) -> "Page":
        mapped = tuple(fn(item) for item in self.items)
        if all(a is b for a, b in zip(mapped, self.items)):
            return self
        return Page(self.page_number, mapped, self.total_count, self.page_size)


@dataclass(frozen=True, slots=True)
class UnreadCount:
    unread: int

    @classmethod
    def from_api(cls, raw: Any) -> "UnreadCount":
        return _parse("unread count", raw, lambda d: cls(unread=int(d["unread"])))


@dataclass(frozen=True, slots=True)
class TransferFeed:
    name: str
    url: str
    category: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TransferPayload:
    """Categories and feeds moved through ``/export`` and ``/import``."""

    categories: tuple[str, ...] = ()
    feeds: tuple[TransferFeed, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, raw: Any) -> "TransferPayload":
        def build(d: Mapping[str, Any]) -> "TransferPayload":
            categories = d["categories"]
            feeds = d["feeds"]
            if not isinstance(categories, list) or not isinstance(feeds, list):
                raise TypeError("categories and feeds must be lists")
            return cls(
                categories=tuple(str(c["name"]) for c in categories),
                feeds=tuple(
                    TransferFeed(name=str(f["name"]), url=str(f["url"]), category=f.get("category"))
                    for f in feeds
                ),
            )

        return _parse("transfer payload", raw, build)

    def to_api(self) -> Dict[str, Any]:
        return {
            "categories": [{"name": name} for name in self.categories],
            "feeds": [asdict(feed) for feed in self.feeds],
        }


__all__ = [
    "Category",
    "Feed",
    "Item",
    "Page",
    "TransferFeed",
    "TransferPayload",
    "UnreadCount",
]
