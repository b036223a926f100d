"""Async client for the reader backend REST API.

Every endpoint answers with the envelope ``{"code", "message", "data"}``.
:meth:`ReaderAPI._request` unwraps it and maps failures onto the error
taxonomy in :mod:`to_reads.errors`:

* the request never completed -> :class:`~to_reads.errors.NetworkFailure`
* non-2xx status -> :class:`~to_reads.errors.ServerRejected`
* body is not JSON or ``data`` is missing -> :class:`~to_reads.errors.MalformedResponse`

Ids are strings on the client and integers on the wire; :func:`wire_id`
converts on the way out, the model parsers on the way in.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping

import aiohttp

from to_reads.config import core
from to_reads.errors import MalformedResponse, NetworkFailure, ServerRejected
from to_reads.models import Category, Feed, Page, TransferPayload, UnreadCount

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def wire_id(value: str | int) -> int | str:
    """Return ``value`` as an int when it is numeric (the backend's id type)."""

    text = str(value)
    return int(text) if text.isdigit() else text


def _list(data: Any, what: str) -> list:
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedResponse(f"{what} must be a list, got {type(data).__name__}")
    return data


class ReaderAPI:
    """Thin async wrapper around the backend endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = (base_url or core.API_BASE_URL).rstrip("/")
        self.timeout = timeout or core.REQUEST_TIMEOUT
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "ReaderAPI":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                params=query or None,
                json=payload,
            ) as resp:
                status = resp.status
                try:
                    body = await resp.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError):
                    body = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise NetworkFailure(method, url, str(exc) or type(exc).__name__) from exc

        if status >= 400 or status < 200:
            message = ""
            if isinstance(body, dict):
                message = str(body.get("message") or body.get("error") or "")
            logger.debug("%s %s -> %d %s", method, url, status, message)
            raise ServerRejected(status, message or "request failed")

        if not isinstance(body, dict):
            raise MalformedResponse(f"{method} {path} did not return a JSON object")
        if body.get("data") is None:
            raise MalformedResponse(f"{method} {path} response has no data")
        return body["data"]

    # ------------------------------------------------------------------ #
    # Categories
    # ------------------------------------------------------------------ #

    async def list_categories(self) -> List[Category]:
        data = await self._request("GET", "/categories")
        return [Category.from_api(c) for c in _list(data, "categories")]

    async def create_category(self, name: str) -> Category:
        data = await self._request("POST", "/categories", payload={"name": name})
        return Category.from_api(data)

    async def delete_category(self, category_id: str) -> None:
        await self._request("DELETE", f"/categories/{category_id}")

    # ------------------------------------------------------------------ #
    # Feeds
    # ------------------------------------------------------------------ #

    async def list_feeds(self, category_id: str | None = None) -> List[Feed]:
        params = {"category_id": wire_id(category_id) if category_id else None}
        data = await self._request("GET", "/feeds", params=params)
        return [Feed.from_api(f) for f in _list(data, "feeds")]

    async def create_feed(self, name: str, url: str, category_id: str | None = None) -> Feed:
        payload = {
            "name": name,
            "url": url,
            "category_id": wire_id(category_id) if category_id else None,
        }
        data = await self._request("POST", "/feeds", payload=payload)
        return Feed.from_api(data)

    async def update_feed(self, feed_id: str, *, name: str | None = None, category_id: Any = _UNSET) -> Feed:
        """Patch a feed; ``category_id=None`` moves it out of its category."""

        payload: Dict[str, Any] = {}
        if name is not None:
            payload["name"] = name
        if category_id is not _UNSET:
            # The backend clears the category when given 0.
            payload["category_id"] = wire_id(category_id) if category_id else 0
        data = await self._request("PATCH", f"/feeds/{feed_id}", payload=payload)
        return Feed.from_api(data)

    async def delete_feed(self, feed_id: str) -> None:
        await self._request("DELETE", f"/feeds/{feed_id}")

    async def refresh_feed(self, feed_id: str) -> Any:
        return await self._request("POST", f"/feeds/{feed_id}/refresh")

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    async def list_items(
        self,
        *,
        page: int,
        page_size: int,
        category_id: str | None = None,
        feed_id: str | None = None,
        q: str | None = None,
        unread: bool = False,
        favorite: bool = False,
    ) -> Page:
        params = {
            "page": page,
            "page_size": page_size,
            "category_id": wire_id(category_id) if category_id else None,
            "feed_id": wire_id(feed_id) if feed_id else None,
            "q": q or None,
            "unread": "true" if unread else None,
            "favorite": "true" if favorite else None,
        }
        data = await self._request("GET", "/items", params=params)
        return Page.from_api(data)

    async def set_item_read(self, item_id: str, read: bool) -> None:
        await self._request("PATCH", f"/items/{item_id}/read", payload={"read": read})

    async def set_item_favorite(self, item_id: str, favorite: bool) -> None:
        await self._request("PATCH", f"/items/{item_id}/favorite", payload={"favorite": favorite})

    async def batch_read(self, item_ids: Iterable[str], read: bool = True) -> None:
        payload = {"item_ids": [wire_id(i) for i in item_ids], "read": read}
        await self._request("POST", "/items/read-batch", payload=payload)

    async def unread_count(self, category_id: str | None = None, feed_id: str | None = None) -> UnreadCount:
        params = {
            "category_id": wire_id(category_id) if category_id else None,
            "feed_id": wire_id(feed_id) if feed_id else None,
        }
        data = await self._request("GET", "/items/unread-count", params=params)
        return UnreadCount.from_api(data)

    # ------------------------------------------------------------------ #
    # Transfer
    # ------------------------------------------------------------------ #

    async def export_data(self) -> TransferPayload:
        data = await self._request("GET", "/export")
        return TransferPayload.from_api(data)

    async def import_data(self, payload: TransferPayload) -> Any:
        return await self._request("POST", "/import", payload=payload.to_api())


__all__ = ["ReaderAPI", "wire_id"]
