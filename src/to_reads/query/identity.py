"""
Temporary identities for optimistically created records.

An optimistic create needs an id before the server has assigned one.
:class:`IdentityMap` hands out ``temp-N`` ids and later records which server
id each one became, so that:

* any action issued against ``temp-N`` while the create is in flight can
  ``await identities.resolve("temp-N")`` and continue with the server id;
* :func:`rewrite_identity` can swap the temporary id for the server id in
  every cached payload once the create commits.

If the create fails, waiters resolve to ``None``: the record never existed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
from typing import Any

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_PREFIX)


class IdentityMap:
    """Tracks ``temp-N`` ids until the server confirms or rejects them."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._resolved: dict[str, str | None] = {}
        self._pending: dict[str, asyncio.Future] = {}

    def reserve(self) -> str:
        temp_id = f"{TEMP_PREFIX}{next(self._counter)}"
        self._pending[temp_id] = asyncio.get_running_loop().create_future()
        return temp_id

    def lookup(self, record_id: str) -> str | None:
        """Return the best-known id without waiting."""

        if not is_temp_id(record_id):
            return record_id
        return self._resolved.get(record_id, record_id)

    async def resolve(self, record_id: str) -> str | None:
        """Return the server id for ``record_id``, waiting for a pending create."""

        if not is_temp_id(record_id):
            return record_id
        if record_id in self._resolved:
            return self._resolved[record_id]
        future = self._pending.get(record_id)
        if future is None:
            logger.warning("Unknown temporary id %s", record_id)
            return None
        return await asyncio.shield(future)

    def confirm(self, temp_id: str, server_id: str) -> None:
        self._resolved[temp_id] = server_id
        future = self._pending.pop(temp_id, None)
        if future is not None and not future.done():
            future.set_result(server_id)
        logger.debug("Temporary id %s is now %s", temp_id, server_id)

    def fail(self, temp_id: str) -> None:
        self._resolved[temp_id] = None
        future = self._pending.pop(temp_id, None)
        if future is not None and not future.done():
            future.set_result(None)

    def clear(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_result(None)
        self._pending.clear()
        self._resolved.clear()


def rewrite_identity(payload: Any, old_id: str, new_id: str) -> Any:
    """Return ``payload`` with every id-like field equal to ``old_id`` replaced.

    Walks dataclasses, lists and tuples. Fields named ``id`` or ending in
    ``_id`` are rewritten; untouched sub-objects are returned as-is so the
    result shares structure with the input.
    """

    if isinstance(payload, list):
        items = [rewrite_identity(p, old_id, new_id) for p in payload]
        return payload if all(a is b for a, b in zip(items, payload)) else items
    if isinstance(payload, tuple):
        items = tuple(rewrite_identity(p, old_id, new_id) for p in payload)
        return payload if all(a is b for a, b in zip(items, payload)) else items
    if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
        changes: dict[str, Any] = {}
        for f in dataclasses.fields(payload):
            value = getattr(payload, f.name)
            if (f.name == "id" or f.name.endswith("_id")) and value == old_id:
                changes[f.name] = new_id
            elif isinstance(value, (list, tuple)) or dataclasses.is_dataclass(value):
                rewritten = rewrite_identity(value, old_id, new_id)
                if rewritten is not value:
                    changes[f.name] = rewritten
        return dataclasses.replace(payload, **changes) if changes else payload
    return payload


__all__ = ["IdentityMap", "TEMP_PREFIX", "is_temp_id", "rewrite_identity"]
