"""
In-memory query cache.

:class:`CacheStore` maps :class:`~to_reads.query.keys.QueryKey` to
:class:`CacheEntry` and owns the observer registry used by views. It knows
nothing about feeds or items; payloads are opaque, immutable values.

Rules callers can rely on:

* Every write notifies the key's subscribers synchronously, in subscription
  order, before the write returns.
* A subscriber must not write the key it is being notified about. Such a
  nested write is stored but not re-notified (a warning is logged) so a
  misbehaving view cannot spin the loop forever.
* No data operation raises. A subscriber that raises is logged and skipped.
* :meth:`CacheStore.restore` reverses every write made after the paired
  :meth:`CacheStore.snapshot_all` for exactly the captured keys, and applying
  it twice is the same as applying it once.
* An entry with no subscribers is collected ``gc_seconds`` after its last
  write or last unsubscribe, whichever is later, unless a fetch is running
  for it. Eviction listeners hear about every collected key.

Only the fetch and mutation coordinators write to the store; everything else
reads and subscribes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator

from to_reads.config import cache as cache_cfg

from .keys import Matcher, QueryKey, match_all

logger = logging.getLogger(__name__)

Subscriber = Callable[["CacheEntry"], None]
EvictionListener = Callable[[QueryKey], None]


class EntryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    FRESH = "fresh"
    STALE = "stale"
    ERROR = "error"


@dataclass
class CacheEntry:
    """Payload plus bookkeeping for one query key."""

    key: QueryKey
    status: EntryStatus = EntryStatus.IDLE
    payload: Any = None
    last_updated: float | None = None
    error: BaseException | None = None
    subscriber_count: int = 0
    idle_since: float | None = field(default_factory=time.monotonic)

    @property
    def has_payload(self) -> bool:
        return self.last_updated is not None

    def age(self, now: float | None = None) -> float:
        if self.last_updated is None:
            return float("inf")
        return (time.monotonic() if now is None else now) - self.last_updated


@dataclass(frozen=True)
class SnapshotRecord:
    key: QueryKey
    payload: Any
    status: EntryStatus
    last_updated: float | None


@dataclass(frozen=True)
class MutationSnapshot:
    """Pre-mutation payloads for a set of keys, used only for rollback."""

    records: tuple[SnapshotRecord, ...] = ()

    @property
    def keys(self) -> list[QueryKey]:
        return [r.key for r in self.records]

    def __len__(self) -> int:
        return len(self.records)


class CacheStore:
    """Process-local cache of query results with a synchronous observer registry."""

    def __init__(self, gc_seconds: float | None = None) -> None:
        self.gc_seconds = cache_cfg.GC_SECONDS if gc_seconds is None else gc_seconds
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._subscribers: dict[QueryKey, list[Subscriber]] = {}
        self._notifying: set[QueryKey] = set()
        self._gc_handles: dict[QueryKey, asyncio.TimerHandle] = {}
        self._evict_listeners: list[EvictionListener] = []

    # ------------------------------------------------------------------ #
    # READ helpers
    # ------------------------------------------------------------------ #

    def get(self, key: QueryKey) -> CacheEntry | None:
        return self._entries.get(key)

    def get_payload(self, key: QueryKey, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_payload:
            return default
        return entry.payload

    def keys(self, matcher: Matcher = match_all) -> list[QueryKey]:
        return [key for key in self._entries if matcher(key)]

    def entries(self, matcher: Matcher = match_all) -> Iterator[CacheEntry]:
        for key in self.keys(matcher):
            entry = self._entries.get(key)
            if entry is not None:
                yield entry

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------ #
    # WRITE helpers
    # ------------------------------------------------------------------ #

    def _ensure(self, key: QueryKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            entry.subscriber_count = len(self._subscribers.get(key, ()))
            if entry.subscriber_count:
                entry.idle_since = None
            self._entries[key] = entry
        return entry

    def set(self, key: QueryKey, payload: Any, status: EntryStatus = EntryStatus.FRESH) -> CacheEntry:
        """Replace ``key``'s payload and notify its subscribers."""

        entry = self._ensure(key)
        entry.payload = payload
        entry.status = status
        entry.error = None
        entry.last_updated = time.monotonic()
        logger.debug("Cache set %s (%s)", key, status.value)
        self._notify(entry)
        return entry

    def set_status(
        self,
        key: QueryKey,
        status: EntryStatus,
        error: BaseException | None = None,
    ) -> CacheEntry:
        """Change ``key``'s status while keeping its last payload."""

        entry = self._ensure(key)
        entry.status = status
        entry.error = error
        self._notify(entry)
        return entry

    def invalidate(self, matcher: Matcher) -> list[QueryKey]:
        """Mark matching entries stale without dropping their payload."""

        touched: list[QueryKey] = []
        for entry in list(self.entries(matcher)):
            entry.status = EntryStatus.STALE
            touched.append(entry.key)
            self._notify(entry)
        if touched:
            logger.debug("Invalidated %d cache entr%s", len(touched), "y" if len(touched) == 1 else "ies")
        return touched

    # ------------------------------------------------------------------ #
    # SNAPSHOT / ROLLBACK
    # ------------------------------------------------------------------ #

    def snapshot_all(self, matcher: Matcher) -> MutationSnapshot:
        records = tuple(
            SnapshotRecord(entry.key, entry.payload, entry.status, entry.last_updated)
            for entry in self.entries(matcher)
        )
        return MutationSnapshot(records)

    def restore(self, snapshot: MutationSnapshot) -> None:
        """Put every captured key back to its snapshot state."""

        for record in snapshot.records:
            entry = self._ensure(record.key)
            unchanged = (
                entry.payload is record.payload
                and entry.status is record.status
                and entry.last_updated == record.last_updated
            )
            if unchanged:
                continue
            entry.payload = record.payload
            # A fetch that was running at snapshot time has been cancelled.
            entry.status = EntryStatus.STALE if record.status is EntryStatus.LOADING else record.status
            entry.last_updated = record.last_updated
            self._notify(entry)
        if snapshot.records:
            logger.debug("Restored %d cache entries from snapshot", len(snapshot.records))

    # ------------------------------------------------------------------ #
    # SUBSCRIPTIONS
    # ------------------------------------------------------------------ #

    def subscribe(self, key: QueryKey, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``key``; returns an idempotent unsubscribe."""

        entry = self._ensure(key)
        self._subscribers.setdefault(key, []).append(callback)
        entry.subscriber_count += 1
        entry.idle_since = None
        handle = self._gc_handles.pop(key, None)
        if handle is not None:
            handle.cancel()

        active = True

        def _unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)
            current = self._entries.get(key)
            if current is None:
                return
            current.subscriber_count = max(0, current.subscriber_count - 1)
            if current.subscriber_count == 0:
                current.idle_since = time.monotonic()
                self._schedule_collection(key)

        return _unsubscribe

    def _notify(self, entry: CacheEntry) -> None:
        key = entry.key
        if entry.subscriber_count == 0:
            # Unobserved entries stay collectable for gc_seconds after their last write.
            entry.idle_since = time.monotonic()
            self._schedule_collection(key)
        if key in self._notifying:
            logger.warning("Subscriber wrote %s while being notified about it; skipping re-notify", key)
            return
        callbacks = list(self._subscribers.get(key, ()))
        if not callbacks:
            return
        self._notifying.add(key)
        try:
            for callback in callbacks:
                try:
                    callback(entry)
                except Exception:
                    logger.exception("Cache subscriber for %s failed", key)
        finally:
            self._notifying.discard(key)

    # ------------------------------------------------------------------ #
    # MAINTENANCE
    # ------------------------------------------------------------------ #

    def _schedule_collection(self, key: QueryKey) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: collection happens on the next explicit collect_garbage().
            return
        previous = self._gc_handles.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._gc_handles[key] = loop.call_later(self.gc_seconds, self._collect_key, key)

    def on_evict(self, listener: EvictionListener) -> None:
        """Call ``listener(key)`` whenever an idle entry is collected."""

        self._evict_listeners.append(listener)

    def _collectable(self, entry: CacheEntry) -> bool:
        # A running fetch rewrites the entry when it settles, re-arming collection.
        return (
            entry.subscriber_count == 0
            and entry.idle_since is not None
            and entry.status is not EntryStatus.LOADING
        )

    def _evict(self, key: QueryKey) -> None:
        del self._entries[key]
        handle = self._gc_handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        for listener in list(self._evict_listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("Eviction listener for %s failed", key)

    def _collect_key(self, key: QueryKey) -> None:
        self._gc_handles.pop(key, None)
        entry = self._entries.get(key)
        # A new subscription or write replaces this handle, so the entry has been idle throughout.
        if entry is None or not self._collectable(entry):
            return
        self._evict(key)
        logger.debug("Collected idle cache entry %s", key)

    def collect_garbage(self, now: float | None = None) -> list[QueryKey]:
        """Drop entries idle for at least ``gc_seconds`` with no subscribers."""

        now = time.monotonic() if now is None else now
        dropped = [
            key
            for key, entry in self._entries.items()
            if self._collectable(entry) and now - entry.idle_since >= self.gc_seconds
        ]
        for key in dropped:
            self._evict(key)
        if dropped:
            logger.debug("Collected %d idle cache entries", len(dropped))
        return dropped

    def clear(self) -> None:
        """Drop every entry and subscription (session teardown)."""

        for handle in self._gc_handles.values():
            handle.cancel()
        self._gc_handles.clear()
        self._entries.clear()
        self._subscribers.clear()
        self._notifying.clear()


__all__ = ["CacheEntry", "CacheStore", "EntryStatus", "MutationSnapshot", "SnapshotRecord"]
