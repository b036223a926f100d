"""
Request de-duplication and freshness for cached queries.

:class:`FetchCoordinator` is the only reader of the network on behalf of the
cache. For each key it keeps at most one *current* request:

* :meth:`FetchCoordinator.ensure_fresh` returns a fresh payload straight from
  the store, joins the current request when one is running, and otherwise
  starts one.
* :meth:`FetchCoordinator.fetch` always starts a new request and supersedes
  the previous one for that key.

Every request is stamped with a start sequence number. Only the request with
the latest number for its key may write its result; anything older settles
with :class:`~to_reads.errors.ConcurrencyConflict` and callers waiting on it
transparently follow the newer request. Failures keep the last good payload
in place (status ``error``) and are re-raised to the callers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from to_reads.config import cache as cache_cfg
from to_reads.errors import ConcurrencyConflict, classify

from .keys import Matcher, QueryKey, match_all
from .store import CacheEntry, CacheStore, EntryStatus

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]
Reducer = Callable[[Any, Any], Any]
ErrorListener = Callable[[QueryKey, BaseException], None]


@dataclass
class _Flight:
    key: QueryKey
    seq: int
    prior_status: EntryStatus
    task: asyncio.Task = field(init=False, repr=False)
    superseded: bool = False
    resume: bool = False


def _consume_result(task: asyncio.Task) -> None:
    # Superseded or background requests may finish with nobody awaiting them.
    if not task.cancelled():
        task.exception()


class FetchCoordinator:
    """Single-flight fetches over a :class:`CacheStore`."""

    def __init__(
        self,
        store: CacheStore,
        *,
        stale_seconds: float | None = None,
        on_error: ErrorListener | None = None,
    ) -> None:
        self._store = store
        self.stale_seconds = cache_cfg.STALE_SECONDS if stale_seconds is None else stale_seconds
        self._on_error = on_error
        self._seq = itertools.count(1)
        self._latest: dict[QueryKey, int] = {}
        self._in_flight: dict[QueryKey, _Flight] = {}
        self._producers: dict[QueryKey, Producer] = {}
        store.on_evict(self._drop_key)

    @property
    def store(self) -> CacheStore:
        return self._store

    def is_fresh(self, entry: CacheEntry | None) -> bool:
        if entry is None or entry.status is not EntryStatus.FRESH:
            return False
        if self.stale_seconds < 0:
            return True
        return entry.age() < self.stale_seconds

    def is_fetching(self, key: QueryKey) -> bool:
        return key in self._in_flight

    def in_flight_keys(self) -> list[QueryKey]:
        return list(self._in_flight)

    # ------------------------------------------------------------------ #
    # Public entry points
    # ------------------------------------------------------------------ #

    async def ensure_fresh(self, key: QueryKey, producer: Producer) -> Any:
        """Return ``key``'s payload, fetching it only when it is not fresh."""

        self._producers[key] = producer
        entry = self._store.get(key)
        if self.is_fresh(entry):
            return entry.payload

        flight = self._in_flight.get(key)
        if flight is None:
            flight = self._start(key, producer)
        else:
            logger.debug("Joining in-flight fetch #%d for %s", flight.seq, key)
        return await self._follow(flight)

    async def fetch(self, key: QueryKey, producer: Producer, *, reduce: Reducer | None = None) -> Any:
        """Start a new request for ``key``, superseding any running one.

        With ``reduce`` the result is folded into whatever payload is cached
        when the request settles (``reduce(current, result)``) instead of
        replacing it; partial producers such as single-page loads use this
        and are not remembered as the key's refetch producer.
        """

        if reduce is None:
            self._producers[key] = producer
        flight = self._start(key, producer, reduce)
        return await self._follow(flight)

    async def wait(self, key: QueryKey) -> Any:
        """Wait for the current request on ``key`` (if any) and return the payload."""

        flight = self._in_flight.get(key)
        if flight is None:
            return self._store.get_payload(key)
        return await self._follow(flight)

    def cancel(self, matcher: Matcher = match_all, *, resume_waiters: bool = False) -> list[QueryKey]:
        """Cancel running requests for matching keys.

        Their entries return to the status they had before the request
        started; callers waiting on them resolve to the cached payload. With
        ``resume_waiters`` a waiter whose key has no payload yet starts the
        request again instead of resolving to ``None``.
        """

        cancelled: list[QueryKey] = []
        for key, flight in list(self._in_flight.items()):
            if not matcher(key):
                continue
            del self._in_flight[key]
            flight.superseded = True
            flight.resume = resume_waiters
            flight.task.cancel()
            entry = self._store.get(key)
            if entry is not None and entry.status is EntryStatus.LOADING:
                self._store.set_status(key, flight.prior_status, error=entry.error)
            cancelled.append(key)
        if cancelled:
            logger.debug("Cancelled %d in-flight fetch(es)", len(cancelled))
        return cancelled

    def invalidate(self, matcher: Matcher, *, refetch_active: bool = True) -> list[QueryKey]:
        """Mark matching keys stale and refetch the ones still in use.

        A key is in use when it has subscribers or a request already running
        (that request may predate the change being invalidated, so it is
        superseded rather than trusted).
        """

        keys = self._store.invalidate(matcher)
        if not refetch_active:
            return keys
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return keys
        for key in keys:
            producer = self._producers.get(key)
            entry = self._store.get(key)
            if producer is None or entry is None:
                continue
            if entry.subscriber_count > 0 or key in self._in_flight:
                logger.debug("Refetching invalidated %s", key)
                self._start(key, producer)
        return keys

    def forget(self, matcher: Matcher = match_all) -> None:
        """Drop remembered producers (session teardown)."""

        for key in [k for k in self._producers if matcher(k)]:
            del self._producers[key]

    def _drop_key(self, key: QueryKey) -> None:
        if key in self._in_flight:
            return
        self._producers.pop(key, None)
        self._latest.pop(key, None)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _start(self, key: QueryKey, producer: Producer, reduce: Reducer | None = None) -> _Flight:
        previous = self._in_flight.get(key)
        entry = self._store.get(key)
        if previous is not None:
            previous.superseded = True
            prior = previous.prior_status
            logger.debug("Superseding fetch #%d for %s", previous.seq, key)
        else:
            prior = entry.status if entry is not None else EntryStatus.IDLE

        seq = next(self._seq)
        self._latest[key] = seq
        flight = _Flight(key=key, seq=seq, prior_status=prior)
        self._in_flight[key] = flight
        self._store.set_status(key, EntryStatus.LOADING, error=entry.error if entry is not None else None)

        flight.task = asyncio.create_task(self._run(flight, producer, reduce), name=f"fetch:{key}#{seq}")
        flight.task.add_done_callback(_consume_result)
        return flight

    def _is_current(self, flight: _Flight) -> bool:
        return not flight.superseded and self._latest.get(flight.key) == flight.seq

    def _settle(self, flight: _Flight) -> None:
        if self._in_flight.get(flight.key) is flight:
            del self._in_flight[flight.key]

    async def _run(self, flight: _Flight, producer: Producer, reduce: Reducer | None) -> Any:
        key = flight.key
        try:
            result = await producer()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._is_current(flight):
                raise ConcurrencyConflict(f"fetch #{flight.seq} for {key} was superseded") from exc
            self._settle(flight)
            self._store.set_status(key, EntryStatus.ERROR, error=exc)
            logger.warning("Fetch for %s failed: %s", key, exc)
            if self._on_error is not None and classify(exc) is not None:
                self._on_error(key, exc)
            raise

        if not self._is_current(flight):
            logger.info("Discarding superseded result of fetch #%d for %s", flight.seq, key)
            raise ConcurrencyConflict(f"fetch #{flight.seq} for {key} was superseded")

        self._settle(flight)
        if reduce is not None:
            result = reduce(self._store.get_payload(key), result)
        self._store.set(key, result, EntryStatus.FRESH)
        return result

    def _resume(self, key: QueryKey) -> _Flight | None:
        producer = self._producers.get(key)
        if producer is None or self._store.get_payload(key) is not None:
            return None
        logger.debug("Restarting cancelled fetch for %s", key)
        return self._start(key, producer)

    async def _follow(self, flight: _Flight) -> Any:
        while True:
            try:
                return await asyncio.shield(flight.task)
            except ConcurrencyConflict:
                pass
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if not flight.task.cancelled() or (current is not None and current.cancelling()):
                    raise
            newer = self._in_flight.get(flight.key)
            if newer is None and flight.resume:
                newer = self._resume(flight.key)
            if newer is None or newer is flight:
                return self._store.get_payload(flight.key)
            flight = newer


__all__ = ["FetchCoordinator", "Producer", "Reducer"]
