import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from to_reads.errors import NetworkFailure
from to_reads.query.fetch import FetchCoordinator
from to_reads.query.keys import derive_key, resource_matcher
from to_reads.query.store import CacheStore, EntryStatus


def _coordinator(**kwargs) -> FetchCoordinator:
    return FetchCoordinator(CacheStore(gc_seconds=60), stale_seconds=30, **kwargs)


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_calling_producer():
    fetcher = _coordinator()
    key = derive_key("categories")
    fetcher.store.set(key, ("cached",))
    producer = AsyncMock(return_value=("network",))

    result = await fetcher.ensure_fresh(key, producer)

    assert result == ("cached",)
    producer.assert_not_awaited()


@pytest.mark.asyncio
async def test_concurrent_ensure_fresh_calls_share_one_request():
    fetcher = _coordinator()
    key = derive_key("categories")
    gate = asyncio.Event()
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        await gate.wait()
        return ("tech",)

    first = asyncio.create_task(fetcher.ensure_fresh(key, producer))
    second = asyncio.create_task(fetcher.ensure_fresh(key, producer))
    await asyncio.sleep(0)
    assert fetcher.is_fetching(key)
    assert fetcher.store.get(key).status is EntryStatus.LOADING

    gate.set()
    assert await first == ("tech",)
    assert await second == ("tech",)
    assert calls == 1
    assert fetcher.store.get(key).status is EntryStatus.FRESH
    assert not fetcher.is_fetching(key)


@pytest.mark.asyncio
async def test_older_request_finishing_last_is_discarded():
    fetcher = _coordinator()
    key = derive_key("items")
    release_a = asyncio.Event()

    async def slow_a():
        await release_a.wait()
        return "A"

    async def fast_b():
        return "B"

    task_a = asyncio.create_task(fetcher.fetch(key, slow_a))
    await asyncio.sleep(0)
    result_b = await fetcher.fetch(key, fast_b)
    release_a.set()
    result_a = await task_a

    assert result_b == "B"
    # The caller of A follows the newer request instead of seeing A's data.
    assert result_a == "B"
    assert fetcher.store.get_payload(key) == "B"


@pytest.mark.asyncio
async def test_failure_keeps_last_payload_and_reports():
    listener = MagicMock()
    fetcher = _coordinator(on_error=listener)
    key = derive_key("feeds")
    fetcher.store.set(key, ("old",), EntryStatus.STALE)
    error = NetworkFailure("GET", "http://backend.test/api/feeds", "connection refused")

    with pytest.raises(NetworkFailure):
        await fetcher.ensure_fresh(key, AsyncMock(side_effect=error))

    entry = fetcher.store.get(key)
    assert entry.status is EntryStatus.ERROR
    assert entry.payload == ("old",)
    assert entry.error is error
    listener.assert_called_once_with(key, error)


@pytest.mark.asyncio
async def test_unexpected_errors_propagate_without_notification():
    listener = MagicMock()
    fetcher = _coordinator(on_error=listener)
    key = derive_key("feeds")

    with pytest.raises(KeyError):
        await fetcher.ensure_fresh(key, AsyncMock(side_effect=KeyError("bug")))

    listener.assert_not_called()
    assert fetcher.store.get(key).status is EntryStatus.ERROR


@pytest.mark.asyncio
async def test_cancel_reverts_status_and_releases_waiters():
    fetcher = _coordinator()
    key = derive_key("items")
    fetcher.store.set(key, "cached", EntryStatus.STALE)
    gate = asyncio.Event()

    async def producer():
        await gate.wait()
        return "network"

    waiter = asyncio.create_task(fetcher.fetch(key, producer))
    await asyncio.sleep(0)
    assert fetcher.cancel(resource_matcher("items")) == [key]

    assert await waiter == "cached"
    assert fetcher.store.get(key).status is EntryStatus.STALE
    assert not fetcher.is_fetching(key)


@pytest.mark.asyncio
async def test_invalidate_refetches_subscribed_keys_only():
    fetcher = _coordinator()
    watched = derive_key("items", feed_id="1")
    unwatched = derive_key("items", feed_id="2")
    producer_watched = AsyncMock(side_effect=["w1", "w2"])
    producer_unwatched = AsyncMock(side_effect=["u1", "u2"])

    fetcher.store.subscribe(watched, lambda entry: None)
    await fetcher.ensure_fresh(watched, producer_watched)
    await fetcher.ensure_fresh(unwatched, producer_unwatched)

    fetcher.invalidate(resource_matcher("items"))
    assert fetcher.is_fetching(watched)
    assert not fetcher.is_fetching(unwatched)
    await fetcher.wait(watched)

    assert fetcher.store.get_payload(watched) == "w2"
    assert fetcher.store.get_payload(unwatched) == "u1"
    assert fetcher.store.get(unwatched).status is EntryStatus.STALE


@pytest.mark.asyncio
async def test_stale_entry_is_refetched():
    fetcher = FetchCoordinator(CacheStore(gc_seconds=60), stale_seconds=0)
    key = derive_key("categories")
    producer = AsyncMock(side_effect=[("one",), ("two",)])

    assert await fetcher.ensure_fresh(key, producer) == ("one",)
    assert await fetcher.ensure_fresh(key, producer) == ("two",)
    assert producer.await_count == 2


@pytest.mark.asyncio
async def test_reduce_folds_into_current_payload():
    fetcher = _coordinator()
    key = derive_key("items")
    fetcher.store.set(key, (1, 2))

    async def page():
        return (3,)

    result = await fetcher.fetch(key, page, reduce=lambda current, new: current + new)

    assert result == (1, 2, 3)
    assert fetcher.store.get_payload(key) == (1, 2, 3)


@pytest.mark.asyncio
async def test_waiter_restarts_a_first_load_cancelled_by_a_write():
    fetcher = _coordinator()
    key = derive_key("unread-count")
    gate = asyncio.Event()
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        attempt = calls
        await gate.wait()
        return attempt

    waiter = asyncio.create_task(fetcher.ensure_fresh(key, producer))
    await asyncio.sleep(0)
    fetcher.cancel(resource_matcher("unread-count"), resume_waiters=True)
    gate.set()

    assert await waiter == 2
    assert fetcher.store.get_payload(key) == 2


@pytest.mark.asyncio
async def test_plain_cancel_leaves_first_load_empty():
    fetcher = _coordinator()
    key = derive_key("items")
    gate = asyncio.Event()
    producer = AsyncMock(side_effect=gate.wait)

    waiter = asyncio.create_task(fetcher.ensure_fresh(key, producer))
    await asyncio.sleep(0)
    fetcher.cancel(resource_matcher("items"))

    assert await waiter is None
    assert producer.await_count == 1


@pytest.mark.asyncio
async def test_collected_keys_drop_fetch_bookkeeping():
    fetcher = FetchCoordinator(CacheStore(gc_seconds=0.01), stale_seconds=30)
    key = derive_key("categories")

    await fetcher.ensure_fresh(key, AsyncMock(return_value=("tech",)))
    assert key in fetcher._producers
    await asyncio.sleep(0.05)

    assert key not in fetcher.store
    assert key not in fetcher._producers
    assert key not in fetcher._latest
