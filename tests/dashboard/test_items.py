import asyncio

import pytest

from to_reads.dashboard.items import ItemFilters, cached_items, items_key
from to_reads.dashboard.unread import unread_key
from to_reads.errors import ErrorKind
from to_reads.query.store import EntryStatus


def _by_id(items):
    return {item.id: item for item in items}


@pytest.mark.asyncio
async def test_favorite_patches_every_cached_list(session, backend):
    feed = backend.add_feed("Ars")
    other = backend.add_feed("Verge")
    items = backend.add_items(feed.id, 3)
    backend.add_items(other.id, 2)
    everything = session.item_view()
    feed_only = session.item_view(ItemFilters(feed_id=feed.id))
    await everything.open()
    await feed_only.open()
    target = items[1].id
    gate = backend.hold("set_item_favorite")

    pending = asyncio.create_task(session.item_actions.toggle_favorite(target))
    await asyncio.sleep(0)

    assert _by_id(everything.items)[target].is_favorite
    assert _by_id(feed_only.items)[target].is_favorite

    gate.set()
    assert (await pending).ok
    await session.fetcher.wait(everything.key)
    await session.fetcher.wait(feed_only.key)
    assert backend.items[target].is_favorite
    assert _by_id(everything.items)[target].is_favorite
    assert _by_id(feed_only.items)[target].is_favorite


@pytest.mark.asyncio
async def test_failed_favorite_rolls_back_and_notifies(session, backend):
    feed = backend.add_feed("Ars")
    items = backend.add_items(feed.id, 3)
    view = session.item_view()
    await view.open()
    before = session.store.get_payload(view.key)
    backend.fail("set_item_favorite")

    result = await session.item_actions.toggle_favorite(items[0].id)

    assert not result.ok
    assert result.kind is ErrorKind.SERVER_REJECTED
    assert session.store.get_payload(view.key) == before
    assert session.notifications.recent[-1].title == "Failed to update favorite status"
    assert session.notifications.recent[-1].level == "error"


@pytest.mark.asyncio
async def test_unread_count_tracks_batch_read_of_a_subset(session, backend):
    backend.add_feed("Three", feed_id="3")
    other = backend.add_feed("Other")
    backend.add_items("3", 8)
    backend.add_items(other.id, 4)
    view = session.item_view(ItemFilters(feed_id="3"))
    await view.open()
    await view.fetch_next_page()
    assert len(view.items) == 8

    assert await session.unread.get(feed_id="3") == 8
    assert await session.unread.get() == 12
    session.unread.subscribe(lambda count: None, feed_id="3")
    gate = backend.hold("batch_read")
    subset = [item.id for item in view.items[:3]]

    pending = asyncio.create_task(session.item_actions.mark_read(subset))
    await asyncio.sleep(0)

    unread_loaded = sum(1 for item in view.items if not item.is_read)
    assert unread_loaded == 5
    assert session.unread.cached(feed_id="3") == unread_loaded
    assert session.unread.cached() == 9

    gate.set()
    assert (await pending).ok
    await session.fetcher.wait(unread_key(feed_id="3"))
    await session.fetcher.wait(view.key)
    assert session.unread.cached(feed_id="3") == sum(1 for item in view.items if not item.is_read) == 5


@pytest.mark.asyncio
async def test_failed_read_restores_items_and_counts(session, backend):
    feed = backend.add_feed("Ars")
    items = backend.add_items(feed.id, 4)
    view = session.item_view()
    await view.open()
    await session.unread.get(feed_id=feed.id)
    count_before = session.unread.cached(feed_id=feed.id)
    items_before = session.store.get_payload(view.key)
    backend.fail("set_item_read")

    result = await view.mark_read(items[0].id)

    assert not result.ok
    assert session.store.get_payload(view.key) == items_before
    assert session.unread.cached(feed_id=feed.id) == count_before == 4
    assert session.notifications.recent[-1].title == "Failed to update read status"


@pytest.mark.asyncio
async def test_mark_all_read_sends_loaded_ids(session, backend):
    feed = backend.add_feed("Ars")
    backend.add_items(feed.id, 7)
    view = session.item_view()
    await view.open()

    result = await view.mark_all_read()

    assert result.ok
    name, args, _ = [call for call in backend.calls if call[0] == "batch_read"][0]
    assert args[0] == [item.id for item in backend._filtered()[:5]]
    assert args[1] is True
    assert session.notifications.recent[-1].title == "Batch update completed"
    assert all(item.is_read for item in cached_items(session.store).values())


@pytest.mark.asyncio
async def test_mark_read_with_no_ids_skips_the_backend(session, backend):
    result = await session.item_actions.mark_read([])

    assert result.ok
    assert backend.count("batch_read") == 0


@pytest.mark.asyncio
async def test_scrolling_to_the_end_loads_the_next_page(session, backend):
    feed = backend.add_feed("Ars")
    backend.add_items(feed.id, 12)
    view = session.item_view()
    await view.open()
    assert len(view.items) == 5

    rows = view.on_scroll(scroll_offset=0, viewport_size=160 * 5)
    assert rows[-1].is_loader
    await asyncio.sleep(0)
    await session.fetcher.wait(view.key)

    assert len(view.items) == 10
    assert view.has_next_page
    assert view.row_item(rows[0]).id == view.items[0].id


def test_items_key_normalizes_filters():
    key = items_key(ItemFilters(feed_id="3", q="  ", unread=False), 20)

    assert key.as_dict() == {"feed_id": "3", "page_size": 20}


@pytest.mark.asyncio
async def test_toggle_favorite_reports_an_uncached_item(session, backend):
    result = await session.item_actions.toggle_favorite("404")

    assert not result.ok
    assert result.kind is ErrorKind.CONCURRENCY_CONFLICT
    assert backend.count("set_item_favorite") == 0


@pytest.mark.asyncio
async def test_committed_read_marks_unsubscribed_lists_stale(session, backend):
    feed = backend.add_feed("Ars")
    items = backend.add_items(feed.id, 2)
    view = session.item_view()
    await view.open()
    view.close()

    result = await session.item_actions.set_read(items[0].id)

    assert result.ok
    assert session.store.get(view.key).status is EntryStatus.STALE
    assert _by_id(view.items)[items[0].id].is_read


@pytest.mark.asyncio
async def test_unread_count_loading_during_a_read_still_resolves(session, backend):
    feed = backend.add_feed("Ars")
    items = backend.add_items(feed.id, 3)
    view = session.item_view(ItemFilters(feed_id=feed.id))
    await view.open()
    gate = backend.hold("unread_count")

    counting = asyncio.create_task(session.unread.get(feed_id=feed.id))
    await asyncio.sleep(0)
    result = await session.item_actions.set_read(items[0].id)
    gate.set()

    assert result.ok
    assert await counting == 2
