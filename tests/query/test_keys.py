import pytest

from to_reads.query.keys import (
    QueryKey,
    any_matcher,
    derive_key,
    exact_matcher,
    match_all,
    resource_matcher,
)


def test_equivalent_params_share_a_key():
    a = derive_key("items", {"feed_id": 3, "q": "  rust ", "unread": True, "page_size": 20})
    b = derive_key("items", page_size=20, unread=True, q="rust", feed_id="3")

    assert a == b
    assert hash(a) == hash(b)
    assert a.params == (("feed_id", "3"), ("page_size", 20), ("q", "rust"), ("unread", True))


def test_defaults_are_dropped():
    key = derive_key("items", category_id=None, q="   ", unread=False, favorite=False)

    assert key == QueryKey("items")
    assert str(key) == "items"


def test_distinct_filters_give_distinct_keys():
    assert derive_key("items", feed_id="3") != derive_key("items", feed_id="4")
    assert derive_key("items", unread=True) != derive_key("items")
    assert derive_key("feeds") != derive_key("items")


def test_empty_resource_is_rejected():
    with pytest.raises(ValueError):
        derive_key("")


def test_resource_matcher_matches_param_subsets():
    all_items = derive_key("items", page_size=20)
    feed_items = derive_key("items", feed_id="3", page_size=20)
    other_feed = derive_key("items", feed_id="4", page_size=20)
    counts = derive_key("unread-count", feed_id="3")

    everything = resource_matcher("items")
    feed_three = resource_matcher("items", feed_id=3)

    assert everything(all_items) and everything(feed_items) and everything(other_feed)
    assert not everything(counts)
    assert feed_three(feed_items)
    assert not feed_three(all_items)
    assert not feed_three(other_feed)


def test_combined_matchers():
    a = derive_key("categories")
    b = derive_key("feeds", category_id="1")

    either = any_matcher(exact_matcher(a), resource_matcher("feeds"))

    assert either(a) and either(b)
    assert not either(derive_key("items"))
    assert match_all(a)


def test_key_helpers():
    key = derive_key("items", feed_id="3", q="news")

    assert key.get("feed_id") == "3"
    assert key.get("missing", "x") == "x"
    assert key.without("q") == derive_key("items", feed_id="3")
    assert key.with_params(q=None) == derive_key("items", feed_id="3")
    assert str(key) == "items[feed_id=3,q=news]"
