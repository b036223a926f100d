import pytest

from to_reads.query.windower import (
    ViewportWindower,
    VisibleRange,
    compute_visible_range,
    should_fetch_more,
    total_size,
    virtual_rows,
)


def test_top_of_list_with_overscan():
    visible = compute_visible_range(0, 700, 160, total_rows=100, overscan=6)

    # Rows 0-4 are on screen; six more below.
    assert visible == VisibleRange(0, 11)


def test_middle_of_list_is_clamped_on_both_sides():
    visible = compute_visible_range(1600, 700, 160, total_rows=100, overscan=6)

    assert visible == VisibleRange(4, 21)


def test_range_never_leaves_row_count():
    visible = compute_visible_range(10_000, 700, 160, total_rows=20, overscan=6, has_next_page=True)

    assert visible.end_index == 21
    assert visible.start_index >= 0
    assert visible.last_index == 20


def test_empty_list():
    assert compute_visible_range(0, 700, 160, total_rows=0, overscan=6) == VisibleRange(0, 0)
    loader_only = compute_visible_range(0, 700, 160, total_rows=0, overscan=6, has_next_page=True)
    assert loader_only == VisibleRange(0, 1)


def test_invalid_arguments():
    with pytest.raises(ValueError):
        compute_visible_range(0, 700, 0, total_rows=10, overscan=6)
    with pytest.raises(ValueError):
        compute_visible_range(0, 700, 160, total_rows=-1, overscan=6)


def test_should_fetch_more_near_end_only():
    near_end = VisibleRange(10, 21)
    far = VisibleRange(0, 11)

    assert should_fetch_more(near_end, loaded_rows=20, has_next_page=True)
    assert not should_fetch_more(far, loaded_rows=20, has_next_page=True)
    assert not should_fetch_more(near_end, loaded_rows=20, has_next_page=False)
    assert not should_fetch_more(near_end, loaded_rows=20, has_next_page=True, is_fetching=True)


def test_virtual_rows_mark_loader():
    rows = virtual_rows(VisibleRange(18, 21), 160, loaded_rows=20)

    assert [r.index for r in rows] == [18, 19, 20]
    assert [r.is_loader for r in rows] == [False, False, True]
    assert rows[0].offset == 18 * 160
    assert total_size(20, 160, has_next_page=True) == 21 * 160


def test_windower_signals_near_end_once_per_update():
    triggered = []
    windower = ViewportWindower(row_height=160, overscan=6, viewport_size=700, on_near_end=lambda: triggered.append(1))

    windower.update(20, True, scroll_offset=0)
    assert triggered == []

    rows = windower.update(20, True, scroll_offset=2400)
    assert triggered == [1]
    assert rows[-1].is_loader

    windower.update(20, True, scroll_offset=2400, is_fetching=True)
    assert triggered == [1]
