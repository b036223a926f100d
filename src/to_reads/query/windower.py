"""
Row windowing for long, incrementally loaded lists.

:func:`compute_visible_range` is a pure function from scroll position to the
half-open index range ``[start, end)`` of rows worth materializing. When a
further page exists, one synthetic *loader* row is counted after the loaded
rows; as it scrolls into the overscan margin, :func:`should_fetch_more`
becomes true. Indices never leave ``[0, total_rows + 1)``.

:class:`ViewportWindower` is the small stateful wrapper a view calls on every
scroll or resize event. It only recomputes the range and fires its
``on_near_end`` callback as a side effect of the pure result.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable

from to_reads.config import view as view_cfg

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VisibleRange:
    start_index: int
    end_index: int

    def __len__(self) -> int:
        return max(0, self.end_index - self.start_index)

    def __iter__(self):
        return iter(range(self.start_index, self.end_index))

    @property
    def last_index(self) -> int | None:
        return self.end_index - 1 if self.end_index > self.start_index else None


@dataclass(frozen=True, slots=True)
class VirtualRow:
    index: int
    offset: float
    size: float
    is_loader: bool = False


def row_count(total_rows: int, has_next_page: bool) -> int:
    return total_rows + 1 if has_next_page else total_rows


def total_size(total_rows: int, row_height_estimate: float, has_next_page: bool = False) -> float:
    return row_count(total_rows, has_next_page) * row_height_estimate


def compute_visible_range(
    scroll_offset: float,
    viewport_size: float,
    row_height_estimate: float,
    total_rows: int,
    overscan: int,
    has_next_page: bool = False,
) -> VisibleRange:
    """Return the rows to materialize for the given scroll position."""

    if row_height_estimate <= 0:
        raise ValueError("row_height_estimate must be positive")
    if total_rows < 0 or overscan < 0:
        raise ValueError("total_rows and overscan must be >= 0")

    count = row_count(total_rows, has_next_page)
    if count == 0:
        return VisibleRange(0, 0)

    offset = max(0.0, scroll_offset)
    viewport = max(0.0, viewport_size)
    first_visible = min(count - 1, int(offset // row_height_estimate))
    last_visible = min(count - 1, max(first_visible, math.ceil((offset + viewport) / row_height_estimate) - 1))

    start = max(0, first_visible - overscan)
    end = min(count, last_visible + overscan + 1)
    return VisibleRange(start, end)


def should_fetch_more(
    visible: VisibleRange,
    loaded_rows: int,
    has_next_page: bool,
    is_fetching: bool = False,
) -> bool:
    """True when the last materialized row is within one row of the loaded end."""

    if not has_next_page or is_fetching:
        return False
    last = visible.last_index
    if last is None:
        return loaded_rows == 0
    return last >= loaded_rows - 1


def virtual_rows(
    visible: VisibleRange,
    row_height_estimate: float,
    loaded_rows: int,
) -> list[VirtualRow]:
    return [
        VirtualRow(
            index=i,
            offset=i * row_height_estimate,
            size=row_height_estimate,
            is_loader=i >= loaded_rows,
        )
        for i in visible
    ]


class ViewportWindower:
    """Recomputes the visible window on scroll/resize and signals near-end."""

    def __init__(
        self,
        *,
        row_height: float | None = None,
        overscan: int | None = None,
        viewport_size: float | None = None,
        on_near_end: Callable[[], None] | None = None,
    ) -> None:
        self.row_height = view_cfg.ROW_HEIGHT if row_height is None else row_height
        self.overscan = view_cfg.OVERSCAN if overscan is None else overscan
        self.viewport_size = view_cfg.VIEWPORT_HEIGHT if viewport_size is None else viewport_size
        self.scroll_offset = 0.0
        self._on_near_end = on_near_end
        self.visible = VisibleRange(0, 0)

    def update(
        self,
        total_rows: int,
        has_next_page: bool,
        *,
        scroll_offset: float | None = None,
        viewport_size: float | None = None,
        is_fetching: bool = False,
    ) -> list[VirtualRow]:
        if scroll_offset is not None:
            self.scroll_offset = scroll_offset
        if viewport_size is not None:
            self.viewport_size = viewport_size

        self.visible = compute_visible_range(
            self.scroll_offset,
            self.viewport_size,
            self.row_height,
            total_rows,
            self.overscan,
            has_next_page,
        )
        if self._on_near_end is not None and should_fetch_more(
            self.visible, total_rows, has_next_page, is_fetching
        ):
            logger.debug("Window %s reached the end of %d loaded rows", self.visible, total_rows)
            self._on_near_end()
        return virtual_rows(self.visible, self.row_height, total_rows)

    def total_size(self, total_rows: int, has_next_page: bool) -> float:
        return total_size(total_rows, self.row_height, has_next_page)


__all__ = [
    "ViewportWindower",
    "VirtualRow",
    "VisibleRange",
    "compute_visible_range",
    "row_count",
    "should_fetch_more",
    "total_size",
    "virtual_rows",
]
