"""User-visible, non-blocking notifications.

Mutations and failed fetches report through a :class:`NotificationCenter`.
Listeners (a status bar, the CLI) receive each :class:`Notification` as it is
raised; the center also keeps the most recent ones for late readers.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Literal

logger = logging.getLogger(__name__)

Level = Literal["info", "error"]
Listener = Callable[["Notification"], None]


@dataclass(frozen=True, slots=True)
class Notification:
    title: str
    level: Level = "info"
    detail: str | None = None
    created_at: float = field(default_factory=time.time)


class NotificationCenter:
    """Fans notifications out to listeners and remembers the last few."""

    def __init__(self, keep: int = 50) -> None:
        self._listeners: list[Listener] = []
        self._recent: deque[Notification] = deque(maxlen=keep)

    @property
    def recent(self) -> list[Notification]:
        return list(self._recent)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def notify(self, title: str, *, level: Level = "info", detail: str | None = None) -> Notification:
        note = Notification(title=title, level=level, detail=detail)
        self._recent.append(note)
        if level == "error":
            logger.warning("Notification: %s (%s)", title, detail or "no detail")
        else:
            logger.info("Notification: %s", title)
        for listener in list(self._listeners):
            try:
                listener(note)
            except Exception:
                logger.exception("Notification listener failed")
        return note

    def clear(self) -> None:
        self._recent.clear()


__all__ = ["Notification", "NotificationCenter"]
