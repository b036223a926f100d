"""
Dashboard components built on the query core.

Modules
=======

``items``
    Filtered, paginated, windowed item lists and the item mutations.
``feeds``
    Category and feed lists with optimistic create/update/delete.
``unread``
    Unread counts per category/feed scope.
``transfer``
    Export and import through the backend.
``notifications``
    Non-blocking user notifications.
``session``
    :class:`~to_reads.dashboard.session.ReaderSession`, which wires it all up.
"""

from .feeds import FeedManager
from .items import ItemActions, ItemFilters, ItemListView
from .notifications import Notification, NotificationCenter
from .session import ReaderSession
from .transfer import TransferService
from .unread import UnreadCounter

__all__ = [
    "FeedManager",
    "ItemActions",
    "ItemFilters",
    "ItemListView",
    "Notification",
    "NotificationCenter",
    "ReaderSession",
    "TransferService",
    "UnreadCounter",
]
