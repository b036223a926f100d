"""
Client-side query cache and synchronization core.

Modules
=======

``keys``
    :class:`~to_reads.query.keys.QueryKey`, :func:`~to_reads.query.keys.derive_key`
    and the key matchers used for invalidation and patching.
``store``
    :class:`~to_reads.query.store.CacheStore`, the in-memory entry table with
    its synchronous observer registry and snapshot/restore pair.
``fetch``
    :class:`~to_reads.query.fetch.FetchCoordinator`: single-flight reads,
    freshness, start-order race resolution, stale-while-revalidate.
``mutation``
    :class:`~to_reads.query.mutation.MutationCoordinator`: optimistic patches
    with rollback, returning ``Ok``/``Err`` results.
``identity``
    Temporary ids for optimistic creates and their reconciliation.
``pagination``
    :class:`~to_reads.query.pagination.PagedResult` and the per-list
    :class:`~to_reads.query.pagination.PaginationController`.
``windower``
    Pure viewport windowing plus the near-end trigger.
``result``
    ``Ok``/``Err`` result types.
"""

from .fetch import FetchCoordinator
from .identity import IdentityMap
from .keys import QueryKey, derive_key, exact_matcher, resource_matcher
from .mutation import MutationCoordinator, MutationState
from .pagination import PagedResult, PaginationController, next_page_number
from .result import Err, Ok
from .store import CacheEntry, CacheStore, EntryStatus, MutationSnapshot
from .windower import ViewportWindower, VisibleRange, compute_visible_range

__all__ = [
    "CacheEntry",
    "CacheStore",
    "EntryStatus",
    "Err",
    "FetchCoordinator",
    "IdentityMap",
    "MutationCoordinator",
    "MutationSnapshot",
    "MutationState",
    "Ok",
    "PagedResult",
    "PaginationController",
    "QueryKey",
    "ViewportWindower",
    "VisibleRange",
    "compute_visible_range",
    "derive_key",
    "exact_matcher",
    "next_page_number",
    "resource_matcher",
]
