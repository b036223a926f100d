"""
Optimistic writes with compensating rollback.

:meth:`MutationCoordinator.mutate` runs one write through a fixed sequence:

1. cancel in-flight fetches for the affected keys, so a response that left
   the server before the write cannot land on top of the optimistic state;
2. snapshot every matching cache entry;
3. apply the optimistic patch to every matching entry;
4. await the network operation;
5. on success drop the snapshot, swap any temporary id for the server id and
   invalidate the affected keys;
6. on failure restore the snapshot and report an ``Err``.

Steps 1-3 never suspend, so no other cache write can interleave with them.
Once step 4 starts the write runs to completion in its own task even if the
caller stops waiting; only the optimistic state can be undone, never the
request itself.
"""

from __future__ import annotations

import asyncio
from collections import deque
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Protocol

from to_reads.errors import MutationStateError, classify

from .fetch import FetchCoordinator
from .identity import IdentityMap, rewrite_identity
from .keys import Matcher, QueryKey, match_all
from .result import Err, Ok, Result
from .store import CacheStore, MutationSnapshot

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Patch = Callable[[QueryKey, Any], Any]


class Notifier(Protocol):
    def notify(self, title: str, *, level: str = "info", detail: str | None = None) -> None: ...


class MutationState(str, Enum):
    IDLE = "idle"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS: dict[MutationState, frozenset[MutationState]] = {
    MutationState.IDLE: frozenset(
        {MutationState.OPTIMISTIC_APPLIED, MutationState.COMMITTED, MutationState.ROLLED_BACK}
    ),
    MutationState.OPTIMISTIC_APPLIED: frozenset({MutationState.COMMITTED, MutationState.ROLLED_BACK}),
    MutationState.COMMITTED: frozenset(),
    MutationState.ROLLED_BACK: frozenset(),
}


@dataclass
class Mutation:
    """Lifecycle record for one :meth:`MutationCoordinator.mutate` call."""

    name: str
    state: MutationState = MutationState.IDLE
    snapshot: MutationSnapshot | None = field(default=None, repr=False)
    patched_keys: list[QueryKey] = field(default_factory=list)
    temp_id: str | None = None

    @property
    def settled(self) -> bool:
        return self.state in (MutationState.COMMITTED, MutationState.ROLLED_BACK)

    def transition(self, new_state: MutationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise MutationStateError(f"{self.name}: cannot move from {self.state.value} to {new_state.value}")
        logger.debug("Mutation %s: %s -> %s", self.name, self.state.value, new_state.value)
        self.state = new_state


class MutationCoordinator:
    """Runs writes with optimistic cache patches and snapshot rollback."""

    def __init__(
        self,
        store: CacheStore,
        fetcher: FetchCoordinator,
        *,
        identities: IdentityMap | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self.identities = identities or IdentityMap()
        self._notifier = notifier
        self._tasks: set[asyncio.Task] = set()
        self.history: deque[Mutation] = deque(maxlen=100)

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def mutate(
        self,
        operation: Operation,
        *,
        matcher: Matcher,
        optimistic_patch: Patch | None = None,
        invalidate: Iterable[Matcher] = (),
        temp_id: str | None = None,
        resolve_id: Callable[[Any], str | None] | None = None,
        name: str = "mutation",
        success_message: str | None = None,
        error_message: str | None = None,
    ) -> Result:
        """Run ``operation`` with an optimistic patch; returns ``Ok`` or ``Err``."""

        mutation = Mutation(name=name, temp_id=temp_id)
        self.history.append(mutation)

        # Steps 1-3 run in one synchronous stretch.
        self._fetcher.cancel(matcher, resume_waiters=True)
        mutation.snapshot = self._store.snapshot_all(matcher)
        if optimistic_patch is not None:
            self._apply(mutation, matcher, optimistic_patch)
            mutation.transition(MutationState.OPTIMISTIC_APPLIED)

        task = asyncio.create_task(
            self._settle(
                mutation,
                operation,
                matcher=matcher,
                invalidate=tuple(invalidate),
                resolve_id=resolve_id,
                success_message=success_message,
                error_message=error_message,
            ),
            name=f"mutation:{name}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for every in-flight mutation to settle."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _apply(self, mutation: Mutation, matcher: Matcher, patch: Patch) -> None:
        for entry in list(self._store.entries(matcher)):
            if not entry.has_payload:
                continue
            patched = patch(entry.key, entry.payload)
            if patched is entry.payload:
                continue
            self._store.set(entry.key, patched, entry.status)
            mutation.patched_keys.append(entry.key)
        logger.debug("Mutation %s patched %d cache entries", mutation.name, len(mutation.patched_keys))

    async def _settle(
        self,
        mutation: Mutation,
        operation: Operation,
        *,
        matcher: Matcher,
        invalidate: tuple[Matcher, ...],
        resolve_id: Callable[[Any], str | None] | None,
        success_message: str | None,
        error_message: str | None,
    ) -> Result:
        try:
            value = await operation()
        except Exception as exc:
            kind = classify(exc)
            self._rollback(mutation)
            if len(self._tasks) > 1:
                # Another write may have snapshotted our optimistic state.
                self._fetcher.invalidate(matcher)
            if kind is None:
                logger.exception("Mutation %s failed with an unexpected error", mutation.name)
                raise
            logger.info("Mutation %s rolled back (%s): %s", mutation.name, kind.value, exc)
            self._notify(error_message or f"{mutation.name} failed", level="error", detail=str(exc))
            return Err(kind, exc)

        self._commit(mutation, value, matcher, invalidate, resolve_id)
        if success_message:
            self._notify(success_message)
        return Ok(value)

    def _commit(
        self,
        mutation: Mutation,
        value: Any,
        matcher: Matcher,
        invalidate: tuple[Matcher, ...],
        resolve_id: Callable[[Any], str | None] | None,
    ) -> None:
        mutation.snapshot = None
        if mutation.temp_id is not None:
            server_id = resolve_id(value) if resolve_id is not None else None
            if server_id:
                self._reconcile(mutation.temp_id, server_id)
            else:
                self.identities.fail(mutation.temp_id)
        mutation.transition(MutationState.COMMITTED)
        for m in (matcher, *invalidate):
            self._fetcher.invalidate(m)

    def _reconcile(self, temp_id: str, server_id: str) -> None:
        rewritten = 0
        for entry in list(self._store.entries(match_all)):
            if not entry.has_payload:
                continue
            updated = rewrite_identity(entry.payload, temp_id, server_id)
            if updated is not entry.payload:
                self._store.set(entry.key, updated, entry.status)
                rewritten += 1
        self.identities.confirm(temp_id, server_id)
        logger.debug("Reconciled %s -> %s in %d cache entries", temp_id, server_id, rewritten)

    def _rollback(self, mutation: Mutation) -> None:
        if mutation.snapshot is not None:
            self._store.restore(mutation.snapshot)
        mutation.snapshot = None
        if mutation.temp_id is not None:
            self.identities.fail(mutation.temp_id)
        mutation.transition(MutationState.ROLLED_BACK)

    def _notify(self, title: str, *, level: str = "info", detail: str | None = None) -> None:
        if self._notifier is not None:
            self._notifier.notify(title, level=level, detail=detail)


__all__ = ["Mutation", "MutationCoordinator", "MutationState", "Notifier", "Patch"]
