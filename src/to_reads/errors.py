"""
Error taxonomy shared by the API client and the synchronization core.

Every failure that crosses the network boundary is raised as an
:class:`ApiError` subclass tagged with an :class:`ErrorKind`. The mutation
coordinator turns those into ``Err`` results after rolling back; the fetch
coordinator records them on the cache entry and re-raises to the caller.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import aiohttp


class ErrorKind(str, Enum):
    NETWORK_FAILURE = "network_failure"
    SERVER_REJECTED = "server_rejected"
    MALFORMED_RESPONSE = "malformed_response"
    CONCURRENCY_CONFLICT = "concurrency_conflict"


class ReaderError(Exception):
    """Base class for all application-level errors."""

    pass


class ApiError(ReaderError):
    """Base for failures talking to the backend."""

    kind: ErrorKind = ErrorKind.NETWORK_FAILURE

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NetworkFailure(ApiError):
    kind = ErrorKind.NETWORK_FAILURE

    def __init__(self, method: str, url: str, detail: str = "") -> None:
        self.method = method
        self.url = url
        super().__init__(f"{method} {url} did not complete: {detail}".rstrip(": "))


class ServerRejected(ApiError):
    kind = ErrorKind.SERVER_REJECTED

    def __init__(self, status: int, message: str) -> None:
        self.status = status
        super().__init__(f"Server rejected request ({status}): {message}")


class MalformedResponse(ApiError):
    kind = ErrorKind.MALFORMED_RESPONSE

    def __init__(self, detail: str) -> None:
        super().__init__(f"Malformed response: {detail}")


class ConcurrencyConflict(ReaderError):
    """A fetch result was superseded by a newer request for the same key."""

    kind = ErrorKind.CONCURRENCY_CONFLICT


class MutationStateError(ReaderError):
    """A mutation attempted an illegal state transition."""

    pass


def classify(exc: BaseException) -> ErrorKind | None:
    """Return the :class:`ErrorKind` for ``exc`` or ``None`` when unknown."""

    if isinstance(exc, (ApiError, ConcurrencyConflict)):
        return exc.kind
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError)):
        return ErrorKind.NETWORK_FAILURE
    return None


__all__ = [
    "ApiError",
    "ConcurrencyConflict",
    "ErrorKind",
    "MalformedResponse",
    "MutationStateError",
    "NetworkFailure",
    "ReaderError",
    "ServerRejected",
    "classify",
]
