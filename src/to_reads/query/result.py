"""``Ok | Err`` results returned by :meth:`MutationCoordinator.mutate`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from to_reads.errors import ErrorKind

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Err:
    kind: ErrorKind
    error: BaseException

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error)

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]

__all__ = ["Err", "Ok", "Result"]
