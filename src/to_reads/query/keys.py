"""
Canonical query keys.

A :class:`QueryKey` names one cached view: a resource (``"items"``,
``"feeds"``, ``"unread-count"``...) plus the filters that shaped it. Filters
are normalized by :func:`derive_key` so that semantically equivalent calls
collapse onto one key:

* ``None``, ``False`` and blank search text are dropped.
* Search text is stripped.
* Ids (``*_id`` parameters) are stringified, so ``feed_id=3`` and
  ``feed_id="3"`` are the same filter.
* Parameters are sorted by name.

Matchers are plain predicates over keys and are used both to invalidate and to
locate every entry a mutation has to patch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Hashable, Mapping

Matcher = Callable[["QueryKey"], bool]

_TEXT_PARAMS = frozenset({"q", "search"})


@dataclass(frozen=True, slots=True)
class QueryKey:
    resource: str
    params: tuple[tuple[str, Hashable], ...] = ()

    def get(self, name: str, default: Any = None) -> Any:
        for key, value in self.params:
            if key == name:
                return value
        return default

    def as_dict(self) -> dict[str, Any]:
        return dict(self.params)

    def with_params(self, **params: Any) -> "QueryKey":
        merged = self.as_dict()
        merged.update(params)
        return derive_key(self.resource, merged)

    def without(self, *names: str) -> "QueryKey":
        return QueryKey(self.resource, tuple((k, v) for k, v in self.params if k not in names))

    def __str__(self) -> str:
        if not self.params:
            return self.resource
        rendered = ",".join(f"{k}={v}" for k, v in self.params)
        return f"{self.resource}[{rendered}]"


def _normalize(name: str, value: Any) -> Hashable | None:
    if value is None or value is False:
        return None
    if name in _TEXT_PARAMS:
        text = str(value).strip()
        return text or None
    if name.endswith("_id"):
        text = str(value).strip()
        return text or None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (list, set, frozenset, tuple)):
        return tuple(sorted(str(v) for v in value)) or None
    return value


def derive_key(resource: str, params: Mapping[str, Any] | None = None, **kwargs: Any) -> QueryKey:
    """Return the canonical :class:`QueryKey` for ``resource`` and its filters."""

    if not resource:
        raise ValueError("resource must be a non-empty string")
    merged: dict[str, Any] = dict(params or {})
    merged.update(kwargs)
    normalized = []
    for name in sorted(merged):
        value = _normalize(name, merged[name])
        if value is not None:
            normalized.append((name, value))
    return QueryKey(resource, tuple(normalized))


def resource_matcher(resource: str, **params: Any) -> Matcher:
    """Match every key of ``resource`` whose params include ``params``.

    ``resource_matcher("items")`` matches all item lists regardless of
    filters; ``resource_matcher("items", feed_id=3)`` only those scoped to
    feed 3.
    """

    required = derive_key(resource, params).params

    def _match(key: QueryKey) -> bool:
        if key.resource != resource:
            return False
        present = dict(key.params)
        return all(present.get(name, _MISSING) == value for name, value in required)

    return _match


def exact_matcher(target: QueryKey) -> Matcher:
    return lambda key: key == target


def any_matcher(*matchers: Matcher) -> Matcher:
    return lambda key: any(m(key) for m in matchers)


def match_all(key: QueryKey) -> bool:
    return True


_MISSING = object()


__all__ = [
    "Matcher",
    "QueryKey",
    "any_matcher",
    "derive_key",
    "exact_matcher",
    "match_all",
    "resource_matcher",
]
