from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """In-memory TTL cache. ``None`` is a cacheable value (e.g. "no record").

    Expired entries are dropped on every ``set``; past ``max_entries`` the
    oldest insertions go first.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = max(0.0, float(default_ttl_seconds))
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._store: dict[K, _Entry[V]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def lookup(self, key: K) -> Tuple[bool, Optional[V]]:
        entry = self._store.get(key)
        if entry is None:
            return False, None
        if entry.expires_at < self._clock():
            self._store.pop(key, None)
            return False, None
        return True, entry.value

    def get(self, key: K) -> Optional[V]:
        return self.lookup(key)[1]

    def set(self, key: K, value: V, ttl_seconds: Optional[float] = None) -> None:
        now = self._clock()
        ttl = self._default_ttl if ttl_seconds is None else max(0.0, float(ttl_seconds))
        self._prune(now)
        self._store.pop(key, None)
        while len(self._store) >= self._max_entries:
            self._store.pop(next(iter(self._store)))
        self._store[key] = _Entry(value=value, expires_at=now + ttl)

    def _prune(self, now: float) -> None:
        for key in [k for k, entry in self._store.items() if entry.expires_at < now]:
            del self._store[key]

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
