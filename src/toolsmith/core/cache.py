"""In-process TTL cache.

Entries carry their insertion time and TTL; expiry is evaluated against
an injectable clock so tests can move time without sleeping. Caches are
per-process only; durable storage remains the source of truth.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

V = TypeVar("V")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[V]):
    value: V
    inserted_at: float
    ttl_s: float

    def is_fresh(self, now: float) -> bool:
        return now - self.inserted_at < self.ttl_s


class TTLCache(Generic[V]):
    """Keyed cache whose entries expire ``ttl_s`` seconds after insertion."""

    def __init__(self, ttl_s: float, clock: Clock = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: Hashable, value: V, ttl_s: float | None = None) -> None:
        self._entries[key] = CacheEntry(
            value=value,
            inserted_at=self._clock(),
            ttl_s=self.ttl_s if ttl_s is None else ttl_s,
        )

    def invalidate(self, key: Hashable | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
