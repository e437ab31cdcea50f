"""Small in-memory TTL cache owned by the service that uses it."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    value: Any
    stored_at: float

    def age(self, now: float) -> float:
        return now - self.stored_at


class TTLCache:
    """Maps keys to values that go stale after `ttl_seconds`.

    Stale entries are kept (not evicted) so callers can fall back to them
    when the upstream is down; `get` ignores them, `get_entry` does not.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None or entry.age(self._clock()) > self.ttl_seconds:
            return None
        return entry.value

    def get_entry(self, key: Hashable) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: Hashable, value: Any) -> CacheEntry:
        entry = CacheEntry(value=value, stored_at=self._clock())
        self._entries[key] = entry
        return entry

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
