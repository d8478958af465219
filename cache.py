"""
In-memory TTL caches.

One TTLCache per operation class (search, chapter pages, aggregate feeds...).
Entries are stored as (value, created_at) and are only served while
now - created_at < ttl. Expired entries stay in the map until a sweep so the
services can fall back to the last known value when a source is down.
"""

import time
from typing import Any, Callable, Hashable

MINUTE = 60

# TTLs per operation class (seconds)
TTL_SEARCH = 5 * MINUTE
TTL_PAGES = 30 * MINUTE
TTL_AGGREGATE = 15 * MINUTE
TTL_DETAILS = 60 * MINUTE
TTL_LISTING = 5 * MINUTE

SWEEP_THRESHOLD = 100


class TTLCache:
    """Keyed map with time-based expiry and an opportunistic sweep on write.

    ``max_entries`` is a soft limit: once a write leaves more entries than
    that in the map, every expired entry is dropped in one O(n) pass.
    ``clock`` returns seconds and can be swapped out in tests.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._store: dict[Hashable, tuple[Any, float]] = {}

    def __len__(self) -> int:
        return len(self._store)

    def _is_fresh(self, created_at: float) -> bool:
        return self._clock() - created_at < self.ttl

    def is_fresh(self, key: Hashable) -> bool:
        entry = self._store.get(key)
        return entry is not None and self._is_fresh(entry[1])

    def get(self, key: Hashable) -> Any | None:
        """Return the value if it is still within its TTL, else None."""
        entry = self._store.get(key)
        if entry is None:
            return None
        value, created_at = entry
        if not self._is_fresh(created_at):
            return None
        return value

    def get_stale(self, key: Hashable) -> Any | None:
        """Return the last stored value regardless of age."""
        entry = self._store.get(key)
        return entry[0] if entry is not None else None

    def set(self, key: Hashable, value: Any) -> None:
        self._store[key] = (value, self._clock())
        if self.max_entries is not None and len(self._store) > self.max_entries:
            self.sweep()

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        expired = [k for k, (_, created_at) in self._store.items() if not self._is_fresh(created_at)]
        for k in expired:
            del self._store[k]
        return len(expired)

    def invalidate(self, key: Hashable) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
