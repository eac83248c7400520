"""
TTL cache with optional stale-while-revalidate.

Policy:
- TTL is fixed per cache instance. An entry expires when
  `now - stored_at > ttl_seconds`.
- With stale_while_revalidate, an expired entry is still served (status
  STALE) until it is evicted or exceeds `max_stale_seconds`. The cache only
  reports that a refresh is due; refreshing is the caller's job.
- Without it, expired entries are dropped lazily on access (status MISS).
- Eviction is FIFO by insertion once `max_size` is exceeded. Re-setting a
  key counts as a new insertion.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, TypeVar

from data_acquisition.models import CacheEntry, CacheLookup, CacheStatus


logger = logging.getLogger(__name__)

T = TypeVar("T")


class TTLCache(Generic[T]):
    """
    In-memory key/value store with expiry.

    Args:
        ttl_seconds: Time-to-live for every entry
        max_size: Hard cap on entries (FIFO eviction beyond it)
        stale_while_revalidate: Serve expired values as STALE
        max_stale_seconds: Optional bound on how long past expiry a value
            is still served (None = until evicted)
        clock: Monotonic seconds source (injectable for tests)
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int = 1000,
        stale_while_revalidate: bool = False,
        max_stale_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if max_stale_seconds is not None and max_stale_seconds < 0:
            raise ValueError("max_stale_seconds must be >= 0")

        self.name = name
        self._ttl = float(ttl_seconds)
        self._max_size = max_size
        self._swr = stale_while_revalidate
        self._max_stale = max_stale_seconds
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._lock = threading.RLock()

        self._hits = 0
        self._stale_hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def stale_while_revalidate(self) -> bool:
        return self._swr

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key).is_fresh

    def get(self, key: str) -> CacheLookup[T]:
        """Look up `key`; see module docstring for the stale policy."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return CacheLookup(CacheStatus.MISS)

            now = self._clock()
            age = entry.age_seconds(now)

            if not entry.is_expired(now):
                entry.hits += 1
                self._hits += 1
                return CacheLookup(CacheStatus.FRESH, entry.value, age)

            servable = entry.stale_while_revalidate and (
                self._max_stale is None or age - entry.ttl_seconds <= self._max_stale
            )
            if servable:
                entry.hits += 1
                self._stale_hits += 1
                return CacheLookup(CacheStatus.STALE, entry.value, age)

            del self._entries[key]
            self._misses += 1
            return CacheLookup(CacheStatus.MISS)

    def peek(self, key: str) -> Optional[T]:
        """Return the stored value regardless of age, without touching stats."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(
                value=value,
                stored_at=self._clock(),
                ttl_seconds=self._ttl,
                stale_while_revalidate=self._swr,
            )
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"[{self.name or 'cache'}] Evicted {evicted}")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every entry that can no longer be served. Returns the count."""
        with self._lock:
            now = self._clock()
            doomed = []
            for key, entry in self._entries.items():
                if not entry.is_expired(now):
                    continue
                if entry.stale_while_revalidate and (
                    self._max_stale is None
                    or entry.age_seconds(now) - entry.ttl_seconds <= self._max_stale
                ):
                    continue
                doomed.append(key)
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._stale_hits + self._misses
            hit_rate = ((self._hits + self._stale_hits) / lookups * 100) if lookups else 0.0
            return {
                "name": self.name,
                "entries": len(self._entries),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "stale_while_revalidate": self._swr,
                "hits": self._hits,
                "stale_hits": self._stale_hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate_percent": round(hit_rate, 2),
            }

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = self._stale_hits = self._misses = self._evictions = 0
