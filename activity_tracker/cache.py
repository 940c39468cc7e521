"""
In-memory TTL cache for external lookups.

Provides a time-aware cache used for:
- Matching policies fetched per FIR region
- Session-log responses per (subject, window start)
- Registry snapshots

Design rationale:
One controller usually holds several endorsements, and every endorsement
needs the same session list. Caching the raw response for an hour turns N
rate-limited API calls into one. Registry snapshots change rarely and are
cached for minutes.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached value with its insertion time."""
    value: Any
    cached_at: float = field(default_factory=time.time)


class TTLCache:
    """
    Thread-safe in-memory cache with per-instance TTL.

    Entries older than ttl_seconds are treated as missing and dropped
    on access.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock

        self._cache: Dict[Hashable, CacheEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get cached value by key.

        Returns None if not cached or expired.
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                age = self._clock() - entry.cached_at
                if age < self.ttl_seconds:
                    self._hits += 1
                    return entry.value
                # Expired
                del self._cache[key]

            self._misses += 1
            return None

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value, evicting the oldest entries when over capacity."""
        with self._lock:
            self._cache[key] = CacheEntry(value=value, cached_at=self._clock())

            if len(self._cache) > self.max_entries:
                self._evict_oldest()

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value or call loader and cache its result.

        Exceptions from loader propagate and nothing is cached, so a failed
        fetch is retried on the next call.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def _evict_oldest(self) -> None:
        """Remove oldest entries when over capacity."""
        entries = sorted(
            self._cache.items(),
            key=lambda x: x[1].cached_at
        )
        # Remove oldest 10%
        to_remove = max(1, len(entries) // 10)
        for key, _ in entries[:to_remove]:
            del self._cache[key]

    def invalidate(self, key: Hashable) -> None:
        """Remove specific entry from cache."""
        with self._lock:
            self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear entire cache."""
        with self._lock:
            self._cache.clear()

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                'entries': len(self._cache),
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
            }
