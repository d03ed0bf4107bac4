"""
Ranking Cache

In-memory TTL cache for ranked strength-score queries, invalidated per time
range whenever a new score is stored.

Invalidation only reaches the cache of the process that stored the score. A
score written by another process (a CLI batch run next to the API server) is
picked up once the cached ranking expires, so the TTL bounds that staleness.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A single cache entry with TTL tracking."""

    value: Any
    expires_at: float
    created_at: float = field(default_factory=time.monotonic)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class StatsCache:
    """
    Thread-safe in-memory cache with a single TTL and prefix invalidation.

    Batch scoring stores scores from several worker threads, so every access
    goes through one lock.
    """

    DEFAULT_TTL = 300  # 5 minutes

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        max_size: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._versions: dict[str, int] = {}

    def _evict_if_needed(self) -> None:
        """Evict oldest entries if cache is too large."""
        if len(self._cache) < self._max_size:
            return

        # Remove oldest 10% of entries
        entries_to_remove = max(1, self._max_size // 10)
        sorted_entries = sorted(self._cache.items(), key=lambda x: x[1].created_at)
        for key, _ in sorted_entries[:entries_to_remove]:
            del self._cache[key]

        logger.debug(f"Evicted {entries_to_remove} cache entries due to size limit")

    def get(self, key: str) -> tuple[bool, Any]:
        """
        Get a value from cache.

        Returns:
            Tuple of (hit: bool, value: Any)
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or entry.is_expired(self._clock()):
                self._cache.pop(key, None)
                self._misses += 1
                return False, None

            self._hits += 1
            return True, entry.value

    def version(self, prefix: str) -> int:
        """Number of times ``prefix`` has been invalidated."""
        with self._lock:
            return self._versions.get(prefix, 0)

    def set(
        self,
        key: str,
        value: Any,
        prefix: str | None = None,
        expected_version: int | None = None,
    ) -> bool:
        """
        Store a value.

        When ``prefix`` and ``expected_version`` are given the value is only
        stored if ``prefix`` has not been invalidated since that version was
        read, so a result computed from data that changed meanwhile is never
        cached.

        Returns:
            Whether the value was stored
        """
        with self._lock:
            if prefix is not None and self._versions.get(prefix, 0) != expected_version:
                logger.debug(f"Skipped caching {key}: '{prefix}' was invalidated during the read")
                return False
            self._evict_if_needed()
            now = self._clock()
            self._cache[key] = CacheEntry(value=value, expires_at=now + self._ttl, created_at=now)
            return True

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys starting with ``pattern``.

        Returns:
            Number of keys invalidated
        """
        with self._lock:
            self._versions[pattern] = self._versions.get(pattern, 0) + 1
            keys_to_delete = [k for k in self._cache if k.startswith(pattern)]
            for key in keys_to_delete:
                del self._cache[key]
            if keys_to_delete:
                logger.debug(f"Invalidated {len(keys_to_delete)} cache entries matching '{pattern}'")
            return len(keys_to_delete)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "hit_ratio": round(self._hits / total, 4) if total else 0.0,
            }
