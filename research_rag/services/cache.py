# =============================================================================
# Response Cache — in-process prompt → response memo
# =============================================================================
#
# Avoids paying for the same chat completion twice within a process.
#
# Keys: rolling_hash(context + "\n\n" + prompt) (or just the prompt), made
#       non-negative and stringified. Collisions are possible and accepted;
#       the cache is small and not security-relevant.
# Capacity: at most `max_size` entries. Inserting a NEW key at capacity
#       evicts the oldest-inserted key (dict order). Reads do not refresh
#       an entry's position, so this is insertion-order eviction, not LRU.
# Expiry: an entry older than `ttl_seconds` is a miss, and is deleted on
#       the lookup that found it stale. There is no background sweep.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from research_rag.services.hashing import hash_key

logger = logging.getLogger(__name__)

MAX_CACHE_SIZE = 1000
CACHE_TTL_SECONDS = 24 * 60 * 60


@dataclass
class CacheEntry:
    response: str
    timestamp: float


class ResponseCache:
    """Bounded, lazily-expiring cache of model responses."""

    def __init__(
        self,
        max_size: int = MAX_CACHE_SIZE,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._entries: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(prompt: str, context: str | None = None) -> str:
        return hash_key(f"{context}\n\n{prompt}" if context else prompt)

    def get(self, prompt: str, context: str | None = None) -> str | None:
        key = self.make_key(prompt, context)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() - entry.timestamp > self._ttl:
            del self._entries[key]
            self._misses += 1
            logger.debug("Cache entry %s expired", key)
            return None

        self._hits += 1
        return entry.response

    def set(self, prompt: str, response: str, context: str | None = None) -> None:
        key = self.make_key(prompt, context)
        if key not in self._entries and len(self._entries) >= self._max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("Cache full, evicted %s", oldest)
        self._entries[key] = CacheEntry(response=response, timestamp=self._clock())

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        """Size, capacity and hit rate (0.0 before the first lookup)."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }
