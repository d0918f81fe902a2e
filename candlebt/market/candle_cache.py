"""
Bounded TTL cache for fetched candle series.

Entries expire a fixed time after they were fetched. When the cache is full,
expired entries go first; after that the entries with the lowest retention
score are evicted, where

    score = access_count / (1 + seconds_since_last_access)

so rarely-used and long-idle series are dropped before hot ones. Eviction
removes a small margin beyond what the new entry needs, which keeps a burst
of distinct requests from evicting on every insert.
"""

import time
from dataclasses import dataclass
from typing import Callable, Hashable, NamedTuple, Optional

import structlog
from cachetools import TTLCache

from candlebt.market.models import Candle

logger = structlog.get_logger(__name__)


class CacheKey(NamedTuple):
    """Identity of a cached series."""
    symbol: str
    interval: str
    limit: int
    end_time: Optional[int]  # None means "latest"


@dataclass
class CacheEntry:
    """Cached series plus access bookkeeping."""

    data: tuple[Candle, ...]
    fetched_at: float
    last_accessed_at: float
    access_count: int = 1  # the fetch that stored it

    def touch(self, now: float) -> None:
        self.last_accessed_at = now
        self.access_count += 1

    def retention_score(self, now: float) -> float:
        idle = max(0.0, now - self.last_accessed_at)
        return self.access_count / (1.0 + idle)


class CandleCache(TTLCache):
    """
    TTLCache of CacheEntry values with score-based eviction.

    Example:
        >>> cache = CandleCache(maxsize=5, ttl=30)
        >>> cache.store(key, candles)
        >>> entry = cache.lookup(key)
    """

    def __init__(
        self,
        maxsize: int,
        ttl: float,
        timer: Callable[[], float] = time.monotonic,
        eviction_margin: int = 1,
    ):
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        if eviction_margin < 0:
            raise ValueError(f"eviction_margin must be >= 0, got {eviction_margin}")
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self.eviction_margin = eviction_margin
        self.evictions = 0

    def lookup(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the live entry for key, recording the access, or None."""
        entry = self.get(key)
        if entry is not None:
            entry.touch(self.timer())
        return entry

    def store(self, key: Hashable, candles: list[Candle]) -> CacheEntry:
        """Insert a series. The entry's TTL starts now."""
        now = self.timer()
        entry = CacheEntry(data=tuple(candles), fetched_at=now, last_accessed_at=now)
        self[key] = entry
        return entry

    def trim(self, target_size: int) -> int:
        """
        Shrink the cache to at most target_size entries.

        Hook for callers that watch process memory. Expired entries are
        dropped first, then the lowest-scoring ones.

        Returns:
            Number of entries removed
        """
        before = len(self)
        self.expire()
        self._evict_down_to(max(0, target_size))
        removed = before - len(self)
        if removed:
            logger.info("candle_cache_trimmed", removed=removed, remaining=len(self))
        return removed

    def popitem(self):
        """Evict for an insert: free one slot plus the configured margin."""
        self.expire()
        if not len(self):
            raise KeyError(f"{type(self).__name__} is empty")
        target = max(0, self.maxsize - 1 - self.eviction_margin)
        victims = self._ranked_keys()[: max(1, len(self) - target)]
        evicted = None
        for key in victims:
            evicted = (key, self.pop(key))
        self.evictions += len(victims)
        logger.debug("candle_cache_evicted", count=len(victims), remaining=len(self))
        return evicted

    def _evict_down_to(self, target: int) -> None:
        excess = len(self) - target
        if excess <= 0:
            return
        for key in self._ranked_keys()[:excess]:
            del self[key]
        self.evictions += excess

    def _ranked_keys(self) -> list:
        now = self.timer()
        return sorted(self.keys(), key=lambda k: self[k].retention_score(now))
