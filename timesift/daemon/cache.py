"""TTL cache for search results, invalidated wholesale on data changes."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from .models import SearchFilters, SearchResults


class DataChangeType(Enum):
    """What changed underneath the cache."""
    ACTIVITY = "activity"
    TIME_ENTRY = "time_entry"
    PROJECT = "project"
    INDEX = "index"


CacheKey = Tuple[str, SearchFilters]


@dataclass
class CachedSearchResult:
    results: SearchResults
    created_at: float


class QueryCache:
    """
    Capacity-bounded cache of (normalized query, filters) -> results.

    Entries expire ``ttl_seconds`` after creation. When full, expired
    entries are dropped first, then the oldest entries.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize query cache.

        Args:
            max_size: Maximum cache entries
            ttl_seconds: Time to live for cache entries
            clock: Monotonic time source in seconds
        """
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.cache: Dict[CacheKey, CachedSearchResult] = {}
        self.insertion_order: List[CacheKey] = []

    def __len__(self) -> int:
        return len(self.cache)

    def get(self, query: str, filters: SearchFilters) -> Optional[SearchResults]:
        """Get cached results if present and not expired."""
        key = (query, filters)
        cached = self.cache.get(key)
        if cached is None:
            return None

        if self._is_expired(cached):
            self._drop(key)
            return None

        logger.debug(f"Cache hit for query: {query!r}")
        return cached.results

    def put(self, query: str, filters: SearchFilters, results: SearchResults) -> None:
        """Store results, evicting expired then oldest entries at capacity."""
        key = (query, filters)
        if key in self.cache:
            self._drop(key)

        if len(self.cache) >= self.max_size:
            self.cleanup_expired()
        while self.cache and len(self.cache) >= self.max_size:
            self._drop(self.insertion_order[0])

        if self.max_size <= 0:
            return

        self.cache[key] = CachedSearchResult(results=results, created_at=self._clock())
        self.insertion_order.append(key)
        logger.debug(f"Cached results for query: {query!r}")

    def invalidate(self, change: DataChangeType) -> None:
        """Drop entries affected by a data change; index-only changes keep them."""
        if change is DataChangeType.INDEX:
            return
        if self.cache:
            logger.debug(f"Cache invalidated due to data change: {change.value}")
        self.clear()

    def clear(self) -> None:
        """Clear all cache entries."""
        self.cache.clear()
        self.insertion_order.clear()

    def cleanup_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        expired = [key for key, cached in self.cache.items() if self._is_expired(cached)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def _is_expired(self, cached: CachedSearchResult) -> bool:
        return self._clock() - cached.created_at > self.ttl_seconds

    def _drop(self, key: CacheKey) -> None:
        self.cache.pop(key, None)
        if key in self.insertion_order:
            self.insertion_order.remove(key)
