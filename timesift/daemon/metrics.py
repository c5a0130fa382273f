"""Search performance metrics."""

from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List

from loguru import logger

SLOW_SEARCH_SECONDS = 1.0
LARGE_RESULT_COUNT = 1000
MAX_SAMPLES = 1000
MAX_TRACKED_QUERIES = 100


@dataclass
class LatencyHistogram:
    """Track latency distribution with approximate percentiles."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [
        10, 25, 50, 100, 200, 300, 500, 1000, 2000, 5000  # milliseconds
    ])
    counts: Dict[float, int] = field(default_factory=dict)
    total_count: int = 0
    sum_ms: float = 0

    def __post_init__(self):
        for bucket in self.buckets:
            self.counts[bucket] = 0

    def record(self, latency_ms: float) -> None:
        self.total_count += 1
        self.sum_ms += latency_ms

        for bucket in self.buckets:
            if latency_ms <= bucket:
                self.counts[bucket] += 1
                break
        else:
            # Over max bucket
            self.counts[self.buckets[-1]] += 1

    def get_percentile(self, percentile: float) -> float:
        if self.total_count == 0:
            return 0

        target_count = self.total_count * (percentile / 100)
        cumulative = 0
        for bucket in self.buckets:
            cumulative += self.counts[bucket]
            if cumulative >= target_count:
                return bucket
        return self.buckets[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.total_count,
            "mean": round(self.sum_ms / self.total_count, 1) if self.total_count else 0,
            "p50": self.get_percentile(50),
            "p95": self.get_percentile(95),
            "p99": self.get_percentile(99),
        }


class SearchMetrics:
    """
    Counters and latency samples for executed searches.

    A search slower than ``slow_search_seconds`` is counted and logged as
    slow. Cache hits count as searches.
    """

    def __init__(self, slow_search_seconds: float = SLOW_SEARCH_SECONDS):
        self.slow_search_seconds = slow_search_seconds
        self.total_searches = 0
        self.cache_hits = 0
        self.slow_search_count = 0
        self.average_search_time = 0.0
        self.search_times: Deque[float] = deque(maxlen=MAX_SAMPLES)
        self.result_counts: Deque[int] = deque(maxlen=MAX_SAMPLES)
        self.query_frequency: Counter = Counter()
        self.histogram = LatencyHistogram("search.total")

    @property
    def cache_hit_rate(self) -> float:
        if not self.total_searches:
            return 0.0
        return self.cache_hits / self.total_searches

    @property
    def slow_search_rate(self) -> float:
        if not self.total_searches:
            return 0.0
        return self.slow_search_count / self.total_searches

    @property
    def median_search_time(self) -> float:
        if not self.search_times:
            return 0.0
        ordered = sorted(self.search_times)
        mid = len(ordered) // 2
        if len(ordered) % 2 == 0:
            return (ordered[mid - 1] + ordered[mid]) / 2
        return ordered[mid]

    @property
    def average_result_count(self) -> float:
        if not self.result_counts:
            return 0.0
        return sum(self.result_counts) / len(self.result_counts)

    def record_search(
        self,
        query: str,
        result_count: int,
        search_time: float,
        cache_hit: bool
    ) -> None:
        """Record one executed search; ``search_time`` is in seconds."""
        self.total_searches += 1
        if cache_hit:
            self.cache_hits += 1

        self.average_search_time += (search_time - self.average_search_time) / self.total_searches
        self.search_times.append(search_time)
        self.result_counts.append(result_count)
        self.histogram.record(search_time * 1000)

        if search_time > self.slow_search_seconds:
            self.slow_search_count += 1
            logger.warning(f"Slow search detected: {search_time:.3f}s for query: {query!r}")

        if result_count > LARGE_RESULT_COUNT:
            logger.info(f"Large result set: {result_count} results for query: {query!r}")

        normalized = query.strip().lower()
        if normalized:
            self.query_frequency[normalized] += 1

    def top_queries(self, limit: int = 10) -> List[str]:
        return [query for query, _ in self.query_frequency.most_common(limit)]

    def compact(self) -> None:
        """Keep only the most frequent queries."""
        if len(self.query_frequency) > MAX_TRACKED_QUERIES:
            self.query_frequency = Counter(dict(self.query_frequency.most_common(MAX_TRACKED_QUERIES)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_searches": self.total_searches,
            "cache_hits": self.cache_hits,
            "cache_hit_rate": round(self.cache_hit_rate, 3),
            "average_search_time": round(self.average_search_time, 4),
            "median_search_time": round(self.median_search_time, 4),
            "slow_search_count": self.slow_search_count,
            "slow_search_rate": round(self.slow_search_rate, 3),
            "average_result_count": round(self.average_result_count, 1),
            "latency_ms": self.histogram.to_dict(),
        }

    def __str__(self) -> str:
        return (
            "Search Performance Metrics:\n"
            f"- Total Searches: {self.total_searches}\n"
            f"- Cache Hit Rate: {self.cache_hit_rate * 100:.1f}%\n"
            f"- Average Search Time: {self.average_search_time:.3f}s\n"
            f"- Median Search Time: {self.median_search_time:.3f}s\n"
            f"- Average Result Count: {self.average_result_count:.1f}\n"
            f"- Slow Search Rate: {self.slow_search_rate * 100:.1f}%"
        )
