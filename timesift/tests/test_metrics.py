"""Tests for search metrics."""

from timesift.daemon.metrics import SearchMetrics


class TestSearchMetrics:
    def test_counters_and_rates(self):
        metrics = SearchMetrics(slow_search_seconds=0.5)
        metrics.record_search("xcode", 3, 0.1, cache_hit=False)
        metrics.record_search("XCODE ", 3, 0.01, cache_hit=True)
        metrics.record_search("slack", 0, 0.9, cache_hit=False)

        assert metrics.total_searches == 3
        assert metrics.cache_hit_rate == 1 / 3
        assert metrics.slow_search_count == 1
        assert metrics.median_search_time == 0.1
        assert metrics.top_queries(1) == ["xcode"]

    def test_average_result_count(self):
        metrics = SearchMetrics()
        assert metrics.average_result_count == 0.0

        metrics.record_search("xcode", 3, 0.01, cache_hit=False)
        metrics.record_search("slack", 0, 0.01, cache_hit=False)

        assert metrics.average_result_count == 1.5
        assert metrics.to_dict()["average_result_count"] == 1.5
        assert "Average Result Count: 1.5" in str(metrics)
