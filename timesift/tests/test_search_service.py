"""Tests for the session-level search service."""

import asyncio
from datetime import datetime, timedelta

import pytest

from timesift.daemon.bus import Event, EventBus
from timesift.daemon.cache import QueryCache
from timesift.daemon.config import Config
from timesift.daemon.error_handling import InvalidQueryError
from timesift.daemon.models import (
    ActivityRecord, ChangeOperation, ProjectRecord, RecordChange, RecordKind,
    SearchFilters, TimeEntryRecord
)
from timesift.daemon.search import SearchService, SuggestionType


@pytest.fixture
def config():
    config = Config()
    config.search.debounce_ms = 50
    return config


@pytest.fixture
def service(store, config, clock):
    return SearchService(store, config=config, clock=clock)


@pytest.fixture
def executed(service):
    """Record every query the planner actually runs."""
    queries = []
    original = service.orchestrator.execute

    async def spy(query, filters=None):
        queries.append(query)
        return await original(query, filters)

    service.orchestrator.execute = spy
    return queries


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_executes_once(self, service, executed):
        """Three keystrokes inside the debounce window run one search for the last query."""
        await service.rebuild_index()
        first = service.search("x")
        second = service.search("xc")
        third = service.search("xcode")

        results = await third

        assert executed == ["xcode"]
        assert first.cancelled()
        assert second.cancelled()
        assert results.total_count == 3
        assert service.results is results

    @pytest.mark.asyncio
    async def test_empty_query_clears_results(self, service):
        await service.rebuild_index()
        await service.search_immediate("xcode")
        assert not service.results.is_empty

        assert service.search("   ") is None
        assert service.results.is_empty

    @pytest.mark.asyncio
    async def test_empty_query_with_filters_browses(self, service):
        await service.rebuild_index()
        service.filters = SearchFilters(exclude_idle_time=True)
        results = await service.search("")
        assert results.path == "full"
        assert len(results.activities) == 4

    @pytest.mark.asyncio
    async def test_superseded_search_returns_none(self, service):
        await service.rebuild_index()
        original = service.orchestrator.execute

        async def slow(query, filters=None):
            if query == "xcode":
                await asyncio.sleep(0.5)
            return await original(query, filters)

        service.orchestrator.execute = slow

        first = asyncio.create_task(service.search_immediate("xcode"))
        await asyncio.sleep(0.05)
        second = await service.search_immediate("slack")

        assert await first is None
        assert second is not None
        assert service.results is second
        assert service.search_history == ["slack"]

    @pytest.mark.asyncio
    async def test_clear_search_cancels_pending(self, service, executed):
        task = service.search("xcode")
        service.clear_search()
        await asyncio.sleep(0.1)

        assert task.cancelled()
        assert executed == []
        assert service.query == ""
        assert not service.is_searching


class TestFilters:
    @pytest.mark.asyncio
    async def test_apply_and_clear_filters(self, service):
        await service.rebuild_index()
        service.query = "xcode"

        results = await service.apply_filters(SearchFilters(start_date=datetime(2024, 6, 1)))
        assert [r.activity.id for r in results.activities] == ["a1"]

        results = await service.clear_filters()
        assert [r.activity.id for r in results.activities] == ["a1", "a4"]
        assert not service.filters.has_active_filters

    @pytest.mark.asyncio
    async def test_clear_filters_without_query(self, service):
        service.filters = SearchFilters(exclude_idle_time=True)
        assert await service.clear_filters() is None
        assert service.results.is_empty


class TestHistory:
    @pytest.mark.asyncio
    async def test_successful_searches_recorded(self, service):
        await service.rebuild_index()
        await service.search_immediate("xcode")
        await service.search_immediate("slack")
        await service.search_immediate("xcode")
        assert service.search_history == ["xcode", "slack"]

    @pytest.mark.asyncio
    async def test_invalid_query_not_recorded(self, service):
        results = await service.search_immediate("after:someday")
        assert results.error is not None
        assert service.search_history == []

    def test_bounded_to_twenty(self, service):
        for i in range(25):
            service.add_to_history(f"query {i}")
        assert len(service.search_history) == 20
        assert service.search_history[0] == "query 24"
        assert service.search_history[-1] == "query 5"

    def test_blank_entries_ignored_and_clear(self, service):
        service.add_to_history("  ")
        assert service.search_history == []
        service.add_to_history(" xcode ")
        assert service.search_history == ["xcode"]
        service.clear_history()
        assert service.search_history == []


class TestSavedSearches:
    @pytest.mark.asyncio
    async def test_save_load_delete(self, service):
        await service.rebuild_index()
        service.query = "xcode"
        service.filters = SearchFilters(start_date=datetime(2024, 6, 1))
        saved = service.save_current_search("Recent Xcode")

        assert saved.id
        assert saved.last_used_at is None
        assert "Recent Xcode" in [s.name for s in service.saved_searches]

        service.clear_search()
        await service.clear_filters()
        results = await service.load_saved_search(saved)

        assert saved.last_used_at is not None
        assert service.query == "xcode"
        assert service.filters == saved.filters
        assert [r.activity.id for r in results.activities] == ["a1"]

        assert service.delete_saved_search(saved)
        assert service.saved_searches == []
        assert not service.delete_saved_search(saved)

    def test_description(self, service):
        service.query = "xcode"
        service.filters = SearchFilters(exclude_idle_time=True)
        saved = service.save_current_search("Mine")
        assert saved.description == '"xcode" with Exclude idle'

    def test_invalid_query_not_saved(self, service):
        service.query = "xcode after:someday"
        with pytest.raises(InvalidQueryError, match="Invalid date format"):
            service.save_current_search("Broken")
        assert service.saved_searches == []

    def test_filters_only_search_saved(self, service):
        service.filters = SearchFilters(exclude_idle_time=True)
        saved = service.save_current_search("No idle")
        assert saved.query == ""

    @pytest.mark.asyncio
    async def test_persisted_to_state_file(self, store, tmp_path, clock):
        config = Config(state_path=tmp_path / "state" / "search.json")
        service = SearchService(store, config=config, clock=clock)
        await service.rebuild_index()
        await service.search_immediate("xcode")
        service.filters = SearchFilters(selected_apps={"Xcode"})
        saved = service.save_current_search("Xcode only")

        reloaded = SearchService(store, config=config, clock=clock)
        assert reloaded.search_history == ["xcode"]
        assert len(reloaded.saved_searches) == 1
        restored = reloaded.saved_searches[0]
        assert restored.id == saved.id
        assert restored.filters.selected_apps == frozenset({"Xcode"})


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_order_by_source(self, service):
        await service.rebuild_index()
        service.add_to_history("xcode release")

        suggestions = service.get_suggestions("xc")

        assert [(s.text, s.type) for s in suggestions] == [
            ("xcode release", SuggestionType.HISTORY),
            ("Xcode", SuggestionType.APP_NAME),
        ]

    @pytest.mark.asyncio
    async def test_caps(self, store, config, clock):
        for i in range(6):
            store.activities[f"x{i}"] = ActivityRecord(
                id=f"x{i}", app_name=f"Tool {i}", start_time=datetime(2024, 6, 1)
            )
            store.projects[f"q{i}"] = ProjectRecord(id=f"q{i}", name=f"Tool project {i}")
        service = SearchService(store, config=config, clock=clock)
        await service.rebuild_index()
        for i in range(8):
            service.add_to_history(f"tool query {i}")

        suggestions = service.get_suggestions("tool")

        kinds = [s.type for s in suggestions]
        assert kinds.count(SuggestionType.HISTORY) == 5
        assert kinds.count(SuggestionType.APP_NAME) == 3
        assert kinds.count(SuggestionType.PROJECT) == 2
        assert len(suggestions) == 10

    def test_blank_partial(self, service):
        assert service.get_suggestions("  ") == []


class TestIndexMaintenance:
    @pytest.mark.asyncio
    async def test_rebuild_swaps_index_and_clears_cache(self, service):
        await service.rebuild_index()
        await service.search_immediate("xcode")
        assert len(service.cache) == 1

        old_index = service.index
        assert await service.rebuild_index()
        assert service.index is not old_index
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_rebuild_failure_keeps_previous_index(self, service, store):
        await service.rebuild_index()
        index = service.index
        store.available = False

        assert not await service.rebuild_index()
        assert service.index is index
        assert service.index.search_activity_ids("xcode") == {"a1", "a4"}
        assert service.error_tracker.last_error.component == "index"
        assert service.error_tracker.last_error.error_type == "IndexingError"

    @pytest.mark.asyncio
    async def test_insert_update_delete(self, service, store, now):
        await service.rebuild_index()
        await service.search_immediate("kubernetes")
        assert service.results.is_empty

        store.activities["n1"] = ActivityRecord(
            id="n1", app_name="Terminal", window_title="kubernetes rollout",
            start_time=now - timedelta(minutes=10), end_time=now
        )
        assert await service.handle_change(RecordChange(RecordKind.ACTIVITY, "n1", ChangeOperation.INSERT))
        assert len(service.cache) == 0
        results = await service.search_immediate("kubernetes")
        assert [r.activity.id for r in results.activities] == ["n1"]

        store.activities["n1"].window_title = "helm upgrade"
        await service.handle_change(RecordChange(RecordKind.ACTIVITY, "n1", ChangeOperation.UPDATE))
        assert service.index.search_activity_ids("kubernetes") == set()
        assert service.index.search_activity_ids("helm") == {"n1"}

        del store.activities["n1"]
        await service.handle_change(RecordChange(RecordKind.ACTIVITY, "n1", ChangeOperation.DELETE))
        assert service.index.search_activity_ids("helm") == set()
        assert "Terminal" not in service.index.app_name_suggestions("term")

    @pytest.mark.asyncio
    async def test_update_of_vanished_record_removes_it(self, service, store):
        await service.rebuild_index()
        del store.time_entries["t1"]
        await service.handle_change(RecordChange(RecordKind.TIME_ENTRY, "t1", ChangeOperation.UPDATE))
        assert service.index.search_time_entry_ids("review") == set()

    @pytest.mark.asyncio
    async def test_change_with_unavailable_store(self, service, store):
        await service.rebuild_index()
        await service.search_immediate("xcode")
        store.available = False

        applied = await service.handle_change(RecordChange(RecordKind.PROJECT, "p1", ChangeOperation.UPDATE))

        assert not applied
        assert len(service.cache) == 0


class TestEvents:
    """Change feed and notifications through the event bus."""

    @pytest.mark.asyncio
    async def test_change_feed_updates_index(self, store, config, clock, now):
        bus = EventBus()
        store.event_bus = bus
        service = SearchService(store, config=config, event_bus=bus, clock=clock)
        await service.rebuild_index()
        await bus.start()
        bus.subscribe("record.*", service.on_record_event)

        await store.upsert(TimeEntryRecord(
            id="n1", title="Quarterly report", project_id="p3",
            start_time=now - timedelta(hours=1), end_time=now
        ))
        await bus.join()
        assert service.index.search_time_entry_ids("quarterly") == {"n1"}

        await store.delete(RecordKind.TIME_ENTRY, "n1")
        await bus.join()
        assert service.index.search_time_entry_ids("quarterly") == set()

        await bus.stop()

    @pytest.mark.asyncio
    async def test_search_notifications(self, store, config, clock):
        bus = EventBus()
        service = SearchService(store, config=config, event_bus=bus, clock=clock)
        received = []

        async def handler(event: Event):
            received.append(event)

        bus.subscribe("search.*", handler)
        bus.subscribe("index.*", handler)
        await bus.start()

        await service.rebuild_index()
        await service.search_immediate("xcode")
        await service.search_immediate("app:")
        await bus.join()

        assert [e.type for e in received] == ["index.rebuilt", "search.results_changed", "search.failed"]
        assert received[1].data["total_count"] == 3
        assert received[2].data["error"] == "Invalid filter syntax: app:"

        await bus.stop()


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_performance_metrics(self, service):
        await service.rebuild_index()
        await service.search_immediate("xcode")
        await service.search_immediate("xcode")

        metrics = service.performance_metrics()
        assert metrics.total_searches == 2
        assert metrics.cache_hit_rate == 0.5
        assert "Total Searches: 2" in str(metrics)

    @pytest.mark.asyncio
    async def test_memory_cleanup_drops_expired_entries(self, service):
        now = [0.0]
        service.orchestrator.cache = QueryCache(ttl_seconds=10, clock=lambda: now[0])
        await service.rebuild_index()
        await service.search_immediate("xcode")
        now[0] = 60.0

        assert service.perform_memory_cleanup() == 1
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_status(self, service):
        await service.rebuild_index()
        status = service.get_status()
        assert status["index"]["total_items"] == 11
        assert status["cache_entries"] == 0
        assert status["is_searching"] is False
