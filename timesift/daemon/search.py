"""Search service: the session-level entry point of the search engine.

Owns the query and filter panel state, debounces keystroke-driven searches,
keeps the inverted index in sync with the record store change feed, and
publishes result notifications on the event bus.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .bus import Event, EventBus
from .cache import DataChangeType, QueryCache
from .config import Config
from .error_handling import ErrorSeverity, ErrorTracker, IndexingError, InvalidQueryError
from .history import SavedSearch, SearchHistory
from .indexers.inverted import IndexStatistics, InvertedIndex
from .metrics import SearchMetrics
from .models import ChangeOperation, RecordChange, RecordKind, SearchFilters, SearchResults
from .search_orchestrator import SearchOrchestrator
from .store import RecordStore


class SuggestionType(Enum):
    HISTORY = "history"
    APP_NAME = "app_name"
    PROJECT = "project"


@dataclass(frozen=True)
class Suggestion:
    text: str
    type: SuggestionType


class SearchService:
    """
    One search engine per application session.

    ``search`` is debounced: every call cancels the previous pending or
    in-flight search, so only the last query of a burst executes and a
    superseded search never overwrites newer results.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[Config] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or Config()
        self.store = store
        self.event_bus = event_bus
        self.error_tracker = ErrorTracker()
        self.metrics = SearchMetrics(self.config.search.slow_search_seconds)

        cache = None
        if self.config.cache.enabled:
            cache = QueryCache(
                max_size=self.config.cache.max_entries,
                ttl_seconds=self.config.cache.ttl_seconds
            )

        self.orchestrator = SearchOrchestrator(
            store,
            self._new_index(),
            cache=cache,
            metrics=self.metrics,
            clock=clock,
            error_tracker=self.error_tracker
        )

        self.history = SearchHistory(
            limit=self.config.search.history_limit,
            state_path=self.config.state_path
        )
        self.history.load()

        self.query = ""
        self.filters = SearchFilters()
        self.results = SearchResults()
        self._task: Optional[asyncio.Task] = None

    @property
    def index(self) -> InvertedIndex:
        return self.orchestrator.index

    @property
    def cache(self) -> Optional[QueryCache]:
        return self.orchestrator.cache

    @property
    def is_searching(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def search_history(self) -> List[str]:
        return list(self.history.entries)

    @property
    def saved_searches(self) -> List[SavedSearch]:
        return list(self.history.saved_searches)

    # Searching

    def search(self, query: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Schedule a debounced search and return its task.

        Returns None, after clearing results, when there is nothing to
        search for.
        """
        if query is not None:
            self.query = query
        self._cancel_pending()

        if not self._has_criteria():
            self._clear_results()
            return None

        delay = self.config.search.debounce_ms / 1000
        self._task = asyncio.create_task(self._debounced_search(delay))
        return self._task

    async def search_immediate(self, query: Optional[str] = None) -> Optional[SearchResults]:
        """Run a search now; returns None if a newer search superseded it."""
        if query is not None:
            self.query = query
        self._cancel_pending()

        if not self._has_criteria():
            self._clear_results()
            return None

        task = asyncio.create_task(self._perform_search())
        self._task = task
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def apply_filters(self, filters: SearchFilters) -> Optional[SearchResults]:
        self.filters = filters
        return await self.search_immediate()

    async def clear_filters(self) -> Optional[SearchResults]:
        self.filters = SearchFilters()
        return await self.search_immediate()

    def clear_search(self) -> None:
        self.query = ""
        self._cancel_pending()
        self._clear_results()

    async def _debounced_search(self, delay: float) -> SearchResults:
        await asyncio.sleep(delay)
        return await self._perform_search()

    async def _perform_search(self) -> SearchResults:
        query, filters = self.query, self.filters
        results = await self.orchestrator.execute(query, filters)

        # Nothing below yields before results are published
        self.results = results
        if results.error is None and query.strip():
            self.history.add(query)

        if results.error is not None:
            await self._emit("search.failed", {"query": query, "error": results.error})
        else:
            await self._emit("search.results_changed", {
                "query": query,
                "total_count": results.total_count,
                "cache_hit": results.cache_hit,
            })
        return results

    def _has_criteria(self) -> bool:
        return bool(self.query.strip()) or self.filters.has_active_filters

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _clear_results(self) -> None:
        self.results = SearchResults()

    # History and saved searches

    def add_to_history(self, query: str) -> None:
        self.history.add(query)

    def clear_history(self) -> None:
        self.history.clear()

    def save_current_search(self, name: str) -> SavedSearch:
        """Save the current query and filters; an invalid query is refused."""
        if self.query.strip():
            validation = self.orchestrator.parser.validate(self.query)
            if not validation.is_valid:
                raise InvalidQueryError(validation.error_message)
        return self.history.save_search(name, self.query, self.filters)

    async def load_saved_search(self, saved: SavedSearch) -> Optional[SearchResults]:
        self.history.touch(saved)
        self.query = saved.query
        self.filters = saved.filters
        return await self.search_immediate()

    def delete_saved_search(self, saved: SavedSearch) -> bool:
        return self.history.delete_search(saved)

    # Suggestions

    def get_suggestions(self, partial: Optional[str] = None) -> List[Suggestion]:
        """History matches first, then app names, then project names."""
        text = (self.query if partial is None else partial).strip().lower()
        if not text:
            return []

        settings = self.config.search
        suggestions = [
            Suggestion(q, SuggestionType.HISTORY)
            for q in self.history.matching(text, settings.history_suggestions)
        ]
        suggestions.extend(
            Suggestion(name, SuggestionType.APP_NAME)
            for name in self.index.app_name_suggestions(text)[:settings.app_suggestions]
        )
        suggestions.extend(
            Suggestion(name, SuggestionType.PROJECT)
            for name in self.index.project_suggestions(text)[:settings.project_suggestions]
        )
        return suggestions[:settings.max_suggestions]

    # Index maintenance

    async def rebuild_index(self) -> bool:
        """
        Rebuild the index from a full store scan and swap it in.

        A failing store keeps the previous index. Returns whether the
        rebuild succeeded.
        """
        started = time.perf_counter()
        try:
            activities, time_entries, projects = await self._fetch_snapshot()
        except IndexingError as e:
            logger.error(f"Index rebuild failed, keeping previous index: {e}")
            self.error_tracker.record("index", e, ErrorSeverity.HIGH)
            return False

        index = self._new_index()
        index.build_index(activities, time_entries, projects)
        self.orchestrator.index = index
        if self.cache is not None:
            self.cache.clear()

        stats = index.statistics()
        elapsed = time.perf_counter() - started
        logger.info(f"Index rebuilt in {elapsed:.3f}s: {stats.total_items} items, {stats.total_terms} terms")
        await self._emit("index.rebuilt", stats.to_dict())
        return True

    async def _fetch_snapshot(self):
        try:
            return (
                await self.store.fetch_all_activities(),
                await self.store.fetch_all_time_entries(),
                await self.store.fetch_all_projects(),
            )
        except Exception as e:
            raise IndexingError(f"Could not read records: {e}") from e

    async def handle_change(self, change: RecordChange) -> bool:
        """
        Apply one change-feed notification to the index.

        Returns False when the changed record could not be read; the cache
        is invalidated either way.
        """
        applied = True
        try:
            if change.operation is ChangeOperation.DELETE:
                self._remove_from_index(change.kind, change.record_id)
            else:
                record = await self.store.fetch_record(change.kind, change.record_id)
                if record is None:
                    self._remove_from_index(change.kind, change.record_id)
                else:
                    self._add_to_index(change.kind, record)
        except Exception as e:
            logger.error(f"Failed to apply {change.operation.value} of {change.kind.value} {change.record_id}: {e}")
            self.error_tracker.record("index", e, ErrorSeverity.MEDIUM, record_id=change.record_id)
            applied = False

        if self.cache is not None:
            self.cache.invalidate(DataChangeType(change.kind.value))

        if applied:
            await self._emit("index.updated", {
                "kind": change.kind.value,
                "record_id": change.record_id,
                "operation": change.operation.value,
            })
        return applied

    async def on_record_event(self, event: Event) -> None:
        """Event bus handler for ``record.*`` events."""
        change = event.data.get("change")
        if isinstance(change, RecordChange):
            await self.handle_change(change)
        else:
            logger.warning(f"Ignoring malformed record event: {event.type}")

    def _add_to_index(self, kind: RecordKind, record: Any) -> None:
        if kind is RecordKind.ACTIVITY:
            self.index.add_activity(record)
        elif kind is RecordKind.TIME_ENTRY:
            self.index.add_time_entry(record)
        else:
            self.index.add_project(record)

    def _remove_from_index(self, kind: RecordKind, record_id: str) -> None:
        if kind is RecordKind.ACTIVITY:
            self.index.remove_activity(record_id)
        elif kind is RecordKind.TIME_ENTRY:
            self.index.remove_time_entry(record_id)
        else:
            self.index.remove_project(record_id)

    def _new_index(self) -> InvertedIndex:
        return InvertedIndex(window_title_sample=self.config.index.window_title_sample)

    # Diagnostics

    def index_statistics(self) -> IndexStatistics:
        return self.index.statistics()

    def common_terms(self) -> List[str]:
        return self.index.common_terms(self.config.index.common_terms_limit)

    def performance_metrics(self) -> SearchMetrics:
        return self.metrics

    def perform_memory_cleanup(self) -> int:
        """Drop expired cache entries and compact query statistics."""
        removed = self.cache.cleanup_expired() if self.cache is not None else 0
        self.metrics.compact()
        logger.debug(f"Memory cleanup removed {removed} cache entries")
        return removed

    def get_status(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "filters": self.filters.to_dict(),
            "is_searching": self.is_searching,
            "index": self.index_statistics().to_dict(),
            "cache_entries": len(self.cache) if self.cache is not None else 0,
            "metrics": self.metrics.to_dict(),
            "history_size": len(self.history.entries),
            "saved_searches": len(self.history.saved_searches),
            "recent_errors": [e.to_dict() for e in self.error_tracker.recent(5)],
        }

    async def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.emit(Event(type=event_type, data=data, source="search_service"))
