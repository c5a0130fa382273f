"""Query planning and execution.

A query is normalized, looked up in the result cache and then executed on
one of two paths:

- fast path: the inverted index yields candidate ids per record kind, the
  records are fetched by id and the filter panel is applied in memory
- full path: the parsed query and the filter panel are translated into
  store predicates and the store returns matching records directly

Both paths rank their records and produce the same SearchResults shape.
"""

import dataclasses
import time
from datetime import datetime
from enum import Enum, IntEnum
from typing import Callable, List, Optional, Set, Tuple

from loguru import logger

from .cache import QueryCache
from .error_handling import ErrorSeverity, ErrorTracker
from .indexers.inverted import InvertedIndex
from .metrics import SearchMetrics
from .models import SearchFilters, SearchResults
from .query_parser import ParsedQuery, QueryParser, split_query, strip_quotes
from .ranking import rank_activities, rank_projects, rank_time_entries
from .store import (
    ActivityPredicate, ProjectPredicate, RecordStore, TimeEntryPredicate
)
from .tokenizer import is_stop_word

OPERATOR_CHARS = (":", '"', "-")
MAX_SIMPLE_TERMS = 5
MAX_SIMPLE_PROJECTS = 5
MAX_SIMPLE_APPS = 10
LARGE_DATASET = 10_000


class SearchComplexity(IntEnum):
    """Advisory cost estimate for a query."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class SearchPath(Enum):
    FAST = "fast"
    FULL = "full"


def normalize_query(query: str) -> str:
    """
    Trim, collapse whitespace and lower-case a query.

    Words shorter than 2 characters are dropped unless they carry operator
    syntax. Quoted spans are kept whole.
    """
    collapsed = " ".join((query or "").lower().split())
    kept = [
        token for token in split_query(collapsed)
        if len(token) >= 2 or ":" in token or token.startswith(("-", '"'))
    ]
    return " ".join(kept)


def has_operator_syntax(query: str) -> bool:
    return any(char in query for char in OPERATOR_CHARS)


def predicate_terms(parsed: ParsedQuery) -> Tuple[str, ...]:
    """Lower-cased text terms for store predicates, minus words the index ignores."""
    terms = []
    for term in parsed.text_terms:
        term = term.lower()
        if " " not in term and (len(term) < 2 or is_stop_word(term)):
            continue
        terms.append(term)
    return tuple(terms)


def exclusion_terms(parsed: ParsedQuery) -> Tuple[str, ...]:
    terms = (strip_quotes(term).lower() for term in parsed.exclude_terms)
    return tuple(term for term in terms if term)


class SearchOrchestrator:
    """Plans and executes searches against the index and the record store."""

    def __init__(
        self,
        store: RecordStore,
        index: InvertedIndex,
        cache: Optional[QueryCache] = None,
        metrics: Optional[SearchMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
        parser: Optional[QueryParser] = None,
        error_tracker: Optional[ErrorTracker] = None
    ):
        """
        Initialize search orchestrator.

        Args:
            store: Record store to read from
            index: Inverted index used by the fast path
            cache: Result cache, or None to disable caching
            metrics: Performance metrics sink
            clock: Wall-clock source for "now" (ranking and open durations)
            parser: Query parser, sharing the same clock by default
            error_tracker: Where store failures are recorded
        """
        self.store = store
        self.index = index
        self.cache = cache
        self.metrics = metrics or SearchMetrics()
        self._clock = clock or datetime.now
        self.parser = parser or QueryParser(clock=self._clock)
        self.error_tracker = error_tracker or ErrorTracker()

    # Planning

    def estimate_complexity(
        self,
        query: str,
        filters: SearchFilters,
        data_size: Optional[int] = None
    ) -> SearchComplexity:
        """Estimate query cost from its syntax, the filter panel and data volume."""
        if data_size is None:
            data_size = self.index.statistics().total_items

        complexity = SearchComplexity.LOW
        if has_operator_syntax(query):
            complexity = SearchComplexity.MEDIUM

        free_terms = [t for t in query.split() if not has_operator_syntax(t)]
        if len(free_terms) > MAX_SIMPLE_TERMS:
            complexity = SearchComplexity.HIGH

        if (len(filters.selected_projects) > MAX_SIMPLE_PROJECTS
                or len(filters.selected_apps) > MAX_SIMPLE_APPS):
            complexity = max(complexity, SearchComplexity.MEDIUM)

        if data_size > LARGE_DATASET:
            complexity = SearchComplexity(min(complexity + 1, SearchComplexity.HIGH))

        return complexity

    def should_use_fast_path(self, query: str, filters: SearchFilters) -> bool:
        """Index-driven search for plain text with at most one project and one app."""
        if not query or has_operator_syntax(query):
            return False
        return len(filters.selected_projects) <= 1 and len(filters.selected_apps) <= 1

    # Execution

    async def execute(self, query: str, filters: Optional[SearchFilters] = None) -> SearchResults:
        """
        Execute a search.

        Never raises for bad input or store failures: an invalid query or a
        failing store yields empty results carrying an error message.
        """
        filters = filters or SearchFilters()
        started = time.perf_counter()
        normalized = normalize_query(query)

        if query and query.strip():
            validation = self.parser.validate(query)
            if not validation.is_valid:
                logger.debug(f"Rejected query {query!r}: {validation.error_message}")
                return SearchResults(error=validation.error_message)

        if not normalized and not filters.has_active_filters:
            return SearchResults()

        if self.cache is not None:
            cached = self.cache.get(normalized, filters)
            if cached is not None:
                self.metrics.record_search(
                    normalized, cached.total_count, time.perf_counter() - started, cache_hit=True
                )
                return dataclasses.replace(cached, cache_hit=True)

        complexity = self.estimate_complexity(normalized, filters)
        path = SearchPath.FAST if self.should_use_fast_path(normalized, filters) else SearchPath.FULL
        logger.debug(f"Planning {query!r}: path={path.value} complexity={complexity.name}")

        try:
            if path is SearchPath.FAST:
                results = await self._fast_search(normalized, filters)
            else:
                results = await self._full_search(normalized, filters)
        except Exception as e:
            logger.error(f"Search failed for query {query!r}: {e}")
            self.error_tracker.record(
                "search", e, ErrorSeverity.HIGH, query=query, path=path.value
            )
            return SearchResults(
                path=path.value, complexity=complexity.name.lower(),
                error=f"Search failed: {e}"
            )

        results.path = path.value
        results.complexity = complexity.name.lower()

        if self.cache is not None:
            self.cache.put(normalized, filters, results)

        self.metrics.record_search(
            normalized, results.total_count, time.perf_counter() - started, cache_hit=False
        )
        return results

    async def _fast_search(self, query: str, filters: SearchFilters) -> SearchResults:
        now = self._clock()
        activity_ids = self.index.search_activity_ids(query)
        entry_ids = self.index.search_time_entry_ids(query)
        project_ids = self.index.search_project_ids(query)

        activities = await self.store.fetch_activities_by_ids(activity_ids) if activity_ids else []
        entries = await self.store.fetch_time_entries_by_ids(entry_ids) if entry_ids else []
        projects = await self.store.fetch_projects_by_ids(project_ids) if project_ids else []

        # Text matching already happened in the index; only the panel applies
        activity_filter = self._activity_predicate(ParsedQuery(), filters, now, with_text=False)
        entry_filter = self._time_entry_predicate(ParsedQuery(), filters, now, None, with_text=False)
        project_filter = self._project_predicate(ParsedQuery(), filters, with_text=False)

        activities = [a for a in activities if activity_filter.matches(a)]
        entries = [e for e in entries if entry_filter.matches(e)]
        projects = [p for p in projects if project_filter.matches(p)]

        return SearchResults.combine(
            rank_activities(activities, query, now),
            rank_time_entries(entries, query, now),
            rank_projects(projects, query),
        )

    async def _full_search(self, query: str, filters: SearchFilters) -> SearchResults:
        now = self._clock()
        parsed = self.parser.parse(query)
        ranking_query = " ".join(predicate_terms(parsed))

        # app: narrows to activities, project: to time entries and projects
        search_activities = not parsed.project_filters
        search_others = not parsed.app_filters

        activities = []
        entries = []
        projects = []

        if search_activities:
            predicate = self._activity_predicate(parsed, filters, now)
            activities = await self.store.query_activities(predicate)

        if search_others:
            query_project_ids = None
            if parsed.project_filters:
                query_project_ids = await self._resolve_project_ids(parsed.project_filters)

            predicate = self._time_entry_predicate(parsed, filters, now, query_project_ids)
            entries = await self.store.query_time_entries(predicate)
            projects = await self.store.query_projects(self._project_predicate(parsed, filters))

        return SearchResults.combine(
            rank_activities(activities, ranking_query, now),
            rank_time_entries(entries, ranking_query, now),
            rank_projects(projects, ranking_query),
        )

    async def _resolve_project_ids(self, names: List[str]) -> Set[str]:
        patterns = [name.lower() for name in names]
        projects = await self.store.fetch_all_projects()
        return {
            p.id for p in projects
            if any(pattern in p.name.lower() for pattern in patterns)
        }

    # Predicates

    def _activity_predicate(
        self,
        parsed: ParsedQuery,
        filters: SearchFilters,
        now: datetime,
        with_text: bool = True
    ) -> ActivityPredicate:
        return ActivityPredicate(
            text_terms=predicate_terms(parsed) if with_text else (),
            exclude_terms=exclusion_terms(parsed) if with_text else (),
            start_date=filters.start_date,
            end_date=filters.end_date,
            date_filters=tuple(parsed.date_filters),
            min_duration=filters.min_duration,
            max_duration=filters.max_duration,
            duration_filters=tuple(parsed.duration_filters),
            now=now,
            apps=filters.selected_apps,
            app_patterns=tuple(value.lower() for value in parsed.app_filters),
            exclude_idle=filters.exclude_idle_time,
        )

    def _time_entry_predicate(
        self,
        parsed: ParsedQuery,
        filters: SearchFilters,
        now: datetime,
        query_project_ids: Optional[Set[str]],
        with_text: bool = True
    ) -> TimeEntryPredicate:
        return TimeEntryPredicate(
            text_terms=predicate_terms(parsed) if with_text else (),
            exclude_terms=exclusion_terms(parsed) if with_text else (),
            start_date=filters.start_date,
            end_date=filters.end_date,
            date_filters=tuple(parsed.date_filters),
            min_duration=filters.min_duration,
            max_duration=filters.max_duration,
            duration_filters=tuple(parsed.duration_filters),
            now=now,
            project_ids=filters.selected_projects,
            query_project_ids=frozenset(query_project_ids) if query_project_ids is not None else None,
        )

    def _project_predicate(
        self,
        parsed: ParsedQuery,
        filters: SearchFilters,
        with_text: bool = True
    ) -> ProjectPredicate:
        return ProjectPredicate(
            text_terms=predicate_terms(parsed) if with_text else (),
            exclude_terms=exclusion_terms(parsed) if with_text else (),
            project_ids=filters.selected_projects,
            name_patterns=tuple(value.lower() for value in parsed.project_filters),
        )
