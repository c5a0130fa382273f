"""
In-memory inverted index over activities, time entries and projects.
Rebuilt from a record store snapshot at startup, then kept current from the
store's change feed. Never persisted.
"""

import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ..models import ActivityRecord, ProjectRecord, RecordKind, TimeEntryRecord
from ..tokenizer import tokenize


@dataclass
class IndexStatistics:
    """Statistics about the search index."""
    activities_count: int
    time_entries_count: int
    projects_count: int
    total_terms: int
    last_update: datetime

    @property
    def total_items(self) -> int:
        return self.activities_count + self.time_entries_count + self.projects_count

    def to_dict(self) -> Dict:
        return {
            "activities": self.activities_count,
            "time_entries": self.time_entries_count,
            "projects": self.projects_count,
            "total_terms": self.total_terms,
            "total_items": self.total_items,
            "last_update": self.last_update.isoformat(),
        }


def _bigrams(text: str) -> Set[str]:
    return {text[i:i + 2] for i in range(len(text) - 1)}


class FieldPostings:
    """
    Postings for one field: term -> record ids.

    A side table maps character bigrams to the terms containing them, so a
    substring lookup only verifies candidate terms instead of every key.
    """

    def __init__(self, name: str):
        self.name = name
        self.postings: Dict[str, Set[str]] = {}
        self._bigram_keys: Dict[str, Set[str]] = {}

    def __len__(self) -> int:
        return len(self.postings)

    def add(self, term: str, record_id: str) -> None:
        ids = self.postings.get(term)
        if ids is None:
            ids = self.postings[term] = set()
            for gram in _bigrams(term):
                self._bigram_keys.setdefault(gram, set()).add(term)
        ids.add(record_id)

    def discard(self, term: str, record_id: str) -> None:
        ids = self.postings.get(term)
        if ids is None:
            return
        ids.discard(record_id)
        if not ids:
            del self.postings[term]
            for gram in _bigrams(term):
                keys = self._bigram_keys.get(gram)
                if keys is not None:
                    keys.discard(term)
                    if not keys:
                        del self._bigram_keys[gram]

    def matching_terms(self, term: str) -> Iterable[str]:
        """Keys equal to, prefixed by, or containing ``term``."""
        if len(term) < 2:
            return [key for key in self.postings if term in key]

        candidates: Optional[Set[str]] = None
        for gram in sorted(_bigrams(term), key=lambda g: len(self._bigram_keys.get(g, ()))):
            keys = self._bigram_keys.get(gram)
            if not keys:
                return []
            candidates = set(keys) if candidates is None else candidates & keys
            if not candidates:
                return []
        return [key for key in candidates if term in key]

    def lookup(self, term: str) -> Set[str]:
        results: Set[str] = set()
        for key in self.matching_terms(term):
            results |= self.postings[key]
        return results

    def clear(self) -> None:
        self.postings.clear()
        self._bigram_keys.clear()


class InvertedIndex:
    """
    Field-scoped inverted index with autocomplete metadata.

    An activity's app name only lands in the app-name postings, its window
    title only in the window-title postings and so on; a free-text search
    unions over all fields of a record kind and intersects across terms.
    """

    ACTIVITY_FIELDS = ("app_name", "window_title", "url", "document_path")
    TIME_ENTRY_FIELDS = ("title", "notes")
    PROJECT_FIELDS = ("name",)

    def __init__(self, window_title_sample: int = 1000):
        self.window_title_sample = window_title_sample

        self._fields: Dict[RecordKind, Dict[str, FieldPostings]] = {
            RecordKind.ACTIVITY: {f: FieldPostings(f) for f in self.ACTIVITY_FIELDS},
            RecordKind.TIME_ENTRY: {f: FieldPostings(f) for f in self.TIME_ENTRY_FIELDS},
            RecordKind.PROJECT: {f: FieldPostings(f) for f in self.PROJECT_FIELDS},
        }

        # record id -> (field, term) pairs it was indexed under, per kind
        self._forward: Dict[RecordKind, Dict[str, List[Tuple[str, str]]]] = {
            kind: {} for kind in RecordKind
        }
        # record id -> suggestion values it contributed
        self._suggestion_refs: Dict[RecordKind, Dict[str, Dict[str, str]]] = {
            kind: {} for kind in RecordKind
        }

        self._app_names: Counter = Counter()
        self._project_names: Counter = Counter()
        self._window_title_refs: Counter = Counter()
        # Bounded sample of titles for suggestions, oldest first
        self._window_titles: "OrderedDict[str, None]" = OrderedDict()
        self._term_frequency: Counter = Counter()

        self.last_update = datetime.now()

    # Bulk

    def build_index(
        self,
        activities: Iterable[ActivityRecord],
        time_entries: Iterable[TimeEntryRecord],
        projects: Iterable[ProjectRecord]
    ) -> None:
        """Clear all postings and rebuild them from a full snapshot."""
        start = time.perf_counter()
        self.clear()

        for activity in activities:
            self._index_activity(activity)
        for entry in time_entries:
            self._index_time_entry(entry)
        for project in projects:
            self._index_project(project)

        self.last_update = datetime.now()
        stats = self.statistics()
        logger.info(
            f"Search index built in {time.perf_counter() - start:.3f}s: "
            f"{stats.activities_count} activities, {stats.time_entries_count} time entries, "
            f"{stats.projects_count} projects, {stats.total_terms} terms"
        )

    def clear(self) -> None:
        for fields in self._fields.values():
            for postings in fields.values():
                postings.clear()
        for kind in RecordKind:
            self._forward[kind].clear()
            self._suggestion_refs[kind].clear()
        self._app_names.clear()
        self._project_names.clear()
        self._window_title_refs.clear()
        self._window_titles.clear()
        self._term_frequency.clear()

    # Incremental updates

    def add_activity(self, activity: ActivityRecord) -> None:
        self._index_activity(activity)
        self.last_update = datetime.now()

    def add_time_entry(self, entry: TimeEntryRecord) -> None:
        self._index_time_entry(entry)
        self.last_update = datetime.now()

    def add_project(self, project: ProjectRecord) -> None:
        self._index_project(project)
        self.last_update = datetime.now()

    def remove_activity(self, activity_id: str) -> None:
        self._remove(RecordKind.ACTIVITY, activity_id)

    def remove_time_entry(self, entry_id: str) -> None:
        self._remove(RecordKind.TIME_ENTRY, entry_id)

    def remove_project(self, project_id: str) -> None:
        self._remove(RecordKind.PROJECT, project_id)

    def contains(self, kind: RecordKind, record_id: str) -> bool:
        return record_id in self._forward[kind]

    # Queries

    def search_activity_ids(self, query: str) -> Set[str]:
        return self._search(RecordKind.ACTIVITY, query)

    def search_time_entry_ids(self, query: str) -> Set[str]:
        return self._search(RecordKind.TIME_ENTRY, query)

    def search_project_ids(self, query: str) -> Set[str]:
        return self._search(RecordKind.PROJECT, query)

    def app_name_suggestions(self, query: str) -> List[str]:
        needle = query.lower()
        return sorted(name for name in self._app_names if needle in name.lower())

    def project_suggestions(self, query: str) -> List[str]:
        needle = query.lower()
        return sorted(name for name in self._project_names if needle in name.lower())

    def window_title_suggestions(self, query: str, limit: int = 10) -> List[str]:
        needle = query.lower()
        return sorted(t for t in self._window_titles if needle in t.lower())[:limit]

    def common_terms(self, limit: int = 20) -> List[str]:
        return [term for term, _ in self._term_frequency.most_common(limit)]

    def statistics(self) -> IndexStatistics:
        return IndexStatistics(
            activities_count=len(self._forward[RecordKind.ACTIVITY]),
            time_entries_count=len(self._forward[RecordKind.TIME_ENTRY]),
            projects_count=len(self._forward[RecordKind.PROJECT]),
            total_terms=len(self._term_frequency),
            last_update=self.last_update,
        )

    # Internals

    def _search(self, kind: RecordKind, query: str) -> Set[str]:
        terms = tokenize(query)
        if not terms:
            return set()

        fields = self._fields[kind].values()
        results: Optional[Set[str]] = None
        for term in dict.fromkeys(terms):
            term_results: Set[str] = set()
            for postings in fields:
                term_results |= postings.lookup(term)
            results = term_results if results is None else results & term_results
            if not results:
                return set()
        return results or set()

    def _index_activity(self, activity: ActivityRecord) -> None:
        kind = RecordKind.ACTIVITY
        if activity.id in self._forward[kind]:
            self._remove(kind, activity.id)
        self._forward[kind][activity.id] = []

        self._index_text(kind, activity.id, "app_name", activity.app_name)
        refs = {"app_name": activity.app_name}
        self._app_names[activity.app_name] += 1

        if activity.window_title:
            self._index_text(kind, activity.id, "window_title", activity.window_title)
            refs["window_title"] = activity.window_title
            self._add_window_title(activity.window_title)
        if activity.url:
            self._index_text(kind, activity.id, "url", activity.url)
        if activity.document_path:
            self._index_text(kind, activity.id, "document_path", activity.document_path)

        self._suggestion_refs[kind][activity.id] = refs

    def _index_time_entry(self, entry: TimeEntryRecord) -> None:
        kind = RecordKind.TIME_ENTRY
        if entry.id in self._forward[kind]:
            self._remove(kind, entry.id)
        self._forward[kind][entry.id] = []

        self._index_text(kind, entry.id, "title", entry.title)
        if entry.notes:
            self._index_text(kind, entry.id, "notes", entry.notes)

    def _index_project(self, project: ProjectRecord) -> None:
        kind = RecordKind.PROJECT
        if project.id in self._forward[kind]:
            self._remove(kind, project.id)
        self._forward[kind][project.id] = []

        self._index_text(kind, project.id, "name", project.name)
        self._project_names[project.name] += 1
        self._suggestion_refs[kind][project.id] = {"name": project.name}

    def _index_text(self, kind: RecordKind, record_id: str, field_name: str, text: str) -> None:
        postings = self._fields[kind][field_name]
        forward = self._forward[kind].setdefault(record_id, [])
        for term in tokenize(text):
            postings.add(term, record_id)
            forward.append((field_name, term))
            self._term_frequency[term] += 1

    def _add_window_title(self, title: str) -> None:
        self._window_title_refs[title] += 1
        if title in self._window_titles or self.window_title_sample <= 0:
            return
        while len(self._window_titles) >= self.window_title_sample:
            self._window_titles.popitem(last=False)
        self._window_titles[title] = None

    def _remove(self, kind: RecordKind, record_id: str) -> None:
        entries = self._forward[kind].pop(record_id, None)
        if entries is None:
            return

        fields = self._fields[kind]
        for field_name, term in entries:
            fields[field_name].discard(term, record_id)
            self._term_frequency[term] -= 1
            if self._term_frequency[term] <= 0:
                del self._term_frequency[term]

        refs = self._suggestion_refs[kind].pop(record_id, {})
        if "app_name" in refs:
            self._decrement(self._app_names, refs["app_name"])
        if "name" in refs:
            self._decrement(self._project_names, refs["name"])
        title = refs.get("window_title")
        if title is not None:
            self._decrement(self._window_title_refs, title)
            if title not in self._window_title_refs:
                self._window_titles.pop(title, None)

        self.last_update = datetime.now()
        logger.debug(f"Removed {kind.value} {record_id} from search index")

    @staticmethod
    def _decrement(counter: Counter, key: str) -> None:
        counter[key] -= 1
        if counter[key] <= 0:
            del counter[key]
