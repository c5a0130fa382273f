"""
Record store collaborator.

The search engine never owns records. It reads them through the RecordStore
protocol: bulk fetches to build the index, fetch-by-ids for the index-driven
path, predicate queries for the full path, and a change feed published on
the event bus as ``record.<kind>.<operation>`` events.

InMemoryRecordStore is a complete implementation backed by dicts, used by
the CLI (loaded from a JSON snapshot) and by the tests.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Tuple, Union

from loguru import logger

from .bus import Event, EventBus
from .error_handling import StoreAccessError
from .models import (
    ActivityRecord, ChangeOperation, ProjectRecord, RecordChange, RecordKind,
    TimeEntryRecord
)
from .query_parser import DateFilter, DurationFilter

Record = Union[ActivityRecord, TimeEntryRecord, ProjectRecord]


def _contains_all(fields: List[str], terms: Iterable[str]) -> bool:
    return all(any(term in value for value in fields) for term in terms)


def _contains_any(fields: List[str], terms: Iterable[str]) -> bool:
    return any(term in value for term in terms for value in fields)


@dataclass(frozen=True)
class RecordPredicate:
    """
    Conditions shared by every record kind.

    Text terms are lower-case; each must be a substring of at least one text
    field. A record with any field containing an exclusion term is rejected.
    """
    text_terms: Tuple[str, ...] = ()
    exclude_terms: Tuple[str, ...] = ()

    def _text_matches(self, fields: List[str]) -> bool:
        if not _contains_all(fields, self.text_terms):
            return False
        return not _contains_any(fields, self.exclude_terms)


@dataclass(frozen=True)
class TimedPredicate(RecordPredicate):
    """Date and duration conditions on records with a start time."""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    date_filters: Tuple[DateFilter, ...] = ()
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    duration_filters: Tuple[DurationFilter, ...] = ()
    now: Optional[datetime] = None

    def _time_matches(self, start_time: datetime, duration: float) -> bool:
        if self.start_date is not None and start_time < self.start_date:
            return False
        if self.end_date is not None and start_time > self.end_date:
            return False
        if not all(f.matches(start_time) for f in self.date_filters):
            return False
        if self.min_duration is not None and duration < self.min_duration:
            return False
        if self.max_duration is not None and duration > self.max_duration:
            return False
        return all(f.matches(duration) for f in self.duration_filters)


@dataclass(frozen=True)
class ActivityPredicate(TimedPredicate):
    """
    ``apps`` is exact app-name membership; ``app_patterns`` matches when any
    pattern is contained in the lower-cased app name.
    """
    apps: FrozenSet[str] = frozenset()
    app_patterns: Tuple[str, ...] = ()
    exclude_idle: bool = False

    def matches(self, activity: ActivityRecord) -> bool:
        if self.exclude_idle and activity.is_idle_time:
            return False
        if self.apps and activity.app_name not in self.apps:
            return False
        app_name = activity.app_name.lower()
        if self.app_patterns and not any(p in app_name for p in self.app_patterns):
            return False
        if not self._time_matches(activity.start_time, activity.duration(self.now)):
            return False
        fields = [
            value.lower() for value in (
                activity.app_name, activity.window_title,
                activity.url, activity.document_path
            ) if value
        ]
        return self._text_matches(fields)


@dataclass(frozen=True)
class TimeEntryPredicate(TimedPredicate):
    """Project id sets are AND-ed; an entry without a project never matches one."""
    project_ids: FrozenSet[str] = frozenset()
    query_project_ids: Optional[FrozenSet[str]] = None

    def matches(self, entry: TimeEntryRecord) -> bool:
        if self.project_ids and entry.project_id not in self.project_ids:
            return False
        if self.query_project_ids is not None and entry.project_id not in self.query_project_ids:
            return False
        if not self._time_matches(entry.start_time, entry.duration(self.now)):
            return False
        fields = [value.lower() for value in (entry.title, entry.notes) if value]
        return self._text_matches(fields)


@dataclass(frozen=True)
class ProjectPredicate(RecordPredicate):
    project_ids: FrozenSet[str] = frozenset()
    name_patterns: Tuple[str, ...] = ()

    def matches(self, project: ProjectRecord) -> bool:
        if self.project_ids and project.id not in self.project_ids:
            return False
        name = project.name.lower()
        if self.name_patterns and not any(p in name for p in self.name_patterns):
            return False
        return self._text_matches([name])


class RecordStore(Protocol):
    """What the search engine needs from the durable record store."""

    async def fetch_all_activities(self) -> List[ActivityRecord]: ...

    async def fetch_all_time_entries(self) -> List[TimeEntryRecord]: ...

    async def fetch_all_projects(self) -> List[ProjectRecord]: ...

    async def fetch_activities_by_ids(self, ids: Iterable[str]) -> List[ActivityRecord]: ...

    async def fetch_time_entries_by_ids(self, ids: Iterable[str]) -> List[TimeEntryRecord]: ...

    async def fetch_projects_by_ids(self, ids: Iterable[str]) -> List[ProjectRecord]: ...

    async def query_activities(self, predicate: ActivityPredicate) -> List[ActivityRecord]: ...

    async def query_time_entries(self, predicate: TimeEntryPredicate) -> List[TimeEntryRecord]: ...

    async def query_projects(self, predicate: ProjectPredicate) -> List[ProjectRecord]: ...

    async def fetch_record(self, kind: RecordKind, record_id: str) -> Optional[Record]: ...


class InMemoryRecordStore:
    """
    Dict-backed record store.

    Fetches return activities and time entries newest first and projects by
    name, which is the natural order used to break ranking ties. Mutations
    publish change events when an event bus is attached.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus
        self.activities: Dict[str, ActivityRecord] = {}
        self.time_entries: Dict[str, TimeEntryRecord] = {}
        self.projects: Dict[str, ProjectRecord] = {}
        self.available = True

    # Loading

    @classmethod
    def from_dict(cls, data: Dict[str, Any], event_bus: Optional[EventBus] = None) -> "InMemoryRecordStore":
        store = cls(event_bus=event_bus)
        for item in data.get("activities", []):
            record = ActivityRecord.from_dict(item)
            store.activities[record.id] = record
        for item in data.get("time_entries", []):
            record = TimeEntryRecord.from_dict(item)
            store.time_entries[record.id] = record
        for item in data.get("projects", []):
            record = ProjectRecord.from_dict(item)
            store.projects[record.id] = record
        return store

    @classmethod
    def from_json(cls, path: Path, event_bus: Optional[EventBus] = None) -> "InMemoryRecordStore":
        """Load a snapshot of ``{"activities": [...], "time_entries": [...], "projects": [...]}``."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        store = cls.from_dict(data, event_bus=event_bus)
        logger.info(
            f"Loaded {len(store.activities)} activities, {len(store.time_entries)} time entries, "
            f"{len(store.projects)} projects from {path}"
        )
        return store

    # Reads

    async def fetch_all_activities(self) -> List[ActivityRecord]:
        self._check_available()
        return self._ordered_activities(self.activities.values())

    async def fetch_all_time_entries(self) -> List[TimeEntryRecord]:
        self._check_available()
        return self._ordered_time_entries(self.time_entries.values())

    async def fetch_all_projects(self) -> List[ProjectRecord]:
        self._check_available()
        return self._ordered_projects(self.projects.values())

    async def fetch_activities_by_ids(self, ids: Iterable[str]) -> List[ActivityRecord]:
        self._check_available()
        return self._ordered_activities(self._pick(self.activities, ids))

    async def fetch_time_entries_by_ids(self, ids: Iterable[str]) -> List[TimeEntryRecord]:
        self._check_available()
        return self._ordered_time_entries(self._pick(self.time_entries, ids))

    async def fetch_projects_by_ids(self, ids: Iterable[str]) -> List[ProjectRecord]:
        self._check_available()
        return self._ordered_projects(self._pick(self.projects, ids))

    async def query_activities(self, predicate: ActivityPredicate) -> List[ActivityRecord]:
        self._check_available()
        return self._ordered_activities(a for a in self.activities.values() if predicate.matches(a))

    async def query_time_entries(self, predicate: TimeEntryPredicate) -> List[TimeEntryRecord]:
        self._check_available()
        return self._ordered_time_entries(e for e in self.time_entries.values() if predicate.matches(e))

    async def query_projects(self, predicate: ProjectPredicate) -> List[ProjectRecord]:
        self._check_available()
        return self._ordered_projects(p for p in self.projects.values() if predicate.matches(p))

    async def fetch_record(self, kind: RecordKind, record_id: str) -> Optional[Record]:
        self._check_available()
        return self._table(kind).get(record_id)

    # Writes

    async def upsert(self, record: Record) -> RecordChange:
        """Insert or replace a record and publish the change."""
        kind = self._kind_of(record)
        table = self._table(kind)
        operation = ChangeOperation.UPDATE if record.id in table else ChangeOperation.INSERT
        table[record.id] = record
        return await self._publish(RecordChange(kind, record.id, operation))

    async def delete(self, kind: RecordKind, record_id: str) -> Optional[RecordChange]:
        if self._table(kind).pop(record_id, None) is None:
            return None
        return await self._publish(RecordChange(kind, record_id, ChangeOperation.DELETE))

    # Helpers

    def _check_available(self) -> None:
        if not self.available:
            raise StoreAccessError("Record store is unavailable")

    async def _publish(self, change: RecordChange) -> RecordChange:
        if self.event_bus is not None:
            await self.event_bus.emit(Event(
                type=f"record.{change.kind.value}.{change.operation.value}",
                data={"change": change},
                source="record_store"
            ))
        return change

    def _table(self, kind: RecordKind) -> Dict[str, Any]:
        if kind is RecordKind.ACTIVITY:
            return self.activities
        if kind is RecordKind.TIME_ENTRY:
            return self.time_entries
        return self.projects

    @staticmethod
    def _kind_of(record: Record) -> RecordKind:
        if isinstance(record, ActivityRecord):
            return RecordKind.ACTIVITY
        if isinstance(record, TimeEntryRecord):
            return RecordKind.TIME_ENTRY
        if isinstance(record, ProjectRecord):
            return RecordKind.PROJECT
        raise TypeError(f"Unsupported record type: {type(record).__name__}")

    @staticmethod
    def _pick(table: Dict[str, Any], ids: Iterable[str]) -> List[Any]:
        return [table[i] for i in set(ids) if i in table]

    @staticmethod
    def _ordered_activities(records: Iterable[ActivityRecord]) -> List[ActivityRecord]:
        return sorted(records, key=lambda r: (r.start_time, r.id), reverse=True)

    @staticmethod
    def _ordered_time_entries(records: Iterable[TimeEntryRecord]) -> List[TimeEntryRecord]:
        return sorted(records, key=lambda r: (r.start_time, r.id), reverse=True)

    @staticmethod
    def _ordered_projects(records: Iterable[ProjectRecord]) -> List[ProjectRecord]:
        return sorted(records, key=lambda r: (r.name.lower(), r.id))
