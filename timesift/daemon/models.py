"""Data models for the timesift search engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional


class RecordKind(Enum):
    """Record kinds owned by the record store."""
    ACTIVITY = "activity"
    TIME_ENTRY = "time_entry"
    PROJECT = "project"


class ChangeOperation(Enum):
    """Operations reported by the record store change feed."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 value into a naive local datetime."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        text = str(value)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is not None:
        # The engine compares against a naive local clock
        value = value.astimezone().replace(tzinfo=None)
    return value


@dataclass
class ActivityRecord:
    """Automatically captured app usage."""
    id: str
    app_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    window_title: Optional[str] = None
    url: Optional[str] = None
    document_path: Optional[str] = None
    is_idle_time: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def duration(self, now: Optional[datetime] = None) -> float:
        """Duration in seconds; an open activity runs until ``now``."""
        end = self.end_time or now or datetime.now()
        return max(0.0, (end - self.start_time).total_seconds())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityRecord":
        return cls(
            id=str(data["id"]),
            app_name=data["app_name"],
            start_time=_parse_datetime(data["start_time"]),
            end_time=_parse_datetime(data.get("end_time")),
            window_title=data.get("window_title"),
            url=data.get("url"),
            document_path=data.get("document_path"),
            is_idle_time=bool(data.get("is_idle_time", False)),
        )


@dataclass
class TimeEntryRecord:
    """Manually recorded work session."""
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
    project_id: Optional[str] = None

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Time entry {self.id}: end_time must be after start_time"
            )

    def duration(self, now: Optional[datetime] = None) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeEntryRecord":
        return cls(
            id=str(data["id"]),
            title=data["title"],
            start_time=_parse_datetime(data["start_time"]),
            end_time=_parse_datetime(data["end_time"]),
            notes=data.get("notes"),
            project_id=data.get("project_id"),
        )


@dataclass
class ProjectRecord:
    """Hierarchical categorization label."""
    id: str
    name: str
    parent_id: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectRecord":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            parent_id=data.get("parent_id"),
        )


@dataclass(frozen=True)
class RecordChange:
    """A single notification from the record store change feed."""
    kind: RecordKind
    record_id: str
    operation: ChangeOperation


@dataclass(frozen=True)
class SearchFilters:
    """
    Filter panel state.

    Frozen so that it can be part of a cache key. Durations are seconds.
    """
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    selected_projects: FrozenSet[str] = frozenset()
    selected_apps: FrozenSet[str] = frozenset()
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    exclude_idle_time: bool = False

    def __post_init__(self):
        # Accept any iterable for the selection sets
        object.__setattr__(self, "selected_projects", frozenset(self.selected_projects))
        object.__setattr__(self, "selected_apps", frozenset(self.selected_apps))

    @property
    def has_active_filters(self) -> bool:
        return (
            self.start_date is not None
            or self.end_date is not None
            or bool(self.selected_projects)
            or bool(self.selected_apps)
            or self.min_duration is not None
            or self.max_duration is not None
            or self.exclude_idle_time
        )

    def summary(self) -> str:
        """Short human readable description of the active filters."""
        parts = []
        if self.start_date and self.end_date:
            parts.append(
                f"Date: {self.start_date:%Y-%m-%d} - {self.end_date:%Y-%m-%d}"
            )
        elif self.start_date:
            parts.append(f"After: {self.start_date:%Y-%m-%d}")
        elif self.end_date:
            parts.append(f"Before: {self.end_date:%Y-%m-%d}")
        if self.selected_projects:
            parts.append(f"Projects: {len(self.selected_projects)}")
        if self.selected_apps:
            parts.append(f"Apps: {len(self.selected_apps)}")
        if self.min_duration is not None:
            parts.append(f"Min duration: {int(self.min_duration // 60)}m")
        if self.max_duration is not None:
            parts.append(f"Max duration: {int(self.max_duration // 60)}m")
        if self.exclude_idle_time:
            parts.append("Exclude idle")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "selected_projects": sorted(self.selected_projects),
            "selected_apps": sorted(self.selected_apps),
            "min_duration": self.min_duration,
            "max_duration": self.max_duration,
            "exclude_idle_time": self.exclude_idle_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchFilters":
        return cls(
            start_date=_parse_datetime(data.get("start_date")),
            end_date=_parse_datetime(data.get("end_date")),
            selected_projects=frozenset(data.get("selected_projects") or ()),
            selected_apps=frozenset(data.get("selected_apps") or ()),
            min_duration=data.get("min_duration"),
            max_duration=data.get("max_duration"),
            exclude_idle_time=bool(data.get("exclude_idle_time", False)),
        )


@dataclass
class RankedActivity:
    activity: ActivityRecord
    relevance_score: float


@dataclass
class RankedTimeEntry:
    time_entry: TimeEntryRecord
    relevance_score: float


@dataclass
class RankedProject:
    project: ProjectRecord
    relevance_score: float


@dataclass
class SearchResults:
    """Ranked results for one query, grouped per record kind."""
    activities: List[RankedActivity] = field(default_factory=list)
    time_entries: List[RankedTimeEntry] = field(default_factory=list)
    projects: List[RankedProject] = field(default_factory=list)
    total_count: int = 0
    cache_hit: bool = False
    path: Optional[str] = None
    complexity: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0

    @classmethod
    def combine(
        cls,
        activities: Iterable[RankedActivity],
        time_entries: Iterable[RankedTimeEntry],
        projects: Iterable[RankedProject],
        **extra: Any
    ) -> "SearchResults":
        activities = list(activities)
        time_entries = list(time_entries)
        projects = list(projects)
        return cls(
            activities=activities,
            time_entries=time_entries,
            projects=projects,
            total_count=len(activities) + len(time_entries) + len(projects),
            **extra
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activities": [
                {"id": r.activity.id, "app_name": r.activity.app_name,
                 "window_title": r.activity.window_title,
                 "score": round(r.relevance_score, 2)}
                for r in self.activities
            ],
            "time_entries": [
                {"id": r.time_entry.id, "title": r.time_entry.title,
                 "score": round(r.relevance_score, 2)}
                for r in self.time_entries
            ],
            "projects": [
                {"id": r.project.id, "name": r.project.name,
                 "score": round(r.relevance_score, 2)}
                for r in self.projects
            ],
            "total": self.total_count,
            "cache_hit": self.cache_hit,
            "path": self.path,
            "complexity": self.complexity,
            "error": self.error,
        }
