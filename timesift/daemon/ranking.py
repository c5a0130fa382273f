"""
Relevance ranking per record kind.

Scores are a pure function of the record, the query text and a reference
time: weighted field matches (exact beats containment), a recency bonus of
up to 10 points decaying over 10 days, and a duration bonus of up to 5
points. Root projects get a small bonus.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from .models import (
    ActivityRecord, ProjectRecord, RankedActivity, RankedProject,
    RankedTimeEntry, TimeEntryRecord
)

# Field weights: (exact, contains)
APP_NAME_WEIGHTS = (100.0, 50.0)
WINDOW_TITLE_WEIGHTS = (80.0, 30.0)
URL_CONTAINS_WEIGHT = 20.0
DOCUMENT_PATH_CONTAINS_WEIGHT = 25.0
TIME_ENTRY_TITLE_WEIGHTS = (100.0, 60.0)
NOTES_CONTAINS_WEIGHT = 30.0
PROJECT_NAME_WEIGHTS = (100.0, 70.0)

MAX_RECENCY_BONUS = 10.0
MAX_DURATION_BONUS = 5.0
ROOT_PROJECT_BONUS = 5.0


def _field_score(value: Optional[str], query: str, exact: float, contains: float) -> float:
    if not value or not query:
        return 0.0
    lowered = value.lower()
    if query not in lowered:
        return 0.0
    return exact if lowered == query else contains


def recency_bonus(start_time: datetime, now: datetime) -> float:
    days = (now - start_time).total_seconds() / 86400
    return min(MAX_RECENCY_BONUS, max(0.0, MAX_RECENCY_BONUS - days))


def duration_bonus(duration_seconds: float) -> float:
    return min(MAX_DURATION_BONUS, duration_seconds / 3600)


def score_activity(activity: ActivityRecord, query: str, now: datetime) -> float:
    query = query.lower()
    score = _field_score(activity.app_name, query, *APP_NAME_WEIGHTS)
    score += _field_score(activity.window_title, query, *WINDOW_TITLE_WEIGHTS)
    score += _field_score(activity.url, query, URL_CONTAINS_WEIGHT, URL_CONTAINS_WEIGHT)
    score += _field_score(
        activity.document_path, query,
        DOCUMENT_PATH_CONTAINS_WEIGHT, DOCUMENT_PATH_CONTAINS_WEIGHT
    )
    score += recency_bonus(activity.start_time, now)
    score += duration_bonus(activity.duration(now))
    return score


def score_time_entry(entry: TimeEntryRecord, query: str, now: datetime) -> float:
    query = query.lower()
    score = _field_score(entry.title, query, *TIME_ENTRY_TITLE_WEIGHTS)
    score += _field_score(entry.notes, query, NOTES_CONTAINS_WEIGHT, NOTES_CONTAINS_WEIGHT)
    score += recency_bonus(entry.start_time, now)
    score += duration_bonus(entry.duration(now))
    return score


def score_project(project: ProjectRecord, query: str) -> float:
    score = _field_score(project.name, query.lower(), *PROJECT_NAME_WEIGHTS)
    if project.is_root:
        score += ROOT_PROJECT_BONUS
    return score


# sorted() is stable, so equal scores keep the store's fetch order

def rank_activities(
    activities: Iterable[ActivityRecord], query: str, now: datetime
) -> List[RankedActivity]:
    ranked = [RankedActivity(a, score_activity(a, query, now)) for a in activities]
    return sorted(ranked, key=lambda r: r.relevance_score, reverse=True)


def rank_time_entries(
    entries: Iterable[TimeEntryRecord], query: str, now: datetime
) -> List[RankedTimeEntry]:
    ranked = [RankedTimeEntry(e, score_time_entry(e, query, now)) for e in entries]
    return sorted(ranked, key=lambda r: r.relevance_score, reverse=True)


def rank_projects(projects: Iterable[ProjectRecord], query: str) -> List[RankedProject]:
    ranked = [RankedProject(p, score_project(p, query)) for p in projects]
    return sorted(ranked, key=lambda r: r.relevance_score, reverse=True)
