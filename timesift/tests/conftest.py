"""Shared fixtures: a small, fixed dataset and a frozen clock."""

import json
from datetime import datetime, timedelta

import pytest

from timesift.daemon.indexers.inverted import InvertedIndex
from timesift.daemon.models import ActivityRecord, ProjectRecord, TimeEntryRecord
from timesift.daemon.store import InMemoryRecordStore

# A Wednesday
NOW = datetime(2024, 6, 12, 12, 0)


def make_records():
    projects = [
        ProjectRecord(id="p1", name="Client Work"),
        ProjectRecord(id="p2", name="Website Redesign", parent_id="p1"),
        ProjectRecord(id="p3", name="Internal"),
    ]
    activities = [
        ActivityRecord(
            id="a1", app_name="Xcode", window_title="SearchIndex swift",
            start_time=NOW - timedelta(hours=1), end_time=NOW - timedelta(minutes=30)
        ),
        ActivityRecord(
            id="a2", app_name="Safari", window_title="Pull request review",
            url="https://github.com/acme/pulls",
            start_time=NOW - timedelta(days=1), end_time=NOW - timedelta(days=1) + timedelta(hours=2)
        ),
        ActivityRecord(
            id="a3", app_name="Slack", window_title="general channel",
            start_time=NOW - timedelta(hours=2), end_time=NOW - timedelta(hours=2) + timedelta(minutes=15)
        ),
        ActivityRecord(
            id="a4", app_name="Xcode", window_title="Release build",
            start_time=datetime(2024, 1, 5, 10, 0), end_time=datetime(2024, 1, 5, 13, 0)
        ),
        ActivityRecord(
            id="a5", app_name="Finder", is_idle_time=True,
            start_time=NOW - timedelta(hours=3), end_time=NOW - timedelta(hours=3) + timedelta(minutes=45)
        ),
    ]
    time_entries = [
        TimeEntryRecord(
            id="t1", title="Review pull request", notes="acme website", project_id="p2",
            start_time=NOW - timedelta(days=1, hours=3),
            end_time=NOW - timedelta(days=1, hours=3) + timedelta(minutes=90)
        ),
        TimeEntryRecord(
            id="t2", title="Planning meeting", notes="roadmap", project_id="p3",
            start_time=datetime(2024, 6, 10, 9, 0), end_time=datetime(2024, 6, 10, 10, 0)
        ),
        TimeEntryRecord(
            id="t3", title="Xcode release prep", project_id="p1",
            start_time=datetime(2024, 5, 1, 10, 0), end_time=datetime(2024, 5, 1, 12, 0)
        ),
    ]
    return activities, time_entries, projects


def records_to_json(activities, time_entries, projects) -> str:
    def iso(value):
        return value.isoformat() if value else None

    return json.dumps({
        "activities": [
            {"id": a.id, "app_name": a.app_name, "window_title": a.window_title,
             "url": a.url, "document_path": a.document_path,
             "start_time": iso(a.start_time), "end_time": iso(a.end_time),
             "is_idle_time": a.is_idle_time}
            for a in activities
        ],
        "time_entries": [
            {"id": e.id, "title": e.title, "notes": e.notes, "project_id": e.project_id,
             "start_time": iso(e.start_time), "end_time": iso(e.end_time)}
            for e in time_entries
        ],
        "projects": [
            {"id": p.id, "name": p.name, "parent_id": p.parent_id}
            for p in projects
        ],
    })


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def records():
    return make_records()


@pytest.fixture
def store(records):
    activities, time_entries, projects = records
    store = InMemoryRecordStore()
    for record in activities:
        store.activities[record.id] = record
    for record in time_entries:
        store.time_entries[record.id] = record
    for record in projects:
        store.projects[record.id] = record
    return store


@pytest.fixture
def index(records):
    index = InvertedIndex()
    index.build_index(*records)
    return index


@pytest.fixture
def snapshot_file(tmp_path, records):
    path = tmp_path / "records.json"
    path.write_text(records_to_json(*records))
    return path
