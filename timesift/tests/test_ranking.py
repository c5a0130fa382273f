"""Tests for relevance scoring."""

from datetime import datetime, timedelta

import pytest

from timesift.daemon.models import ActivityRecord, ProjectRecord, TimeEntryRecord
from timesift.daemon.ranking import (
    duration_bonus, rank_activities, rank_projects, rank_time_entries,
    recency_bonus, score_activity, score_project, score_time_entry
)

NOW = datetime(2024, 6, 12, 12, 0)


def activity(app="Xcode", title=None, url=None, path=None, start=NOW, minutes=0, id="a"):
    return ActivityRecord(
        id=id, app_name=app, window_title=title, url=url, document_path=path,
        start_time=start, end_time=start + timedelta(minutes=minutes)
    )


def entry(title="Review", notes=None, start=NOW - timedelta(days=30), minutes=1, id="t"):
    return TimeEntryRecord(
        id=id, title=title, notes=notes,
        start_time=start, end_time=start + timedelta(minutes=minutes)
    )


class TestActivityScore:
    def test_exact_app_name(self):
        assert score_activity(activity(), "xcode", NOW) == pytest.approx(110)

    def test_app_name_contains(self):
        assert score_activity(activity(), "xco", NOW) == pytest.approx(60)

    def test_fields_add_up(self):
        record = activity(title="Xcode project", url="xcode.dev", path="/tmp/xcode")
        # app exact + title contains + url + path + recency
        assert score_activity(record, "xcode", NOW) == pytest.approx(100 + 30 + 20 + 25 + 10)

    def test_exact_window_title(self):
        assert score_activity(activity(app="Safari", title="Inbox"), "INBOX", NOW) == pytest.approx(90)

    def test_no_match_still_gets_bonuses(self):
        assert score_activity(activity(minutes=120), "slack", NOW) == pytest.approx(12)


class TestBonuses:
    def test_recency_decays_over_ten_days(self):
        assert recency_bonus(NOW, NOW) == 10
        assert recency_bonus(NOW - timedelta(days=4), NOW) == pytest.approx(6)
        assert recency_bonus(NOW - timedelta(days=20), NOW) == 0

    def test_recency_clamped_for_future_starts(self):
        assert recency_bonus(NOW + timedelta(days=2), NOW) == 10

    def test_duration_bonus_capped(self):
        assert duration_bonus(1800) == pytest.approx(0.5)
        assert duration_bonus(10 * 3600) == 5

    def test_open_activity_runs_until_now(self):
        record = ActivityRecord(id="a", app_name="Xcode", start_time=NOW - timedelta(hours=2))
        assert score_activity(record, "zzz", NOW) == pytest.approx(10 - 2 / 24 + 2)


class TestTimeEntryScore:
    def test_title_exact_and_contains(self):
        assert score_time_entry(entry(title="Review"), "review", NOW) == pytest.approx(100, abs=0.1)
        assert score_time_entry(entry(title="Code review"), "review", NOW) == pytest.approx(60, abs=0.1)

    def test_notes(self):
        assert score_time_entry(entry(title="Call", notes="review notes"), "review", NOW) == pytest.approx(30, abs=0.1)


class TestProjectScore:
    def test_root_bonus(self):
        assert score_project(ProjectRecord(id="p", name="Internal"), "internal") == 105
        assert score_project(ProjectRecord(id="p", name="Internal", parent_id="x"), "internal") == 100

    def test_contains(self):
        assert score_project(ProjectRecord(id="p", name="Website", parent_id="x"), "web") == 70

    def test_empty_query(self):
        assert score_project(ProjectRecord(id="p", name="Website"), "") == 5


class TestRanking:
    def test_sorted_descending(self):
        records = [
            activity(app="Safari", id="low"),
            activity(app="Xcode", id="high"),
            activity(app="Xcode IDE", id="mid"),
        ]
        ranked = rank_activities(records, "xcode", NOW)
        assert [r.activity.id for r in ranked] == ["high", "mid", "low"]
        assert ranked[0].relevance_score >= ranked[1].relevance_score >= ranked[2].relevance_score

    def test_ties_keep_input_order(self):
        projects = [ProjectRecord(id=str(i), name=f"Project {i}") for i in range(5)]
        ranked = rank_projects(projects, "project")
        assert [r.project.id for r in ranked] == ["0", "1", "2", "3", "4"]

    def test_time_entries(self):
        entries = [entry(title="Notes", id="t1"), entry(title="Review", id="t2")]
        assert [r.time_entry.id for r in rank_time_entries(entries, "review", NOW)] == ["t2", "t1"]
