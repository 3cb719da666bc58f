# tests/test_summaries.py

from __future__ import annotations

from datetime import date, timezone

import pytest

from timetracker.core.errors import ValidationError
from timetracker.core.models import HistoryEntry
from timetracker.tasks.registry import TaskRegistry
from timetracker.tasks.summaries import daily_summary, filter_entries_by_date, get_available_dates

HOUR = 3_600_000
# 2023-11-14 00:00:00 UTC
DAY0 = 1_699_920_000_000


def _e(i: int, start: int, dur: int, task_id: str = "t1", name: str = "Email") -> HistoryEntry:
    return HistoryEntry(id=f"h{i}", task_id=task_id, name=name, start_ts=start, end_ts=start + dur, duration=dur)


HISTORY = [
    _e(1, DAY0 + 9 * HOUR, HOUR),
    _e(2, DAY0 + 11 * HOUR, 30 * 60_000, task_id="t2", name="Review"),
    _e(3, DAY0 + 24 * HOUR + 9 * HOUR, 2 * HOUR),
]


def test_available_dates_most_recent_first() -> None:
    assert get_available_dates(HISTORY, tz=timezone.utc) == [date(2023, 11, 15), date(2023, 11, 14)]
    assert get_available_dates([], tz=timezone.utc) == []


def test_filter_by_date() -> None:
    got = filter_entries_by_date(HISTORY, date(2023, 11, 14), tz=timezone.utc)
    assert [e.id for e in got] == ["h1", "h2"]


def test_daily_summary() -> None:
    s = daily_summary(HISTORY, date(2023, 11, 14), tz=timezone.utc)
    assert s.total_time_ms == HOUR + 30 * 60_000
    assert s.total_time_formatted == "1h 30m"
    assert s.task_count == 2
    assert s.unique_task_count == 2

    empty = daily_summary(HISTORY, date(2020, 1, 1), tz=timezone.utc)
    assert empty.task_count == 0
    assert empty.total_time_formatted == "0h 0m"


def test_registry_keeps_normalized_names_unique() -> None:
    reg = TaskRegistry()
    first = reg.create("t1", "  Email ", created_at=1, updated_at=1)
    assert first.name == "Email"
    assert first.normalized_name == "email"

    with pytest.raises(ValidationError):
        reg.create("t2", "EMAIL", created_at=2, updated_at=2)
    with pytest.raises(ValidationError):
        reg.create("t1", "Other", created_at=2, updated_at=2)

    reg.add_alias("t9", "t1")
    assert "t9" in reg
    assert reg.get("t9") is first
    assert reg.canonical_id("t9") == "t1"
    assert len(reg) == 1

    renamed = reg.update("t1", now_ms=5, name="Inbox")
    assert reg.find_by_name("email") is None
    assert reg.find_by_name("INBOX") == renamed
    assert renamed.updated_at == 5
