# src/timetracker/tasks/summaries.py

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, tzinfo

from ..core.models import ActiveTask, HistoryEntry
from ..core.utils import format_duration, format_duration_short, to_datetime
from .registry import TaskRegistry


@dataclass(frozen=True, slots=True)
class CurrentTaskSummary:
    name: str
    start_ts: int
    elapsed_ms: int
    elapsed_formatted: str


@dataclass(frozen=True, slots=True)
class HistorySummary:
    total_entries: int
    total_time_ms: int
    total_time_formatted: str
    most_recent_task: str | None = None


@dataclass(frozen=True, slots=True)
class TaskTimeSummary:
    task_id: str
    task_name: str
    total_time_ms: int
    total_time_formatted: str
    session_count: int
    last_worked_ts: int | None


@dataclass(frozen=True, slots=True)
class DailySummary:
    total_time_ms: int
    total_time_formatted: str
    task_count: int
    unique_task_count: int
    entries: tuple[HistoryEntry, ...]


def current_task_summary(task: ActiveTask | None, now_ms: int) -> CurrentTaskSummary | None:
    if task is None:
        return None
    elapsed = max(0, now_ms - task.start_ts)
    return CurrentTaskSummary(
        name=task.name,
        start_ts=task.start_ts,
        elapsed_ms=elapsed,
        elapsed_formatted=format_duration(elapsed),
    )


def history_summary(history: Sequence[HistoryEntry]) -> HistorySummary:
    if not history:
        return HistorySummary(total_entries=0, total_time_ms=0, total_time_formatted="0s")
    total = sum(e.duration for e in history)
    return HistorySummary(
        total_entries=len(history),
        total_time_ms=total,
        total_time_formatted=format_duration(total),
        most_recent_task=history[-1].name,
    )


def task_time_by_id(
    history: Iterable[HistoryEntry], registry: TaskRegistry, task_id: str
) -> TaskTimeSummary:
    """Aggregate every session of one task (aliases of the same definition included)."""
    canonical = registry.canonical_id(task_id)
    entries = [e for e in history if e.task_id and registry.canonical_id(e.task_id) == canonical]
    definition = registry.get(task_id)

    if not entries:
        return TaskTimeSummary(
            task_id=task_id,
            task_name=definition.name if definition else "Unknown",
            total_time_ms=0,
            total_time_formatted="0s",
            session_count=0,
            last_worked_ts=None,
        )

    total = sum(e.duration for e in entries)
    return TaskTimeSummary(
        task_id=task_id,
        task_name=definition.name if definition else entries[0].name,
        total_time_ms=total,
        total_time_formatted=format_duration(total),
        session_count=len(entries),
        last_worked_ts=max(e.end_ts for e in entries),
    )


def aggregated_task_summary(
    history: Sequence[HistoryEntry], registry: TaskRegistry
) -> list[TaskTimeSummary]:
    out = [task_time_by_id(history, registry, d.id) for d in registry.all()]
    out.sort(key=lambda s: s.total_time_ms, reverse=True)
    return out


def entry_date(entry: HistoryEntry, tz: tzinfo | None = None) -> date:
    return to_datetime(entry.start_ts, tz).date()


def filter_entries_by_date(
    history: Iterable[HistoryEntry], day: date, *, tz: tzinfo | None = None
) -> list[HistoryEntry]:
    return [e for e in history if entry_date(e, tz) == day]


def get_available_dates(history: Iterable[HistoryEntry], *, tz: tzinfo | None = None) -> list[date]:
    """Days that have at least one entry, most recent first."""
    return sorted({entry_date(e, tz) for e in history}, reverse=True)


def daily_summary(
    history: Iterable[HistoryEntry], day: date, *, tz: tzinfo | None = None
) -> DailySummary:
    day_entries = filter_entries_by_date(history, day, tz=tz)
    total = sum(e.duration for e in day_entries)
    return DailySummary(
        total_time_ms=total,
        total_time_formatted=format_duration_short(total) if day_entries else "0h 0m",
        task_count=len(day_entries),
        unique_task_count=len({e.task_id or e.name for e in day_entries}),
        entries=tuple(day_entries),
    )
