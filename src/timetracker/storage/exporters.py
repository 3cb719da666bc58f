# src/timetracker/storage/exporters.py

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import tzinfo

from ..core.models import HistoryEntry
from ..core.utils import (
    escape_csv_field,
    extract_category,
    format_date_for_csv,
    format_duration,
    format_time_for_csv,
    ms_to_decimal_hours,
)

CSV_HEADERS = (
    "Task Name",
    "Category",
    "Start Date",
    "Start Time",
    "End Date",
    "End Time",
    "Duration",
    "Duration (Hours)",
    "Task ID",
    "Entry ID",
)

JSON_EXPORT_FILENAME = "timetracker-history.json"
CSV_EXPORT_FILENAME = "timetracker-history.csv"


def generate_json_content(history: Iterable[HistoryEntry]) -> str:
    """Lossless export: indented array of entries with exactly the six history fields."""
    return json.dumps([e.to_dict() for e in history], indent=2, ensure_ascii=False)


def generate_csv_content(history: Iterable[HistoryEntry], *, tz: tzinfo | None = None) -> str:
    """
    Tabular export, one row per entry, most recent start first.

    tz=None renders dates and times in the local time zone.
    """
    rows: list[list[str]] = []
    for entry in history:
        rows.append(
            [
                escape_csv_field(entry.name),
                escape_csv_field(extract_category(entry.name)),
                format_date_for_csv(entry.start_ts, tz),
                format_time_for_csv(entry.start_ts, tz),
                format_date_for_csv(entry.end_ts, tz),
                format_time_for_csv(entry.end_ts, tz),
                format_duration(entry.duration),
                ms_to_decimal_hours(entry.duration),
                escape_csv_field(entry.task_id),
                escape_csv_field(entry.id),
            ]
        )

    # ISO date + 24h time sort lexicographically in time order.
    rows.sort(key=lambda r: (r[2], r[3]), reverse=True)

    lines = [",".join(CSV_HEADERS)]
    lines.extend(",".join(r) for r in rows)
    return "\n".join(lines)
