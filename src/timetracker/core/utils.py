# src/timetracker/core/utils.py

from __future__ import annotations

import re
import secrets
import string
import time
from datetime import datetime, tzinfo

_ID_ALPHABET = string.ascii_lowercase + string.digits

_SLUG_STRIP = re.compile(r"[^a-z0-9\s-]")
_SLUG_SPACES = re.compile(r"\s+")
_SLUG_DASHES = re.compile(r"-+")

_CATEGORY_COLON = re.compile(r"^([^:]+):")
_CATEGORY_BRACKET = re.compile(r"^\[([^\]]+)\]")

DEFAULT_CATEGORY = "General"

MS_PER_SECOND = 1000
MS_PER_HOUR = 60 * 60 * MS_PER_SECOND


class SystemClock:
    """Wall clock in milliseconds since the Unix epoch."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


def _random_suffix(n: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(n))


def generate_task_id(now_ms: int) -> str:
    """Id for a task definition and for an active tracking session."""
    return f"task_{now_ms}_{_random_suffix()}"


def generate_history_id(now_ms: int) -> str:
    return f"hist_{now_ms}_{_random_suffix()}"


def normalize_task_name(name: str) -> str:
    """Case- and whitespace-folded name used for identity matching."""
    return " ".join(name.split()).casefold()


def create_task_slug(name: str) -> str:
    """URL-safe slug: lower-case, alphanumerics only, whitespace runs -> single hyphen."""
    slug = _SLUG_STRIP.sub("", name.strip().lower())
    slug = _SLUG_SPACES.sub("-", slug)
    slug = _SLUG_DASHES.sub("-", slug)
    return slug.strip("-")


def extract_category(task_name: str) -> str:
    """Category from a leading "Category:" or "[Category]" prefix, else "General"."""
    m = _CATEGORY_COLON.match(task_name)
    if m:
        return m.group(1).strip()
    m = _CATEGORY_BRACKET.match(task_name)
    if m:
        return m.group(1).strip()
    return DEFAULT_CATEGORY


def format_duration(ms: int) -> str:
    """Human readable duration: "1h 2m 3s", "2m 3s" or "3s"."""
    seconds = max(0, int(ms)) // MS_PER_SECOND
    minutes = seconds // 60
    hours = minutes // 60

    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_duration_short(ms: int) -> str:
    """Hours and minutes only: "2h 5m" or "5m"."""
    total_seconds = max(0, int(ms)) // MS_PER_SECOND
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def ms_to_decimal_hours(ms: int) -> str:
    return f"{ms / MS_PER_HOUR:.4f}"


def to_datetime(ts_ms: int, tz: tzinfo | None = None) -> datetime:
    """Aware datetime for a ms timestamp; tz=None means the local time zone."""
    dt = datetime.fromtimestamp(ts_ms / MS_PER_SECOND, tz=tz)
    return dt if tz is not None else dt.astimezone()


def format_date_for_csv(ts_ms: int, tz: tzinfo | None = None) -> str:
    return to_datetime(ts_ms, tz).strftime("%Y-%m-%d")


def format_time_for_csv(ts_ms: int, tz: tzinfo | None = None) -> str:
    return to_datetime(ts_ms, tz).strftime("%H:%M:%S")


def escape_csv_field(value: object) -> str:
    """RFC 4180 style: quote fields containing comma, quote or line breaks."""
    if value is None:
        return ""
    s = str(value)
    if any(ch in s for ch in (",", '"', "\n", "\r")):
        return '"' + s.replace('"', '""') + '"'
    return s
