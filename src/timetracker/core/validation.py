# src/timetracker/core/validation.py

"""
Pure validation helpers.

Every check returns a ValidationResult instead of raising, so callers decide
whether a failure is fatal (import), repairable (load) or a user error (start).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ValidationError

TASK_NAME_MAX_LENGTH = 200

NOTIFICATION_INTERVAL_MIN = 1
NOTIFICATION_INTERVAL_MAX = 360

_HTML_TAG = re.compile(r"<[^>]*>")
_SCRIPT_PATTERN = re.compile(r"(javascript:|data:|vbscript:|on\w+\s*=)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    ok: bool
    errors: tuple[str, ...] = ()

    @classmethod
    def success(cls) -> ValidationResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, *errors: str) -> ValidationResult:
        return cls(ok=False, errors=tuple(errors))

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_errors(self, code: str | None = None) -> None:
        if not self.ok:
            raise ValidationError("; ".join(self.errors), code=code, details={"errors": list(self.errors)})


def is_timestamp(value: Any) -> bool:
    """Integral, non-negative number (JSON may hand us 1.0 for 1)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, float):
        return value.is_integer() and value >= 0
    return False


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def validate_task_name(name: Any) -> ValidationResult:
    """Minimal check: a non-blank string."""
    if not _non_empty_str(name):
        return ValidationResult.failure("Task name is required")
    return ValidationResult.success()


def validate_task_name_secure(name: Any) -> ValidationResult:
    """Length limit plus rejection of markup and script-like content."""
    basic = validate_task_name(name)
    if not basic:
        return basic

    trimmed = name.strip()
    if len(trimmed) > TASK_NAME_MAX_LENGTH:
        return ValidationResult.failure(
            f"Task name must be at most {TASK_NAME_MAX_LENGTH} characters"
        )
    if _HTML_TAG.search(trimmed) or _SCRIPT_PATTERN.search(trimmed):
        return ValidationResult.failure("Task name contains forbidden content")
    return ValidationResult.success()


def validate_notification_interval(minutes: Any) -> ValidationResult:
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        return ValidationResult.failure("Notification interval must be a whole number of minutes")
    if not NOTIFICATION_INTERVAL_MIN <= minutes <= NOTIFICATION_INTERVAL_MAX:
        return ValidationResult.failure(
            f"Notification interval must be between {NOTIFICATION_INTERVAL_MIN} "
            f"and {NOTIFICATION_INTERVAL_MAX} minutes"
        )
    return ValidationResult.success()


def validate_history_entry(
    entry: Any,
    *,
    now_ms: int,
    retention_ms: int,
) -> ValidationResult:
    """
    Full check of an imported history record.

    A missing taskId is allowed (legacy format, repaired by reconciliation);
    everything else must hold exactly.
    """
    if not isinstance(entry, Mapping):
        return ValidationResult.failure("entry must be an object")

    errors: list[str] = []

    if not _non_empty_str(entry.get("id")):
        errors.append("id must be a non-empty string")

    task_id = entry.get("taskId")
    if task_id is not None and not _non_empty_str(task_id):
        errors.append("taskId must be a non-empty string when present")

    name_check = validate_task_name_secure(entry.get("name"))
    if not name_check:
        errors.extend(name_check.errors)

    start_ts = entry.get("startTs")
    end_ts = entry.get("endTs")
    duration = entry.get("duration")
    for field_name, value in (("startTs", start_ts), ("endTs", end_ts), ("duration", duration)):
        if not is_timestamp(value):
            errors.append(f"{field_name} must be a non-negative integer")

    if errors:
        return ValidationResult.failure(*errors)

    if end_ts < start_ts:
        errors.append("endTs must not be earlier than startTs")
    elif duration != end_ts - start_ts:
        errors.append("duration must equal endTs - startTs")

    if end_ts > now_ms:
        errors.append("endTs must not be in the future")
    if start_ts < now_ms - retention_ms:
        errors.append("startTs is older than the retention horizon")

    if errors:
        return ValidationResult.failure(*errors)
    return ValidationResult.success()


def validate_active_task(record: Any) -> ValidationResult:
    """Shape of the persisted active-task record."""
    if not isinstance(record, Mapping):
        return ValidationResult.failure("active task must be an object")

    errors: list[str] = []
    for field_name in ("id", "taskId", "name"):
        if not _non_empty_str(record.get(field_name)):
            errors.append(f"{field_name} must be a non-empty string")

    start_ts = record.get("startTs")
    last_notif_ts = record.get("lastNotifTs")
    if not is_timestamp(start_ts):
        errors.append("startTs must be a non-negative integer")
    if not is_timestamp(last_notif_ts):
        errors.append("lastNotifTs must be a non-negative integer")

    if not errors and last_notif_ts < start_ts:
        errors.append("lastNotifTs must not be earlier than startTs")

    if errors:
        return ValidationResult.failure(*errors)
    return ValidationResult.success()
