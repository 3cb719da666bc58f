# src/timetracker/core/errors.py

"""Structured error types raised by the core."""

from __future__ import annotations

from typing import Any, Mapping


class TimeTrackerError(RuntimeError):
    """Base exception carrying a machine-readable code and details."""

    default_code = "TIMETRACKER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(TimeTrackerError, ValueError):
    """Input rejected before any state mutation (task name, entry shape, preference)."""

    default_code = "VALIDATION_ERROR"


class InvalidStateError(TimeTrackerError):
    """Operation is not allowed in the current lifecycle state."""

    default_code = "INVALID_STATE"


class StorageError(TimeTrackerError):
    """The always-available backend failed, so there is nothing left to fall back to."""

    default_code = "STORAGE_ERROR"


class CorruptHistoryError(TimeTrackerError):
    """Persisted history breaks a structural invariant (e.g. an entry without id)."""

    default_code = "CORRUPT_HISTORY"


class ImportRejectedError(ValidationError):
    """An import payload was rejected as a whole."""

    default_code = "IMPORT_REJECTED"

    def __init__(self, reason: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(f"Invalid file format: {reason}", details=details)
        self.reason = reason
