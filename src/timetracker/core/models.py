# src/timetracker/core/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

HISTORY_FIELDS = ("id", "taskId", "name", "startTs", "endTs", "duration")


class StorageType(StrEnum):
    """Backend currently serving the history log."""

    KEY_VALUE = "keyValue"
    FILE = "file"


@dataclass(frozen=True, slots=True)
class ActiveTask:
    """The single in-progress tracking session."""

    id: str
    task_id: str
    name: str
    start_ts: int
    last_notif_ts: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "name": self.name,
            "startTs": self.start_ts,
            "lastNotifTs": self.last_notif_ts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveTask:
        # Callers validate the shape first (validation.validate_active_task).
        return cls(
            id=data["id"],
            task_id=data["taskId"],
            name=data["name"],
            start_ts=int(data["startTs"]),
            last_notif_ts=int(data["lastNotifTs"]),
        )


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """
    A completed tracking session.

    task_id is None only for legacy entries that predate task identities;
    startup reconciliation backfills it.
    """

    id: str
    task_id: str | None
    name: str
    start_ts: int
    end_ts: int
    duration: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "name": self.name,
            "startTs": self.start_ts,
            "endTs": self.end_ts,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        task_id = data.get("taskId") or None
        return cls(
            id=data["id"],
            task_id=task_id,
            name=data["name"],
            start_ts=int(data["startTs"]),
            end_ts=int(data["endTs"]),
            duration=int(data["duration"]),
        )


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """Canonical identity of a recurring task."""

    id: str
    name: str
    normalized_name: str
    slug: str
    created_at: int
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "normalizedName": self.normalized_name,
            "slug": self.slug,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class StorageStatus:
    file_system_supported: bool = False
    file_handle_active: bool = False
    storage_type: StorageType = StorageType.KEY_VALUE

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileSystemSupported": self.file_system_supported,
            "fileHandleActive": self.file_handle_active,
            "storageType": self.storage_type.value,
        }
