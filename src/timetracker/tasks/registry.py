# src/timetracker/tasks/registry.py

from __future__ import annotations

import logging
from dataclasses import replace

from ..core.errors import InvalidStateError, ValidationError
from ..core.models import TaskDefinition
from ..core.utils import create_task_slug, normalize_task_name

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Arena of task definitions keyed by id, plus a derived index normalized_name -> id.

    Invariant: a normalized name maps to exactly one definition. Extra ids found in
    persisted history for an already-registered name are kept as aliases of it.
    Definitions are never removed.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, TaskDefinition] = {}
        self._by_name: dict[str, str] = {}
        self._aliases: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_id or task_id in self._aliases

    def get(self, task_id: str) -> TaskDefinition | None:
        canonical = self._aliases.get(task_id, task_id)
        return self._by_id.get(canonical)

    def find_by_name(self, name: str) -> TaskDefinition | None:
        task_id = self._by_name.get(normalize_task_name(name))
        return self._by_id.get(task_id) if task_id else None

    def canonical_id(self, task_id: str) -> str:
        return self._aliases.get(task_id, task_id)

    def all(self) -> list[TaskDefinition]:
        return list(self._by_id.values())

    def snapshot(self) -> dict[str, TaskDefinition]:
        """Copy of the arena plus aliases, mostly for diagnostics and tests."""
        out = dict(self._by_id)
        for alias, canonical in self._aliases.items():
            out[alias] = self._by_id[canonical]
        return out

    def create(self, task_id: str, name: str, *, created_at: int, updated_at: int) -> TaskDefinition:
        normalized = normalize_task_name(name)
        if not normalized:
            raise ValidationError("Task name is required")
        if task_id in self:
            raise ValidationError(f"Task id already registered: {task_id}", details={"taskId": task_id})
        if normalized in self._by_name:
            raise ValidationError(
                "A task with this name already exists",
                details={"taskId": self._by_name[normalized], "normalizedName": normalized},
            )

        definition = TaskDefinition(
            id=task_id,
            name=name.strip(),
            normalized_name=normalized,
            slug=create_task_slug(name),
            created_at=created_at,
            updated_at=updated_at,
        )
        self._by_id[task_id] = definition
        self._by_name[normalized] = task_id
        logger.debug("Registered task definition id=%s name=%r", task_id, definition.name)
        return definition

    def add_alias(self, alias_id: str, canonical_id: str) -> None:
        if canonical_id not in self._by_id:
            raise InvalidStateError(f"Unknown task id: {canonical_id}")
        if alias_id in self:
            return
        self._aliases[alias_id] = canonical_id
        logger.info("Task id %s is an alias of %s", alias_id, canonical_id)

    def update(self, task_id: str, *, now_ms: int, name: str | None = None) -> TaskDefinition:
        current = self.get(task_id)
        if current is None:
            raise InvalidStateError(f"Unknown task id: {task_id}", details={"taskId": task_id})

        if name is None or normalize_task_name(name) == current.normalized_name:
            updated = replace(
                current,
                name=name.strip() if name is not None else current.name,
                slug=create_task_slug(name) if name is not None else current.slug,
                updated_at=now_ms,
            )
        else:
            normalized = normalize_task_name(name)
            if not normalized:
                raise ValidationError("Task name is required")
            if normalized in self._by_name:
                raise ValidationError(
                    "A task with this name already exists",
                    details={"taskId": self._by_name[normalized], "normalizedName": normalized},
                )
            del self._by_name[current.normalized_name]
            self._by_name[normalized] = current.id
            updated = replace(
                current,
                name=name.strip(),
                normalized_name=normalized,
                slug=create_task_slug(name),
                updated_at=now_ms,
            )

        self._by_id[current.id] = updated
        return updated
