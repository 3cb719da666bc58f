# src/timetracker/tasks/task_manager.py

"""
Task lifecycle manager.

Owns:
- the start / switch / stop state machine (at most one active task),
- the task registry (one canonical identity per normalized name),
- startup reconciliation of persisted history against the registry.

It is the only writer of the StateStore. Persistence goes through PersistentStore;
the storage status slice is refreshed after every storage call that can change it.

Crash-safety of completion: the history entry is written before the active-task
record is cleared, so a crash in between can leave a stale active task but never
loses a finished session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date, tzinfo
from typing import Any

from ..core.errors import CorruptHistoryError, InvalidStateError
from ..core.models import ActiveTask, HistoryEntry, TaskDefinition
from ..core.ports import Clock
from ..core.state import Slice, StateStore
from ..core.utils import (
    SystemClock,
    create_task_slug,
    generate_history_id,
    generate_task_id,
    normalize_task_name,
)
from ..core.validation import validate_task_name_secure
from ..storage.persistent_store import PersistentStore
from . import summaries
from .registry import TaskRegistry

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_THRESHOLD_MS = 60 * 1000
SUGGESTION_LIMIT = 8


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    repaired: int = 0
    registered: int = 0
    aliased: int = 0

    @property
    def modified(self) -> bool:
        return self.repaired > 0


class TaskManager:
    def __init__(
        self,
        state: StateStore,
        storage: PersistentStore,
        *,
        clock: Clock | None = None,
        notification_threshold_ms: int = DEFAULT_NOTIFICATION_THRESHOLD_MS,
    ) -> None:
        self.state = state
        self.storage = storage
        self.registry = TaskRegistry()
        self._clock: Clock = clock or SystemClock()
        self._notification_threshold_ms = int(notification_threshold_ms)

    # ---- startup ----

    async def initialize(self) -> ReconcileReport:
        """Load persisted state into the store, then reconcile history with the registry."""
        await self.storage.init()

        active = await self.storage.get_active_task()
        history = await self.storage.get_history()

        self.state.set(Slice.CURRENT_TASK, active)
        self.state.set(Slice.HISTORY, tuple(history))
        self._publish_storage_status()

        report = await self.reconcile_history()
        if active is not None:
            self._register_active_task(active)

        logger.info(
            "TaskManager initialized: history=%d tasks=%d active=%s",
            len(self.state.get(Slice.HISTORY)),
            len(self.registry),
            active.name if active else None,
        )
        return report

    async def reconcile_history(self) -> ReconcileReport:
        """
        Give every history entry a task identity and register every identity.

        - entry without taskId: reuse the registered id for its normalized name, or mint one
        - taskId unknown to the registry: register it, or alias it when the name is taken

        Idempotent. History is only rewritten when an entry was actually repaired.
        """
        history: tuple[HistoryEntry, ...] = self.state.get(Slice.HISTORY)
        repaired = registered = aliased = 0
        out: list[HistoryEntry] = []

        for entry in history:
            if not entry.id:
                raise CorruptHistoryError("Invalid history entry: missing required id")

            if not entry.task_id:
                existing = self.registry.find_by_name(entry.name)
                task_id = existing.id if existing else generate_task_id(self._clock.now_ms())
                entry = replace(entry, task_id=task_id)
                repaired += 1
                logger.info("Repaired history entry %s: taskId=%s name=%r", entry.id, task_id, entry.name)

            if entry.task_id not in self.registry:
                existing = self.registry.find_by_name(entry.name)
                if existing is None:
                    self.registry.create(
                        entry.task_id,
                        entry.name,
                        created_at=entry.start_ts,
                        updated_at=entry.end_ts,
                    )
                    registered += 1
                else:
                    self.registry.add_alias(entry.task_id, existing.id)
                    aliased += 1

            out.append(entry)

        report = ReconcileReport(repaired=repaired, registered=registered, aliased=aliased)
        if report.modified:
            await self.storage.save_history(out)
            self.state.set(Slice.HISTORY, tuple(out))
            self._publish_storage_status()
            logger.info("History reconciled: %d entries repaired", repaired)
        return report

    def _register_active_task(self, task: ActiveTask) -> None:
        # The first session of a new task is not in history yet.
        if task.task_id in self.registry:
            return
        existing = self.registry.find_by_name(task.name)
        if existing is None:
            self.registry.create(task.task_id, task.name, created_at=task.start_ts, updated_at=task.start_ts)
        else:
            self.registry.add_alias(task.task_id, existing.id)

    # ---- lifecycle ----

    async def start_task(self, task_name: str, task_id: str | None = None) -> ActiveTask:
        """
        Start tracking task_name, completing whatever is currently active first.

        If completing the previous task fails, the error propagates and the previous
        task stays active.
        """
        validate_task_name_secure(task_name).raise_for_errors()

        previous = self.state.get(Slice.CURRENT_TASK)
        if previous is not None:
            await self._complete_current_task()

        definition = self.find_or_create_task_definition(task_name, task_id)
        now_ms = self._clock.now_ms()
        task = ActiveTask(
            id=generate_task_id(now_ms),
            task_id=definition.id,
            name=definition.name,
            start_ts=now_ms,
            last_notif_ts=now_ms,
        )

        await self.storage.save_active_task(task)
        self.state.set(Slice.CURRENT_TASK, task)

        if previous is not None:
            logger.info("Switched task %r -> %r", previous.name, task.name)
        else:
            logger.info("Started task %r (taskId=%s)", task.name, task.task_id)
        return task

    async def switch_task(self, task_name: str, task_id: str | None = None) -> ActiveTask:
        return await self.start_task(task_name, task_id)

    async def stop_tracking(self) -> HistoryEntry:
        entry = await self._complete_current_task()
        if entry is None:
            raise InvalidStateError("No task is currently being tracked")
        return entry

    async def _complete_current_task(self) -> HistoryEntry | None:
        current: ActiveTask | None = self.state.get(Slice.CURRENT_TASK)
        if current is None:
            return None

        # A clock that went backwards must not produce a negative duration.
        end_ts = max(self._clock.now_ms(), current.start_ts)
        entry = HistoryEntry(
            id=generate_history_id(end_ts),
            task_id=current.task_id,
            name=current.name,
            start_ts=current.start_ts,
            end_ts=end_ts,
            duration=end_ts - current.start_ts,
        )

        try:
            await self.storage.add_history_entry(entry)
            self.state.set(Slice.HISTORY, (*self.state.get(Slice.HISTORY), entry))
            await self.storage.clear_active_task()
            self.state.set(Slice.CURRENT_TASK, None)
        finally:
            self._publish_storage_status()

        logger.info("Completed task %r after %d ms", entry.name, entry.duration)
        return entry

    def is_task_active(self) -> bool:
        return self.state.get(Slice.CURRENT_TASK) is not None

    def get_elapsed_ms(self) -> int:
        current = self.state.get(Slice.CURRENT_TASK)
        if current is None:
            return 0
        return max(0, self._clock.now_ms() - current.start_ts)

    # ---- notifications ----

    def should_show_notification(self) -> bool:
        current: ActiveTask | None = self.state.get(Slice.CURRENT_TASK)
        if current is None:
            return False
        return self._clock.now_ms() - current.last_notif_ts >= self._notification_threshold_ms

    async def update_notification_timestamp(self) -> ActiveTask | None:
        current: ActiveTask | None = self.state.get(Slice.CURRENT_TASK)
        if current is None:
            return None
        updated = replace(current, last_notif_ts=max(self._clock.now_ms(), current.start_ts))
        await self.storage.save_active_task(updated)
        self.state.set(Slice.CURRENT_TASK, updated)
        return updated

    # ---- registry ----

    def find_or_create_task_definition(self, task_name: str, task_id: str | None = None) -> TaskDefinition:
        """Explicit registered id wins, then a normalized-name match, then a new identity."""
        if task_id:
            by_id = self.registry.get(task_id)
            if by_id is not None:
                return by_id
            logger.debug("Unknown taskId %s; resolving %r by name", task_id, task_name)

        existing = self.registry.find_by_name(task_name)
        if existing is not None:
            return existing

        now_ms = self._clock.now_ms()
        return self.registry.create(generate_task_id(now_ms), task_name, created_at=now_ms, updated_at=now_ms)

    def get_task_definition(self, task_id: str) -> TaskDefinition | None:
        return self.registry.get(task_id)

    def get_all_task_definitions(self) -> list[TaskDefinition]:
        return self.registry.all()

    def get_unique_task_definitions(self) -> list[TaskDefinition]:
        return sorted(self.registry.all(), key=lambda d: d.normalized_name)

    def update_task_definition(self, task_id: str, *, name: str | None = None) -> TaskDefinition:
        if name is not None:
            validate_task_name_secure(name).raise_for_errors()
        return self.registry.update(task_id, now_ms=self._clock.now_ms(), name=name)

    def get_task_suggestions(self, text: str, limit: int = SUGGESTION_LIMIT) -> list[TaskDefinition]:
        """Definitions whose normalized name or slug contains text, in name order."""
        needle = normalize_task_name(text or "")
        if not needle:
            return []
        slug_needle = create_task_slug(needle)
        matches = [
            d
            for d in self.get_unique_task_definitions()
            if needle in d.normalized_name or (slug_needle and slug_needle in d.slug)
        ]
        return matches[: max(0, int(limit))]

    # ---- history ----

    async def refresh_history(self) -> tuple[HistoryEntry, ...]:
        history = tuple(await self.storage.get_history())
        self.state.set(Slice.HISTORY, history)
        self._publish_storage_status()
        return history

    async def clear_history(self) -> None:
        try:
            await self.storage.clear_history()
        finally:
            self._publish_storage_status()
        self.state.set(Slice.HISTORY, ())
        logger.info("History cleared")

    async def export_history(self) -> str:
        try:
            return await self.storage.export_history()
        finally:
            self._publish_storage_status()

    async def export_history_as_csv(self, *, tz: tzinfo | None = None) -> str:
        try:
            return await self.storage.export_history_as_csv(tz=tz)
        finally:
            self._publish_storage_status()

    async def import_history(self, data: bytes | str) -> int:
        """Replace history with an imported payload. Nothing changes if it is rejected."""
        try:
            entries = await self.storage.import_history(data)
        finally:
            self._publish_storage_status()
        await self.refresh_history()
        await self.reconcile_history()
        return len(entries)

    async def setup_data_file(self) -> bool:
        try:
            return await self.storage.setup_data_file()
        finally:
            self._publish_storage_status()

    # ---- summaries ----

    def get_current_task_summary(self) -> summaries.CurrentTaskSummary | None:
        return summaries.current_task_summary(self.state.get(Slice.CURRENT_TASK), self._clock.now_ms())

    def get_history_summary(self) -> summaries.HistorySummary:
        return summaries.history_summary(self.state.get(Slice.HISTORY))

    def get_task_aggregated_time_by_id(self, task_id: str) -> summaries.TaskTimeSummary:
        return summaries.task_time_by_id(self.state.get(Slice.HISTORY), self.registry, task_id)

    def get_aggregated_task_summary(self) -> list[summaries.TaskTimeSummary]:
        return summaries.aggregated_task_summary(self.state.get(Slice.HISTORY), self.registry)

    def get_daily_summary(self, day: date, *, tz: tzinfo | None = None) -> summaries.DailySummary:
        return summaries.daily_summary(self.state.get(Slice.HISTORY), day, tz=tz)

    def get_available_dates(self, *, tz: tzinfo | None = None) -> list[date]:
        return summaries.get_available_dates(self.state.get(Slice.HISTORY), tz=tz)

    # ---- state plumbing ----

    def subscribe(self, key: Slice | str, callback: Callable[[Any], None]) -> Callable[[], None]:
        return self.state.subscribe(key, callback)

    def _publish_storage_status(self) -> None:
        status = self.storage.storage_status()
        if status != self.state.get(Slice.STORAGE_STATUS):
            self.state.set(Slice.STORAGE_STATUS, status)
