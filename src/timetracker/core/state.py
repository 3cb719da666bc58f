# src/timetracker/core/state.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from .models import StorageStatus

if TYPE_CHECKING:
    from ..preferences import PreferencesManager
    from ..storage.file_access import PromptFileChooser
    from ..storage.persistent_store import PersistentStore
    from ..tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], None]


class Slice(StrEnum):
    CURRENT_TASK = "currentTask"
    HISTORY = "history"
    STORAGE_STATUS = "storageStatus"


class StateStore:
    """
    Authoritative in-memory state with per-slice subscribers.

    - set() replaces the slice value and calls that slice's subscribers synchronously,
      in registration order.
    - Subscriber exceptions propagate to the caller of set().
    - Values are immutable snapshots (frozen dataclasses / tuples), so readers can't mutate state.
    """

    def __init__(self) -> None:
        self._values: dict[Slice, Any] = {
            Slice.CURRENT_TASK: None,
            Slice.HISTORY: (),
            Slice.STORAGE_STATUS: StorageStatus(),
        }
        self._subscribers: dict[Slice, list[Subscriber]] = {s: [] for s in Slice}

    def get(self, key: Slice | str) -> Any:
        return self._values[Slice(key)]

    def set(self, key: Slice | str, value: Any) -> None:
        slice_ = Slice(key)
        self._values[slice_] = value
        # Copy: a callback may unsubscribe itself while we iterate.
        for callback in list(self._subscribers[slice_]):
            callback(value)

    def subscribe(self, key: Slice | str, callback: Subscriber) -> Callable[[], None]:
        """Register callback; returns a function that removes it again."""
        slice_ = Slice(key)
        subscribers = self._subscribers[slice_]
        subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                subscribers.remove(callback)
            except ValueError:
                logger.debug("Subscriber already removed from %s", slice_.value)

        return unsubscribe

    def subscriber_count(self, key: Slice | str) -> int:
        return len(self._subscribers[Slice(key)])


@dataclass
class AppState:
    """Everything the console front-end needs, wired once by cli.bootstrap."""

    settings: object
    state: StateStore
    storage: PersistentStore
    manager: TaskManager
    preferences: PreferencesManager
    file_chooser: PromptFileChooser | None = None
