# src/timetracker/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete backends (SQLite key-value store, local data file) into AppState.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import get_settings
from ..core.state import AppState, StateStore
from ..preferences import PreferencesManager
from ..storage.file_access import LocalFileSystemAccess, PromptFileChooser, SqliteHandleRegistry
from ..storage.kv_store import SqliteKeyValueStore
from ..storage.persistent_store import PersistentStore
from ..tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.kv_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.handles_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, prompt: Callable[[str], str] = input) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings(). Nothing is loaded yet:
    call `await state.manager.initialize()` before use.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    kv = SqliteKeyValueStore(settings.kv_db_path)
    chooser = PromptFileChooser(settings.data_file, prompt=prompt)
    storage = PersistentStore(
        kv,
        file_access=LocalFileSystemAccess(chooser, enabled=settings.file_backend_enabled),
        handle_registry=SqliteHandleRegistry(settings.handles_db_path),
        import_max_bytes=settings.import_max_bytes,
        retention_days=settings.retention_days,
    )

    state = StateStore()
    manager = TaskManager(
        state,
        storage,
        notification_threshold_ms=settings.notification_threshold_seconds * 1000,
    )

    logger.debug("AppState wired: kv=%s handles=%s", settings.kv_db_path, settings.handles_db_path)
    return AppState(
        settings=settings,
        state=state,
        storage=storage,
        manager=manager,
        preferences=PreferencesManager(kv),
        file_chooser=chooser,
    )
