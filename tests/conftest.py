# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from timetracker.core.state import StateStore
from timetracker.storage.persistent_store import PersistentStore
from timetracker.tasks.task_manager import TaskManager

from .fakes import FakeClock, FakeFileSystemAccess, MemoryHandleRegistry, MemoryKeyValueStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with cli.bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="timetracker-test",
        log_level="DEBUG",
        console_enabled=False,
        # Paths (tmp per test run)
        data_dir=tmp_path,
        kv_db_path=tmp_path / "kv.sqlite3",
        handles_db_path=tmp_path / "handles.sqlite3",
        # Advanced backend
        file_backend_enabled=True,
        data_file=tmp_path / "history.json",
        # Limits
        import_max_bytes=10 * 1024 * 1024,
        retention_days=365,
        notification_threshold_seconds=60,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def handle_registry() -> MemoryHandleRegistry:
    return MemoryHandleRegistry()


@pytest.fixture()
def file_access() -> FakeFileSystemAccess:
    return FakeFileSystemAccess()


@pytest.fixture()
def storage(kv, file_access, handle_registry, clock) -> PersistentStore:
    return PersistentStore(
        kv,
        file_access=file_access,
        handle_registry=handle_registry,
        clock=clock,
    )


@pytest.fixture()
def manager(storage: PersistentStore, clock: FakeClock) -> TaskManager:
    """TaskManager on in-memory backends; call `await manager.initialize()` in the test."""
    return TaskManager(StateStore(), storage, clock=clock)
