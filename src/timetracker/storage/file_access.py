# src/timetracker/storage/file_access.py

"""
Local-filesystem implementation of the advanced (file-handle) backend.

- PathFileHandle: a user-chosen JSON file, replaced atomically on every write.
- LocalFileSystemAccess: asks a chooser for a path and restores handles by reference.
- SqliteHandleRegistry: remembers the chosen file between runs.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sqlite3
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)

FileChooser = Callable[[str], "str | Path | None"]


class PathFileHandle:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"PathFileHandle({str(self._path)!r})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def reference(self) -> str:
        return str(self._path.resolve())

    async def verify(self) -> None:
        if not await asyncio.to_thread(self._path.is_file):
            raise FileNotFoundError(f"Data file is no longer available: {self._path}")

    async def read_text(self) -> str:
        return await asyncio.to_thread(self._path.read_text, "utf-8")

    async def write_text(self, data: str) -> None:
        await asyncio.to_thread(self._write_atomic, data)

    def _write_atomic(self, data: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(data, "utf-8")
        os.replace(tmp, self._path)
        with contextlib.suppress(OSError):
            # Best-effort: history is personal data, keep the file private on disk.
            os.chmod(self._path, 0o600)


class LocalFileSystemAccess:
    def __init__(self, chooser: FileChooser | None = None, *, enabled: bool = True) -> None:
        self._chooser = chooser
        self._enabled = enabled

    @property
    def supported(self) -> bool:
        return self._enabled and self._chooser is not None

    async def request_handle(self, suggested_name: str) -> PathFileHandle | None:
        if not self.supported or self._chooser is None:
            return None
        chosen = await asyncio.to_thread(self._chooser, suggested_name)
        if not chosen:
            logger.info("Data file selection cancelled")
            return None

        handle = PathFileHandle(chosen)
        # Like a save dialog: the file exists once chosen.
        if not handle.path.exists():
            await handle.write_text("[]")
        return handle

    async def restore_handle(self, reference: str) -> PathFileHandle:
        handle = PathFileHandle(reference)
        await handle.verify()
        return handle


class PromptFileChooser:
    """
    Chooser used by the console.

    Priority: a one-shot preset (from "/setup-file <path>"), then the configured default,
    then an interactive prompt.
    """

    def __init__(
        self,
        default_path: str | Path | None = None,
        *,
        prompt: Callable[[str], str] = input,
    ) -> None:
        self._default = Path(default_path) if default_path else None
        self._preset: Path | None = None
        self._prompt = prompt

    def preset(self, path: str | Path) -> None:
        self._preset = Path(path).expanduser()

    def __call__(self, suggested_name: str) -> Path | None:
        if self._preset is not None:
            chosen, self._preset = self._preset, None
            return chosen
        if self._default is not None:
            return self._default
        try:
            raw = self._prompt(f"Data file path [{suggested_name}] (empty = cancel): ").strip()
        except EOFError:
            return None
        return Path(raw).expanduser() if raw else None


class SqliteHandleRegistry:
    """
    Persists file-handle references (table file_handles: id -> reference).

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "handles.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path), timeout=30.0)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS file_handles (id TEXT PRIMARY KEY, reference TEXT NOT NULL)"
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> str | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT reference FROM file_handles WHERE id = ?", (key,)).fetchone()
            return str(row[0]) if row else None
        finally:
            conn.close()

    def put(self, key: str, reference: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO file_handles(id, reference) VALUES (?, ?)",
                (key, reference),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM file_handles WHERE id = ?", (key,))
            conn.commit()
        finally:
            conn.close()
