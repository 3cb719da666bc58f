# src/timetracker/storage/persistent_store.py

"""
Persistent store.

Uniform async get/save/clear over two backends:
- the always-available key-value backend (default, fallback, and home of the active-task record),
- an optional user-granted file handle that holds the full history log.

Any failure of the file backend (init, read, write) is logged and absorbed: the session
degrades to the key-value backend, StorageStatus reflects it, and the next start
resyncs the file from the key-value copy. Failures of the
key-value backend itself surface as StorageError.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import tzinfo
from typing import Any

from ..core.errors import CorruptHistoryError, ImportRejectedError, StorageError
from ..core.models import ActiveTask, HistoryEntry, StorageStatus, StorageType
from ..core.ports import Clock, FileHandle, FileSystemAccess, HandleRegistry, KeyValueBackend
from ..core.utils import SystemClock
from ..core.validation import is_timestamp, validate_active_task, validate_history_entry
from .exporters import generate_csv_content, generate_json_content

logger = logging.getLogger(__name__)

HISTORY_KEY = "taskHistory"
ACTIVE_TASK_KEY = "activeTask"
FILE_HANDLE_KEY = "mainFileHandle"
SUGGESTED_FILE_NAME = "timetracker-history.json"
FILE_RESYNC_KEY = "fileResyncPending"

RESYNC_REPLACE = "replace"
RESYNC_MERGE = "merge"

DEFAULT_IMPORT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_RETENTION_DAYS = 365
_MS_PER_DAY = 24 * 60 * 60 * 1000


def decode_history_records(payload: Any) -> list[HistoryEntry]:
    """
    Structural decode of a persisted history log.

    Missing taskId is tolerated (legacy data); anything else that is broken
    raises CorruptHistoryError.
    """
    if not isinstance(payload, list):
        raise CorruptHistoryError("History log is not a list", details={"type": type(payload).__name__})

    entries: list[HistoryEntry] = []
    for index, record in enumerate(payload):
        if not isinstance(record, dict):
            raise CorruptHistoryError("History entry is not an object", details={"index": index})
        entry_id = record.get("id")
        if not isinstance(entry_id, str) or not entry_id:
            raise CorruptHistoryError(
                "Invalid history entry: missing required id", details={"index": index}
            )
        name = record.get("name")
        if not isinstance(name, str) or not name.strip():
            raise CorruptHistoryError("History entry has no name", details={"index": index, "id": entry_id})
        if not all(is_timestamp(record.get(k)) for k in ("startTs", "endTs", "duration")):
            raise CorruptHistoryError(
                "History entry has malformed timestamps", details={"index": index, "id": entry_id}
            )
        task_id = record.get("taskId")
        if task_id is not None and not isinstance(task_id, str):
            raise CorruptHistoryError("History entry has malformed taskId", details={"index": index, "id": entry_id})
        entries.append(HistoryEntry.from_dict(record))
    return entries


async def _read_file_payload(handle: FileHandle) -> list[Any]:
    text = await handle.read_text()
    payload = json.loads(text) if text.strip() else []
    if not isinstance(payload, list):
        raise ValueError("data file does not contain a JSON array")
    return payload


def _encode_history(entries: Sequence[HistoryEntry]) -> str:
    return json.dumps([e.to_dict() for e in entries], indent=2, ensure_ascii=False)


def merge_histories(primary: Sequence[HistoryEntry], extra: Sequence[HistoryEntry]) -> list[HistoryEntry]:
    """Union of two logs by entry id, ordered by start time. `primary` wins on id clashes."""
    seen = {e.id for e in primary}
    merged = list(primary) + [e for e in extra if e.id not in seen]
    merged.sort(key=lambda e: e.start_ts)
    return merged


class PersistentStore:
    """
    The key-value backend and handle registry are blocking SQLite; calls into them run via
    asyncio.to_thread so the reminder loop keeps ticking.

    When the data file fails mid-session the key-value copy becomes the log of record and
    a resync marker is left in the key-value backend. On the next start the marker decides
    how the reacquired file is brought up to date:
    - "replace": the key-value copy is complete, it overwrites the file;
    - "merge": the key-value copy may be stale, both logs are unioned by entry id.
    """

    def __init__(
        self,
        kv: KeyValueBackend,
        *,
        file_access: FileSystemAccess | None = None,
        handle_registry: HandleRegistry | None = None,
        clock: Clock | None = None,
        import_max_bytes: int = DEFAULT_IMPORT_MAX_BYTES,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._kv = kv
        self._file_access = file_access
        self._handle_registry = handle_registry
        self._clock: Clock = clock or SystemClock()
        self._import_max_bytes = int(import_max_bytes)
        self._retention_ms = int(retention_days) * _MS_PER_DAY

        self._file_system_supported = False
        self._file_handle: FileHandle | None = None
        # Last log known to be in the data file; seeds the key-value copy on a read failure.
        self._last_file_history: list[HistoryEntry] | None = None
        self._resync_mode: str | None = None
        self._initialized = False

    # ---- capability / handle management ----

    async def init(self) -> None:
        """Probe the file capability, reacquire a previously granted handle and resync it."""
        if self._initialized:
            return

        try:
            self._file_system_supported = bool(self._file_access is not None and self._file_access.supported)
        except Exception:
            logger.warning("File capability probe failed; using key-value storage only", exc_info=True)
            self._file_system_supported = False

        if self._file_system_supported:
            await self._load_existing_file_handle()
            await self._resync_file()

        self._initialized = True
        status = self.storage_status()
        logger.info(
            "PersistentStore ready storage=%s file_supported=%s",
            status.storage_type.value,
            status.file_system_supported,
        )

    async def _load_existing_file_handle(self) -> None:
        if self._handle_registry is None or self._file_access is None:
            return
        try:
            reference = await asyncio.to_thread(self._handle_registry.get, FILE_HANDLE_KEY)
            if not reference:
                return
            handle = await self._file_access.restore_handle(reference)
            await handle.verify()
            self._file_handle = handle
            logger.info("Reacquired data file %s", reference)
        except Exception:
            logger.warning("Stored data file handle is no longer valid; discarding it", exc_info=True)
            self._file_handle = None
            try:
                await asyncio.to_thread(self._handle_registry.delete, FILE_HANDLE_KEY)
            except Exception:
                logger.warning("Failed to clean up invalid file handle", exc_info=True)

    async def _resync_file(self) -> None:
        try:
            raw = await self._kv_get(FILE_RESYNC_KEY)
        except StorageError:
            logger.warning("Could not read the resync marker", exc_info=True)
            raw = None
        mode = raw.decode("utf-8", "replace") if raw else None
        if mode is None:
            return

        handle = self._file_handle
        if handle is None:
            # No file to resync; the key-value copy stays the log of record.
            self._resync_mode = mode
            return

        try:
            history = await self._get_kv_history()
            if mode == RESYNC_MERGE:
                history = merge_histories(decode_history_records(await _read_file_payload(handle)), history)
            await handle.write_text(_encode_history(history))
            await self._kv_remove(FILE_RESYNC_KEY)
        except Exception:
            logger.warning("Data file resync failed; staying on key-value storage", exc_info=True)
            self._file_handle = None
            self._resync_mode = mode
            return

        self._last_file_history = history
        logger.info("Data file resynced mode=%s entries=%d", mode, len(history))

    async def setup_data_file(self) -> bool:
        """
        Opt into the file backend.

        Returns False when unsupported, cancelled, or when the new file can't be written.
        The current history is copied into the new file.
        """
        if not self._file_system_supported or self._file_access is None:
            return False

        try:
            handle = await self._file_access.request_handle(SUGGESTED_FILE_NAME)
        except Exception:
            logger.warning("Data file request failed", exc_info=True)
            return False
        if handle is None:
            return False

        history = await self.get_history()
        try:
            await handle.write_text(_encode_history(history))
        except Exception:
            logger.warning("Could not write history into the new data file", exc_info=True)
            return False

        self._file_handle = handle
        self._last_file_history = list(history)
        if self._resync_mode is not None:
            # The new file already holds the full log.
            await self._kv_remove(FILE_RESYNC_KEY)
            self._resync_mode = None
        if self._handle_registry is not None:
            try:
                await asyncio.to_thread(self._handle_registry.put, FILE_HANDLE_KEY, handle.reference)
            except Exception:
                logger.warning("Failed to persist data file handle; it will not survive a restart", exc_info=True)

        logger.info("Data file set up: %s (%d entries)", handle.reference, len(history))
        return True

    def storage_status(self) -> StorageStatus:
        active = self._file_handle is not None
        return StorageStatus(
            file_system_supported=self._file_system_supported,
            file_handle_active=active,
            storage_type=StorageType.FILE if active else StorageType.KEY_VALUE,
        )

    async def _degrade(self, *, full_log_follows: bool) -> None:
        """
        Drop the file for this session. The registry reference is kept for the next start.

        full_log_follows: the caller writes the complete log to the key-value backend next.
        Otherwise the last known file log is copied there, when there is one.
        """
        known = self._last_file_history
        self._file_handle = None
        self._last_file_history = None

        if full_log_follows:
            mode = RESYNC_REPLACE
        elif known is not None:
            await self._kv_set(HISTORY_KEY, _encode_history(known).encode("utf-8"))
            mode = RESYNC_REPLACE
        else:
            mode = RESYNC_MERGE
        await self._set_resync_mode(mode)
        logger.warning("Storage degraded to key-value backend for this session (resync=%s)", mode)

    async def _set_resync_mode(self, mode: str) -> None:
        if self._resync_mode == mode:
            return
        await self._kv_set(FILE_RESYNC_KEY, mode.encode("utf-8"))
        self._resync_mode = mode

    # ---- key-value helpers ----

    async def _kv_get(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._kv.get, key)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Key-value read failed for {key!r}", details={"key": key}) from exc

    async def _kv_set(self, key: str, value: bytes) -> None:
        try:
            await asyncio.to_thread(self._kv.set, key, value)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Key-value write failed for {key!r}", details={"key": key}) from exc

    async def _kv_remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._kv.remove, key)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Key-value remove failed for {key!r}", details={"key": key}) from exc

    # ---- active task (always key-value) ----

    async def save_active_task(self, task: ActiveTask) -> None:
        await self._kv_set(ACTIVE_TASK_KEY, json.dumps(task.to_dict()).encode("utf-8"))

    async def get_active_task(self) -> ActiveTask | None:
        raw = await self._kv_get(ACTIVE_TASK_KEY)
        if raw is None:
            return None
        try:
            record = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            record = None

        result = validate_active_task(record)
        if not result:
            logger.warning("Discarding malformed active task record: %s", "; ".join(result.errors))
            await self._kv_remove(ACTIVE_TASK_KEY)
            return None
        return ActiveTask.from_dict(record)

    async def clear_active_task(self) -> None:
        await self._kv_remove(ACTIVE_TASK_KEY)

    # ---- history ----

    async def get_history(self) -> list[HistoryEntry]:
        handle = self._file_handle
        if handle is not None:
            try:
                payload = await _read_file_payload(handle)
            except Exception:
                logger.warning("File read failed, falling back to key-value storage", exc_info=True)
                await self._degrade(full_log_follows=False)
            else:
                entries = decode_history_records(payload)
                self._last_file_history = list(entries)
                return entries

        return await self._get_kv_history()

    async def _get_kv_history(self) -> list[HistoryEntry]:
        raw = await self._kv_get(HISTORY_KEY)
        if raw is None:
            return []
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptHistoryError("Stored history is not valid JSON") from exc
        return decode_history_records([] if payload is None else payload)

    async def save_history(self, entries: Sequence[HistoryEntry]) -> bool:
        """Write the full log. Returns True when it landed in the data file."""
        entries = list(entries)
        payload = _encode_history(entries)
        handle = self._file_handle
        if handle is not None:
            try:
                await handle.write_text(payload)
            except Exception:
                logger.warning("File write failed, falling back to key-value storage", exc_info=True)
                await self._degrade(full_log_follows=True)
            else:
                self._last_file_history = entries
                return True
        await self._kv_set(HISTORY_KEY, payload.encode("utf-8"))
        return False

    async def add_history_entry(self, entry: HistoryEntry) -> bool:
        history = await self.get_history()
        history.append(entry)
        return await self.save_history(history)

    async def clear_history(self) -> None:
        handle = self._file_handle
        if handle is not None:
            try:
                await handle.write_text("[]")
            except Exception:
                logger.warning("File clear failed, clearing key-value storage only", exc_info=True)
                await self._degrade(full_log_follows=True)
            else:
                self._last_file_history = []
        elif self._resync_mode is not None:
            # A merge would bring cleared entries back from the file.
            await self._set_resync_mode(RESYNC_REPLACE)
        await self._kv_remove(HISTORY_KEY)

    # ---- import / export ----

    async def export_history(self) -> str:
        return generate_json_content(await self.get_history())

    async def export_history_as_csv(self, *, tz: tzinfo | None = None) -> str:
        return generate_csv_content(await self.get_history(), tz=tz)

    async def import_history(self, data: bytes | str) -> list[HistoryEntry]:
        """
        Replace the history log with an imported one. All-or-nothing: any invalid
        record rejects the whole payload before anything is written.
        """
        raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if len(raw) > self._import_max_bytes:
            limit_mb = self._import_max_bytes / (1024 * 1024)
            raise ImportRejectedError(
                f"File is too large. Maximum size is {limit_mb:g}MB.",
                details={"size": len(raw), "limit": self._import_max_bytes},
            )

        try:
            payload = json.loads(raw.decode("utf-8-sig"))
        except UnicodeDecodeError as exc:
            raise ImportRejectedError("file is not UTF-8 text") from exc
        except json.JSONDecodeError as exc:
            raise ImportRejectedError(f"not valid JSON ({exc.msg} at line {exc.lineno})") from exc

        if not isinstance(payload, list):
            raise ImportRejectedError("expected an array of history entries")

        now_ms = self._clock.now_ms()
        seen_ids: set[str] = set()
        entries: list[HistoryEntry] = []
        for index, record in enumerate(payload):
            result = validate_history_entry(record, now_ms=now_ms, retention_ms=self._retention_ms)
            if not result:
                raise ImportRejectedError(
                    f"invalid history entry at index {index}: {'; '.join(result.errors)}",
                    details={"index": index, "errors": list(result.errors)},
                )
            if record["id"] in seen_ids:
                raise ImportRejectedError(
                    f"duplicate entry id {record['id']!r} at index {index}",
                    details={"index": index},
                )
            seen_ids.add(record["id"])
            entries.append(HistoryEntry.from_dict(record))

        if not await self.save_history(entries) and self._resync_mode is not None:
            # The imported log replaces whatever the data file holds.
            await self._set_resync_mode(RESYNC_REPLACE)
        logger.info("Imported %d history entries", len(entries))
        return entries
