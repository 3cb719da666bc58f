# tests/test_persistent_store.py

from __future__ import annotations

import json
import threading
from datetime import timezone

import pytest

from timetracker.core.errors import CorruptHistoryError, ImportRejectedError, StorageError
from timetracker.core.models import ActiveTask, HistoryEntry, StorageType
from timetracker.storage.exporters import CSV_HEADERS
from timetracker.storage.persistent_store import (
    ACTIVE_TASK_KEY,
    FILE_HANDLE_KEY,
    FILE_RESYNC_KEY,
    HISTORY_KEY,
    RESYNC_MERGE,
    RESYNC_REPLACE,
    PersistentStore,
    merge_histories,
)

from .fakes import FakeClock, FakeFileHandle, FakeFileSystemAccess, MemoryHandleRegistry, MemoryKeyValueStore

NOW = 1_700_000_000_000


def _entry(i: int, *, name: str = "Write report", task_id: str | None = "task_1", dur: int = 60_000) -> HistoryEntry:
    start = NOW - 10 * 3_600_000 + i * 3_600_000
    return HistoryEntry(
        id=f"hist_{i}",
        task_id=task_id,
        name=name,
        start_ts=start,
        end_ts=start + dur,
        duration=dur,
    )


def _kv_history(kv: MemoryKeyValueStore) -> list[dict]:
    return json.loads(kv.data[HISTORY_KEY].decode("utf-8"))


# ---- backend selection ----


@pytest.mark.asyncio
async def test_init_without_handle_uses_key_value(storage: PersistentStore) -> None:
    await storage.init()
    status = storage.storage_status()
    assert status.file_system_supported is True
    assert status.file_handle_active is False
    assert status.storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_unsupported_capability_never_offers_file(kv, handle_registry, clock) -> None:
    storage = PersistentStore(
        kv,
        file_access=FakeFileSystemAccess(supported=False),
        handle_registry=handle_registry,
        clock=clock,
    )
    await storage.init()
    assert storage.storage_status().file_system_supported is False
    assert await storage.setup_data_file() is False


@pytest.mark.asyncio
async def test_no_file_access_at_all(kv, clock) -> None:
    storage = PersistentStore(kv, clock=clock)
    await storage.init()
    await storage.save_history([_entry(1)])
    assert [e.id for e in await storage.get_history()] == ["hist_1"]
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_setup_cancelled_returns_false(storage, file_access) -> None:
    await storage.init()
    file_access.next_handle = None
    assert await storage.setup_data_file() is False
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_setup_migrates_history_and_remembers_handle(storage, kv, file_access, handle_registry) -> None:
    await storage.init()
    await storage.save_history([_entry(1), _entry(2)])

    handle = FakeFileHandle("fake://mine.json")
    file_access.next_handle = handle
    assert await storage.setup_data_file() is True

    status = storage.storage_status()
    assert status.file_handle_active is True
    assert status.storage_type is StorageType.FILE
    assert handle_registry.get(FILE_HANDLE_KEY) == "fake://mine.json"
    assert [r["id"] for r in json.loads(handle.content)] == ["hist_1", "hist_2"]

    # History now goes to the file; the key-value copy is left alone.
    kv_before = kv.data[HISTORY_KEY]
    await storage.add_history_entry(_entry(3))
    assert kv.data[HISTORY_KEY] == kv_before
    assert [r["id"] for r in json.loads(handle.content)] == ["hist_1", "hist_2", "hist_3"]


@pytest.mark.asyncio
async def test_setup_fails_when_new_file_cannot_be_written(storage, file_access, handle_registry) -> None:
    await storage.init()
    handle = FakeFileHandle()
    handle.fail_write = True
    file_access.next_handle = handle

    assert await storage.setup_data_file() is False
    assert handle_registry.get(FILE_HANDLE_KEY) is None
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_init_reacquires_persisted_handle(kv, clock) -> None:
    access = FakeFileSystemAccess()
    handle = FakeFileHandle("fake://kept.json", json.dumps([_entry(1).to_dict()]))
    access.handles[handle.reference] = handle
    registry = MemoryHandleRegistry()
    registry.put(FILE_HANDLE_KEY, handle.reference)

    storage = PersistentStore(kv, file_access=access, handle_registry=registry, clock=clock)
    await storage.init()

    assert storage.storage_status().storage_type is StorageType.FILE
    assert [e.id for e in await storage.get_history()] == ["hist_1"]


@pytest.mark.asyncio
async def test_init_purges_invalid_handle_reference(kv, clock) -> None:
    access = FakeFileSystemAccess()
    registry = MemoryHandleRegistry()
    registry.put(FILE_HANDLE_KEY, "fake://gone.json")

    storage = PersistentStore(kv, file_access=access, handle_registry=registry, clock=clock)
    await storage.init()

    assert storage.storage_status().storage_type is StorageType.KEY_VALUE
    assert registry.get(FILE_HANDLE_KEY) is None


# ---- fallback ----


@pytest.mark.asyncio
async def test_file_read_failure_falls_back_to_key_value(storage, kv, file_access, handle_registry) -> None:
    await storage.init()
    await storage.save_history([_entry(1)])
    handle = FakeFileHandle()
    file_access.next_handle = handle
    assert await storage.setup_data_file()

    handle.fail_read = True
    history = await storage.get_history()

    assert [e.id for e in history] == ["hist_1"]
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE
    # Reference survives so the next start retries the file.
    assert handle_registry.get(FILE_HANDLE_KEY) == handle.reference


@pytest.mark.asyncio
async def test_file_write_failure_falls_back_to_key_value(storage, kv, file_access) -> None:
    await storage.init()
    handle = FakeFileHandle()
    file_access.next_handle = handle
    assert await storage.setup_data_file()

    handle.fail_write = True
    landed_in_file = await storage.save_history([_entry(1)])

    assert landed_in_file is False
    assert [r["id"] for r in _kv_history(kv)] == ["hist_1"]
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_unparsable_file_degrades_instead_of_raising(storage, kv, file_access) -> None:
    await storage.init()
    handle = FakeFileHandle()
    file_access.next_handle = handle
    assert await storage.setup_data_file()

    handle.content = "{not json"
    assert await storage.get_history() == []
    assert storage.storage_status().storage_type is StorageType.KEY_VALUE


@pytest.mark.asyncio
async def test_key_value_failure_surfaces_as_storage_error(storage, kv) -> None:
    await storage.init()
    kv.fail = True
    with pytest.raises(StorageError):
        await storage.get_history()
    with pytest.raises(StorageError):
        await storage.save_history([_entry(1)])


async def _file_backed(kv, file_access, handle_registry, clock, handle: FakeFileHandle) -> PersistentStore:
    file_access.handles[handle.reference] = handle
    handle_registry.put(FILE_HANDLE_KEY, handle.reference)
    storage = PersistentStore(kv, file_access=file_access, handle_registry=handle_registry, clock=clock)
    await storage.init()
    return storage


@pytest.mark.asyncio
async def test_write_fallback_is_replayed_into_file_on_next_start(kv, file_access, handle_registry, clock) -> None:
    handle = FakeFileHandle(content=json.dumps([_entry(1).to_dict()]))
    storage = await _file_backed(kv, file_access, handle_registry, clock, handle)

    handle.fail_write = True
    await storage.add_history_entry(_entry(2))
    assert kv.data[FILE_RESYNC_KEY] == RESYNC_REPLACE.encode("utf-8")

    handle.fail_write = False
    restarted = await _file_backed(kv, file_access, handle_registry, clock, handle)

    assert restarted.storage_status().storage_type is StorageType.FILE
    assert [e.id for e in await restarted.get_history()] == ["hist_1", "hist_2"]
    assert FILE_RESYNC_KEY not in kv.data


@pytest.mark.asyncio
async def test_read_fallback_seeds_key_value_with_last_file_log(kv, file_access, handle_registry, clock) -> None:
    # A stale key-value copy from before the data file was set up.
    kv.data[HISTORY_KEY] = json.dumps([_entry(9).to_dict()]).encode("utf-8")
    handle = FakeFileHandle(content=json.dumps([_entry(1).to_dict(), _entry(2).to_dict()]))
    storage = await _file_backed(kv, file_access, handle_registry, clock, handle)
    assert len(await storage.get_history()) == 2

    handle.fail_read = True
    await storage.add_history_entry(_entry(3))

    assert [r["id"] for r in _kv_history(kv)] == ["hist_1", "hist_2", "hist_3"]


@pytest.mark.asyncio
async def test_unseeded_read_fallback_merges_both_logs(kv, file_access, handle_registry, clock) -> None:
    handle = FakeFileHandle(content=json.dumps([_entry(1).to_dict(), _entry(3).to_dict()]))
    handle.fail_read = True
    storage = await _file_backed(kv, file_access, handle_registry, clock, handle)

    await storage.add_history_entry(_entry(2))
    assert kv.data[FILE_RESYNC_KEY] == RESYNC_MERGE.encode("utf-8")

    handle.fail_read = False
    restarted = await _file_backed(kv, file_access, handle_registry, clock, handle)

    assert [e.id for e in await restarted.get_history()] == ["hist_1", "hist_2", "hist_3"]


@pytest.mark.asyncio
async def test_import_during_fallback_replaces_file_on_next_start(kv, file_access, handle_registry, clock) -> None:
    handle = FakeFileHandle(content=json.dumps([_entry(1).to_dict()]))
    handle.fail_read = True
    storage = await _file_backed(kv, file_access, handle_registry, clock, handle)
    await storage.get_history()

    await storage.import_history(json.dumps([_entry(4).to_dict()]))
    assert kv.data[FILE_RESYNC_KEY] == RESYNC_REPLACE.encode("utf-8")

    handle.fail_read = False
    restarted = await _file_backed(kv, file_access, handle_registry, clock, handle)
    assert [e.id for e in await restarted.get_history()] == ["hist_4"]


@pytest.mark.asyncio
async def test_failed_resync_stays_on_key_value(kv, file_access, handle_registry, clock) -> None:
    handle = FakeFileHandle(content="[]")
    storage = await _file_backed(kv, file_access, handle_registry, clock, handle)
    handle.fail_write = True
    await storage.save_history([_entry(1)])

    restarted = await _file_backed(kv, file_access, handle_registry, clock, handle)

    assert restarted.storage_status().storage_type is StorageType.KEY_VALUE
    assert [e.id for e in await restarted.get_history()] == ["hist_1"]
    assert FILE_RESYNC_KEY in kv.data


def test_merge_histories_unions_by_id_in_start_order() -> None:
    merged = merge_histories([_entry(3), _entry(1)], [_entry(2), _entry(1, name="Other")])
    assert [e.id for e in merged] == ["hist_1", "hist_2", "hist_3"]
    assert merged[0].name == "Write report"


@pytest.mark.asyncio
async def test_key_value_calls_run_off_the_event_loop_thread(kv, clock) -> None:
    loop_thread = threading.get_ident()
    seen: list[int] = []
    original_get = kv.get

    def tracking_get(key: str) -> bytes | None:
        seen.append(threading.get_ident())
        return original_get(key)

    kv.get = tracking_get
    storage = PersistentStore(kv, clock=clock)
    await storage.get_history()
    await storage.get_active_task()

    assert len(seen) == 2
    assert loop_thread not in seen


# ---- active task ----


@pytest.mark.asyncio
async def test_active_task_always_lives_in_key_value(storage, kv, file_access) -> None:
    await storage.init()
    handle = FakeFileHandle()
    file_access.next_handle = handle
    assert await storage.setup_data_file()

    task = ActiveTask(id="task_9", task_id="task_1", name="Email", start_ts=NOW, last_notif_ts=NOW)
    await storage.save_active_task(task)

    assert ACTIVE_TASK_KEY in kv.data
    assert "Email" not in handle.content
    assert await storage.get_active_task() == task

    await storage.clear_active_task()
    assert await storage.get_active_task() is None


@pytest.mark.asyncio
async def test_malformed_active_task_is_discarded(storage, kv) -> None:
    kv.data[ACTIVE_TASK_KEY] = b'{"id": "x", "name": "no task id"}'
    assert await storage.get_active_task() is None
    assert ACTIVE_TASK_KEY not in kv.data


# ---- history decoding ----


@pytest.mark.asyncio
async def test_legacy_entries_without_task_id_load(storage, kv) -> None:
    record = _entry(1).to_dict()
    del record["taskId"]
    kv.data[HISTORY_KEY] = json.dumps([record]).encode("utf-8")

    history = await storage.get_history()
    assert history[0].task_id is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        b"{broken",
        b'{"id": "x"}',
        b'["not an object"]',
        b'[{"name": "no id", "startTs": 1, "endTs": 2, "duration": 1}]',
    ],
)
async def test_corrupt_history_raises(storage, kv, payload: bytes) -> None:
    kv.data[HISTORY_KEY] = payload
    with pytest.raises(CorruptHistoryError):
        await storage.get_history()


@pytest.mark.asyncio
async def test_clear_history_empties_both_backends(storage, kv, file_access) -> None:
    await storage.init()
    await storage.save_history([_entry(1)])
    handle = FakeFileHandle()
    file_access.next_handle = handle
    assert await storage.setup_data_file()

    await storage.clear_history()
    assert handle.content == "[]"
    assert HISTORY_KEY not in kv.data
    assert await storage.get_history() == []


# ---- import ----


@pytest.mark.asyncio
async def test_import_replaces_history(storage) -> None:
    await storage.save_history([_entry(1)])
    payload = json.dumps([_entry(2).to_dict(), _entry(3).to_dict()]).encode("utf-8")

    imported = await storage.import_history(payload)

    assert [e.id for e in imported] == ["hist_2", "hist_3"]
    assert [e.id for e in await storage.get_history()] == ["hist_2", "hist_3"]


@pytest.mark.asyncio
async def test_import_accepts_utf8_bom_and_str(storage) -> None:
    text = json.dumps([_entry(2).to_dict()])
    assert len(await storage.import_history("\ufeff" + text)) == 1
    assert len(await storage.import_history(b"\xef\xbb\xbf" + text.encode("utf-8"))) == 1


@pytest.mark.asyncio
async def test_rejected_import_leaves_history_untouched(storage, kv) -> None:
    await storage.save_history([_entry(1)])
    before = kv.data[HISTORY_KEY]

    bad = _entry(3).to_dict()
    bad["duration"] = bad["duration"] + 1
    payload = json.dumps([_entry(2).to_dict(), bad]).encode("utf-8")

    with pytest.raises(ImportRejectedError) as exc_info:
        await storage.import_history(payload)

    assert str(exc_info.value).startswith("Invalid file format: ")
    assert exc_info.value.details["index"] == 1
    assert kv.data[HISTORY_KEY] == before


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        b"not json at all",
        b'{"id": "hist_1"}',
        b"\xff\xfe\x00",
    ],
)
async def test_import_rejects_malformed_payloads(storage, payload: bytes) -> None:
    with pytest.raises(ImportRejectedError):
        await storage.import_history(payload)


@pytest.mark.asyncio
async def test_import_rejects_duplicate_ids(storage) -> None:
    record = _entry(2).to_dict()
    payload = json.dumps([record, record]).encode("utf-8")
    with pytest.raises(ImportRejectedError, match="duplicate"):
        await storage.import_history(payload)


@pytest.mark.asyncio
async def test_import_rejects_future_and_expired_entries(storage, clock: FakeClock) -> None:
    future = _entry(2).to_dict()
    future["endTs"] = NOW + 1000
    future["duration"] = future["endTs"] - future["startTs"]
    with pytest.raises(ImportRejectedError):
        await storage.import_history(json.dumps([future]))

    clock.advance(400 * 24 * 3_600_000)
    with pytest.raises(ImportRejectedError):
        await storage.import_history(json.dumps([_entry(2).to_dict()]))


@pytest.mark.asyncio
async def test_import_size_ceiling(kv, clock) -> None:
    storage = PersistentStore(kv, clock=clock, import_max_bytes=100)
    payload = json.dumps([_entry(2).to_dict()]).encode("utf-8")
    assert len(payload) > 100

    with pytest.raises(ImportRejectedError, match="too large"):
        await storage.import_history(payload)
    assert HISTORY_KEY not in kv.data


# ---- export ----


@pytest.mark.asyncio
async def test_json_export_is_lossless(storage) -> None:
    entries = [_entry(1), _entry(2, task_id=None)]
    await storage.save_history(entries)

    exported = json.loads(await storage.export_history())
    assert exported == [e.to_dict() for e in entries]
    assert set(exported[0]) == {"id", "taskId", "name", "startTs", "endTs", "duration"}


@pytest.mark.asyncio
async def test_csv_export_quotes_and_sorts(storage) -> None:
    await storage.save_history(
        [
            _entry(1, name="Meeting, Weekly", dur=5_400_000),
            _entry(3, name="Plain"),
        ]
    )

    csv_text = await storage.export_history_as_csv(tz=timezone.utc)
    lines = csv_text.split("\n")

    assert lines[0] == ",".join(CSV_HEADERS)
    assert len(lines) == 3
    # Most recent start first.
    assert lines[1].startswith("Plain,General,")
    assert lines[2].startswith('"Meeting, Weekly",General,')
    assert "1h 30m 0s,1.5000,task_1,hist_1" in lines[2]


@pytest.mark.asyncio
async def test_csv_export_renders_requested_timezone(storage) -> None:
    entry = HistoryEntry(
        id="hist_x",
        task_id="task_1",
        name="Standup",
        start_ts=NOW,
        end_ts=NOW + 900_000,
        duration=900_000,
    )
    await storage.save_history([entry])

    row = (await storage.export_history_as_csv(tz=timezone.utc)).split("\n")[1]
    assert row.split(",")[2:6] == ["2023-11-14", "22:13:20", "2023-11-14", "22:28:20"]
