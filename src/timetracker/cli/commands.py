# src/timetracker/cli/commands.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from pathlib import Path

from ..core.errors import TimeTrackerError
from ..core.state import AppState, Slice
from ..core.utils import format_duration, to_datetime

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Core errors are turned into their message; anything else propagates.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args, emit)
        except TimeTrackerError as e:
            logger.info("/%s rejected: %s", name, e.message)
            return f"Error: {e.message}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _clock_time(ts_ms: int) -> str:
    return to_datetime(ts_ms).strftime("%H:%M:%S")


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return (
        registry.build_help()
        + "\n  /exit - Quit."
        + "\n  (plain text starts or switches to a task with that name)"
    )


async def cmd_start(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /start <task name>"
    task = await state.manager.start_task(name)
    return f"Tracking: {task.name} (since {_clock_time(task.start_ts)})"


async def cmd_stop(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    entry = await state.manager.stop_tracking()
    return f"Stopped: {entry.name} ({format_duration(entry.duration)})"


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    manager = state.manager
    current = manager.get_current_task_summary()
    status = state.state.get(Slice.STORAGE_STATUS)
    summary = manager.get_history_summary()

    tracking = (
        f"{current.name} for {current.elapsed_formatted} (since {_clock_time(current.start_ts)})"
        if current
        else "idle"
    )
    return (
        "Status:\n"
        f"  Tracking: {tracking}\n"
        f"  History: {summary.total_entries} entries, {summary.total_time_formatted} total\n"
        f"  Storage: {status.storage_type.value}"
        f" (file supported: {'yes' if status.file_system_supported else 'no'})\n"
        f"  Reminders every {state.preferences.get_formatted_notification_interval()}"
    )


async def cmd_history(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /history             -> most recent day with entries
    /history YYYY-MM-DD  -> that day
    """
    manager = state.manager
    if args:
        try:
            day = date.fromisoformat(args[0])
        except ValueError:
            return "Usage: /history [YYYY-MM-DD]"
    else:
        dates = manager.get_available_dates()
        if not dates:
            return "No history yet."
        day = dates[0]

    daily = manager.get_daily_summary(day)
    if not daily.entries:
        return f"No entries on {day.isoformat()}."

    lines = [
        f"{day.isoformat()}: {daily.total_time_formatted} across "
        f"{daily.task_count} sessions ({daily.unique_task_count} tasks)"
    ]
    for e in sorted(daily.entries, key=lambda x: x.start_ts):
        lines.append(
            f"  {_clock_time(e.start_ts)}-{_clock_time(e.end_ts)}  {e.name}  ({format_duration(e.duration)})"
        )
    return "\n".join(lines)


async def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    rows = state.manager.get_aggregated_task_summary()
    if not rows:
        return "No tasks yet."
    lines = ["Tasks (by total time):"]
    for i, r in enumerate(rows, start=1):
        lines.append(f"{i}. {r.task_name} - {r.total_time_formatted} in {r.session_count} sessions")
    return "\n".join(lines)


async def cmd_suggest(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    text = " ".join(args)
    if not text.strip():
        return "Usage: /suggest <text>"
    found = state.manager.get_task_suggestions(text)
    if not found:
        return "No matching tasks."
    return "\n".join(d.name for d in found)


async def cmd_export(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /export json <path>
    /export csv <path>
    """
    if len(args) < 2 or args[0].lower() not in ("json", "csv"):
        return "Usage: /export json|csv <path>"

    kind = args[0].lower()
    path = Path(" ".join(args[1:])).expanduser()
    if kind == "json":
        content = await state.manager.export_history()
    else:
        content = await state.manager.export_history_as_csv()

    try:
        await asyncio.to_thread(path.write_text, content, "utf-8")
    except OSError as e:
        logger.warning("Export to %s failed: %s", path, e)
        return f"Could not write {path}: {e.strerror or e}"
    return f"Exported {kind.upper()} to {path}"


async def cmd_import(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /import <path>"
    path = Path(" ".join(args)).expanduser()
    try:
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        return f"Could not read {path}: {e.strerror or e}"

    count = await state.manager.import_history(data)
    return f"Imported {count} history entries."


async def cmd_clear(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    await state.manager.clear_history()
    return "History cleared."


async def cmd_setup_file(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if args and state.file_chooser is not None:
        state.file_chooser.preset(" ".join(args))

    if not await state.manager.setup_data_file():
        status = state.state.get(Slice.STORAGE_STATUS)
        if not status.file_system_supported:
            return "File storage is not available."
        return "Data file was not set up."
    return "History is now stored in the data file."


async def cmd_prefs(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /prefs                      -> show preferences
    /prefs interval <minutes>   -> set reminder interval
    """
    prefs = state.preferences
    if not args:
        lines = ["Preferences:"]
        for key, value in prefs.get_all_settings().items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)

    if args[0].lower() == "interval" and len(args) == 2:
        try:
            minutes = int(args[1])
        except ValueError:
            return "Usage: /prefs interval <minutes>"
        prefs.set_notification_interval(minutes)
        return f"Reminder interval set to {prefs.get_formatted_notification_interval()}."

    return "Usage: /prefs [interval <minutes>]"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("start", cmd_start, help_text="Start (or switch to) a task: /start <name>.")
registry.register("stop", cmd_stop, help_text="Stop tracking the current task.")
registry.register("status", cmd_status, help_text="Show current task, history totals and storage.")
registry.register("history", cmd_history, help_text="Show one day of history: /history [YYYY-MM-DD].")
registry.register("tasks", cmd_tasks, help_text="List tasks by total tracked time.")
registry.register("suggest", cmd_suggest, help_text="Find known tasks: /suggest <text>.")
registry.register("export", cmd_export, help_text="Export history: /export json|csv <path>.")
registry.register("import", cmd_import, help_text="Replace history from a JSON export: /import <path>.")
registry.register("clear", cmd_clear, help_text="Delete all history.")
registry.register("setup-file", cmd_setup_file, help_text="Store history in a data file: /setup-file [path].")
registry.register("prefs", cmd_prefs, help_text="Show preferences or set: /prefs interval <minutes>.")
