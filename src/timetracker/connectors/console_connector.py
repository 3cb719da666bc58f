# src/timetracker/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.errors import TimeTrackerError
from ..core.models import ActiveTask
from ..core.state import AppState, Slice
from ..core.utils import format_duration

logger = logging.getLogger(__name__)

ReadLine = Callable[[str], str]


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """Notifier port for the console: prints a reminder line."""

    def __init__(self, clock_ms: Callable[[], int], out: Callable[[str], None] = _print_ts) -> None:
        self._clock_ms = clock_ms
        self._out = out

    async def notify(self, task: ActiveTask) -> None:
        elapsed = max(0, self._clock_ms() - task.start_ts)
        self._out(f"[REMINDER] Still working on {task.name!r}? ({format_duration(elapsed)} so far)")


def _watch_storage(state: AppState) -> Callable[[], None]:
    def on_status(status) -> None:
        _print_ts(f"[STORAGE] now using {status.storage_type.value} storage")

    return state.state.subscribe(Slice.STORAGE_STATUS, on_status)


async def run_console_loop(state: AppState, *, read_line: ReadLine = input) -> None:
    """
    Async REPL. Blocking reads run in a worker thread so the reminder loop keeps ticking.
    Slash commands go through the command registry; plain text starts or switches a task.
    """
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Type a task name to start tracking. Use /help for commands. Use /exit to quit.\n")

    unsubscribe = _watch_storage(state)

    def emit(text: str) -> None:
        _print_ts(text)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(read_line, ">>> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                response = await command_registry.handle(state, user_input, emit=emit)
                if response is None:
                    task = await state.manager.start_task(user_input)
                    response = f"Tracking: {task.name}"
            except TimeTrackerError as e:
                response = f"Error: {e.message}"
            except Exception:
                logger.exception("Console command crashed.")
                response = "Internal error while handling the command."

            _print_ts(response)
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
