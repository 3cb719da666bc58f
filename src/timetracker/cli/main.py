# src/timetracker/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, loads persisted state, then runs on one event loop:
- the reminder poll as a background task,
- the console REPL in the foreground (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..core.state import AppState
from ..core.utils import SystemClock
from ..logging_setup import setup_logging
from ..tasks.reminder import run_reminder_loop

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    await state.manager.initialize()

    notifier = ConsoleNotifier(SystemClock().now_ms)
    reminder = asyncio.create_task(
        run_reminder_loop(
            state.manager,
            notifier,
            interval_seconds=state.preferences.get_notification_interval_seconds,
        ),
        name="reminder",
    )

    try:
        if state.settings.console_enabled:
            await run_console_loop(state)
        else:
            logger.info("Console disabled. Running reminders only. Press Ctrl+C to stop.")
            await reminder
    finally:
        reminder.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reminder


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")
    finally:
        # SQLite stores use short-lived connections per call; no explicit close required.
        logger.info("Bye.")


if __name__ == "__main__":
    main()
