# src/timetracker/tasks/reminder.py

"""
Reminder poll.

A small polling loop that:
- asks the manager whether the active task is due for a reminder,
- hands the task to an injected notifier port,
- records the reminder time on the active task.

How the reminder reaches the user (console line, desktop popup) belongs to the notifier.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..core.ports import Notifier
from ..core.state import Slice
from .task_manager import TaskManager

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 0.5

IntervalSource = float | Callable[[], float]


def _resolve_interval(interval_seconds: IntervalSource) -> float:
    raw = interval_seconds() if callable(interval_seconds) else interval_seconds
    return max(MIN_INTERVAL_SECONDS, float(raw))


async def check_and_notify(manager: TaskManager, notifier: Notifier) -> bool:
    """One poll step. Returns True when a reminder was delivered."""
    if not manager.should_show_notification():
        return False

    task = manager.state.get(Slice.CURRENT_TASK)
    if task is None:
        return False

    try:
        await notifier.notify(task)
    except Exception:
        logger.exception("Reminder delivery failed task=%r", task.name)
        return False

    await manager.update_notification_timestamp()
    logger.debug("Reminder delivered task=%r", task.name)
    return True


async def run_reminder_loop(
        manager: TaskManager,
        notifier: Notifier,
        *,
        interval_seconds: IntervalSource = 60.0,
) -> None:
    """
    Poll every interval_seconds (a number, or a callable read before each sleep so
    preference changes apply without a restart).

    Failures inside a step are logged and the loop continues.
    To stop the loop, cancel the coroutine/task.
    """
    while True:
        try:
            await check_and_notify(manager, notifier)
        except Exception:
            logger.exception("Reminder poll failed")

        await asyncio.sleep(_resolve_interval(interval_seconds))
