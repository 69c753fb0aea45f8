"""
Reminder scheduling port.

The task core only decides *when* reminders should exist; delivery is someone
else's job. The router and series engine talk to a ReminderScheduler, which the
app wires up at startup.
"""
import logging
from datetime import datetime, timedelta
from typing import Protocol

from models import Task

logger = logging.getLogger(__name__)


class ReminderScheduler(Protocol):
    def schedule(self, task: Task) -> None: ...

    def cancel(self, task_id: str) -> None: ...


def fire_times(task: Task) -> list[datetime]:
    """One fire time per reminder offset; empty without a due date or when done."""
    if task.due_at is None or task.is_done:
        return []
    return [task.due_at - timedelta(minutes=offset) for offset in task.reminder_offsets]


class LoggingReminderScheduler:
    """Keeps the pending fire times in memory and logs them."""

    def __init__(self):
        self.pending: dict[str, list[datetime]] = {}

    def schedule(self, task: Task) -> None:
        self.cancel(task.id)
        times = fire_times(task)
        if times:
            self.pending[task.id] = times
            logger.info("Scheduled %d reminder(s) for %s (%r)", len(times), task.id, task.title)

    def cancel(self, task_id: str) -> None:
        if self.pending.pop(task_id, None):
            logger.info("Canceled reminders for %s", task_id)
