"""When a completed recurring task becomes available again.

All functions here are pure: they take the stored ``completed_at`` and the
current time and derive the answer, so a task never needs a timer to flip
back to pending. Times are naive household-local datetimes.
"""

import math
from datetime import date, datetime, time, timedelta
from typing import Optional

from .models import Task, TaskRecurrence, TaskStatus


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def next_available_at(recurrence: TaskRecurrence, completed_at: datetime) -> Optional[datetime]:
    """Instant at which a task completed at ``completed_at`` resets.

    Returns ``None`` for non-recurring tasks, which stay completed forever.
    Every boundary is strictly after ``completed_at``.
    """
    if recurrence == TaskRecurrence.daily:
        return _midnight(completed_at.date() + timedelta(days=1))
    if recurrence == TaskRecurrence.weekly:
        # Monday is weekday 0, so a Monday completion waits the full 7 days.
        return _midnight(completed_at.date() + timedelta(days=7 - completed_at.weekday()))
    if recurrence == TaskRecurrence.monthly:
        if completed_at.month == 12:
            return _midnight(date(completed_at.year + 1, 1, 1))
        return _midnight(date(completed_at.year, completed_at.month + 1, 1))
    return None


def task_resets_at(task: Task) -> Optional[datetime]:
    if task.status != TaskStatus.completed or task.completed_at is None:
        return None
    return next_available_at(task.recurrence, task.completed_at)


def effective_status(task: Task, now: datetime) -> TaskStatus:
    if task.status == TaskStatus.pending:
        return TaskStatus.pending
    reset_at = task_resets_at(task)
    if reset_at is not None and now >= reset_at:
        return TaskStatus.pending
    return TaskStatus.completed


def available_in(
    recurrence: TaskRecurrence, completed_at: datetime, now: datetime
) -> Optional[timedelta]:
    reset_at = next_available_at(recurrence, completed_at)
    if reset_at is None:
        return None
    return max(reset_at - now, timedelta(0))


def describe_wait(delta: timedelta) -> str:
    """Render a wait as "5h 30min" under a day, whole days (rounded up) above."""
    seconds = int(delta.total_seconds())
    if seconds <= 0:
        return "now"
    if seconds < 24 * 3600:
        hours, remainder = divmod(seconds, 3600)
        return f"{hours}h {remainder // 60}min"
    days = math.ceil(seconds / (24 * 3600))
    return f"{days} day" if days == 1 else f"{days} days"
