from datetime import datetime, timedelta

import pytest

from taskpoints.models import Task, TaskRecurrence, TaskStatus
from taskpoints.recurrence import (
    available_in,
    describe_wait,
    effective_status,
    next_available_at,
)


def completed_task(recurrence, completed_at):
    return Task(
        id=1,
        title="Chore",
        points=5,
        owner_id=1,
        recurrence=recurrence,
        status=TaskStatus.completed,
        completed_at=completed_at,
    )


def test_daily_resets_at_next_midnight():
    task = completed_task(TaskRecurrence.daily, datetime(2025, 1, 15, 23, 30))
    assert next_available_at(task.recurrence, task.completed_at) == datetime(2025, 1, 16)
    assert effective_status(task, datetime(2025, 1, 15, 23, 59)) == TaskStatus.completed
    assert effective_status(task, datetime(2025, 1, 16, 0, 0)) == TaskStatus.pending


def test_daily_completed_exactly_at_midnight_waits_a_full_day():
    assert next_available_at(TaskRecurrence.daily, datetime(2025, 1, 16)) == datetime(2025, 1, 17)


def test_weekly_resets_on_following_monday():
    wednesday = datetime(2025, 1, 15, 9, 0)
    task = completed_task(TaskRecurrence.weekly, wednesday)
    assert next_available_at(task.recurrence, wednesday) == datetime(2025, 1, 20)
    assert effective_status(task, datetime(2025, 1, 19, 23, 59)) == TaskStatus.completed
    assert effective_status(task, datetime(2025, 1, 20, 0, 0)) == TaskStatus.pending


@pytest.mark.parametrize("hour", [0, 8, 23])
def test_weekly_completed_on_monday_never_resets_same_day(hour):
    monday = datetime(2025, 1, 13, hour, 0)
    assert next_available_at(TaskRecurrence.weekly, monday) == datetime(2025, 1, 20)


def test_weekly_completed_on_sunday_resets_next_day():
    assert next_available_at(TaskRecurrence.weekly, datetime(2025, 1, 19, 22, 0)) == datetime(2025, 1, 20)


def test_monthly_resets_on_first_of_next_month():
    task = completed_task(TaskRecurrence.monthly, datetime(2025, 1, 15, 10, 0))
    assert next_available_at(task.recurrence, task.completed_at) == datetime(2025, 2, 1)
    assert effective_status(task, datetime(2025, 1, 31, 23, 59)) == TaskStatus.completed
    assert effective_status(task, datetime(2025, 2, 1)) == TaskStatus.pending


def test_monthly_december_rolls_into_next_year():
    assert next_available_at(TaskRecurrence.monthly, datetime(2025, 12, 31, 23, 0)) == datetime(2026, 1, 1)


def test_non_recurring_task_never_resets():
    task = completed_task(TaskRecurrence.none, datetime(2025, 1, 15, 10, 0))
    assert next_available_at(task.recurrence, task.completed_at) is None
    assert effective_status(task, datetime(2035, 1, 1)) == TaskStatus.completed
    assert available_in(task.recurrence, task.completed_at, datetime(2025, 1, 16)) is None


def test_pending_task_is_pending_regardless_of_time():
    task = Task(id=1, title="Chore", points=5, owner_id=1, recurrence=TaskRecurrence.daily)
    assert effective_status(task, datetime(2025, 1, 15)) == TaskStatus.pending


def test_available_in_is_recomputed_and_clamped():
    completed_at = datetime(2025, 1, 15, 18, 30)
    assert available_in(TaskRecurrence.daily, completed_at, datetime(2025, 1, 15, 18, 30)) == timedelta(
        hours=5, minutes=30
    )
    assert available_in(TaskRecurrence.daily, completed_at, datetime(2025, 1, 15, 23, 0)) == timedelta(hours=1)
    assert available_in(TaskRecurrence.daily, completed_at, datetime(2025, 1, 17)) == timedelta(0)


def test_describe_wait():
    assert describe_wait(timedelta(hours=5, minutes=30)) == "5h 30min"
    assert describe_wait(timedelta(minutes=4)) == "0h 4min"
    assert describe_wait(timedelta(days=1)) == "1 day"
    assert describe_wait(timedelta(days=4, hours=12)) == "5 days"
    assert describe_wait(timedelta(0)) == "now"
