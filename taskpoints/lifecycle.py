"""Task completion and the task read paths.

Recurring tasks are never reset by a write. Every read derives the current
status from ``completed_at``, ``recurrence`` and the clock, and completion
evaluates its precondition the same way, so a stale ``completed`` row whose
reset instant has passed can be completed again.
"""

import logging
from datetime import datetime

from sqlalchemy import func, update
from sqlmodel import Session, select

from .clock import Clock
from .errors import Conflict, Forbidden, InvalidState, NotFound
from .ledger import Ledger
from .models import Task, TaskLog, TaskStatus, User
from .recurrence import available_in, describe_wait, effective_status, next_available_at
from .schemas import CompletionRead, TaskRead

logger = logging.getLogger(__name__)


class TaskLifecycle:
    def __init__(self, session: Session, ledger: Ledger, clock: Clock):
        self.session = session
        self.ledger = ledger
        self.clock = clock

    def complete_task(self, task_id: int, acting_user: User) -> CompletionRead:
        task = self.session.get(Task, task_id)
        if not task:
            raise NotFound("Task not found")
        if task.owner_id != acting_user.id and not acting_user.is_admin:
            raise Forbidden("Task belongs to another user")

        owner_id = task.owner_id
        with self.ledger.locked(owner_id):
            try:
                self.session.refresh(task)
                now = self.clock.now()
                if effective_status(task, now) != TaskStatus.pending:
                    raise InvalidState("Task is not pending")
                observed = task.version
                result = self.session.exec(
                    update(Task)
                    .where(Task.id == task.id, Task.version == observed)
                    .values(
                        status=TaskStatus.completed,
                        completed_at=now,
                        updated_at=now,
                        version=observed + 1,
                    )
                )
                if result.rowcount == 0:
                    raise Conflict("Task was modified concurrently, retry")
                entry = self.ledger.credit(owner_id, task.points, task=task)
                self.session.add(
                    TaskLog(
                        user_id=owner_id,
                        task_id=task.id,
                        task_title=task.title,
                        points_earned=task.points,
                        completed_at=now,
                    )
                )
                points, balance = task.points, entry.balance_after
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

        self.session.refresh(task)
        logger.info(
            "task %s completed by user %s: +%s points, balance %s",
            task.id,
            acting_user.id,
            points,
            balance,
        )
        resets_at = next_available_at(task.recurrence, now)
        wait = available_in(task.recurrence, now, now)
        return CompletionRead(
            task=TaskRead.from_task(task, now),
            points_earned=points,
            balance=balance,
            next_available_at=resets_at,
            available_in_seconds=int(wait.total_seconds()) if wait is not None else None,
            availability_note=f"Available again in {describe_wait(wait)}" if wait is not None else None,
        )

    def _views(self, tasks: list[Task], now: datetime) -> list[TaskRead]:
        views = [TaskRead.from_task(task, now) for task in tasks]
        return sorted(views, key=lambda v: (v.status != TaskStatus.pending, v.title.lower(), v.id))

    def tasks_for(self, user: User) -> list[TaskRead]:
        tasks = self.session.exec(select(Task).where(Task.owner_id == user.id)).all()
        return self._views(list(tasks), self.clock.now())

    def pending_tasks_for(self, user: User) -> list[TaskRead]:
        return [view for view in self.tasks_for(user) if view.status == TaskStatus.pending]

    def pending_count_for(self, user: User) -> int:
        return len(self.pending_tasks_for(user))

    def all_tasks(self) -> list[TaskRead]:
        tasks = self.session.exec(select(Task)).all()
        return self._views(list(tasks), self.clock.now())

    def completed_count_for(self, user: User) -> int:
        total = self.session.exec(
            select(func.count(TaskLog.id)).where(TaskLog.user_id == user.id)
        ).one()
        return int(total or 0)

    def task_history_for(self, user: User, page: int = 1, size: int = 20) -> list[TaskLog]:
        return list(
            self.session.exec(
                select(TaskLog)
                .where(TaskLog.user_id == user.id)
                .order_by(TaskLog.completed_at.desc(), TaskLog.id.desc())
                .offset((page - 1) * size)
                .limit(size)
            ).all()
        )
