from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .ledger import MAX_BALANCE
from .models import (
    LedgerEntryKind,
    Task,
    TaskRecurrence,
    TaskStatus,
    ThemeType,
    UserRole,
)
from .recurrence import available_in, effective_status, task_resets_at


class UserRead(SQLModel):
    id: int
    username: str
    full_name: str
    role: UserRole
    points_balance: int
    profile_image_url: Optional[str] = None
    theme_type: ThemeType
    theme_value: str
    button_color: Optional[str] = None


class UserCreate(SQLModel):
    username: str = Field(min_length=1, max_length=64)
    full_name: str = Field(min_length=1)
    password: str = Field(min_length=1)
    role: UserRole = UserRole.user


class LoginRequest(SQLModel):
    username: str
    password: str


class AuthResponse(SQLModel):
    token: str
    type: str = "Bearer"
    user: UserRead


class ProfileImageUpdate(SQLModel):
    image_url: str


class NameUpdate(SQLModel):
    full_name: str = Field(min_length=1)


class SettingsUpdate(SQLModel):
    theme_type: ThemeType
    theme_value: str
    button_color: Optional[str] = None


class TaskWrite(SQLModel):
    """Admin payload for creating or replacing a task definition."""

    title: str = Field(min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    points: int = Field(gt=0, le=MAX_BALANCE)
    recurrence: TaskRecurrence = TaskRecurrence.none
    owner_id: int


class TaskRead(SQLModel):
    """A task as seen at a given instant, with the lazy reset applied."""

    id: int
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    points: int
    status: TaskStatus
    recurrence: TaskRecurrence
    owner_id: int
    created_at: datetime
    completed_at: Optional[datetime] = None
    next_available_at: Optional[datetime] = None
    available_in_seconds: Optional[int] = None

    @classmethod
    def from_task(cls, task: Task, now: datetime) -> "TaskRead":
        status = effective_status(task, now)
        completed_at = task.completed_at if status == TaskStatus.completed else None
        resets_at = task_resets_at(task) if status == TaskStatus.completed else None
        wait = None
        if resets_at is not None:
            wait = int(available_in(task.recurrence, task.completed_at, now).total_seconds())
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            image_url=task.image_url,
            points=task.points,
            status=status,
            recurrence=task.recurrence,
            owner_id=task.owner_id,
            created_at=task.created_at,
            completed_at=completed_at,
            next_available_at=resets_at,
            available_in_seconds=wait,
        )


class TaskSummary(SQLModel):
    pending: int
    completed: int


class CompletionRead(SQLModel):
    task: TaskRead
    points_earned: int
    balance: int
    next_available_at: Optional[datetime] = None
    available_in_seconds: Optional[int] = None
    availability_note: Optional[str] = None


class ShopItemWrite(SQLModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    points_cost: int = Field(gt=0, le=MAX_BALANCE)
    available: bool = True


class ShopItemRead(SQLModel):
    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    points_cost: int
    available: bool


class TaskLogRead(SQLModel):
    id: int
    task_id: Optional[int] = None
    task_title: str
    points_earned: int
    completed_at: datetime


class RedemptionLogRead(SQLModel):
    id: int
    shop_item_id: Optional[int] = None
    item_name: str
    points_spent: int
    redeemed_at: datetime


class RedemptionRead(SQLModel):
    item: ShopItemRead
    points_spent: int
    balance: int
    redemption: RedemptionLogRead


class LedgerEntryRead(SQLModel):
    id: int
    delta: int
    kind: LedgerEntryKind
    task_id: Optional[int] = None
    shop_item_id: Optional[int] = None
    label: str
    balance_after: int
    occurred_at: datetime


class LedgerReport(SQLModel):
    user_id: int
    balance: int
    entries_total: int
    entry_count: int
