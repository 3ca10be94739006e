from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, Column, DateTime, event
from sqlmodel import Field, SQLModel

from .clock import local_now
from .errors import LedgerIntegrityError


class UserRole(str, Enum):
    user = "user"
    admin = "admin"


class ThemeType(str, Enum):
    color = "color"
    image = "image"


class TaskStatus(str, Enum):
    pending = "pending"
    completed = "completed"


class TaskRecurrence(str, Enum):
    none = "none"
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class LedgerEntryKind(str, Enum):
    task_completion = "task_completion"
    redemption = "redemption"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    full_name: str
    hashed_password: str
    role: UserRole = Field(default=UserRole.user)
    # Written only by the Ledger.
    points_balance: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    profile_image_url: Optional[str] = None
    theme_type: ThemeType = Field(default=ThemeType.color)
    theme_value: str = Field(default="#6c5ce7")
    button_color: Optional[str] = None
    created_at: datetime = Field(default_factory=local_now, sa_type=DateTime)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    points: int = Field(sa_type=BigInteger)
    status: TaskStatus = Field(default=TaskStatus.pending)
    recurrence: TaskRecurrence = Field(default=TaskRecurrence.none)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    owner_id: int = Field(foreign_key="user.id", index=True)
    version: int = Field(default=0)
    created_at: datetime = Field(default_factory=local_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=local_now, sa_type=DateTime)


class ShopItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    points_cost: int = Field(sa_type=BigInteger)
    available: bool = Field(default=True)
    created_at: datetime = Field(default_factory=local_now, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=local_now, sa_type=DateTime)


class LedgerEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    delta: int = Field(sa_column=Column(BigInteger, nullable=False))
    kind: LedgerEntryKind
    # Soft references: admins may delete the task or item later, the entry stays.
    task_id: Optional[int] = None
    shop_item_id: Optional[int] = None
    label: str
    balance_after: int = Field(sa_column=Column(BigInteger, nullable=False))
    occurred_at: datetime = Field(sa_type=DateTime)


class TaskLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    task_id: Optional[int] = None
    task_title: str
    points_earned: int = Field(sa_type=BigInteger)
    completed_at: datetime = Field(sa_type=DateTime)


class RedemptionLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    shop_item_id: Optional[int] = None
    item_name: str
    points_spent: int = Field(sa_type=BigInteger)
    redeemed_at: datetime = Field(sa_type=DateTime)


class AuthSession(SQLModel, table=True):
    id: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=local_now, sa_type=DateTime)
    revoked_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


@event.listens_for(LedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise LedgerIntegrityError(f"ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise LedgerIntegrityError(f"ledger entry {target.id} cannot be deleted")


__all__ = [
    "User",
    "UserRole",
    "ThemeType",
    "Task",
    "TaskStatus",
    "TaskRecurrence",
    "ShopItem",
    "LedgerEntry",
    "LedgerEntryKind",
    "TaskLog",
    "RedemptionLog",
    "AuthSession",
]
