"""Points ledger: the only writer of ``User.points_balance``.

Each credit or debit updates the cached balance with a single SQL statement
and appends an immutable ``LedgerEntry`` in the caller's transaction. The
caller commits. Debits are conditional (``WHERE points_balance >= amount``) so
two processes can never both spend the same points; inside one process the
per-user lock from :meth:`Ledger.locked` also serializes the whole unit of
work around it.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import func, update
from sqlmodel import Session, select

from .clock import Clock
from .errors import BalanceOverflow, Conflict, InsufficientBalance, LedgerIntegrityError, NotFound
from .models import LedgerEntry, LedgerEntryKind, ShopItem, Task, User

logger = logging.getLogger(__name__)

# Balances are stored as signed 64-bit integers.
MAX_BALANCE = 2**63 - 1

_registry_lock = threading.Lock()
_user_locks: dict[int, threading.Lock] = {}


def user_lock(user_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


class Ledger:
    def __init__(self, session: Session, clock: Clock):
        self.session = session
        self.clock = clock

    @contextmanager
    def locked(self, user_id: int):
        with user_lock(user_id):
            yield

    def balance_of(self, user_id: int) -> int:
        balance = self.session.exec(select(User.points_balance).where(User.id == user_id)).first()
        if balance is None:
            raise NotFound("User not found")
        return int(balance)

    def credit(self, user_id: int, amount: int, *, task: Task) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        before = self.balance_of(user_id)
        if before > MAX_BALANCE - amount:
            raise BalanceOverflow(before, amount)
        self.session.exec(
            update(User)
            .where(User.id == user_id)
            .values(points_balance=User.points_balance + amount)
        )
        return self._record(
            user_id,
            amount,
            before,
            kind=LedgerEntryKind.task_completion,
            label=task.title,
            task_id=task.id,
        )

    def debit(self, user_id: int, amount: int, *, item: ShopItem) -> LedgerEntry:
        if amount <= 0:
            raise ValueError("debit amount must be positive")
        before = self.balance_of(user_id)
        result = self.session.exec(
            update(User)
            .where(User.id == user_id, User.points_balance >= amount)
            .values(points_balance=User.points_balance - amount)
        )
        if result.rowcount == 0:
            raise InsufficientBalance(required=amount, available=self.balance_of(user_id))
        return self._record(
            user_id,
            -amount,
            before,
            kind=LedgerEntryKind.redemption,
            label=item.name,
            shop_item_id=item.id,
        )

    def _record(
        self,
        user_id: int,
        delta: int,
        before: int,
        *,
        kind: LedgerEntryKind,
        label: str,
        task_id: Optional[int] = None,
        shop_item_id: Optional[int] = None,
    ) -> LedgerEntry:
        after = self.balance_of(user_id)
        if after < 0:
            logger.error("balance of user %s went negative (%s)", user_id, after)
            raise LedgerIntegrityError(f"balance of user {user_id} is negative")
        if after != before + delta:
            # Another process wrote between our read and our update.
            logger.warning(
                "balance of user %s moved concurrently: expected %s, found %s",
                user_id,
                before + delta,
                after,
            )
            raise Conflict("Balance changed concurrently, retry")
        entry = LedgerEntry(
            user_id=user_id,
            delta=delta,
            kind=kind,
            task_id=task_id,
            shop_item_id=shop_item_id,
            label=label,
            balance_after=after,
            occurred_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug("ledger %s %+d for user %s -> %s", kind.value, delta, user_id, after)
        return entry

    def history_of(self, user_id: int, page: int = 1, size: int = 20) -> list[LedgerEntry]:
        return list(
            self.session.exec(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
                .offset((page - 1) * size)
                .limit(size)
            ).all()
        )

    def verify(self, user_id: int) -> dict:
        """Recompute the balance from entries; raise if it disagrees with the cache."""
        balance = self.balance_of(user_id)
        total, count = self.session.exec(
            select(func.coalesce(func.sum(LedgerEntry.delta), 0), func.count(LedgerEntry.id)).where(
                LedgerEntry.user_id == user_id
            )
        ).one()
        total = int(total or 0)
        if balance < 0 or total != balance:
            logger.error(
                "ledger mismatch for user %s: balance %s, entries sum %s", user_id, balance, total
            )
            raise LedgerIntegrityError(
                f"user {user_id} balance {balance} does not match entries total {total}"
            )
        return {
            "user_id": user_id,
            "balance": balance,
            "entries_total": total,
            "entry_count": int(count),
        }
