import random

import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from taskpoints.errors import BalanceOverflow, Conflict, InsufficientBalance, LedgerIntegrityError
from taskpoints.ledger import MAX_BALANCE, Ledger
from taskpoints.lifecycle import TaskLifecycle
from taskpoints.models import LedgerEntry, LedgerEntryKind, Task, TaskStatus, User

from conftest import fund, make_item, make_task, make_user


def test_credit_and_debit_keep_balance_equal_to_entries(session: Session, clock):
    user = make_user(session)
    task = make_task(session, user)
    item = make_item(session, cost=7)
    ledger = Ledger(session, clock)

    ledger.credit(user.id, 10, task=task)
    ledger.credit(user.id, 5, task=task)
    entry = ledger.debit(user.id, 7, item=item)
    session.commit()

    assert entry.delta == -7
    assert entry.kind == LedgerEntryKind.redemption
    assert entry.balance_after == 8
    assert ledger.balance_of(user.id) == 8
    report = ledger.verify(user.id)
    assert report == {"user_id": user.id, "balance": 8, "entries_total": 8, "entry_count": 3}


def test_debit_beyond_balance_is_rejected(session: Session, clock):
    user = make_user(session)
    ledger = Ledger(session, clock)
    ledger.credit(user.id, 40, task=make_task(session, user))
    session.commit()

    with pytest.raises(InsufficientBalance) as excinfo:
        ledger.debit(user.id, 50, item=make_item(session, cost=50))
    session.rollback()

    assert excinfo.value.required == 50
    assert excinfo.value.available == 40
    assert ledger.balance_of(user.id) == 40
    assert ledger.verify(user.id)["entry_count"] == 1


def test_random_sequence_never_goes_negative(session: Session, clock):
    user = make_user(session)
    task = make_task(session, user)
    item = make_item(session)
    ledger = Ledger(session, clock)
    rng = random.Random(7)

    for _ in range(60):
        amount = rng.randint(1, 25)
        try:
            if rng.random() < 0.5:
                ledger.credit(user.id, amount, task=task)
            else:
                ledger.debit(user.id, amount, item=item)
            session.commit()
        except InsufficientBalance:
            session.rollback()
        report = ledger.verify(user.id)
        assert report["balance"] >= 0
        assert report["balance"] == report["entries_total"]


def test_credit_overflow_is_refused(session: Session, clock):
    user = make_user(session)
    task = make_task(session, user)
    ledger = Ledger(session, clock)
    ledger.credit(user.id, MAX_BALANCE, task=task)
    session.commit()

    with pytest.raises(BalanceOverflow):
        ledger.credit(user.id, 1, task=task)
    session.rollback()
    assert ledger.balance_of(user.id) == MAX_BALANCE


def test_non_positive_amounts_are_programming_errors(session: Session, clock):
    user = make_user(session)
    ledger = Ledger(session, clock)
    with pytest.raises(ValueError):
        ledger.credit(user.id, 0, task=make_task(session, user))
    with pytest.raises(ValueError):
        ledger.debit(user.id, -3, item=make_item(session))


def test_ledger_entries_are_immutable(session: Session, clock):
    user = make_user(session)
    ledger = Ledger(session, clock)
    entry = ledger.credit(user.id, 10, task=make_task(session, user))
    session.commit()

    entry.delta = 1000
    session.add(entry)
    with pytest.raises(LedgerIntegrityError):
        session.commit()
    session.rollback()

    entry = session.get(LedgerEntry, entry.id)
    session.delete(entry)
    with pytest.raises(LedgerIntegrityError):
        session.commit()
    session.rollback()
    assert ledger.verify(user.id)["balance"] == 10


def test_verify_detects_tampered_balance(session: Session, clock):
    user = make_user(session)
    ledger = Ledger(session, clock)
    ledger.credit(user.id, 10, task=make_task(session, user))
    session.commit()

    session.exec(update(User).where(User.id == user.id).values(points_balance=99))
    session.commit()

    with pytest.raises(LedgerIntegrityError):
        ledger.verify(user.id)


def test_balance_moved_by_another_writer_aborts_the_completion(monkeypatch, session: Session, clock):
    user = make_user(session)
    fund(session, user, 20)
    task = make_task(session, user, points=10, title="Laundry")
    ledger = Ledger(session, clock)
    read_balance = ledger.balance_of
    calls = []

    def balance_then_external_write(user_id):
        balance = read_balance(user_id)
        if not calls:
            session.exec(
                update(User)
                .where(User.id == user_id)
                .values(points_balance=User.points_balance + 5)
                .execution_options(synchronize_session=False)
            )
        calls.append(balance)
        return balance

    monkeypatch.setattr(ledger, "balance_of", balance_then_external_write)

    with pytest.raises(Conflict):
        TaskLifecycle(session, ledger, clock).complete_task(task.id, user)

    monkeypatch.undo()
    session.expire_all()
    assert calls == [20, 35]
    assert session.get(User, user.id).points_balance == 20
    assert session.get(Task, task.id).status == TaskStatus.pending
    assert len(session.exec(select(LedgerEntry).where(LedgerEntry.user_id == user.id)).all()) == 1
    assert ledger.verify(user.id)["balance"] == 20


def test_history_is_newest_first_and_paginated(session: Session, clock):
    user = make_user(session)
    task = make_task(session, user)
    ledger = Ledger(session, clock)
    for amount in (1, 2, 3):
        ledger.credit(user.id, amount, task=task)
        session.commit()
        clock.advance(minutes=1)

    history = ledger.history_of(user.id)
    assert [entry.delta for entry in history] == [3, 2, 1]
    assert [entry.delta for entry in ledger.history_of(user.id, page=2, size=2)] == [1]
