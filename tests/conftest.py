import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from taskpoints import db
from taskpoints import models  # ensure models are registered with metadata
from taskpoints.auth import hash_password
from taskpoints.clock import FixedClock, get_clock
from taskpoints.config import ROOT_PASSWORD, ROOT_USERNAME
from taskpoints.ledger import Ledger
from taskpoints.lifecycle import TaskLifecycle
from taskpoints.main import app, ensure_root_admin
from taskpoints.models import ShopItem, Task, TaskRecurrence, User


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Wednesday
test_clock = FixedClock(datetime(2025, 1, 15, 12, 0))


def override_get_session():
    with Session(test_engine) as session:
        yield session


def override_get_clock():
    return test_clock


def reset_database():
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    ensure_root_admin(test_engine)
    test_clock.set(datetime(2025, 1, 15, 12, 0))


db.engine = test_engine
app.dependency_overrides[db.get_session] = override_get_session
app.dependency_overrides[get_clock] = override_get_clock


@pytest.fixture(autouse=True)
def setup_db():
    reset_database()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def clock():
    return test_clock


def login(client, username=ROOT_USERNAME, password=ROOT_PASSWORD) -> dict:
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def make_user(session: Session, username="alice", password="pw") -> User:
    user = User(
        username=username,
        full_name=username.title(),
        hashed_password=hash_password(password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_task(session: Session, owner: User, points=10, recurrence=TaskRecurrence.none, title="Dishes") -> Task:
    task = Task(title=title, points=points, recurrence=recurrence, owner_id=owner.id)
    session.add(task)
    session.commit()
    session.refresh(task)
    return task


def make_item(session: Session, name="Movie night", cost=30, available=True) -> ShopItem:
    item = ShopItem(name=name, points_cost=cost, available=available)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


def fund(session: Session, user: User, points: int) -> int:
    """Give ``user`` points the only legitimate way: by completing a task."""
    task = make_task(session, user, points=points, title=f"Earn {points}")
    lifecycle = TaskLifecycle(session, Ledger(session, test_clock), test_clock)
    return lifecycle.complete_task(task.id, user).balance


@pytest.fixture
def alice(session):
    return make_user(session)


@pytest.fixture
def alice_headers(client, alice):
    return login(client, "alice", "pw")


@pytest.fixture
def admin_headers(client):
    return login(client)
