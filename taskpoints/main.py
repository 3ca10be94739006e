import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from . import db
from .auth import (
    authenticate,
    hash_password,
    login_user,
    logout_user,
    require_admin,
    require_session,
    require_user,
)
from .clock import Clock, get_clock
from .config import (
    HISTORY_MAX_PAGE_SIZE,
    HISTORY_PAGE_SIZE,
    ROOT_FULL_NAME,
    ROOT_PASSWORD,
    ROOT_USERNAME,
)
from .db import get_session, init_db
from .errors import DomainError, LedgerIntegrityError, NotFound
from .ledger import Ledger
from .lifecycle import TaskLifecycle
from .logging_setup import setup_logging
from .models import AuthSession, ShopItem, Task, User, UserRole
from .schemas import (
    AuthResponse,
    CompletionRead,
    LedgerEntryRead,
    LedgerReport,
    LoginRequest,
    NameUpdate,
    ProfileImageUpdate,
    RedemptionLogRead,
    RedemptionRead,
    SettingsUpdate,
    ShopItemRead,
    ShopItemWrite,
    TaskLogRead,
    TaskRead,
    TaskSummary,
    TaskWrite,
    UserCreate,
    UserRead,
)
from .shop import RedemptionEngine

logger = logging.getLogger(__name__)


def ensure_root_admin(bind=None):
    with Session(bind or db.engine) as session:
        existing = session.exec(select(User).where(User.role == UserRole.admin)).first()
        if existing:
            return existing
        admin = User(
            username=ROOT_USERNAME,
            full_name=ROOT_FULL_NAME,
            hashed_password=hash_password(ROOT_PASSWORD),
            role=UserRole.admin,
        )
        session.add(admin)
        session.commit()
        session.refresh(admin)
        logger.info("created root admin %r", admin.username)
        return admin


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    init_db()
    ensure_root_admin()
    yield


app = FastAPI(title="Household task points", lifespan=lifespan)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


@app.exception_handler(LedgerIntegrityError)
async def ledger_integrity_handler(request: Request, exc: LedgerIntegrityError):
    logger.error("aborted %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "LedgerIntegrityError"})


def get_ledger(session: Session = Depends(get_session), clock: Clock = Depends(get_clock)) -> Ledger:
    return Ledger(session, clock)


def get_lifecycle(
    session: Session = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
    clock: Clock = Depends(get_clock),
) -> TaskLifecycle:
    return TaskLifecycle(session, ledger, clock)


def get_shop(
    session: Session = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
    clock: Clock = Depends(get_clock),
) -> RedemptionEngine:
    return RedemptionEngine(session, ledger, clock)


def page_params(
    page: int = Query(1, ge=1),
    size: int = Query(HISTORY_PAGE_SIZE, ge=1, le=HISTORY_MAX_PAGE_SIZE),
) -> tuple[int, int]:
    return page, size


def get_task_or_404(session: Session, task_id: int) -> Task:
    task = session.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


def get_item_or_404(session: Session, item_id: int) -> ShopItem:
    item = session.get(ShopItem, item_id)
    if not item:
        raise NotFound("Item not found")
    return item


def get_user_or_404(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


# Auth and profile


@app.post("/api/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    user = authenticate(session, payload.username, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    token = login_user(session, user, clock.now())
    session.refresh(user)
    return AuthResponse(token=token, user=UserRead.model_validate(user))


@app.post("/api/auth/logout", status_code=204)
def logout(
    auth_session: AuthSession = Depends(require_session),
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    logout_user(session, auth_session, clock.now())


@app.get("/api/user/me", response_model=UserRead)
def current_user(user: User = Depends(require_user)):
    return user


@app.put("/api/user/profile-image", response_model=UserRead)
def update_profile_image(
    payload: ProfileImageUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
):
    user.profile_image_url = payload.image_url
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@app.put("/api/user/name", response_model=UserRead)
def update_name(
    payload: NameUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
):
    user.full_name = payload.full_name
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@app.put("/api/user/settings", response_model=UserRead)
def update_settings(
    payload: SettingsUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_user),
):
    user.theme_type = payload.theme_type
    user.theme_value = payload.theme_value
    user.button_color = payload.button_color
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


# Tasks


@app.get("/api/tasks", response_model=list[TaskRead])
def list_tasks(
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_user),
):
    return lifecycle.tasks_for(user)


@app.get("/api/tasks/pending", response_model=list[TaskRead])
def list_pending_tasks(
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_user),
):
    return lifecycle.pending_tasks_for(user)


@app.get("/api/tasks/summary", response_model=TaskSummary)
def task_summary(
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_user),
):
    return TaskSummary(
        pending=lifecycle.pending_count_for(user),
        completed=lifecycle.completed_count_for(user),
    )


@app.post("/api/tasks/{task_id}/complete", response_model=CompletionRead)
def complete_task(
    task_id: int,
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_user),
):
    return lifecycle.complete_task(task_id, user)


# Shop


@app.get("/api/shop/items", response_model=list[ShopItemRead])
def list_shop_items(
    shop: RedemptionEngine = Depends(get_shop),
    user: User = Depends(require_user),
):
    return shop.available_items()


@app.post("/api/shop/items/{item_id}/redeem", response_model=RedemptionRead)
def redeem_item(
    item_id: int,
    shop: RedemptionEngine = Depends(get_shop),
    user: User = Depends(require_user),
):
    return shop.redeem_item(item_id, user)


# History


@app.get("/api/logs/tasks", response_model=list[TaskLogRead])
def task_history(
    paging: tuple[int, int] = Depends(page_params),
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    user: User = Depends(require_user),
):
    page, size = paging
    return lifecycle.task_history_for(user, page, size)


@app.get("/api/logs/redemptions", response_model=list[RedemptionLogRead])
def redemption_history(
    paging: tuple[int, int] = Depends(page_params),
    shop: RedemptionEngine = Depends(get_shop),
    user: User = Depends(require_user),
):
    page, size = paging
    return shop.redemption_history_for(user, page, size)


@app.get("/api/points/history", response_model=list[LedgerEntryRead])
def point_history(
    paging: tuple[int, int] = Depends(page_params),
    ledger: Ledger = Depends(get_ledger),
    user: User = Depends(require_user),
):
    page, size = paging
    return ledger.history_of(user.id, page, size)


# Admin: tasks


def apply_task_write(session: Session, task: Task, payload: TaskWrite, now: datetime) -> Task:
    get_user_or_404(session, payload.owner_id)
    task.title = payload.title
    task.description = payload.description
    task.image_url = payload.image_url
    task.points = payload.points
    task.recurrence = payload.recurrence
    task.owner_id = payload.owner_id
    task.updated_at = now
    return task


@app.get("/api/admin/tasks", response_model=list[TaskRead])
def admin_list_tasks(
    lifecycle: TaskLifecycle = Depends(get_lifecycle),
    admin: User = Depends(require_admin),
):
    return lifecycle.all_tasks()


@app.post("/api/admin/tasks", response_model=TaskRead, status_code=201)
def admin_create_task(
    payload: TaskWrite,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    admin: User = Depends(require_admin),
):
    now = clock.now()
    task = Task(title=payload.title, points=payload.points, owner_id=payload.owner_id, created_at=now)
    apply_task_write(session, task, payload, now)
    session.add(task)
    session.commit()
    session.refresh(task)
    logger.info("admin %s created task %s for user %s", admin.id, task.id, task.owner_id)
    return TaskRead.from_task(task, now)


@app.put("/api/admin/tasks/{task_id}", response_model=TaskRead)
def admin_update_task(
    task_id: int,
    payload: TaskWrite,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    admin: User = Depends(require_admin),
):
    now = clock.now()
    task = apply_task_write(session, get_task_or_404(session, task_id), payload, now)
    # Any in-flight completion that read the old row now loses with Conflict.
    task.version += 1
    session.add(task)
    session.commit()
    session.refresh(task)
    return TaskRead.from_task(task, now)


@app.delete("/api/admin/tasks/{task_id}", status_code=204)
def admin_delete_task(
    task_id: int,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    task = get_task_or_404(session, task_id)
    session.delete(task)
    session.commit()
    logger.info("admin %s deleted task %s", admin.id, task_id)


# Admin: shop items


@app.get("/api/admin/shop/items", response_model=list[ShopItemRead])
def admin_list_shop_items(
    shop: RedemptionEngine = Depends(get_shop),
    admin: User = Depends(require_admin),
):
    return shop.all_items()


@app.post("/api/admin/shop/items", response_model=ShopItemRead, status_code=201)
def admin_create_shop_item(
    payload: ShopItemWrite,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    admin: User = Depends(require_admin),
):
    item = ShopItem.model_validate(payload)
    item.created_at = item.updated_at = clock.now()
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


@app.put("/api/admin/shop/items/{item_id}", response_model=ShopItemRead)
def admin_update_shop_item(
    item_id: int,
    payload: ShopItemWrite,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    admin: User = Depends(require_admin),
):
    item = get_item_or_404(session, item_id)
    item.sqlmodel_update(payload.model_dump())
    item.updated_at = clock.now()
    session.add(item)
    session.commit()
    session.refresh(item)
    return item


@app.delete("/api/admin/shop/items/{item_id}", status_code=204)
def admin_delete_shop_item(
    item_id: int,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    item = get_item_or_404(session, item_id)
    session.delete(item)
    session.commit()


# Admin: household members


@app.get("/api/admin/users", response_model=list[UserRead])
def admin_list_users(
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
):
    return session.exec(select(User).order_by(User.id)).all()


@app.post("/api/admin/users", response_model=UserRead, status_code=201)
def admin_create_user(
    payload: UserCreate,
    session: Session = Depends(get_session),
    clock: Clock = Depends(get_clock),
    admin: User = Depends(require_admin),
):
    existing = session.exec(select(User).where(User.username == payload.username)).first()
    if existing:
        raise HTTPException(status_code=400, detail="Username already taken")
    user = User(
        username=payload.username,
        full_name=payload.full_name,
        hashed_password=hash_password(payload.password),
        role=payload.role,
        created_at=clock.now(),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@app.get("/api/admin/users/{user_id}/ledger/verify", response_model=LedgerReport)
def admin_verify_ledger(
    user_id: int,
    session: Session = Depends(get_session),
    ledger: Ledger = Depends(get_ledger),
    admin: User = Depends(require_admin),
):
    get_user_or_404(session, user_id)
    return LedgerReport(**ledger.verify(user_id))


@app.get("/health")
def health():
    return {"status": "ok"}
