import secrets
from datetime import datetime
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlmodel import Session, select

from .config import TOKEN_MAX_AGE, TOKEN_SECRET
from .db import get_session
from .errors import Forbidden
from .models import AuthSession, User

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
token_serializer = URLSafeTimedSerializer(TOKEN_SECRET, salt="taskpoints-auth")
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    user = session.exec(select(User).where(User.username == username)).first()
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def login_user(session: Session, user: User, now: datetime) -> str:
    """Open a server-side session for ``user`` and return its bearer token."""
    auth_session = AuthSession(id=secrets.token_hex(16), user_id=user.id, created_at=now)
    session.add(auth_session)
    session.commit()
    return token_serializer.dumps({"sid": auth_session.id})


def logout_user(session: Session, auth_session: AuthSession, now: datetime):
    auth_session.revoked_at = now
    session.add(auth_session)
    session.commit()


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> Optional[AuthSession]:
    if not credentials:
        return None
    try:
        data = token_serializer.loads(credentials.credentials, max_age=TOKEN_MAX_AGE)
    except BadSignature:
        return None
    sid = data.get("sid") if isinstance(data, dict) else None
    if not sid:
        return None
    auth_session = session.get(AuthSession, sid)
    if not auth_session or auth_session.revoked_at is not None:
        return None
    return auth_session


def get_current_user(
    auth_session: Optional[AuthSession] = Depends(get_current_session),
    session: Session = Depends(get_session),
) -> Optional[User]:
    if not auth_session:
        return None
    return session.get(User, auth_session.user_id)


def require_session(auth_session: Optional[AuthSession] = Depends(get_current_session)) -> AuthSession:
    if not auth_session:
        raise HTTPException(status_code=401, headers={"WWW-Authenticate": "Bearer"})
    return auth_session


def require_user(user: Optional[User] = Depends(get_current_user)) -> User:
    if not user:
        raise HTTPException(status_code=401, headers={"WWW-Authenticate": "Bearer"})
    return user


def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin role required")
    return user
