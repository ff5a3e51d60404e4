"""FastAPI dependencies shared across routes."""

import uuid
from datetime import datetime

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from quiz_engine.core.clock import Clock, get_clock
from quiz_engine.core.security import decode_access_token
from quiz_engine.db.models import RoleEnum, User
from quiz_engine.db.session import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Decode JWT and return the authenticated user, or 401."""
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        user_id = uuid.UUID(payload.get("sub", ""))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        )
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Raise 403 unless the caller is an instructor or admin."""
    if current_user.role not in (RoleEnum.INSTRUCTOR, RoleEnum.ADMIN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Instructor access required"
        )
    return current_user


def get_now(clock: Clock = Depends(get_clock)) -> datetime:
    """The request's notion of "now", read once from the injectable clock."""
    return clock.now()
