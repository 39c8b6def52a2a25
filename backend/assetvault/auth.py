"""Resolve the authenticated caller supplied by the upstream identity layer."""

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from . import models
from .database import get_db

# purpose: turn the verified user id forwarded by the gateway into a User row
# inputs: X-User-Id request header
# outputs: active models.User or 401
# status: active

USER_HEADER = "X-User-Id"


def get_current_user(
    x_user_id: str | None = Header(default=None, alias=USER_HEADER),
    db: Session = Depends(get_db),
) -> models.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    if not x_user_id:
        raise credentials_exception
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise credentials_exception
    user = db.get(models.User, user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user
