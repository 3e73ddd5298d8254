# backend/live_sessions/api/dependencies/auth.py
"""
Caller identity.

Authentication is handled upstream by the gateway, which forwards the
authenticated user's id in the ``X-User-Id`` header. These dependencies only
check that the header is present, well formed and names an active user.
"""

import asyncio
import logging
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from ...core.enums import RoleName
from ...core.state_machine import state_value
from ...core.ulid_helper import is_valid_ulid
from ...models.user import User
from ...repositories import RepositoryFactory
from .database import get_db

logger = logging.getLogger(__name__)


async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the acting user.

    Raises:
        HTTPException: 401 when the header is missing or malformed, or the
            user does not exist or is inactive
    """
    if not x_user_id or not is_valid_ulid(x_user_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-User-Id header",
        )
    repository = RepositoryFactory.create_user_repository(db)
    user = await asyncio.to_thread(repository.get_active, x_user_id)
    if user is None:
        logger.info("Rejected request for unknown or inactive user %s", x_user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive user",
        )
    return user


async def get_current_instructor(current_user: User = Depends(get_current_user)) -> User:
    if state_value(current_user.role) != RoleName.INSTRUCTOR.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Instructor role required",
        )
    return current_user


async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if state_value(current_user.role) != RoleName.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return current_user


def visibility_scope(user: User) -> Dict[str, Optional[str]]:
    """List filters limiting a user to their own bookings, sessions and payouts."""
    role = state_value(user.role)
    if role == RoleName.ADMIN.value:
        return {}
    if role == RoleName.INSTRUCTOR.value:
        return {"instructor_id": user.id}
    return {"student_id": user.id}


def is_admin(user: User) -> bool:
    return state_value(user.role) == RoleName.ADMIN.value
