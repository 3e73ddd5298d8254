# backend/live_sessions/repositories/user_repository.py
"""
User and instructor profile lookups.

Users are owned by the account system; the booking engine only reads them.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.user import InstructorProfile, User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Read access to users and their instructor profiles."""

    def __init__(self, db: Session):
        super().__init__(db, User)

    def _apply_eager_loading(self, query):
        return query.options(joinedload(User.instructor_profile))

    def get_active(self, user_id: str) -> Optional[User]:
        user = self.get_by_id(user_id)
        if user is None or not user.is_active:
            return None
        return user

    def get_instructor_profile(self, user_id: str) -> Optional[InstructorProfile]:
        try:
            return (
                self.db.query(InstructorProfile)
                .filter(InstructorProfile.user_id == user_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading instructor profile for %s: %s", user_id, e)
            raise RepositoryException(f"Failed to load instructor profile: {e}") from e
