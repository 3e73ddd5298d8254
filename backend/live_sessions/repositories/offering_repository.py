# backend/live_sessions/repositories/offering_repository.py
"""Session offering repository."""

from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.offering import SessionOffering
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class OfferingRepository(BaseRepository[SessionOffering]):
    """Data access for session offerings."""

    def __init__(self, db: Session):
        super().__init__(db, SessionOffering)

    def record_completed_session(self, offering_id: str, revenue: Decimal) -> bool:
        """Bump the aggregate booking count and revenue in place."""
        try:
            updated = (
                self.db.query(SessionOffering)
                .filter(SessionOffering.id == offering_id)
                .update(
                    {
                        SessionOffering.total_bookings: SessionOffering.total_bookings + 1,
                        SessionOffering.total_revenue: SessionOffering.total_revenue + revenue,
                    },
                    synchronize_session=False,
                )
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error refreshing stats for offering %s: %s", offering_id, e)
            raise RepositoryException(f"Failed to update offering stats: {e}") from e
