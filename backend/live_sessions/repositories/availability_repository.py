# backend/live_sessions/repositories/availability_repository.py
"""
Availability repository.

Handles the window-level queries: overlap detection on a date, range
lookups for slot generation, and whether any of a window's slots are
referenced by a booking request or live session.
"""

from datetime import date, time
import logging
from typing import List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.exceptions import RepositoryException
from ..models.availability import InstructorAvailability, TimeSlot
from ..models.booking_request import BookingRequest
from ..models.live_session import LiveSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[InstructorAvailability]):
    """Data access for instructor availability windows."""

    def __init__(self, db: Session):
        super().__init__(db, InstructorAvailability)

    def _apply_eager_loading(self, query):
        return query.options(selectinload(InstructorAvailability.time_slots))

    def find_overlapping(
        self,
        instructor_id: str,
        specific_date: date,
        start_time: time,
        end_time: time,
        exclude_id: Optional[str] = None,
    ) -> Optional[InstructorAvailability]:
        """First active window on the same date whose wall-clock range overlaps."""
        try:
            query = self.db.query(InstructorAvailability).filter(
                InstructorAvailability.instructor_id == instructor_id,
                InstructorAvailability.specific_date == specific_date,
                InstructorAvailability.is_active.is_(True),
                InstructorAvailability.start_time < end_time,
                InstructorAvailability.end_time > start_time,
            )
            if exclude_id:
                query = query.filter(InstructorAvailability.id != exclude_id)
            return query.order_by(InstructorAvailability.start_time).first()
        except SQLAlchemyError as e:
            self.logger.error("Error checking availability overlap: %s", e)
            raise RepositoryException(f"Failed to check availability overlap: {e}") from e

    def get_for_range(
        self,
        instructor_id: str,
        start_date: date,
        end_date: date,
        active_only: bool = True,
    ) -> List[InstructorAvailability]:
        query = self._build_query().filter(
            InstructorAvailability.instructor_id == instructor_id,
            InstructorAvailability.specific_date >= start_date,
            InstructorAvailability.specific_date <= end_date,
        )
        if active_only:
            query = query.filter(InstructorAvailability.is_active.is_(True))
        return self._execute_query(
            query.order_by(InstructorAvailability.specific_date, InstructorAvailability.start_time)
        )

    def get_referenced_slot_ids(self, availability_id: str) -> Set[str]:
        """Ids of this window's slots that a booking request or live session points at."""
        try:
            slot_ids = select(TimeSlot.id).where(TimeSlot.availability_id == availability_id)
            from_requests = (
                self.db.query(BookingRequest.time_slot_id)
                .filter(BookingRequest.time_slot_id.in_(slot_ids))
                .distinct()
                .all()
            )
            from_sessions = (
                self.db.query(LiveSession.time_slot_id)
                .filter(LiveSession.time_slot_id.in_(slot_ids))
                .distinct()
                .all()
            )
            return {row[0] for row in from_requests + from_sessions if row[0]}
        except SQLAlchemyError as e:
            self.logger.error("Error checking slot references for %s: %s", availability_id, e)
            raise RepositoryException(f"Failed to check slot references: {e}") from e

    def has_referenced_slots(self, availability_id: str) -> bool:
        return bool(self.get_referenced_slot_ids(availability_id))
