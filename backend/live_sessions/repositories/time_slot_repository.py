# backend/live_sessions/repositories/time_slot_repository.py
"""
Time slot repository.

Besides plain slot queries this repository holds the two compare-and-swap
statements the capacity ledger is built on. They are the only statements in
the codebase that write ``current_bookings`` or ``is_booked``.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import AutoAcceptOverride
from ..core.exceptions import RepositoryException
from ..models.availability import TimeSlot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class TimeSlotRepository(BaseRepository[TimeSlot]):
    """Data access for generated time slots."""

    def __init__(self, db: Session):
        super().__init__(db, TimeSlot)

    def get_for_update(self, slot_id: str) -> Optional[TimeSlot]:
        """
        Load a slot, taking a row lock where the dialect supports one.

        SQLite serializes writers at the database level, so the lock is skipped.
        """
        try:
            query = self.db.query(TimeSlot).filter(TimeSlot.id == slot_id)
            if self.supports_row_locks:
                query = query.with_for_update()
            return query.first()
        except SQLAlchemyError as e:
            self.logger.error("Error locking slot %s: %s", slot_id, e)
            raise RepositoryException(f"Failed to load slot: {e}") from e

    def get_by_availability(self, availability_id: str) -> List[TimeSlot]:
        return self._execute_query(
            self._build_query()
            .filter(TimeSlot.availability_id == availability_id)
            .order_by(TimeSlot.start_at)
        )

    def delete_for_availability(self, availability_id: str) -> int:
        try:
            deleted = (
                self.db.query(TimeSlot)
                .filter(TimeSlot.availability_id == availability_id)
                .delete(synchronize_session=False)
            )
            self.db.flush()
            return int(deleted)
        except SQLAlchemyError as e:
            self.logger.error("Error deleting slots for availability %s: %s", availability_id, e)
            raise RepositoryException(f"Failed to delete slots: {e}") from e

    def get_for_instructor(
        self,
        instructor_id: str,
        start: datetime,
        end: datetime,
        *,
        bookable_only: bool = False,
        min_duration_minutes: Optional[int] = None,
    ) -> List[TimeSlot]:
        """Slots that start inside ``[start, end]``, ordered by start."""
        query = self._build_query().filter(
            TimeSlot.instructor_id == instructor_id,
            TimeSlot.start_at >= start,
            TimeSlot.start_at <= end,
        )
        if bookable_only:
            query = query.filter(
                TimeSlot.is_available.is_(True),
                TimeSlot.is_booked.is_(False),
                TimeSlot.is_blocked.is_(False),
            )
        if min_duration_minutes is not None:
            query = query.filter(TimeSlot.duration_minutes >= min_duration_minutes)
        return self._execute_query(query.order_by(TimeSlot.start_at))

    def get_conflicting(self, instructor_id: str, start: datetime, end: datetime) -> List[TimeSlot]:
        """Booked or blocked slots overlapping ``[start, end)``."""
        query = self._build_query().filter(
            TimeSlot.instructor_id == instructor_id,
            TimeSlot.start_at < end,
            TimeSlot.end_at > start,
            (TimeSlot.is_booked.is_(True)) | (TimeSlot.is_blocked.is_(True)),
        )
        return self._execute_query(query.order_by(TimeSlot.start_at))

    # Capacity ledger statements

    def try_increment(self, slot_id: str) -> bool:
        """
        Claim one seat if the slot is open and has room.

        Returns False when the guard fails, which means another writer took the
        last seat or the slot was blocked in the meantime.
        """
        try:
            updated = (
                self.db.query(TimeSlot)
                .filter(
                    TimeSlot.id == slot_id,
                    TimeSlot.is_blocked.is_(False),
                    TimeSlot.is_available.is_(True),
                    TimeSlot.current_bookings < TimeSlot.max_bookings,
                )
                .update(
                    {
                        TimeSlot.current_bookings: TimeSlot.current_bookings + 1,
                        TimeSlot.is_booked: case(
                            (TimeSlot.current_bookings + 1 >= TimeSlot.max_bookings, True),
                            else_=False,
                        ),
                        TimeSlot.version: TimeSlot.version + 1,
                    },
                    synchronize_session=False,
                )
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error incrementing bookings for slot %s: %s", slot_id, e)
            raise RepositoryException(f"Failed to reserve slot: {e}") from e

    def try_decrement(self, slot_id: str) -> bool:
        """Give one seat back; False when the counter is already zero."""
        try:
            updated = (
                self.db.query(TimeSlot)
                .filter(TimeSlot.id == slot_id, TimeSlot.current_bookings > 0)
                .update(
                    {
                        TimeSlot.current_bookings: TimeSlot.current_bookings - 1,
                        TimeSlot.is_booked: case(
                            (TimeSlot.current_bookings - 1 >= TimeSlot.max_bookings, True),
                            else_=False,
                        ),
                        TimeSlot.version: TimeSlot.version + 1,
                    },
                    synchronize_session=False,
                )
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error decrementing bookings for slot %s: %s", slot_id, e)
            raise RepositoryException(f"Failed to release slot: {e}") from e

    def set_blocked(self, slot_id: str, blocked: bool, reason: Optional[str] = None) -> bool:
        """Block only while no seat is taken; unblocking is unconditional."""
        try:
            query = self.db.query(TimeSlot).filter(TimeSlot.id == slot_id)
            if blocked:
                query = query.filter(
                    TimeSlot.current_bookings == 0, TimeSlot.is_booked.is_(False)
                )
            updated = query.update(
                {
                    TimeSlot.is_blocked: blocked,
                    TimeSlot.block_reason: reason if blocked else None,
                    TimeSlot.version: TimeSlot.version + 1,
                },
                synchronize_session=False,
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error changing block state of slot %s: %s", slot_id, e)
            raise RepositoryException(f"Failed to update slot: {e}") from e

    def set_available_for_availability(self, availability_id: str, available: bool) -> int:
        """Open or withdraw every slot of a window; seat counters are untouched."""
        try:
            updated = (
                self.db.query(TimeSlot)
                .filter(TimeSlot.availability_id == availability_id)
                .update(
                    {TimeSlot.is_available: available, TimeSlot.version: TimeSlot.version + 1},
                    synchronize_session=False,
                )
            )
            return int(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error toggling slots for availability %s: %s", availability_id, e)
            raise RepositoryException(f"Failed to update slots: {e}") from e

    def set_auto_accept_override(
        self, slot_ids: Iterable[str], override: AutoAcceptOverride
    ) -> int:
        ids = list(slot_ids)
        if not ids:
            return 0
        try:
            updated = (
                self.db.query(TimeSlot)
                .filter(TimeSlot.id.in_(ids))
                .update({TimeSlot.auto_accept_override: override}, synchronize_session=False)
            )
            return int(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error propagating auto-accept override: %s", e)
            raise RepositoryException(f"Failed to update slots: {e}") from e

    def get_stats_for_instructor(
        self, instructor_id: str, start: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Total, booked, blocked and open slot counts in one round trip."""
        try:
            query = self.db.query(
                func.count(TimeSlot.id),
                func.sum(case((TimeSlot.is_booked.is_(True), 1), else_=0)),
                func.sum(case((TimeSlot.is_blocked.is_(True), 1), else_=0)),
                func.sum(
                    case(
                        (
                            and_(
                                TimeSlot.is_available.is_(True),
                                TimeSlot.is_booked.is_(False),
                                TimeSlot.is_blocked.is_(False),
                            ),
                            1,
                        ),
                        else_=0,
                    )
                ),
            ).filter(TimeSlot.instructor_id == instructor_id)
            if start is not None:
                query = query.filter(TimeSlot.start_at >= start)
            total, booked, blocked, available = query.one()
            return {
                "total_slots": int(total or 0),
                "booked_slots": int(booked or 0),
                "blocked_slots": int(blocked or 0),
                "available_slots": int(available or 0),
            }
        except SQLAlchemyError as e:
            self.logger.error("Error computing slot stats for %s: %s", instructor_id, e)
            raise RepositoryException(f"Failed to compute slot stats: {e}") from e
