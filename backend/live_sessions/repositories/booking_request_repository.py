# backend/live_sessions/repositories/booking_request_repository.py
"""
Booking request repository.

Status changes go through ``transition_status``, a compare-and-swap on the
current status, so the expiry sweep and a concurrent accept/reject can never
both move the same PENDING row.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.enums import OUTSTANDING_REQUEST_STATUSES, BookingRequestStatus
from ..core.exceptions import RepositoryException
from ..models.booking_request import BookingRequest
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRequestRepository(BaseRepository[BookingRequest]):
    """Data access for booking requests."""

    def __init__(self, db: Session):
        super().__init__(db, BookingRequest)

    def _apply_eager_loading(self, query):
        return query.options(
            joinedload(BookingRequest.offering),
            joinedload(BookingRequest.time_slot),
            joinedload(BookingRequest.live_session),
        )

    def count_pending_for_slot(self, slot_id: str, exclude_id: Optional[str] = None) -> int:
        """PENDING requests holding a claim on ``slot_id`` that the ledger has not counted yet."""
        try:
            query = self.db.query(func.count(BookingRequest.id)).filter(
                BookingRequest.time_slot_id == slot_id,
                BookingRequest.status == BookingRequestStatus.PENDING,
            )
            if exclude_id:
                query = query.filter(BookingRequest.id != exclude_id)
            return int(query.scalar() or 0)
        except SQLAlchemyError as e:
            self.logger.error("Error counting pending requests for slot %s: %s", slot_id, e)
            raise RepositoryException(f"Failed to count pending requests: {e}") from e

    def get_outstanding_for_slot(self, slot_id: str) -> List[BookingRequest]:
        return self._execute_query(
            self._build_query().filter(
                BookingRequest.time_slot_id == slot_id,
                BookingRequest.status.in_(OUTSTANDING_REQUEST_STATUSES),
            )
        )

    def find_outstanding_for_student(
        self, student_id: str, offering_id: str
    ) -> Optional[BookingRequest]:
        try:
            return (
                self.db.query(BookingRequest)
                .filter(
                    BookingRequest.student_id == student_id,
                    BookingRequest.offering_id == offering_id,
                    BookingRequest.status.in_(OUTSTANDING_REQUEST_STATUSES),
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error checking outstanding requests: %s", e)
            raise RepositoryException(f"Failed to check outstanding requests: {e}") from e

    def get_expired_pending(self, now: datetime, limit: int = 500) -> List[BookingRequest]:
        return self._execute_query(
            self._build_query()
            .filter(
                BookingRequest.status == BookingRequestStatus.PENDING,
                BookingRequest.expires_at <= now,
            )
            .order_by(BookingRequest.expires_at)
            .limit(limit)
        )

    def transition_status(
        self,
        request_id: str,
        expected: BookingRequestStatus,
        target: BookingRequestStatus,
        **values: Any,
    ) -> bool:
        """
        Move a request from ``expected`` to ``target`` in one conditional UPDATE.

        Returns False when the row is no longer in ``expected``.
        """
        changes: Dict[Any, Any] = {BookingRequest.status: target}
        for key, value in values.items():
            changes[getattr(BookingRequest, key)] = value
        try:
            updated = (
                self.db.query(BookingRequest)
                .filter(BookingRequest.id == request_id, BookingRequest.status == expected)
                .update(changes, synchronize_session=False)
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error transitioning request %s: %s", request_id, e)
            raise RepositoryException(f"Failed to update booking request: {e}") from e

    def list_requests(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        statuses: Optional[Sequence[BookingRequestStatus]] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[BookingRequest]:
        query = self._build_query()
        if instructor_id:
            query = query.filter(BookingRequest.instructor_id == instructor_id)
        if student_id:
            query = query.filter(BookingRequest.student_id == student_id)
        if statuses:
            query = query.filter(BookingRequest.status.in_(list(statuses)))
        return self._execute_query(
            query.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc())
            .offset(skip)
            .limit(limit)
        )

    def count_by_status(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
    ) -> Dict[str, int]:
        try:
            query = self.db.query(BookingRequest.status, func.count(BookingRequest.id))
            if instructor_id:
                query = query.filter(BookingRequest.instructor_id == instructor_id)
            if student_id:
                query = query.filter(BookingRequest.student_id == student_id)
            rows = query.group_by(BookingRequest.status).all()
            return {str(status): int(count) for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error("Error counting booking requests by status: %s", e)
            raise RepositoryException(f"Failed to compute booking stats: {e}") from e
