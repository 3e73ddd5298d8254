# backend/live_sessions/repositories/live_session_repository.py
"""
Live session repository.

Covers sessions, their participants and attendance records. Status changes
use ``transition_status`` (compare-and-swap on status) so Start, End and
Cancel racing on one session cannot all win.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from ..core.enums import (
    ACTIVE_SESSION_STATUSES,
    LiveSessionStatus,
    ParticipantStatus,
    PaymentStatus,
    PayoutStatus,
)
from ..core.exceptions import RepositoryException
from ..models.live_session import AttendanceRecord, LiveSession, SessionParticipant
from ..models.payout import InstructorPayout, PayoutSession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class LiveSessionRepository(BaseRepository[LiveSession]):
    """Data access for live sessions, participants and attendance."""

    def __init__(self, db: Session):
        super().__init__(db, LiveSession)

    def _apply_eager_loading(self, query):
        return query.options(selectinload(LiveSession.participants))

    def get_by_booking_request(self, booking_request_id: str) -> Optional[LiveSession]:
        return self.find_one_by(booking_request_id=booking_request_id)

    def find_overlapping(
        self,
        instructor_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> List[LiveSession]:
        """Active sessions of the instructor with ``start < other.end and end > other.start``."""
        query = self._build_query().filter(
            LiveSession.instructor_id == instructor_id,
            LiveSession.status.in_(ACTIVE_SESSION_STATUSES),
            LiveSession.scheduled_start < end,
            LiveSession.scheduled_end > start,
        )
        if exclude_id:
            query = query.filter(LiveSession.id != exclude_id)
        return self._execute_query(query.order_by(LiveSession.scheduled_start))

    def transition_status(
        self,
        session_id: str,
        expected: LiveSessionStatus,
        target: LiveSessionStatus,
        **values: Any,
    ) -> bool:
        """Conditional UPDATE on ``status = expected``; False when another caller got there first."""
        changes: Dict[Any, Any] = {LiveSession.status: target}
        for key, value in values.items():
            changes[getattr(LiveSession, key)] = value
        try:
            updated = (
                self.db.query(LiveSession)
                .filter(LiveSession.id == session_id, LiveSession.status == expected)
                .update(changes, synchronize_session=False)
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error transitioning session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to update live session: {e}") from e

    def list_sessions(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        statuses: Optional[Sequence[LiveSessionStatus]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[LiveSession]:
        query = self._filtered(instructor_id, student_id, start, end)
        if statuses:
            query = query.filter(LiveSession.status.in_(list(statuses)))
        return self._execute_query(
            query.order_by(LiveSession.scheduled_start).offset(skip).limit(limit)
        )

    def count_by_status(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, int]:
        try:
            query = self._filtered(instructor_id, student_id, start, end).with_entities(
                LiveSession.status, func.count(LiveSession.id)
            )
            rows = query.group_by(LiveSession.status).all()
            return {str(status): int(count) for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error("Error counting sessions by status: %s", e)
            raise RepositoryException(f"Failed to compute session stats: {e}") from e

    def sum_completed_payouts(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Any:
        query = (
            self._filtered(instructor_id, student_id, start, end)
            .filter(LiveSession.status == LiveSessionStatus.COMPLETED)
            .with_entities(func.coalesce(func.sum(LiveSession.instructor_payout), 0))
        )
        return self._execute_scalar(query)

    def _filtered(
        self,
        instructor_id: Optional[str],
        student_id: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
    ):
        query = self._build_query()
        if instructor_id:
            query = query.filter(LiveSession.instructor_id == instructor_id)
        if student_id:
            query = query.join(
                SessionParticipant, SessionParticipant.session_id == LiveSession.id
            ).filter(SessionParticipant.user_id == student_id)
        if start:
            query = query.filter(LiveSession.scheduled_start >= start)
        if end:
            query = query.filter(LiveSession.scheduled_start <= end)
        return query

    # Payout eligibility

    def get_payout_eligible(
        self,
        instructor_id: str,
        *,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        ended_before: Optional[datetime] = None,
    ) -> List[LiveSession]:
        """COMPLETED, PAID sessions still awaiting payout and not attached to any payout."""
        query = self._eligible_query(ended_before).filter(
            LiveSession.instructor_id == instructor_id
        )
        if period_start:
            query = query.filter(LiveSession.scheduled_start >= period_start)
        if period_end:
            query = query.filter(LiveSession.scheduled_start <= period_end)
        return self._execute_query(query.order_by(LiveSession.scheduled_start))

    def get_instructors_with_eligible_sessions(self, ended_before: datetime) -> List[str]:
        try:
            rows = (
                self._eligible_query(ended_before)
                .with_entities(LiveSession.instructor_id)
                .distinct()
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error("Error listing instructors due a payout: %s", e)
            raise RepositoryException(f"Failed to list payout candidates: {e}") from e

    def _eligible_query(self, ended_before: Optional[datetime]):
        # Sessions of failed or cancelled payouts become eligible again
        already_paid = (
            select(PayoutSession.session_id)
            .join(InstructorPayout, InstructorPayout.id == PayoutSession.payout_id)
            .where(InstructorPayout.status.notin_([PayoutStatus.FAILED, PayoutStatus.CANCELLED]))
        )
        query = self._build_query().filter(
            LiveSession.status == LiveSessionStatus.COMPLETED,
            LiveSession.payment_status == PaymentStatus.PAID,
            LiveSession.payout_status == PayoutStatus.PENDING,
            ~LiveSession.id.in_(already_paid),
        )
        if ended_before is not None:
            query = query.filter(
                func.coalesce(LiveSession.actual_end, LiveSession.scheduled_end) <= ended_before
            )
        return query

    def set_payout_status(self, session_ids: Iterable[str], status: PayoutStatus) -> int:
        ids = list(session_ids)
        if not ids:
            return 0
        try:
            updated = (
                self.db.query(LiveSession)
                .filter(LiveSession.id.in_(ids))
                .update({LiveSession.payout_status: status}, synchronize_session=False)
            )
            return int(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error updating payout status for sessions: %s", e)
            raise RepositoryException(f"Failed to update payout status: {e}") from e

    # Participants and attendance

    def try_take_seat(self, session_id: str) -> bool:
        """Increment ``current_participants`` unless the session is full."""
        try:
            updated = (
                self.db.query(LiveSession)
                .filter(
                    LiveSession.id == session_id,
                    LiveSession.current_participants < LiveSession.max_participants,
                )
                .update(
                    {LiveSession.current_participants: LiveSession.current_participants + 1},
                    synchronize_session=False,
                )
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error taking a seat in session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to add participant: {e}") from e

    def release_seat(self, session_id: str) -> bool:
        try:
            updated = (
                self.db.query(LiveSession)
                .filter(LiveSession.id == session_id, LiveSession.current_participants > 0)
                .update(
                    {LiveSession.current_participants: LiveSession.current_participants - 1},
                    synchronize_session=False,
                )
            )
            return bool(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error releasing a seat in session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to remove participant: {e}") from e

    def set_participant_status(
        self, session_id: str, current: ParticipantStatus, target: ParticipantStatus
    ) -> int:
        try:
            updated = (
                self.db.query(SessionParticipant)
                .filter(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.status == current,
                )
                .update({SessionParticipant.status: target}, synchronize_session=False)
            )
            return int(updated)
        except SQLAlchemyError as e:
            self.logger.error("Error updating participants of session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to update participants: {e}") from e

    def get_participant_ids(self, session_id: str) -> List[str]:
        try:
            rows = (
                self.db.query(SessionParticipant.user_id)
                .filter(SessionParticipant.session_id == session_id)
                .all()
            )
            return [row[0] for row in rows]
        except SQLAlchemyError as e:
            self.logger.error("Error listing participants of session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to list participants: {e}") from e

    def list_participants(self, session_id: str) -> List[SessionParticipant]:
        try:
            return (
                self.db.query(SessionParticipant)
                .filter(SessionParticipant.session_id == session_id)
                .order_by(SessionParticipant.created_at, SessionParticipant.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing participants of session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to list participants: {e}") from e

    def list_attendance(self, session_id: str) -> List[AttendanceRecord]:
        try:
            return (
                self.db.query(AttendanceRecord)
                .filter(AttendanceRecord.session_id == session_id)
                .order_by(AttendanceRecord.created_at, AttendanceRecord.id)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing attendance of session %s: %s", session_id, e)
            raise RepositoryException(f"Failed to list attendance: {e}") from e

    def get_participant(self, session_id: str, user_id: str) -> Optional[SessionParticipant]:
        try:
            return (
                self.db.query(SessionParticipant)
                .filter(
                    SessionParticipant.session_id == session_id,
                    SessionParticipant.user_id == user_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading participant: %s", e)
            raise RepositoryException(f"Failed to load participant: {e}") from e

    def add_participant(self, **kwargs: Any) -> SessionParticipant:
        try:
            participant = SessionParticipant(**kwargs)
            self.db.add(participant)
            self.db.flush()
            return participant
        except SQLAlchemyError as e:
            self.logger.error("Error adding participant: %s", e)
            raise RepositoryException(f"Failed to add participant: {e}") from e

    def remove_participant(self, participant: SessionParticipant) -> None:
        try:
            self.db.delete(participant)
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error("Error removing participant: %s", e)
            raise RepositoryException(f"Failed to remove participant: {e}") from e

    def get_attendance(self, session_id: str, user_id: str) -> Optional[AttendanceRecord]:
        try:
            return (
                self.db.query(AttendanceRecord)
                .filter(
                    AttendanceRecord.session_id == session_id,
                    AttendanceRecord.user_id == user_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading attendance record: %s", e)
            raise RepositoryException(f"Failed to load attendance: {e}") from e

    def create_attendance(self, **kwargs: Any) -> AttendanceRecord:
        try:
            record = AttendanceRecord(**kwargs)
            self.db.add(record)
            self.db.flush()
            return record
        except SQLAlchemyError as e:
            self.logger.error("Error creating attendance record: %s", e)
            raise RepositoryException(f"Failed to create attendance: {e}") from e
