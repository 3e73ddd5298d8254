# backend/live_sessions/services/live_session_service.py
"""
Live session lifecycle.

Every status change is a compare-and-swap on the current status, so two
callers racing to start, end or cancel one session cannot both win; the
loser gets InvalidTransitionException.

Calls to the video provider and payment gateway never run inside a database
transaction. Operations that need them follow three phases:

- Phase 1: read and validate (short transaction)
- Phase 2: external call (no transaction)
- Phase 3: write the outcome (short transaction)

A failed external call before the transition (room provisioning) aborts the
operation. A failed call after the transition committed (capture, recording)
degrades to a sub-status instead of rolling back.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.enums import (
    AttendanceStatus,
    BookingRequestStatus,
    LiveSessionStatus,
    ParticipantRole,
    ParticipantStatus,
    PaymentStatus,
    PayoutStatus,
    RoleName,
)
from ..core.exceptions import (
    BookingConflictException,
    CapacityExceededException,
    ConflictException,
    ExternalServiceException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PolicyViolationException,
    ValidationException,
)
from ..core.state_machine import ensure_session_transition, state_value
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.publisher import EventPublisher
from ..events.session_events import SessionCancelled, SessionCompleted, SessionStarted
from ..integrations import build_payment_gateway, build_video_provider
from ..integrations.payment_gateway import PaymentGateway
from ..integrations.video_provider import RoomRef, VideoProvider
from ..models.booking_request import BookingRequest
from ..models.live_session import AttendanceRecord, LiveSession, SessionParticipant
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..schemas.session import AttendanceUpdate, LiveSessionCreate, LiveSessionUpdate
from .base import BaseService
from .capacity_ledger import CapacityLedger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
MAX_ENGAGEMENT_SCORE = 100


@dataclass(frozen=True)
class PriceBreakdown:
    total_revenue: Decimal
    platform_fee: Decimal
    instructor_payout: Decimal


def price_breakdown(
    price_per_person: Union[Decimal, float, int],
    participants: int,
    fee_rate: Union[Decimal, float],
) -> PriceBreakdown:
    """Revenue split: the platform keeps ``fee_rate`` of the total, the instructor the rest."""
    total = (Decimal(str(price_per_person)) * participants).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = (total * Decimal(str(fee_rate))).quantize(CENT, rounding=ROUND_HALF_UP)
    return PriceBreakdown(total_revenue=total, platform_fee=fee, instructor_payout=total - fee)


def attendance_minutes(joined_at: datetime, left_at: datetime) -> int:
    return max(round((ensure_utc(left_at) - ensure_utc(joined_at)).total_seconds() / 60), 0)


def calculate_engagement_score(
    duration_minutes: int,
    camera_on_time: int = 0,
    chat_messages: int = 0,
    questions_asked: int = 0,
    poll_responses: int = 0,
) -> int:
    """
    Weighted engagement score out of 100.

    Camera time is worth up to 30 points as a share of the attended minutes;
    chat, questions and polls are capped at 20, 30 and 20 points.
    """
    score = 0.0
    if camera_on_time and duration_minutes:
        score += camera_on_time / duration_minutes * 30
    score += min(chat_messages * 5, 20)
    score += min(questions_asked * 10, 30)
    score += min(poll_responses * 5, 20)
    return min(int(round(score)), MAX_ENGAGEMENT_SCORE)


class LiveSessionService(BaseService):
    """
    Service for the live session state machine.

    Besides its public operations it exposes a few ``*_for_booking`` helpers
    that run inside the booking workflow's unit of work and never commit.
    """

    def __init__(
        self,
        db: Session,
        event_publisher: Optional[EventPublisher] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        video_provider: Optional[VideoProvider] = None,
        config: Settings = default_settings,
    ):
        super().__init__(db, event_publisher)
        self.config = config
        self.repository = RepositoryFactory.create_live_session_repository(db)
        self.request_repository = RepositoryFactory.create_booking_request_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.offering_repository = RepositoryFactory.create_offering_repository(db)
        self.ledger = CapacityLedger(db)
        self.payment_gateway = payment_gateway or build_payment_gateway(config)
        self.video_provider = video_provider or build_video_provider(config)

    # Helpers

    def _get_session(self, session_id: str) -> LiveSession:
        session = self.repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException(f"Live session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    @staticmethod
    def _ensure_actor(session: LiveSession, actor_id: Optional[str]) -> None:
        if actor_id is not None and actor_id != session.instructor_id:
            raise ForbiddenException("Only the session's instructor can do this")

    @staticmethod
    def _ensure_open(session: LiveSession) -> None:
        if session.is_terminal:
            raise ConflictException(
                f"Live session is already {state_value(session.status)}",
                code="SESSION_TERMINAL",
                details={"session_id": session.id, "status": state_value(session.status)},
            )

    def _move(self, session: LiveSession, target: LiveSessionStatus, **values: Any) -> LiveSession:
        """
        Compare-and-swap the session into ``target``.

        Raises:
            InvalidTransitionException: the move is not in the transition table,
                or another caller changed the status first
        """
        current = LiveSessionStatus(state_value(session.status))
        ensure_session_transition(current, target)
        if not self.repository.transition_status(session.id, current, target, **values):
            raise InvalidTransitionException("live session", current.value, target.value)
        reloaded = self.repository.reload(session.id)
        if reloaded is None:
            raise NotFoundException(f"Live session {session.id} not found", code="SESSION_NOT_FOUND")
        return reloaded

    def _ensure_no_overlap(
        self,
        instructor_id: str,
        start: datetime,
        end: datetime,
        *,
        exclude_id: Optional[str] = None,
        shared_slot_id: Optional[str] = None,
    ) -> None:
        """
        Reject a window that overlaps another active session of the instructor.

        Sessions booked into the same group slot run side by side and are not
        conflicts of each other.
        """
        conflicts = [
            other
            for other in self.repository.find_overlapping(instructor_id, start, end, exclude_id)
            if not (shared_slot_id and other.time_slot_id == shared_slot_id)
        ]
        if conflicts:
            first = conflicts[0]
            raise BookingConflictException(
                "The instructor already has a session at this time",
                details={
                    "conflicting_session_id": first.id,
                    "conflicting_start": first.scheduled_start.isoformat(),
                    "conflicting_end": first.scheduled_end.isoformat(),
                },
            )

    def _insert_session(
        self,
        *,
        instructor_id: str,
        title: str,
        description: Optional[str],
        start: datetime,
        end: datetime,
        max_participants: int,
        price: Decimal,
        currency: str,
        fee_rate: Union[Decimal, float],
        participants: int = 0,
        **links: Any,
    ) -> LiveSession:
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise ValidationException("Session start must be before its end")
        self._ensure_no_overlap(instructor_id, start, end, shared_slot_id=links.get("time_slot_id"))
        # Snapshot for the first seat; recomputed from actual participants at completion
        breakdown = price_breakdown(price, max(participants, 1), fee_rate)
        return self.repository.create(
            instructor_id=instructor_id,
            title=title,
            description=description,
            scheduled_start=start,
            scheduled_end=end,
            duration_minutes=int((end - start).total_seconds() // 60),
            max_participants=max_participants,
            current_participants=participants,
            price_per_person=price,
            total_revenue=breakdown.total_revenue,
            platform_fee=breakdown.platform_fee,
            instructor_payout=breakdown.instructor_payout,
            currency=currency,
            payment_status=PaymentStatus.FREE if price == 0 else PaymentStatus.PENDING,
            payout_status=PayoutStatus.PENDING,
            **links,
        )

    def _fee_rate(self, offering_rate: Any = None) -> Union[Decimal, float]:
        return offering_rate if offering_rate is not None else self.config.platform_fee_rate

    # Helpers for the booking workflow (caller owns the unit of work)

    def materialize_for_booking(
        self,
        request: BookingRequest,
        start: datetime,
        end: datetime,
        price: Decimal,
    ) -> LiveSession:
        """Create the session for an accepted request, with the student enrolled."""
        offering = request.offering or self.offering_repository.get_by_id(request.offering_id)
        if offering is None:
            raise NotFoundException(f"Offering {request.offering_id} not found", code="OFFERING_NOT_FOUND")

        session = self._insert_session(
            instructor_id=request.instructor_id,
            title=offering.title,
            description=offering.description,
            start=start,
            end=end,
            max_participants=offering.max_participants,
            price=Decimal(str(price)),
            currency=request.currency,
            fee_rate=self._fee_rate(offering.platform_fee_rate),
            participants=1,
            booking_request_id=request.id,
            offering_id=offering.id,
            time_slot_id=request.time_slot_id,
            payment_intent_id=request.payment_intent_id,
        )
        self.repository.add_participant(
            session_id=session.id,
            user_id=request.student_id,
            role=ParticipantRole.STUDENT,
            status=ParticipantStatus.ENROLLED,
            paid_amount=Decimal(str(price)),
            currency=request.currency,
        )
        self.repository.create_attendance(session_id=session.id, user_id=request.student_id)
        self.db.expire(session, ["participants"])
        return session

    def cancel_for_booking(self, session: LiveSession, reason: Optional[str], now: datetime) -> LiveSession:
        """Cancel the session behind a cancelled booking and give its seat back."""
        cancelled = self._move(
            session,
            LiveSessionStatus.CANCELLED,
            cancellation_reason=reason,
            cancelled_at=now,
        )
        self.repository.set_participant_status(
            cancelled.id, ParticipantStatus.ENROLLED, ParticipantStatus.CANCELLED
        )
        self.ledger.release(cancelled.time_slot_id)
        return cancelled

    def move_for_booking(
        self, session: LiveSession, start: datetime, end: datetime, time_slot_id: Optional[str]
    ) -> LiveSession:
        """Move the session of a rescheduled booking; passes through RESCHEDULED."""
        self._ensure_no_overlap(
            session.instructor_id, start, end, exclude_id=session.id, shared_slot_id=time_slot_id
        )
        moved = self._move(session, LiveSessionStatus.RESCHEDULED)
        return self._move(
            moved,
            LiveSessionStatus.SCHEDULED,
            scheduled_start=start,
            scheduled_end=end,
            duration_minutes=int((end - start).total_seconds() // 60),
            time_slot_id=time_slot_id,
        )

    # Lifecycle

    @BaseService.measure_operation("create_session")
    def create_session(self, data: LiveSessionCreate) -> LiveSession:
        """
        Schedule a session outside the booking workflow.

        Raises:
            NotFoundException: unknown instructor
            BookingConflictException: overlaps another active session
        """
        instructor = self.user_repository.get_active(data.instructor_id)
        if instructor is None:
            raise NotFoundException(f"Instructor {data.instructor_id} not found", code="INSTRUCTOR_NOT_FOUND")
        if state_value(instructor.role) != RoleName.INSTRUCTOR.value:
            raise ValidationException("Sessions can only be hosted by instructors")

        fee_rate: Union[Decimal, float] = (
            data.platform_fee_rate if data.platform_fee_rate is not None else self._fee_rate()
        )
        with self.transaction():
            if data.time_slot_id:
                # Sessions pinned to a slot hold a seat like a booking would
                self.ledger.ensure_capacity(self.ledger.lock_slot(data.time_slot_id))
                self.ledger.reserve(data.time_slot_id)
            session = self._insert_session(
                instructor_id=data.instructor_id,
                title=data.title,
                description=data.description,
                start=data.scheduled_start,
                end=data.scheduled_end,
                max_participants=data.max_participants,
                price=Decimal(data.price_per_person),
                currency=data.currency.upper(),
                fee_rate=fee_rate,
                offering_id=data.offering_id,
                time_slot_id=data.time_slot_id,
                booking_request_id=data.booking_request_id,
            )

        self.log_operation("create_session", session_id=session.id, instructor_id=data.instructor_id)
        return session

    @BaseService.measure_operation("update_session")
    def update_session(
        self, session_id: str, data: LiveSessionUpdate, actor_id: Optional[str] = None
    ) -> LiveSession:
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            self._ensure_open(session)
            if data.max_participants is not None and data.max_participants < session.current_participants:
                raise ValidationException(
                    "max_participants cannot be lower than the current participant count",
                    details={"current_participants": session.current_participants},
                )
            for field, value in data.model_dump(exclude_unset=True).items():
                if value is not None:
                    setattr(session, field, value)
            self.repository.flush()
        return session

    @BaseService.measure_operation("confirm_session")
    def confirm_session(self, session_id: str, actor_id: Optional[str] = None) -> LiveSession:
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            session = self._move(session, LiveSessionStatus.CONFIRMED)
        return session

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, session_id: str, actor_id: Optional[str] = None) -> LiveSession:
        """Close a session nobody attended. The slot seat stays consumed."""
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            session = self._move(session, LiveSessionStatus.NO_SHOW)
            self.repository.set_participant_status(
                session_id, ParticipantStatus.ENROLLED, ParticipantStatus.NO_SHOW
            )
        self.log_operation("mark_no_show", session_id=session_id)
        return session

    @BaseService.measure_operation("start_session")
    def start_session(
        self, session_id: str, actor_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> LiveSession:
        """
        Open the video room and move the session to IN_PROGRESS.

        Raises:
            ExternalServiceException: the room could not be created; the
                session is left untouched
            InvalidTransitionException: the session cannot start from its status
        """
        # ========== PHASE 1: Read/validate ==========
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            ensure_session_transition(session.status, LiveSessionStatus.IN_PROGRESS)
            instructor_id = session.instructor_id

        # ========== PHASE 2: Provision the room (no transaction) ==========
        try:
            room = self.video_provider.create_room(session_id, instructor_id)
        except ExternalServiceException:
            prometheus_metrics.inc_external_failure("video_provider", "create_room")
            raise

        # ========== PHASE 3: Write ==========
        started_at = now or utc_now()
        try:
            with self.transaction():
                session = self._move(
                    self._get_session(session_id),
                    LiveSessionStatus.IN_PROGRESS,
                    actual_start=started_at,
                    meeting_room_id=room.room_id,
                    meeting_url=room.join_url,
                )
                self.repository.set_participant_status(
                    session_id, ParticipantStatus.ENROLLED, ParticipantStatus.ATTENDED
                )
                self.queue_event(
                    SessionStarted(
                        session_id=session.id,
                        instructor_id=session.instructor_id,
                        title=session.title,
                        meeting_url=room.join_url,
                        started_at=started_at,
                        participant_ids=self.repository.get_participant_ids(session.id),
                    )
                )
        except InvalidTransitionException:
            self.logger.warning("Session %s changed state while its room was provisioned", session_id)
            self.close_room(room)
            raise

        self.log_operation("start_session", session_id=session_id, room_id=room.room_id)
        return session

    @BaseService.measure_operation("end_session")
    def end_session(
        self,
        session_id: str,
        actual_end: Optional[datetime] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LiveSession:
        """
        Complete the session, then capture payment and collect the recording.

        Capture failure leaves the session COMPLETED with payout_status FAILED.
        Video provider failures are logged and otherwise ignored.
        """
        ended_at = ensure_utc(actual_end or now or utc_now())

        # ========== PHASE 1: Complete (transaction) ==========
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            if session.actual_start is not None:
                duration = attendance_minutes(session.actual_start, ended_at)
            else:
                duration = session.duration_minutes
            offering = session.offering
            breakdown = price_breakdown(
                session.price_per_person,
                session.current_participants,
                self._fee_rate(offering.platform_fee_rate if offering else None),
            )
            session = self._move(
                session,
                LiveSessionStatus.COMPLETED,
                actual_end=ended_at,
                actual_duration_minutes=duration,
                total_revenue=breakdown.total_revenue,
                platform_fee=breakdown.platform_fee,
                instructor_payout=breakdown.instructor_payout,
            )
            request = self._complete_booking(session, ended_at)
            if session.offering_id:
                self.offering_repository.record_completed_session(
                    session.offering_id, breakdown.total_revenue
                )
            self.queue_event(
                SessionCompleted(
                    session_id=session.id,
                    instructor_id=session.instructor_id,
                    title=session.title,
                    completed_at=ended_at,
                    participant_ids=self.repository.get_participant_ids(session.id),
                )
            )
            already_paid = request is not None and state_value(request.payment_status) == PaymentStatus.PAID.value
            intent_ref = session.payment_intent_id or (request.payment_intent_id if request else None)
            is_free = state_value(session.payment_status) == PaymentStatus.FREE.value
            room_id = session.meeting_room_id
            meeting_url = session.meeting_url
            request_id = request.id if request is not None else None

        # ========== PHASE 2: External calls (no transaction) ==========
        captured = already_paid
        if not captured and not is_free and intent_ref:
            captured = self._capture(session_id, intent_ref)
        recording_url = None
        if room_id:
            recording_url = self._collect_recording(RoomRef(room_id=room_id, join_url=meeting_url or ""))

        # ========== PHASE 3: Record the outcome ==========
        with self.transaction():
            session = self._get_session(session_id)
            if captured:
                session.payment_status = PaymentStatus.PAID
                session.payout_status = PayoutStatus.PENDING
                session.payment_intent_id = intent_ref
                if request_id:
                    paid_request = self.request_repository.get_by_id(request_id, load_relationships=False)
                    if paid_request is not None:
                        paid_request.payment_status = PaymentStatus.PAID
            elif not is_free:
                session.payout_status = PayoutStatus.FAILED
            if recording_url:
                session.recording_url = recording_url
            self.repository.flush()

        self.log_operation(
            "end_session", session_id=session_id, captured=captured, duration=session.actual_duration_minutes
        )
        return session

    def _complete_booking(self, session: LiveSession, ended_at: datetime) -> Optional[BookingRequest]:
        if not session.booking_request_id:
            return None
        completed = self.request_repository.transition_status(
            session.booking_request_id,
            BookingRequestStatus.ACCEPTED,
            BookingRequestStatus.COMPLETED,
            completed_at=ended_at,
        )
        if not completed:
            self.logger.warning(
                "Booking request %s was not ACCEPTED when its session ended", session.booking_request_id
            )
        return self.request_repository.reload(session.booking_request_id)

    def _capture(self, session_id: str, intent_ref: str) -> bool:
        try:
            result = self.payment_gateway.capture(intent_ref)
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("payment_gateway", "capture")
            self.logger.error("Payment capture failed for session %s: %s", session_id, e)
            return False
        if not result.success:
            self.logger.error("Payment capture declined for session %s", session_id)
        return result.success

    def _collect_recording(self, room: RoomRef) -> Optional[str]:
        self.close_room(room)
        try:
            return self.video_provider.get_recording(room)
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("video_provider", "get_recording")
            self.logger.error("Could not fetch recording for room %s: %s", room.room_id, e)
            return None

    def close_room(self, room: RoomRef) -> None:
        """End a video room outside any transaction; a provider failure is logged."""
        try:
            self.video_provider.end_room(room)
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("video_provider", "end_room")
            self.logger.error("Could not end room %s: %s", room.room_id, e)

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self,
        session_id: str,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LiveSession:
        """
        Cancel the session, free its slot seat and cancel the owning booking.

        A paid booking cancelled by its instructor is refunded in full after
        commit; an authorized but uncaptured payment is voided instead.
        """
        cancelled_at = now or utc_now()
        refund: Optional[Tuple[str, str, Decimal]] = None
        void: Optional[Tuple[str, str]] = None
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            self._ensure_open(session)
            room_id = session.meeting_room_id
            session = self.cancel_for_booking(session, reason, cancelled_at)
            if session.booking_request_id:
                request = self.request_repository.get_by_id(session.booking_request_id, load_relationships=False)
                if request is not None:
                    current = BookingRequestStatus(state_value(request.status))
                    if current in (BookingRequestStatus.PENDING, BookingRequestStatus.ACCEPTED):
                        self.request_repository.transition_status(
                            request.id,
                            current,
                            BookingRequestStatus.CANCELLED,
                            cancellation_reason=reason,
                            cancelled_at=cancelled_at,
                            cancelled_by_id=session.instructor_id,
                        )
                        request = self.request_repository.reload(request.id) or request
                    if (
                        state_value(request.payment_status) == PaymentStatus.PAID.value
                        and request.payment_intent_id
                    ):
                        refund = (request.id, request.payment_intent_id, Decimal(str(request.agreed_price)))
                    elif (
                        state_value(request.payment_status) == PaymentStatus.PENDING.value
                        and request.payment_intent_id
                    ):
                        void = (request.id, request.payment_intent_id)
            self.queue_event(
                SessionCancelled(
                    session_id=session.id,
                    instructor_id=session.instructor_id,
                    title=session.title,
                    reason=reason,
                    cancelled_at=cancelled_at,
                    participant_ids=self.repository.get_participant_ids(session.id),
                )
            )

        if room_id:
            self.close_room(RoomRef(room_id=room_id, join_url=session.meeting_url or ""))
        if refund is not None:
            self._refund_in_full(*refund)
        if void is not None:
            self.void_authorization(*void)

        self.log_operation("cancel_session", session_id=session_id, reason=reason)
        return session

    def _refund_in_full(self, request_id: str, intent_ref: str, amount: Decimal) -> None:
        try:
            result = self.payment_gateway.refund(intent_ref, amount, "instructor_cancelled")
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("payment_gateway", "refund")
            self.logger.error("Refund failed for booking request %s: %s", request_id, e)
            return
        with self.transaction():
            request = self.request_repository.get_by_id(request_id, load_relationships=False)
            if request is not None:
                request.payment_status = PaymentStatus.REFUNDED
                request.refund_amount = result.amount
                self.request_repository.flush()

    def void_authorization(self, request_id: str, intent_ref: str) -> bool:
        """
        Release the card hold of a booking that will never be captured.

        Runs after the booking's own unit of work committed. A gateway failure
        is logged and leaves the payment status as it was.
        """
        try:
            self.payment_gateway.cancel_intent(intent_ref)
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("payment_gateway", "cancel_intent")
            self.logger.error("Voiding payment failed for booking request %s: %s", request_id, e)
            return False
        with self.transaction():
            request = self.request_repository.get_by_id(request_id, load_relationships=False)
            if request is not None:
                request.payment_status = PaymentStatus.CANCELED
            session = self.repository.get_by_booking_request(request_id)
            if session is not None:
                session.payment_status = PaymentStatus.CANCELED
            self.repository.flush()
        return True

    @BaseService.measure_operation("reschedule_session")
    def reschedule_session(
        self,
        session_id: str,
        new_start: datetime,
        new_end: datetime,
        actor_id: Optional[str] = None,
    ) -> LiveSession:
        """
        Move a SCHEDULED or CONFIRMED standalone session to a new window.

        A seat the session held on a time slot is given back; the session is
        no longer tied to a slot once it runs outside it. Sessions behind a
        booking move only through the booking's reschedule.

        Raises:
            PolicyViolationException: the session belongs to a booking
            BookingConflictException: the window overlaps another active session
        """
        new_start, new_end = ensure_utc(new_start), ensure_utc(new_end)
        if new_start >= new_end:
            raise ValidationException("new_start must be before new_end")
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_actor(session, actor_id)
            if state_value(session.status) not in (
                LiveSessionStatus.SCHEDULED.value,
                LiveSessionStatus.CONFIRMED.value,
            ):
                raise InvalidTransitionException(
                    "live session", state_value(session.status), LiveSessionStatus.RESCHEDULED.value
                )
            if session.booking_request_id:
                raise PolicyViolationException(
                    "This session belongs to a booking; reschedule the booking instead",
                    code="RESCHEDULE_VIA_BOOKING",
                    details={"booking_request_id": session.booking_request_id},
                )
            old_slot_id = session.time_slot_id
            session = self.move_for_booking(session, new_start, new_end, None)
            if old_slot_id:
                self.ledger.release(old_slot_id)

        self.log_operation("reschedule_session", session_id=session_id, new_start=new_start.isoformat())
        return session

    # Participants

    @BaseService.measure_operation("add_participant")
    def add_participant(
        self,
        session_id: str,
        user_id: str,
        role: ParticipantRole = ParticipantRole.STUDENT,
        paid_amount: Optional[Decimal] = None,
    ) -> SessionParticipant:
        """
        Enroll a user and open their attendance record.

        Raises:
            CapacityExceededException: the session is full
            ConflictException: the user is already enrolled
        """
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_open(session)
            if self.user_repository.get_active(user_id) is None:
                raise NotFoundException(f"User {user_id} not found", code="USER_NOT_FOUND")
            if self.repository.get_participant(session_id, user_id) is not None:
                raise ConflictException(
                    "User is already a participant of this session", code="PARTICIPANT_EXISTS"
                )
            if not self.repository.try_take_seat(session_id):
                raise CapacityExceededException(
                    "This session is full",
                    details={"session_id": session_id, "max_participants": session.max_participants},
                )
            participant = self.repository.add_participant(
                session_id=session_id,
                user_id=user_id,
                role=role,
                status=ParticipantStatus.ENROLLED,
                paid_amount=paid_amount,
                currency=session.currency,
            )
            if self.repository.get_attendance(session_id, user_id) is None:
                self.repository.create_attendance(session_id=session_id, user_id=user_id)
            self.repository.reload(session_id)

        self.log_operation("add_participant", session_id=session_id, user_id=user_id)
        return participant

    @BaseService.measure_operation("remove_participant")
    def remove_participant(self, session_id: str, user_id: str) -> bool:
        with self.transaction():
            session = self._get_session(session_id)
            self._ensure_open(session)
            participant = self.repository.get_participant(session_id, user_id)
            if participant is None:
                raise NotFoundException("Participant not found", code="PARTICIPANT_NOT_FOUND")
            self.repository.remove_participant(participant)
            self.repository.release_seat(session_id)
            self.repository.reload(session_id)

        self.log_operation("remove_participant", session_id=session_id, user_id=user_id)
        return True

    @BaseService.measure_operation("update_attendance")
    def update_attendance(self, session_id: str, user_id: str, data: AttendanceUpdate) -> AttendanceRecord:
        """
        Record join/leave times and engagement metrics.

        The duration is recomputed whenever both join and leave times are known;
        the engagement score whenever any metric is supplied.
        """
        with self.transaction():
            record = self.repository.get_attendance(session_id, user_id)
            if record is None:
                raise NotFoundException("Attendance record not found", code="ATTENDANCE_NOT_FOUND")

            if data.joined_at is not None:
                record.joined_at = ensure_utc(data.joined_at)
            if data.left_at is not None:
                record.left_at = ensure_utc(data.left_at)
            if record.joined_at is not None and record.left_at is not None:
                if record.left_at < record.joined_at:
                    raise ValidationException("left_at cannot be before joined_at")
                record.duration_minutes = attendance_minutes(record.joined_at, record.left_at)

            if data.status is not None:
                record.status = data.status
            elif data.joined_at is not None and state_value(record.status) == AttendanceStatus.NOT_ATTENDED.value:
                record.status = AttendanceStatus.PRESENT

            metrics = data.model_dump(
                include={"camera_on_time", "mic_active_time", "chat_messages", "questions_asked", "poll_responses"},
                exclude_none=True,
            )
            for field, value in metrics.items():
                setattr(record, field, value)
            if metrics:
                record.engagement_score = calculate_engagement_score(
                    record.duration_minutes or 0,
                    camera_on_time=record.camera_on_time or 0,
                    chat_messages=record.chat_messages or 0,
                    questions_asked=record.questions_asked or 0,
                    poll_responses=record.poll_responses or 0,
                )
            self.repository.flush()
        return record

    # Reads

    def get_session(self, session_id: str) -> LiveSession:
        return self._get_session(session_id)

    @BaseService.measure_operation("get_session_participants")
    def get_session_participants(
        self, session_id: str, actor_id: Optional[str] = None
    ) -> List[SessionParticipant]:
        """Roster of the session, in enrollment order. Instructor only."""
        session = self._get_session(session_id)
        self._ensure_actor(session, actor_id)
        return self.repository.list_participants(session_id)

    @BaseService.measure_operation("get_session_attendance")
    def get_session_attendance(
        self, session_id: str, actor_id: Optional[str] = None
    ) -> List[AttendanceRecord]:
        session = self._get_session(session_id)
        self._ensure_actor(session, actor_id)
        return self.repository.list_attendance(session_id)

    @BaseService.measure_operation("list_sessions")
    def list_sessions(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[LiveSessionStatus] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[LiveSession]:
        return self.repository.list_sessions(
            instructor_id=instructor_id,
            student_id=student_id,
            statuses=[status] if status else None,
            start=ensure_utc(start) if start else None,
            end=ensure_utc(end) if end else None,
            skip=skip,
            limit=limit,
        )

    @BaseService.measure_operation("get_upcoming_sessions")
    def get_upcoming_sessions(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        days: int = 7,
        now: Optional[datetime] = None,
    ) -> List[LiveSession]:
        start = now or utc_now()
        return self.repository.list_sessions(
            instructor_id=instructor_id,
            student_id=student_id,
            statuses=[LiveSessionStatus.SCHEDULED, LiveSessionStatus.CONFIRMED],
            start=start,
            end=start + timedelta(days=days),
            limit=200,
        )

    @BaseService.measure_operation("get_session_stats")
    def get_session_stats(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        filters = {
            "instructor_id": instructor_id,
            "student_id": student_id,
            "start": ensure_utc(start) if start else None,
            "end": ensure_utc(end) if end else None,
        }
        by_status = self.repository.count_by_status(**filters)
        total = sum(by_status.values())
        completed = by_status.get(LiveSessionStatus.COMPLETED.value, 0)
        cancelled = by_status.get(LiveSessionStatus.CANCELLED.value, 0)
        revenue = self.repository.sum_completed_payouts(**filters)
        return {
            "total_sessions": total,
            "by_status": by_status,
            "scheduled_sessions": by_status.get(LiveSessionStatus.SCHEDULED.value, 0),
            "in_progress_sessions": by_status.get(LiveSessionStatus.IN_PROGRESS.value, 0),
            "completed_sessions": completed,
            "cancelled_sessions": cancelled,
            "total_revenue": float(revenue or 0),
            "completion_rate": round(completed / total * 100, 2) if total else 0.0,
            "cancellation_rate": round(cancelled / total * 100, 2) if total else 0.0,
        }
