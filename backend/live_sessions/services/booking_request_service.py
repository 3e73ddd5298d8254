# backend/live_sessions/services/booking_request_service.py
"""
Booking request service.

Drives the BookingRequest state machine:

    PENDING  -> ACCEPTED | REJECTED | CANCELLED | EXPIRED
    ACCEPTED -> CANCELLED | COMPLETED  (plus in-place reschedule, capped)

Seat accounting goes through the CapacityLedger. A PENDING request holds a
claim on its slot without touching ``current_bookings``; the counter moves
only when a request becomes ACCEPTED (at creation when auto-approved, or at
accept). Every status change is a compare-and-swap on the current status.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import Settings, settings as default_settings
from ..core.enums import (
    BookingMode,
    BookingRequestStatus,
    CancellationPolicy,
    LiveSessionStatus,
    PaymentStatus,
)
from ..core.exceptions import (
    CapacityExceededException,
    ConflictException,
    ExternalServiceException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PolicyViolationException,
    ValidationException,
)
from ..core.state_machine import ensure_booking_transition, state_value
from ..core.timezone_utils import ensure_utc, hours_between, utc_now
from ..events.booking_events import (
    BookingAccepted,
    BookingCancelled,
    BookingExpired,
    BookingRejected,
    BookingRequested,
    BookingRescheduled,
)
from ..events.publisher import EventPublisher
from ..integrations import build_payment_gateway
from ..integrations.payment_gateway import PaymentGateway
from ..integrations.video_provider import RoomRef, VideoProvider
from ..models.availability import TimeSlot
from ..models.booking_request import BookingRequest
from ..models.offering import SessionOffering
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from ..schemas.booking import BookingRequestCreate, BookingRequestUpdate
from .auto_approval import build_policy_input, evaluate_auto_approval
from .base import BaseService
from .capacity_ledger import CapacityLedger
from .live_session_service import LiveSessionService
from .refund_calculator import RefundQuote, refund_for_booking

logger = logging.getLogger(__name__)

# Payment states a settlement callback may not overwrite
SETTLED_REFUND_STATUSES = (PaymentStatus.REFUNDED.value, PaymentStatus.PARTIAL_REFUND.value)

# Bookings that will never be delivered and so can no longer be paid for
CLOSED_BOOKING_STATUSES = (
    BookingRequestStatus.CANCELLED.value,
    BookingRequestStatus.EXPIRED.value,
    BookingRequestStatus.REJECTED.value,
)


@dataclass(frozen=True)
class _PendingRefund:
    request_id: str
    session_id: Optional[str]
    intent_ref: str
    quote: RefundQuote
    reason: str


class BookingRequestService(BaseService):
    """
    Service for the booking workflow.

    Materializes, moves and cancels live sessions through LiveSessionService
    inside its own unit of work, so a booking and its session always commit
    or roll back together.
    """

    def __init__(
        self,
        db: Session,
        event_publisher: Optional[EventPublisher] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        video_provider: Optional[VideoProvider] = None,
        session_service: Optional[LiveSessionService] = None,
        config: Settings = default_settings,
    ):
        super().__init__(db, event_publisher)
        self.config = config
        self.repository = RepositoryFactory.create_booking_request_repository(db)
        self.offering_repository = RepositoryFactory.create_offering_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.ledger = CapacityLedger(db, request_repository=self.repository)
        self.payment_gateway = payment_gateway or build_payment_gateway(config)
        self.session_service = session_service or LiveSessionService(
            db,
            self.event_publisher,
            payment_gateway=self.payment_gateway,
            video_provider=video_provider,
            config=config,
        )

    # Lookups and validation

    def _get_request(self, request_id: str) -> BookingRequest:
        request = self.repository.get_by_id(request_id)
        if request is None:
            raise NotFoundException(
                f"Booking request {request_id} not found", code="BOOKING_REQUEST_NOT_FOUND"
            )
        return request

    def _reload(self, request_id: str) -> BookingRequest:
        request = self.repository.reload(request_id)
        if request is None:
            raise NotFoundException(
                f"Booking request {request_id} not found", code="BOOKING_REQUEST_NOT_FOUND"
            )
        return request

    @staticmethod
    def _ensure_instructor(request: BookingRequest, instructor_id: str) -> None:
        if request.instructor_id != instructor_id:
            raise ForbiddenException("Only the booked instructor can respond to this request")

    @staticmethod
    def _actor_role(request: BookingRequest, actor_id: str) -> str:
        if actor_id == request.student_id:
            return "student"
        if actor_id == request.instructor_id:
            return "instructor"
        raise ForbiddenException("Only the student or the instructor can change this booking")

    def _get_bookable_offering(self, offering_id: str) -> SessionOffering:
        offering = self.offering_repository.get_by_id(offering_id)
        if offering is None:
            raise NotFoundException(f"Offering {offering_id} not found", code="OFFERING_NOT_FOUND")
        if not offering.is_bookable:
            raise ValidationException(
                "This offering is not open for booking",
                code="OFFERING_NOT_BOOKABLE",
                details={"offering_id": offering_id},
            )
        return offering

    def _validate_slot(
        self, slot: TimeSlot, offering: SessionOffering, now: datetime
    ) -> None:
        """Slot checks shared by create, accept and reschedule."""
        if slot.instructor_id != offering.instructor_id:
            raise ValidationException(
                "The time slot does not belong to this offering's instructor",
                code="SLOT_INSTRUCTOR_MISMATCH",
            )
        if slot.duration_minutes < offering.duration_minutes:
            raise ValidationException(
                "The time slot is shorter than the offering",
                code="SLOT_TOO_SHORT",
                details={
                    "slot_minutes": slot.duration_minutes,
                    "offering_minutes": offering.duration_minutes,
                },
            )
        if ensure_utc(slot.start_at) <= now:
            raise ValidationException("The time slot has already started", code="SLOT_IN_PAST")
        if slot.is_blocked or not slot.is_available:
            raise ConflictException(
                "This time slot is not open for booking",
                code="SLOT_UNAVAILABLE",
                details={"slot_id": slot.id},
            )
        if slot.is_booked:
            raise CapacityExceededException(details={"slot_id": slot.id})

    def _check_price_floor(self, offering: SessionOffering, price: Decimal) -> None:
        floor = Decimal(str(offering.base_price)) * Decimal(str(self.config.min_price_ratio))
        if price < floor:
            raise PolicyViolationException(
                f"Offered price must be at least {floor.quantize(Decimal('0.01'))}",
                code="PRICE_TOO_LOW",
                details={"offered_price": str(price), "minimum_price": str(floor)},
            )

    def _expiry_for(self, mode: BookingMode, slot: Optional[TimeSlot], now: datetime) -> datetime:
        if mode == BookingMode.DIRECT:
            expires_at = now + timedelta(minutes=self.config.direct_booking_hold_minutes)
        else:
            expires_at = now + timedelta(hours=self.config.booking_request_expiry_hours)
        # A request cannot stay open past the start of its slot
        if slot is not None:
            expires_at = min(expires_at, ensure_utc(slot.start_at))
        return expires_at

    def _expire_if_due(self, request_id: str, now: datetime) -> bool:
        """
        Lazily expire a PENDING request whose hold ran out.

        Commits on its own so the expiry sticks even though the caller fails.
        """
        with self.transaction():
            request = self._get_request(request_id)
            if state_value(request.status) != BookingRequestStatus.PENDING.value:
                return False
            if not request.is_expired(now):
                return False
            if not self.repository.transition_status(
                request.id, BookingRequestStatus.PENDING, BookingRequestStatus.EXPIRED
            ):
                return False
            self.queue_event(
                BookingExpired(
                    booking_request_id=request.id,
                    student_id=request.student_id,
                    instructor_id=request.instructor_id,
                    expired_at=now,
                )
            )
            void_intent = self._authorized_intent(request)
        prometheus_metrics.inc_booking_outcome("expired")
        if void_intent:
            self.session_service.void_authorization(request_id, void_intent)
        return True

    # Creation

    @BaseService.measure_operation("create_request")
    def create_request(
        self, student_id: str, data: BookingRequestCreate, now: Optional[datetime] = None
    ) -> BookingRequest:
        """
        Create a booking request, auto-approving it when policy allows.

        The slot is read (row-locked where supported), capacity is checked
        against seats taken plus other pending claims, the request is inserted
        and, when auto-approved, a seat is taken through the ledger and the
        live session is created. All in one unit of work: a lost race on the
        last seat rolls the whole booking back.

        Raises:
            NotFoundException: unknown offering, student or slot
            ConflictException: slot blocked, or an open request already exists
            CapacityExceededException: the slot has no seat left
            PolicyViolationException: offered price below the floor
        """
        now = now or utc_now()

        with self.transaction():
            offering = self._get_bookable_offering(data.offering_id)
            student = self.user_repository.get_active(student_id)
            if student is None:
                raise NotFoundException(f"Student {student_id} not found", code="STUDENT_NOT_FOUND")
            if student_id == offering.instructor_id:
                raise ValidationException("Instructors cannot book their own offerings")

            slot: Optional[TimeSlot] = None
            if data.time_slot_id:
                slot = self.ledger.lock_slot(data.time_slot_id)
                self._validate_slot(slot, offering, now)
            elif not (data.preferred_start and data.preferred_end):
                raise ValidationException(
                    "Either a time slot or a preferred window is required",
                    code="SLOT_REQUIRED",
                )

            if self.repository.find_outstanding_for_student(student_id, offering.id) is not None:
                raise ConflictException(
                    "You already have an open request for this offering",
                    code="DUPLICATE_REQUEST",
                    details={"offering_id": offering.id},
                )

            price = self._resolve_price(data, offering, slot)
            self._check_price_floor(offering, price)

            remaining = self.ledger.ensure_capacity(slot) if slot is not None else 0
            decision = evaluate_auto_approval(
                build_policy_input(
                    profile=self.user_repository.get_instructor_profile(offering.instructor_id),
                    offering=offering,
                    slot=slot,
                    availability=slot.availability if slot is not None else None,
                    remaining_capacity=remaining,
                    now=now,
                )
            )

            request = self.repository.create(
                offering_id=offering.id,
                student_id=student_id,
                instructor_id=offering.instructor_id,
                time_slot_id=slot.id if slot is not None else None,
                mode=data.mode,
                status=BookingRequestStatus.ACCEPTED if decision.approved else BookingRequestStatus.PENDING,
                preferred_start=ensure_utc(data.preferred_start) if data.preferred_start else None,
                preferred_end=ensure_utc(data.preferred_end) if data.preferred_end else None,
                offered_price=price,
                final_price=price if decision.approved else None,
                currency=offering.currency,
                message=data.message,
                expires_at=self._expiry_for(data.mode, slot, now),
                payment_status=PaymentStatus.FREE if price == 0 else PaymentStatus.PENDING,
                responded_at=now if decision.approved else None,
            )

            if decision.approved and slot is not None:
                self.ledger.reserve(slot.id)
                self.session_service.materialize_for_booking(request, slot.start_at, slot.end_at, price)
                self.db.expire(request, ["live_session"])

            self.queue_event(
                BookingRequested(
                    booking_request_id=request.id,
                    student_id=student_id,
                    instructor_id=offering.instructor_id,
                    offering_id=offering.id,
                    auto_accepted=decision.approved,
                    created_at=now,
                )
            )

        prometheus_metrics.inc_booking_outcome("auto_accepted" if decision.approved else "pending")
        self.log_operation(
            "create_request",
            booking_request_id=request.id,
            student_id=student_id,
            **decision.to_log_context(),
        )
        return request

    @staticmethod
    def _resolve_price(
        data: BookingRequestCreate, offering: SessionOffering, slot: Optional[TimeSlot]
    ) -> Decimal:
        if data.offered_price is not None:
            return Decimal(data.offered_price)
        availability = slot.availability if slot is not None else None
        if availability is not None and availability.price_override is not None:
            return Decimal(str(availability.price_override))
        return Decimal(str(offering.base_price))

    # Instructor responses

    @BaseService.measure_operation("accept_request")
    def accept_request(
        self,
        request_id: str,
        instructor_id: str,
        final_price: Optional[Decimal] = None,
        time_slot_id: Optional[str] = None,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        """
        Accept a pending request and materialize its live session.

        Capacity is re-checked against the live counter inside this unit of
        work, then a seat is taken through the ledger.

        Raises:
            InvalidTransitionException: not PENDING, or the hold expired
            CapacityExceededException: the slot filled up in the meantime
        """
        now = now or utc_now()
        if self._expire_if_due(request_id, now):
            raise InvalidTransitionException(
                "booking request", BookingRequestStatus.EXPIRED.value, BookingRequestStatus.ACCEPTED.value
            )

        with self.transaction():
            request = self._get_request(request_id)
            self._ensure_instructor(request, instructor_id)
            ensure_booking_transition(request.status, BookingRequestStatus.ACCEPTED)
            offering = request.offering

            price = Decimal(final_price) if final_price is not None else Decimal(str(request.offered_price))
            self._check_price_floor(offering, price)

            slot_id = time_slot_id or request.time_slot_id
            if slot_id:
                slot = self.ledger.lock_slot(slot_id)
                self._validate_slot(slot, offering, now)
                self.ledger.ensure_capacity(slot, exclude_request_id=request.id)
                self.ledger.reserve(slot.id)
                start, end = slot.start_at, slot.end_at
            elif request.preferred_start and request.preferred_end:
                start, end = request.preferred_start, request.preferred_end
            else:
                raise ValidationException(
                    "A time slot is required to accept this request", code="SLOT_REQUIRED"
                )

            if not self.repository.transition_status(
                request.id,
                BookingRequestStatus.PENDING,
                BookingRequestStatus.ACCEPTED,
                final_price=price,
                time_slot_id=slot_id,
                instructor_response=message,
                responded_at=now,
            ):
                raise InvalidTransitionException(
                    "booking request", state_value(request.status), BookingRequestStatus.ACCEPTED.value
                )
            request = self._reload(request.id)
            session = self.session_service.materialize_for_booking(request, start, end, price)
            self.db.expire(request, ["live_session"])

            self.queue_event(
                BookingAccepted(
                    booking_request_id=request.id,
                    student_id=request.student_id,
                    instructor_id=request.instructor_id,
                    session_id=session.id,
                    scheduled_start=session.scheduled_start,
                    accepted_at=now,
                )
            )

        prometheus_metrics.inc_booking_outcome("accepted")
        self.log_operation("accept_request", booking_request_id=request_id, session_id=session.id)
        return request

    @BaseService.measure_operation("reject_request")
    def reject_request(
        self,
        request_id: str,
        instructor_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        now = now or utc_now()
        if self._expire_if_due(request_id, now):
            raise InvalidTransitionException(
                "booking request", BookingRequestStatus.EXPIRED.value, BookingRequestStatus.REJECTED.value
            )

        with self.transaction():
            request = self._get_request(request_id)
            self._ensure_instructor(request, instructor_id)
            ensure_booking_transition(request.status, BookingRequestStatus.REJECTED)
            if not self.repository.transition_status(
                request.id,
                BookingRequestStatus.PENDING,
                BookingRequestStatus.REJECTED,
                rejection_reason=reason,
                responded_at=now,
            ):
                raise InvalidTransitionException(
                    "booking request", state_value(request.status), BookingRequestStatus.REJECTED.value
                )
            request = self._reload(request.id)
            self.queue_event(
                BookingRejected(
                    booking_request_id=request.id,
                    student_id=request.student_id,
                    instructor_id=request.instructor_id,
                    reason=reason,
                    rejected_at=now,
                )
            )
            void_intent = self._authorized_intent(request)

        prometheus_metrics.inc_booking_outcome("rejected")
        if void_intent and self.session_service.void_authorization(request_id, void_intent):
            request = self._reload(request_id)
        self.log_operation("reject_request", booking_request_id=request_id)
        return request

    # Student edits

    @BaseService.measure_operation("update_request")
    def update_request(
        self,
        request_id: str,
        student_id: str,
        data: BookingRequestUpdate,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        """
        Edit a pending request before the instructor answers it.

        A new slot goes through the same slot and capacity checks as creation,
        and a new price through the same floor. The hold is shortened when the
        new slot starts before it runs out.

        Raises:
            InvalidTransitionException: the request is no longer PENDING
            ConflictException: the price changes after a payment was authorized
            PolicyViolationException: offered price below the floor
        """
        now = now or utc_now()
        if self._expire_if_due(request_id, now):
            raise InvalidTransitionException(
                "booking request", BookingRequestStatus.EXPIRED.value, BookingRequestStatus.PENDING.value
            )

        with self.transaction():
            request = self._get_request(request_id)
            if request.student_id != student_id:
                raise ForbiddenException("Only the booking's student can edit it")
            if state_value(request.status) != BookingRequestStatus.PENDING.value:
                raise InvalidTransitionException(
                    "booking request", state_value(request.status), BookingRequestStatus.PENDING.value
                )
            offering = request.offering

            if data.time_slot_id is not None and data.time_slot_id != request.time_slot_id:
                slot = self.ledger.lock_slot(data.time_slot_id)
                self._validate_slot(slot, offering, now)
                self.ledger.ensure_capacity(slot, exclude_request_id=request.id)
                request.time_slot_id = slot.id
                request.expires_at = min(ensure_utc(request.expires_at), ensure_utc(slot.start_at))

            if data.offered_price is not None:
                price = Decimal(data.offered_price)
                if request.payment_intent_id and price != Decimal(str(request.offered_price)):
                    raise ConflictException(
                        "The price cannot change once a payment is authorized",
                        code="PAYMENT_EXISTS",
                    )
                self._check_price_floor(offering, price)
                request.offered_price = price
                if not request.payment_intent_id:
                    request.payment_status = PaymentStatus.FREE if price == 0 else PaymentStatus.PENDING

            if data.preferred_start is not None:
                request.preferred_start = ensure_utc(data.preferred_start)
            if data.preferred_end is not None:
                request.preferred_end = ensure_utc(data.preferred_end)
            if (
                request.preferred_start
                and request.preferred_end
                and ensure_utc(request.preferred_end) <= ensure_utc(request.preferred_start)
            ):
                raise ValidationException(
                    "preferred_end must be after preferred_start", code="INVALID_WINDOW"
                )

            if data.message is not None:
                request.message = data.message
            self.repository.flush()
            request = self._reload(request.id)

        self.log_operation(
            "update_request",
            booking_request_id=request_id,
            fields=sorted(data.model_dump(exclude_none=True)),
        )
        return request

    # Cancellation

    @BaseService.measure_operation("cancel_request")
    def cancel_request(
        self,
        request_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        """
        Cancel a pending or accepted request.

        An accepted request's live session is cancelled with it and its seat
        returned to the slot. A paid booking is refunded after commit: by its
        cancellation policy when the student cancels, in full when the
        instructor does. An authorized payment that was never captured is
        voided instead, and the video room of a running session is closed.

        Phases:
        1. Cancel booking and session, compute the refund (transaction)
        2. Refund or void through the gateway, close the room (no transaction)
        3. Record the refund (transaction)
        """
        now = now or utc_now()

        # ========== PHASE 1: Cancel (transaction) ==========
        with self.transaction():
            request = self._get_request(request_id)
            cancelled_by = self._actor_role(request, actor_id)
            current = BookingRequestStatus(state_value(request.status))
            ensure_booking_transition(current, BookingRequestStatus.CANCELLED)

            session = request.live_session
            pending_refund = self._quote_refund(request, cancelled_by, reason, now)
            void_intent = self._authorized_intent(request)
            room: Optional[RoomRef] = None
            if session is not None and session.meeting_room_id and not session.is_terminal:
                room = RoomRef(room_id=session.meeting_room_id, join_url=session.meeting_url or "")

            if current == BookingRequestStatus.ACCEPTED:
                if session is not None and not session.is_terminal:
                    self.session_service.cancel_for_booking(session, reason, now)
                elif session is None:
                    self.ledger.release(request.time_slot_id)

            if not self.repository.transition_status(
                request.id,
                current,
                BookingRequestStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_at=now,
                cancelled_by_id=actor_id,
            ):
                raise InvalidTransitionException(
                    "booking request", current.value, BookingRequestStatus.CANCELLED.value
                )
            request = self._reload(request.id)
            self.queue_event(
                BookingCancelled(
                    booking_request_id=request.id,
                    student_id=request.student_id,
                    instructor_id=request.instructor_id,
                    cancelled_by=cancelled_by,
                    cancelled_at=now,
                    refund_amount=float(pending_refund.quote.refund_amount) if pending_refund else None,
                )
            )

        prometheus_metrics.inc_booking_outcome("cancelled")

        # ========== PHASE 2 + 3: Refund, void, room teardown ==========
        if room is not None:
            self.session_service.close_room(room)
        if pending_refund is not None and not pending_refund.quote.is_zero:
            request = self._issue_refund(pending_refund)
        elif void_intent and self.session_service.void_authorization(request_id, void_intent):
            request = self._reload(request_id)

        self.log_operation(
            "cancel_request",
            booking_request_id=request_id,
            cancelled_by=cancelled_by,
            refund=str(pending_refund.quote.refund_amount) if pending_refund else None,
        )
        return request

    @staticmethod
    def _authorized_intent(request: BookingRequest) -> Optional[str]:
        """Intent holding the card without having been captured, if any."""
        if request.payment_intent_id and state_value(request.payment_status) == PaymentStatus.PENDING.value:
            return request.payment_intent_id
        return None

    def _quote_refund(
        self, request: BookingRequest, cancelled_by: str, reason: Optional[str], now: datetime
    ) -> Optional[_PendingRefund]:
        if state_value(request.payment_status) != PaymentStatus.PAID.value or not request.payment_intent_id:
            return None
        session = request.live_session
        session_start = self._session_start(request)
        if cancelled_by == "instructor":
            quote = RefundQuote(
                refund_amount=Decimal(str(request.agreed_price)),
                refund_percentage=100,
                policy="INSTRUCTOR_CANCELLED",
                hours_until_start=hours_between(now, session_start),
            )
        else:
            quote = refund_for_booking(request, session_start, self._policy_for(request), now)
        return _PendingRefund(
            request_id=request.id,
            session_id=session.id if session is not None else None,
            intent_ref=request.payment_intent_id,
            quote=quote,
            reason=reason or f"cancelled_by_{cancelled_by}",
        )

    @staticmethod
    def _session_start(request: BookingRequest) -> datetime:
        if request.live_session is not None:
            return request.live_session.scheduled_start
        if request.time_slot is not None:
            return request.time_slot.start_at
        if request.preferred_start is not None:
            return request.preferred_start
        raise ValidationException("Booking has no scheduled time to refund against")

    def _policy_for(self, request: BookingRequest) -> Any:
        offering = request.offering
        if offering is not None and offering.cancellation_policy:
            return offering.cancellation_policy
        profile = self.user_repository.get_instructor_profile(request.instructor_id)
        if profile is not None:
            return profile.default_cancellation_policy
        return CancellationPolicy.MODERATE

    def _issue_refund(self, pending: _PendingRefund) -> BookingRequest:
        try:
            result = self.payment_gateway.refund(
                pending.intent_ref, pending.quote.refund_amount, pending.reason
            )
        except ExternalServiceException as e:
            prometheus_metrics.inc_external_failure("payment_gateway", "refund")
            self.logger.error("Refund failed for booking request %s: %s", pending.request_id, e)
            return self._reload(pending.request_id)

        status = PaymentStatus.REFUNDED if pending.quote.is_full else PaymentStatus.PARTIAL_REFUND
        with self.transaction():
            request = self._reload(pending.request_id)
            request.payment_status = status
            request.refund_amount = result.amount
            if pending.session_id:
                session = self.session_service.repository.get_by_id(
                    pending.session_id, load_relationships=False
                )
                if session is not None:
                    session.payment_status = status
            self.repository.flush()
        return request

    # Reschedule and completion

    @BaseService.measure_operation("reschedule_request")
    def reschedule_request(
        self,
        request_id: str,
        actor_id: str,
        new_slot_id: str,
        now: Optional[datetime] = None,
    ) -> BookingRequest:
        """
        Move an accepted booking to another slot of the same instructor.

        The new seat is taken before the old one is returned, so a failed
        reservation leaves the booking where it was.

        Raises:
            PolicyViolationException: the reschedule limit is reached
            CapacityExceededException: the new slot is full
        """
        now = now or utc_now()
        with self.transaction():
            request = self._get_request(request_id)
            self._actor_role(request, actor_id)
            if state_value(request.status) != BookingRequestStatus.ACCEPTED.value:
                raise InvalidTransitionException(
                    "booking request", state_value(request.status), "RESCHEDULED"
                )
            if request.reschedule_count >= self.config.max_reschedules:
                raise PolicyViolationException(
                    f"A booking can be rescheduled at most {self.config.max_reschedules} times",
                    code="RESCHEDULE_LIMIT_REACHED",
                    details={"reschedule_count": request.reschedule_count},
                )
            if new_slot_id == request.time_slot_id:
                raise ValidationException("The booking is already in this slot", code="SAME_SLOT")

            new_slot = self.ledger.lock_slot(new_slot_id)
            self._validate_slot(new_slot, request.offering, now)
            self.ledger.ensure_capacity(new_slot, exclude_request_id=request.id)
            self.ledger.reserve(new_slot.id)
            self.ledger.release(request.time_slot_id)

            session = request.live_session
            if session is not None and not session.is_terminal:
                self.session_service.move_for_booking(
                    session, new_slot.start_at, new_slot.end_at, new_slot.id
                )

            request.time_slot_id = new_slot.id
            request.reschedule_count = request.reschedule_count + 1
            self.repository.flush()
            request = self._reload(request.id)

            self.queue_event(
                BookingRescheduled(
                    booking_request_id=request.id,
                    student_id=request.student_id,
                    instructor_id=request.instructor_id,
                    new_start=new_slot.start_at,
                    reschedule_count=request.reschedule_count,
                )
            )

        self.log_operation(
            "reschedule_request", booking_request_id=request_id, new_slot_id=new_slot_id
        )
        return request

    @BaseService.measure_operation("complete_request")
    def complete_request(self, request_id: str, now: Optional[datetime] = None) -> BookingRequest:
        """Mark an accepted booking delivered. Normally driven by the session ending."""
        now = now or utc_now()
        with self.transaction():
            request = self._get_request(request_id)
            ensure_booking_transition(request.status, BookingRequestStatus.COMPLETED)
            if not self.repository.transition_status(
                request.id,
                BookingRequestStatus.ACCEPTED,
                BookingRequestStatus.COMPLETED,
                completed_at=now,
            ):
                raise InvalidTransitionException(
                    "booking request", state_value(request.status), BookingRequestStatus.COMPLETED.value
                )
            request = self._reload(request.id)
        return request

    # Expiry sweep

    @BaseService.measure_operation("expire_pending_requests")
    def expire_pending_requests(
        self, now: Optional[datetime] = None, batch_size: int = 500
    ) -> Dict[str, int]:
        """
        Move PENDING requests past their hold to EXPIRED.

        Each row is its own unit of work; a row another worker already moved
        is skipped, and a failing row is logged and counted without stopping
        the sweep. Running it twice changes nothing the second time.
        """
        now = now or utc_now()
        with self.transaction():
            candidates: List[Tuple[str, str, str, Optional[str]]] = [
                (r.id, r.student_id, r.instructor_id, self._authorized_intent(r))
                for r in self.repository.get_expired_pending(now, limit=batch_size)
            ]

        expired = skipped = failed = 0
        for request_id, student_id, instructor_id, void_intent in candidates:
            try:
                with self.transaction():
                    moved = self.repository.transition_status(
                        request_id, BookingRequestStatus.PENDING, BookingRequestStatus.EXPIRED
                    )
                    if moved:
                        self.queue_event(
                            BookingExpired(
                                booking_request_id=request_id,
                                student_id=student_id,
                                instructor_id=instructor_id,
                                expired_at=now,
                            )
                        )
            except Exception:
                failed += 1
                self.logger.exception("Failed to expire booking request %s", request_id)
                continue
            if moved:
                expired += 1
                prometheus_metrics.inc_booking_outcome("expired")
                if void_intent:
                    self.session_service.void_authorization(request_id, void_intent)
            else:
                skipped += 1

        result = {
            "examined": len(candidates),
            "expired": expired,
            "skipped": skipped,
            "failed": failed,
        }
        self.log_operation("expire_pending_requests", **result)
        return result

    # Payments

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(self, request_id: str, student_id: str) -> BookingRequest:
        """
        Open a payment intent for the agreed price.

        The intent is authorized now and captured when the session ends.
        """
        # ========== PHASE 1: Validate ==========
        with self.transaction():
            request = self._get_request(request_id)
            if request.student_id != student_id:
                raise ForbiddenException("Only the booking's student can pay for it")
            if state_value(request.status) not in (
                BookingRequestStatus.PENDING.value,
                BookingRequestStatus.ACCEPTED.value,
            ):
                raise ConflictException(
                    "Only open bookings can be paid for",
                    code="BOOKING_NOT_OPEN",
                    details={"status": state_value(request.status)},
                )
            if request.payment_intent_id:
                raise ConflictException(
                    "A payment is already in progress for this booking", code="PAYMENT_EXISTS"
                )
            amount = Decimal(str(request.agreed_price))
            if amount == 0:
                raise ValidationException("Free bookings need no payment", code="BOOKING_FREE")
            currency = request.currency

        # ========== PHASE 2: Create the intent (no transaction) ==========
        intent_ref = self.payment_gateway.create_intent(request_id, amount, currency)

        # ========== PHASE 3: Store it ==========
        with self.transaction():
            request = self._reload(request_id)
            request.payment_intent_id = intent_ref
            session = request.live_session
            if session is not None:
                session.payment_intent_id = intent_ref
            self.repository.flush()

        self.log_operation("create_payment_intent", booking_request_id=request_id)
        return request

    @BaseService.measure_operation("update_payment_status")
    def update_payment_status(
        self,
        request_id: str,
        status: PaymentStatus,
        payment_intent_id: Optional[str] = None,
    ) -> BookingRequest:
        """
        Settlement callback from the payment provider.

        Raises:
            ConflictException: the booking was refunded, or a PAID settlement
                arrives for a cancelled, expired or rejected booking
        """
        with self.transaction():
            request = self._get_request(request_id)
            if state_value(request.payment_status) in SETTLED_REFUND_STATUSES:
                raise ConflictException(
                    "Refunded bookings cannot change payment status",
                    code="PAYMENT_REFUNDED",
                    details={"payment_status": state_value(request.payment_status)},
                )
            if status == PaymentStatus.PAID and state_value(request.status) in CLOSED_BOOKING_STATUSES:
                raise ConflictException(
                    "Closed bookings cannot be marked paid",
                    code="BOOKING_CLOSED",
                    details={"status": state_value(request.status)},
                )
            if (
                payment_intent_id
                and request.payment_intent_id
                and payment_intent_id != request.payment_intent_id
            ):
                raise ValidationException(
                    "Payment intent does not match this booking", code="PAYMENT_INTENT_MISMATCH"
                )
            request.payment_status = status
            if payment_intent_id:
                request.payment_intent_id = payment_intent_id
            session = request.live_session
            if session is not None and state_value(session.status) != LiveSessionStatus.CANCELLED.value:
                session.payment_status = status
                session.payment_intent_id = request.payment_intent_id
            self.repository.flush()

        self.log_operation(
            "update_payment_status", booking_request_id=request_id, payment_status=status.value
        )
        return request

    # Reads

    def get_request(self, request_id: str, actor_id: Optional[str] = None) -> BookingRequest:
        request = self._get_request(request_id)
        if actor_id is not None:
            self._actor_role(request, actor_id)
        return request

    @BaseService.measure_operation("list_requests")
    def list_requests(
        self,
        *,
        instructor_id: Optional[str] = None,
        student_id: Optional[str] = None,
        status: Optional[BookingRequestStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[BookingRequest]:
        return self.repository.list_requests(
            instructor_id=instructor_id,
            student_id=student_id,
            statuses=[status] if status else None,
            skip=skip,
            limit=limit,
        )

    @BaseService.measure_operation("get_request_stats")
    def get_request_stats(
        self, *, instructor_id: Optional[str] = None, student_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Counts by status plus acceptance and completion rates.

        Completed bookings were accepted first, so they count towards both
        the accepted total and the completion rate's denominator.
        """
        by_status = self.repository.count_by_status(instructor_id=instructor_id, student_id=student_id)
        counts = {s.value: by_status.get(s.value, 0) for s in BookingRequestStatus}
        accepted_total = counts["ACCEPTED"] + counts["COMPLETED"]
        decided = accepted_total + counts["REJECTED"]
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "pending": counts["PENDING"],
            "accepted": counts["ACCEPTED"],
            "rejected": counts["REJECTED"],
            "cancelled": counts["CANCELLED"],
            "expired": counts["EXPIRED"],
            "completed": counts["COMPLETED"],
            "acceptance_rate": round(accepted_total / decided * 100, 2) if decided else 0.0,
            "completion_rate": (
                round(counts["COMPLETED"] / accepted_total * 100, 2) if accepted_total else 0.0
            ),
        }
