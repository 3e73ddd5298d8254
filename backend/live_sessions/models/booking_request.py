# backend/live_sessions/models/booking_request.py
"""
Booking request model.

A BookingRequest is the negotiation record between a student and an
instructor for one offering (and, in DIRECT mode, one generated slot).
Status moves only along BOOKING_TRANSITIONS; the single non-terminal
re-entry is an in-place reschedule of an ACCEPTED request.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import BookingMode, BookingRequestStatus, PaymentStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class BookingRequest(Base):
    """Negotiation record between consumer and provider."""

    __tablename__ = "booking_requests"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)

    offering_id = Column(String(26), ForeignKey("session_offerings.id"), nullable=False, index=True)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    time_slot_id = Column(String(26), ForeignKey("time_slots.id"), nullable=True, index=True)

    mode = Column(String(20), nullable=False, default=BookingMode.DIRECT)
    status = Column(String(20), nullable=False, default=BookingRequestStatus.PENDING, index=True)

    # Requested window for REQUEST mode without a generated slot
    preferred_start = Column(UTCDateTime, nullable=True)
    preferred_end = Column(UTCDateTime, nullable=True)

    offered_price = Column(Numeric(10, 2), nullable=False)
    final_price = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")

    message = Column(Text, nullable=True)
    instructor_response = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)

    expires_at = Column(UTCDateTime, nullable=False, index=True)
    reschedule_count = Column(Integer, nullable=False, default=0)

    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    payment_intent_id = Column(String(255), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())
    responded_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)

    offering = relationship("SessionOffering")
    student = relationship("User", foreign_keys=[student_id])
    instructor = relationship("User", foreign_keys=[instructor_id])
    time_slot = relationship("TimeSlot")
    live_session = relationship("LiveSession", back_populates="booking_request", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'REJECTED', 'CANCELLED', 'EXPIRED', 'COMPLETED')",
            name="ck_booking_requests_status",
        ),
        CheckConstraint("mode IN ('DIRECT', 'REQUEST')", name="ck_booking_requests_mode"),
        CheckConstraint("offered_price >= 0", name="ck_booking_requests_price_non_negative"),
        CheckConstraint("reschedule_count >= 0", name="ck_booking_requests_reschedules"),
        Index("ix_booking_requests_slot_status", "time_slot_id", "status"),
        Index("ix_booking_requests_student_offering", "student_id", "offering_id", "status"),
    )

    @property
    def live_session_id(self) -> Optional[str]:
        return self.live_session.id if self.live_session is not None else None

    @property
    def agreed_price(self) -> Any:
        return self.final_price if self.final_price is not None else self.offered_price

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        reference = now or datetime.now(timezone.utc)
        return self.expires_at is not None and self.expires_at <= reference

    def __repr__(self) -> str:
        return (
            f"<BookingRequest {self.id}: student={self.student_id} "
            f"offering={self.offering_id} slot={self.time_slot_id} status={self.status}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "offering_id": self.offering_id,
            "student_id": self.student_id,
            "instructor_id": self.instructor_id,
            "time_slot_id": self.time_slot_id,
            "mode": self.mode,
            "status": self.status,
            "offered_price": float(self.offered_price),
            "final_price": float(self.final_price) if self.final_price is not None else None,
            "currency": self.currency,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "reschedule_count": self.reschedule_count,
            "payment_status": self.payment_status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
