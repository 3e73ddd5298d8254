# backend/live_sessions/models/live_session.py
"""
Live session models.

A LiveSession is the materialized, schedulable unit created when a booking
request is accepted (or auto-approved). Participants and attendance records
hang off it. Status moves only along SESSION_TRANSITIONS, and every move is a
compare-and-swap on the status column (see LiveSessionRepository).
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import (
    AttendanceStatus,
    LiveSessionStatus,
    ParticipantRole,
    ParticipantStatus,
    PaymentStatus,
    PayoutStatus,
)
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class LiveSession(Base):
    """Scheduled, billable instance of a session offering."""

    __tablename__ = "live_sessions"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    booking_request_id = Column(
        String(26), ForeignKey("booking_requests.id"), nullable=True, unique=True
    )
    offering_id = Column(String(26), ForeignKey("session_offerings.id"), nullable=True, index=True)
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    time_slot_id = Column(String(26), ForeignKey("time_slots.id"), nullable=True, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    scheduled_start = Column(UTCDateTime, nullable=False, index=True)
    scheduled_end = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    actual_start = Column(UTCDateTime, nullable=True)
    actual_end = Column(UTCDateTime, nullable=True)
    actual_duration_minutes = Column(Integer, nullable=True)

    status = Column(String(20), nullable=False, default=LiveSessionStatus.SCHEDULED, index=True)

    max_participants = Column(Integer, nullable=False, default=1)
    current_participants = Column(Integer, nullable=False, default=0)

    # Pricing snapshot taken at creation
    price_per_person = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total_revenue = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    platform_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    instructor_payout = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="USD")

    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING)
    payment_intent_id = Column(String(255), nullable=True)
    payout_status = Column(String(20), nullable=False, default=PayoutStatus.PENDING)

    meeting_room_id = Column(String(255), nullable=True)
    meeting_url = Column(String(500), nullable=True)
    recording_url = Column(String(500), nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    booking_request = relationship("BookingRequest", back_populates="live_session")
    offering = relationship("SessionOffering")
    instructor = relationship("User")
    time_slot = relationship("TimeSlot")
    participants = relationship(
        "SessionParticipant", back_populates="session", cascade="all, delete-orphan"
    )
    attendance_records = relationship(
        "AttendanceRecord", back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', "
            "'NO_SHOW', 'RESCHEDULED')",
            name="ck_live_sessions_status",
        ),
        CheckConstraint("current_participants >= 0", name="ck_live_sessions_participants"),
        CheckConstraint("max_participants > 0", name="ck_live_sessions_capacity_positive"),
        CheckConstraint("scheduled_start < scheduled_end", name="ck_live_sessions_time_order"),
        Index("ix_live_sessions_instructor_start", "instructor_id", "scheduled_start"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            LiveSessionStatus.COMPLETED,
            LiveSessionStatus.CANCELLED,
            LiveSessionStatus.NO_SHOW,
        )

    def __repr__(self) -> str:
        return (
            f"<LiveSession {self.id}: instructor={self.instructor_id} "
            f"start={self.scheduled_start} status={self.status}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "booking_request_id": self.booking_request_id,
            "offering_id": self.offering_id,
            "instructor_id": self.instructor_id,
            "time_slot_id": self.time_slot_id,
            "title": self.title,
            "scheduled_start": self.scheduled_start.isoformat() if self.scheduled_start else None,
            "scheduled_end": self.scheduled_end.isoformat() if self.scheduled_end else None,
            "actual_start": self.actual_start.isoformat() if self.actual_start else None,
            "actual_end": self.actual_end.isoformat() if self.actual_end else None,
            "actual_duration_minutes": self.actual_duration_minutes,
            "status": self.status,
            "current_participants": self.current_participants,
            "max_participants": self.max_participants,
            "price_per_person": float(self.price_per_person or 0),
            "total_revenue": float(self.total_revenue or 0),
            "platform_fee": float(self.platform_fee or 0),
            "instructor_payout": float(self.instructor_payout or 0),
            "payment_status": self.payment_status,
            "payout_status": self.payout_status,
        }


class SessionParticipant(Base):
    """Per-user enrollment in a live session."""

    __tablename__ = "session_participants"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    session_id = Column(
        String(26), ForeignKey("live_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default=ParticipantRole.STUDENT)
    status = Column(String(20), nullable=False, default=ParticipantStatus.ENROLLED)
    paid_amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")

    joined_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now())

    session = relationship("LiveSession", back_populates="participants")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("session_id", "user_id", name="uq_session_participant"),)

    def __repr__(self) -> str:
        return f"<SessionParticipant session={self.session_id} user={self.user_id} {self.status}>"


class AttendanceRecord(Base):
    """Join/leave record and engagement metrics for one participant."""

    __tablename__ = "attendance_records"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    session_id = Column(
        String(26), ForeignKey("live_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AttendanceStatus.NOT_ATTENDED)

    joined_at = Column(UTCDateTime, nullable=True)
    left_at = Column(UTCDateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=0)

    camera_on_time = Column(Integer, nullable=False, default=0)
    mic_active_time = Column(Integer, nullable=False, default=0)
    chat_messages = Column(Integer, nullable=False, default=0)
    questions_asked = Column(Integer, nullable=False, default=0)
    poll_responses = Column(Integer, nullable=False, default=0)
    engagement_score = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    session = relationship("LiveSession", back_populates="attendance_records")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("session_id", "user_id", name="uq_attendance_record"),)

    def __repr__(self) -> str:
        return (
            f"<AttendanceRecord session={self.session_id} user={self.user_id} "
            f"score={self.engagement_score}>"
        )
