# backend/live_sessions/models/availability.py
"""
Availability models for the live sessions engine.

An InstructorAvailability is a window of wall-clock time on one calendar date.
Its TimeSlots are derived from it by the slot generator and are never edited
independently: changing the window deletes and regenerates them.

TimeSlot.current_bookings and TimeSlot.is_booked are written only by the
capacity ledger (services/capacity_ledger.py).
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import AutoAcceptOverride
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import AutoAcceptOverrideType, UTCDateTime


class InstructorAvailability(Base):
    """
    A provider's declared bookable window on a specific date.

    Slot shape (duration, buffer, capacity) lives here so regeneration is a pure
    function of this row.
    """

    __tablename__ = "instructor_availabilities"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    specific_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    timezone = Column(String(50), nullable=False, default="UTC")

    slot_duration_minutes = Column(Integer, nullable=False, default=60)
    buffer_minutes = Column(Integer, nullable=False, default=15)
    min_advance_hours = Column(Integer, nullable=False, default=12)
    max_advance_hours = Column(Integer, nullable=False, default=720)
    max_sessions_per_slot = Column(Integer, nullable=False, default=1)

    auto_accept_override = Column(
        AutoAcceptOverrideType, nullable=True, default=AutoAcceptOverride.UNSET
    )
    price_override = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    time_slots = relationship(
        "TimeSlot",
        back_populates="availability",
        cascade="all, delete-orphan",
        order_by="TimeSlot.start_at",
    )

    __table_args__ = (
        CheckConstraint("slot_duration_minutes > 0", name="ck_availability_duration_positive"),
        CheckConstraint("buffer_minutes >= 0", name="ck_availability_buffer_non_negative"),
        CheckConstraint("max_sessions_per_slot > 0", name="ck_availability_capacity_positive"),
        CheckConstraint(
            "min_advance_hours <= max_advance_hours", name="ck_availability_advance_window"
        ),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
        Index("ix_availability_instructor_date", "instructor_id", "specific_date"),
    )

    @property
    def window_label(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"

    def overlaps(self, start_time: Any, end_time: Any) -> bool:
        """Wall-clock overlap on the same date."""
        return start_time < self.end_time and end_time > self.start_time

    def __repr__(self) -> str:
        return (
            f"<InstructorAvailability {self.id}: instructor={self.instructor_id} "
            f"date={self.specific_date} {self.window_label}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "specific_date": self.specific_date.isoformat() if self.specific_date else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "timezone": self.timezone,
            "slot_duration_minutes": self.slot_duration_minutes,
            "buffer_minutes": self.buffer_minutes,
            "min_advance_hours": self.min_advance_hours,
            "max_advance_hours": self.max_advance_hours,
            "max_sessions_per_slot": self.max_sessions_per_slot,
            "auto_accept_override": AutoAcceptOverride.coerce(self.auto_accept_override).value,
            "price_override": float(self.price_override) if self.price_override is not None else None,
            "is_active": self.is_active,
        }


class TimeSlot(Base):
    """
    A fixed-duration bookable unit generated from an availability window.

    Invariants:
        0 <= current_bookings <= max_bookings
        is_booked == (current_bookings >= max_bookings)
        a blocked slot accepts no bookings regardless of its counter
    """

    __tablename__ = "time_slots"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    availability_id = Column(
        String(26),
        ForeignKey("instructor_availabilities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    start_at = Column(UTCDateTime, nullable=False, index=True)
    end_at = Column(UTCDateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    max_bookings = Column(Integer, nullable=False, default=1)
    current_bookings = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    is_booked = Column(Boolean, nullable=False, default=False)
    is_blocked = Column(Boolean, nullable=False, default=False)
    block_reason = Column(Text, nullable=True)

    auto_accept_override = Column(
        AutoAcceptOverrideType, nullable=True, default=AutoAcceptOverride.UNSET
    )
    # Bumped by every capacity ledger write; lets readers detect stale snapshots
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    availability = relationship("InstructorAvailability", back_populates="time_slots")

    __table_args__ = (
        CheckConstraint("current_bookings >= 0", name="ck_time_slot_bookings_non_negative"),
        CheckConstraint(
            "current_bookings <= max_bookings", name="ck_time_slot_bookings_within_capacity"
        ),
        CheckConstraint("max_bookings > 0", name="ck_time_slot_capacity_positive"),
        CheckConstraint("duration_minutes > 0", name="ck_time_slot_duration_positive"),
        Index("ix_time_slot_instructor_start", "instructor_id", "start_at"),
    )

    @property
    def remaining_capacity(self) -> int:
        return max(int(self.max_bookings or 0) - int(self.current_bookings or 0), 0)

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_available and not self.is_blocked and not self.is_booked)

    def hours_until_start(self, now: Optional[datetime] = None) -> float:
        reference = now or datetime.now(timezone.utc)
        return (self.start_at - reference).total_seconds() / 3600

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end_at and end > self.start_at

    def __repr__(self) -> str:
        return (
            f"<TimeSlot {self.id}: {self.start_at.isoformat() if self.start_at else None} "
            f"bookings={self.current_bookings}/{self.max_bookings} blocked={self.is_blocked}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "availability_id": self.availability_id,
            "instructor_id": self.instructor_id,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "duration_minutes": self.duration_minutes,
            "max_bookings": self.max_bookings,
            "current_bookings": self.current_bookings,
            "is_available": self.is_available,
            "is_booked": self.is_booked,
            "is_blocked": self.is_blocked,
            "block_reason": self.block_reason,
        }
