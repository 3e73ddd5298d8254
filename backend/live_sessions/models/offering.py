# backend/live_sessions/models/offering.py
"""
Session offering model.

An offering is an instructor's sellable product: a fixed duration, a
participant cap, a base price and a cancellation policy. The booking engine
only reads offerings, apart from the aggregate stats it refreshes when
sessions complete.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import AutoAcceptOverride, CancellationPolicy
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import AutoAcceptOverrideType, UTCDateTime


class SessionOffering(Base):
    """A bookable product published by an instructor."""

    __tablename__ = "session_offerings"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)
    max_participants = Column(Integer, nullable=False, default=1)
    base_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    cancellation_policy = Column(String(20), nullable=False, default=CancellationPolicy.MODERATE)
    auto_accept_override = Column(
        AutoAcceptOverrideType, nullable=True, default=AutoAcceptOverride.UNSET
    )
    platform_fee_rate = Column(Numeric(4, 3), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_public = Column(Boolean, nullable=False, default=True)

    # Aggregates refreshed when sessions complete
    total_bookings = Column(Integer, nullable=False, default=0)
    total_revenue = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    instructor = relationship("User")

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_offering_duration_positive"),
        CheckConstraint("max_participants > 0", name="ck_offering_capacity_positive"),
        CheckConstraint("base_price >= 0", name="ck_offering_price_non_negative"),
    )

    @property
    def is_bookable(self) -> bool:
        return bool(self.is_active and self.is_public)

    def __repr__(self) -> str:
        return f"<SessionOffering {self.id}: {self.title!r} instructor={self.instructor_id}>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "title": self.title,
            "duration_minutes": self.duration_minutes,
            "max_participants": self.max_participants,
            "base_price": float(self.base_price),
            "currency": self.currency,
            "cancellation_policy": self.cancellation_policy,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "total_bookings": self.total_bookings,
            "total_revenue": float(self.total_revenue or 0),
        }
