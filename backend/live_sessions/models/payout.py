# backend/live_sessions/models/payout.py
"""
Instructor payout models.

An InstructorPayout batches a provider's completed, paid sessions into one
transfer. PayoutSession rows record which sessions a payout covers and the
amounts attributed to each, so a session is never paid out twice.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import CheckConstraint, Column, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import PayoutStatus
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class InstructorPayout(Base):
    """One transfer to a provider's connected account."""

    __tablename__ = "instructor_payouts"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    instructor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default=PayoutStatus.PENDING, index=True)

    period_start = Column(UTCDateTime, nullable=True)
    period_end = Column(UTCDateTime, nullable=True)

    transfer_id = Column(String(255), nullable=True, index=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(UTCDateTime, nullable=True)
    failed_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    instructor = relationship("User")
    payout_sessions = relationship(
        "PayoutSession", back_populates="payout", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'PAID', 'FAILED', 'CANCELLED')",
            name="ck_instructor_payouts_status",
        ),
        CheckConstraint("amount >= 0", name="ck_instructor_payouts_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<InstructorPayout {self.id}: instructor={self.instructor_id} "
            f"amount={self.amount} status={self.status}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "amount": float(self.amount or 0),
            "currency": self.currency,
            "status": self.status,
            "transfer_id": self.transfer_id,
            "session_count": len(self.payout_sessions or []),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
        }


class PayoutSession(Base):
    """Amounts one session contributes to a payout."""

    __tablename__ = "payout_sessions"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    payout_id = Column(
        String(26),
        ForeignKey("instructor_payouts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    session_id = Column(String(26), ForeignKey("live_sessions.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    net_amount = Column(Numeric(12, 2), nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now())

    payout = relationship("InstructorPayout", back_populates="payout_sessions")
    session = relationship("LiveSession")

    def __repr__(self) -> str:
        return f"<PayoutSession payout={self.payout_id} session={self.session_id} net={self.net_amount}>"
