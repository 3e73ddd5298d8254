# backend/live_sessions/models/user.py
"""
User and instructor profile models.

Users are managed by the account system; the booking engine only reads them.
An instructor additionally carries an InstructorProfile whose flags feed the
auto-approval policy (profile-level auto-accept default, accepting students,
live sessions enabled).
"""

from typing import Any

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.enums import CancellationPolicy, RoleName
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class User(Base):
    """
    Platform user.

    Both instructors and students are represented by this model,
    differentiated by the role field.
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=RoleName.STUDENT)
    timezone = Column(String(50), nullable=False, default="UTC")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    instructor_profile = relationship(
        "InstructorProfile", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("role IN ('ADMIN', 'INSTRUCTOR', 'STUDENT')", name="ck_users_role"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_instructor(self) -> bool:
        return self.role == RoleName.INSTRUCTOR

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.email} role={self.role}>"


class InstructorProfile(Base):
    """
    Instructor-specific booking preferences.

    Attributes:
        auto_accept_bookings: Profile default used when neither the slot nor the
            availability window sets an explicit auto-accept override
        is_accepting_students: Master switch for new bookings
        live_sessions_enabled: Whether the instructor offers live sessions at all
        default_cancellation_policy: Policy applied when an offering has none
        stripe_account_id: Connected account receiving payouts
    """

    __tablename__ = "instructor_profiles"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    user_id = Column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    auto_accept_bookings = Column(Boolean, nullable=False, default=False)
    is_accepting_students = Column(Boolean, nullable=False, default=True)
    live_sessions_enabled = Column(Boolean, nullable=False, default=True)
    default_cancellation_policy = Column(
        String(20), nullable=False, default=CancellationPolicy.MODERATE
    )
    stripe_account_id = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    user = relationship("User", back_populates="instructor_profile")

    def __repr__(self) -> str:
        return (
            f"<InstructorProfile user={self.user_id} auto_accept={self.auto_accept_bookings} "
            f"accepting={self.is_accepting_students}>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "auto_accept_bookings": self.auto_accept_bookings,
            "is_accepting_students": self.is_accepting_students,
            "live_sessions_enabled": self.live_sessions_enabled,
            "default_cancellation_policy": self.default_cancellation_policy,
        }
