# backend/live_sessions/core/enums.py
"""
Core enums for the live sessions engine.

Every persisted status is a closed (str, Enum). The two negotiated lifecycles
(booking requests and live sessions) carry an explicit transition table;
anything not listed there is rejected by the state machines in
``live_sessions.core.state_machine``.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Union


class RoleName(str, Enum):
    """Roles a user can hold."""

    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"


class AutoAcceptOverride(str, Enum):
    """
    Three-valued auto-accept setting.

    UNSET defers to the next level down (slot → availability → profile).
    TRUE and FALSE are explicit decisions that win over any default.
    """

    UNSET = "UNSET"
    TRUE = "TRUE"
    FALSE = "FALSE"

    @classmethod
    def from_optional(cls, value: Optional[bool]) -> "AutoAcceptOverride":
        if value is None:
            return cls.UNSET
        return cls.TRUE if value else cls.FALSE

    @classmethod
    def coerce(cls, value: Union["AutoAcceptOverride", bool, str, None]) -> "AutoAcceptOverride":
        """Accept the enum itself, a plain bool/None, or a stored string value."""
        if isinstance(value, cls):
            return value
        if value is None or isinstance(value, bool):
            return cls.from_optional(value)
        return cls(value)

    def to_optional(self) -> Optional[bool]:
        if self is AutoAcceptOverride.UNSET:
            return None
        return self is AutoAcceptOverride.TRUE

    @property
    def is_set(self) -> bool:
        return self is not AutoAcceptOverride.UNSET

    def resolve(self, default: bool) -> bool:
        """Return the explicit value if set, otherwise ``default``."""
        if self is AutoAcceptOverride.UNSET:
            return default
        return self is AutoAcceptOverride.TRUE

    def or_else(self, fallback: "AutoAcceptOverride") -> "AutoAcceptOverride":
        """Return self when set, otherwise ``fallback``."""
        return self if self.is_set else fallback


class CancellationPolicy(str, Enum):
    FLEXIBLE = "FLEXIBLE"
    MODERATE = "MODERATE"
    STRICT = "STRICT"


class BookingMode(str, Enum):
    """DIRECT books a generated slot outright; REQUEST negotiates a time with the provider."""

    DIRECT = "DIRECT"
    REQUEST = "REQUEST"


class BookingRequestStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"


class LiveSessionStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIAL_REFUND = "PARTIAL_REFUND"
    FREE = "FREE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ParticipantRole(str, Enum):
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"
    ASSISTANT = "ASSISTANT"
    OBSERVER = "OBSERVER"


class ParticipantStatus(str, Enum):
    ENROLLED = "ENROLLED"
    ATTENDED = "ATTENDED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class AttendanceStatus(str, Enum):
    NOT_ATTENDED = "NOT_ATTENDED"
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    LEFT_EARLY = "LEFT_EARLY"
    PARTIAL = "PARTIAL"


class NotificationType(str, Enum):
    BOOKING_RECEIVED = "BOOKING_RECEIVED"
    BOOKING_ACCEPTED = "BOOKING_ACCEPTED"
    BOOKING_REJECTED = "BOOKING_REJECTED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    BOOKING_EXPIRED = "BOOKING_EXPIRED"
    BOOKING_RESCHEDULED = "BOOKING_RESCHEDULED"
    SESSION_STARTING = "SESSION_STARTING"
    SESSION_COMPLETED = "SESSION_COMPLETED"
    SESSION_CANCELLED = "SESSION_CANCELLED"
    PAYOUT_PROCESSED = "PAYOUT_PROCESSED"


BOOKING_TRANSITIONS: Dict[BookingRequestStatus, FrozenSet[BookingRequestStatus]] = {
    BookingRequestStatus.PENDING: frozenset(
        {
            BookingRequestStatus.ACCEPTED,
            BookingRequestStatus.REJECTED,
            BookingRequestStatus.CANCELLED,
            BookingRequestStatus.EXPIRED,
        }
    ),
    BookingRequestStatus.ACCEPTED: frozenset(
        {BookingRequestStatus.CANCELLED, BookingRequestStatus.COMPLETED}
    ),
    BookingRequestStatus.REJECTED: frozenset(),
    BookingRequestStatus.CANCELLED: frozenset(),
    BookingRequestStatus.EXPIRED: frozenset(),
    BookingRequestStatus.COMPLETED: frozenset(),
}

SESSION_TRANSITIONS: Dict[LiveSessionStatus, FrozenSet[LiveSessionStatus]] = {
    LiveSessionStatus.SCHEDULED: frozenset(
        {
            LiveSessionStatus.CONFIRMED,
            LiveSessionStatus.IN_PROGRESS,
            LiveSessionStatus.COMPLETED,
            LiveSessionStatus.CANCELLED,
            LiveSessionStatus.NO_SHOW,
            LiveSessionStatus.RESCHEDULED,
        }
    ),
    LiveSessionStatus.CONFIRMED: frozenset(
        {
            LiveSessionStatus.SCHEDULED,
            LiveSessionStatus.IN_PROGRESS,
            LiveSessionStatus.CANCELLED,
            LiveSessionStatus.NO_SHOW,
            LiveSessionStatus.RESCHEDULED,
        }
    ),
    LiveSessionStatus.IN_PROGRESS: frozenset(
        {LiveSessionStatus.COMPLETED, LiveSessionStatus.CANCELLED}
    ),
    LiveSessionStatus.RESCHEDULED: frozenset(
        {
            LiveSessionStatus.SCHEDULED,
            LiveSessionStatus.CONFIRMED,
            LiveSessionStatus.CANCELLED,
        }
    ),
    LiveSessionStatus.COMPLETED: frozenset(),
    LiveSessionStatus.CANCELLED: frozenset(),
    LiveSessionStatus.NO_SHOW: frozenset(),
}

# Statuses that hold a claim on a slot or on the provider's calendar
OUTSTANDING_REQUEST_STATUSES = (BookingRequestStatus.PENDING, BookingRequestStatus.ACCEPTED)
ACTIVE_SESSION_STATUSES = (
    LiveSessionStatus.SCHEDULED,
    LiveSessionStatus.CONFIRMED,
    LiveSessionStatus.IN_PROGRESS,
)
