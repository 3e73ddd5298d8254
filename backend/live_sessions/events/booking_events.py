"""Booking request domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BookingRequested:
    """Fired after a booking request is created (pending or auto-accepted)."""

    booking_request_id: str
    student_id: str
    instructor_id: str
    offering_id: str
    auto_accepted: bool
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingAccepted:
    """Fired after the instructor (or the auto-approval policy) accepts a request."""

    booking_request_id: str
    student_id: str
    instructor_id: str
    session_id: Optional[str]
    scheduled_start: Optional[datetime]
    accepted_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRejected:
    booking_request_id: str
    student_id: str
    instructor_id: str
    reason: Optional[str]
    rejected_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking request is cancelled by either party."""

    booking_request_id: str
    student_id: str
    instructor_id: str
    cancelled_by: str  # 'student' or 'instructor'
    cancelled_at: datetime
    refund_amount: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingExpired:
    booking_request_id: str
    student_id: str
    instructor_id: str
    expired_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingRescheduled:
    booking_request_id: str
    student_id: str
    instructor_id: str
    new_start: datetime
    reschedule_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
