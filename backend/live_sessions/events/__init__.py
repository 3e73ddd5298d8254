"""Domain events and post-commit dispatch."""

from .booking_events import (
    BookingAccepted,
    BookingCancelled,
    BookingExpired,
    BookingRejected,
    BookingRequested,
    BookingRescheduled,
)
from .publisher import EventPublisher
from .session_events import PayoutProcessed, SessionCancelled, SessionCompleted, SessionStarted

__all__ = [
    "BookingAccepted",
    "BookingCancelled",
    "BookingExpired",
    "BookingRejected",
    "BookingRequested",
    "BookingRescheduled",
    "EventPublisher",
    "PayoutProcessed",
    "SessionCancelled",
    "SessionCompleted",
    "SessionStarted",
]
