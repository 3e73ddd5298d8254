# backend/live_sessions/repositories/__init__.py
"""
Repository layer for the live sessions engine.

Repositories own queries and flushes; services own commits.

Usage:
    from live_sessions.repositories import RepositoryFactory

    slots = RepositoryFactory.create_time_slot_repository(db)
    if not slots.try_increment(slot_id):
        ...
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository, IRepository
from .booking_request_repository import BookingRequestRepository
from .factory import RepositoryFactory
from .live_session_repository import LiveSessionRepository
from .offering_repository import OfferingRepository
from .payout_repository import PayoutRepository
from .time_slot_repository import TimeSlotRepository
from .user_repository import UserRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "BookingRequestRepository",
    "IRepository",
    "LiveSessionRepository",
    "OfferingRepository",
    "PayoutRepository",
    "RepositoryFactory",
    "TimeSlotRepository",
    "UserRepository",
]
