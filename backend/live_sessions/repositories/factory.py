# backend/live_sessions/repositories/factory.py
"""
Repository factory.

Services build their repositories through this factory so tests can patch a
single seam, and so imports stay lazy.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

if TYPE_CHECKING:
    from .availability_repository import AvailabilityRepository
    from .booking_request_repository import BookingRequestRepository
    from .live_session_repository import LiveSessionRepository
    from .offering_repository import OfferingRepository
    from .payout_repository import PayoutRepository
    from .time_slot_repository import TimeSlotRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    """Creates repository instances bound to a session."""

    @staticmethod
    def create_base_repository(db: Session, model: Any) -> BaseRepository:
        return BaseRepository(db, model)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_time_slot_repository(db: Session) -> "TimeSlotRepository":
        from .time_slot_repository import TimeSlotRepository

        return TimeSlotRepository(db)

    @staticmethod
    def create_booking_request_repository(db: Session) -> "BookingRequestRepository":
        from .booking_request_repository import BookingRequestRepository

        return BookingRequestRepository(db)

    @staticmethod
    def create_live_session_repository(db: Session) -> "LiveSessionRepository":
        from .live_session_repository import LiveSessionRepository

        return LiveSessionRepository(db)

    @staticmethod
    def create_offering_repository(db: Session) -> "OfferingRepository":
        from .offering_repository import OfferingRepository

        return OfferingRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payout_repository import PayoutRepository

        return PayoutRepository(db)
