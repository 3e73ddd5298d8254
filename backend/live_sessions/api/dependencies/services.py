# backend/live_sessions/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

External adapters (payment gateway, video provider, notification dispatcher)
are process-wide; services are built per request around the request's
database session.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...events.publisher import EventPublisher
from ...integrations import (
    NotificationDispatcher,
    PaymentGateway,
    VideoProvider,
    build_notification_dispatcher,
    build_payment_gateway,
    build_video_provider,
)
from ...services.availability_service import AvailabilityService
from ...services.booking_request_service import BookingRequestService
from ...services.live_session_service import LiveSessionService
from ...services.payout_service import PayoutService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_notification_dispatcher() -> NotificationDispatcher:
    return build_notification_dispatcher()


def get_payment_gateway() -> PaymentGateway:
    return build_payment_gateway(settings)


def get_video_provider() -> VideoProvider:
    return build_video_provider(settings)


def get_event_publisher(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> EventPublisher:
    return EventPublisher(dispatcher)


def get_availability_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> AvailabilityService:
    return AvailabilityService(db, publisher)


def get_live_session_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    video_provider: VideoProvider = Depends(get_video_provider),
) -> LiveSessionService:
    return LiveSessionService(
        db, publisher, payment_gateway=payment_gateway, video_provider=video_provider
    )


def get_booking_request_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    video_provider: VideoProvider = Depends(get_video_provider),
) -> BookingRequestService:
    """
    Get the booking workflow service.

    The session service it drives shares its database session, publisher and
    adapters, so bookings and sessions commit together.
    """
    return BookingRequestService(
        db,
        publisher,
        payment_gateway=payment_gateway,
        video_provider=video_provider,
    )


def get_payout_service(
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PayoutService:
    return PayoutService(db, publisher, payment_gateway=payment_gateway)
