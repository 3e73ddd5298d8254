# backend/live_sessions/tasks/booking_tasks.py
"""Celery tasks for the booking workflow."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from live_sessions.database import SessionLocal
from live_sessions.events.publisher import EventPublisher
from live_sessions.integrations import build_notification_dispatcher
from live_sessions.services.booking_request_service import BookingRequestService
from live_sessions.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(
    bind=True, max_retries=3, name="live_sessions.tasks.booking_tasks.expire_pending_booking_requests"
)
def expire_pending_booking_requests(self: Any, batch_size: int = 500) -> Dict[str, int]:
    """
    Expire PENDING requests whose ``expires_at`` has passed.

    Each request is expired in its own transaction, so one bad row is
    counted as failed without holding back the rest of the batch.
    """
    db: Session = SessionLocal()
    try:
        service = BookingRequestService(db, EventPublisher(build_notification_dispatcher()))
        result = service.expire_pending_requests(batch_size=batch_size)
        logger.info("Booking expiry sweep completed: %s", result)
        return result
    except Exception as exc:
        logger.error("Booking expiry sweep failed: %s", exc)
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
