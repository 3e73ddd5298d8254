# backend/live_sessions/tasks/payout_tasks.py
"""Celery tasks for instructor payouts."""

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from live_sessions.database import SessionLocal
from live_sessions.events.publisher import EventPublisher
from live_sessions.integrations import build_notification_dispatcher
from live_sessions.services.payout_service import PayoutService
from live_sessions.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


@typed_task(
    bind=True, max_retries=3, name="live_sessions.tasks.payout_tasks.process_automatic_payouts"
)
def process_automatic_payouts(self: Any) -> Dict[str, Any]:
    """
    Create a payout for every instructor with sessions past the payout delay.

    Per-instructor failures are reported in the result and do not retry the
    whole run.
    """
    db: Session = SessionLocal()
    try:
        service = PayoutService(db, EventPublisher(build_notification_dispatcher()))
        result = service.process_automatic_payouts()
        logger.info(
            "Automatic payouts completed: %d created, %d failed",
            result["created"],
            result["failed"],
        )
        return result
    except Exception as exc:
        logger.error("Automatic payout run failed: %s", exc)
        raise self.retry(exc=exc, countdown=900)
    finally:
        db.close()
