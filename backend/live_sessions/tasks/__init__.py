# backend/live_sessions/tasks/__init__.py
"""
Celery tasks package.

Importing the package registers every task with the Celery app.
"""

from live_sessions.tasks.booking_tasks import expire_pending_booking_requests
from live_sessions.tasks.celery_app import BaseTask, celery_app
from live_sessions.tasks.payout_tasks import process_automatic_payouts

__all__ = [
    "BaseTask",
    "celery_app",
    "expire_pending_booking_requests",
    "process_automatic_payouts",
]
