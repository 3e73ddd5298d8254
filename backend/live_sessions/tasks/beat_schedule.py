# backend/live_sessions/tasks/beat_schedule.py
"""
Celery Beat schedule configuration.

Tasks are scheduled using crontab expressions for precise timing control.
"""

from typing import Any

from celery.schedules import crontab

from live_sessions.core.config import Settings


def get_beat_schedule(config: Settings) -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the configured intervals.

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    return {
        # Expire PENDING booking requests whose response window has passed
        "expire-pending-booking-requests": {
            "task": "live_sessions.tasks.booking_tasks.expire_pending_booking_requests",
            "schedule": crontab(minute=f"*/{config.expiry_sweep_interval_minutes}"),
            "options": {"priority": 7},
        },
        # Roll completed, paid sessions into instructor payouts
        "process-automatic-payouts": {
            "task": "live_sessions.tasks.payout_tasks.process_automatic_payouts",
            "schedule": crontab(hour=config.payout_run_hour_utc, minute=0),
            "options": {"queue": "payments", "priority": 5},
        },
    }
