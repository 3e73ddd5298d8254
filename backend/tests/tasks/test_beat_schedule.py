from live_sessions.core.config import Settings
from live_sessions.tasks.beat_schedule import get_beat_schedule
from live_sessions.tasks.celery_app import celery_app


def test_schedule_entries():
    schedule = get_beat_schedule(Settings())

    expiry = schedule["expire-pending-booking-requests"]
    assert expiry["task"] == "live_sessions.tasks.booking_tasks.expire_pending_booking_requests"
    assert expiry["schedule"].minute == set(range(0, 60, 5))

    payouts = schedule["process-automatic-payouts"]
    assert payouts["task"] == "live_sessions.tasks.payout_tasks.process_automatic_payouts"
    assert payouts["schedule"].hour == {2}
    assert payouts["options"]["queue"] == "payments"


def test_intervals_follow_settings():
    schedule = get_beat_schedule(Settings(expiry_sweep_interval_minutes=15, payout_run_hour_utc=4))

    assert schedule["expire-pending-booking-requests"]["schedule"].minute == {0, 15, 30, 45}
    assert schedule["process-automatic-payouts"]["schedule"].hour == {4}


def test_tasks_are_registered():
    import live_sessions.tasks  # noqa: F401

    assert "live_sessions.tasks.booking_tasks.expire_pending_booking_requests" in celery_app.tasks
    assert "live_sessions.tasks.payout_tasks.process_automatic_payouts" in celery_app.tasks
