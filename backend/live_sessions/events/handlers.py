"""Event handlers - turn committed domain events into notifications."""
import logging
from typing import Any, Callable, Dict

from ..core.enums import NotificationType
from ..integrations.notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


def handle_booking_requested(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    """Tell the instructor a request arrived, and the student when it was auto-accepted."""
    request_id = payload["booking_request_id"]
    dispatcher.notify(
        payload["instructor_id"],
        NotificationType.BOOKING_RECEIVED,
        "New booking request",
        "A student requested one of your sessions.",
        {"booking_request_id": request_id, "auto_accepted": payload.get("auto_accepted", False)},
    )
    if payload.get("auto_accepted"):
        dispatcher.notify(
            payload["student_id"],
            NotificationType.BOOKING_ACCEPTED,
            "Booking confirmed",
            "Your booking was confirmed automatically.",
            {"booking_request_id": request_id},
        )


def handle_booking_accepted(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    dispatcher.notify(
        payload["student_id"],
        NotificationType.BOOKING_ACCEPTED,
        "Booking accepted",
        "Your instructor accepted your booking request.",
        {
            "booking_request_id": payload["booking_request_id"],
            "session_id": payload.get("session_id"),
            "scheduled_start": payload.get("scheduled_start"),
        },
    )


def handle_booking_rejected(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    reason = payload.get("reason")
    message = "Your booking request was declined."
    if reason:
        message = f"Your booking request was declined: {reason}"
    dispatcher.notify(
        payload["student_id"],
        NotificationType.BOOKING_REJECTED,
        "Booking declined",
        message,
        {"booking_request_id": payload["booking_request_id"]},
    )


def handle_booking_cancelled(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    """Notify the party that did not cancel."""
    cancelled_by = payload.get("cancelled_by")
    recipient = payload["instructor_id"] if cancelled_by == "student" else payload["student_id"]
    dispatcher.notify(
        recipient,
        NotificationType.BOOKING_CANCELLED,
        "Booking cancelled",
        f"The booking was cancelled by the {cancelled_by}.",
        {
            "booking_request_id": payload["booking_request_id"],
            "refund_amount": payload.get("refund_amount"),
        },
    )


def handle_booking_expired(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    dispatcher.notify(
        payload["student_id"],
        NotificationType.BOOKING_EXPIRED,
        "Booking request expired",
        "Your booking request expired before the instructor responded.",
        {"booking_request_id": payload["booking_request_id"]},
    )


def handle_booking_rescheduled(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    for user_id in (payload["student_id"], payload["instructor_id"]):
        dispatcher.notify(
            user_id,
            NotificationType.BOOKING_RESCHEDULED,
            "Booking rescheduled",
            f"The session now starts at {payload['new_start']}.",
            {"booking_request_id": payload["booking_request_id"]},
        )


def handle_session_started(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    for user_id in payload.get("participant_ids") or []:
        dispatcher.notify(
            user_id,
            NotificationType.SESSION_STARTING,
            f"{payload['title']} is starting",
            "Your live session has started. Join now.",
            {"session_id": payload["session_id"], "meeting_url": payload.get("meeting_url")},
        )


def handle_session_completed(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    for user_id in [payload["instructor_id"], *(payload.get("participant_ids") or [])]:
        dispatcher.notify(
            user_id,
            NotificationType.SESSION_COMPLETED,
            f"{payload['title']} completed",
            "Thanks for attending.",
            {"session_id": payload["session_id"]},
        )


def handle_session_cancelled(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    for user_id in payload.get("participant_ids") or []:
        dispatcher.notify(
            user_id,
            NotificationType.SESSION_CANCELLED,
            f"{payload['title']} was cancelled",
            payload.get("reason") or "The session was cancelled.",
            {"session_id": payload["session_id"]},
        )


def handle_payout_processed(payload: Payload, dispatcher: NotificationDispatcher) -> None:
    dispatcher.notify(
        payload["instructor_id"],
        NotificationType.PAYOUT_PROCESSED,
        "Payout update",
        f"Payout of {payload['amount']:.2f} {payload['currency']} is {payload['status'].lower()}.",
        {"payout_id": payload["payout_id"], "status": payload["status"]},
    )


# Registry of event type -> handler function
EVENT_HANDLERS: Dict[str, Callable[[Payload, NotificationDispatcher], None]] = {
    "event:BookingRequested": handle_booking_requested,
    "event:BookingAccepted": handle_booking_accepted,
    "event:BookingRejected": handle_booking_rejected,
    "event:BookingCancelled": handle_booking_cancelled,
    "event:BookingExpired": handle_booking_expired,
    "event:BookingRescheduled": handle_booking_rescheduled,
    "event:SessionStarted": handle_session_started,
    "event:SessionCompleted": handle_session_completed,
    "event:SessionCancelled": handle_session_cancelled,
    "event:PayoutProcessed": handle_payout_processed,
}


def process_event(event_type: str, payload: Payload, dispatcher: NotificationDispatcher) -> bool:
    """
    Route an event to its handler.

    Returns True if a handler ran, False if the type has no handler.
    """
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("No handler registered for %s", event_type)
        return False
    handler(payload, dispatcher)
    return True
