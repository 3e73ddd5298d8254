"""Event publisher - dispatches domain events once their transaction has committed."""
from datetime import datetime
import logging
from typing import Any, Dict, Iterable, Optional, Protocol

from ..integrations.notifications import LoggingNotificationDispatcher, NotificationDispatcher
from .handlers import process_event

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


def serialize_event(event: Event) -> Dict[str, Any]:
    payload = event.to_dict()
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    return payload


class EventPublisher:
    """
    Routes committed events to their handlers.

    A failing handler is logged and skipped; it never affects other events or
    the state that was already committed.
    """

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

    def publish(self, event: Event) -> bool:
        event_type = f"event:{type(event).__name__}"
        payload = serialize_event(event)
        try:
            return process_event(event_type, payload, self.dispatcher)
        except Exception:
            logger.exception("Handler for %s failed", event_type, extra={"event_payload": payload})
            return False

    def publish_all(self, events: Iterable[Event]) -> int:
        """Publish each event in order; returns how many were handled."""
        return sum(1 for event in events if self.publish(event))
