"""Notification dispatch.

Delivery is fire-and-forget from the engine's point of view: dispatchers are
called after commit and a failure never undoes a booking transition. The
default dispatcher emits one structured log record per notification; a
delivery channel (email, push) plugs in by implementing ``notify``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Optional, Protocol

from ..core.enums import NotificationType

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingNotificationDispatcher:
    """Writes each notification as a structured log record."""

    def __init__(self, channel_logger: Optional[logging.Logger] = None) -> None:
        self._logger = channel_logger or logger

    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._logger.info(
            "Notification %s for %s: %s",
            type.value,
            user_id,
            title,
            extra={
                "notification_type": type.value,
                "user_id": user_id,
                "notification_message": message,
                "notification_metadata": metadata or {},
            },
        )


@dataclass
class SentNotification:
    user_id: str
    type: NotificationType
    title: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class InMemoryNotificationDispatcher:
    """Collects notifications for assertions in tests."""

    def __init__(self) -> None:
        self.sent: List[SentNotification] = []
        self._error: Optional[Exception] = None

    def set_error(self, error: Optional[Exception]) -> None:
        self._error = error

    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append(SentNotification(user_id, type, title, message, dict(metadata or {})))

    def of_type(self, type: NotificationType) -> List[SentNotification]:
        return [item for item in self.sent if item.type == type]
