"""External service integrations for the live sessions engine.

The builders pick an adapter from settings. Fake adapters are process-wide
singletons so an intent created by one request can be captured by another.
"""

from functools import lru_cache
import logging

from ..core.config import Settings, settings as default_settings
from .notifications import (
    InMemoryNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from .payment_gateway import (
    CaptureResult,
    FakePaymentGateway,
    PaymentGateway,
    RefundResult,
    StripePaymentGateway,
)
from .video_provider import FakeVideoProvider, HundredMsVideoProvider, RoomRef, VideoProvider

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _fake_payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@lru_cache(maxsize=1)
def _fake_video_provider() -> FakeVideoProvider:
    return FakeVideoProvider()


def build_payment_gateway(config: Settings = default_settings) -> PaymentGateway:
    if config.payment_provider == "stripe":
        if config.stripe_secret_key is None:
            raise RuntimeError("STRIPE_SECRET_KEY is required when PAYMENT_PROVIDER=stripe")
        return StripePaymentGateway(
            secret_key=config.stripe_secret_key, default_currency=config.stripe_currency
        )
    return _fake_payment_gateway()


def build_video_provider(config: Settings = default_settings) -> VideoProvider:
    if config.video_provider == "hundredms":
        missing = [
            name
            for name, value in (
                ("HUNDREDMS_ACCESS_KEY", config.hundredms_access_key),
                ("HUNDREDMS_APP_SECRET", config.hundredms_app_secret),
            )
            if not value
        ]
        if missing:
            logger.error("100ms configuration incomplete: %s", ", ".join(missing))
            raise RuntimeError(f"Missing 100ms configuration: {', '.join(missing)}")
        return HundredMsVideoProvider(
            access_key=str(config.hundredms_access_key),
            app_secret=config.hundredms_app_secret,
            base_url=config.hundredms_base_url,
            meeting_base_url=config.hundredms_meeting_base_url,
            template_id=config.hundredms_template_id,
        )
    return _fake_video_provider()


def build_notification_dispatcher() -> NotificationDispatcher:
    return LoggingNotificationDispatcher()


__all__ = [
    "CaptureResult",
    "FakePaymentGateway",
    "FakeVideoProvider",
    "HundredMsVideoProvider",
    "InMemoryNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "PaymentGateway",
    "RefundResult",
    "RoomRef",
    "StripePaymentGateway",
    "VideoProvider",
    "build_notification_dispatcher",
    "build_payment_gateway",
    "build_video_provider",
]
