"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import (
    get_current_admin,
    get_current_instructor,
    get_current_user,
    is_admin,
    visibility_scope,
)
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_request_service,
    get_event_publisher,
    get_live_session_service,
    get_notification_dispatcher,
    get_payment_gateway,
    get_payout_service,
    get_video_provider,
)

__all__ = [
    # Auth
    "get_current_admin",
    "get_current_instructor",
    "get_current_user",
    "is_admin",
    "visibility_scope",
    # Database
    "get_db",
    # Adapters
    "get_event_publisher",
    "get_notification_dispatcher",
    "get_payment_gateway",
    "get_video_provider",
    # Services
    "get_availability_service",
    "get_booking_request_service",
    "get_live_session_service",
    "get_payout_service",
]
