# backend/live_sessions/schemas/__init__.py
"""
Pydantic schemas for the live sessions engine.

Request DTOs forbid unexpected fields; response DTOs read ORM rows directly.
"""

from .availability import (
    AvailabilityCheckRequest,
    AvailabilityCheckResponse,
    AvailabilityConflict,
    AvailabilityCreate,
    AvailabilityResponse,
    AvailabilityStatsResponse,
    AvailabilityUpdate,
    SlotBlockRequest,
    SlotGenerationResponse,
    SlotRangeRequest,
    TimeSlotResponse,
)
from .booking import (
    BookingAccept,
    BookingCancel,
    BookingReject,
    BookingRequestCreate,
    BookingRequestListResponse,
    BookingRequestResponse,
    BookingRequestUpdate,
    BookingReschedule,
    BookingStatsResponse,
    PaymentStatusUpdate,
    ExpirySweepResponse,
)
from .payout import (
    AutomaticPayoutResponse,
    PayoutCreate,
    PayoutResponse,
    PayoutSessionResponse,
    PayoutStatsResponse,
    PayoutStatusUpdate,
    TransferWebhookEvent,
)
from .session import (
    AttendanceResponse,
    AttendanceUpdate,
    LiveSessionCreate,
    LiveSessionResponse,
    LiveSessionUpdate,
    ParticipantAdd,
    ParticipantResponse,
    SessionCancel,
    SessionEnd,
    SessionReschedule,
    SessionStatsResponse,
)

__all__ = [
    "AttendanceResponse",
    "AttendanceUpdate",
    "AutomaticPayoutResponse",
    "AvailabilityCheckRequest",
    "AvailabilityCheckResponse",
    "AvailabilityConflict",
    "AvailabilityCreate",
    "AvailabilityResponse",
    "AvailabilityStatsResponse",
    "AvailabilityUpdate",
    "BookingAccept",
    "BookingCancel",
    "BookingReject",
    "BookingRequestCreate",
    "BookingRequestListResponse",
    "BookingRequestResponse",
    "BookingRequestUpdate",
    "BookingReschedule",
    "BookingStatsResponse",
    "ExpirySweepResponse",
    "LiveSessionCreate",
    "LiveSessionResponse",
    "LiveSessionUpdate",
    "PaymentStatusUpdate",
    "ParticipantAdd",
    "ParticipantResponse",
    "PayoutCreate",
    "PayoutResponse",
    "PayoutSessionResponse",
    "PayoutStatsResponse",
    "PayoutStatusUpdate",
    "SessionCancel",
    "SessionEnd",
    "SessionReschedule",
    "SessionStatsResponse",
    "SlotBlockRequest",
    "SlotGenerationResponse",
    "SlotRangeRequest",
    "TimeSlotResponse",
    "TransferWebhookEvent",
]
