# backend/live_sessions/schemas/availability.py
"""
Availability schemas.

Windows are wall-clock times on one date in the window's timezone. Ordering
and overlap rules are checked by AvailabilityService so that direct service
callers get the same errors as API clients.
"""

from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from ..core.config import settings
from ._strict_base import StrictRequestModel
from .base import Money, StandardizedModel


def _parse_hhmm(value: object) -> object:
    if isinstance(value, str) and value.count(":") == 1:
        try:
            hour, minute = value.split(":")
            return time(int(hour), int(minute))
        except ValueError:
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value


class AvailabilityCreate(StrictRequestModel):
    """Declare a bookable window on a specific date."""

    specific_date: date
    start_time: time
    end_time: time
    timezone: str = Field(settings.default_timezone, max_length=50)
    slot_duration_minutes: int = Field(settings.default_slot_duration_minutes, gt=0, le=720)
    buffer_minutes: int = Field(settings.default_buffer_minutes, ge=0, le=240)
    min_advance_hours: int = Field(settings.default_min_advance_hours, ge=0)
    max_advance_hours: int = Field(settings.default_max_advance_hours, ge=1)
    max_sessions_per_slot: int = Field(settings.default_max_sessions_per_slot, ge=1, le=100)
    auto_accept: Optional[bool] = Field(
        None, description="Explicit auto-accept override; omit to use the profile default"
    )
    price_override: Optional[Money] = None
    currency: str = Field(settings.default_currency, min_length=3, max_length=3)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return _parse_hhmm(v)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class AvailabilityUpdate(StrictRequestModel):
    """Partial update; omitted fields keep their value."""

    start_time: Optional[time] = None
    end_time: Optional[time] = None
    slot_duration_minutes: Optional[int] = Field(None, gt=0, le=720)
    buffer_minutes: Optional[int] = Field(None, ge=0, le=240)
    max_sessions_per_slot: Optional[int] = Field(None, ge=1, le=100)
    min_advance_hours: Optional[int] = Field(None, ge=0)
    max_advance_hours: Optional[int] = Field(None, ge=1)
    auto_accept: Optional[bool] = None
    clear_auto_accept: bool = Field(
        False, description="Reset the override to UNSET so the profile default applies"
    )
    price_override: Optional[Money] = None
    notes: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        return _parse_hhmm(v)


class SlotBlockRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class SlotRangeRequest(StrictRequestModel):
    start_date: date
    end_date: date


class AvailabilityCheckRequest(StrictRequestModel):
    start: datetime
    end: datetime


class TimeSlotResponse(StandardizedModel):
    id: str
    availability_id: str
    instructor_id: str
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    max_bookings: int
    current_bookings: int
    is_available: bool
    is_booked: bool
    is_blocked: bool
    block_reason: Optional[str] = None


class AvailabilityResponse(StandardizedModel):
    id: str
    instructor_id: str
    specific_date: date
    start_time: time
    end_time: time
    timezone: str
    slot_duration_minutes: int
    buffer_minutes: int
    min_advance_hours: int
    max_advance_hours: int
    max_sessions_per_slot: int
    auto_accept_override: Optional[str] = None
    price_override: Optional[Money] = None
    currency: str
    notes: Optional[str] = None
    is_active: bool
    time_slots: List[TimeSlotResponse] = Field(default_factory=list)


class SlotGenerationResponse(StandardizedModel):
    generated: int
    availability_ids: List[str]
    skipped: List[Dict[str, Any]] = Field(default_factory=list)
    slots: List[TimeSlotResponse] = Field(default_factory=list)


class AvailabilityConflict(StandardizedModel):
    kind: str
    id: str
    start: datetime
    end: datetime
    status: Optional[str] = None


class AvailabilityCheckResponse(StandardizedModel):
    available: bool
    conflicts: List[AvailabilityConflict] = Field(default_factory=list)


class AvailabilityStatsResponse(StandardizedModel):
    total_slots: int
    available_slots: int
    booked_slots: int
    blocked_slots: int
    utilization_rate: float
