# backend/live_sessions/services/slot_generator.py
"""
Slot generation.

Turns an availability window into an ordered run of fixed-length slots. The
walk starts at the window start, emits one slot of ``duration`` minutes, then
advances by ``duration + buffer``. A trailing slot that would overrun the
window end is dropped, never truncated.

The window bounds are wall-clock times in the availability's timezone. They
are converted to UTC first and the walk happens in absolute time, so every
slot lasts exactly ``duration`` minutes even across a DST change.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, List

from ..core.exceptions import ValidationException
from ..core.timezone_utils import local_to_utc

if TYPE_CHECKING:
    from ..models.availability import InstructorAvailability


@dataclass(frozen=True)
class SlotBoundary:
    start_at: datetime
    end_at: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)


def generate_slot_boundaries(
    specific_date: date,
    start_time: time,
    end_time: time,
    slot_duration_minutes: int,
    buffer_minutes: int = 0,
    tz_name: str = "UTC",
) -> List[SlotBoundary]:
    """
    Tile ``[start_time, end_time)`` on ``specific_date`` with slots.

    Raises:
        ValidationException: for a non-positive duration, a negative buffer,
            an empty window or an unknown timezone
    """
    if slot_duration_minutes <= 0:
        raise ValidationException("Slot duration must be positive")
    if buffer_minutes < 0:
        raise ValidationException("Buffer minutes cannot be negative")
    if start_time >= end_time:
        raise ValidationException("Availability start time must be before end time")

    try:
        window_start = local_to_utc(specific_date, start_time, tz_name)
        window_end = local_to_utc(specific_date, end_time, tz_name)
    except ValueError as exc:
        raise ValidationException(str(exc), code="INVALID_TIMEZONE") from exc

    duration = timedelta(minutes=slot_duration_minutes)
    step = duration + timedelta(minutes=buffer_minutes)

    boundaries: List[SlotBoundary] = []
    cursor = window_start
    while cursor + duration <= window_end:
        boundaries.append(SlotBoundary(start_at=cursor, end_at=cursor + duration))
        cursor += step
    return boundaries


def generate_for_availability(availability: "InstructorAvailability") -> List[SlotBoundary]:
    """Slot boundaries for a persisted availability window."""
    return generate_slot_boundaries(
        availability.specific_date,
        availability.start_time,
        availability.end_time,
        availability.slot_duration_minutes,
        availability.buffer_minutes,
        availability.timezone or "UTC",
    )
