from datetime import date, datetime, time, timezone

import pytest

from live_sessions.core.exceptions import ValidationException
from live_sessions.services.slot_generator import generate_slot_boundaries

DAY = date(2026, 7, 1)


def _utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 7, 1, hour, minute, tzinfo=timezone.utc)


def test_one_hour_window_with_half_hour_slots_yields_two_slots():
    slots = generate_slot_boundaries(DAY, time(9, 0), time(10, 0), 30, 0)

    assert [(s.start_at, s.end_at) for s in slots] == [
        (_utc(9, 0), _utc(9, 30)),
        (_utc(9, 30), _utc(10, 0)),
    ]
    assert all(s.duration_minutes == 30 for s in slots)


def test_buffer_spaces_slots_and_drops_partial_trailing_slot():
    slots = generate_slot_boundaries(DAY, time(9, 0), time(11, 0), 45, 15)

    # 09:00-09:45, 10:00-10:45; a third slot would end at 11:45
    assert [s.start_at for s in slots] == [_utc(9, 0), _utc(10, 0)]
    assert slots[-1].end_at <= _utc(11, 0)


def test_window_shorter_than_one_slot_yields_nothing():
    assert generate_slot_boundaries(DAY, time(9, 0), time(9, 20), 30) == []


def test_wall_clock_times_are_converted_from_the_window_timezone():
    slots = generate_slot_boundaries(DAY, time(9, 0), time(10, 0), 60, 0, "America/New_York")

    assert len(slots) == 1
    # EDT is UTC-4 in July
    assert slots[0].start_at == _utc(13, 0)
    assert slots[0].end_at == _utc(14, 0)


def test_generation_is_deterministic():
    first = generate_slot_boundaries(DAY, time(8, 0), time(12, 0), 50, 10, "Europe/Berlin")
    second = generate_slot_boundaries(DAY, time(8, 0), time(12, 0), 50, 10, "Europe/Berlin")

    assert first == second


@pytest.mark.parametrize(
    "start,end,duration,buffer",
    [
        (time(10, 0), time(9, 0), 30, 0),
        (time(9, 0), time(9, 0), 30, 0),
        (time(9, 0), time(10, 0), 0, 0),
        (time(9, 0), time(10, 0), 30, -5),
    ],
)
def test_invalid_window_or_shape_is_rejected(start, end, duration, buffer):
    with pytest.raises(ValidationException):
        generate_slot_boundaries(DAY, start, end, duration, buffer)


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValidationException) as exc_info:
        generate_slot_boundaries(DAY, time(9, 0), time(10, 0), 30, 0, "Mars/Olympus_Mons")

    assert exc_info.value.code == "INVALID_TIMEZONE"
