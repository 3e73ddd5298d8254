import pytest

from live_sessions.core.enums import (
    BOOKING_TRANSITIONS,
    SESSION_TRANSITIONS,
    BookingRequestStatus,
    LiveSessionStatus,
)
from live_sessions.core.exceptions import InvalidTransitionException
from live_sessions.core.state_machine import (
    can_transition,
    ensure_booking_transition,
    ensure_session_transition,
    state_value,
)

TERMINAL_BOOKING_STATES = [
    BookingRequestStatus.REJECTED,
    BookingRequestStatus.CANCELLED,
    BookingRequestStatus.EXPIRED,
    BookingRequestStatus.COMPLETED,
]


@pytest.mark.parametrize(
    "target",
    [
        BookingRequestStatus.ACCEPTED,
        BookingRequestStatus.REJECTED,
        BookingRequestStatus.CANCELLED,
        BookingRequestStatus.EXPIRED,
    ],
)
def test_pending_request_can_be_decided(target):
    ensure_booking_transition(BookingRequestStatus.PENDING, target)


def test_pending_request_cannot_complete():
    with pytest.raises(InvalidTransitionException) as exc_info:
        ensure_booking_transition(BookingRequestStatus.PENDING, BookingRequestStatus.COMPLETED)

    assert exc_info.value.details == {
        "entity": "booking request",
        "from": "PENDING",
        "to": "COMPLETED",
    }
    assert exc_info.value.status_code == 409


@pytest.mark.parametrize("state", TERMINAL_BOOKING_STATES)
def test_terminal_requests_never_move(state):
    assert BOOKING_TRANSITIONS[state] == frozenset()
    for target in BookingRequestStatus:
        assert not can_transition(BOOKING_TRANSITIONS, state, target)


def test_raw_strings_are_accepted():
    assert can_transition(BOOKING_TRANSITIONS, "ACCEPTED", "COMPLETED")
    ensure_session_transition("SCHEDULED", LiveSessionStatus.IN_PROGRESS)


def test_unknown_state_is_an_invalid_transition():
    with pytest.raises(InvalidTransitionException):
        ensure_booking_transition("ARCHIVED", BookingRequestStatus.CANCELLED)


def test_rescheduled_session_returns_to_schedule():
    ensure_session_transition(LiveSessionStatus.SCHEDULED, LiveSessionStatus.RESCHEDULED)
    ensure_session_transition(LiveSessionStatus.RESCHEDULED, LiveSessionStatus.SCHEDULED)


def test_running_session_can_only_finish_or_cancel():
    assert SESSION_TRANSITIONS[LiveSessionStatus.IN_PROGRESS] == frozenset(
        {LiveSessionStatus.COMPLETED, LiveSessionStatus.CANCELLED}
    )
    with pytest.raises(InvalidTransitionException):
        ensure_session_transition(LiveSessionStatus.IN_PROGRESS, LiveSessionStatus.SCHEDULED)


def test_every_state_has_a_row():
    assert set(BOOKING_TRANSITIONS) == set(BookingRequestStatus)
    assert set(SESSION_TRANSITIONS) == set(LiveSessionStatus)


def test_state_value():
    assert state_value(LiveSessionStatus.NO_SHOW) == "NO_SHOW"
    assert state_value("NO_SHOW") == "NO_SHOW"
