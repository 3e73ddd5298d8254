"""Transition-table checks shared by the booking and session lifecycles."""

from enum import Enum
from typing import FrozenSet, Mapping, TypeVar, Union

from .enums import (
    BOOKING_TRANSITIONS,
    SESSION_TRANSITIONS,
    BookingRequestStatus,
    LiveSessionStatus,
)
from .exceptions import InvalidTransitionException

S = TypeVar("S", bound=Enum)


def _coerce(enum_type: type, value: Union[str, Enum]) -> Enum:
    if isinstance(value, enum_type):
        return value
    try:
        return enum_type(value)
    except ValueError:
        raise InvalidTransitionException(enum_type.__name__, str(value), "?")


def can_transition(
    table: Mapping[S, FrozenSet[S]], current: Union[str, S], target: Union[str, S]
) -> bool:
    enum_type = type(next(iter(table)))
    current_state = _coerce(enum_type, current)
    target_state = _coerce(enum_type, target)
    return target_state in table.get(current_state, frozenset())


def ensure_transition(
    table: Mapping[S, FrozenSet[S]],
    entity: str,
    current: Union[str, S],
    target: Union[str, S],
) -> None:
    """Raise InvalidTransitionException unless ``current -> target`` is in ``table``."""
    if not can_transition(table, current, target):
        raise InvalidTransitionException(entity, state_value(current), state_value(target))


def ensure_booking_transition(
    current: Union[str, BookingRequestStatus], target: BookingRequestStatus
) -> None:
    ensure_transition(BOOKING_TRANSITIONS, "booking request", current, target)


def ensure_session_transition(
    current: Union[str, LiveSessionStatus], target: LiveSessionStatus
) -> None:
    ensure_transition(SESSION_TRANSITIONS, "live session", current, target)


def state_value(state: Union[str, Enum]) -> str:
    return state.value if isinstance(state, Enum) else str(state)
