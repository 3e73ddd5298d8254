from datetime import timedelta
from types import SimpleNamespace

import pytest

from live_sessions.core.enums import AutoAcceptOverride
from live_sessions.core.timezone_utils import utc_now
from live_sessions.services.auto_approval import (
    AUTO_ACCEPT_DISABLED,
    LIVE_SESSIONS_DISABLED,
    NO_CAPACITY,
    NO_SLOT,
    NOT_ACCEPTING_STUDENTS,
    OFFERING_FORBIDS,
    OUTSIDE_ADVANCE_WINDOW,
    AutoApprovalInput,
    build_policy_input,
    evaluate_auto_approval,
    resolve_auto_accept,
)

UNSET = AutoAcceptOverride.UNSET
TRUE = AutoAcceptOverride.TRUE
FALSE = AutoAcceptOverride.FALSE


@pytest.mark.parametrize(
    "slot,availability,profile,expected",
    [
        (UNSET, UNSET, True, (True, "profile")),
        (UNSET, UNSET, False, (False, "profile")),
        (UNSET, TRUE, False, (True, "availability")),
        (UNSET, FALSE, True, (False, "availability")),
        (TRUE, FALSE, False, (True, "slot")),
        (FALSE, TRUE, True, (False, "slot")),
    ],
)
def test_resolution_order_is_slot_then_availability_then_profile(slot, availability, profile, expected):
    assert resolve_auto_accept(slot, availability, profile) == expected


def _eligible(**overrides):
    values = dict(
        profile_default=True,
        hours_until_slot=48,
        min_advance_hours=12,
        max_advance_hours=720,
        remaining_capacity=1,
    )
    values.update(overrides)
    return AutoApprovalInput(**values)


def test_all_conditions_met_approves():
    decision = evaluate_auto_approval(_eligible())

    assert decision.approved is True
    assert decision.failed_conditions == ()
    assert decision.resolved_from == "profile"


@pytest.mark.parametrize(
    "overrides,condition",
    [
        ({"profile_default": False}, AUTO_ACCEPT_DISABLED),
        ({"offering_override": FALSE}, OFFERING_FORBIDS),
        ({"hours_until_slot": None}, NO_SLOT),
        ({"hours_until_slot": 6}, OUTSIDE_ADVANCE_WINDOW),
        ({"hours_until_slot": 1000}, OUTSIDE_ADVANCE_WINDOW),
        ({"remaining_capacity": 0}, NO_CAPACITY),
        ({"accepting_students": False}, NOT_ACCEPTING_STUDENTS),
        ({"live_sessions_enabled": False}, LIVE_SESSIONS_DISABLED),
    ],
)
def test_each_failing_condition_blocks_approval(overrides, condition):
    decision = evaluate_auto_approval(_eligible(**overrides))

    assert decision.approved is False
    assert decision.failed_conditions == (condition,)


def test_offering_cannot_force_auto_accept_on():
    decision = evaluate_auto_approval(_eligible(profile_default=False, offering_override=TRUE))

    assert decision.approved is False
    assert AUTO_ACCEPT_DISABLED in decision.failed_conditions


def test_every_failure_is_reported():
    decision = evaluate_auto_approval(
        _eligible(profile_default=False, remaining_capacity=0, accepting_students=False)
    )

    assert set(decision.failed_conditions) == {
        AUTO_ACCEPT_DISABLED,
        NO_CAPACITY,
        NOT_ACCEPTING_STUDENTS,
    }
    assert decision.to_log_context()["auto_approved"] is False


def test_policy_input_reads_persisted_overrides():
    now = utc_now()
    profile = SimpleNamespace(auto_accept_bookings=False, is_accepting_students=True, live_sessions_enabled=True)
    offering = SimpleNamespace(auto_accept_override=None)
    slot = SimpleNamespace(start_at=now + timedelta(hours=30), auto_accept_override=TRUE)
    availability = SimpleNamespace(auto_accept_override=None, min_advance_hours=24, max_advance_hours=48)

    policy_input = build_policy_input(
        profile=profile,
        offering=offering,
        slot=slot,
        availability=availability,
        remaining_capacity=2,
        now=now,
    )

    assert policy_input.slot_override is TRUE
    assert policy_input.availability_override is UNSET
    assert policy_input.hours_until_slot == pytest.approx(30)
    assert evaluate_auto_approval(policy_input).approved is True


def test_missing_profile_never_auto_approves():
    now = utc_now()
    slot = SimpleNamespace(start_at=now + timedelta(hours=30), auto_accept_override=TRUE)

    policy_input = build_policy_input(
        profile=None,
        offering=SimpleNamespace(auto_accept_override=None),
        slot=slot,
        availability=None,
        remaining_capacity=1,
        now=now,
    )
    decision = evaluate_auto_approval(policy_input)

    assert decision.approved is False
    assert NOT_ACCEPTING_STUDENTS in decision.failed_conditions
