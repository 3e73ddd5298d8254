from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from live_sessions.core.enums import CancellationPolicy, PaymentStatus
from live_sessions.core.exceptions import ValidationException
from live_sessions.core.timezone_utils import utc_now
from live_sessions.services.refund_calculator import (
    calculate_refund,
    refund_for_booking,
    refund_share,
)


@pytest.mark.parametrize(
    "hours,expected",
    [(30, Decimal("100.00")), (13, Decimal("50.00")), (5, Decimal("0.00"))],
)
def test_flexible_policy_tiers(hours, expected):
    quote = calculate_refund(Decimal("100"), CancellationPolicy.FLEXIBLE, hours)

    assert quote.refund_amount == expected
    assert quote.policy == "FLEXIBLE"


@pytest.mark.parametrize(
    "policy,hours,share",
    [
        (CancellationPolicy.MODERATE, 48, Decimal("1")),
        (CancellationPolicy.MODERATE, 30, Decimal("0.5")),
        (CancellationPolicy.MODERATE, 23.9, Decimal("0")),
        (CancellationPolicy.STRICT, 72, Decimal("1")),
        (CancellationPolicy.STRICT, 50, Decimal("0.25")),
        (CancellationPolicy.STRICT, 47, Decimal("0")),
    ],
)
def test_tier_boundaries_are_inclusive(policy, hours, share):
    assert refund_share(policy, hours) == share


@pytest.mark.parametrize("policy", list(CancellationPolicy))
def test_more_notice_never_refunds_less(policy):
    shares = [refund_share(policy, hours) for hours in range(0, 100)]

    assert shares == sorted(shares)


def test_refund_never_exceeds_original_amount():
    for policy in CancellationPolicy:
        quote = calculate_refund("80.00", policy, 500)
        assert Decimal("0") <= quote.refund_amount <= Decimal("80.00")
        assert quote.is_full


def test_unknown_policy_refunds_flat_half():
    quote = calculate_refund(Decimal("60"), "LENIENT", 1)

    assert quote.refund_amount == Decimal("30.00")
    assert quote.refund_percentage == 50
    assert quote.policy == "LENIENT"


def test_missing_policy_is_reported_as_unknown():
    quote = calculate_refund(Decimal("60"), None, 100)

    assert quote.policy == "UNKNOWN"
    assert quote.refund_amount == Decimal("30.00")


def test_negative_amount_is_rejected():
    with pytest.raises(ValidationException):
        calculate_refund(Decimal("-1"), CancellationPolicy.FLEXIBLE, 30)


def test_refund_rounds_to_cents():
    quote = calculate_refund(Decimal("33.33"), CancellationPolicy.STRICT, 50)

    assert quote.refund_amount == Decimal("8.33")
    assert quote.refund_percentage == 25


def test_refund_for_booking_uses_agreed_price_and_notice():
    now = utc_now()
    request = SimpleNamespace(
        id="req", payment_status=PaymentStatus.PAID, agreed_price=Decimal("120.00")
    )

    quote = refund_for_booking(
        request, now + timedelta(hours=30), CancellationPolicy.MODERATE, now
    )

    assert quote.refund_amount == Decimal("60.00")
    assert quote.hours_until_start == pytest.approx(30)


def test_refund_for_unpaid_booking_is_rejected():
    request = SimpleNamespace(
        id="req", payment_status=PaymentStatus.PENDING, agreed_price=Decimal("120.00")
    )

    with pytest.raises(ValidationException) as exc_info:
        refund_for_booking(request, utc_now(), CancellationPolicy.MODERATE)

    assert exc_info.value.code == "BOOKING_NOT_PAID"
