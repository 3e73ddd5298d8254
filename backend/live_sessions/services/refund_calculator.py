# backend/live_sessions/services/refund_calculator.py
"""
Cancellation refunds.

Refunds are tiered by how much notice the cancelling party gave. Each policy
is a list of (minimum hours before start, share refunded) checked from the
longest notice down; the first tier the notice reaches wins.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

from ..core.enums import CancellationPolicy, PaymentStatus
from ..core.exceptions import ValidationException
from ..core.state_machine import state_value
from ..core.timezone_utils import hours_between, utc_now

if TYPE_CHECKING:
    from ..models.booking_request import BookingRequest

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

REFUND_TIERS: Dict[CancellationPolicy, List[Tuple[float, Decimal]]] = {
    CancellationPolicy.FLEXIBLE: [(24, Decimal("1")), (12, Decimal("0.5"))],
    CancellationPolicy.MODERATE: [(48, Decimal("1")), (24, Decimal("0.5"))],
    CancellationPolicy.STRICT: [(72, Decimal("1")), (48, Decimal("0.25"))],
}

# Applied when the stored policy is not one we know
UNKNOWN_POLICY_SHARE = Decimal("0.5")


@dataclass(frozen=True)
class RefundQuote:
    refund_amount: Decimal
    refund_percentage: int
    policy: str
    hours_until_start: float

    @property
    def is_full(self) -> bool:
        return self.refund_percentage == 100

    @property
    def is_zero(self) -> bool:
        return self.refund_amount <= 0


def _as_decimal(value: Union[Decimal, float, int, str]) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def refund_share(policy: Union[CancellationPolicy, str, None], hours_until_start: float) -> Decimal:
    try:
        tiers = REFUND_TIERS[CancellationPolicy(state_value(policy))] if policy else None
    except ValueError:
        tiers = None
    if tiers is None:
        logger.warning("Unknown cancellation policy %r, refunding flat share", policy)
        return UNKNOWN_POLICY_SHARE

    for min_hours, share in tiers:
        if hours_until_start >= min_hours:
            return share
    return Decimal("0")


def calculate_refund(
    original_amount: Union[Decimal, float, int, str],
    policy: Union[CancellationPolicy, str, None],
    hours_until_start: float,
) -> RefundQuote:
    """
    Refund owed for a cancellation ``hours_until_start`` hours before the session.

    Raises:
        ValidationException: if the amount is negative
    """
    amount = _as_decimal(original_amount)
    if amount < 0:
        raise ValidationException("Refund base amount cannot be negative")

    share = refund_share(policy, hours_until_start)
    return RefundQuote(
        refund_amount=(amount * share).quantize(CENT, rounding=ROUND_HALF_UP),
        refund_percentage=int(share * 100),
        policy=state_value(policy) if policy else "UNKNOWN",
        hours_until_start=hours_until_start,
    )


def refund_for_booking(
    request: "BookingRequest",
    session_start: datetime,
    policy: Union[CancellationPolicy, str, None],
    now: Optional[datetime] = None,
) -> RefundQuote:
    """
    Refund for cancelling a paid booking.

    Raises:
        ValidationException: the booking has not been paid
    """
    if state_value(request.payment_status) != PaymentStatus.PAID.value:
        raise ValidationException(
            "Only paid bookings can be refunded",
            code="BOOKING_NOT_PAID",
            details={"booking_request_id": request.id, "payment_status": request.payment_status},
        )
    hours = hours_between(now or utc_now(), session_start)
    return calculate_refund(request.agreed_price, policy, hours)
