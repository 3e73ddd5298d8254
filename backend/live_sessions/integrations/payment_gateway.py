"""Payment gateway integration.

``StripePaymentGateway`` talks to Stripe with manual-capture PaymentIntents,
refunds and Connect transfers. ``FakePaymentGateway`` keeps everything in
memory and supports per-method error injection for tests.

Amounts cross this boundary as ``Decimal`` in major units; Stripe wants
integer minor units, so conversion happens here and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, Optional, Protocol
import uuid

from pydantic import SecretStr
import stripe

from ..core.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)

SERVICE_NAME = "payment_gateway"


@dataclass(frozen=True)
class CaptureResult:
    success: bool
    amount: Decimal


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: Decimal


class PaymentGateway(Protocol):
    """Operations the booking engine needs from a payment processor."""

    def create_intent(self, booking_id: str, amount: Decimal, currency: str) -> str:
        ...

    def capture(self, intent_ref: str) -> CaptureResult:
        ...

    def refund(self, intent_ref: str, amount: Decimal, reason: str) -> RefundResult:
        ...

    def cancel_intent(self, intent_ref: str) -> None:
        ...

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        ...


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


class StripePaymentGateway:
    """Stripe-backed gateway."""

    def __init__(self, *, secret_key: str | SecretStr, default_currency: str = "usd") -> None:
        stripe.api_key = (
            secret_key.get_secret_value() if isinstance(secret_key, SecretStr) else secret_key
        )
        self._default_currency = default_currency.lower()

    def create_intent(self, booking_id: str, amount: Decimal, currency: str) -> str:
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=(currency or self._default_currency).lower(),
                capture_method="manual",
                metadata={"booking_request_id": booking_id},
                idempotency_key=f"intent:{booking_id}",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe intent creation failed for %s: %s", booking_id, exc)
            raise ExternalServiceException(SERVICE_NAME, str(exc)) from exc
        return str(intent.id)

    def capture(self, intent_ref: str) -> CaptureResult:
        try:
            intent = stripe.PaymentIntent.capture(intent_ref, idempotency_key=f"capture:{intent_ref}")
        except stripe.StripeError as exc:
            logger.error("Stripe capture failed for %s: %s", intent_ref, exc)
            raise ExternalServiceException(SERVICE_NAME, str(exc)) from exc
        received = getattr(intent, "amount_received", None) or 0
        return CaptureResult(
            success=getattr(intent, "status", "") == "succeeded",
            amount=from_minor_units(int(received)),
        )

    def refund(self, intent_ref: str, amount: Decimal, reason: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(
                payment_intent=intent_ref,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
                idempotency_key=f"refund:{intent_ref}:{to_minor_units(amount)}",
            )
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed for %s: %s", intent_ref, exc)
            raise ExternalServiceException(SERVICE_NAME, str(exc)) from exc
        return RefundResult(refund_id=str(refund.id), amount=from_minor_units(int(refund.amount)))

    def cancel_intent(self, intent_ref: str) -> None:
        """Void an authorized, uncaptured intent so the card hold is released."""
        try:
            stripe.PaymentIntent.cancel(intent_ref, idempotency_key=f"cancel:{intent_ref}")
        except stripe.StripeError as exc:
            logger.error("Stripe intent cancel failed for %s: %s", intent_ref, exc)
            raise ExternalServiceException(SERVICE_NAME, str(exc)) from exc

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": (currency or self._default_currency).lower(),
            "destination": destination,
            "metadata": metadata or {},
        }
        payout_id = (metadata or {}).get("payout_id")
        if payout_id:
            params["idempotency_key"] = f"payout:{payout_id}"
        try:
            transfer = stripe.Transfer.create(**params)
        except stripe.StripeError as exc:
            logger.error("Stripe transfer to %s failed: %s", destination, exc)
            raise ExternalServiceException(SERVICE_NAME, str(exc)) from exc
        return str(transfer.id)


class FakePaymentGateway:
    """In-memory gateway for tests and local development."""

    def __init__(self) -> None:
        self.intents: dict[str, dict[str, Any]] = {}
        self.refunds: list[RefundResult] = []
        self.transfers: list[dict[str, Any]] = []
        self._errors: dict[str, Exception] = {}

    def set_error(self, method: str, error: Exception) -> None:
        """Make the next and all later calls to ``method`` raise ``error``."""
        self._errors[method] = error

    def clear_errors(self) -> None:
        self._errors.clear()

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_intent(self, booking_id: str, amount: Decimal, currency: str) -> str:
        self._raise_if_injected("create_intent")
        intent_ref = f"pi_fake_{uuid.uuid4().hex[:16]}"
        self.intents[intent_ref] = {
            "booking_id": booking_id,
            "amount": Decimal(amount),
            "currency": currency,
            "captured": False,
        }
        return intent_ref

    def capture(self, intent_ref: str) -> CaptureResult:
        self._raise_if_injected("capture")
        intent = self.intents.setdefault(
            intent_ref, {"amount": Decimal("0"), "currency": "USD", "captured": False}
        )
        intent["captured"] = True
        return CaptureResult(success=True, amount=intent["amount"])

    def refund(self, intent_ref: str, amount: Decimal, reason: str) -> RefundResult:
        self._raise_if_injected("refund")
        result = RefundResult(refund_id=f"re_fake_{uuid.uuid4().hex[:16]}", amount=Decimal(amount))
        self.refunds.append(result)
        return result

    def cancel_intent(self, intent_ref: str) -> None:
        self._raise_if_injected("cancel_intent")
        intent = self.intents.setdefault(
            intent_ref, {"amount": Decimal("0"), "currency": "USD", "captured": False}
        )
        intent["canceled"] = True

    def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        self._raise_if_injected("transfer")
        transfer_id = f"tr_fake_{uuid.uuid4().hex[:16]}"
        self.transfers.append(
            {
                "id": transfer_id,
                "destination": destination,
                "amount": Decimal(amount),
                "currency": currency,
                "metadata": dict(metadata or {}),
            }
        )
        return transfer_id
