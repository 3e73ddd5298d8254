from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from live_sessions.core.config import Settings
from live_sessions.core.exceptions import ExternalServiceException
from live_sessions.integrations import FakePaymentGateway, build_payment_gateway
from live_sessions.integrations.payment_gateway import (
    StripePaymentGateway,
    from_minor_units,
    to_minor_units,
)


@pytest.fixture
def gateway(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", stripe.api_key)
    return StripePaymentGateway(secret_key="sk_test_123", default_currency="USD")


def _recording(monkeypatch, target, attribute, result):
    calls = []

    def fake(*args, **kwargs):
        calls.append((args, kwargs))
        return result

    monkeypatch.setattr(target, attribute, fake)
    return calls


def test_minor_unit_conversion():
    assert to_minor_units(Decimal("12.345")) == 1235
    assert to_minor_units(Decimal("80")) == 8000
    assert from_minor_units(1999) == Decimal("19.99")


def test_intent_is_manual_capture(monkeypatch, gateway):
    calls = _recording(monkeypatch, stripe.PaymentIntent, "create", SimpleNamespace(id="pi_123"))

    assert gateway.create_intent("req_1", Decimal("100.00"), "USD") == "pi_123"

    kwargs = calls[0][1]
    assert kwargs["amount"] == 10000
    assert kwargs["currency"] == "usd"
    assert kwargs["capture_method"] == "manual"
    assert kwargs["idempotency_key"] == "intent:req_1"
    assert stripe.api_key == "sk_test_123"


def test_capture_reports_received_amount(monkeypatch, gateway):
    _recording(
        monkeypatch,
        stripe.PaymentIntent,
        "capture",
        SimpleNamespace(status="succeeded", amount_received=8000),
    )

    result = gateway.capture("pi_123")

    assert result.success is True
    assert result.amount == Decimal("80.00")


def test_refund_amount(monkeypatch, gateway):
    calls = _recording(monkeypatch, stripe.Refund, "create", SimpleNamespace(id="re_1", amount=5000))

    result = gateway.refund("pi_123", Decimal("50"), "Cancelled by student")

    assert result.refund_id == "re_1"
    assert result.amount == Decimal("50.00")
    assert calls[0][1]["payment_intent"] == "pi_123"


def test_transfer_is_idempotent_per_payout(monkeypatch, gateway):
    calls = _recording(monkeypatch, stripe.Transfer, "create", SimpleNamespace(id="tr_1"))

    gateway.transfer("acct_1", Decimal("160"), "USD", {"payout_id": "payout_1"})
    gateway.transfer("acct_1", Decimal("20"), "USD")

    assert calls[0][1]["idempotency_key"] == "payout:payout_1"
    assert calls[0][1]["destination"] == "acct_1"
    assert "idempotency_key" not in calls[1][1]


def test_cancel_voids_the_intent(monkeypatch, gateway):
    calls = _recording(monkeypatch, stripe.PaymentIntent, "cancel", SimpleNamespace(status="canceled"))

    gateway.cancel_intent("pi_123")

    assert calls[0][0] == ("pi_123",)
    assert calls[0][1]["idempotency_key"] == "cancel:pi_123"


def test_fake_gateway_marks_voided_intent():
    fake = FakePaymentGateway()
    intent_ref = fake.create_intent("req_1", Decimal("30"), "USD")

    fake.cancel_intent(intent_ref)

    assert fake.intents[intent_ref]["canceled"] is True
    assert fake.intents[intent_ref]["captured"] is False


def test_stripe_errors_become_external_failures(monkeypatch, gateway):
    def declined(**kwargs):
        raise stripe.StripeError("Your card was declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", declined)

    with pytest.raises(ExternalServiceException) as exc_info:
        gateway.create_intent("req_1", Decimal("10"), "USD")

    assert "card was declined" in exc_info.value.message


def test_builder_requires_stripe_key():
    with pytest.raises(RuntimeError):
        build_payment_gateway(Settings(payment_provider="stripe", stripe_secret_key=None))


def test_fake_gateway_is_shared():
    first = build_payment_gateway(Settings(payment_provider="fake"))

    assert isinstance(first, FakePaymentGateway)
    assert build_payment_gateway(Settings(payment_provider="fake")) is first
