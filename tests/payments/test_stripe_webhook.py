from decimal import Decimal

import pytest

stripe = pytest.importorskip("stripe")

from application.dtos.payments import CreateIntent
from core.settings import StripeSettings
from infrastructure.external.payments.exceptions import InvalidWebhookSignatureException
from infrastructure.external.payments.stripe_client import StripeClient


def _client(**overrides) -> StripeClient:
    config = StripeSettings(**{"secret_key": "sk_test_123", "webhook_secret": "whsec_test", **overrides})
    return StripeClient(config)


def _fake_webhook(monkeypatch, event):
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            if sig_header != "t=1,v1=abc":
                raise stripe.SignatureVerificationError("bad signature", sig_header)
            return event

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)


def test_payment_intent_succeeded_maps_to_success(monkeypatch):
    _fake_webhook(monkeypatch, {
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {
            "object": "payment_intent",
            "id": "pi_123",
            "amount": 1250,
            "currency": "eur",
            "metadata": {"order_id": "42"},
        }},
    })

    evt = _client().parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, b"{}")

    assert evt.provider == "stripe"
    assert evt.event_id == "evt_1"
    assert evt.provider_transaction_id == "pi_123"
    assert evt.status == "SUCCESS"
    assert evt.order_id == 42
    assert evt.amount == Decimal("12.50")
    assert evt.currency == "EUR"


def test_charge_refunded_references_payment_intent(monkeypatch):
    _fake_webhook(monkeypatch, {
        "id": "evt_2",
        "type": "charge.refunded",
        "data": {"object": {
            "object": "charge",
            "id": "ch_1",
            "payment_intent": "pi_123",
            "amount": 1250,
            "amount_refunded": 500,
            "currency": "eur",
        }},
    })

    evt = _client().parse_webhook({"stripe-signature": "t=1,v1=abc"}, b"{}")

    assert evt.provider_transaction_id == "pi_123"
    assert evt.status == "REFUNDED"
    assert evt.amount == Decimal("5.00")


def test_signature_is_required(monkeypatch):
    _fake_webhook(monkeypatch, {})
    client = _client()

    with pytest.raises(InvalidWebhookSignatureException):
        client.parse_webhook({}, b"{}")
    with pytest.raises(InvalidWebhookSignatureException):
        client.parse_webhook({"Stripe-Signature": "forged"}, b"{}")
    with pytest.raises(InvalidWebhookSignatureException):
        _client(webhook_secret=None).parse_webhook({"Stripe-Signature": "t=1,v1=abc"}, b"{}")


@pytest.mark.asyncio
async def test_create_intent_sends_minor_units_and_idempotency_key(monkeypatch):
    calls = []

    class _FakePaymentIntent:
        @staticmethod
        def create(**kwargs):
            calls.append(kwargs)
            return {"id": "pi_new", "status": "requires_payment_method", "client_secret": "pi_new_secret"}

    monkeypatch.setattr(stripe, "PaymentIntent", _FakePaymentIntent)

    intent = await _client().create_intent(
        CreateIntent(order_id=7, order_number="ORD-7", amount=Decimal("19.99"), currency="eur", idempotency_key="k1")
    )

    assert intent.intent_id == "pi_new"
    assert intent.status == "PENDING"
    assert intent.client_secret_or_params == {"client_secret": "pi_new_secret"}
    [call] = calls
    assert call["amount"] == 1999
    assert call["currency"] == "eur"
    assert call["idempotency_key"] == "k1"
    assert call["api_key"] == "sk_test_123"
    assert call["metadata"]["order_id"] == "7"


def test_zero_decimal_currency_conversion():
    assert StripeClient._to_minor(Decimal("1500"), "MGA") == 1500
    assert StripeClient._from_minor(1500, "mga") == Decimal("1500")
    assert StripeClient._from_minor(None, "eur") is None
