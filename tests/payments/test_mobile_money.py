import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import CreateIntent
from core.settings import MobileMoneySettings
from domain.common.exceptions import DomainValidationException
from infrastructure.external.payments.exceptions import (
    InvalidWebhookSignatureException,
    PaymentProviderError,
)
from infrastructure.external.payments.mobile_money_client import MobileMoneyClient, sign_payload


SETTINGS = MobileMoneySettings(
    base_url="https://mm.test",
    auth_url="https://mm.test/token",
    client_id="cid",
    client_secret="csecret",
    merchant_msisdn="0343500003",
    webhook_secret="hook-secret",
)


class _Api:
    def __init__(self, pay_status: int = 202):
        self.token_calls = 0
        self.payments = []
        self.pay_status = pay_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"tok_{self.token_calls}", "expires_in": 3600})
        self.payments.append(request)
        if self.pay_status >= 400:
            return httpx.Response(self.pay_status, json={"errorCode": "4001", "errorDescription": "Insufficient funds"})
        return httpx.Response(self.pay_status, json={"serverCorrelationId": f"sc_{len(self.payments)}", "status": "pending"})


def _request(order_id: int = 5, **metadata) -> CreateIntent:
    return CreateIntent(
        order_id=order_id,
        order_number=f"ORD-{order_id}",
        amount=Decimal("1500.40"),
        currency="MGA",
        idempotency_key=f"key-{order_id}",
        metadata=metadata,
    )


@pytest.mark.asyncio
async def test_create_intent_reuses_cached_token():
    api = _Api()
    client = MobileMoneyClient(SETTINGS, transport=httpx.MockTransport(api))

    first = await client.create_intent(_request(5, phone_number="0341234567"))
    second = await client.create_intent(_request(6, phone_number="0341234567"))
    await client.aclose()

    assert api.token_calls == 1
    assert (first.intent_id, first.status) == ("sc_1", "PENDING")
    assert second.intent_id == "sc_2"

    sent = api.payments[0]
    assert sent.headers["Authorization"] == "Bearer tok_1"
    assert sent.headers["X-CorrelationID"] == "key-5"
    payload = json.loads(sent.content)
    assert payload["amount"] == "1500"
    assert payload["debitParty"] == [{"key": "msisdn", "value": "0341234567"}]
    assert {"key": "orderId", "value": "5"} in payload["metadata"]


@pytest.mark.asyncio
async def test_create_intent_requires_phone_number():
    api = _Api()
    client = MobileMoneyClient(SETTINGS, transport=httpx.MockTransport(api))

    with pytest.raises(DomainValidationException):
        await client.create_intent(_request())
    assert api.token_calls == 0


@pytest.mark.asyncio
async def test_rejected_payment_surfaces_provider_code():
    client = MobileMoneyClient(SETTINGS, transport=httpx.MockTransport(_Api(pay_status=400)))

    with pytest.raises(PaymentProviderError) as exc_info:
        await client.create_intent(_request(phone_number="0341234567"))
    assert exc_info.value.details["provider_code"] == "4001"


def test_webhook_signature_checked_against_raw_body():
    client = MobileMoneyClient(SETTINGS)
    body = json.dumps({
        "serverCorrelationId": "sc_1",
        "transactionStatus": "completed",
        "transactionReference": "tr_99",
        "amount": "1500",
        "currency": "Ar",
        "metadata": [{"key": "orderId", "value": "5"}],
    }).encode()

    evt = client.parse_webhook({"X-Signature": sign_payload("hook-secret", body)}, body)
    assert evt.event_id == "tr_99"
    assert evt.provider_transaction_id == "sc_1"
    assert evt.status == "SUCCESS"
    assert evt.order_id == 5
    assert evt.amount == Decimal("1500")

    with pytest.raises(InvalidWebhookSignatureException):
        client.parse_webhook({"X-Signature": sign_payload("other", body)}, body)
    with pytest.raises(InvalidWebhookSignatureException):
        client.parse_webhook({}, body)


def test_incomplete_settings_rejected():
    with pytest.raises(ValueError):
        MobileMoneyClient(MobileMoneySettings(client_id="cid"))
