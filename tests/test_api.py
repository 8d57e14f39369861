from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from api.dependencies import get_notifier, get_payment_registry, get_uow_factory
from application.services.token_service import TokenService
from main import app

from support import STUB_HEADERS, webhook_body


OWNER_ID = 10
CUSTOMER_ID = 100
PREFIX = "/api/v1"


def _auth(user_id: int) -> dict:
    return {"Authorization": f"Bearer {TokenService().create_access_token(user_id)}"}


@pytest.fixture
async def client(uow_factory, registry, notifier):
    app.dependency_overrides[get_uow_factory] = lambda: uow_factory
    app.dependency_overrides[get_payment_registry] = lambda: registry
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def catalog(seeder):
    business_id = await seeder.business(owner_id=OWNER_ID)
    variant_id = await seeder.variant(business_id, price="4.50", batches=((5, None),))
    return business_id, variant_id


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client):
    resp = await client.get(f"{PREFIX}/orders")
    assert resp.status_code == 401
    body = resp.json()
    assert body["error"]["type"] == "Unauthorized"
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    resp = await client.get(f"{PREFIX}/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_create_order_and_pay(client, catalog, stub_provider):
    business_id, variant_id = catalog
    payload = {"type": "SALE", "business_id": business_id, "lines": [{"variant_id": variant_id, "quantity": 2}]}

    resp = await client.post(f"{PREFIX}/orders", json=payload, headers=_auth(CUSTOMER_ID))
    assert resp.status_code == 201
    body = resp.json()
    assert body["code"] == 0
    order = body["data"]
    assert order["status"] == "PENDING_PAYMENT"
    assert Decimal(order["total_amount"]) == Decimal("9.00")
    assert resp.headers.get("X-Request-ID")

    resp = await client.post(
        f"{PREFIX}/orders/{order['id']}/pay", json={"provider": "stub"}, headers=_auth(CUSTOMER_ID)
    )
    assert resp.status_code == 201
    intent = resp.json()["data"]
    assert intent["status"] == "PENDING"

    resp = await client.post(
        f"{PREFIX}/payments/stub/webhook",
        content=webhook_body(intent["intent_id"], "SUCCESS"),
        headers=STUB_HEADERS,
    )
    assert resp.status_code == 200
    outcome = resp.json()["data"]
    assert outcome["processed"] is True
    assert outcome["order_status"] == "PAID"

    resp = await client.get(f"{PREFIX}/orders/{order['id']}", headers=_auth(CUSTOMER_ID))
    assert resp.json()["data"]["status"] == "PAID"


@pytest.mark.asyncio
async def test_insufficient_stock_maps_to_conflict(client, catalog):
    business_id, variant_id = catalog
    payload = {"business_id": business_id, "lines": [{"variant_id": variant_id, "quantity": 6}]}

    resp = await client.post(f"{PREFIX}/orders", json=payload, headers=_auth(CUSTOMER_ID))

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["type"] == "InsufficientStock"
    assert error["details"] == {"variant_id": variant_id, "available": 5, "requested": 6}


@pytest.mark.asyncio
async def test_invalid_payload_is_validation_error(client, catalog):
    business_id, _ = catalog
    resp = await client.post(
        f"{PREFIX}/orders", json={"business_id": business_id, "lines": []}, headers=_auth(CUSTOMER_ID)
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "ValidationError"


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_acknowledged(client):
    resp = await client.post(
        f"{PREFIX}/payments/stub/webhook",
        content=webhook_body("pi_unknown", "SUCCESS"),
        headers={"x-stub-signature": "forged"},
    )
    assert resp.status_code == 200
    outcome = resp.json()["data"]
    assert outcome["processed"] is False
    assert outcome["error"] == "InvalidWebhookSignature"


@pytest.mark.asyncio
async def test_wallet_endpoint_creates_wallet(client):
    resp = await client.get(f"{PREFIX}/wallet", headers=_auth(CUSTOMER_ID))
    assert resp.status_code == 200
    wallet = resp.json()["data"]
    assert wallet["user_id"] == CUSTOMER_ID
    assert Decimal(wallet["balance"]) == 0


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] in {"healthy", "degraded"}


@pytest.mark.asyncio
async def test_list_providers_is_public(client):
    resp = await client.get(f"{PREFIX}/payments/providers")
    assert resp.status_code == 200
    assert sorted(resp.json()["data"]["providers"]) == ["manual", "stub"]
