import pytest

from core.settings import ManualSettings, MobileMoneySettings, PaymentSettings, StripeSettings
from infrastructure.external.payments import PaymentProviderRegistry, build_registry
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    OperationNotSupportedException,
    RefundNotSupportedException,
    UnsupportedProviderException,
)
from infrastructure.external.payments.manual_client import ManualPaymentClient


class _MapClient(BasePaymentClient):
    provider = "stripe"


def test_provider_status_mapping():
    c = _MapClient()
    assert c._map_status("succeeded") == "SUCCESS"
    assert c._map_status("processing") == "PENDING"
    assert c._map_status("payment_intent.payment_failed") == "FAILED"
    assert c._map_status("something.new") == "PENDING"
    assert c._map_status("succeeded", table="stripe_refund") == "REFUNDED"


@pytest.mark.asyncio
async def test_base_client_reports_missing_capabilities():
    c = _MapClient()
    with pytest.raises(RefundNotSupportedException):
        await c.refund(None)
    with pytest.raises(OperationNotSupportedException):
        c.parse_webhook({}, b"")


def test_unknown_provider_rejected():
    registry = PaymentProviderRegistry({"manual": ManualPaymentClient(ManualSettings())})
    assert registry.get("MANUAL").provider == "manual"
    with pytest.raises(UnsupportedProviderException):
        registry.get("paypal")


def test_build_registry_skips_unconfigured_providers():
    cfg = PaymentSettings(
        enabled_providers=["stripe", "mobile_money", "manual"],
        stripe=StripeSettings(secret_key=None),
        mobile_money=MobileMoneySettings(client_id="cid"),
        manual=ManualSettings(enabled=True),
    )
    assert list(build_registry(cfg).ids()) == ["manual"]


def test_build_registry_with_stripe_configured():
    pytest.importorskip("stripe")
    cfg = PaymentSettings(
        enabled_providers=["stripe"],
        stripe=StripeSettings(secret_key="sk_test", webhook_secret="whsec"),
    )
    registry = build_registry(cfg)
    assert list(registry.ids()) == ["stripe"]
    with pytest.raises(UnsupportedProviderException):
        registry.get("manual")
