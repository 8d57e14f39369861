"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- The SDK is synchronous; calls run in a worker thread via anyio so the event
  loop is never blocked. The API key is passed per request instead of being
  set on the ``stripe`` module.
- Idempotency keys are supplied through the ``idempotency_key`` kwarg.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header.
"""
from __future__ import annotations

from decimal import Decimal
from functools import partial
from typing import Any, Mapping, Optional

import anyio
import stripe

from application.dtos.payments import (
    CreateIntent,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from core.settings import StripeSettings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    InvalidWebhookSignatureException,
    PaymentProviderError,
    ProviderUnavailableException,
)


ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "MGA", "XOF", "XAF"}


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(
        self,
        config: StripeSettings,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        webhook_tolerance: int = 300,
    ):
        super().__init__(timeouts=timeouts, retry=retry)
        if not config.secret_key:
            raise ValueError("PAYMENT__STRIPE__SECRET_KEY not configured")
        self._config = config
        self._webhook_tolerance = webhook_tolerance

    @staticmethod
    def _exponent(currency: str) -> int:
        return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2

    @classmethod
    def _to_minor(cls, amount: Decimal, currency: str) -> int:
        # Stripe expects amounts in the smallest currency unit
        return int((amount * (Decimal(10) ** cls._exponent(currency))).to_integral_value())

    @classmethod
    def _from_minor(cls, amount: Optional[int], currency: Optional[str]) -> Optional[Decimal]:
        if amount is None:
            return None
        return Decimal(amount) / (Decimal(10) ** cls._exponent(currency or ""))

    def _request_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"api_key": self._config.secret_key}
        if self._config.api_version:
            options["stripe_version"] = self._config.api_version
        return options

    async def _call(self, fn, **kwargs):
        """Run a blocking SDK call once; network failures become ProviderUnavailable."""
        try:
            return await anyio.to_thread.run_sync(partial(fn, **kwargs, **self._request_options()))
        except stripe.APIConnectionError as exc:
            self._log("stripe_unreachable", error=str(exc))
            raise ProviderUnavailableException(
                "Stripe is unreachable", provider=self.provider, details={"error": type(exc).__name__}
            ) from exc
        except stripe.StripeError as exc:
            self._log("stripe_rejected", error=str(exc), code=getattr(exc, "code", None))
            raise PaymentProviderError(
                str(exc.user_message or exc), provider=self.provider, provider_code=getattr(exc, "code", None)
            ) from exc

    async def create_intent(self, req: CreateIntent) -> PaymentIntent:
        metadata = {str(k): str(v) for k, v in (req.metadata or {}).items()}
        metadata.setdefault("order_id", str(req.order_id))
        metadata.setdefault("order_number", req.order_number)

        pi = await self._call(
            stripe.PaymentIntent.create,
            amount=self._to_minor(req.amount, req.currency),
            currency=req.currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=req.idempotency_key,
        )
        self._log("stripe_intent_created", order_id=req.order_id, intent_id=pi["id"])
        return PaymentIntent(
            intent_id=str(pi["id"]),
            status=self._map_status(str(pi["status"])),
            provider=self.provider,
            client_secret_or_params={"client_secret": pi.get("client_secret")},
            order_id=req.order_id,
        )

    async def refund(self, req: RefundRequest) -> RefundResult:
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=req.provider_transaction_id,
            amount=self._to_minor(req.amount, req.currency),
            metadata={"order_id": str(req.order_id), "reason": req.reason or ""},
            idempotency_key=req.idempotency_key,
        )
        self._log("stripe_refund_created", order_id=req.order_id, refund_id=refund["id"])
        return RefundResult(
            refund_id=str(refund["id"]),
            status=self._map_status(str(refund.get("status", "")), table="stripe_refund"),
            provider=self.provider,
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent:
        secret = self._config.webhook_secret
        if not secret:
            raise InvalidWebhookSignatureException("Missing PAYMENT__STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = self._header(headers, "Stripe-Signature")
        if not sig:
            raise InvalidWebhookSignatureException("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=self._webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise InvalidWebhookSignatureException(str(exc), provider=self.provider) from exc

        event_type = str(event["type"])
        obj = event["data"]["object"]
        # charge.* events reference the PaymentIntent the transaction was recorded under
        if obj.get("object") == "charge":
            reference = obj.get("payment_intent")
        else:
            reference = obj.get("id")
        if not reference:
            raise PaymentProviderError("Webhook event carries no PaymentIntent reference", provider=self.provider)

        metadata = dict(obj.get("metadata") or {})
        order_id = metadata.get("order_id")
        currency = obj.get("currency")
        amount = obj.get("amount_refunded") if event_type == "charge.refunded" else obj.get("amount")
        return WebhookEvent(
            event_id=str(event["id"]),
            event_type=event_type,
            provider=self.provider,
            provider_transaction_id=str(reference),
            status=self._map_status(event_type),
            order_id=int(order_id) if order_id and str(order_id).isdigit() else None,
            amount=self._from_minor(amount, currency),
            currency=currency.upper() if currency else None,
            metadata=metadata,
        )
