"""
Mobile-money (MVola-style merchant pay) adapter over httpx.

- OAuth2 client-credentials token, cached until 60 seconds before expiry.
  Token fetches are idempotent and retried on transport errors.
- Payment initiation and refunds are single attempts: a retry could debit
  the payer twice.
- Webhooks carry an HMAC-SHA256 of the raw body in ``X-Signature``.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import (
    CreateIntent,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from core.settings import MobileMoneySettings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    InvalidWebhookSignatureException,
    PaymentProviderError,
)
from domain.common.exceptions import DomainValidationException


TOKEN_REFRESH_MARGIN_SECONDS = 60


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class MobileMoneyClient(BasePaymentClient):
    provider = "mobile_money"

    def __init__(
        self,
        config: MobileMoneySettings,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeouts=timeouts, retry=retry, transport=transport)
        missing = [
            name
            for name in ("client_id", "client_secret", "merchant_msisdn", "webhook_secret")
            if not getattr(config, name)
        ]
        if missing:
            raise ValueError(f"mobile money settings incomplete: {', '.join(missing)}")
        self._config = config
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    # --- OAuth -------------------------------------------------------------
    async def _fetch_token(self) -> dict[str, Any]:
        basic = base64.b64encode(f"{self._config.client_id}:{self._config.client_secret}".encode()).decode()
        async with self.client() as http:
            resp = await http.post(
                self._config.auth_url,
                data={"grant_type": "client_credentials", "scope": "EXT_INT_MVOLA_SCOPE"},
                headers={"Authorization": f"Basic {basic}", "Cache-Control": "no-cache"},
            )
        if resp.status_code >= 400:
            raise PaymentProviderError(
                "Mobile money authentication failed",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        return resp.json()

    async def _get_access_token(self) -> str:
        if self._access_token and self._token_expires_at > time.time() + TOKEN_REFRESH_MARGIN_SECONDS:
            return self._access_token
        data = await self._retry(self._fetch_token)
        self._access_token = data["access_token"]
        self._token_expires_at = time.time() + float(data.get("expires_in", 3600))
        self._log("mobile_money_token_refreshed", expires_in=data.get("expires_in"))
        return self._access_token

    def _headers(self, token: str, correlation_id: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token}",
            "Version": "1.0",
            "X-CorrelationID": correlation_id,
            "UserLanguage": "FR",
            "UserAccountIdentifier": f"msisdn;{self._config.merchant_msisdn}",
            "partnerName": self._config.partner_name,
            "Cache-Control": "no-cache",
        }
        if self._config.callback_url:
            headers["X-Callback-URL"] = self._config.callback_url
        return headers

    @staticmethod
    def _whole_amount(amount: Decimal) -> str:
        # The API takes amounts without decimals
        return str(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def _request_date() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + "000Z"

    async def _post(self, url: str, payload: dict[str, Any], correlation_id: str) -> dict[str, Any]:
        token = await self._get_access_token()

        async def send() -> httpx.Response:
            async with self.client() as http:
                return await http.post(url, json=payload, headers=self._headers(token, correlation_id))

        resp = await self._once(send)
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            raise PaymentProviderError(
                body.get("errorDescription") or body.get("description") or "Mobile money request rejected",
                provider=self.provider,
                provider_code=str(body.get("errorCode") or resp.status_code),
            )
        return resp.json()

    # --- Provider capabilities ----------------------------------------------
    async def create_intent(self, req: CreateIntent) -> PaymentIntent:
        phone = (req.metadata or {}).get("phone_number")
        if not phone:
            raise DomainValidationException(
                "phone_number is required for mobile money payments", field="metadata.phone_number"
            )
        correlation_id = req.idempotency_key or str(uuid.uuid4())
        extra = [
            {"key": str(k), "value": str(v)}
            for k, v in (req.metadata or {}).items()
            if k != "phone_number"
        ]
        payload = {
            "amount": self._whole_amount(req.amount),
            "currency": self._config.currency,
            "descriptionText": f"Payment order #{req.order_number}",
            "requestingOrganisationTransactionReference": str(req.order_id),
            "requestDate": self._request_date(),
            "originalTransactionReference": "",
            "debitParty": [{"key": "msisdn", "value": str(phone)}],
            "creditParty": [{"key": "msisdn", "value": self._config.merchant_msisdn}],
            "metadata": [
                {"key": "orderId", "value": str(req.order_id)},
                {"key": "partnerName", "value": self._config.partner_name},
                *extra,
            ],
        }
        data = await self._post(
            f"{self._config.base_url.rstrip('/')}/mvola/mm/transactions/type/merchantpay/1.0.0/",
            payload,
            correlation_id,
        )
        server_id = data.get("serverCorrelationId")
        if not server_id:
            raise PaymentProviderError("Missing serverCorrelationId in response", provider=self.provider)
        status = self._map_status(str(data.get("status", "")))
        self._log("mobile_money_intent_created", order_id=req.order_id, intent_id=server_id, status=status)
        return PaymentIntent(
            intent_id=str(server_id),
            status=status,
            provider=self.provider,
            client_secret_or_params={"server_correlation_id": server_id, "notification_method": "callback"},
            order_id=req.order_id,
        )

    async def refund(self, req: RefundRequest) -> RefundResult:
        phone = (req.metadata or {}).get("phone_number")
        if not phone:
            raise DomainValidationException(
                "phone_number of the original payer is required for mobile money refunds",
                field="metadata.phone_number",
            )
        correlation_id = req.idempotency_key or str(uuid.uuid4())
        payload = {
            "amount": self._whole_amount(req.amount),
            "currency": self._config.currency,
            "descriptionText": f"Refund order #{req.order_id}",
            "requestDate": self._request_date(),
            "debitParty": [{"key": "msisdn", "value": self._config.merchant_msisdn}],
            "creditParty": [{"key": "msisdn", "value": str(phone)}],
            "originalTransactionReference": req.provider_transaction_id,
        }
        data = await self._post(
            f"{self._config.base_url.rstrip('/')}/mvola/mm/transactions/type/credit/1.0.0/",
            payload,
            correlation_id,
        )
        refund_id = data.get("serverCorrelationId") or correlation_id
        status = "REFUNDED" if data.get("status") == "completed" else "PENDING_REFUND"
        self._log("mobile_money_refund_created", order_id=req.order_id, refund_id=refund_id, status=status)
        return RefundResult(refund_id=str(refund_id), status=status, provider=self.provider)

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent:
        signature = self._header(headers, "X-Signature")
        if not signature:
            raise InvalidWebhookSignatureException("Missing X-Signature header", provider=self.provider)
        expected = sign_payload(self._config.webhook_secret, body)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise InvalidWebhookSignatureException("Signature mismatch", provider=self.provider)

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise PaymentProviderError("Webhook body is not JSON", provider=self.provider) from exc

        metadata = {
            str(item.get("key")): item.get("value")
            for item in payload.get("metadata") or []
            if isinstance(item, dict)
        }
        reference = payload.get("serverCorrelationId")
        raw_status = str(payload.get("transactionStatus") or "")
        if not reference or not raw_status:
            raise PaymentProviderError(
                "Webhook payload lacks serverCorrelationId or transactionStatus", provider=self.provider
            )
        order_id = metadata.get("orderId")
        amount = payload.get("amount")
        return WebhookEvent(
            event_id=str(payload.get("transactionReference") or f"{reference}:{raw_status}"),
            event_type=f"mobile_money.transaction.{raw_status.lower()}",
            provider=self.provider,
            provider_transaction_id=str(reference),
            status=self._map_status(raw_status.lower()),
            order_id=int(order_id) if order_id and str(order_id).isdigit() else None,
            amount=Decimal(str(amount)) if amount not in (None, "") else None,
            currency=payload.get("currency"),
            metadata=metadata,
        )
