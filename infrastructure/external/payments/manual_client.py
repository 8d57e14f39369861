"""
Manual / offline payments (cash, bank transfer confirmed by staff).

No remote calls are made. There is no authentic webhook for this provider, so
every webhook is rejected as unverifiable.
"""
from __future__ import annotations

import time
from typing import Any, Mapping

from application.dtos.payments import (
    CreateIntent,
    ManualConfirmation,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from core.settings import ManualSettings
from domain.common.timeutils import utcnow
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import InvalidWebhookSignatureException


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class ManualPaymentClient(BasePaymentClient):
    provider = "manual"

    def __init__(self, config: ManualSettings):
        super().__init__()
        self._config = config

    async def create_intent(self, req: CreateIntent) -> PaymentIntent:
        intent_id = f"MANUAL-{req.order_id}-{_epoch_ms()}"
        self._log("manual_intent_created", order_id=req.order_id, intent_id=intent_id)
        return PaymentIntent(
            intent_id=intent_id,
            status="PENDING",
            provider=self.provider,
            client_secret_or_params={"instructions": self._config.instructions},
            order_id=req.order_id,
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent:
        raise InvalidWebhookSignatureException(
            "Manual payments are confirmed by staff, not by webhook", provider=self.provider
        )

    async def confirm_manual(self, req: ManualConfirmation) -> dict[str, Any]:
        confirmation = {
            "confirmed_by": req.confirmed_by,
            "confirmed_at": utcnow().isoformat(),
            "details": req.details or {},
        }
        self._log("manual_payment_confirmed", order_id=req.order_id, confirmed_by=req.confirmed_by)
        return confirmation

    async def refund(self, req: RefundRequest) -> RefundResult:
        refund_id = f"MANUAL_REFUND-{req.order_id}-{_epoch_ms()}"
        self._log("manual_refund_recorded", order_id=req.order_id, refund_id=refund_id, amount=str(req.amount))
        return RefundResult(refund_id=refund_id, status="REFUNDED", provider=self.provider)
