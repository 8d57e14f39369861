"""测试辅助：桩支付渠道、事件记录器与目录数据写入"""
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from application.dtos.payments import (
    CreateIntent,
    ManualConfirmation,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from infrastructure.external.payments.exceptions import InvalidWebhookSignatureException
from infrastructure.models import (
    BusinessMemberModel,
    BusinessModel,
    ProductBatchModel,
    ProductVariantModel,
)


PLATFORM_BUSINESS_ID = 1


class StubProvider:
    """In-memory provider: intents are numbered, webhooks are plain JSON."""

    provider = "stub"

    def __init__(self):
        self.intents: List[CreateIntent] = []
        self.refunds: List[RefundRequest] = []
        self.refund_status = "REFUNDED"
        self.fail_create: Optional[Exception] = None

    async def create_intent(self, req: CreateIntent) -> PaymentIntent:
        if self.fail_create is not None:
            raise self.fail_create
        self.intents.append(req)
        return PaymentIntent(
            intent_id=f"pi_{req.order_id}_{len(self.intents)}",
            status="PENDING",
            provider=self.provider,
            client_secret_or_params={"client_secret": "cs_test"},
            order_id=req.order_id,
        )

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent:
        if headers.get("x-stub-signature") != "ok":
            raise InvalidWebhookSignatureException("bad signature", provider=self.provider)
        payload = json.loads(body)
        return WebhookEvent(
            event_id=payload["event_id"],
            event_type=payload.get("event_type", "stub.event"),
            provider=self.provider,
            provider_transaction_id=payload["provider_transaction_id"],
            status=payload["status"],
        )

    async def confirm_manual(self, req: ManualConfirmation) -> dict[str, Any]:
        raise NotImplementedError

    async def refund(self, req: RefundRequest) -> RefundResult:
        self.refunds.append(req)
        return RefundResult(
            refund_id=f"re_{req.order_id}_{len(self.refunds)}",
            status=self.refund_status,
            provider=self.provider,
        )

    async def aclose(self) -> None:
        return None


def webhook_body(provider_transaction_id: str, status: str, event_id: str = "evt_1") -> bytes:
    return json.dumps(
        {"event_id": event_id, "provider_transaction_id": provider_transaction_id, "status": status}
    ).encode()


STUB_HEADERS = {"x-stub-signature": "ok"}


class RecordingNotifier:
    def __init__(self):
        self.events: List[Any] = []

    async def publish(self, events: Sequence[Any]) -> None:
        self.events.extend(events)

    def names(self) -> List[str]:
        return [type(e).__name__ for e in self.events]


class Seeder:
    """直接写入商家/规格/批次等目录数据"""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def business(
        self,
        owner_id: int,
        *,
        business_id: Optional[int] = None,
        currency: str = "EUR",
        is_platform: bool = False,
        admins: Iterable[int] = (),
    ) -> int:
        async with self._session_factory() as session:
            model = BusinessModel(
                id=business_id,
                name=f"business-{owner_id}",
                owner_id=owner_id,
                currency_code=currency,
                is_platform=is_platform,
            )
            session.add(model)
            await session.flush()
            for user_id in admins:
                session.add(BusinessMemberModel(business_id=model.id, user_id=user_id, role="ADMIN"))
            await session.commit()
            return model.id

    async def variant(
        self,
        business_id: int,
        *,
        price: str = "10.00",
        batches: Sequence[Tuple[int, Optional[datetime]]] = ((10, None),),
    ) -> int:
        async with self._session_factory() as session:
            variant = ProductVariantModel(
                business_id=business_id,
                name="variant",
                price=Decimal(price),
                quantity_in_stock=sum(q for q, _ in batches),
            )
            session.add(variant)
            await session.flush()
            for quantity, expiration in batches:
                session.add(
                    ProductBatchModel(variant_id=variant.id, quantity=quantity, expiration_date=expiration)
                )
            await session.commit()
            return variant.id


