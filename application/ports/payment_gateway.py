"""
Payment provider port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters and
registers them by provider id.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateIntent,
    ManualConfirmation,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)


@runtime_checkable
class PaymentProvider(Protocol):
    """Capability set every payment provider exposes.

    Implementations must verify webhook authenticity inside ``parse_webhook``
    and raise ``InvalidWebhookSignatureException`` before trusting any payload
    field. Transport failures surface as ``ProviderUnavailableException``.
    """

    provider: str

    async def create_intent(self, req: CreateIntent) -> PaymentIntent: ...

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent: ...

    async def confirm_manual(self, req: ManualConfirmation) -> dict[str, Any]: ...

    async def refund(self, req: RefundRequest) -> RefundResult: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class ProviderLookup(Protocol):
    """Read-only provider registry."""

    def get(self, provider_id: str) -> PaymentProvider: ...

    def ids(self) -> Iterable[str]: ...
