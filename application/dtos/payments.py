"""
Payment DTOs (Pydantic v2) used at application boundaries.

The first group is exchanged with provider adapters; the second group is the
HTTP-facing request/response shapes of the payment endpoints.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from application.dto import DTOBase


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


# ---------------------------------------------------------------------------
# Provider boundary
# ---------------------------------------------------------------------------


class CreateIntent(BaseModel):
    order_id: int
    order_number: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    idempotency_key: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return _validate_currency(v)


class PaymentIntent(BaseModel):
    intent_id: str
    status: str
    provider: str
    client_secret_or_params: Optional[dict[str, Any]] = None
    order_id: Optional[int] = None
    raw: Optional[dict[str, Any]] = None


class ManualConfirmation(BaseModel):
    order_id: int
    provider_transaction_id: str
    confirmed_by: int
    details: Optional[dict[str, Any]] = None


class RefundRequest(BaseModel):
    order_id: int
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    provider_transaction_id: str  # the settled payment being refunded
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_currency_refund(cls, v: str) -> str:
        return _validate_currency(v)


class RefundResult(BaseModel):
    refund_id: str
    status: str
    provider: str
    raw: Optional[dict[str, Any]] = None


class WebhookEvent(BaseModel):
    """Normalized, signature-verified provider notification."""

    event_id: str
    event_type: str
    provider: str
    provider_transaction_id: str
    status: str
    order_id: Optional[int] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)


# ---------------------------------------------------------------------------
# HTTP boundary
# ---------------------------------------------------------------------------


class PayOrderRequest(BaseModel):
    provider: str = Field(..., min_length=1, max_length=50)
    metadata: Optional[dict[str, Any]] = None


class PaymentIntentResult(DTOBase):
    order_id: int
    transaction_id: int
    provider: str
    intent_id: str
    status: str
    amount: Decimal
    currency: str
    client_secret_or_params: Optional[dict[str, Any]] = None


class ConfirmManualPaymentRequest(BaseModel):
    details: Optional[dict[str, Any]] = None


class RefundOrderRequest(BaseModel):
    amount: Optional[condecimal(gt=0, max_digits=15, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class WebhookOutcome(DTOBase):
    processed: bool
    duplicate: bool = False
    provider: str
    order_id: Optional[int] = None
    transaction_status: Optional[str] = None
    order_status: Optional[str] = None
    error: Optional[str] = None


class PaymentTransactionResponse(DTOBase):
    id: int
    order_id: int
    provider: str
    provider_transaction_id: str
    kind: str
    amount: Decimal
    currency: str
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, tx: Any) -> "PaymentTransactionResponse":
        return cls(
            id=tx.id,
            order_id=tx.order_id,
            provider=tx.provider,
            provider_transaction_id=tx.provider_transaction_id,
            kind=tx.kind.value,
            amount=tx.amount,
            currency=tx.currency,
            status=tx.status.value,
            metadata=tx.metadata or {},
            created_at=tx.created_at,
            updated_at=tx.updated_at,
        )
