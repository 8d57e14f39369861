"""
钱包 DTO
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.types import condecimal

from application.dto import DTOBase
from domain.wallet.entity import Wallet, WalletTransaction


Amount = condecimal(gt=0, max_digits=15, decimal_places=2)


class DepositRequest(BaseModel):
    amount: Amount  # type: ignore[valid-type]
    provider: str = Field(..., min_length=1, max_length=50)
    metadata: Optional[dict[str, Any]] = None


class WithdrawalRequest(BaseModel):
    amount: Amount  # type: ignore[valid-type]
    method: str = Field(..., min_length=1, max_length=50, description="提现方式，如 mobile_money / bank_transfer")
    destination: str = Field(..., min_length=1, max_length=200, description="收款账户")


class TransferRequest(BaseModel):
    recipient_user_id: int = Field(..., ge=1)
    amount: Amount  # type: ignore[valid-type]
    description: Optional[str] = Field(default=None, max_length=255)


class WalletResponse(DTOBase):
    id: int
    user_id: int
    currency: str
    balance: Decimal
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, wallet: Wallet) -> "WalletResponse":
        return cls(
            id=wallet.id,
            user_id=wallet.user_id,
            currency=wallet.currency,
            balance=wallet.balance,
            created_at=wallet.created_at,
            updated_at=wallet.updated_at,
        )


class WalletTransactionResponse(DTOBase):
    id: int
    wallet_id: int
    type: str
    amount: Decimal
    status: str
    description: Optional[str] = None
    related_order_id: Optional[int] = None
    related_payment_transaction_id: Optional[int] = None
    balance_after: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, tx: WalletTransaction) -> "WalletTransactionResponse":
        return cls(
            id=tx.id,
            wallet_id=tx.wallet_id,
            type=tx.type.value,
            amount=tx.amount,
            status=tx.status.value,
            description=tx.description,
            related_order_id=tx.related_order_id,
            related_payment_transaction_id=tx.related_payment_transaction_id,
            balance_after=tx.balance_after,
            created_at=tx.created_at,
        )


class DepositResponse(DTOBase):
    wallet_transaction_id: int
    order_id: int
    transaction_id: int
    provider: str
    intent_id: str
    status: str
    amount: Decimal
    currency: str
    client_secret_or_params: Optional[dict[str, Any]] = None
