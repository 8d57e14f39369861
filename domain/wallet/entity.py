"""
钱包领域实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.timeutils import ensure_utc, utcnow


class WalletTransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    TRANSFER = "TRANSFER"


class WalletTransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Wallet:
    """
    钱包 - 每个用户一个

    业务规则：balance == sum(已完成流水的有符号金额)
    """

    id: Optional[int]
    user_id: int
    currency: str
    balance: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def can_cover(self, amount: Decimal) -> bool:
        return self.balance >= amount

    def apply(self, signed_amount: Decimal) -> Decimal:
        """应用一笔有符号金额并返回新余额"""
        self.balance += signed_amount
        self.updated_at = utcnow()
        return self.balance


@dataclass
class WalletTransaction:
    """钱包流水（只追加；仅 PENDING 流水可以完成或失败）"""

    id: Optional[int]
    wallet_id: int
    type: WalletTransactionType
    amount: Decimal
    status: WalletTransactionStatus
    description: Optional[str] = None
    related_order_id: Optional[int] = None
    related_payment_transaction_id: Optional[int] = None
    balance_after: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount == 0:
            raise DomainValidationException("流水金额不能为0", field="amount")
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def is_pending(self) -> bool:
        return self.status == WalletTransactionStatus.PENDING

    def complete(self, balance_after: Decimal, payment_transaction_id: Optional[int] = None) -> None:
        if not self.is_pending():
            raise DomainValidationException(f"流水状态为 {self.status.value}，无法完成", field="status")
        self.status = WalletTransactionStatus.COMPLETED
        self.balance_after = balance_after
        if payment_transaction_id is not None:
            self.related_payment_transaction_id = payment_transaction_id
        self.updated_at = utcnow()

    def fail(self) -> None:
        if not self.is_pending():
            raise DomainValidationException(f"流水状态为 {self.status.value}，无法标记失败", field="status")
        self.status = WalletTransactionStatus.FAILED
        self.updated_at = utcnow()
