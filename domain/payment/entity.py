"""
支付流水实体 - 对账的唯一依据
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from domain.common.exceptions import DomainValidationException
from domain.common.timeutils import ensure_utc, utcnow


class TransactionStatus(str, Enum):
    """支付流水状态"""
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PENDING_REFUND = "PENDING_REFUND"


class TransactionKind(str, Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


TERMINAL_STATUSES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.SUCCESS,
    TransactionStatus.FAILED,
    TransactionStatus.REFUNDED,
})

# PENDING 可以到达任意终态；SUCCESS -> REFUNDED 是唯一的终态间转换
_RECONCILE_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: TERMINAL_STATUSES,
    TransactionStatus.PENDING_REFUND: frozenset({TransactionStatus.REFUNDED, TransactionStatus.FAILED}),
    TransactionStatus.SUCCESS: frozenset({TransactionStatus.REFUNDED}),
}


@dataclass
class PaymentTransaction:
    """
    支付流水

    业务规则：
    1. (provider, provider_transaction_id) 唯一
    2. 金额必须大于0
    3. 同一终态只会被应用一次（webhook 幂等的基础）
    """

    id: Optional[int]
    order_id: int
    provider: str
    provider_transaction_id: str
    amount: Decimal
    currency: str
    status: TransactionStatus
    kind: TransactionKind = TransactionKind.PAYMENT
    idempotency_key: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(f"支付金额必须大于0: {self.amount}", field="amount")
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"无效的货币代码: {self.currency}", field="currency")
        if self.metadata is None:
            self.metadata = {}
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def accepts(self, target: TransactionStatus) -> bool:
        """目标状态是否为一次“首次到达”的合法推进"""
        return target in _RECONCILE_TRANSITIONS.get(self.status, frozenset())

    def apply_status(self, target: TransactionStatus, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        应用渠道回调状态

        Returns:
            True 表示状态发生变化；重复投递或过期状态返回 False 且不修改任何字段
        """
        if not self.accepts(target):
            return False
        self.status = target
        if payload:
            self.metadata = {**self.metadata, "last_event": payload}
        self.updated_at = utcnow()
        return True

    def mark_confirmed(self, confirmation: Dict[str, Any], idempotency_key: Optional[str]) -> None:
        """人工确认收款"""
        if self.status != TransactionStatus.PENDING:
            raise DomainValidationException(f"无法从状态 {self.status.value} 确认收款", field="status")
        self.status = TransactionStatus.SUCCESS
        self.metadata = {**self.metadata, "confirmation": confirmation}
        self.idempotency_key = idempotency_key
        self.updated_at = utcnow()
