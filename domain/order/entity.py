"""
订单领域实体 - 订单聚合根
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from domain.common.exceptions import DomainValidationException, IllegalTransitionException
from domain.common.timeutils import ensure_utc, utcnow


SYSTEM_ACTOR = "system"


class OrderType(str, Enum):
    SALE = "SALE"
    PURCHASE = "PURCHASE"
    RESERVATION = "RESERVATION"


class OrderStatus(str, Enum):
    PENDING = "PENDING"                      # 预订待确认
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAID = "PAID"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.PENDING_PAYMENT, OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({
        OrderStatus.PROCESSING,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.PARTIALLY_REFUNDED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.PARTIALLY_REFUNDED: frozenset({
        OrderStatus.PARTIALLY_REFUNDED,
        OrderStatus.REFUNDED,
        OrderStatus.COMPLETED,
    }),
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.REJECTED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.CANCELLED, OrderStatus.REJECTED, OrderStatus.COMPLETED}),
}

REFUNDABLE_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PARTIALLY_REFUNDED})

# 只能由支付网关（回调、人工确认收款、退款）推进的状态
PAYMENT_OWNED_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.PAYMENT_FAILED,
    OrderStatus.PARTIALLY_REFUNDED,
    OrderStatus.REFUNDED,
})


def initial_status_for(order_type: OrderType) -> OrderStatus:
    if order_type == OrderType.RESERVATION:
        return OrderStatus.PENDING
    return OrderStatus.PENDING_PAYMENT


def generate_order_number(prefix: str = "ORD") -> str:
    """人类可读订单号：前缀-毫秒时间戳-随机后缀"""
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6].upper()}"


@dataclass
class OrderLine:
    """订单行 - 价格在下单时快照"""

    variant_id: int
    quantity: int
    price: Decimal
    id: Optional[int] = None

    def __post_init__(self):
        if self.quantity <= 0:
            raise DomainValidationException(f"订单行数量必须大于0: {self.quantity}", field="quantity")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class OrderStatusHistory:
    """状态历史（只追加）"""

    status: OrderStatus
    triggered_by: str
    notes: Optional[str] = None
    payment_transaction_id: Optional[int] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)


@dataclass
class Order:
    """
    订单聚合根

    业务规则：
    1. 状态转换必须遵循 ALLOWED_TRANSITIONS
    2. 每次转换都追加一条状态历史
    3. 订单行价格创建后不再从目录读取
    """

    id: Optional[int]
    order_number: str
    type: OrderType
    status: OrderStatus
    total_amount: Decimal
    currency: str
    business_id: int
    customer_id: int
    purchasing_business_id: Optional[int] = None
    employee_id: Optional[int] = None
    table_id: Optional[str] = None
    reservation_date: Optional[datetime] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    payment_intent_id: Optional[str] = None
    lines: List[OrderLine] = field(default_factory=list)
    history: List[OrderStatusHistory] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.total_amount < 0:
            raise DomainValidationException(f"订单金额不能为负: {self.total_amount}", field="total_amount")
        self.reservation_date = ensure_utc(self.reservation_date)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in ALLOWED_TRANSITIONS.get(self.status, frozenset())

    def transition_to(
        self,
        target: OrderStatus,
        triggered_by: str,
        notes: Optional[str] = None,
        payment_transaction_id: Optional[int] = None,
    ) -> OrderStatusHistory:
        """执行状态转换并返回需要追加的历史记录"""
        if not self.can_transition_to(target):
            raise IllegalTransitionException(self.status.value, target.value)
        self.status = target
        self.updated_at = utcnow()
        entry = OrderStatusHistory(
            status=target,
            triggered_by=triggered_by,
            notes=notes,
            payment_transaction_id=payment_transaction_id,
            created_at=self.updated_at,
        )
        self.history.append(entry)
        return entry

    def is_payable(self) -> bool:
        return self.status == OrderStatus.PENDING_PAYMENT

    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_STATUSES

    def stamp_payment(self, method: str, intent_id: str) -> None:
        self.payment_method = method
        self.payment_intent_id = intent_id
        self.updated_at = utcnow()
