"""
支付流水仓储接口
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from .entity import PaymentTransaction, TransactionKind, TransactionStatus


@dataclass(frozen=True)
class TransactionQuery:
    """流水查询条件（全部可选）"""
    status: Optional[TransactionStatus] = None
    kind: Optional[TransactionKind] = None
    provider: Optional[str] = None
    order_id: Optional[int] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


class PaymentTransactionRepository(ABC):
    """支付流水仓储抽象接口"""

    @abstractmethod
    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        pass

    @abstractmethod
    async def update(self, transaction: PaymentTransaction) -> PaymentTransaction:
        """只更新状态、元数据与幂等键"""
        pass

    @abstractmethod
    async def get_by_provider_ref(
        self, provider: str, provider_transaction_id: str, *, for_update: bool = False
    ) -> Optional[PaymentTransaction]:
        """根据渠道交易号获取流水（webhook 对账入口）"""
        pass

    @abstractmethod
    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[PaymentTransaction]:
        pass

    @abstractmethod
    async def latest_pending_manual(
        self, order_id: int, *, for_update: bool = False
    ) -> Optional[PaymentTransaction]:
        """订单最近一条待确认的人工支付流水"""
        pass

    @abstractmethod
    async def last_successful_payment(self, order_id: int) -> Optional[PaymentTransaction]:
        pass

    @abstractmethod
    async def sum_refunded(self, order_id: int) -> Decimal:
        """已退款（含退款处理中）金额合计"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[PaymentTransaction]:
        pass

    @abstractmethod
    async def list_for_customer(
        self, customer_id: int, query: TransactionQuery, skip: int = 0, limit: int = 100
    ) -> List[PaymentTransaction]:
        """顾客名下订单的流水，最新在前"""
        pass

    @abstractmethod
    async def count_for_customer(self, customer_id: int, query: TransactionQuery) -> int:
        pass

    @abstractmethod
    async def list_for_business(
        self, business_id: int, query: TransactionQuery, skip: int = 0, limit: int = 100
    ) -> List[PaymentTransaction]:
        """商家（卖方）订单的流水，最新在前"""
        pass

    @abstractmethod
    async def count_for_business(self, business_id: int, query: TransactionQuery) -> int:
        pass
