"""
订单仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Order, OrderStatus, OrderStatusHistory, OrderType


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（连同订单行与初始状态历史）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        """获取完整订单（含订单行与状态历史）"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单标量字段（状态、支付方式等）"""
        pass

    @abstractmethod
    async def add_history(self, order_id: int, entry: OrderStatusHistory) -> OrderStatusHistory:
        pass

    @abstractmethod
    async def list_for_customer(
        self,
        customer_id: int,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_for_customer(
        self,
        customer_id: int,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> int:
        pass

    @abstractmethod
    async def list_for_business(
        self,
        business_id: int,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[Order]:
        pass

    @abstractmethod
    async def count_for_business(
        self,
        business_id: int,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> int:
        pass
