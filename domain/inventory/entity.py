"""
库存领域实体 - 商品规格（缓存库存）、批次、库存流水
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.timeutils import ensure_utc


class MovementType(str, Enum):
    """库存流水类型"""
    INITIAL_STOCK = "INITIAL_STOCK"
    SALE = "SALE"
    PURCHASE_ENTRY = "PURCHASE_ENTRY"
    ADJUSTMENT = "ADJUSTMENT"
    LOSS = "LOSS"
    RETURN = "RETURN"
    EXPIRATION = "EXPIRATION"


# 允许手工调整时使用的流水类型
MANUAL_MOVEMENT_TYPES = frozenset({MovementType.ADJUSTMENT, MovementType.LOSS, MovementType.RETURN})


@dataclass
class ProductVariant:
    """
    商品规格 - quantity_in_stock 是批次数量之和的物化缓存

    业务规则：只能通过 StockLedger 修改库存
    """

    id: Optional[int]
    business_id: int
    name: str
    price: Decimal
    quantity_in_stock: int = 0
    purchase_price: Optional[Decimal] = None
    sku: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def has_stock_for(self, quantity: int) -> bool:
        return self.quantity_in_stock >= quantity

    def decrease_stock(self, quantity: int) -> None:
        if quantity > self.quantity_in_stock:
            raise DomainValidationException(
                f"库存缓存不能为负: {self.quantity_in_stock} - {quantity}",
                field="quantity_in_stock",
            )
        self.quantity_in_stock -= quantity

    def increase_stock(self, quantity: int) -> None:
        self.quantity_in_stock += quantity


@dataclass
class ProductBatch:
    """
    批次（Lot）- 同一时间入库、共享过期日期的一批库存

    业务规则：
    1. 数量永不为负
    2. 数量归零后保留用于审计
    """

    id: Optional[int]
    variant_id: int
    quantity: int
    expiration_date: Optional[datetime] = None
    received_at: Optional[datetime] = None

    def __post_init__(self):
        if self.quantity < 0:
            raise DomainValidationException(f"批次数量不能为负: {self.quantity}", field="quantity")
        self.expiration_date = ensure_utc(self.expiration_date)
        self.received_at = ensure_utc(self.received_at)

    def take(self, quantity: int) -> int:
        """从批次中取出至多 quantity 件，返回实际取出数量"""
        taken = min(self.quantity, quantity)
        self.quantity -= taken
        return taken

    def write_off(self) -> int:
        """整批报废，返回报废数量"""
        lost = self.quantity
        self.quantity = 0
        return lost

    def is_expired(self, now: datetime) -> bool:
        return self.expiration_date is not None and self.expiration_date <= now


@dataclass
class StockMovement:
    """库存流水 - 只追加、不可修改的审计记录"""

    id: Optional[int]
    variant_id: int
    business_id: int
    performed_by_id: Optional[int]
    type: MovementType
    quantity_change: int
    new_quantity: int
    reason: Optional[str] = None
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.quantity_change == 0:
            raise DomainValidationException("库存变动数量不能为0", field="quantity_change")
        self.created_at = ensure_utc(self.created_at)
