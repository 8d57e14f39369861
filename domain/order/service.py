"""
订单领域服务 - OrderEngine
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .entity import (
    Order,
    OrderLine,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    generate_order_number,
    initial_status_for,
)
from .events import OrderCreated, OrderStatusChanged
from .repository import OrderRepository
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientStockException,
    OrderNotFoundException,
    VariantNotFoundException,
)
from domain.common.timeutils import utcnow
from domain.inventory.entity import MovementType, ProductVariant
from domain.inventory.repository import ProductVariantRepository
from domain.inventory.service import StockLedger


@dataclass
class OrderDraft:
    """下单请求（已由应用层解析出卖方/买方商家）"""

    type: OrderType
    business_id: int
    currency: str
    lines: List[Tuple[int, int]] = field(default_factory=list)  # (variant_id, quantity)
    purchasing_business_id: Optional[int] = None
    employee_id: Optional[int] = None
    table_id: Optional[str] = None
    reservation_date: Optional[datetime] = None
    notes: Optional[str] = None


def _actor_as_user_id(triggered_by: str) -> Optional[int]:
    return int(triggered_by) if triggered_by.isdigit() else None


class OrderDomainService:
    """
    订单领域服务

    职责：
    1. 校验订单行、快照价格、计算总额
    2. 销售订单通过 StockLedger 做 FEFO 扣减
    3. 状态机转换 + 状态历史
    4. 取消销售订单时以 RETURN 新批次回补库存
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        variant_repository: ProductVariantRepository,
        stock_ledger: StockLedger,
        *,
        order_number_prefix: str = "ORD",
    ):
        self.order_repository = order_repository
        self.variant_repository = variant_repository
        self.stock_ledger = stock_ledger
        self.order_number_prefix = order_number_prefix
        self.events: List = []

    async def _load_lines(self, draft: OrderDraft) -> List[Tuple[ProductVariant, int]]:
        if not draft.lines:
            raise DomainValidationException("订单至少需要一行", field="lines")
        loaded = []
        for variant_id, quantity in draft.lines:
            if quantity <= 0:
                raise DomainValidationException(f"订单行数量必须大于0: {quantity}", field="lines")
            variant = await self.variant_repository.get_by_id(variant_id)
            if variant is None or variant.business_id != draft.business_id:
                raise VariantNotFoundException(variant_id)
            loaded.append((variant, quantity))
        return loaded

    @staticmethod
    def _check_stock(loaded: List[Tuple[ProductVariant, int]]) -> None:
        requested: Dict[int, int] = defaultdict(int)
        variants: Dict[int, ProductVariant] = {}
        for variant, quantity in loaded:
            requested[variant.id] += quantity
            variants[variant.id] = variant
        for variant_id, quantity in requested.items():
            variant = variants[variant_id]
            if not variant.has_stock_for(quantity):
                raise InsufficientStockException(variant_id, variant.quantity_in_stock, quantity)

    async def create_order(self, draft: OrderDraft, customer_id: int) -> Order:
        """
        创建订单（调用方保证在同一事务内）

        任一步骤失败都会让整个 Unit of Work 回滚：不会留下订单、订单行或库存流水。
        """
        loaded = await self._load_lines(draft)
        if draft.type == OrderType.SALE:
            self._check_stock(loaded)

        lines = [OrderLine(variant_id=v.id, quantity=q, price=v.price) for v, q in loaded]
        total = sum((line.subtotal for line in lines), Decimal("0"))
        status = initial_status_for(draft.type)
        now = utcnow()
        order = Order(
            id=None,
            order_number=generate_order_number(self.order_number_prefix),
            type=draft.type,
            status=status,
            total_amount=total,
            currency=draft.currency,
            business_id=draft.business_id,
            customer_id=customer_id,
            purchasing_business_id=draft.purchasing_business_id,
            employee_id=draft.employee_id,
            table_id=draft.table_id,
            reservation_date=draft.reservation_date,
            notes=draft.notes,
            lines=lines,
            history=[OrderStatusHistory(status=status, triggered_by=str(customer_id), notes="order created", created_at=now)],
            created_at=now,
            updated_at=now,
        )
        order = await self.order_repository.create(order)

        if order.type == OrderType.SALE:
            for line in order.lines:
                await self.stock_ledger.deplete_fefo(
                    line.variant_id,
                    line.quantity,
                    MovementType.SALE,
                    f"Sale - order #{order.order_number}",
                    performed_by=customer_id,
                    order_id=order.id,
                )

        self.events.append(
            OrderCreated(
                order_id=order.id,
                order_number=order.order_number,
                order_type=order.type.value,
                total_amount=str(order.total_amount),
                customer_id=customer_id,
                business_id=order.business_id,
            )
        )
        return await self.get_order(order.id)

    async def create_deposit_order(
        self,
        customer_id: int,
        platform_business_id: int,
        amount: Decimal,
        currency: str,
    ) -> Order:
        """钱包充值使用的内部销售订单（无订单行，不动库存）"""
        if amount <= 0:
            raise DomainValidationException(f"充值金额必须大于0: {amount}", field="amount")
        now = utcnow()
        order = Order(
            id=None,
            order_number=generate_order_number(self.order_number_prefix),
            type=OrderType.SALE,
            status=OrderStatus.PENDING_PAYMENT,
            total_amount=amount,
            currency=currency,
            business_id=platform_business_id,
            customer_id=customer_id,
            notes="wallet deposit",
            history=[
                OrderStatusHistory(
                    status=OrderStatus.PENDING_PAYMENT,
                    triggered_by=str(customer_id),
                    notes="wallet deposit order created",
                    created_at=now,
                )
            ],
            created_at=now,
            updated_at=now,
        )
        return await self.order_repository.create(order)

    async def get_order(self, order_id: int, *, for_update: bool = False) -> Order:
        order = await self.order_repository.get_by_id(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        triggered_by: str,
        notes: Optional[str] = None,
        related_transaction_id: Optional[int] = None,
    ) -> Order:
        """校验并执行状态转换，订单更新与历史追加在同一事务内"""
        order = await self.get_order(order_id, for_update=True)
        return await self.apply_transition(order, new_status, triggered_by, notes, related_transaction_id)

    async def apply_transition(
        self,
        order: Order,
        new_status: OrderStatus,
        triggered_by: str,
        notes: Optional[str] = None,
        related_transaction_id: Optional[int] = None,
    ) -> Order:
        previous = order.status
        entry = order.transition_to(new_status, triggered_by, notes, related_transaction_id)
        order = await self.order_repository.update(order)
        await self.order_repository.add_history(order.id, entry)

        if new_status == OrderStatus.CANCELLED and order.type == OrderType.SALE:
            await self._restock_cancelled(order, triggered_by)

        self.events.append(
            OrderStatusChanged(
                order_id=order.id,
                from_status=previous.value,
                to_status=new_status.value,
                triggered_by=triggered_by,
            )
        )
        return await self.get_order(order.id)

    async def _restock_cancelled(self, order: Order, triggered_by: str) -> None:
        performed_by = _actor_as_user_id(triggered_by)
        for line in order.lines:
            await self.stock_ledger.increment_as_new_lot(
                line.variant_id,
                line.quantity,
                MovementType.RETURN,
                f"Cancellation - order #{order.order_number}",
                performed_by=performed_by,
                order_id=order.id,
            )

    def get_domain_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
