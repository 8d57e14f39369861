"""
订单仓储实现 - 使用SQLAlchemy实现数据访问

订单行与状态历史通过独立查询加载，避免异步会话中的延迟加载。
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import Order, OrderLine, OrderStatus, OrderStatusHistory, OrderType
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderLineModel, OrderModel, OrderStatusHistoryModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(
        self,
        model: OrderModel,
        lines: Optional[List[OrderLineModel]] = None,
        history: Optional[List[OrderStatusHistoryModel]] = None,
    ) -> Order:
        return Order(
            id=model.id,
            order_number=model.order_number,
            type=OrderType(model.type),
            status=OrderStatus(model.status),
            total_amount=Decimal(str(model.total_amount)),
            currency=model.currency,
            business_id=model.business_id,
            customer_id=model.customer_id,
            purchasing_business_id=model.purchasing_business_id,
            employee_id=model.employee_id,
            table_id=model.table_id,
            reservation_date=model.reservation_date,
            notes=model.notes,
            payment_method=model.payment_method,
            payment_intent_id=model.payment_intent_id,
            lines=[
                OrderLine(id=l.id, variant_id=l.variant_id, quantity=l.quantity, price=Decimal(str(l.price)))
                for l in (lines or [])
            ],
            history=[self._history_to_entity(h) for h in (history or [])],
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _history_to_entity(model: OrderStatusHistoryModel) -> OrderStatusHistory:
        return OrderStatusHistory(
            id=model.id,
            status=OrderStatus(model.status),
            triggered_by=model.triggered_by,
            notes=model.notes,
            payment_transaction_id=model.payment_transaction_id,
            created_at=model.created_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        return OrderModel(
            order_number=entity.order_number,
            type=entity.type.value,
            status=entity.status.value,
            total_amount=entity.total_amount,
            currency=entity.currency,
            business_id=entity.business_id,
            customer_id=entity.customer_id,
            purchasing_business_id=entity.purchasing_business_id,
            employee_id=entity.employee_id,
            table_id=entity.table_id,
            reservation_date=entity.reservation_date,
            notes=entity.notes,
            payment_method=entity.payment_method,
            payment_intent_id=entity.payment_intent_id,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def _hydrate(self, model: OrderModel) -> Order:
        lines = await self.session.execute(
            select(OrderLineModel).where(OrderLineModel.order_id == model.id).order_by(OrderLineModel.id)
        )
        history = await self.session.execute(
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == model.id)
            .order_by(OrderStatusHistoryModel.id)
        )
        return self._to_entity(model, list(lines.scalars().all()), list(history.scalars().all()))

    async def create(self, order: Order) -> Order:
        model = self._to_model(order)
        self.session.add(model)
        await self.session.flush()
        for line in order.lines:
            self.session.add(
                OrderLineModel(
                    order_id=model.id,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    price=line.price,
                )
            )
        for entry in order.history:
            self.session.add(self._history_to_model(model.id, entry))
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "order_created",
            order_id=model.id,
            order_number=model.order_number,
            type=model.type,
            total_amount=str(model.total_amount),
        )
        return await self._hydrate(model)

    @staticmethod
    def _history_to_model(order_id: int, entry: OrderStatusHistory) -> OrderStatusHistoryModel:
        return OrderStatusHistoryModel(
            order_id=order_id,
            status=entry.status.value,
            triggered_by=entry.triggered_by,
            notes=entry.notes,
            payment_transaction_id=entry.payment_transaction_id,
            created_at=entry.created_at,
        )

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return await self._hydrate(model) if model else None

    async def update(self, order: Order) -> Order:
        model = await self.session.get(OrderModel, order.id)
        if not model:
            raise ValueError(f"Order with id {order.id} not found")
        model.status = order.status.value
        model.payment_method = order.payment_method
        model.payment_intent_id = order.payment_intent_id
        model.notes = order.notes
        model.updated_at = order.updated_at
        await self.session.flush()
        await self.session.refresh(model)
        logger.info("order_updated", order_id=model.id, status=model.status)
        return await self._hydrate(model)

    async def add_history(self, order_id: int, entry: OrderStatusHistory) -> OrderStatusHistory:
        model = self._history_to_model(order_id, entry)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        return self._history_to_entity(model)

    def _filtered(self, column, value, status: Optional[OrderStatus], order_type: Optional[OrderType]):
        query = select(OrderModel).where(column == value)
        if status:
            query = query.where(OrderModel.status == status.value)
        if order_type:
            query = query.where(OrderModel.type == order_type.value)
        return query

    async def _list(self, query, skip: int, limit: int) -> List[Order]:
        result = await self.session.execute(
            query.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(skip).limit(limit)
        )
        return [await self._hydrate(m) for m in result.scalars().all()]

    async def _count(self, query) -> int:
        result = await self.session.execute(select(func.count()).select_from(query.subquery()))
        return int(result.scalar_one())

    async def list_for_customer(
        self,
        customer_id: int,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[Order]:
        return await self._list(self._filtered(OrderModel.customer_id, customer_id, status, order_type), skip, limit)

    async def count_for_customer(
        self,
        customer_id: int,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> int:
        return await self._count(self._filtered(OrderModel.customer_id, customer_id, status, order_type))

    async def list_for_business(
        self,
        business_id: int,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> List[Order]:
        return await self._list(self._filtered(OrderModel.business_id, business_id, status, order_type), skip, limit)

    async def count_for_business(
        self,
        business_id: int,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> int:
        return await self._count(self._filtered(OrderModel.business_id, business_id, status, order_type))
