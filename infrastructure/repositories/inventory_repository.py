"""
库存仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.inventory.entity import MovementType, ProductBatch, ProductVariant, StockMovement
from domain.inventory.repository import (
    ProductBatchRepository,
    ProductVariantRepository,
    StockMovementRepository,
)
from infrastructure.models.inventory import (
    ProductBatchModel,
    ProductVariantModel,
    StockMovementModel,
)
from core.logging_config import get_logger


logger = get_logger(__name__)


def _decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


class SQLAlchemyProductVariantRepository(ProductVariantRepository):
    """商品规格仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductVariantModel) -> ProductVariant:
        return ProductVariant(
            id=model.id,
            business_id=model.business_id,
            name=model.name,
            price=_decimal(model.price),
            quantity_in_stock=model.quantity_in_stock,
            purchase_price=_decimal(model.purchase_price),
            sku=model.sku,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, variant_id: int, *, for_update: bool = False) -> Optional[ProductVariant]:
        query = select(ProductVariantModel).where(ProductVariantModel.id == variant_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, variant: ProductVariant) -> ProductVariant:
        model = await self.session.get(ProductVariantModel, variant.id)
        if not model:
            raise ValueError(f"ProductVariant with id {variant.id} not found")
        model.quantity_in_stock = variant.quantity_in_stock
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)

    async def list_by_business(self, business_id: int, skip: int = 0, limit: int = 100) -> List[ProductVariant]:
        result = await self.session.execute(
            select(ProductVariantModel)
            .where(ProductVariantModel.business_id == business_id)
            .order_by(ProductVariantModel.name.asc(), ProductVariantModel.id.asc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_business(self, business_id: int) -> int:
        result = await self.session.execute(
            select(func.count(ProductVariantModel.id)).where(ProductVariantModel.business_id == business_id)
        )
        return int(result.scalar_one())


class SQLAlchemyProductBatchRepository(ProductBatchRepository):
    """批次仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ProductBatchModel) -> ProductBatch:
        return ProductBatch(
            id=model.id,
            variant_id=model.variant_id,
            quantity=model.quantity,
            expiration_date=model.expiration_date,
            received_at=model.received_at,
        )

    def _to_model(self, entity: ProductBatch) -> ProductBatchModel:
        return ProductBatchModel(
            id=entity.id,
            variant_id=entity.variant_id,
            quantity=entity.quantity,
            expiration_date=entity.expiration_date,
            received_at=entity.received_at,
        )

    @staticmethod
    def _fefo_order():
        # 无过期时间的批次最后消耗；同一过期日按入库时间、id 稳定排序
        return (
            ProductBatchModel.expiration_date.is_(None),
            ProductBatchModel.expiration_date.asc(),
            ProductBatchModel.received_at.asc(),
            ProductBatchModel.id.asc(),
        )

    async def create(self, batch: ProductBatch) -> ProductBatch:
        model = self._to_model(batch)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "batch_created",
            batch_id=model.id,
            variant_id=model.variant_id,
            quantity=model.quantity,
        )
        return self._to_entity(model)

    async def get_by_id(self, batch_id: int, *, for_update: bool = False) -> Optional[ProductBatch]:
        query = select(ProductBatchModel).where(ProductBatchModel.id == batch_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, batch: ProductBatch) -> ProductBatch:
        model = await self.session.get(ProductBatchModel, batch.id)
        if not model:
            raise ValueError(f"ProductBatch with id {batch.id} not found")
        model.quantity = batch.quantity
        await self.session.flush()
        return self._to_entity(model)

    async def list_available_fefo(self, variant_id: int) -> List[ProductBatch]:
        result = await self.session.execute(
            select(ProductBatchModel)
            .where(ProductBatchModel.variant_id == variant_id, ProductBatchModel.quantity > 0)
            .order_by(*self._fefo_order())
            .with_for_update()
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_variant(
        self, variant_id: int, skip: int = 0, limit: Optional[int] = None
    ) -> List[ProductBatch]:
        query = (
            select(ProductBatchModel)
            .where(ProductBatchModel.variant_id == variant_id)
            .order_by(*self._fefo_order())
            .offset(skip)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_variant(self, variant_id: int) -> int:
        result = await self.session.execute(
            select(func.count(ProductBatchModel.id)).where(ProductBatchModel.variant_id == variant_id)
        )
        return int(result.scalar_one())

    def _business_batches(self, business_id: int):
        return (
            select(ProductBatchModel)
            .join(ProductVariantModel, ProductVariantModel.id == ProductBatchModel.variant_id)
            .where(ProductVariantModel.business_id == business_id, ProductBatchModel.quantity > 0)
        )

    async def list_expiring(self, business_id: int, start: datetime, end: datetime) -> List[ProductBatch]:
        result = await self.session.execute(
            self._business_batches(business_id)
            .where(
                ProductBatchModel.expiration_date.is_not(None),
                ProductBatchModel.expiration_date >= start,
                ProductBatchModel.expiration_date <= end,
            )
            .order_by(ProductBatchModel.expiration_date.asc(), ProductBatchModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_expired_with_stock(
        self, business_id: int, now: datetime, *, for_update: bool = False
    ) -> List[ProductBatch]:
        query = (
            self._business_batches(business_id)
            .where(
                ProductBatchModel.expiration_date.is_not(None),
                ProductBatchModel.expiration_date < now,
            )
            .order_by(ProductBatchModel.variant_id.asc(), ProductBatchModel.id.asc())
        )
        if for_update:
            query = query.with_for_update(of=ProductBatchModel)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def sum_quantity(self, variant_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(ProductBatchModel.quantity), 0)).where(
                ProductBatchModel.variant_id == variant_id
            )
        )
        return int(result.scalar_one())


class SQLAlchemyStockMovementRepository(StockMovementRepository):
    """库存流水仓储的SQLAlchemy实现（只追加）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StockMovementModel) -> StockMovement:
        return StockMovement(
            id=model.id,
            variant_id=model.variant_id,
            business_id=model.business_id,
            performed_by_id=model.performed_by_id,
            type=MovementType(model.type),
            quantity_change=model.quantity_change,
            new_quantity=model.new_quantity,
            reason=model.reason,
            order_id=model.order_id,
            created_at=model.created_at,
        )

    def _to_model(self, entity: StockMovement) -> StockMovementModel:
        return StockMovementModel(
            variant_id=entity.variant_id,
            business_id=entity.business_id,
            performed_by_id=entity.performed_by_id,
            type=entity.type.value,
            quantity_change=entity.quantity_change,
            new_quantity=entity.new_quantity,
            reason=entity.reason,
            order_id=entity.order_id,
            created_at=entity.created_at,
        )

    async def create(self, movement: StockMovement) -> StockMovement:
        model = self._to_model(movement)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "stock_movement_recorded",
            movement_id=model.id,
            variant_id=model.variant_id,
            type=model.type,
            quantity_change=model.quantity_change,
            new_quantity=model.new_quantity,
            order_id=model.order_id,
        )
        return self._to_entity(model)

    async def list_by_variant(self, variant_id: int, skip: int = 0, limit: int = 100) -> List[StockMovement]:
        result = await self.session.execute(
            select(StockMovementModel)
            .where(StockMovementModel.variant_id == variant_id)
            .order_by(StockMovementModel.created_at.desc(), StockMovementModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_variant(self, variant_id: int) -> int:
        result = await self.session.execute(
            select(func.count(StockMovementModel.id)).where(StockMovementModel.variant_id == variant_id)
        )
        return int(result.scalar_one())

    async def list_by_order(self, order_id: int) -> List[StockMovement]:
        result = await self.session.execute(
            select(StockMovementModel)
            .where(StockMovementModel.order_id == order_id)
            .order_by(StockMovementModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]
