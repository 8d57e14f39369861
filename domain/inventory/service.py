"""
库存领域服务 - StockLedger

所有写操作都在调用方的 Unit of Work 内执行：批次更新 + 规格缓存更新 + 流水写入
要么一起提交，要么一起回滚。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from .entity import MovementType, ProductBatch, ProductVariant, StockMovement
from .events import ExpiredStockWrittenOff, StockDepleted
from .repository import (
    ProductBatchRepository,
    ProductVariantRepository,
    StockMovementRepository,
)
from domain.common.exceptions import (
    BatchMismatchException,
    BatchNotFoundException,
    DomainValidationException,
    InsufficientBatchStockException,
    InsufficientStockException,
    StockDesyncError,
    VariantNotFoundException,
)
from domain.common.timeutils import utcnow


@dataclass
class ExpiredLossReport:
    losses_recorded: int
    batches_written_off: int


def _require_positive(quantity: int) -> None:
    if quantity <= 0:
        raise DomainValidationException(f"数量必须大于0: {quantity}", field="quantity")


class StockLedger:
    """
    库存账本 - 维护 quantity_in_stock == sum(batch.quantity)

    职责：
    1. FEFO（先过期先出）扣减
    2. 指定批次扣减、入库、以新批次回补
    3. 临期查询与过期报损
    4. 每次原子变更写入一条库存流水
    """

    def __init__(
        self,
        variant_repository: ProductVariantRepository,
        batch_repository: ProductBatchRepository,
        movement_repository: StockMovementRepository,
    ):
        self.variant_repository = variant_repository
        self.batch_repository = batch_repository
        self.movement_repository = movement_repository
        self.events: List = []

    async def _lock_variant(self, variant_id: int) -> ProductVariant:
        variant = await self.variant_repository.get_by_id(variant_id, for_update=True)
        if variant is None:
            raise VariantNotFoundException(variant_id)
        return variant

    async def _record(
        self,
        variant: ProductVariant,
        quantity_change: int,
        movement_type: MovementType,
        reason: Optional[str],
        performed_by: Optional[int],
        order_id: Optional[int] = None,
    ) -> StockMovement:
        movement = StockMovement(
            id=None,
            variant_id=variant.id,
            business_id=variant.business_id,
            performed_by_id=performed_by,
            type=movement_type,
            quantity_change=quantity_change,
            new_quantity=variant.quantity_in_stock,
            reason=reason,
            order_id=order_id,
            created_at=utcnow(),
        )
        return await self.movement_repository.create(movement)

    async def deplete_fefo(
        self,
        variant_id: int,
        quantity: int,
        movement_type: MovementType,
        reason: Optional[str],
        performed_by: Optional[int],
        order_id: Optional[int] = None,
    ) -> ProductVariant:
        """
        按 FEFO 扣减库存

        先校验缓存总量，不足时直接拒绝（批次保持不变）；随后按过期时间升序
        逐批扣减，无过期时间的批次最后消耗。批次总量覆盖不了请求量说明缓存失真，
        抛出 StockDesyncError。
        """
        _require_positive(quantity)
        variant = await self._lock_variant(variant_id)
        if not variant.has_stock_for(quantity):
            raise InsufficientStockException(variant_id, variant.quantity_in_stock, quantity)

        batches = await self.batch_repository.list_available_fefo(variant_id)
        remaining = quantity
        touched: List[ProductBatch] = []
        for batch in batches:
            if remaining == 0:
                break
            remaining -= batch.take(remaining)
            touched.append(batch)

        if remaining > 0:
            raise StockDesyncError(variant_id, variant.quantity_in_stock, remaining)

        for batch in touched:
            await self.batch_repository.update(batch)

        variant.decrease_stock(quantity)
        variant = await self.variant_repository.update(variant)
        await self._record(variant, -quantity, movement_type, reason, performed_by, order_id)
        self.events.append(
            StockDepleted(
                variant_id=variant_id,
                quantity=quantity,
                movement_type=movement_type.value,
                order_id=order_id,
            )
        )
        return variant

    async def deplete_from_batch(
        self,
        variant_id: int,
        batch_id: int,
        quantity: int,
        movement_type: MovementType,
        reason: Optional[str],
        performed_by: Optional[int],
    ) -> ProductVariant:
        """从指定批次扣减（绕过 FEFO 顺序）"""
        _require_positive(quantity)
        variant = await self._lock_variant(variant_id)
        batch = await self.batch_repository.get_by_id(batch_id, for_update=True)
        if batch is None:
            raise BatchNotFoundException(batch_id)
        if batch.variant_id != variant_id:
            raise BatchMismatchException(batch_id, variant_id)
        if batch.quantity < quantity:
            raise InsufficientBatchStockException(batch_id, batch.quantity, quantity)
        if not variant.has_stock_for(quantity):
            raise StockDesyncError(variant_id, variant.quantity_in_stock, quantity - variant.quantity_in_stock)

        batch.take(quantity)
        await self.batch_repository.update(batch)
        variant.decrease_stock(quantity)
        variant = await self.variant_repository.update(variant)
        await self._record(variant, -quantity, movement_type, reason, performed_by)
        return variant

    async def _receive_lot(
        self,
        variant_id: int,
        quantity: int,
        expiration_date: Optional[datetime],
        movement_type: MovementType,
        reason: Optional[str],
        performed_by: Optional[int],
        order_id: Optional[int] = None,
    ) -> ProductVariant:
        _require_positive(quantity)
        variant = await self._lock_variant(variant_id)
        now = utcnow()
        await self.batch_repository.create(
            ProductBatch(
                id=None,
                variant_id=variant_id,
                quantity=quantity,
                expiration_date=expiration_date,
                received_at=now,
            )
        )
        variant.increase_stock(quantity)
        variant = await self.variant_repository.update(variant)
        await self._record(variant, quantity, movement_type, reason, performed_by, order_id)
        return variant

    async def add_batch(
        self,
        variant_id: int,
        quantity: int,
        performed_by: Optional[int],
        expiration_date: Optional[datetime] = None,
        movement_type: MovementType = MovementType.PURCHASE_ENTRY,
        reason: Optional[str] = "new lot received",
    ) -> ProductVariant:
        """新批次入库"""
        return await self._receive_lot(
            variant_id, quantity, expiration_date, movement_type, reason, performed_by
        )

    async def increment_as_new_lot(
        self,
        variant_id: int,
        quantity: int,
        movement_type: MovementType,
        reason: Optional[str],
        performed_by: Optional[int],
        order_id: Optional[int] = None,
    ) -> ProductVariant:
        """以无过期时间的新批次回补库存（退货/纠错），从不合并到已有批次"""
        return await self._receive_lot(
            variant_id, quantity, None, movement_type, reason, performed_by, order_id
        )

    async def find_expiring_soon(
        self, business_id: int, horizon_days: int, now: Optional[datetime] = None
    ) -> List[ProductBatch]:
        if horizon_days < 0:
            raise DomainValidationException("临期天数不能为负", field="days")
        start = now or utcnow()
        return await self.batch_repository.list_expiring(
            business_id, start, start + timedelta(days=horizon_days)
        )

    async def record_expired_losses(
        self, business_id: int, performed_by: Optional[int], now: Optional[datetime] = None
    ) -> ExpiredLossReport:
        """
        过期报损：逐批清零并扣减规格缓存，每批写一条 EXPIRATION 流水

        已清零的批次不会再被选中，因此重复执行不会重复报损。
        """
        now = now or utcnow()
        candidates = await self.batch_repository.list_expired_with_stock(business_id, now)
        if not candidates:
            return ExpiredLossReport(losses_recorded=0, batches_written_off=0)

        # 与 FEFO 扣减保持相同的加锁顺序：先规格，后批次
        variants = {}
        for variant_id in sorted({b.variant_id for b in candidates}):
            variants[variant_id] = await self._lock_variant(variant_id)
        batches = await self.batch_repository.list_expired_with_stock(business_id, now, for_update=True)

        total = 0
        for batch in batches:
            variant = variants.get(batch.variant_id)
            if variant is None:
                variant = await self._lock_variant(batch.variant_id)
                variants[batch.variant_id] = variant
            if not variant.has_stock_for(batch.quantity):
                raise StockDesyncError(variant.id, variant.quantity_in_stock, batch.quantity)
            lost = batch.write_off()
            await self.batch_repository.update(batch)
            variant.decrease_stock(lost)
            variants[batch.variant_id] = await self.variant_repository.update(variant)
            await self._record(
                variants[batch.variant_id],
                -lost,
                MovementType.EXPIRATION,
                f"Expired lot #{batch.id} written off",
                performed_by,
            )
            total += lost

        self.events.append(
            ExpiredStockWrittenOff(
                business_id=business_id,
                losses_recorded=total,
                batches_written_off=len(batches),
            )
        )
        return ExpiredLossReport(losses_recorded=total, batches_written_off=len(batches))

    def get_domain_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
