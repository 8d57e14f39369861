"""
库存应用服务 - StockLedger 的对外用例（手工调整、入库、流水、临期、过期报损）
"""
from typing import Callable, Dict, List, Optional, Tuple

from application.dto import CurrentUser
from application.dtos.inventory import (
    AddBatchRequest,
    AdjustStockRequest,
    BatchResponse,
    ExpiredLossesResponse,
    StockMovementResponse,
    VariantStockResponse,
)
from application.ports.notifier import Notifier
from application.services.access import require_manager
from application.services.notify import dispatch_events
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, VariantNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.entity import ProductVariant
from domain.inventory.service import StockLedger


logger = get_logger(__name__)


class InventoryApplicationService:
    """库存应用服务：所有写操作都要求操作人管理该规格所属商家"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], notifier: Optional[Notifier] = None):
        self._uow_factory = uow_factory
        self._notifier = notifier

    @staticmethod
    def _ledger(uow: AbstractUnitOfWork) -> StockLedger:
        return StockLedger(uow.variant_repository, uow.batch_repository, uow.movement_repository)

    async def _authorized_variant(self, uow: AbstractUnitOfWork, variant_id: int, user_id: int) -> ProductVariant:
        variant = await uow.variant_repository.get_by_id(variant_id)
        if variant is None:
            raise VariantNotFoundException(variant_id)
        await require_manager(uow.business_directory, user_id, variant.business_id)
        return variant

    async def adjust_stock(
        self, variant_id: int, data: AdjustStockRequest, current_user: CurrentUser
    ) -> VariantStockResponse:
        """手工调整：负数按 FEFO 扣减（指定 batch_id 时只扣该批次），正数以无过期时间的新批次入库"""
        async with self._uow_factory() as uow:
            await self._authorized_variant(uow, variant_id, current_user.id)
            ledger = self._ledger(uow)
            if data.quantity_change < 0 and data.batch_id is not None:
                variant = await ledger.deplete_from_batch(
                    variant_id,
                    data.batch_id,
                    -data.quantity_change,
                    data.movement_type,
                    data.reason,
                    performed_by=current_user.id,
                )
            elif data.quantity_change < 0:
                variant = await ledger.deplete_fefo(
                    variant_id,
                    -data.quantity_change,
                    data.movement_type,
                    data.reason,
                    performed_by=current_user.id,
                )
            else:
                variant = await ledger.increment_as_new_lot(
                    variant_id,
                    data.quantity_change,
                    data.movement_type,
                    data.reason,
                    performed_by=current_user.id,
                )
            events = ledger.get_domain_events()

        logger.info(
            "stock_adjusted",
            variant_id=variant_id,
            quantity_change=data.quantity_change,
            movement_type=data.movement_type.value,
            new_quantity=variant.quantity_in_stock,
        )
        await dispatch_events(self._notifier, events)
        return VariantStockResponse.from_entity(variant)

    async def add_batch(
        self, variant_id: int, data: AddBatchRequest, current_user: CurrentUser
    ) -> VariantStockResponse:
        async with self._uow_factory() as uow:
            await self._authorized_variant(uow, variant_id, current_user.id)
            ledger = self._ledger(uow)
            variant = await ledger.add_batch(
                variant_id,
                data.quantity,
                performed_by=current_user.id,
                expiration_date=data.expiration_date,
                reason=data.reason or "new lot received",
            )
        return VariantStockResponse.from_entity(variant)

    async def list_movements(
        self, variant_id: int, current_user: CurrentUser, skip: int = 0, limit: int = 100
    ) -> Tuple[List[StockMovementResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            await self._authorized_variant(uow, variant_id, current_user.id)
            movements = await uow.movement_repository.list_by_variant(variant_id, skip, limit)
            total = await uow.movement_repository.count_by_variant(variant_id)
            return [StockMovementResponse.from_entity(m) for m in movements], int(total)

    async def list_batches(
        self, variant_id: int, current_user: CurrentUser, skip: int = 0, limit: int = 100
    ) -> Tuple[List[BatchResponse], int]:
        """规格的全部批次（含已耗尽的），按 FEFO 顺序"""
        async with self._uow_factory(readonly=True) as uow:
            await self._authorized_variant(uow, variant_id, current_user.id)
            batches = await uow.batch_repository.list_by_variant(variant_id, skip, limit)
            total = await uow.batch_repository.count_by_variant(variant_id)
            return [BatchResponse.from_entity(b) for b in batches], int(total)

    async def business_inventory(
        self, business_id: int, current_user: CurrentUser, skip: int = 0, limit: int = 100
    ) -> Tuple[List[VariantStockResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            await require_manager(uow.business_directory, current_user.id, business_id)
            variants = await uow.variant_repository.list_by_business(business_id, skip, limit)
            total = await uow.variant_repository.count_by_business(business_id)
            return [VariantStockResponse.from_entity(v) for v in variants], int(total)

    async def expiring_soon(
        self, business_id: int, current_user: CurrentUser, days: Optional[int] = None
    ) -> List[BatchResponse]:
        horizon = settings.commerce.expiring_soon_default_days if days is None else days
        async with self._uow_factory(readonly=True) as uow:
            await require_manager(uow.business_directory, current_user.id, business_id)
            batches = await self._ledger(uow).find_expiring_soon(business_id, horizon)
            return [BatchResponse.from_entity(b) for b in batches]

    async def record_expired_losses(self, business_id: int, current_user: CurrentUser) -> ExpiredLossesResponse:
        """过期报损；重复执行时第二次报告 0"""
        async with self._uow_factory() as uow:
            await require_manager(uow.business_directory, current_user.id, business_id)
            ledger = self._ledger(uow)
            report = await ledger.record_expired_losses(business_id, performed_by=current_user.id)
            events = ledger.get_domain_events()

        logger.info(
            "expired_losses_recorded",
            business_id=business_id,
            losses_recorded=report.losses_recorded,
            batches_written_off=report.batches_written_off,
        )
        await dispatch_events(self._notifier, events)
        return ExpiredLossesResponse(
            losses_recorded=report.losses_recorded,
            batches_written_off=report.batches_written_off,
        )

    async def sweep_expired_losses(self) -> Dict[int, ExpiredLossesResponse]:
        """
        系统任务：逐个商家执行过期报损

        每个商家使用独立事务，单个商家失败不影响其余商家；失败的商家记录日志后在下次调度重试。
        """
        async with self._uow_factory(readonly=True) as uow:
            business_ids = await uow.business_directory.list_ids()

        reports: Dict[int, ExpiredLossesResponse] = {}
        for business_id in business_ids:
            try:
                async with self._uow_factory() as uow:
                    ledger = self._ledger(uow)
                    report = await ledger.record_expired_losses(business_id, performed_by=None)
                    events = ledger.get_domain_events()
            except BusinessException as exc:
                logger.error(
                    "expired_loss_sweep_failed",
                    business_id=business_id,
                    error_type=exc.error_type,
                    details=exc.details,
                )
                continue
            await dispatch_events(self._notifier, events)
            reports[business_id] = ExpiredLossesResponse(
                losses_recorded=report.losses_recorded,
                batches_written_off=report.batches_written_off,
            )

        logger.info(
            "expired_loss_sweep_completed",
            businesses=len(business_ids),
            losses_recorded=sum(r.losses_recorded for r in reports.values()),
        )
        return reports
