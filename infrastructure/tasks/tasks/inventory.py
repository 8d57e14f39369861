"""Inventory housekeeping tasks"""
from __future__ import annotations

import asyncio
from typing import Dict

from celery import shared_task

from ..config.beat import EXPIRED_LOSS_SWEEP_TASK
from ..utils.base_task import BaseTask
from application.dtos.inventory import ExpiredLossesResponse
from application.services.inventory_service import InventoryApplicationService
from core.logging_config import get_logger
from infrastructure.database import engine
from infrastructure.notifications import LoggingNotifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)


def build_inventory_service() -> InventoryApplicationService:
    return InventoryApplicationService(uow_factory=SQLAlchemyUnitOfWork, notifier=LoggingNotifier())


async def _run_sweep() -> Dict[int, ExpiredLossesResponse]:
    try:
        return await build_inventory_service().sweep_expired_losses()
    finally:
        # asyncio.run creates a fresh loop per task; pooled connections must not outlive it
        await engine.dispose()


@shared_task(
    name=EXPIRED_LOSS_SWEEP_TASK,
    bind=True,
    base=BaseTask,
    autoretry_for=(ConnectionError, OSError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def sweep_expired_losses(self) -> Dict[str, dict]:
    """Write off every expired lot that still carries stock, business by business.

    Re-running is harmless: lots already zeroed are not selected again.
    """
    reports = asyncio.run(_run_sweep())
    logger.info("expired_loss_task_finished", task_id=self.request.id, businesses=len(reports))
    # JSON result backends need string keys
    return {str(business_id): report.model_dump() for business_id, report in reports.items()}
