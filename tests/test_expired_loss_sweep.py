from datetime import timedelta

import pytest

from application.dtos.inventory import ExpiredLossesResponse
from application.services.inventory_service import InventoryApplicationService
from domain.common.timeutils import utcnow
from infrastructure.tasks.config.beat import CELERY_BEAT_SCHEDULE, EXPIRED_LOSS_SWEEP_TASK
from infrastructure.tasks.tasks import inventory as inventory_tasks


@pytest.mark.asyncio
async def test_sweep_writes_off_every_business(uow_factory, seeder, notifier):
    past = utcnow() - timedelta(days=2)
    first = await seeder.business(owner_id=10)
    second = await seeder.business(owner_id=20)
    untouched = await seeder.business(owner_id=30)
    await seeder.variant(first, batches=((3, past), (4, None)))
    await seeder.variant(second, batches=((2, past),))
    await seeder.variant(untouched, batches=((9, utcnow() + timedelta(days=5)),))

    service = InventoryApplicationService(uow_factory=uow_factory, notifier=notifier)
    reports = await service.sweep_expired_losses()

    assert reports[first] == ExpiredLossesResponse(losses_recorded=3, batches_written_off=1)
    assert reports[second] == ExpiredLossesResponse(losses_recorded=2, batches_written_off=1)
    assert reports[untouched].losses_recorded == 0
    assert notifier.names().count("ExpiredStockWrittenOff") == 2

    again = await service.sweep_expired_losses()
    assert all(r.losses_recorded == 0 for r in again.values())


def test_sweep_is_scheduled_nightly():
    entry = CELERY_BEAT_SCHEDULE["nightly-expired-loss-sweep"]
    assert entry["task"] == EXPIRED_LOSS_SWEEP_TASK
    assert inventory_tasks.sweep_expired_losses.name == EXPIRED_LOSS_SWEEP_TASK


def test_sweep_task_returns_json_friendly_reports(monkeypatch):
    class _FakeService:
        async def sweep_expired_losses(self):
            return {3: ExpiredLossesResponse(losses_recorded=4, batches_written_off=1)}

    monkeypatch.setattr(inventory_tasks, "build_inventory_service", lambda: _FakeService())

    result = inventory_tasks.sweep_expired_losses.apply()

    assert result.get() == {"3": {"losses_recorded": 4, "batches_written_off": 1}}
