from datetime import timedelta

import pytest

from domain.common.exceptions import (
    BatchMismatchException,
    InsufficientBatchStockException,
    InsufficientStockException,
    StockDesyncError,
)
from domain.common.timeutils import utcnow
from domain.inventory.entity import MovementType
from domain.inventory.service import StockLedger
from infrastructure.models import ProductVariantModel


def _ledger(uow) -> StockLedger:
    return StockLedger(uow.variant_repository, uow.batch_repository, uow.movement_repository)


async def _batches(uow_factory, variant_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.batch_repository.list_by_variant(variant_id)


@pytest.fixture
async def business_id(seeder):
    return await seeder.business(owner_id=10)


@pytest.mark.asyncio
async def test_deplete_fefo_consumes_earliest_expiry_first(uow_factory, seeder, business_id):
    now = utcnow()
    variant_id = await seeder.variant(
        business_id,
        batches=[(5, None), (3, now + timedelta(days=30)), (4, now + timedelta(days=2))],
    )

    async with uow_factory() as uow:
        ledger = _ledger(uow)
        variant = await ledger.deplete_fefo(variant_id, 6, MovementType.SALE, "sale", performed_by=1)
        events = ledger.get_domain_events()

    assert variant.quantity_in_stock == 6
    batches = await _batches(uow_factory, variant_id)
    # 2 天批次清空，30 天批次扣 2，无过期批次不动
    assert [(b.quantity, b.expiration_date is None) for b in batches] == [(0, False), (1, False), (5, True)]
    assert [type(e).__name__ for e in events] == ["StockDepleted"]

    async with uow_factory(readonly=True) as uow:
        movements = await uow.movement_repository.list_by_variant(variant_id)
        assert await uow.batch_repository.sum_quantity(variant_id) == 6
    assert len(movements) == 1
    assert movements[0].quantity_change == -6
    assert movements[0].new_quantity == 6
    assert movements[0].type == MovementType.SALE


@pytest.mark.asyncio
async def test_deplete_fefo_rejects_when_stock_insufficient(uow_factory, seeder, business_id):
    variant_id = await seeder.variant(business_id, batches=[(2, None), (1, utcnow() + timedelta(days=3))])

    with pytest.raises(InsufficientStockException):
        async with uow_factory() as uow:
            await _ledger(uow).deplete_fefo(variant_id, 4, MovementType.SALE, None, performed_by=None)

    batches = await _batches(uow_factory, variant_id)
    assert sorted(b.quantity for b in batches) == [1, 2]
    async with uow_factory(readonly=True) as uow:
        assert await uow.movement_repository.count_by_variant(variant_id) == 0


@pytest.mark.asyncio
async def test_deplete_fefo_detects_cache_drift(uow_factory, seeder, session_factory, business_id):
    variant_id = await seeder.variant(business_id, batches=[(2, None)])
    async with session_factory() as session:
        model = await session.get(ProductVariantModel, variant_id)
        model.quantity_in_stock = 5
        await session.commit()

    with pytest.raises(StockDesyncError):
        async with uow_factory() as uow:
            await _ledger(uow).deplete_fefo(variant_id, 4, MovementType.SALE, None, performed_by=None)

    batches = await _batches(uow_factory, variant_id)
    assert [b.quantity for b in batches] == [2]


@pytest.mark.asyncio
async def test_deplete_from_batch_checks_ownership_and_quantity(uow_factory, seeder, business_id):
    first = await seeder.variant(business_id, batches=[(3, None)])
    second = await seeder.variant(business_id, batches=[(3, None)])
    foreign_batch = (await _batches(uow_factory, second))[0]
    own_batch = (await _batches(uow_factory, first))[0]

    with pytest.raises(BatchMismatchException):
        async with uow_factory() as uow:
            await _ledger(uow).deplete_from_batch(
                first, foreign_batch.id, 1, MovementType.LOSS, "broken", performed_by=10
            )

    with pytest.raises(InsufficientBatchStockException):
        async with uow_factory() as uow:
            await _ledger(uow).deplete_from_batch(
                first, own_batch.id, 4, MovementType.LOSS, "broken", performed_by=10
            )

    async with uow_factory() as uow:
        variant = await _ledger(uow).deplete_from_batch(
            first, own_batch.id, 2, MovementType.LOSS, "broken", performed_by=10
        )
    assert variant.quantity_in_stock == 1


@pytest.mark.asyncio
async def test_increment_as_new_lot_never_merges(uow_factory, seeder, business_id):
    expiry = utcnow() + timedelta(days=10)
    variant_id = await seeder.variant(business_id, batches=[(1, expiry)])

    async with uow_factory() as uow:
        variant = await _ledger(uow).increment_as_new_lot(
            variant_id, 4, MovementType.RETURN, "customer return", performed_by=10
        )

    assert variant.quantity_in_stock == 5
    batches = await _batches(uow_factory, variant_id)
    assert len(batches) == 2
    assert batches[-1].quantity == 4
    assert batches[-1].expiration_date is None


@pytest.mark.asyncio
async def test_find_expiring_soon_uses_horizon(uow_factory, seeder, business_id):
    now = utcnow()
    await seeder.variant(
        business_id,
        batches=[(1, now + timedelta(days=3)), (1, now + timedelta(days=40)), (1, None), (1, now - timedelta(days=1))],
    )

    async with uow_factory(readonly=True) as uow:
        soon = await _ledger(uow).find_expiring_soon(business_id, 30, now=now)

    assert len(soon) == 1
    assert soon[0].expiration_date > now


@pytest.mark.asyncio
async def test_record_expired_losses_is_repeatable(uow_factory, seeder, business_id):
    now = utcnow()
    variant_id = await seeder.variant(
        business_id,
        batches=[(3, now - timedelta(days=2)), (2, now - timedelta(hours=1)), (4, now + timedelta(days=5))],
    )

    async with uow_factory() as uow:
        ledger = _ledger(uow)
        report = await ledger.record_expired_losses(business_id, performed_by=10)
        events = ledger.get_domain_events()

    assert report.losses_recorded == 5
    assert report.batches_written_off == 2
    assert [type(e).__name__ for e in events] == ["ExpiredStockWrittenOff"]

    async with uow_factory() as uow:
        again = await _ledger(uow).record_expired_losses(business_id, performed_by=10)
    assert again.losses_recorded == 0

    async with uow_factory(readonly=True) as uow:
        variant = await uow.variant_repository.get_by_id(variant_id)
        movements = await uow.movement_repository.list_by_variant(variant_id)
    assert variant.quantity_in_stock == 4
    assert sorted(m.quantity_change for m in movements if m.type == MovementType.EXPIRATION) == [-3, -2]
