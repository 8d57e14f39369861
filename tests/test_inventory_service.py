from datetime import timedelta

import pytest
from pydantic import ValidationError

from application.dto import CurrentUser
from application.dtos.inventory import AdjustStockRequest
from application.services.inventory_service import InventoryApplicationService
from domain.common.exceptions import BatchMismatchException, NotAuthorizedException
from domain.common.timeutils import utcnow
from domain.inventory.entity import MovementType


OWNER = CurrentUser(id=10)
STRANGER = CurrentUser(id=200)


@pytest.fixture
def service(uow_factory, notifier):
    return InventoryApplicationService(uow_factory=uow_factory, notifier=notifier)


@pytest.fixture
async def shop(seeder):
    return await seeder.business(owner_id=OWNER.id)


@pytest.mark.asyncio
async def test_adjustment_can_target_a_specific_batch(service, uow_factory, seeder, shop):
    soon = utcnow() + timedelta(days=3)
    variant = await seeder.variant(shop, batches=[(4, soon), (6, None)])
    async with uow_factory(readonly=True) as uow:
        dated, undated = await uow.batch_repository.list_by_variant(variant)

    result = await service.adjust_stock(
        variant,
        AdjustStockRequest(quantity_change=-2, movement_type=MovementType.LOSS, reason="broken", batch_id=undated.id),
        OWNER,
    )

    assert result.quantity_in_stock == 8
    async with uow_factory(readonly=True) as uow:
        batches = await uow.batch_repository.list_by_variant(variant)
        movements = await uow.movement_repository.list_by_variant(variant)
    # FEFO 会先扣临期批次，这里只动了指定批次
    assert [b.quantity for b in batches] == [4, 4]
    assert [(m.type, m.quantity_change, m.new_quantity) for m in movements] == [(MovementType.LOSS, -2, 8)]

    other = await seeder.variant(shop, batches=[(1, None)])
    with pytest.raises(BatchMismatchException):
        await service.adjust_stock(other, AdjustStockRequest(quantity_change=-1, batch_id=dated.id), OWNER)


def test_batch_id_is_only_for_removals():
    with pytest.raises(ValidationError):
        AdjustStockRequest(quantity_change=3, batch_id=1)


@pytest.mark.asyncio
async def test_list_batches_is_paginated_in_fefo_order(service, seeder, shop):
    now = utcnow()
    variant = await seeder.variant(
        shop, batches=[(0, now + timedelta(days=1)), (5, None), (2, now + timedelta(days=9))]
    )

    first_page, total = await service.list_batches(variant, OWNER, skip=0, limit=2)
    second_page, _ = await service.list_batches(variant, OWNER, skip=2, limit=2)

    assert total == 3
    assert [b.quantity for b in first_page] == [0, 2]
    assert [b.quantity for b in second_page] == [5]
    with pytest.raises(NotAuthorizedException):
        await service.list_batches(variant, STRANGER)


@pytest.mark.asyncio
async def test_business_inventory_lists_only_own_variants(service, seeder, shop):
    first = await seeder.variant(shop, batches=[(3, None)])
    second = await seeder.variant(shop, batches=[(7, None), (1, None)])
    neighbour = await seeder.business(owner_id=50)
    await seeder.variant(neighbour)

    items, total = await service.business_inventory(shop, OWNER)

    assert total == 2
    assert [(v.id, v.quantity_in_stock) for v in items] == [(first, 3), (second, 8)]
    with pytest.raises(NotAuthorizedException):
        await service.business_inventory(shop, STRANGER)
