from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from application.dto import CurrentUser
from application.dtos.orders import CreateOrderRequest, OrderLineInput
from application.services.order_service import OrderApplicationService
from domain.common.exceptions import (
    IllegalTransitionException,
    InsufficientStockException,
    NotAuthorizedException,
    VariantNotFoundException,
)
from domain.common.timeutils import utcnow
from domain.inventory.entity import MovementType
from domain.order.entity import OrderStatus, OrderType
from infrastructure.models import OrderLineModel, OrderModel, StockMovementModel


OWNER = CurrentUser(id=10)
ADMIN = CurrentUser(id=11)
CUSTOMER = CurrentUser(id=100)
STRANGER = CurrentUser(id=200)


@pytest.fixture
def service(uow_factory, notifier):
    return OrderApplicationService(uow_factory=uow_factory, notifier=notifier)


@pytest.fixture
async def shop(seeder):
    return await seeder.business(owner_id=OWNER.id, admins=[ADMIN.id], currency="EUR")


def _sale(business_id, *lines):
    return CreateOrderRequest(
        type=OrderType.SALE,
        business_id=business_id,
        lines=[OrderLineInput(variant_id=v, quantity=q) for v, q in lines],
    )


async def _stock(uow_factory, variant_id):
    async with uow_factory(readonly=True) as uow:
        return (await uow.variant_repository.get_by_id(variant_id)).quantity_in_stock


@pytest.mark.asyncio
async def test_create_sale_snapshots_prices_and_depletes_stock(service, uow_factory, seeder, shop, notifier):
    cheap = await seeder.variant(shop, price="2.50", batches=[(10, None)])
    dear = await seeder.variant(shop, price="7.00", batches=[(3, utcnow() + timedelta(days=5))])

    order = await service.create_order(_sale(shop, (cheap, 4), (dear, 1)), CUSTOMER)

    assert order.status == OrderStatus.PENDING_PAYMENT.value
    assert order.total_amount == Decimal("17.00")
    assert order.currency == "EUR"
    assert [(line.price, line.quantity) for line in order.lines] == [(Decimal("2.50"), 4), (Decimal("7.00"), 1)]
    assert [h.status for h in order.history] == ["PENDING_PAYMENT"]
    assert await _stock(uow_factory, cheap) == 6
    assert await _stock(uow_factory, dear) == 2

    async with uow_factory(readonly=True) as uow:
        movements = await uow.movement_repository.list_by_order(order.id)
    assert {m.type for m in movements} == {MovementType.SALE}
    assert notifier.names().count("StockDepleted") == 2
    assert "OrderCreated" in notifier.names()


@pytest.mark.asyncio
async def test_insufficient_stock_leaves_nothing_behind(service, uow_factory, session_factory, seeder, shop):
    plenty = await seeder.variant(shop, batches=[(10, None)])
    scarce = await seeder.variant(shop, batches=[(1, None)])

    with pytest.raises(InsufficientStockException):
        await service.create_order(_sale(shop, (plenty, 2), (scarce, 2)), CUSTOMER)

    assert await _stock(uow_factory, plenty) == 10
    async with session_factory() as session:
        assert (await session.execute(select(func.count(OrderModel.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_duplicate_lines_are_checked_together(service, seeder, shop):
    variant = await seeder.variant(shop, batches=[(3, None)])
    with pytest.raises(InsufficientStockException):
        await service.create_order(_sale(shop, (variant, 2), (variant, 2)), CUSTOMER)


@pytest.mark.asyncio
async def test_variant_must_belong_to_seller(service, seeder, shop):
    other = await seeder.business(owner_id=99)
    foreign = await seeder.variant(other)
    with pytest.raises(VariantNotFoundException):
        await service.create_order(_sale(shop, (foreign, 1)), CUSTOMER)


@pytest.mark.asyncio
async def test_unknown_variant_in_middle_line_rolls_back_everything(service, uow_factory, session_factory, seeder, shop):
    first = await seeder.variant(shop, batches=[(6, None)])
    last = await seeder.variant(shop, batches=[(4, None)])

    with pytest.raises(VariantNotFoundException):
        await service.create_order(_sale(shop, (first, 2), (999999, 1), (last, 1)), CUSTOMER)

    assert await _stock(uow_factory, first) == 6
    assert await _stock(uow_factory, last) == 4
    async with session_factory() as session:
        for model in (OrderModel, OrderLineModel, StockMovementModel):
            assert (await session.execute(select(func.count(model.id)))).scalar_one() == 0
    async with uow_factory(readonly=True) as uow:
        assert [b.quantity for b in await uow.batch_repository.list_by_variant(first)] == [6]


@pytest.mark.asyncio
async def test_sale_takes_from_soonest_expiring_lot(service, uow_factory, seeder, shop):
    soon = utcnow() + timedelta(days=2)
    later = utcnow() + timedelta(days=30)
    variant = await seeder.variant(shop, batches=[(2, later), (3, soon)])

    order = await service.create_order(_sale(shop, (variant, 1)), CUSTOMER)

    async with uow_factory(readonly=True) as uow:
        batches = await uow.batch_repository.list_by_variant(variant)
        movements = await uow.movement_repository.list_by_order(order.id)
    by_expiry = sorted(batches, key=lambda b: b.expiration_date)
    assert [b.quantity for b in by_expiry] == [2, 2]
    assert await _stock(uow_factory, variant) == 4
    assert len(movements) == 1
    assert movements[0].type == MovementType.SALE
    assert (movements[0].quantity_change, movements[0].new_quantity) == (-1, 4)


@pytest.mark.asyncio
async def test_reservation_starts_pending_without_touching_stock(service, uow_factory, seeder, shop):
    variant = await seeder.variant(shop, batches=[(2, None)])
    order = await service.create_order(
        CreateOrderRequest(
            type=OrderType.RESERVATION,
            business_id=shop,
            lines=[OrderLineInput(variant_id=variant, quantity=5)],
            table_id="T4",
            reservation_date=utcnow() + timedelta(days=1),
        ),
        CUSTOMER,
    )
    assert order.status == OrderStatus.PENDING.value
    assert order.table_id == "T4"
    assert await _stock(uow_factory, variant) == 2


@pytest.mark.asyncio
async def test_purchase_requires_managing_the_buyer(service, uow_factory, seeder, shop):
    supplier = await seeder.business(owner_id=50)
    variant = await seeder.variant(supplier, price="1.00", batches=[(1, None)])
    request = CreateOrderRequest(
        type=OrderType.PURCHASE,
        business_id=shop,
        supplier_business_id=supplier,
        lines=[OrderLineInput(variant_id=variant, quantity=20)],
    )

    with pytest.raises(NotAuthorizedException):
        await service.create_order(request, STRANGER)

    order = await service.create_order(request, ADMIN)
    assert order.business_id == supplier
    assert order.purchasing_business_id == shop
    assert order.employee_id == ADMIN.id
    assert order.total_amount == Decimal("20.00")
    # 采购单不扣减供货商库存
    assert await _stock(uow_factory, variant) == 1


@pytest.mark.asyncio
async def test_cancelling_a_sale_restocks_as_new_lot(service, uow_factory, seeder, shop):
    variant = await seeder.variant(shop, batches=[(5, utcnow() + timedelta(days=3))])
    order = await service.create_order(_sale(shop, (variant, 5)), CUSTOMER)
    assert await _stock(uow_factory, variant) == 0

    cancelled = await service.change_status(order.id, OrderStatus.CANCELLED, CUSTOMER, notes="changed my mind")

    assert cancelled.status == OrderStatus.CANCELLED.value
    assert [h.status for h in cancelled.history] == ["PENDING_PAYMENT", "CANCELLED"]
    assert await _stock(uow_factory, variant) == 5
    async with uow_factory(readonly=True) as uow:
        batches = await uow.batch_repository.list_by_variant(variant)
        movements = await uow.movement_repository.list_by_order(order.id)
    assert len(batches) == 2
    assert batches[-1].expiration_date is None
    assert [m.type for m in movements] == [MovementType.SALE, MovementType.RETURN]


@pytest.mark.asyncio
async def test_transition_rules(service, seeder, shop):
    variant = await seeder.variant(shop)
    order = await service.create_order(_sale(shop, (variant, 1)), CUSTOMER)

    with pytest.raises(IllegalTransitionException):
        await service.change_status(order.id, OrderStatus.SHIPPED, OWNER)

    # 顾客不能把自己的订单标记为已支付
    with pytest.raises(NotAuthorizedException):
        await service.change_status(order.id, OrderStatus.PAID, CUSTOMER)

    with pytest.raises(NotAuthorizedException):
        await service.change_status(order.id, OrderStatus.CANCELLED, STRANGER)

    cancelled = await service.change_status(order.id, OrderStatus.CANCELLED, ADMIN)
    assert cancelled.status == OrderStatus.CANCELLED.value
    assert cancelled.history[-1].triggered_by == str(ADMIN.id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "target",
    [OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED],
)
async def test_payment_statuses_cannot_be_set_by_hand(service, uow_factory, seeder, shop, target):
    variant = await seeder.variant(shop)
    order = await service.create_order(_sale(shop, (variant, 1)), CUSTOMER)

    with pytest.raises(IllegalTransitionException) as exc_info:
        await service.change_status(order.id, target, OWNER)
    assert exc_info.value.details["reason"] == "payment statuses are set by the payment gateway"

    async with uow_factory(readonly=True) as uow:
        stored = await uow.order_repository.get_by_id(order.id)
    assert stored.status == OrderStatus.PENDING_PAYMENT
    assert [h.status for h in stored.history] == [OrderStatus.PENDING_PAYMENT]


@pytest.mark.asyncio
async def test_visibility_and_listing(service, seeder, shop):
    variant = await seeder.variant(shop, batches=[(10, None)])
    first = await service.create_order(_sale(shop, (variant, 1)), CUSTOMER)
    await service.create_order(_sale(shop, (variant, 1)), CurrentUser(id=101))

    assert (await service.get_order(first.id, OWNER)).id == first.id
    with pytest.raises(NotAuthorizedException):
        await service.get_order(first.id, STRANGER)

    mine, total = await service.list_for_customer(CUSTOMER)
    assert total == 1 and mine[0].id == first.id

    everything, total = await service.list_for_business(shop, OWNER, status=OrderStatus.PENDING_PAYMENT)
    assert total == 2 and len(everything) == 2

    with pytest.raises(NotAuthorizedException):
        await service.list_for_business(shop, CUSTOMER)
