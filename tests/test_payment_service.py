from decimal import Decimal

import pytest

from application.dto import CurrentUser
from application.dtos.orders import CreateOrderRequest, OrderLineInput
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentGatewayService
from domain.common.exceptions import (
    BusinessException,
    NotAuthorizedException,
    NotOrderOwnerException,
    OrderNotPayableException,
    RefundExceedsBalanceException,
)
from domain.order.entity import OrderStatus, OrderType
from domain.payment.entity import TransactionKind, TransactionStatus
from domain.payment.repository import TransactionQuery
from infrastructure.external.payments.exceptions import UnsupportedProviderException

from support import STUB_HEADERS, webhook_body


OWNER = CurrentUser(id=10)
CUSTOMER = CurrentUser(id=100)
STRANGER = CurrentUser(id=200)


@pytest.fixture
def payments(uow_factory, registry, notifier):
    return PaymentGatewayService(uow_factory=uow_factory, providers=registry, notifier=notifier)


@pytest.fixture
def orders(uow_factory):
    return OrderApplicationService(uow_factory=uow_factory)


@pytest.fixture
async def order(orders, seeder):
    shop = await seeder.business(owner_id=OWNER.id)
    variant = await seeder.variant(shop, price="20.00", batches=[(10, None)])
    return await orders.create_order(
        CreateOrderRequest(
            type=OrderType.SALE,
            business_id=shop,
            lines=[OrderLineInput(variant_id=variant, quantity=2)],
        ),
        CUSTOMER,
    )


async def _transactions(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.payment_transaction_repository.list_by_order(order_id)


@pytest.mark.asyncio
async def test_create_payment_records_pending_transaction(payments, uow_factory, order, stub_provider):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub", {"note": "first"})

    assert intent.status == "PENDING"
    assert intent.amount == Decimal("40.00")
    assert intent.client_secret_or_params == {"client_secret": "cs_test"}
    assert len(stub_provider.intents[0].idempotency_key) == 64

    [tx] = await _transactions(uow_factory, order.id)
    assert tx.status == TransactionStatus.PENDING
    assert tx.kind == TransactionKind.PAYMENT
    assert tx.provider_transaction_id == intent.intent_id
    assert tx.metadata["note"] == "first"

    async with uow_factory(readonly=True) as uow:
        stamped = await uow.order_repository.get_by_id(order.id)
    assert stamped.payment_method == "stub"
    assert stamped.payment_intent_id == intent.intent_id


@pytest.mark.asyncio
async def test_create_payment_guards(payments, orders, order):
    with pytest.raises(NotOrderOwnerException):
        await payments.create_payment(order.id, STRANGER.id, "stub")
    with pytest.raises(UnsupportedProviderException):
        await payments.create_payment(order.id, CUSTOMER.id, "paypal")

    await orders.change_status(order.id, OrderStatus.CANCELLED, CUSTOMER)
    with pytest.raises(OrderNotPayableException):
        await payments.create_payment(order.id, CUSTOMER.id, "stub")


@pytest.mark.asyncio
async def test_webhook_success_is_applied_once(payments, uow_factory, order, notifier):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub")
    body = webhook_body(intent.intent_id, "SUCCESS", event_id="evt_ok")

    first = await payments.process_webhook("stub", body, STUB_HEADERS)
    second = await payments.process_webhook("stub", body, STUB_HEADERS)

    assert first.processed and not first.duplicate
    assert first.order_status == OrderStatus.PAID.value
    assert second.processed and second.duplicate

    async with uow_factory(readonly=True) as uow:
        paid = await uow.order_repository.get_by_id(order.id)
    assert [h.status for h in paid.history].count(OrderStatus.PAID) == 1
    assert paid.history[-1].triggered_by == "system"
    assert notifier.names().count("PaymentSucceeded") == 1


@pytest.mark.asyncio
async def test_webhook_rejections_are_reported_not_raised(payments, order):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub")

    bad_signature = await payments.process_webhook("stub", webhook_body(intent.intent_id, "SUCCESS"), {})
    assert not bad_signature.processed
    assert bad_signature.error == "InvalidWebhookSignature"

    unknown = await payments.process_webhook("stub", webhook_body("pi_missing", "SUCCESS"), STUB_HEADERS)
    assert not unknown.processed
    assert unknown.error == "UnknownTransaction"

    unsupported = await payments.process_webhook("nope", b"{}", STUB_HEADERS)
    assert unsupported.error == "UnsupportedProvider"

    manual = await payments.process_webhook("manual", b"{}", {})
    assert manual.error == "InvalidWebhookSignature"


@pytest.mark.asyncio
async def test_failed_payment_can_be_retried(payments, orders, uow_factory, order, stub_provider):
    first = await payments.create_payment(order.id, CUSTOMER.id, "stub")
    outcome = await payments.process_webhook("stub", webhook_body(first.intent_id, "FAILED"), STUB_HEADERS)
    assert outcome.order_status == OrderStatus.PAYMENT_FAILED.value

    await orders.change_status(order.id, OrderStatus.PENDING_PAYMENT, CUSTOMER)
    second = await payments.create_payment(order.id, CUSTOMER.id, "stub")

    assert second.intent_id != first.intent_id
    keys = [req.idempotency_key for req in stub_provider.intents]
    assert len(set(keys)) == 2
    statuses = [tx.status for tx in await _transactions(uow_factory, order.id)]
    assert statuses == [TransactionStatus.FAILED, TransactionStatus.PENDING]


@pytest.mark.asyncio
async def test_late_failure_after_success_does_not_move_order(payments, uow_factory, order):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub")
    await payments.process_webhook("stub", webhook_body(intent.intent_id, "SUCCESS", "evt_1"), STUB_HEADERS)

    late = await payments.process_webhook("stub", webhook_body(intent.intent_id, "FAILED", "evt_2"), STUB_HEADERS)

    assert late.duplicate
    assert late.order_status == OrderStatus.PAID.value


@pytest.mark.asyncio
async def test_manual_confirmation(payments, uow_factory, order, orders, seeder):
    await payments.create_payment(order.id, CUSTOMER.id, "manual")

    with pytest.raises(NotAuthorizedException):
        await payments.confirm_manual_payment(order.id, CUSTOMER.id)

    confirmed = await payments.confirm_manual_payment(
        order.id, OWNER.id, {"receipt": "R-1"}, idempotency_key="confirm-1"
    )
    assert confirmed.status == OrderStatus.PAID.value
    [tx] = await _transactions(uow_factory, order.id)
    assert tx.status == TransactionStatus.SUCCESS
    assert tx.metadata["confirmation"]["confirmed_by"] == OWNER.id

    replay = await payments.confirm_manual_payment(order.id, OWNER.id, idempotency_key="confirm-1")
    assert replay.status == OrderStatus.PAID.value
    assert len(replay.history) == len(confirmed.history)

    with pytest.raises(OrderNotPayableException):
        await payments.confirm_manual_payment(order.id, OWNER.id)


@pytest.mark.asyncio
async def test_idempotency_key_cannot_cross_orders(payments, orders, order):
    await payments.create_payment(order.id, CUSTOMER.id, "manual")
    await payments.confirm_manual_payment(order.id, OWNER.id, idempotency_key="shared-key")

    other = await orders.create_order(
        CreateOrderRequest(
            type=OrderType.SALE,
            business_id=order.business_id,
            lines=[OrderLineInput(variant_id=order.lines[0].variant_id, quantity=1)],
        ),
        CUSTOMER,
    )
    with pytest.raises(BusinessException) as exc_info:
        await payments.confirm_manual_payment(other.id, OWNER.id, idempotency_key="shared-key")
    assert exc_info.value.error_type == "IdempotencyKeyReused"


async def _paid(payments, order):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub")
    await payments.process_webhook("stub", webhook_body(intent.intent_id, "SUCCESS"), STUB_HEADERS)
    return intent


@pytest.mark.asyncio
async def test_partial_then_full_refund(payments, uow_factory, order, notifier):
    await _paid(payments, order)

    partial = await payments.refund(order.id, OWNER.id, Decimal("15.00"), reason="damaged")
    assert partial.status == OrderStatus.PARTIALLY_REFUNDED.value

    with pytest.raises(RefundExceedsBalanceException):
        await payments.refund(order.id, OWNER.id, Decimal("30.00"))

    full = await payments.refund(order.id, OWNER.id)
    assert full.status == OrderStatus.REFUNDED.value

    txs = await _transactions(uow_factory, order.id)
    refunds = [tx for tx in txs if tx.kind == TransactionKind.REFUND]
    assert [tx.amount for tx in refunds] == [Decimal("15.00"), Decimal("25.00")]
    payment = next(tx for tx in txs if tx.kind == TransactionKind.PAYMENT)
    assert payment.status == TransactionStatus.REFUNDED
    assert notifier.names().count("PaymentRefunded") == 2

    with pytest.raises(OrderNotPayableException):
        await payments.refund(order.id, OWNER.id, Decimal("1.00"))


@pytest.mark.asyncio
async def test_refund_replay_with_same_key(payments, uow_factory, order, stub_provider):
    await _paid(payments, order)

    first = await payments.refund(order.id, OWNER.id, Decimal("5.00"), idempotency_key="refund-1")
    again = await payments.refund(order.id, OWNER.id, Decimal("5.00"), idempotency_key="refund-1")

    assert first.status == again.status == OrderStatus.PARTIALLY_REFUNDED.value
    assert len(stub_provider.refunds) == 1
    refunds = [tx for tx in await _transactions(uow_factory, order.id) if tx.kind == TransactionKind.REFUND]
    assert len(refunds) == 1


@pytest.mark.asyncio
async def test_refund_rejected_by_provider_writes_nothing(payments, uow_factory, order, stub_provider):
    await _paid(payments, order)
    stub_provider.refund_status = "FAILED"

    with pytest.raises(BusinessException) as exc_info:
        await payments.refund(order.id, OWNER.id, Decimal("5.00"))
    assert exc_info.value.error_type == "RefundRejected"

    async with uow_factory(readonly=True) as uow:
        current = await uow.order_repository.get_by_id(order.id)
    assert current.status == OrderStatus.PAID
    assert all(tx.kind == TransactionKind.PAYMENT for tx in await _transactions(uow_factory, order.id))


@pytest.mark.asyncio
async def test_refund_requires_manager(payments, order):
    await _paid(payments, order)
    with pytest.raises(NotAuthorizedException):
        await payments.refund(order.id, CUSTOMER.id)


@pytest.mark.asyncio
async def test_transactions_visible_to_customer_and_manager(payments, order):
    await payments.create_payment(order.id, CUSTOMER.id, "stub")
    assert len(await payments.list_transactions(order.id, CUSTOMER.id)) == 1
    assert len(await payments.list_transactions(order.id, OWNER.id)) == 1
    with pytest.raises(NotAuthorizedException):
        await payments.list_transactions(order.id, STRANGER.id)


@pytest.mark.asyncio
async def test_confirmation_key_cannot_be_reused_for_refund(payments, uow_factory, order):
    await payments.create_payment(order.id, CUSTOMER.id, "manual")
    await payments.confirm_manual_payment(order.id, OWNER.id, idempotency_key="op-key")

    with pytest.raises(BusinessException) as exc_info:
        await payments.refund(order.id, OWNER.id, Decimal("5.00"), idempotency_key="op-key")
    assert exc_info.value.error_type == "IdempotencyKeyReused"
    assert exc_info.value.details["operation"] == "REFUND"

    assert all(tx.kind == TransactionKind.PAYMENT for tx in await _transactions(uow_factory, order.id))
    refunded = await payments.refund(order.id, OWNER.id, Decimal("5.00"), idempotency_key="refund-op-key")
    assert refunded.status == OrderStatus.PARTIALLY_REFUNDED.value


@pytest.mark.asyncio
async def test_success_for_cancelled_order_is_flagged_for_refund(payments, orders, uow_factory, order):
    intent = await payments.create_payment(order.id, CUSTOMER.id, "stub")
    await orders.change_status(order.id, OrderStatus.CANCELLED, CUSTOMER)

    outcome = await payments.process_webhook("stub", webhook_body(intent.intent_id, "SUCCESS"), STUB_HEADERS)

    assert outcome.processed and not outcome.duplicate
    assert outcome.order_status == OrderStatus.CANCELLED.value
    [tx] = await _transactions(uow_factory, order.id)
    assert tx.status == TransactionStatus.SUCCESS
    assert tx.metadata["requires_refund"] is True


@pytest.mark.asyncio
async def test_transaction_listings_for_customer_and_business(payments, orders, order, seeder):
    await _paid(payments, order)
    await payments.refund(order.id, OWNER.id, Decimal("5.00"))

    elsewhere = await seeder.business(owner_id=77)
    variant = await seeder.variant(elsewhere, price="3.00")
    foreign = await orders.create_order(
        CreateOrderRequest(type=OrderType.SALE, business_id=elsewhere, lines=[OrderLineInput(variant_id=variant, quantity=1)]),
        STRANGER,
    )
    await payments.create_payment(foreign.id, STRANGER.id, "stub")

    mine, total = await payments.list_my_transactions(CUSTOMER.id)
    assert total == 2
    assert [tx.kind for tx in mine] == ["REFUND", "PAYMENT"]

    refunds, total = await payments.list_my_transactions(CUSTOMER.id, TransactionQuery(kind=TransactionKind.REFUND))
    assert total == 1 and refunds[0].amount == Decimal("5.00")
    large, _ = await payments.list_my_transactions(CUSTOMER.id, TransactionQuery(min_amount=Decimal("10")))
    assert [tx.amount for tx in large] == [Decimal("40.00")]

    sales, total = await payments.list_business_transactions(order.business_id, OWNER.id, skip=0, limit=1)
    assert total == 2 and len(sales) == 1
    theirs, total = await payments.list_business_transactions(elsewhere, 77, TransactionQuery(status=TransactionStatus.PENDING))
    assert total == 1 and theirs[0].order_id == foreign.id
    with pytest.raises(NotAuthorizedException):
        await payments.list_business_transactions(order.business_id, CUSTOMER.id)
