from decimal import Decimal

import pytest

from application.dto import CurrentUser
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentGatewayService
from application.services.wallet_service import WalletApplicationService
from domain.common.exceptions import (
    DomainValidationException,
    IllegalTransitionException,
    InsufficientBalanceException,
    InvalidTransferException,
    WalletNotFoundException,
)
from domain.common.timeutils import utcnow
from domain.order.entity import OrderStatus
from domain.wallet.entity import Wallet, WalletTransactionStatus, WalletTransactionType
from infrastructure.external.payments.exceptions import ProviderUnavailableException

from support import PLATFORM_BUSINESS_ID, STUB_HEADERS, webhook_body


ALICE = CurrentUser(id=100)
BOB = CurrentUser(id=101)


@pytest.fixture
async def platform(seeder):
    return await seeder.business(owner_id=1, business_id=PLATFORM_BUSINESS_ID, is_platform=True)


@pytest.fixture
def payments(uow_factory, registry, notifier):
    return PaymentGatewayService(uow_factory=uow_factory, providers=registry, notifier=notifier)


@pytest.fixture
def wallets(uow_factory, payments, notifier):
    return WalletApplicationService(uow_factory=uow_factory, payments=payments, notifier=notifier)


async def _fund(wallets, payments, user, amount):
    deposit = await wallets.initiate_deposit(user, Decimal(amount), "stub")
    await payments.process_webhook("stub", webhook_body(deposit.intent_id, "SUCCESS"), STUB_HEADERS)
    return deposit


@pytest.mark.asyncio
async def test_get_wallet_creates_once(wallets):
    first = await wallets.get_wallet(ALICE)
    second = await wallets.get_wallet(ALICE)
    assert first.id == second.id
    assert first.balance == Decimal("0")
    assert first.currency == "EUR"


@pytest.mark.asyncio
async def test_deposit_credits_only_after_provider_success(wallets, payments, uow_factory, platform, notifier):
    deposit = await wallets.initiate_deposit(ALICE, Decimal("50.00"), "stub", {"channel": "app"})

    assert deposit.status == "PENDING"
    assert (await wallets.get_wallet(ALICE)).balance == Decimal("0")
    items, _ = await wallets.list_transactions(ALICE)
    assert [(t.status, t.amount) for t in items] == [("PENDING", Decimal("50.00"))]

    body = webhook_body(deposit.intent_id, "SUCCESS", event_id="evt_dep")
    await payments.process_webhook("stub", body, STUB_HEADERS)
    await payments.process_webhook("stub", body, STUB_HEADERS)

    wallet = await wallets.get_wallet(ALICE)
    assert wallet.balance == Decimal("50.00")
    items, total = await wallets.list_transactions(ALICE)
    assert total == 1
    assert items[0].status == "COMPLETED"
    assert items[0].balance_after == Decimal("50.00")
    assert notifier.names().count("WalletCredited") == 1

    async with uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id(deposit.order_id)
        [tx] = await uow.payment_transaction_repository.list_by_order(deposit.order_id)
    assert order.status == OrderStatus.PAID
    assert order.business_id == PLATFORM_BUSINESS_ID
    assert tx.metadata["context"] == "WALLET_DEPOSIT"
    assert tx.metadata["wallet_transaction_id"] == deposit.wallet_transaction_id


@pytest.mark.asyncio
async def test_failed_deposit_marks_pending_entry_failed(wallets, payments, platform):
    deposit = await wallets.initiate_deposit(ALICE, Decimal("10.00"), "stub")
    await payments.process_webhook("stub", webhook_body(deposit.intent_id, "FAILED"), STUB_HEADERS)

    assert (await wallets.get_wallet(ALICE)).balance == Decimal("0")
    items, _ = await wallets.list_transactions(ALICE, status=WalletTransactionStatus.FAILED)
    assert [t.id for t in items] == [deposit.wallet_transaction_id]


@pytest.mark.asyncio
async def test_provider_error_during_initiation_rolls_forward_to_cancelled(
    wallets, uow_factory, platform, stub_provider
):
    stub_provider.fail_create = ProviderUnavailableException("down", provider="stub")

    with pytest.raises(ProviderUnavailableException):
        await wallets.initiate_deposit(ALICE, Decimal("10.00"), "stub")

    items, _ = await wallets.list_transactions(ALICE)
    assert [t.status for t in items] == ["FAILED"]
    async with uow_factory(readonly=True) as uow:
        orders = await uow.order_repository.list_for_customer(ALICE.id)
    assert [o.status for o in orders] == [OrderStatus.CANCELLED]


@pytest.mark.asyncio
async def test_deposit_limits(wallets, platform):
    with pytest.raises(DomainValidationException):
        await wallets.initiate_deposit(ALICE, Decimal("10000.01"), "stub")


@pytest.mark.asyncio
async def test_withdrawal(wallets, payments, platform):
    with pytest.raises(WalletNotFoundException):
        await wallets.request_withdrawal(ALICE, Decimal("1.00"), "mobile_money", "0341234567")

    await _fund(wallets, payments, ALICE, "30.00")
    with pytest.raises(InsufficientBalanceException):
        await wallets.request_withdrawal(ALICE, Decimal("30.01"), "mobile_money", "0341234567")

    wallet = await wallets.request_withdrawal(ALICE, Decimal("12.50"), "mobile_money", "0341234567")
    assert wallet.balance == Decimal("17.50")
    items, _ = await wallets.list_transactions(ALICE, type=WalletTransactionType.WITHDRAWAL)
    assert items[0].amount == Decimal("-12.50")
    assert "4567" in items[0].description and "0341234567" not in items[0].description


@pytest.mark.asyncio
async def test_transfer_moves_balance_between_wallets(wallets, payments, platform):
    await _fund(wallets, payments, ALICE, "20.00")

    with pytest.raises(InvalidTransferException):
        await wallets.transfer(ALICE, ALICE.id, Decimal("1.00"))
    with pytest.raises(InsufficientBalanceException):
        await wallets.transfer(ALICE, BOB.id, Decimal("25.00"))

    sender = await wallets.transfer(ALICE, BOB.id, Decimal("8.00"), "dinner")
    assert sender.balance == Decimal("12.00")
    assert (await wallets.get_wallet(BOB)).balance == Decimal("8.00")

    transfers, _ = await wallets.list_transactions(BOB, type=WalletTransactionType.TRANSFER)
    assert transfers[0].amount == Decimal("8.00")


@pytest.mark.asyncio
async def test_list_transactions_without_wallet_is_empty(wallets):
    assert await wallets.list_transactions(ALICE) == ([], 0)


@pytest.mark.asyncio
async def test_create_if_absent_returns_existing_on_conflict(uow_factory):
    now = utcnow()

    def fresh() -> Wallet:
        return Wallet(id=None, user_id=ALICE.id, currency="EUR", balance=Decimal("0"), created_at=now, updated_at=now)

    async with uow_factory() as uow:
        created = await uow.wallet_repository.create_if_absent(fresh())

    async with uow_factory() as uow:
        # 模拟并发：另一请求已经创建了钱包，这里跳过查询直接插入
        again = await uow.wallet_repository.create_if_absent(fresh())
        same_tx = await uow.wallet_repository.get_by_user_id(ALICE.id)

    assert again.id == created.id
    assert same_tx is not None


async def _assert_balance_matches_ledger(wallets, user):
    wallet = await wallets.get_wallet(user)
    completed, _ = await wallets.list_transactions(user, status=WalletTransactionStatus.COMPLETED)
    assert wallet.balance == sum((t.amount for t in completed), Decimal("0"))
    return wallet.balance


@pytest.mark.asyncio
async def test_deposit_order_cannot_be_marked_paid_by_hand(wallets, payments, uow_factory, notifier, platform):
    orders = OrderApplicationService(uow_factory=uow_factory, notifier=notifier)
    deposit = await wallets.initiate_deposit(ALICE, Decimal("50.00"), "stub")

    # 平台所有者也不能绕过支付网关直接标记已支付
    with pytest.raises(IllegalTransitionException):
        await orders.change_status(deposit.order_id, OrderStatus.PAID, CurrentUser(id=1))

    outcome = await payments.process_webhook("stub", webhook_body(deposit.intent_id, "SUCCESS"), STUB_HEADERS)

    assert outcome.order_status == OrderStatus.PAID.value
    items, _ = await wallets.list_transactions(ALICE)
    assert [(t.status, t.amount) for t in items] == [("COMPLETED", Decimal("50.00"))]
    assert await _assert_balance_matches_ledger(wallets, ALICE) == Decimal("50.00")


@pytest.mark.asyncio
async def test_cancelled_deposit_is_never_credited(wallets, payments, uow_factory, platform):
    orders = OrderApplicationService(uow_factory=uow_factory)
    deposit = await wallets.initiate_deposit(ALICE, Decimal("20.00"), "stub")

    await orders.change_status(deposit.order_id, OrderStatus.CANCELLED, ALICE)
    items, _ = await wallets.list_transactions(ALICE)
    assert [t.status for t in items] == ["FAILED"]

    await payments.process_webhook("stub", webhook_body(deposit.intent_id, "SUCCESS"), STUB_HEADERS)

    assert await _assert_balance_matches_ledger(wallets, ALICE) == Decimal("0")
    async with uow_factory(readonly=True) as uow:
        [tx] = await uow.payment_transaction_repository.list_by_order(deposit.order_id)
    assert tx.metadata["requires_refund"] is True


@pytest.mark.asyncio
async def test_balance_equals_completed_ledger_after_mixed_activity(wallets, payments, platform):
    await _fund(wallets, payments, ALICE, "40.00")
    failed = await wallets.initiate_deposit(ALICE, Decimal("15.00"), "stub")
    await payments.process_webhook("stub", webhook_body(failed.intent_id, "FAILED"), STUB_HEADERS)
    await wallets.initiate_deposit(ALICE, Decimal("7.00"), "stub")
    await wallets.request_withdrawal(ALICE, Decimal("5.00"), "mobile_money", "0341234567")
    await wallets.transfer(ALICE, BOB.id, Decimal("8.25"))
    await _fund(wallets, payments, BOB, "3.00")
    await wallets.transfer(BOB, ALICE.id, Decimal("1.25"))
    with pytest.raises(InsufficientBalanceException):
        await wallets.request_withdrawal(BOB, Decimal("100.00"), "mobile_money", "0341234567")

    assert await _assert_balance_matches_ledger(wallets, ALICE) == Decimal("28.00")
    assert await _assert_balance_matches_ledger(wallets, BOB) == Decimal("10.00")

    items, _ = await wallets.list_transactions(ALICE)
    statuses = [t.status for t in items]
    assert statuses.count("PENDING") == 1
    assert statuses.count("FAILED") == 1
