"""
钱包应用服务 - WalletLedger 的对外用例

充值分三个事务：
1. 登记待完成充值流水 + 平台内部销售订单
2. 通过 PaymentGatewayService 创建支付意图
3. 第 2 步失败时将流水标记为 FAILED 并取消内部订单，然后重新抛出原异常

真正的入账发生在支付回调（或人工确认）把内部订单推进到 PAID 的那个事务里。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from application.dto import CurrentUser
from application.dtos.wallet import (
    DepositResponse,
    WalletResponse,
    WalletTransactionResponse,
)
from application.ports.notifier import Notifier
from application.services.notify import dispatch_events
from application.services.order_service import build_order_domain
from application.services.payment_service import DEPOSIT_CONTEXT, PaymentGatewayService
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, WalletNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import OrderStatus
from domain.wallet.entity import WalletTransactionStatus, WalletTransactionType
from domain.wallet.service import WalletDomainService


logger = get_logger(__name__)


def _mask_destination(destination: str) -> str:
    return destination if len(destination) <= 4 else "*" * (len(destination) - 4) + destination[-4:]


class WalletApplicationService:
    """钱包应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        payments: PaymentGatewayService,
        notifier: Optional[Notifier] = None,
    ):
        self._uow_factory = uow_factory
        self._payments = payments
        self._notifier = notifier

    @staticmethod
    def _domain(uow: AbstractUnitOfWork) -> WalletDomainService:
        return WalletDomainService(
            uow.wallet_repository,
            uow.wallet_transaction_repository,
            default_currency=settings.commerce.default_currency,
        )

    async def get_wallet(self, current_user: CurrentUser) -> WalletResponse:
        """获取当前用户钱包（首次访问时创建）"""
        async with self._uow_factory() as uow:
            wallet = await self._domain(uow).find_or_create(current_user.id)
        return WalletResponse.from_entity(wallet)

    async def initiate_deposit(
        self,
        current_user: CurrentUser,
        amount: Decimal,
        provider_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DepositResponse:
        if amount > settings.commerce.max_deposit_amount:
            raise DomainValidationException(
                f"Deposit amount exceeds the maximum of {settings.commerce.max_deposit_amount}",
                field="amount",
            )
        # 先解析渠道，不支持的渠道不会留下任何记录
        self._payments.provider(provider_id)

        async with self._uow_factory() as uow:
            wallets = self._domain(uow)
            orders = build_order_domain(uow)
            wallet = await wallets.find_or_create(current_user.id)
            order = await orders.create_deposit_order(
                current_user.id,
                settings.commerce.platform_business_id,
                amount,
                wallet.currency,
            )
            pending = await wallets.open_pending_deposit(wallet.id, amount, order.id)

        logger.info(
            "wallet_deposit_initiated",
            wallet_id=wallet.id,
            order_id=order.id,
            wallet_transaction_id=pending.id,
            amount=str(amount),
            provider=provider_id,
        )
        try:
            result = await self._payments.create_payment(
                order.id,
                current_user.id,
                provider_id,
                {**(metadata or {}), "context": DEPOSIT_CONTEXT, "wallet_transaction_id": pending.id},
            )
        except Exception as exc:
            logger.warning(
                "wallet_deposit_initiation_failed",
                order_id=order.id,
                wallet_transaction_id=pending.id,
                error_type=type(exc).__name__,
            )
            async with self._uow_factory() as uow:
                await self._domain(uow).fail_pending(pending.id)
                await build_order_domain(uow).update_status(
                    order.id,
                    OrderStatus.CANCELLED,
                    str(current_user.id),
                    notes="deposit initiation failed",
                )
            raise

        return DepositResponse(
            wallet_transaction_id=pending.id,
            order_id=order.id,
            transaction_id=result.transaction_id,
            provider=result.provider,
            intent_id=result.intent_id,
            status=result.status,
            amount=result.amount,
            currency=result.currency,
            client_secret_or_params=result.client_secret_or_params,
        )

    async def request_withdrawal(
        self, current_user: CurrentUser, amount: Decimal, method: str, destination: str
    ) -> WalletResponse:
        """提现：立即扣减余额；实际打款由外部流程完成"""
        async with self._uow_factory() as uow:
            wallets = self._domain(uow)
            wallet = await uow.wallet_repository.get_by_user_id(current_user.id)
            if wallet is None:
                raise WalletNotFoundException(user_id=current_user.id)
            wallet = await wallets.debit(
                wallet.id,
                amount,
                f"Withdrawal via {method} to {_mask_destination(destination)}",
                type=WalletTransactionType.WITHDRAWAL,
            )
            events = wallets.get_domain_events()

        logger.info("wallet_withdrawal_requested", wallet_id=wallet.id, amount=str(amount), method=method)
        await dispatch_events(self._notifier, events)
        return WalletResponse.from_entity(wallet)

    async def transfer(
        self,
        current_user: CurrentUser,
        recipient_user_id: int,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> WalletResponse:
        async with self._uow_factory() as uow:
            wallets = self._domain(uow)
            sender, recipient = await wallets.transfer(current_user.id, recipient_user_id, amount, description)
            events = wallets.get_domain_events()

        logger.info(
            "wallet_transfer_completed",
            sender_wallet_id=sender.id,
            recipient_wallet_id=recipient.id,
            amount=str(amount),
        )
        await dispatch_events(self._notifier, events)
        return WalletResponse.from_entity(sender)

    async def list_transactions(
        self,
        current_user: CurrentUser,
        skip: int = 0,
        limit: int = 100,
        type: Optional[WalletTransactionType] = None,
        status: Optional[WalletTransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[WalletTransactionResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            wallet = await uow.wallet_repository.get_by_user_id(current_user.id)
            if wallet is None:
                return [], 0
            repo = uow.wallet_transaction_repository
            items = await repo.list_by_wallet(wallet.id, skip, limit, type, status, date_from, date_to, search)
            total = await repo.count_by_wallet(wallet.id, type, status, date_from, date_to, search)
            return [WalletTransactionResponse.from_entity(t) for t in items], int(total)
