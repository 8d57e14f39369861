"""
钱包领域服务 - WalletLedger

余额只会在写入流水的同一事务内变化；扣款前对钱包行加锁再校验余额。
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Tuple

from .entity import (
    Wallet,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)
from .events import WalletCredited, WalletDebited
from .repository import WalletRepository, WalletTransactionRepository
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientBalanceException,
    InvalidTransferException,
    WalletNotFoundException,
)
from domain.common.timeutils import utcnow


def _require_positive(amount: Decimal) -> None:
    if amount <= 0:
        raise DomainValidationException(f"金额必须大于0: {amount}", field="amount")


class WalletDomainService:
    """
    钱包领域服务

    职责：
    1. 幂等地获取或创建用户钱包
    2. 入账 / 出账（含待完成充值流水的完成）
    3. 用户间转账
    """

    def __init__(
        self,
        wallet_repository: WalletRepository,
        transaction_repository: WalletTransactionRepository,
        *,
        default_currency: str = "EUR",
    ):
        self.wallet_repository = wallet_repository
        self.transaction_repository = transaction_repository
        self.default_currency = default_currency
        self.events: List = []

    async def find_or_create(self, user_id: int) -> Wallet:
        wallet = await self.wallet_repository.get_by_user_id(user_id)
        if wallet is not None:
            return wallet
        now = utcnow()
        return await self.wallet_repository.create_if_absent(
            Wallet(
                id=None,
                user_id=user_id,
                currency=self.default_currency,
                balance=Decimal("0"),
                created_at=now,
                updated_at=now,
            )
        )

    async def _lock(self, wallet_id: int) -> Wallet:
        wallet = await self.wallet_repository.get_by_id(wallet_id, for_update=True)
        if wallet is None:
            raise WalletNotFoundException(wallet_id)
        return wallet

    async def credit(
        self,
        wallet_id: int,
        amount: Decimal,
        description: Optional[str],
        *,
        type: WalletTransactionType = WalletTransactionType.DEPOSIT,
        related_order_id: Optional[int] = None,
        related_payment_transaction_id: Optional[int] = None,
        pending_transaction: Optional[WalletTransaction] = None,
    ) -> Wallet:
        """
        入账

        传入 pending_transaction 时完成该流水而不是新增一条；两种情况下余额都在同一事务内增加。
        """
        _require_positive(amount)
        wallet = await self._lock(wallet_id)
        balance = wallet.apply(amount)
        wallet = await self.wallet_repository.update(wallet)

        if pending_transaction is not None:
            if pending_transaction.wallet_id != wallet_id or pending_transaction.amount != amount:
                raise DomainValidationException("待完成流水与入账请求不一致", field="pending_transaction")
            pending_transaction.complete(balance, related_payment_transaction_id)
            await self.transaction_repository.update(pending_transaction)
            type = pending_transaction.type
            related_order_id = pending_transaction.related_order_id
        else:
            await self.transaction_repository.create(
                WalletTransaction(
                    id=None,
                    wallet_id=wallet_id,
                    type=type,
                    amount=amount,
                    status=WalletTransactionStatus.COMPLETED,
                    description=description,
                    related_order_id=related_order_id,
                    related_payment_transaction_id=related_payment_transaction_id,
                    balance_after=balance,
                    created_at=utcnow(),
                )
            )

        self.events.append(
            WalletCredited(
                wallet_id=wallet_id,
                amount=str(amount),
                balance=str(balance),
                transaction_type=type.value,
                related_order_id=related_order_id,
            )
        )
        return wallet

    async def debit(
        self,
        wallet_id: int,
        amount: Decimal,
        description: Optional[str],
        *,
        type: WalletTransactionType = WalletTransactionType.WITHDRAWAL,
        related_order_id: Optional[int] = None,
        related_payment_transaction_id: Optional[int] = None,
    ) -> Wallet:
        """出账：余额校验与扣减在同一把行锁下完成"""
        _require_positive(amount)
        wallet = await self._lock(wallet_id)
        if not wallet.can_cover(amount):
            raise InsufficientBalanceException(wallet_id, wallet.balance, amount)
        balance = wallet.apply(-amount)
        wallet = await self.wallet_repository.update(wallet)
        await self.transaction_repository.create(
            WalletTransaction(
                id=None,
                wallet_id=wallet_id,
                type=type,
                amount=-amount,
                status=WalletTransactionStatus.COMPLETED,
                description=description,
                related_order_id=related_order_id,
                related_payment_transaction_id=related_payment_transaction_id,
                balance_after=balance,
                created_at=utcnow(),
            )
        )
        self.events.append(
            WalletDebited(
                wallet_id=wallet_id,
                amount=str(amount),
                balance=str(balance),
                transaction_type=type.value,
            )
        )
        return wallet

    async def open_pending_deposit(
        self, wallet_id: int, amount: Decimal, order_id: int, description: Optional[str] = None
    ) -> WalletTransaction:
        """登记一条待完成的充值流水（余额不变）"""
        _require_positive(amount)
        return await self.transaction_repository.create(
            WalletTransaction(
                id=None,
                wallet_id=wallet_id,
                type=WalletTransactionType.DEPOSIT,
                amount=amount,
                status=WalletTransactionStatus.PENDING,
                description=description or "Wallet deposit",
                related_order_id=order_id,
                created_at=utcnow(),
            )
        )

    async def fail_pending(self, transaction_id: int) -> Optional[WalletTransaction]:
        transaction = await self.transaction_repository.get_by_id(transaction_id, for_update=True)
        if transaction is None or not transaction.is_pending():
            return transaction
        transaction.fail()
        return await self.transaction_repository.update(transaction)

    async def transfer(
        self,
        sender_user_id: int,
        recipient_user_id: int,
        amount: Decimal,
        description: Optional[str] = None,
    ) -> Tuple[Wallet, Wallet]:
        """用户间转账：按钱包 id 升序加锁，避免两笔反向转账互相等待"""
        if sender_user_id == recipient_user_id:
            raise InvalidTransferException("Cannot transfer to your own wallet")
        _require_positive(amount)
        sender = await self.wallet_repository.get_by_user_id(sender_user_id)
        if sender is None:
            raise WalletNotFoundException(user_id=sender_user_id)
        recipient = await self.find_or_create(recipient_user_id)
        if sender.currency != recipient.currency:
            raise InvalidTransferException("Wallets use different currencies")

        for wallet_id in sorted((sender.id, recipient.id)):
            await self._lock(wallet_id)

        note = description or "Wallet transfer"
        sender = await self.debit(
            sender.id, amount, f"{note} (to user {recipient_user_id})", type=WalletTransactionType.TRANSFER
        )
        recipient = await self.credit(
            recipient.id, amount, f"{note} (from user {sender_user_id})", type=WalletTransactionType.TRANSFER
        )
        return sender, recipient

    def get_domain_events(self) -> List:
        events = self.events.copy()
        self.events.clear()
        return events
