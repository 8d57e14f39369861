"""
钱包仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.wallet.entity import (
    Wallet,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)
from domain.wallet.repository import WalletRepository, WalletTransactionRepository
from infrastructure.models.wallet import WalletModel, WalletTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyWalletRepository(WalletRepository):
    """钱包仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletModel) -> Wallet:
        return Wallet(
            id=model.id,
            user_id=model.user_id,
            currency=model.currency,
            balance=Decimal(str(model.balance)),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, wallet_id: int, *, for_update: bool = False) -> Optional[Wallet]:
        query = select(WalletModel).where(WalletModel.id == wallet_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_user_id(self, user_id: int, *, for_update: bool = False) -> Optional[Wallet]:
        query = select(WalletModel).where(WalletModel.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def create_if_absent(self, wallet: Wallet) -> Wallet:
        model = WalletModel(
            user_id=wallet.user_id,
            currency=wallet.currency,
            balance=wallet.balance,
            created_at=wallet.created_at,
            updated_at=wallet.updated_at,
        )
        try:
            # SAVEPOINT：唯一约束冲突只回滚本次插入，不影响外层事务
            async with self.session.begin_nested():
                self.session.add(model)
                await self.session.flush()
        except IntegrityError:
            logger.info("wallet_create_race_lost", user_id=wallet.user_id)
            existing = await self.get_by_user_id(wallet.user_id)
            if existing is None:
                raise
            return existing
        await self.session.refresh(model)
        logger.info("wallet_created", wallet_id=model.id, user_id=model.user_id, currency=model.currency)
        return self._to_entity(model)

    async def update(self, wallet: Wallet) -> Wallet:
        model = await self.session.get(WalletModel, wallet.id)
        if not model:
            raise ValueError(f"Wallet with id {wallet.id} not found")
        model.balance = wallet.balance
        model.updated_at = wallet.updated_at
        await self.session.flush()
        await self.session.refresh(model)
        return self._to_entity(model)


class SQLAlchemyWalletTransactionRepository(WalletTransactionRepository):
    """钱包流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletTransactionModel) -> WalletTransaction:
        return WalletTransaction(
            id=model.id,
            wallet_id=model.wallet_id,
            type=WalletTransactionType(model.type),
            amount=Decimal(str(model.amount)),
            status=WalletTransactionStatus(model.status),
            description=model.description,
            related_order_id=model.related_order_id,
            related_payment_transaction_id=model.related_payment_transaction_id,
            balance_after=Decimal(str(model.balance_after)) if model.balance_after is not None else None,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: WalletTransaction) -> WalletTransactionModel:
        return WalletTransactionModel(
            wallet_id=entity.wallet_id,
            type=entity.type.value,
            amount=entity.amount,
            status=entity.status.value,
            description=entity.description,
            related_order_id=entity.related_order_id,
            related_payment_transaction_id=entity.related_payment_transaction_id,
            balance_after=entity.balance_after,
            created_at=entity.created_at,
            updated_at=entity.updated_at or entity.created_at,
        )

    async def create(self, transaction: WalletTransaction) -> WalletTransaction:
        model = self._to_model(transaction)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "wallet_transaction_created",
            wallet_transaction_id=model.id,
            wallet_id=model.wallet_id,
            type=model.type,
            amount=str(model.amount),
            status=model.status,
        )
        return self._to_entity(model)

    async def update(self, transaction: WalletTransaction) -> WalletTransaction:
        model = await self.session.get(WalletTransactionModel, transaction.id)
        if not model:
            raise ValueError(f"WalletTransaction with id {transaction.id} not found")
        model.status = transaction.status.value
        model.balance_after = transaction.balance_after
        model.related_payment_transaction_id = transaction.related_payment_transaction_id
        model.updated_at = transaction.updated_at
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "wallet_transaction_updated",
            wallet_transaction_id=model.id,
            wallet_id=model.wallet_id,
            status=model.status,
        )
        return self._to_entity(model)

    async def get_by_id(self, transaction_id: int, *, for_update: bool = False) -> Optional[WalletTransaction]:
        query = select(WalletTransactionModel).where(WalletTransactionModel.id == transaction_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def find_pending_deposit_for_order(
        self, order_id: int, *, for_update: bool = False
    ) -> Optional[WalletTransaction]:
        query = (
            select(WalletTransactionModel)
            .where(
                WalletTransactionModel.related_order_id == order_id,
                WalletTransactionModel.type == WalletTransactionType.DEPOSIT.value,
                WalletTransactionModel.status == WalletTransactionStatus.PENDING.value,
            )
            .order_by(WalletTransactionModel.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    def _filtered(
        self,
        wallet_id: int,
        type: Optional[WalletTransactionType],
        status: Optional[WalletTransactionStatus],
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        search: Optional[str],
    ):
        query = select(WalletTransactionModel).where(WalletTransactionModel.wallet_id == wallet_id)
        if type:
            query = query.where(WalletTransactionModel.type == type.value)
        if status:
            query = query.where(WalletTransactionModel.status == status.value)
        if date_from:
            query = query.where(WalletTransactionModel.created_at >= date_from)
        if date_to:
            query = query.where(WalletTransactionModel.created_at <= date_to)
        if search:
            query = query.where(WalletTransactionModel.description.ilike(f"%{search}%"))
        return query

    async def list_by_wallet(
        self,
        wallet_id: int,
        skip: int = 0,
        limit: int = 100,
        type: Optional[WalletTransactionType] = None,
        status: Optional[WalletTransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> List[WalletTransaction]:
        query = self._filtered(wallet_id, type, status, date_from, date_to, search)
        result = await self.session.execute(
            query.order_by(WalletTransactionModel.created_at.desc(), WalletTransactionModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count_by_wallet(
        self,
        wallet_id: int,
        type: Optional[WalletTransactionType] = None,
        status: Optional[WalletTransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> int:
        query = self._filtered(wallet_id, type, status, date_from, date_to, search)
        result = await self.session.execute(select(func.count()).select_from(query.subquery()))
        return int(result.scalar_one())
