"""
支付流水仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import PaymentTransaction, TransactionKind, TransactionStatus
from domain.payment.repository import PaymentTransactionRepository, TransactionQuery
from infrastructure.models.order import OrderModel
from infrastructure.models.payment_transaction import PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)

MANUAL_PROVIDER = "manual"


class SQLAlchemyPaymentTransactionRepository(PaymentTransactionRepository):
    """支付流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        """将数据库模型转换为领域实体"""
        return PaymentTransaction(
            id=model.id,
            order_id=model.order_id,
            provider=model.provider,
            provider_transaction_id=model.provider_transaction_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=TransactionStatus(model.status),
            kind=TransactionKind(model.kind),
            idempotency_key=model.idempotency_key,
            metadata=model.extra_metadata or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        """将领域实体转换为数据库模型"""
        return PaymentTransactionModel(
            order_id=entity.order_id,
            provider=entity.provider,
            provider_transaction_id=entity.provider_transaction_id,
            kind=entity.kind.value,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            idempotency_key=entity.idempotency_key,
            extra_metadata=entity.metadata,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, transaction: PaymentTransaction) -> PaymentTransaction:
        model = self._to_model(transaction)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "payment_transaction_created",
            transaction_id=model.id,
            order_id=model.order_id,
            provider=model.provider,
            kind=model.kind,
            status=model.status,
        )
        return self._to_entity(model)

    async def update(self, transaction: PaymentTransaction) -> PaymentTransaction:
        model = await self.session.get(PaymentTransactionModel, transaction.id)
        if not model:
            raise ValueError(f"PaymentTransaction with id {transaction.id} not found")
        model.status = transaction.status.value
        model.extra_metadata = transaction.metadata
        model.idempotency_key = transaction.idempotency_key
        model.updated_at = transaction.updated_at
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "payment_transaction_updated",
            transaction_id=model.id,
            order_id=model.order_id,
            status=model.status,
        )
        return self._to_entity(model)

    async def get_by_provider_ref(
        self, provider: str, provider_transaction_id: str, *, for_update: bool = False
    ) -> Optional[PaymentTransaction]:
        query = select(PaymentTransactionModel).where(
            PaymentTransactionModel.provider == provider,
            PaymentTransactionModel.provider_transaction_id == provider_transaction_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.idempotency_key == idempotency_key)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def latest_pending_manual(
        self, order_id: int, *, for_update: bool = False
    ) -> Optional[PaymentTransaction]:
        query = (
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.provider == MANUAL_PROVIDER,
                PaymentTransactionModel.kind == TransactionKind.PAYMENT.value,
                PaymentTransactionModel.status == TransactionStatus.PENDING.value,
            )
            .order_by(PaymentTransactionModel.created_at.desc(), PaymentTransactionModel.id.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def last_successful_payment(self, order_id: int) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.kind == TransactionKind.PAYMENT.value,
                PaymentTransactionModel.status.in_(
                    [TransactionStatus.SUCCESS.value, TransactionStatus.REFUNDED.value]
                ),
            )
            .order_by(PaymentTransactionModel.created_at.desc(), PaymentTransactionModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def sum_refunded(self, order_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PaymentTransactionModel.amount), 0)).where(
                PaymentTransactionModel.order_id == order_id,
                PaymentTransactionModel.kind == TransactionKind.REFUND.value,
                PaymentTransactionModel.status.in_(
                    [TransactionStatus.REFUNDED.value, TransactionStatus.PENDING_REFUND.value]
                ),
            )
        )
        return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))

    async def list_by_order(self, order_id: int) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    @staticmethod
    def _filtered(order_column, value, query: TransactionQuery):
        stmt = (
            select(PaymentTransactionModel)
            .join(OrderModel, OrderModel.id == PaymentTransactionModel.order_id)
            .where(order_column == value)
        )
        if query.status:
            stmt = stmt.where(PaymentTransactionModel.status == query.status.value)
        if query.kind:
            stmt = stmt.where(PaymentTransactionModel.kind == query.kind.value)
        if query.provider:
            stmt = stmt.where(PaymentTransactionModel.provider == query.provider.lower())
        if query.order_id is not None:
            stmt = stmt.where(PaymentTransactionModel.order_id == query.order_id)
        if query.date_from is not None:
            stmt = stmt.where(PaymentTransactionModel.created_at >= query.date_from)
        if query.date_to is not None:
            stmt = stmt.where(PaymentTransactionModel.created_at <= query.date_to)
        if query.min_amount is not None:
            stmt = stmt.where(PaymentTransactionModel.amount >= query.min_amount)
        if query.max_amount is not None:
            stmt = stmt.where(PaymentTransactionModel.amount <= query.max_amount)
        return stmt

    async def _list(self, stmt, skip: int, limit: int) -> List[PaymentTransaction]:
        result = await self.session.execute(
            stmt.order_by(PaymentTransactionModel.created_at.desc(), PaymentTransactionModel.id.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def _count(self, stmt) -> int:
        result = await self.session.execute(select(func.count()).select_from(stmt.subquery()))
        return int(result.scalar_one())

    async def list_for_customer(
        self, customer_id: int, query: TransactionQuery, skip: int = 0, limit: int = 100
    ) -> List[PaymentTransaction]:
        return await self._list(self._filtered(OrderModel.customer_id, customer_id, query), skip, limit)

    async def count_for_customer(self, customer_id: int, query: TransactionQuery) -> int:
        return await self._count(self._filtered(OrderModel.customer_id, customer_id, query))

    async def list_for_business(
        self, business_id: int, query: TransactionQuery, skip: int = 0, limit: int = 100
    ) -> List[PaymentTransaction]:
        return await self._list(self._filtered(OrderModel.business_id, business_id, query), skip, limit)

    async def count_for_business(self, business_id: int, query: TransactionQuery) -> int:
        return await self._count(self._filtered(OrderModel.business_id, business_id, query))
