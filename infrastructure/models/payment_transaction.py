"""
支付流水数据库模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, UniqueConstraint
)
from datetime import datetime, timezone

from .base import Base


class PaymentTransactionModel(Base):
    """
    支付流水数据库模型

    所有业务规则都在 domain.payment.entity.PaymentTransaction 中
    """
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    provider = Column(String(50), nullable=False, comment="支付提供商: stripe/mobile_money/manual")
    provider_transaction_id = Column(String(200), nullable=False, comment="渠道交易号")
    kind = Column(String(20), nullable=False, default="PAYMENT", comment="PAYMENT / REFUND")
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")
    status = Column(String(30), nullable=False, index=True)
    idempotency_key = Column(String(128), nullable=True, unique=True)
    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="渠道原始数据")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("provider", "provider_transaction_id", name="uq_payment_transactions_provider_ref"),
        Index("ix_payment_transactions_order_kind", "order_id", "kind"),
    )

    def __repr__(self):
        return (
            f"<PaymentTransactionModel(id={self.id}, order_id={self.order_id}, "
            f"provider='{self.provider}', amount={self.amount}, status='{self.status}')>"
        )
