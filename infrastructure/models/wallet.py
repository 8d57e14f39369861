"""
钱包数据库模型
"""
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from datetime import datetime, timezone

from .base import Base


class WalletModel(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, unique=True, index=True, comment="每个用户一个钱包")
    currency = Column(String(3), nullable=False)
    balance = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="已完成流水之和（物化）")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class WalletTransactionModel(Base):
    """钱包流水（只追加；仅 PENDING 流水的状态可被推进）"""

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="有符号金额")
    status = Column(String(20), nullable=False, index=True)
    description = Column(Text, nullable=True)
    related_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    related_payment_transaction_id = Column(Integer, ForeignKey("payment_transactions.id"), nullable=True)
    balance_after = Column(Numeric(precision=15, scale=2), nullable=True, comment="完成时的余额快照")
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
        Index("ix_wallet_transactions_wallet_status", "wallet_id", "status"),
    )
