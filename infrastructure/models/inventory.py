"""
库存数据库模型 - 规格、批次、库存流水
"""
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
)
from datetime import datetime, timezone

from .base import Base


class ProductVariantModel(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    sku = Column(String(100), nullable=True, index=True)
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="售价")
    purchase_price = Column(Numeric(precision=15, scale=2), nullable=True, comment="进价")
    quantity_in_stock = Column(Integer, nullable=False, default=0, comment="批次数量之和（缓存）")
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

    __table_args__ = (
        CheckConstraint("quantity_in_stock >= 0", name="ck_product_variants_stock_non_negative"),
    )


class ProductBatchModel(Base):
    __tablename__ = "product_batches"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(
        Integer,
        ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity = Column(Integer, nullable=False, default=0)
    expiration_date = Column(DateTime(timezone=True), nullable=True, comment="为空表示无保质期，最后消耗")
    received_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_batches_quantity_non_negative"),
        Index("ix_product_batches_variant_expiration", "variant_id", "expiration_date"),
    )


class StockMovementModel(Base):
    """库存流水（只追加）"""

    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    performed_by_id = Column(Integer, nullable=True, comment="操作人用户ID，系统操作为空")
    type = Column(String(30), nullable=False, index=True)
    quantity_change = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False, comment="变更后库存快照")
    reason = Column(Text, nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
