"""
订单数据库模型 - 订单、订单行、状态历史
"""
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
)
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(64), unique=True, nullable=False, index=True)
    type = Column(String(20), nullable=False, comment="SALE / PURCHASE / RESERVATION")
    status = Column(String(30), nullable=False, index=True)
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    customer_id = Column(Integer, nullable=False, index=True)
    purchasing_business_id = Column(Integer, ForeignKey("businesses.id"), nullable=True)
    employee_id = Column(Integer, nullable=True)
    table_id = Column(String(64), nullable=True)
    reservation_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    payment_method = Column(String(50), nullable=True)
    payment_intent_id = Column(String(200), nullable=True, index=True)
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
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_business_status", "business_id", "status"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_number='{self.order_number}', status='{self.status}')>"


class OrderLineModel(Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="下单时价格快照")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_lines_quantity_positive"),
    )


class OrderStatusHistoryModel(Base):
    """状态历史（只追加）"""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    triggered_by = Column(String(64), nullable=False, comment="用户ID 或 system")
    notes = Column(Text, nullable=True)
    payment_transaction_id = Column(Integer, ForeignKey("payment_transactions.id"), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
