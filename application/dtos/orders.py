"""
订单 DTO（请求/响应）
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from application.dto import DTOBase
from domain.order.entity import Order, OrderStatus, OrderType


class OrderLineInput(BaseModel):
    variant_id: int = Field(..., ge=1)
    quantity: int = Field(..., gt=0, description="数量，必须大于0")


class CreateOrderRequest(BaseModel):
    """
    下单请求

    - SALE: business_id 为卖方商家
    - PURCHASE: supplier_business_id 为供货商，business_id 为采购方（操作人所属商家）
    - RESERVATION: 需要 table_id 与 reservation_date
    """

    type: OrderType = OrderType.SALE
    business_id: int = Field(..., ge=1)
    lines: List[OrderLineInput] = Field(..., min_length=1)
    supplier_business_id: Optional[int] = Field(default=None, ge=1)
    table_id: Optional[str] = Field(default=None, max_length=64)
    reservation_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_type_fields(self):
        if self.type == OrderType.PURCHASE and self.supplier_business_id is None:
            raise ValueError("supplier_business_id is required for PURCHASE orders")
        if self.type == OrderType.RESERVATION and (not self.table_id or self.reservation_date is None):
            raise ValueError("table_id and reservation_date are required for RESERVATION orders")
        return self


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderLineResponse(DTOBase):
    variant_id: int
    quantity: int
    price: Decimal
    subtotal: Decimal


class OrderStatusHistoryResponse(DTOBase):
    status: str
    triggered_by: str
    notes: Optional[str] = None
    payment_transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None


class OrderResponse(DTOBase):
    id: int
    order_number: str
    type: str
    status: str
    total_amount: Decimal
    currency: str
    business_id: int
    customer_id: int
    purchasing_business_id: Optional[int] = None
    employee_id: Optional[int] = None
    table_id: Optional[str] = None
    reservation_date: Optional[datetime] = None
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    payment_intent_id: Optional[str] = None
    lines: List[OrderLineResponse] = Field(default_factory=list)
    history: List[OrderStatusHistoryResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            type=order.type.value,
            status=order.status.value,
            total_amount=order.total_amount,
            currency=order.currency,
            business_id=order.business_id,
            customer_id=order.customer_id,
            purchasing_business_id=order.purchasing_business_id,
            employee_id=order.employee_id,
            table_id=order.table_id,
            reservation_date=order.reservation_date,
            notes=order.notes,
            payment_method=order.payment_method,
            payment_intent_id=order.payment_intent_id,
            lines=[
                OrderLineResponse(
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    price=line.price,
                    subtotal=line.subtotal,
                )
                for line in order.lines
            ],
            history=[
                OrderStatusHistoryResponse(
                    status=entry.status.value,
                    triggered_by=entry.triggered_by,
                    notes=entry.notes,
                    payment_transaction_id=entry.payment_transaction_id,
                    created_at=entry.created_at,
                )
                for entry in order.history
            ],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
