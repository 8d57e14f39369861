"""
库存 DTO
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from application.dto import DTOBase
from domain.inventory.entity import (
    MANUAL_MOVEMENT_TYPES,
    MovementType,
    ProductBatch,
    ProductVariant,
    StockMovement,
)


class AdjustStockRequest(BaseModel):
    quantity_change: int = Field(..., description="正数入库（新批次），负数按 FEFO 扣减")
    movement_type: MovementType = MovementType.ADJUSTMENT
    reason: Optional[str] = Field(default=None, max_length=500)
    batch_id: Optional[int] = Field(default=None, ge=1, description="指定扣减批次（仅用于负数调整）")

    @field_validator("quantity_change")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity_change must not be zero")
        return v

    @field_validator("movement_type")
    @classmethod
    def _manual_type(cls, v: MovementType) -> MovementType:
        if v not in MANUAL_MOVEMENT_TYPES:
            raise ValueError("movement_type must be ADJUSTMENT, LOSS or RETURN")
        return v

    @model_validator(mode="after")
    def _batch_only_for_depletion(self) -> "AdjustStockRequest":
        if self.batch_id is not None and self.quantity_change > 0:
            raise ValueError("batch_id can only be used to remove stock")
        return self


class AddBatchRequest(BaseModel):
    quantity: int = Field(..., gt=0)
    expiration_date: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class VariantStockResponse(DTOBase):
    id: int
    business_id: int
    name: str
    sku: Optional[str] = None
    price: Decimal
    quantity_in_stock: int

    @classmethod
    def from_entity(cls, variant: ProductVariant) -> "VariantStockResponse":
        return cls(
            id=variant.id,
            business_id=variant.business_id,
            name=variant.name,
            sku=variant.sku,
            price=variant.price,
            quantity_in_stock=variant.quantity_in_stock,
        )


class BatchResponse(DTOBase):
    id: int
    variant_id: int
    quantity: int
    expiration_date: Optional[datetime] = None
    received_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, batch: ProductBatch) -> "BatchResponse":
        return cls(
            id=batch.id,
            variant_id=batch.variant_id,
            quantity=batch.quantity,
            expiration_date=batch.expiration_date,
            received_at=batch.received_at,
        )


class StockMovementResponse(DTOBase):
    id: int
    variant_id: int
    business_id: int
    performed_by_id: Optional[int] = None
    type: str
    quantity_change: int
    new_quantity: int
    reason: Optional[str] = None
    order_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, movement: StockMovement) -> "StockMovementResponse":
        return cls(
            id=movement.id,
            variant_id=movement.variant_id,
            business_id=movement.business_id,
            performed_by_id=movement.performed_by_id,
            type=movement.type.value,
            quantity_change=movement.quantity_change,
            new_quantity=movement.new_quantity,
            reason=movement.reason,
            order_id=movement.order_id,
            created_at=movement.created_at,
        )


class ExpiredLossesResponse(DTOBase):
    losses_recorded: int
    batches_written_off: int
