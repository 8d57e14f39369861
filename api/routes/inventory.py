"""
库存API路由 - 手工调整、批次入库、批次与流水查询、临期与过期报损
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_current_user, get_inventory_service
from application.dto import CurrentUser, PaginationParams
from application.dtos.inventory import (
    AddBatchRequest,
    AdjustStockRequest,
    BatchResponse,
    ExpiredLossesResponse,
    StockMovementResponse,
    VariantStockResponse,
)
from application.services.inventory_service import InventoryApplicationService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response

router = APIRouter(
    prefix="/inventory",
    tags=["库存"]
)


@router.post(
    "/variants/{variant_id}/adjustments",
    summary="手工调整库存",
    response_model=ApiResponse[VariantStockResponse],
)
async def adjust_stock(
    variant_id: int,
    payload: AdjustStockRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    variant = await service.adjust_stock(variant_id, payload, current_user)
    return success_response(data=variant, message="Stock adjusted")


@router.post(
    "/variants/{variant_id}/batches",
    summary="新批次入库",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[VariantStockResponse],
)
async def add_batch(
    variant_id: int,
    payload: AddBatchRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    variant = await service.add_batch(variant_id, payload, current_user)
    return success_response(data=variant, message="Batch added")


@router.get(
    "/variants/{variant_id}/movements",
    summary="库存流水",
    response_model=ApiResponse[PaginatedData[StockMovementResponse]],
)
async def list_movements(
    variant_id: int,
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    items, total = await service.list_movements(variant_id, current_user, pagination.skip, pagination.limit)
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get(
    "/variants/{variant_id}/batches",
    summary="规格批次列表",
    response_model=ApiResponse[PaginatedData[BatchResponse]],
)
async def list_batches(
    variant_id: int,
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    items, total = await service.list_batches(variant_id, current_user, pagination.skip, pagination.limit)
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get(
    "/businesses/{business_id}/variants",
    summary="商家库存总览",
    response_model=ApiResponse[PaginatedData[VariantStockResponse]],
)
async def business_inventory(
    business_id: int,
    pagination: PaginationParams = Depends(),
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    items, total = await service.business_inventory(business_id, current_user, pagination.skip, pagination.limit)
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get(
    "/businesses/{business_id}/expiring",
    summary="临期批次",
    response_model=ApiResponse[List[BatchResponse]],
)
async def expiring_soon(
    business_id: int,
    days: Optional[int] = Query(default=None, ge=0, le=365),
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    batches = await service.expiring_soon(business_id, current_user, days)
    return success_response(data=batches)


@router.post(
    "/businesses/{business_id}/expired-losses",
    summary="过期报损",
    response_model=ApiResponse[ExpiredLossesResponse],
)
async def record_expired_losses(
    business_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: InventoryApplicationService = Depends(get_inventory_service),
):
    report = await service.record_expired_losses(business_id, current_user)
    return success_response(data=report, message="Expired losses recorded")
