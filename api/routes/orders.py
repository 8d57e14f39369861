"""
订单API路由 - 下单、状态流转、支付、人工确认与退款
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import (
    get_current_user,
    get_idempotency_key,
    get_order_service,
    get_payment_service,
)
from application.dto import CurrentUser, PaginationParams
from application.dtos.orders import CreateOrderRequest, OrderResponse, UpdateOrderStatusRequest
from application.dtos.payments import (
    ConfirmManualPaymentRequest,
    PaymentIntentResult,
    PaymentTransactionResponse,
    PayOrderRequest,
    RefundOrderRequest,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentGatewayService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.order.entity import OrderStatus, OrderType

router = APIRouter(
    prefix="/orders",
    tags=["订单"]
)


@router.post(
    "",
    summary="创建订单",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[OrderResponse],
)
async def create_order(
    payload: CreateOrderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    创建订单

    - **SALE**：向 ``business_id`` 下单，创建时即扣减库存
    - **RESERVATION**：需要 ``table_id`` 与 ``reservation_date``，状态从 PENDING 开始
    - **PURCHASE**：``business_id`` 为采购方，``supplier_business_id`` 为供货商
    """
    order = await service.create_order(payload, current_user)
    return success_response(data=order, message="Order created")


@router.get("", summary="我的订单", response_model=ApiResponse[PaginatedData[OrderResponse]])
async def list_my_orders(
    pagination: PaginationParams = Depends(),
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    type_filter: Optional[OrderType] = Query(default=None, alias="type"),
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderApplicationService = Depends(get_order_service),
):
    items, total = await service.list_for_customer(
        current_user, pagination.skip, pagination.limit, status_filter, type_filter
    )
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get(
    "/business/{business_id}",
    summary="商家订单",
    response_model=ApiResponse[PaginatedData[OrderResponse]],
)
async def list_business_orders(
    business_id: int,
    pagination: PaginationParams = Depends(),
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    type_filter: Optional[OrderType] = Query(default=None, alias="type"),
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderApplicationService = Depends(get_order_service),
):
    items, total = await service.list_for_business(
        business_id, current_user, pagination.skip, pagination.limit, status_filter, type_filter
    )
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order(order_id, current_user)
    return success_response(data=order)


@router.patch("/{order_id}/status", summary="变更订单状态", response_model=ApiResponse[OrderResponse])
async def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: OrderApplicationService = Depends(get_order_service),
):
    """非法流转返回 409；取消已扣减库存的订单会回补库存"""
    order = await service.change_status(order_id, payload.status, current_user, payload.notes)
    return success_response(data=order, message="Order status updated")


@router.post(
    "/{order_id}/pay",
    summary="发起支付",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[PaymentIntentResult],
)
async def pay_order(
    order_id: int,
    payload: PayOrderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    intent = await payments.create_payment(order_id, current_user.id, payload.provider, payload.metadata)
    return success_response(data=intent, message="Payment initiated")


@router.post(
    "/{order_id}/confirm-manual-payment",
    summary="人工确认收款",
    response_model=ApiResponse[OrderResponse],
)
async def confirm_manual_payment(
    order_id: int,
    payload: Optional[ConfirmManualPaymentRequest] = None,
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    order = await payments.confirm_manual_payment(
        order_id,
        current_user.id,
        details=payload.details if payload else None,
        idempotency_key=idempotency_key,
    )
    return success_response(data=order, message="Manual payment confirmed")


@router.post("/{order_id}/refund", summary="退款", response_model=ApiResponse[OrderResponse])
async def refund_order(
    order_id: int,
    payload: Optional[RefundOrderRequest] = None,
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    """不传 amount 时退还剩余可退金额；相同 Idempotency-Key 的重复请求直接返回当前订单"""
    order = await payments.refund(
        order_id,
        current_user.id,
        amount=payload.amount if payload else None,
        reason=payload.reason if payload else None,
        idempotency_key=idempotency_key,
    )
    return success_response(data=order, message="Refund processed")


@router.get(
    "/{order_id}/transactions",
    summary="订单支付流水",
    response_model=ApiResponse[List[PaymentTransactionResponse]],
)
async def list_order_transactions(
    order_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    transactions = await payments.list_transactions(order_id, current_user.id)
    return success_response(data=transactions)
