"""
钱包API路由
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_current_user, get_wallet_service
from application.dto import CurrentUser, PaginationParams
from application.dtos.wallet import (
    DepositRequest,
    DepositResponse,
    TransferRequest,
    WalletResponse,
    WalletTransactionResponse,
    WithdrawalRequest,
)
from application.services.wallet_service import WalletApplicationService
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.wallet.entity import WalletTransactionStatus, WalletTransactionType

router = APIRouter(
    prefix="/wallet",
    tags=["钱包"]
)


@router.get("", summary="我的钱包", response_model=ApiResponse[WalletResponse])
async def get_wallet(
    current_user: CurrentUser = Depends(get_current_user),
    service: WalletApplicationService = Depends(get_wallet_service),
):
    wallet = await service.get_wallet(current_user)
    return success_response(data=wallet)


@router.post(
    "/deposits",
    summary="充值",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[DepositResponse],
)
async def deposit(
    payload: DepositRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: WalletApplicationService = Depends(get_wallet_service),
):
    """余额在支付渠道确认成功后才会增加"""
    result = await service.initiate_deposit(current_user, payload.amount, payload.provider, payload.metadata)
    return success_response(data=result, message="Deposit initiated")


@router.post("/withdrawals", summary="提现", response_model=ApiResponse[WalletResponse])
async def withdraw(
    payload: WithdrawalRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: WalletApplicationService = Depends(get_wallet_service),
):
    wallet = await service.request_withdrawal(current_user, payload.amount, payload.method, payload.destination)
    return success_response(data=wallet, message="Withdrawal requested")


@router.post("/transfers", summary="转账", response_model=ApiResponse[WalletResponse])
async def transfer(
    payload: TransferRequest,
    current_user: CurrentUser = Depends(get_current_user),
    service: WalletApplicationService = Depends(get_wallet_service),
):
    wallet = await service.transfer(current_user, payload.recipient_user_id, payload.amount, payload.description)
    return success_response(data=wallet, message="Transfer completed")


@router.get(
    "/transactions",
    summary="钱包流水",
    response_model=ApiResponse[PaginatedData[WalletTransactionResponse]],
)
async def list_transactions(
    pagination: PaginationParams = Depends(),
    type_filter: Optional[WalletTransactionType] = Query(default=None, alias="type"),
    status_filter: Optional[WalletTransactionStatus] = Query(default=None, alias="status"),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=100),
    current_user: CurrentUser = Depends(get_current_user),
    service: WalletApplicationService = Depends(get_wallet_service),
):
    items, total = await service.list_transactions(
        current_user,
        pagination.skip,
        pagination.limit,
        type_filter,
        status_filter,
        date_from,
        date_to,
        search,
    )
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)
