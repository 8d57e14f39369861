"""
Payments API routes.

Provider webhooks land here. The endpoint always acknowledges with HTTP 200 so
providers do not retry events we have already judged; the outcome body says
whether the event was applied, ignored as a duplicate, or rejected.
"""
from __future__ import annotations

import ipaddress
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_current_user, get_payment_service
from api.middleware import get_client_ip
from application.dto import CurrentUser, PaginationParams
from application.dtos.payments import PaymentTransactionResponse, WebhookOutcome
from application.services.payment_service import PaymentGatewayService
from core.logging_config import get_logger
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from core.settings import payment_settings
from domain.payment.entity import TransactionKind, TransactionStatus
from domain.payment.repository import TransactionQuery


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ip_permitted(remote_ip: str) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


@router.get("/providers", summary="List enabled payment providers")
async def list_providers(payments: PaymentGatewayService = Depends(get_payment_service)):
    return success_response(data={"providers": payments.list_providers()})


def transaction_query(
    status: Optional[TransactionStatus] = Query(default=None),
    kind: Optional[TransactionKind] = Query(default=None),
    provider: Optional[str] = Query(default=None, max_length=32),
    order_id: Optional[int] = Query(default=None, ge=1),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    min_amount: Optional[Decimal] = Query(default=None, ge=0),
    max_amount: Optional[Decimal] = Query(default=None, ge=0),
) -> TransactionQuery:
    return TransactionQuery(
        status=status,
        kind=kind,
        provider=provider,
        order_id=order_id,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
    )


@router.get(
    "/my-transactions",
    summary="Payment transactions of my orders",
    response_model=ApiResponse[PaginatedData[PaymentTransactionResponse]],
)
async def list_my_transactions(
    pagination: PaginationParams = Depends(),
    query: TransactionQuery = Depends(transaction_query),
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    items, total = await payments.list_my_transactions(current_user.id, query, pagination.skip, pagination.limit)
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.get(
    "/businesses/{business_id}/transactions",
    summary="Payment transactions of a business",
    response_model=ApiResponse[PaginatedData[PaymentTransactionResponse]],
)
async def list_business_transactions(
    business_id: int,
    pagination: PaginationParams = Depends(),
    query: TransactionQuery = Depends(transaction_query),
    current_user: CurrentUser = Depends(get_current_user),
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    items, total = await payments.list_business_transactions(
        business_id, current_user.id, query, pagination.skip, pagination.limit
    )
    return paginated_response(items=items, total=total, page=pagination.page, size=pagination.size)


@router.post("/{provider}/webhook", summary="Provider webhook")
async def payments_webhook(
    provider: str,
    request: Request,
    payments: PaymentGatewayService = Depends(get_payment_service),
):
    remote_ip = get_client_ip(request)
    if not _ip_permitted(remote_ip):
        logger.warning("webhook_ip_not_allowed", provider=provider, remote_ip=remote_ip)
        outcome = WebhookOutcome(processed=False, provider=provider, error="IpNotAllowed")
        return success_response(data=outcome, message="Webhook ignored")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    outcome = await payments.process_webhook(provider, raw_body, headers)
    message = "Webhook processed" if outcome.processed else "Webhook ignored"
    return success_response(data=outcome, message=message)
