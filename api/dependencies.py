"""
API依赖项 - 认证与应用服务装配
"""
from typing import Callable, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from application.dto import CurrentUser
from application.ports.notifier import Notifier
from application.ports.payment_gateway import ProviderLookup
from application.services.inventory_service import InventoryApplicationService
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentGatewayService
from application.services.token_service import TokenService
from application.services.wallet_service import WalletApplicationService
from core.exceptions import UnauthorizedException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.payments import get_registry
from infrastructure.notifications import LoggingNotifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)

_notifier = LoggingNotifier()


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_payment_registry() -> ProviderLookup:
    return get_registry()


def get_notifier() -> Notifier:
    return _notifier


def get_token_service() -> TokenService:
    return TokenService()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    tokens: TokenService = Depends(get_token_service),
) -> CurrentUser:
    """解析 Bearer Token 得到当前调用者"""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Missing bearer token")
    user_id = await tokens.verify_access_token(credentials.credentials)
    if user_id is None:
        raise UnauthorizedException("Invalid authentication credentials")
    return CurrentUser(id=user_id)


def get_idempotency_key(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=255),
) -> Optional[str]:
    return idempotency_key or None


def get_order_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    notifier: Notifier = Depends(get_notifier),
) -> OrderApplicationService:
    return OrderApplicationService(uow_factory=uow_factory, notifier=notifier)


def get_inventory_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    notifier: Notifier = Depends(get_notifier),
) -> InventoryApplicationService:
    return InventoryApplicationService(uow_factory=uow_factory, notifier=notifier)


def get_payment_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    providers: ProviderLookup = Depends(get_payment_registry),
    notifier: Notifier = Depends(get_notifier),
) -> PaymentGatewayService:
    return PaymentGatewayService(uow_factory=uow_factory, providers=providers, notifier=notifier)


def get_wallet_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    payments: PaymentGatewayService = Depends(get_payment_service),
    notifier: Notifier = Depends(get_notifier),
) -> WalletApplicationService:
    return WalletApplicationService(uow_factory=uow_factory, payments=payments, notifier=notifier)
