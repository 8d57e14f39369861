"""
订单应用服务（application/services）- 编排 OrderEngine 与 StockLedger
"""
from typing import Callable, List, Optional, Tuple

from application.dto import CurrentUser
from application.dtos.orders import CreateOrderRequest, OrderResponse
from application.ports.notifier import Notifier
from application.services.access import require_business, require_manager
from application.services.notify import dispatch_events
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import IllegalTransitionException, NotAuthorizedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.service import StockLedger
from domain.order.entity import PAYMENT_OWNED_STATUSES, Order, OrderStatus, OrderType
from domain.order.service import OrderDomainService, OrderDraft
from domain.wallet.service import WalletDomainService


logger = get_logger(__name__)

# 顾客本人允许执行的状态转换
CUSTOMER_TRANSITIONS = frozenset({
    (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED),
    (OrderStatus.PAYMENT_FAILED, OrderStatus.PENDING_PAYMENT),
    (OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
})


def build_order_domain(uow: AbstractUnitOfWork) -> OrderDomainService:
    """在给定的 Unit of Work 上装配订单领域服务"""
    ledger = StockLedger(uow.variant_repository, uow.batch_repository, uow.movement_repository)
    return OrderDomainService(
        uow.order_repository,
        uow.variant_repository,
        ledger,
        order_number_prefix=settings.commerce.order_number_prefix,
    )


def collect_events(domain: OrderDomainService) -> List:
    return [*domain.get_domain_events(), *domain.stock_ledger.get_domain_events()]


class OrderApplicationService:
    """订单应用服务 - 权限校验 + 事务边界 + 事件发布"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], notifier: Optional[Notifier] = None):
        self._uow_factory = uow_factory
        self._notifier = notifier

    async def create_order(self, data: CreateOrderRequest, current_user: CurrentUser) -> OrderResponse:
        """
        创建订单（一个事务内完成校验、价格快照、库存扣减与初始状态历史）

        - SALE / RESERVATION：卖方为 ``business_id``
        - PURCHASE：卖方为供货商，``business_id`` 为采购方，需要操作人管理采购方商家
        """
        async with self._uow_factory() as uow:
            domain = build_order_domain(uow)
            if data.type == OrderType.PURCHASE:
                await require_manager(uow.business_directory, current_user.id, data.business_id)
                seller = await require_business(uow.business_directory, data.supplier_business_id)
                purchasing_business_id = data.business_id
                employee_id = current_user.id
            else:
                seller = await require_business(uow.business_directory, data.business_id)
                purchasing_business_id = None
                employee_id = None

            draft = OrderDraft(
                type=data.type,
                business_id=seller.id,
                currency=seller.currency_code,
                lines=[(line.variant_id, line.quantity) for line in data.lines],
                purchasing_business_id=purchasing_business_id,
                employee_id=employee_id,
                table_id=data.table_id if data.type == OrderType.RESERVATION else None,
                reservation_date=data.reservation_date if data.type == OrderType.RESERVATION else None,
                notes=data.notes,
            )
            order = await domain.create_order(draft, current_user.id)
            events = collect_events(domain)

        logger.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            order_type=order.type.value,
            total_amount=str(order.total_amount),
        )
        await dispatch_events(self._notifier, events)
        return OrderResponse.from_entity(order)

    async def change_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        current_user: CurrentUser,
        notes: Optional[str] = None,
    ) -> OrderResponse:
        """
        手动推进订单状态

        - 商家所有者/管理员可推进履约状态；顾客只能取消待支付订单或对支付失败的订单发起重试
        - 支付相关状态只能由支付网关推进（回调、人工确认收款、退款），这里一律拒绝
        - 取消钱包充值订单时，同一事务内把待完成的充值流水标记为失败
        """
        async with self._uow_factory() as uow:
            domain = build_order_domain(uow)
            order = await domain.get_order(order_id, for_update=True)
            if not await uow.business_directory.can_manage(current_user.id, order.business_id):
                own_order = order.customer_id == current_user.id
                customer_move = (order.status, new_status) in CUSTOMER_TRANSITIONS
                if not (own_order and customer_move):
                    raise NotAuthorizedException(
                        "Only the business owner or an admin can change this order's status",
                        business_id=order.business_id,
                    )
            if new_status in PAYMENT_OWNED_STATUSES:
                raise IllegalTransitionException(
                    order.status.value,
                    new_status.value,
                    reason="payment statuses are set by the payment gateway",
                )
            order = await domain.apply_transition(order, new_status, str(current_user.id), notes)
            if new_status == OrderStatus.CANCELLED:
                pending = await uow.wallet_transaction_repository.find_pending_deposit_for_order(
                    order.id, for_update=True
                )
                if pending is not None:
                    wallets = WalletDomainService(uow.wallet_repository, uow.wallet_transaction_repository)
                    await wallets.fail_pending(pending.id)
                    logger.info("wallet_deposit_cancelled", order_id=order.id, wallet_transaction_id=pending.id)
            events = collect_events(domain)

        await dispatch_events(self._notifier, events)
        return OrderResponse.from_entity(order)

    async def _ensure_visible(self, uow: AbstractUnitOfWork, order: Order, user_id: int) -> None:
        if order.customer_id == user_id:
            return
        if await uow.business_directory.can_manage(user_id, order.business_id):
            return
        if order.purchasing_business_id is not None and await uow.business_directory.can_manage(
            user_id, order.purchasing_business_id
        ):
            return
        raise NotAuthorizedException("You are not allowed to view this order")

    async def get_order(self, order_id: int, current_user: CurrentUser) -> OrderResponse:
        async with self._uow_factory(readonly=True) as uow:
            domain = build_order_domain(uow)
            order = await domain.get_order(order_id)
            await self._ensure_visible(uow, order, current_user.id)
            return OrderResponse.from_entity(order)

    async def list_for_customer(
        self,
        current_user: CurrentUser,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> Tuple[List[OrderResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_for_customer(current_user.id, skip, limit, status, order_type)
            total = await uow.order_repository.count_for_customer(current_user.id, status, order_type)
            return [OrderResponse.from_entity(o) for o in orders], int(total)

    async def list_for_business(
        self,
        business_id: int,
        current_user: CurrentUser,
        skip: int = 0,
        limit: int = 100,
        status: Optional[OrderStatus] = None,
        order_type: Optional[OrderType] = None,
    ) -> Tuple[List[OrderResponse], int]:
        async with self._uow_factory(readonly=True) as uow:
            await require_manager(uow.business_directory, current_user.id, business_id)
            orders = await uow.order_repository.list_for_business(business_id, skip, limit, status, order_type)
            total = await uow.order_repository.count_for_business(business_id, status, order_type)
            return [OrderResponse.from_entity(o) for o in orders], int(total)
