"""
Application service orchestrating payment use-cases.

This class depends only on the application provider port and DTOs. Provider
implementations come from infrastructure and are injected from the
composition root (API), keeping dependencies one-way.

Every state change happens inside one unit of work: the provider call, the
order stamp and the PaymentTransaction row either all persist or none do.
"""
from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any, Callable, List, Mapping, Optional, Tuple

from application.dtos.payments import (
    CreateIntent,
    ManualConfirmation,
    PaymentIntentResult,
    PaymentTransactionResponse,
    RefundRequest,
    WebhookEvent,
    WebhookOutcome,
)
from application.dtos.orders import OrderResponse
from application.ports.notifier import Notifier
from application.ports.payment_gateway import PaymentProvider, ProviderLookup
from application.services.access import require_manager
from application.services.notify import dispatch_events
from application.services.order_service import build_order_domain, collect_events
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    NotAuthorizedException,
    NotOrderOwnerException,
    NoPendingManualTransactionException,
    NoSettledPaymentException,
    OrderNotFoundException,
    OrderNotPayableException,
    RefundExceedsBalanceException,
    UnknownTransactionException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import SYSTEM_ACTOR, Order, OrderStatus
from domain.order.service import OrderDomainService
from domain.payment.entity import PaymentTransaction, TransactionKind, TransactionStatus
from domain.payment.events import PaymentFailed, PaymentRefunded, PaymentSucceeded
from domain.payment.repository import TransactionQuery
from domain.wallet.service import WalletDomainService
from shared.codes import BusinessCode


logger = get_logger(__name__)

MANUAL_PROVIDER = "manual"
DEPOSIT_CONTEXT = "WALLET_DEPOSIT"

# Terminal transaction status -> order transition forwarded on first arrival
_ORDER_TRANSITIONS = {
    TransactionStatus.SUCCESS: OrderStatus.PAID,
    TransactionStatus.FAILED: OrderStatus.PAYMENT_FAILED,
    TransactionStatus.REFUNDED: OrderStatus.REFUNDED,
}

# Failures that point at broken data rather than a bad request
_INTEGRITY_ERROR_TYPES = {"UnknownTransaction", "StockDesyncError"}

_CENT = Decimal("0.01")


def _derive_key(*parts: Any) -> str:
    # Stable, reproducible key derived from business identifiers (no timestamp)
    base = "|".join(str(p) for p in parts)
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _ensure_idempotency_key(order: Order, provider_id: str, attempt: int) -> str:
    return _derive_key("create", order.id, order.total_amount, order.currency, provider_id.lower(), attempt)


def _refund_status(raw: str) -> TransactionStatus:
    try:
        status = TransactionStatus(raw)
    except ValueError:
        return TransactionStatus.PENDING_REFUND
    if status == TransactionStatus.SUCCESS:
        return TransactionStatus.REFUNDED
    if status == TransactionStatus.PENDING:
        return TransactionStatus.PENDING_REFUND
    return status


class PaymentGatewayService:
    """
    Payment gateway use-cases.

    - create_payment: provider intent + order stamp + PENDING transaction
    - process_webhook: verified, idempotent reconciliation of provider events
    - confirm_manual_payment / refund: staff-driven settlement
    """

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        providers: ProviderLookup,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._providers = providers
        self._notifier = notifier

    def provider(self, provider_id: str) -> PaymentProvider:
        """Resolve a provider or raise UnsupportedProvider."""
        return self._providers.get(provider_id)

    def list_providers(self) -> List[str]:
        return list(self._providers.ids())

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------
    async def create_payment(
        self,
        order_id: int,
        user_id: int,
        provider_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> PaymentIntentResult:
        provider = self.provider(provider_id)
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_id(order_id, for_update=True)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.customer_id != user_id:
                raise NotOrderOwnerException(order_id)
            if not order.is_payable():
                raise OrderNotPayableException(order_id, order.status.value)

            repo = uow.payment_transaction_repository
            attempt = sum(
                1 for tx in await repo.list_by_order(order.id) if tx.kind == TransactionKind.PAYMENT
            )
            key = _ensure_idempotency_key(order, provider.provider, attempt)
            request_meta = dict(metadata or {})
            logger.info(
                "payment_create_request",
                order_id=order.id,
                provider=provider.provider,
                idempotency_key=key,
            )
            intent = await provider.create_intent(
                CreateIntent(
                    order_id=order.id,
                    order_number=order.order_number,
                    amount=order.total_amount,
                    currency=order.currency,
                    idempotency_key=key,
                    metadata=request_meta,
                )
            )

            # Provider-side idempotency may hand back an intent we already recorded
            transaction = await repo.get_by_provider_ref(provider.provider, intent.intent_id)
            if transaction is None:
                order.stamp_payment(provider.provider, intent.intent_id)
                await uow.order_repository.update(order)
                transaction = await repo.create(
                    PaymentTransaction(
                        id=None,
                        order_id=order.id,
                        provider=provider.provider,
                        provider_transaction_id=intent.intent_id,
                        amount=order.total_amount,
                        currency=order.currency,
                        status=TransactionStatus.PENDING,
                        kind=TransactionKind.PAYMENT,
                        metadata={**request_meta, "idempotency_key": key, "intent_status": intent.status},
                    )
                )
            else:
                logger.info("payment_intent_replayed", order_id=order.id, intent_id=intent.intent_id)

        logger.info(
            "payment_create_response",
            order_id=order.id,
            provider=intent.provider,
            status=intent.status,
            transaction_id=transaction.id,
        )
        return PaymentIntentResult(
            order_id=order.id,
            transaction_id=transaction.id,
            provider=provider.provider,
            intent_id=intent.intent_id,
            status=intent.status,
            amount=transaction.amount,
            currency=transaction.currency,
            client_secret_or_params=intent.client_secret_or_params,
        )

    # ------------------------------------------------------------------
    # Settlement helpers
    # ------------------------------------------------------------------
    async def _settle(
        self,
        uow: AbstractUnitOfWork,
        orders: OrderDomainService,
        wallets: WalletDomainService,
        order: Order,
        target: OrderStatus,
        triggered_by: str,
        transaction: PaymentTransaction,
        notes: Optional[str] = None,
    ) -> Order:
        """Order transition plus the wallet-deposit join point, in the caller's unit."""
        order = await orders.apply_transition(order, target, triggered_by, notes, transaction.id)
        pending = await uow.wallet_transaction_repository.find_pending_deposit_for_order(order.id, for_update=True)
        if pending is None:
            if target == OrderStatus.PAID and transaction.metadata.get("context") == DEPOSIT_CONTEXT:
                logger.error(
                    "wallet_deposit_unmatched",
                    order_id=order.id,
                    transaction_id=transaction.id,
                )
            return order
        if target == OrderStatus.PAID:
            await wallets.credit(
                pending.wallet_id,
                pending.amount,
                f"Deposit via {transaction.provider}",
                related_payment_transaction_id=transaction.id,
                pending_transaction=pending,
            )
        elif target == OrderStatus.PAYMENT_FAILED:
            await wallets.fail_pending(pending.id)
        return order

    @staticmethod
    def _wallets(uow: AbstractUnitOfWork) -> WalletDomainService:
        return WalletDomainService(
            uow.wallet_repository,
            uow.wallet_transaction_repository,
            default_currency=settings.commerce.default_currency,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    async def process_webhook(
        self, provider_id: str, body: bytes, headers: Mapping[str, Any]
    ) -> WebhookOutcome:
        """
        Verify and apply a provider notification.

        Domain failures are reported in the outcome instead of raised, so the
        endpoint can acknowledge permanently unprocessable events; the unit of
        work has rolled back by then and nothing was written.
        """
        try:
            provider = self.provider(provider_id)
            event = provider.parse_webhook(headers, body)
        except BusinessException as exc:
            logger.warning(
                "payment_webhook_rejected",
                provider=provider_id,
                error_type=exc.error_type,
                message=exc.message,
            )
            return WebhookOutcome(processed=False, provider=provider_id, error=exc.error_type)

        logger.info(
            "payment_webhook_parsed",
            provider=event.provider,
            event_type=event.event_type,
            event_id=event.event_id,
            provider_transaction_id=event.provider_transaction_id,
            status=event.status,
        )
        try:
            async with self._uow_factory() as uow:
                outcome, events = await self._apply_webhook(uow, event)
        except BusinessException as exc:
            log = logger.error if exc.error_type in _INTEGRITY_ERROR_TYPES else logger.warning
            log(
                "payment_webhook_failed",
                provider=event.provider,
                event_id=event.event_id,
                provider_transaction_id=event.provider_transaction_id,
                error_type=exc.error_type,
                message=exc.message,
            )
            return WebhookOutcome(
                processed=False,
                provider=event.provider,
                order_id=event.order_id,
                error=exc.error_type,
            )

        await dispatch_events(self._notifier, events)
        return outcome

    async def _apply_webhook(
        self, uow: AbstractUnitOfWork, event: WebhookEvent
    ) -> Tuple[WebhookOutcome, List]:
        repo = uow.payment_transaction_repository
        # Same lock order as the API paths: order row first, then the transaction
        probe = await repo.get_by_provider_ref(event.provider, event.provider_transaction_id)
        if probe is None:
            raise UnknownTransactionException(event.provider, event.provider_transaction_id)
        orders = build_order_domain(uow)
        wallets = self._wallets(uow)
        order = await orders.get_order(probe.order_id, for_update=True)
        transaction = await repo.get_by_provider_ref(
            event.provider, event.provider_transaction_id, for_update=True
        )

        try:
            target = TransactionStatus(event.status)
        except ValueError:
            raise DomainValidationException(f"Unknown transaction status: {event.status}", field="status")

        changed = transaction.apply_status(
            target,
            {"event_id": event.event_id, "event_type": event.event_type},
        )
        if not changed:
            logger.info(
                "payment_webhook_duplicate",
                provider=event.provider,
                event_id=event.event_id,
                transaction_id=transaction.id,
                status=transaction.status.value,
            )
            return (
                WebhookOutcome(
                    processed=True,
                    duplicate=True,
                    provider=event.provider,
                    order_id=order.id,
                    transaction_status=transaction.status.value,
                    order_status=order.status.value,
                ),
                [],
            )

        transaction = await repo.update(transaction)
        domain_events: List = []

        if transaction.kind == TransactionKind.REFUND:
            if target == TransactionStatus.FAILED:
                logger.warning(
                    "refund_failed_at_provider",
                    order_id=order.id,
                    transaction_id=transaction.id,
                    provider=event.provider,
                )
            return (
                WebhookOutcome(
                    processed=True,
                    provider=event.provider,
                    order_id=order.id,
                    transaction_status=transaction.status.value,
                    order_status=order.status.value,
                ),
                domain_events,
            )

        next_status = _ORDER_TRANSITIONS.get(target)
        if target == TransactionStatus.REFUNDED and await repo.sum_refunded(order.id) > 0:
            # Refunds issued through the API already moved the order
            next_status = None
        if next_status is not None:
            if order.can_transition_to(next_status):
                order = await self._settle(
                    uow, orders, wallets, order, next_status, SYSTEM_ACTOR, transaction,
                    notes=f"{event.provider} webhook {event.event_type}",
                )
            else:
                logger.warning(
                    "webhook_order_transition_skipped",
                    order_id=order.id,
                    order_status=order.status.value,
                    target=next_status.value,
                )
                if target == TransactionStatus.SUCCESS:
                    # Money was captured for an order that can no longer be paid
                    transaction.metadata = {**transaction.metadata, "requires_refund": True}
                    transaction = await repo.update(transaction)
                    logger.error(
                        "payment_captured_for_closed_order",
                        order_id=order.id,
                        order_status=order.status.value,
                        transaction_id=transaction.id,
                        provider=event.provider,
                        amount=str(transaction.amount),
                    )

        if target == TransactionStatus.SUCCESS:
            domain_events.append(
                PaymentSucceeded(
                    order_id=order.id,
                    provider=event.provider,
                    provider_transaction_id=transaction.provider_transaction_id,
                    amount=str(transaction.amount),
                )
            )
        elif target == TransactionStatus.FAILED:
            domain_events.append(
                PaymentFailed(
                    order_id=order.id,
                    provider=event.provider,
                    provider_transaction_id=transaction.provider_transaction_id,
                    reason=event.event_type,
                )
            )
        elif target == TransactionStatus.REFUNDED:
            domain_events.append(
                PaymentRefunded(
                    order_id=order.id,
                    provider=event.provider,
                    provider_transaction_id=transaction.provider_transaction_id,
                    amount=str(transaction.amount),
                    full=True,
                )
            )
        domain_events.extend(collect_events(orders))
        domain_events.extend(wallets.get_domain_events())

        logger.info(
            "payment_webhook_applied",
            order_id=order.id,
            transaction_id=transaction.id,
            transaction_status=transaction.status.value,
            order_status=order.status.value,
        )
        return (
            WebhookOutcome(
                processed=True,
                provider=event.provider,
                order_id=order.id,
                transaction_status=transaction.status.value,
                order_status=order.status.value,
            ),
            domain_events,
        )

    # ------------------------------------------------------------------
    # Manual confirmation
    # ------------------------------------------------------------------
    async def confirm_manual_payment(
        self,
        order_id: int,
        user_id: int,
        details: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderResponse:
        async with self._uow_factory() as uow:
            orders = build_order_domain(uow)
            repo = uow.payment_transaction_repository
            if idempotency_key:
                replayed = await self._replayed(uow, orders, idempotency_key, order_id, TransactionKind.PAYMENT)
                if replayed is not None:
                    return OrderResponse.from_entity(replayed)

            order = await orders.get_order(order_id, for_update=True)
            await require_manager(uow.business_directory, user_id, order.business_id)
            if not order.is_payable() or order.payment_method != MANUAL_PROVIDER:
                raise OrderNotPayableException(order_id, order.status.value, reason="no pending manual payment method")

            transaction = await repo.latest_pending_manual(order_id, for_update=True)
            if transaction is None:
                raise NoPendingManualTransactionException(order_id)

            confirmation = await self.provider(MANUAL_PROVIDER).confirm_manual(
                ManualConfirmation(
                    order_id=order_id,
                    provider_transaction_id=transaction.provider_transaction_id,
                    confirmed_by=user_id,
                    details=details,
                )
            )
            transaction.mark_confirmed(confirmation, idempotency_key)
            transaction = await repo.update(transaction)
            wallets = self._wallets(uow)
            order = await self._settle(
                uow, orders, wallets, order, OrderStatus.PAID, str(user_id), transaction,
                notes="manual payment confirmed",
            )
            events = [
                PaymentSucceeded(
                    order_id=order.id,
                    provider=MANUAL_PROVIDER,
                    provider_transaction_id=transaction.provider_transaction_id,
                    amount=str(transaction.amount),
                ),
                *collect_events(orders),
                *wallets.get_domain_events(),
            ]

        logger.info("manual_payment_confirmed", order_id=order.id, transaction_id=transaction.id, confirmed_by=user_id)
        await dispatch_events(self._notifier, events)
        return OrderResponse.from_entity(order)

    @staticmethod
    async def _replayed(
        uow: AbstractUnitOfWork,
        orders: OrderDomainService,
        key: str,
        order_id: int,
        kind: TransactionKind,
    ) -> Optional[Order]:
        """Return the order when ``key`` already settled this operation; reject any other reuse."""
        previous = await uow.payment_transaction_repository.get_by_idempotency_key(key)
        if previous is None:
            return None
        if previous.order_id != order_id or previous.kind != kind:
            raise BusinessException(
                code=BusinessCode.PARAM_VALIDATION_ERROR,
                message="Idempotency-Key already used for another operation",
                error_type="IdempotencyKeyReused",
                details={"order_id": order_id, "operation": kind.value},
                field="Idempotency-Key",
            )
        logger.info("idempotent_replay", order_id=order_id, transaction_id=previous.id, operation=kind.value)
        return await orders.get_order(order_id)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------
    async def refund(
        self,
        order_id: int,
        user_id: int,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderResponse:
        async with self._uow_factory() as uow:
            orders = build_order_domain(uow)
            repo = uow.payment_transaction_repository
            if idempotency_key:
                replayed = await self._replayed(uow, orders, idempotency_key, order_id, TransactionKind.REFUND)
                if replayed is not None:
                    return OrderResponse.from_entity(replayed)

            order = await orders.get_order(order_id, for_update=True)
            await require_manager(uow.business_directory, user_id, order.business_id)
            if not order.is_refundable():
                raise OrderNotPayableException(order_id, order.status.value, reason="only paid orders can be refunded")

            payment = await repo.last_successful_payment(order_id)
            if payment is None:
                raise NoSettledPaymentException(order_id)

            already = await repo.sum_refunded(order_id)
            refundable = (order.total_amount - already).quantize(_CENT)
            requested = (amount if amount is not None else refundable).quantize(_CENT)
            if requested <= 0 or requested > refundable:
                raise RefundExceedsBalanceException(requested, refundable)

            provider = self.provider(payment.provider)
            key = idempotency_key or _derive_key("refund", order.id, requested, already, payment.provider)
            refund_meta: dict[str, Any] = {}
            if payment.metadata.get("phone_number"):
                refund_meta["phone_number"] = payment.metadata["phone_number"]
            logger.info(
                "payment_refund_request",
                order_id=order.id,
                provider=payment.provider,
                amount=str(requested),
                idempotency_key=key,
            )
            result = await provider.refund(
                RefundRequest(
                    order_id=order.id,
                    amount=requested,
                    currency=payment.currency,
                    provider_transaction_id=payment.provider_transaction_id,
                    reason=reason,
                    idempotency_key=key,
                    metadata=refund_meta,
                )
            )
            status = _refund_status(result.status)
            if status == TransactionStatus.FAILED:
                raise BusinessException(
                    code=BusinessCode.BUSINESS_ERROR,
                    message="Refund was rejected by the provider",
                    error_type="RefundRejected",
                    details={"provider": payment.provider, "refund_id": result.refund_id},
                )
            refund_tx = await repo.create(
                PaymentTransaction(
                    id=None,
                    order_id=order.id,
                    provider=payment.provider,
                    provider_transaction_id=result.refund_id,
                    amount=requested,
                    currency=payment.currency,
                    status=status,
                    kind=TransactionKind.REFUND,
                    idempotency_key=key,
                    metadata={"refunded_transaction_id": payment.id, "reason": reason, "requested_by": user_id},
                )
            )

            full = already + requested >= order.total_amount
            if full and payment.status == TransactionStatus.SUCCESS:
                payment.apply_status(TransactionStatus.REFUNDED, {"refund_transaction_id": refund_tx.id})
                await repo.update(payment)
            target = OrderStatus.REFUNDED if full else OrderStatus.PARTIALLY_REFUNDED
            order = await orders.apply_transition(order, target, str(user_id), reason, refund_tx.id)
            events = [
                PaymentRefunded(
                    order_id=order.id,
                    provider=payment.provider,
                    provider_transaction_id=result.refund_id,
                    amount=str(requested),
                    full=full,
                ),
                *collect_events(orders),
            ]

        logger.info(
            "payment_refund_recorded",
            order_id=order.id,
            refund_transaction_id=refund_tx.id,
            status=status.value,
            order_status=order.status.value,
        )
        await dispatch_events(self._notifier, events)
        return OrderResponse.from_entity(order)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def list_transactions(self, order_id: int, user_id: int) -> List[PaymentTransactionResponse]:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.customer_id != user_id and not await uow.business_directory.can_manage(
                user_id, order.business_id
            ):
                raise NotAuthorizedException("You are not allowed to view this order's transactions")
            transactions = await uow.payment_transaction_repository.list_by_order(order_id)
            return [PaymentTransactionResponse.from_entity(tx) for tx in transactions]

    async def list_my_transactions(
        self,
        user_id: int,
        query: Optional[TransactionQuery] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[PaymentTransactionResponse], int]:
        """Transactions of every order the user placed, newest first."""
        query = query or TransactionQuery()
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.payment_transaction_repository
            items = await repo.list_for_customer(user_id, query, skip, limit)
            total = await repo.count_for_customer(user_id, query)
            return [PaymentTransactionResponse.from_entity(tx) for tx in items], int(total)

    async def list_business_transactions(
        self,
        business_id: int,
        user_id: int,
        query: Optional[TransactionQuery] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[PaymentTransactionResponse], int]:
        """Transactions of the business's sales; owner or admin only."""
        query = query or TransactionQuery()
        async with self._uow_factory(readonly=True) as uow:
            await require_manager(uow.business_directory, user_id, business_id)
            repo = uow.payment_transaction_repository
            items = await repo.list_for_business(business_id, query, skip, limit)
            total = await repo.count_for_business(business_id, query)
            return [PaymentTransactionResponse.from_entity(tx) for tx in items], int(total)
