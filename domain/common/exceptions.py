"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class NotAuthorizedException(BusinessException):
    def __init__(self, message: str = "Action not authorized", *, business_id: Optional[int] = None):
        details = {"business_id": business_id} if business_id is not None else None
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message=message,
            error_type="NotAuthorized",
            details=details,
        )


class BusinessNotFoundException(BusinessException):
    def __init__(self, business_id: int):
        super().__init__(
            code=BusinessCode.BUSINESS_NOT_FOUND,
            message="Business not found",
            error_type="BusinessNotFound",
            details={"business_id": business_id},
        )


# ---------------------------------------------------------------------------
# 库存
# ---------------------------------------------------------------------------


class VariantNotFoundException(BusinessException):
    def __init__(self, variant_id: int):
        super().__init__(
            code=BusinessCode.VARIANT_NOT_FOUND,
            message=f"Product variant {variant_id} not found",
            error_type="VariantNotFound",
            details={"variant_id": variant_id},
        )


class BatchNotFoundException(BusinessException):
    def __init__(self, batch_id: int):
        super().__init__(
            code=BusinessCode.BATCH_NOT_FOUND,
            message=f"Batch {batch_id} not found",
            error_type="BatchNotFound",
            details={"batch_id": batch_id},
        )


class BatchMismatchException(BusinessException):
    def __init__(self, batch_id: int, variant_id: int):
        super().__init__(
            code=BusinessCode.BATCH_MISMATCH,
            message=f"Batch {batch_id} does not belong to variant {variant_id}",
            error_type="BatchMismatch",
            details={"batch_id": batch_id, "variant_id": variant_id},
        )


class InsufficientStockException(BusinessException):
    def __init__(self, variant_id: int, available: int, requested: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_STOCK,
            message=f"Insufficient stock for variant {variant_id}: {available} available, {requested} requested",
            error_type="InsufficientStock",
            details={"variant_id": variant_id, "available": available, "requested": requested},
        )


class InsufficientBatchStockException(BusinessException):
    def __init__(self, batch_id: int, available: int, requested: int):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_BATCH_STOCK,
            message=f"Insufficient stock in batch {batch_id}: {available} available, {requested} requested",
            error_type="InsufficientBatchStock",
            details={"batch_id": batch_id, "available": available, "requested": requested},
        )


class InvalidMovementException(BusinessException):
    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.INVALID_MOVEMENT,
            message=message,
            error_type="InvalidMovement",
            details=details,
        )


class StockDesyncError(BusinessException):
    """缓存库存与批次数量不一致（数据完整性错误，不可静默处理）"""

    def __init__(self, variant_id: int, cached: int, remainder: int):
        super().__init__(
            code=BusinessCode.DATA_INTEGRITY_ERROR,
            message=f"Stock cache out of sync with batches for variant {variant_id}",
            error_type="StockDesyncError",
            details={"variant_id": variant_id, "cached_quantity": cached, "uncovered": remainder},
        )


# ---------------------------------------------------------------------------
# 订单
# ---------------------------------------------------------------------------


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message=f"Order {order_id} not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class IllegalTransitionException(BusinessException):
    def __init__(self, current: str, target: str, reason: Optional[str] = None):
        details = {"from": current, "to": target}
        if reason:
            details["reason"] = reason
        super().__init__(
            code=BusinessCode.ILLEGAL_TRANSITION,
            message=f"Cannot move order from {current} to {target}",
            error_type="IllegalTransition",
            details=details,
            field="status",
        )


class OrderNotPayableException(BusinessException):
    def __init__(self, order_id: int, status: str, reason: Optional[str] = None):
        details = {"order_id": order_id, "status": status}
        if reason:
            details["reason"] = reason
        super().__init__(
            code=BusinessCode.ORDER_NOT_PAYABLE,
            message=f"Order {order_id} cannot be paid or refunded in status {status}",
            error_type="OrderNotPayable",
            details=details,
        )


class NotOrderOwnerException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=BusinessCode.NOT_ORDER_OWNER,
            message="Only the customer of the order can pay for it",
            error_type="NotOrderOwner",
            details={"order_id": order_id},
        )


# ---------------------------------------------------------------------------
# 支付流水
# ---------------------------------------------------------------------------


class UnknownTransactionException(BusinessException):
    def __init__(self, provider: str, provider_transaction_id: str):
        super().__init__(
            code=BusinessCode.UNKNOWN_TRANSACTION,
            message="No payment transaction matches this provider reference",
            error_type="UnknownTransaction",
            details={"provider": provider, "provider_transaction_id": provider_transaction_id},
        )


class NoPendingManualTransactionException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=BusinessCode.NO_PENDING_MANUAL_TRANSACTION,
            message=f"Order {order_id} has no pending manual payment",
            error_type="NoPendingManualTransaction",
            details={"order_id": order_id},
        )


class RefundExceedsBalanceException(BusinessException):
    def __init__(self, requested: Decimal, refundable: Decimal):
        super().__init__(
            code=BusinessCode.REFUND_EXCEEDS_BALANCE,
            message=f"Refund amount {requested} exceeds refundable balance {refundable}",
            error_type="RefundExceedsBalance",
            details={"requested": str(requested), "refundable": str(refundable)},
            field="amount",
        )


class NoSettledPaymentException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=BusinessCode.NO_SETTLED_PAYMENT,
            message=f"Order {order_id} has no successful payment to refund",
            error_type="NoSettledPayment",
            details={"order_id": order_id},
        )


# ---------------------------------------------------------------------------
# 钱包
# ---------------------------------------------------------------------------


class WalletNotFoundException(BusinessException):
    def __init__(self, wallet_id: Optional[int] = None, *, user_id: Optional[int] = None):
        details = {}
        if wallet_id is not None:
            details["wallet_id"] = wallet_id
        if user_id is not None:
            details["user_id"] = user_id
        super().__init__(
            code=BusinessCode.WALLET_NOT_FOUND,
            message="Wallet not found",
            error_type="WalletNotFound",
            details=details or None,
        )


class InsufficientBalanceException(BusinessException):
    def __init__(self, wallet_id: int, balance: Decimal, requested: Decimal):
        super().__init__(
            code=BusinessCode.INSUFFICIENT_BALANCE,
            message="Insufficient wallet balance",
            error_type="InsufficientBalance",
            details={"wallet_id": wallet_id, "balance": str(balance), "requested": str(requested)},
            field="amount",
        )


class InvalidTransferException(BusinessException):
    def __init__(self, message: str):
        super().__init__(
            code=BusinessCode.INVALID_TRANSFER,
            message=message,
            error_type="InvalidTransfer",
        )
