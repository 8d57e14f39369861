"""
Shared business codes used across layers (Domain/Core/API).

This package exposes BusinessCode at `shared.codes` and keeps
payment-provider codes under `shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_MISSING = 10001
    PARAM_TYPE_ERROR = 10002
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    TOKEN_INVALID = 20004
    TOKEN_EXPIRED = 20005
    NOT_FOUND = 20006  # Generic resource not found

    # Inventory (21xxx)
    VARIANT_NOT_FOUND = 21001
    BATCH_NOT_FOUND = 21002
    BATCH_MISMATCH = 21003
    INSUFFICIENT_STOCK = 21004
    INSUFFICIENT_BATCH_STOCK = 21005
    INVALID_MOVEMENT = 21006

    # Orders (22xxx)
    ORDER_NOT_FOUND = 22001
    ILLEGAL_TRANSITION = 22002
    ORDER_NOT_PAYABLE = 22003
    BUSINESS_NOT_FOUND = 22004

    # Payment ledger (23xxx)
    UNKNOWN_TRANSACTION = 23001
    NO_PENDING_MANUAL_TRANSACTION = 23002
    REFUND_EXCEEDS_BALANCE = 23003
    NO_SETTLED_PAYMENT = 23004

    # Wallet (24xxx)
    WALLET_NOT_FOUND = 24001
    INSUFFICIENT_BALANCE = 24002
    INVALID_TRANSFER = 24003

    # Authorization errors (3xxxx)
    PERMISSION_ERROR = 30000
    UNAUTHORIZED = 30001
    FORBIDDEN = 30002
    NOT_ORDER_OWNER = 30003

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003
    DATA_INTEGRITY_ERROR = 40004


__all__ = ["BusinessCode"]
