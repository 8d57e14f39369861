"""
Payment provider codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_UNAVAILABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    UNSUPPORTED_PROVIDER = 60005
    REFUND_NOT_SUPPORTED = 60006
    OPERATION_NOT_SUPPORTED = 60007


# Provider event/status -> internal transaction status (PENDING/SUCCESS/FAILED/REFUNDED/PENDING_REFUND).
# Unknown values fall back to PENDING in BasePaymentClient._map_status.
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        # webhook event types
        "payment_intent.succeeded": "SUCCESS",
        "payment_intent.payment_failed": "FAILED",
        "payment_intent.canceled": "REFUNDED",
        "charge.refunded": "REFUNDED",
        # PaymentIntent.status at creation time
        "requires_payment_method": "PENDING",
        "requires_confirmation": "PENDING",
        "requires_action": "PENDING",
        "processing": "PENDING",
        "succeeded": "SUCCESS",
        "canceled": "FAILED",
    },
    "stripe_refund": {
        "succeeded": "REFUNDED",
        "pending": "PENDING_REFUND",
        "requires_action": "PENDING_REFUND",
        "failed": "FAILED",
        "canceled": "FAILED",
    },
    "mobile_money": {
        "pending": "PENDING",
        "completed": "SUCCESS",
        "failed": "FAILED",
    },
}
