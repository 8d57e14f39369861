"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    """The provider answered and rejected the request."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class ProviderUnavailableException(BusinessException):
    """Timeout or transport failure; safe for the caller to retry."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_UNAVAILABLE,
            message=message,
            error_type="ProviderUnavailable",
            details=full_details,
        )


class InvalidWebhookSignatureException(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="InvalidWebhookSignature",
            details=full_details,
        )


class UnsupportedProviderException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.UNSUPPORTED_PROVIDER,
            message=f"Unsupported payment provider: {provider}",
            error_type="UnsupportedProvider",
            details={"provider": provider},
            field="provider",
        )


class RefundNotSupportedException(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.REFUND_NOT_SUPPORTED,
            message=f"Provider {provider} does not support refunds",
            error_type="RefundNotSupported",
            details={"provider": provider},
        )


class OperationNotSupportedException(BusinessException):
    def __init__(self, provider: str, operation: str):
        super().__init__(
            code=PaymentCode.OPERATION_NOT_SUPPORTED,
            message=f"Provider {provider} does not support {operation}",
            error_type="OperationNotSupported",
            details={"provider": provider, "operation": operation},
        )
