"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from application.dtos.payments import (
    CreateIntent,
    ManualConfirmation,
    PaymentIntent,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from infrastructure.external.payments.exceptions import (
    OperationNotSupportedException,
    ProviderUnavailableException,
    RefundNotSupportedException,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

T = TypeVar("T")


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            timeout=self._timeouts_cfg["total"],
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Retry idempotent calls on transport errors; exhaustion maps to ProviderUnavailable."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
                wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
                reraise=True,
            ):
                with attempt:
                    return await fn()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise self._unavailable(exc) from exc

    async def _once(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Single attempt for non-idempotent calls (create, refund)."""
        try:
            return await fn()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise self._unavailable(exc) from exc

    def _unavailable(self, exc: Exception) -> ProviderUnavailableException:
        self._log("provider_unavailable", error=type(exc).__name__, message=str(exc))
        return ProviderUnavailableException(
            f"{self.provider} is unreachable", provider=self.provider, details={"error": type(exc).__name__}
        )

    # Default implementations raise typed errors where a provider lacks a capability
    async def create_intent(self, req: CreateIntent) -> PaymentIntent:
        raise OperationNotSupportedException(self.provider, "create_intent")

    def parse_webhook(self, headers: Mapping[str, Any], body: bytes) -> WebhookEvent:
        raise OperationNotSupportedException(self.provider, "webhooks")

    async def confirm_manual(self, req: ManualConfirmation) -> dict[str, Any]:
        raise OperationNotSupportedException(self.provider, "manual confirmation")

    async def refund(self, req: RefundRequest) -> RefundResult:
        raise RefundNotSupportedException(self.provider)

    # Helpers
    @staticmethod
    def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in headers.items():
            if key.lower() == lowered:
                return value
        return None

    def _map_status(self, provider_status: str, table: Optional[str] = None) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(table or self.provider, {})
        return mapping.get(provider_status, "PENDING")

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
