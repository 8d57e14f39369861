"""
Payment provider registry.

Built once at startup from ``payment_settings`` and read-only afterwards. Each
provider gets its own config struct; business code looks providers up by id.
"""
from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional

from application.ports.payment_gateway import PaymentProvider
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.exceptions import UnsupportedProviderException


logger = get_logger(__name__)


class PaymentProviderRegistry:
    """Tagged registry: provider id -> provider implementation."""

    def __init__(self, providers: Mapping[str, PaymentProvider]):
        self._providers: Dict[str, PaymentProvider] = dict(providers)

    def get(self, provider_id: str) -> PaymentProvider:
        provider = self._providers.get((provider_id or "").lower())
        if provider is None:
            raise UnsupportedProviderException(provider_id)
        return provider

    def ids(self) -> Iterable[str]:
        return sorted(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def _is_configured(name: str, cfg: PaymentSettings) -> bool:
    if name == "stripe":
        return bool(cfg.stripe.secret_key)
    if name == "mobile_money":
        mm = cfg.mobile_money
        return all([mm.client_id, mm.client_secret, mm.merchant_msisdn, mm.webhook_secret])
    if name == "manual":
        return cfg.manual.enabled
    return False


def build_registry(cfg: PaymentSettings = payment_settings) -> PaymentProviderRegistry:
    timeouts = cfg.timeouts.model_dump()
    retry = {"max": cfg.retry.max, "base": cfg.retry.base_backoff}
    providers: Dict[str, PaymentProvider] = {}
    for name in cfg.enabled_providers:
        name = name.lower()
        if not _is_configured(name, cfg):
            logger.warning("payment_provider_not_configured", provider=name)
            continue
        if name == "stripe":
            from .stripe_client import StripeClient
            providers[name] = StripeClient(
                cfg.stripe, timeouts=timeouts, retry=retry, webhook_tolerance=cfg.webhook.tolerance_seconds
            )
        elif name == "mobile_money":
            from .mobile_money_client import MobileMoneyClient
            providers[name] = MobileMoneyClient(cfg.mobile_money, timeouts=timeouts, retry=retry)
        elif name == "manual":
            from .manual_client import ManualPaymentClient
            providers[name] = ManualPaymentClient(cfg.manual)
    logger.info("payment_registry_built", providers=sorted(providers))
    return PaymentProviderRegistry(providers)


_registry: Optional[PaymentProviderRegistry] = None


def init_payment_registry(cfg: PaymentSettings = payment_settings) -> PaymentProviderRegistry:
    global _registry
    _registry = build_registry(cfg)
    return _registry


def get_registry() -> PaymentProviderRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry


async def close_payment_registry() -> None:
    global _registry
    if _registry is not None:
        await _registry.aclose()
        _registry = None
