"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Environment variables use the ``PAYMENT__`` prefix, for example
``PAYMENT__STRIPE__SECRET_KEY`` or ``PAYMENT__ENABLED_PROVIDERS='["stripe","manual"]'``.
Each provider receives its own config struct at construction; nothing below the
registry reads the environment.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    # Applies to idempotent calls only (token fetch); create/refund are never retried
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: Optional[List[str]] = None  # Optional IPs allowed to post webhooks


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class MobileMoneySettings(BaseModel):
    base_url: str = "https://devapi.mvola.mg"
    auth_url: str = "https://devapi.mvola.mg/token"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    merchant_msisdn: Optional[str] = None
    partner_name: str = "commerce-platform"
    callback_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    currency: str = "Ar"


class ManualSettings(BaseModel):
    enabled: bool = True
    instructions: str = "Pay at the counter or by bank transfer; a staff member will confirm receipt."


class PaymentSettings(BaseSettings):
    enabled_providers: List[str] = Field(default_factory=lambda: ["stripe", "mobile_money", "manual"])
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    mobile_money: MobileMoneySettings = Field(default_factory=MobileMoneySettings)
    manual: ManualSettings = Field(default_factory=ManualSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
