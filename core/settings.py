"""
Payment/commerce settings using pydantic-settings v2 with nested env keys.

Frozen: built once at startup by get_payment_settings() and handed to each
component explicitly. Tests construct their own instance.
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    model_config = ConfigDict(frozen=True)

    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 20.0


class WebhookSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    tolerance_seconds: int = 300


class StripeSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: str = "2024-06-20"
    # SDK retries POSTs only together with an idempotency key
    max_network_retries: int = 2


class ShopifySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    shop_domain: Optional[str] = None
    access_token: Optional[str] = None
    api_version: str = "2024-07"
    # gateway name written on transactions we post
    gateway: str = "stripe"
    read_retries: int = 2

    @field_validator("shop_domain", "access_token", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.lower().startswith(("http://", "https://")):
                v = v.split("://", 1)[1]
            return v.rstrip("/") or None
        return v

    @property
    def admin_base_url(self) -> str:
        return f"https://{self.shop_domain}/admin"


class PaymentSettings(BaseSettings):
    vat_rate: Decimal = Field(default=Decimal("0.20"), ge=0)
    currency: str = "GBP"
    app_base_url: str = "http://localhost:3000"
    source_tag: str = "crm"

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        frozen=True,
    )

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u

    @field_validator("app_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache(maxsize=1)
def get_payment_settings() -> PaymentSettings:
    return PaymentSettings()
