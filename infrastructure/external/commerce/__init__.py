"""
Factory for the commerce backend client.
"""
from __future__ import annotations

from typing import Optional

from application.ports.commerce import CommerceBackend
from core.settings import PaymentSettings, get_payment_settings


def get_commerce_backend(settings: Optional[PaymentSettings] = None) -> CommerceBackend:
    settings = settings or get_payment_settings()
    if not settings.shopify.shop_domain or not settings.shopify.access_token:
        raise RuntimeError("SHOPIFY__SHOP_DOMAIN and SHOPIFY__ACCESS_TOKEN must be configured")
    from .shopify_client import ShopifyClient
    return ShopifyClient(settings)
