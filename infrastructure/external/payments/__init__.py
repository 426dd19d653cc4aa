"""
Factory for payment processor clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings, get_payment_settings
from application.ports.payment_processor import PaymentProcessor


def get_payment_processor(settings: Optional[PaymentSettings] = None, provider: str = "stripe") -> PaymentProcessor:
    settings = settings or get_payment_settings()
    name = provider.lower()
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient(settings)
    raise ValueError(f"Unsupported payment provider: {name}")
