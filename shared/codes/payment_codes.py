"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004

    # Cross-system reconciliation (7xxxx)
    PRICE_LOOKUP_FAILED = 70000
    REFERENCE_UNRESOLVABLE = 70001
    ORIGINAL_PAYMENT_NOT_FOUND = 70002
    REFUND_QUANTITY_EXCEEDED = 70003
    ZERO_AMOUNT_REFUND = 70004
    RECONCILIATION_REQUIRED = 70005
    PARTIAL_EXECUTION = 70006
    COMMERCE_REJECTED = 70007


# Provider→internal status mapping (checkout sessions and payment links)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "open": "open",
        "complete": "completed",
        "expired": "expired",
    },
    "shopify": {
        "pending": "pending",
        "authorized": "pending",
        "partially_paid": "pending",
        "paid": "paid",
        "partially_refunded": "partially_refunded",
        "refunded": "refunded",
        "voided": "pending",
    },
}
