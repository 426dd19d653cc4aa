"""
Payment terms canonicalization.

Maps free-text and legacy term names onto the closed set the commerce
platform accepts. Unrecognized input means "no terms".
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PaymentTermsType(str, Enum):
    RECEIPT = "RECEIPT"
    FULFILLMENT = "FULFILLMENT"
    NET = "NET"
    FIXED = "FIXED"


NET_DAYS = (7, 15, 30, 45, 60, 90)


@dataclass(frozen=True)
class PaymentTerms:
    name: str
    type: PaymentTermsType
    due_in_days: Optional[int] = None

    def to_payload(self) -> dict:
        payload: dict = {"payment_terms_name": self.name, "payment_terms_type": self.type.value}
        if self.due_in_days is not None:
            payload["due_in_days"] = self.due_in_days
        return payload


DUE_ON_RECEIPT = PaymentTerms("Due on receipt", PaymentTermsType.RECEIPT)
DUE_ON_FULFILLMENT = PaymentTerms("Due on fulfillment", PaymentTermsType.FULFILLMENT)
FIXED_DATE = PaymentTerms("Fixed date", PaymentTermsType.FIXED)


def net(days: int) -> PaymentTerms:
    return PaymentTerms(f"Net {days}", PaymentTermsType.NET, due_in_days=days)


_NET_RE = re.compile(r"\bnet\s*(\d+)", re.IGNORECASE)
_WITHIN_RE = re.compile(r"within\s+(\d+)\s*days?", re.IGNORECASE)
_BARE_DAYS_RE = re.compile(r"^(\d+)(\s*days?)?$", re.IGNORECASE)


def canonicalize_payment_terms(name: Optional[str], due_in_days: Optional[int] = None) -> Optional[PaymentTerms]:
    """Return canonical terms for a stored name, or None when it cannot be mapped.

    >>> canonicalize_payment_terms("Within 30 days")
    PaymentTerms(name='Net 30', type=<PaymentTermsType.NET: 'NET'>, due_in_days=30)
    """
    if not name or not name.strip():
        return None
    s = " ".join(name.split())
    lowered = s.lower()

    if lowered == "due on receipt":
        return DUE_ON_RECEIPT
    if lowered in {"due on fulfillment", "due on fulfilment"}:
        return DUE_ON_FULFILLMENT
    if lowered == "fixed date":
        return FIXED_DATE

    days: Optional[int] = None
    for pattern in (_NET_RE, _WITHIN_RE, _BARE_DAYS_RE):
        m = pattern.search(s)
        if m:
            days = int(m.group(1))
            break
    if days is None and due_in_days is not None:
        days = due_in_days
    if days is not None:
        return net(days) if days in NET_DAYS else None

    if "receipt" in lowered:
        return DUE_ON_RECEIPT
    if re.search(r"fulfil+ment", lowered):
        return DUE_ON_FULFILLMENT
    if "fixed" in lowered:
        return FIXED_DATE
    return None
