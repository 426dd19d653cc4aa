"""
Refund entities: request, commerce-side calculation, two-legged execution.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from domain.commerce.entity import CommerceOrder
from domain.common.exceptions import DomainValidationException, RefundQuantityExceeded
from domain.common.money import quantize, to_minor


@dataclass(frozen=True)
class RefundLine:
    line_item_id: str
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Refund quantity must be positive: {self.quantity}",
                field="quantity",
            )


@dataclass(frozen=True)
class RefundRequest:
    order_id: str
    lines: tuple[RefundLine, ...]
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.lines:
            raise DomainValidationException("Select at least one line to refund", field="lines")
        seen: set[str] = set()
        for line in self.lines:
            if line.line_item_id in seen:
                raise DomainValidationException(
                    f"Line {line.line_item_id} listed more than once",
                    field="lines",
                )
            seen.add(line.line_item_id)

    def validate_against(self, order: CommerceOrder) -> None:
        """Every requested line must exist and not exceed the purchased quantity."""
        for line in self.lines:
            purchased = order.line(line.line_item_id)
            if purchased is None:
                raise RefundQuantityExceeded(line.line_item_id, line.quantity, 0)
            if line.quantity > purchased.quantity:
                raise RefundQuantityExceeded(line.line_item_id, line.quantity, purchased.quantity)


@dataclass(frozen=True)
class RefundCalculation:
    """Computed by the commerce system only; never recomputed locally."""

    order_id: str
    amount: Decimal
    currency: str
    per_line: dict[str, Decimal] = field(default_factory=dict)

    @property
    def amount_minor(self) -> int:
        return to_minor(self.amount)

    @property
    def is_positive(self) -> bool:
        return quantize(self.amount) > 0


@dataclass(frozen=True)
class OriginalPayment:
    """The charge a refund goes back against, on both systems."""

    payment_intent_id: str
    parent_transaction_id: str
    gateway: Optional[str] = None


@dataclass(frozen=True)
class ProcessorRefund:
    id: str
    amount: int  # minor units
    status: str


@dataclass(frozen=True)
class RefundExecution:
    order_id: str
    commerce_refund_id: str
    processor_refund_id: str
    amount: Decimal
    currency: str
