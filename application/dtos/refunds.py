"""
Refund DTOs (Pydantic v2).
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from domain.refund.entity import RefundLine, RefundRequest


class RefundLineInput(BaseModel):
    line_item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class RefundRequestIn(BaseModel):
    lines: list[RefundLineInput] = Field(..., min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)

    def to_domain(self, order_id: str) -> RefundRequest:
        return RefundRequest(
            order_id=order_id,
            lines=tuple(RefundLine(line_item_id=li.line_item_id, quantity=li.quantity) for li in self.lines),
            reason=self.reason,
            idempotency_key=self.idempotency_key,
        )


class RefundPreview(BaseModel):
    order_id: str
    amount: Decimal
    currency: str
    per_line: dict[str, Decimal] = Field(default_factory=dict)


class RefundConfirmation(BaseModel):
    order_id: str
    amount: Decimal
    currency: str
    commerce_refund_id: str
    processor_refund_id: str
