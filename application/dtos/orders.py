"""
Draft order DTOs (Pydantic v2).
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from application.dtos.payments import CartLineInput, CustomerInput


class CreateDraftOrderRequest(BaseModel):
    customer: CustomerInput
    lines: list[CartLineInput] = Field(..., min_length=1)
    payment_terms: Optional[str] = Field(default=None, description="Free text, e.g. 'Net 30' or 'due on receipt'")
    due_in_days: Optional[int] = Field(default=None, gt=0)
    note: Optional[str] = Field(default=None, max_length=5000)


class DraftOrderLineOut(BaseModel):
    variant_id: Optional[str] = None
    title: str
    quantity: int
    unit_price_ex_tax: Decimal


class DraftOrderOut(BaseModel):
    draft_id: str
    status: str
    currency: str
    payment_terms: Optional[str] = None
    order_id: Optional[str] = None
    line_items: list[DraftOrderLineOut] = Field(default_factory=list)
