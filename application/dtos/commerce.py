"""
Commerce write contracts and response variants shared by the commerce port
and its adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from domain.commerce.payment_terms import PaymentTerms


class DraftCompleted(BaseModel):
    outcome: Literal["completed"] = "completed"
    draft_id: str
    order_id: str


class DraftRejected(BaseModel):
    """The platform refused to complete the draft (already completed, invalid...)."""

    outcome: Literal["rejected"] = "rejected"
    draft_id: str
    status_code: Optional[int] = None
    errors: Optional[str] = None


DraftCompletion = Annotated[Union[DraftCompleted, DraftRejected], Field(discriminator="outcome")]


class NewDraftLine(BaseModel):
    variant_id: str
    quantity: int = Field(..., gt=0)


class NewDraftOrder(BaseModel):
    lines: list[NewDraftLine] = Field(..., min_length=1)
    customer_id: Optional[str] = None
    email: Optional[str] = None
    note: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payment_terms: Optional[PaymentTerms] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class NewOrderLine(BaseModel):
    variant_id: str
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., description="Unit price ex tax")
    tax_amount: Decimal
    tax_rate: Decimal
    tax_title: str = "VAT"


class NewOrder(BaseModel):
    """A pre-paid order created directly from a charged artifact."""

    lines: list[NewOrderLine] = Field(..., min_length=1)
    currency: str
    total_tax: Decimal
    customer_id: Optional[str] = None
    email: Optional[str] = None
    note: Optional[str] = None
    note_attributes: dict[str, str] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)


class NewTransaction(BaseModel):
    kind: Literal["sale", "refund"]
    status: Literal["success"] = "success"
    amount: Decimal
    currency: str
    gateway: str
    authorization: Optional[str] = None
    parent_id: Optional[str] = None
    message: Optional[str] = None


class RefundLineItem(BaseModel):
    line_item_id: str
    quantity: int
