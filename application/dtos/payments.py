"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from domain.payment.entity import ArtifactKind


class CustomerInput(BaseModel):
    crm_customer_id: str = Field(..., min_length=1)
    commerce_customer_id: Optional[str] = None
    email: Optional[str] = None


class CartLineInput(BaseModel):
    item_id: str = Field(..., min_length=1, description="Commerce variant id")
    quantity: int = Field(..., gt=0)


class CreateCollectionRequest(BaseModel):
    """Create a checkout session or payment link.

    Exactly one of ``draft_id`` (draft-backed) or ``lines`` (direct) is given.
    """

    customer: CustomerInput
    draft_id: Optional[str] = None
    lines: Optional[list[CartLineInput]] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _one_source(self) -> "CreateCollectionRequest":
        has_draft = bool(self.draft_id)
        has_lines = bool(self.lines)
        if has_draft == has_lines:
            raise ValueError("provide either draft_id or lines, not both")
        return self

    @property
    def mode(self) -> str:
        return "draft" if self.draft_id else "direct"


class CollectionLine(BaseModel):
    """One priced line handed to the processor."""

    model_config = ConfigDict(frozen=True)

    description: str
    quantity: int = Field(..., gt=0)
    unit_amount: int = Field(..., ge=0, description="Tax-inclusive unit price, minor units")
    metadata: dict[str, str] = Field(default_factory=dict)


class CreateCollection(BaseModel):
    kind: ArtifactKind
    currency: str
    lines: list[CollectionLine] = Field(..., min_length=1)
    metadata: dict[str, str] = Field(default_factory=dict)
    success_url: str
    cancel_url: Optional[str] = None
    customer_email: Optional[str] = None
    idempotency_key: str

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        # processor takes lower-case ISO codes
        return v.lower()

    @property
    def amount_total(self) -> int:
        return sum(line.unit_amount * line.quantity for line in self.lines)


class PaymentCollection(BaseModel):
    artifact_id: str
    kind: ArtifactKind
    mode: Literal["draft", "direct"]
    url: Optional[str] = None
    amount_total: Decimal
    amount_total_minor: int
    currency: str
    idempotency_key: str


class ProcessorRefundRequest(BaseModel):
    payment_intent_id: str
    amount: int = Field(..., gt=0, description="Minor units")
    currency: str
    idempotency_key: str
    reason: Literal["requested_by_customer", "duplicate", "fraudulent"] = "requested_by_customer"
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentSucceededEvent(BaseModel):
    """A paid checkout session: the only event that triggers order completion."""

    kind: Literal["payment_succeeded"] = "payment_succeeded"
    event_id: str
    event_type: str
    session_id: str
    payment_intent_id: Optional[str] = None
    payment_link_id: Optional[str] = None


class IgnoredEvent(BaseModel):
    kind: Literal["ignored"] = "ignored"
    event_id: str
    event_type: str
    reason: str


WebhookEvent = Annotated[Union[PaymentSucceededEvent, IgnoredEvent], Field(discriminator="kind")]


class OrderCompletion(BaseModel):
    order_id: str
    admin_url: Optional[str] = None
    path: Literal["draft", "direct"]
    states: list[str] = Field(default_factory=list)
    created: bool = True


class WebhookAck(BaseModel):
    event_id: str
    event_type: str
    status: Literal["processed", "ignored", "failed"]
    order_id: Optional[str] = None
    error_type: Optional[str] = None
