"""
Typed views of the Stripe objects this service reads.

Raw SDK objects and webhook JSON are validated here once; nothing past the
adapter touches Stripe dictionaries.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

from application.dtos.payments import IgnoredEvent, PaymentSucceededEvent
from domain.payment.entity import ArtifactLine

PAID_EVENT_TYPES = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


class _StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _id_of(value: Union[str, dict, None]) -> Optional[str]:
    """Expandable fields arrive either as an id or as the expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    ident = value.get("id")
    return str(ident) if ident else None


class StripeProduct(_StripeModel):
    id: Optional[str] = None
    name: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class StripePrice(_StripeModel):
    id: Optional[str] = None
    unit_amount: Optional[int] = None
    product: Union[StripeProduct, str, None] = None


class StripeLineItem(_StripeModel):
    id: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[int] = 1
    amount_total: Optional[int] = None
    price: Optional[StripePrice] = None

    def to_line(self) -> ArtifactLine:
        qty = int(self.quantity or 1)
        amount = self.amount_total
        if amount is None:
            amount = int((self.price.unit_amount if self.price else 0) or 0) * qty
        metadata: dict[str, str] = {}
        name = self.description or ""
        if self.price and isinstance(self.price.product, StripeProduct):
            metadata = dict(self.price.product.metadata)
            name = name or (self.price.product.name or "")
        return ArtifactLine(description=name, quantity=qty, amount_total=amount, metadata=metadata)


class StripeList(_StripeModel):
    data: list[StripeLineItem] = Field(default_factory=list)


class StripeCheckoutSession(_StripeModel):
    id: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    payment_intent: Union[str, dict[str, Any], None] = None
    payment_link: Union[str, dict[str, Any], None] = None
    url: Optional[str] = None
    line_items: Optional[StripeList] = None

    @property
    def payment_intent_id(self) -> Optional[str]:
        return _id_of(self.payment_intent)

    @property
    def payment_link_id(self) -> Optional[str]:
        return _id_of(self.payment_link)


class StripePaymentLink(_StripeModel):
    id: str
    active: bool = True
    url: Optional[str] = None
    currency: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    line_items: Optional[StripeList] = None


class StripePaymentIntent(_StripeModel):
    id: str
    status: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class StripeRefund(_StripeModel):
    id: str
    amount: int
    status: Optional[str] = None


class _SessionData(_StripeModel):
    object: StripeCheckoutSession


class CheckoutPaidEvent(_StripeModel):
    id: str
    type: Literal["checkout.session.completed", "checkout.session.async_payment_succeeded"]
    data: _SessionData

    def to_event(self) -> PaymentSucceededEvent:
        session = self.data.object
        return PaymentSucceededEvent(
            event_id=self.id,
            event_type=self.type,
            session_id=session.id,
            payment_intent_id=session.payment_intent_id,
            payment_link_id=session.payment_link_id,
        )


class OtherEvent(_StripeModel):
    id: str
    type: str

    def to_event(self) -> IgnoredEvent:
        reason = "not_paid" if self.type in PAID_EVENT_TYPES else "unhandled_type"
        return IgnoredEvent(event_id=self.id, event_type=self.type, reason=reason)


def _event_tag(raw: Any) -> str:
    if isinstance(raw, dict):
        event_type = raw.get("type")
        obj = (raw.get("data") or {}).get("object") or {}
        status = obj.get("payment_status") if isinstance(obj, dict) else None
    else:
        event_type = getattr(raw, "type", None)
        status = None
        if isinstance(raw, CheckoutPaidEvent):
            status = raw.data.object.payment_status
    if event_type in PAID_EVENT_TYPES and status == "paid":
        return "paid"
    return "other"


StripeEvent = Annotated[
    Union[Annotated[CheckoutPaidEvent, Tag("paid")], Annotated[OtherEvent, Tag("other")]],
    Discriminator(_event_tag),
]

stripe_event_adapter: TypeAdapter[Union[CheckoutPaidEvent, OtherEvent]] = TypeAdapter(StripeEvent)
