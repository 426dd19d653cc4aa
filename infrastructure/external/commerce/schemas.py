"""
Typed views of Shopify Admin API payloads (REST and GraphQL).

Everything the platform sends is validated here and converted into domain
entities before it leaves the adapter.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, field_validator

from domain.commerce.entity import (
    CatalogVariant,
    CommerceOrder,
    DraftLine,
    DraftOrderRef,
    FinancialStatus,
    OrderLineItem,
    OrderTransaction,
)
from domain.common.money import quantize
from domain.refund.entity import RefundCalculation
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL

GID_PREFIX = "gid://shopify/"


def legacy_id(value: Union[str, int]) -> str:
    """'gid://shopify/ProductVariant/123' or 123 -> '123'."""
    s = str(value)
    if s.startswith(GID_PREFIX):
        return s.rsplit("/", 1)[-1]
    return s


def to_gid(resource: str, value: Union[str, int]) -> str:
    return f"{GID_PREFIX}{resource}/{legacy_id(value)}"


def parse_money(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return quantize(amount)


class _ShopifyModel(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class _Ref(_ShopifyModel):
    id: Optional[str] = None


class ShopifyLineItem(_ShopifyModel):
    id: str
    quantity: int = 0
    price: Decimal = Decimal("0.00")
    title: Optional[str] = None
    variant_id: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None

    def to_domain(self) -> OrderLineItem:
        return OrderLineItem(
            id=self.id,
            quantity=self.quantity,
            unit_price=quantize(self.price),
            title=self.title,
            variant_id=self.variant_id,
            variant_title=self.variant_title,
            sku=self.sku,
        )


class _NoteAttribute(_ShopifyModel):
    name: str
    value: Optional[str] = None


class _MoneyBag(_ShopifyModel):
    amount: Optional[str] = None


class _MoneySet(_ShopifyModel):
    shop_money: Optional[_MoneyBag] = None
    presentment_money: Optional[_MoneyBag] = None


class _ShippingLine(_ShopifyModel):
    price: Optional[str] = None


class ShopifyOrder(_ShopifyModel):
    id: str
    name: Optional[str] = None
    financial_status: Optional[str] = None
    currency: Optional[str] = None
    line_items: list[ShopifyLineItem] = Field(default_factory=list)
    total_tax: Optional[str] = None
    total_price: Optional[str] = None
    subtotal_price: Optional[str] = None
    total_shipping_price_set: Optional[_MoneySet] = None
    shipping_lines: list[_ShippingLine] = Field(default_factory=list)
    customer: Optional[_Ref] = None
    note: Optional[str] = None
    note_attributes: list[_NoteAttribute] = Field(default_factory=list)
    tags: Optional[str] = None

    def _shipping(self) -> Decimal:
        ps = self.total_shipping_price_set
        if ps is not None:
            for bag in (ps.shop_money, ps.presentment_money):
                if bag is not None and parse_money(bag.amount) is not None:
                    return parse_money(bag.amount)  # type: ignore[return-value]
        if self.shipping_lines:
            return parse_money(self.shipping_lines[0].price) or Decimal("0.00")
        return Decimal("0.00")

    def _financial_status(self) -> FinancialStatus:
        mapped = PROVIDER_STATUS_TO_INTERNAL["shopify"].get(self.financial_status or "", "pending")
        return FinancialStatus(mapped)

    def to_domain(self, fallback_currency: str = "GBP") -> CommerceOrder:
        return CommerceOrder(
            id=self.id,
            name=self.name,
            financial_status=self._financial_status(),
            currency=(self.currency or fallback_currency).upper(),
            line_items=[li.to_domain() for li in self.line_items],
            total_tax=parse_money(self.total_tax) or Decimal("0.00"),
            total_shipping=self._shipping(),
            total_price=parse_money(self.total_price),
            subtotal_price=parse_money(self.subtotal_price),
            customer_id=self.customer.id if self.customer else None,
            note=self.note,
            note_attributes={a.name: a.value or "" for a in self.note_attributes},
            tags=[t.strip() for t in (self.tags or "").split(",") if t.strip()],
        )


class _DraftLineItem(_ShopifyModel):
    variant_id: Optional[str] = None
    title: str = ""
    variant_title: Optional[str] = None
    quantity: int = 1
    price: Decimal = Decimal("0.00")


class _DraftPaymentTerms(_ShopifyModel):
    payment_terms_name: Optional[str] = None


class ShopifyDraftOrder(_ShopifyModel):
    id: str
    status: str = "open"
    order_id: Optional[str] = None
    currency: Optional[str] = None
    line_items: list[_DraftLineItem] = Field(default_factory=list)
    customer: Optional[_Ref] = None
    payment_terms: Optional[_DraftPaymentTerms] = None

    def to_domain(self, fallback_currency: str = "GBP") -> DraftOrderRef:
        return DraftOrderRef(
            draft_id=self.id,
            line_items=[
                DraftLine(
                    variant_id=li.variant_id,
                    title=li.title,
                    quantity=li.quantity,
                    unit_price_ex_tax=quantize(li.price),
                    variant_title=li.variant_title,
                )
                for li in self.line_items
            ],
            customer_ref=self.customer.id if self.customer else None,
            payment_terms=self.payment_terms.payment_terms_name if self.payment_terms else None,
            status=self.status,
            order_id=self.order_id,
            currency=(self.currency or fallback_currency).upper(),
        )


class ShopifyTransaction(_ShopifyModel):
    id: str
    kind: str
    status: str
    amount: Decimal
    currency: Optional[str] = None
    authorization: Optional[str] = None
    gateway: Optional[str] = None
    message: Optional[str] = None

    def to_domain(self) -> OrderTransaction:
        return OrderTransaction(
            id=self.id,
            kind=self.kind,
            status=self.status,
            amount=quantize(self.amount),
            currency=self.currency,
            authorization=self.authorization,
            gateway=self.gateway,
            message=self.message,
        )


# --- refund calculation -------------------------------------------------

class _CalculatedLine(_ShopifyModel):
    line_item_id: str
    quantity: int = 0
    subtotal: Decimal = Decimal("0.00")
    total_tax: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return quantize(self.subtotal + self.total_tax)


class _SuggestedTransaction(_ShopifyModel):
    amount: Decimal
    currency: Optional[str] = None
    parent_id: Optional[str] = None


class SuggestedTransactionRefund(_ShopifyModel):
    """Calculation that carries the platform's suggested refund transaction."""

    currency: Optional[str] = None
    transactions: list[_SuggestedTransaction] = Field(..., min_length=1)
    refund_line_items: list[_CalculatedLine] = Field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return quantize(self.transactions[0].amount)


class LineSumRefund(_ShopifyModel):
    """No suggested transaction: refund is the sum of line subtotal plus tax."""

    currency: Optional[str] = None
    refund_line_items: list[_CalculatedLine] = Field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return quantize(sum((li.total for li in self.refund_line_items), Decimal("0")))


def _refund_tag(raw: Any) -> str:
    if isinstance(raw, dict):
        txns = raw.get("transactions") or []
        if txns and isinstance(txns[0], dict) and parse_money(txns[0].get("amount")) is not None:
            return "suggested"
        return "line_sum"
    return "suggested" if isinstance(raw, SuggestedTransactionRefund) else "line_sum"


RefundCalculationPayload = Annotated[
    Union[Annotated[SuggestedTransactionRefund, Tag("suggested")], Annotated[LineSumRefund, Tag("line_sum")]],
    Discriminator(_refund_tag),
]

refund_calculation_adapter: TypeAdapter[Union[SuggestedTransactionRefund, LineSumRefund]] = TypeAdapter(
    RefundCalculationPayload
)


def to_refund_calculation(
    order_id: str,
    payload: Union[SuggestedTransactionRefund, LineSumRefund],
    fallback_currency: str,
) -> RefundCalculation:
    currency = payload.currency
    if isinstance(payload, SuggestedTransactionRefund):
        currency = currency or payload.transactions[0].currency
    return RefundCalculation(
        order_id=order_id,
        amount=payload.amount,
        currency=(currency or fallback_currency).upper(),
        per_line={li.line_item_id: li.total for li in payload.refund_line_items},
    )


# --- GraphQL --------------------------------------------------------------

class _ProductTitle(_ShopifyModel):
    title: str = ""


class VariantNode(_ShopifyModel):
    id: str
    title: Optional[str] = None
    price: Optional[str] = None
    product: Optional[_ProductTitle] = None

    @field_validator("price", mode="before")
    @classmethod
    def _money_object(cls, v):
        # newer API versions return MoneyV2 {amount, currencyCode}
        if isinstance(v, dict):
            return v.get("amount")
        return v

    def to_domain(self) -> Optional[CatalogVariant]:
        price = parse_money(self.price)
        if price is None:
            return None
        return CatalogVariant(
            item_id=legacy_id(self.id),
            product_title=self.product.title if self.product else (self.title or ""),
            variant_title=self.title,
            unit_price_ex_tax=price,
        )


class UserError(_ShopifyModel):
    field: Optional[list[str]] = None
    message: str
