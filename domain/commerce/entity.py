"""
Commerce domain entities - carts, drafts, orders and their transactions.

The commerce platform is the system of record for these; the entities here
are typed snapshots converted from its API responses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.money import quantize


@dataclass(frozen=True)
class CustomerRef:
    """Who is paying: the CRM record and its commerce counterpart."""

    crm_customer_id: str
    commerce_customer_id: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    item_id: str
    quantity: int
    unit_price_ex_tax: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if not self.item_id:
            raise DomainValidationException("Cart line requires an item id", field="item_id")
        if self.quantity <= 0:
            raise DomainValidationException(
                f"Cart line quantity must be positive: {self.quantity}",
                field="quantity",
            )


@dataclass(frozen=True)
class CatalogVariant:
    item_id: str
    product_title: str
    variant_title: Optional[str]
    unit_price_ex_tax: Decimal

    @property
    def display_name(self) -> str:
        if self.variant_title and self.variant_title != "Default Title":
            return f"{self.product_title} - {self.variant_title}"
        return self.product_title


@dataclass(frozen=True)
class DraftLine:
    variant_id: Optional[str]
    title: str
    quantity: int
    unit_price_ex_tax: Decimal
    variant_title: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.variant_title:
            return f"{self.title} - {self.variant_title}"
        return self.title


@dataclass
class DraftOrderRef:
    draft_id: str
    line_items: list[DraftLine] = field(default_factory=list)
    customer_ref: Optional[str] = None
    payment_terms: Optional[str] = None
    status: str = "open"
    order_id: Optional[str] = None
    currency: str = "GBP"

    @property
    def is_completed(self) -> bool:
        return self.status == "completed" or bool(self.order_id)


class FinancialStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"

    @property
    def rank(self) -> int:
        return _FINANCIAL_RANK[self]

    def can_become(self, other: "FinancialStatus") -> bool:
        """Monotonic: never moves back towards Pending once Paid."""
        return other.rank >= self.rank


_FINANCIAL_RANK = {
    FinancialStatus.PENDING: 0,
    FinancialStatus.PAID: 1,
    FinancialStatus.PARTIALLY_REFUNDED: 2,
    FinancialStatus.REFUNDED: 3,
}


@dataclass(frozen=True)
class OrderLineItem:
    id: str
    quantity: int
    unit_price: Decimal
    title: Optional[str] = None
    variant_id: Optional[str] = None
    variant_title: Optional[str] = None
    sku: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return quantize(self.unit_price * self.quantity)


@dataclass(frozen=True)
class OrderTransaction:
    id: str
    kind: str
    status: str
    amount: Decimal
    currency: Optional[str] = None
    authorization: Optional[str] = None
    gateway: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_successful_sale(self) -> bool:
        return self.kind in {"sale", "capture"} and self.status in {"success", "completed"}

    @property
    def is_successful_refund(self) -> bool:
        return self.kind == "refund" and self.status in {"success", "completed"}


@dataclass
class CommerceOrder:
    """
    Commerce order snapshot.

    financial_status never regresses from Paid; use advance_financial_status.
    """

    id: str
    financial_status: FinancialStatus
    currency: str
    line_items: list[OrderLineItem] = field(default_factory=list)
    total_tax: Decimal = Decimal("0.00")
    total_shipping: Decimal = Decimal("0.00")
    total_price: Optional[Decimal] = None
    subtotal_price: Optional[Decimal] = None
    name: Optional[str] = None
    customer_id: Optional[str] = None
    note: Optional[str] = None
    note_attributes: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.financial_status != FinancialStatus.PENDING

    def line(self, line_item_id: str) -> Optional[OrderLineItem]:
        for li in self.line_items:
            if li.id == line_item_id:
                return li
        return None

    def advance_financial_status(self, new_status: FinancialStatus) -> bool:
        """Apply a status update unless it would regress. Returns True if applied."""
        if not self.financial_status.can_become(new_status):
            return False
        self.financial_status = new_status
        return True

    @property
    def net_ex_tax_total(self) -> Decimal:
        """Canonical net ex-tax total.

        total - shipping - tax when the order total is known, else the sum of
        line totals. Used everywhere a net figure is needed.
        """
        if self.total_price is not None:
            return quantize(self.total_price - self.total_shipping - self.total_tax)
        return quantize(sum((li.line_total for li in self.line_items), Decimal("0")))
