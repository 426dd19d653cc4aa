"""
Payment artifact entity - what a customer actually pays against.

A checkout session or a payment link, as reported by the processor.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.money import from_minor


class ArtifactKind(str, Enum):
    SESSION = "session"
    LINK = "link"


class ArtifactStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    EXPIRED = "expired"
    DISABLED = "disabled"


class MetadataKey:
    """Metadata keys written onto processor objects."""

    CRM_CUSTOMER_ID = "crm_customer_id"
    COMMERCE_CUSTOMER_ID = "commerce_customer_id"
    DRAFT_ORDER_ID = "draft_order_id"
    VARIANT_ID = "variant_id"
    SOURCE = "source"
    COMMERCE_ORDER_ID = "commerce_order_id"


@dataclass(frozen=True)
class ArtifactLine:
    """A charged line and the back-reference metadata it was created with."""

    description: str
    quantity: int
    amount_total: int  # minor units, tax inclusive, whole line
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentArtifact:
    """
    Payment artifact aggregate.

    Disabled is reached at most once; repeat calls are no-ops.
    """

    id: str
    kind: ArtifactKind
    status: ArtifactStatus
    amount_total: int  # minor units, tax inclusive
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)
    lines: list[ArtifactLine] = field(default_factory=list)
    payment_status: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_link_id: Optional[str] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount_total < 0:
            raise DomainValidationException(
                f"Artifact amount cannot be negative: {self.amount_total}",
                field="amount_total",
            )
        self.currency = (self.currency or "").upper()

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def amount_total_major(self) -> Decimal:
        return from_minor(self.amount_total)

    @property
    def back_reference(self) -> Optional[str]:
        return self.metadata.get(MetadataKey.DRAFT_ORDER_ID) or None

    def disable(self) -> bool:
        """Transition to Disabled. Returns False when already disabled."""
        if self.status == ArtifactStatus.DISABLED:
            return False
        self.status = ArtifactStatus.DISABLED
        return True
