"""
Commerce backend port: the platform that owns drafts, orders and refunds.
"""
from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from application.dtos.commerce import (
    DraftCompletion,
    NewDraftOrder,
    NewOrder,
    NewTransaction,
    RefundLineItem,
)
from domain.commerce.entity import CatalogVariant, CommerceOrder, DraftOrderRef, OrderTransaction
from domain.refund.entity import RefundCalculation


@runtime_checkable
class CommerceBackend(Protocol):
    provider: str

    async def fetch_variants(self, variant_ids: Sequence[str]) -> dict[str, CatalogVariant]:
        """Priced variants keyed by id. Unknown or unpriced ids are absent."""
        ...

    async def create_draft_order(self, draft: NewDraftOrder) -> DraftOrderRef: ...

    async def get_draft_order(self, draft_id: str) -> DraftOrderRef: ...

    async def complete_draft_order(self, draft_id: str) -> DraftCompletion: ...

    async def get_order(self, order_id: str) -> CommerceOrder: ...

    async def create_order(self, order: NewOrder) -> CommerceOrder: ...

    async def find_order_id_by_tag(self, tag: str) -> Optional[str]: ...

    async def annotate_order(self, order_id: str, *, note: str, note_attributes: dict[str, str]) -> None: ...

    async def list_transactions(self, order_id: str) -> list[OrderTransaction]: ...

    async def create_transaction(self, order_id: str, txn: NewTransaction) -> OrderTransaction: ...

    async def mark_order_paid(self, order_id: str) -> None: ...

    async def calculate_refund(self, order_id: str, lines: Sequence[RefundLineItem]) -> RefundCalculation: ...

    async def create_refund(
        self,
        order_id: str,
        lines: Sequence[RefundLineItem],
        txn: NewTransaction,
        *,
        note: Optional[str] = None,
    ) -> str:
        """Record the refund; returns the commerce refund id."""
        ...

    def admin_order_url(self, order_id: str) -> str: ...
