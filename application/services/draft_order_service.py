"""
Draft order use-case: a commerce draft built from cart lines, priced by the
commerce catalog, optionally carrying canonical payment terms.
"""
from __future__ import annotations

from application.dtos.commerce import NewDraftLine, NewDraftOrder
from application.dtos.orders import CreateDraftOrderRequest, DraftOrderLineOut, DraftOrderOut
from application.ports.commerce import CommerceBackend
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.commerce.entity import DraftOrderRef
from domain.commerce.payment_terms import canonicalize_payment_terms


logger = get_logger(__name__)


class DraftOrderService:
    def __init__(self, commerce: CommerceBackend, settings: PaymentSettings) -> None:
        self.commerce = commerce
        self.settings = settings

    async def create_draft(self, req: CreateDraftOrderRequest) -> DraftOrderOut:
        terms = None
        if req.payment_terms or req.due_in_days:
            terms = canonicalize_payment_terms(req.payment_terms, req.due_in_days)
            if terms is None:
                # unmapped terms are dropped, not guessed
                logger.warning(
                    "payment_terms_unrecognized",
                    payment_terms=req.payment_terms,
                    due_in_days=req.due_in_days,
                )

        draft = await self.commerce.create_draft_order(
            NewDraftOrder(
                lines=[NewDraftLine(variant_id=li.item_id, quantity=li.quantity) for li in req.lines],
                customer_id=req.customer.commerce_customer_id,
                email=req.customer.email,
                note=req.note,
                tags=[self.settings.source_tag],
                payment_terms=terms,
            )
        )
        logger.info(
            "draft_order_created",
            draft_id=draft.draft_id,
            crm_customer_id=req.customer.crm_customer_id,
            payment_terms=terms.name if terms else None,
            lines=len(draft.line_items),
        )
        return to_draft_out(draft)


def to_draft_out(draft: DraftOrderRef) -> DraftOrderOut:
    return DraftOrderOut(
        draft_id=draft.draft_id,
        status=draft.status,
        currency=draft.currency,
        payment_terms=draft.payment_terms,
        order_id=draft.order_id,
        line_items=[
            DraftOrderLineOut(
                variant_id=li.variant_id,
                title=li.display_name,
                quantity=li.quantity,
                unit_price_ex_tax=li.unit_price_ex_tax,
            )
            for li in draft.line_items
        ],
    )
