"""
Payment intent builder: turns a draft or a cart into a processor checkout
session or payment link with VAT-inclusive prices and back-references.

Draft-backed mode trusts the draft's prices; direct mode prices every line
through the catalog first. Either way each line carries the variant id it was
sold as, and the artifact carries who is paying and where it came from.
"""
from __future__ import annotations

import hashlib
import uuid
from typing import Optional

from application.dtos.payments import (
    CartLineInput,
    CollectionLine,
    CreateCollection,
    CreateCollectionRequest,
    CustomerInput,
    PaymentCollection,
)
from application.ports.commerce import CommerceBackend
from application.ports.payment_processor import PaymentProcessor
from application.services.catalog_service import CatalogPriceResolver
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import DomainValidationException
from domain.common.money import ex_to_inc_minor
from domain.payment.entity import ArtifactKind, MetadataKey


logger = get_logger(__name__)


def collection_idempotency_key(
    kind: ArtifactKind, req: CreateCollectionRequest, request_ref: Optional[str] = None
) -> str:
    """
    Key for the processor create call.

    A draft is a single purchase, so its key is stable per draft. A cart is
    not: buying the same cart twice must yield two artifacts, so the key is
    bound to the request (``request_ref``, normally the X-Request-ID) and a
    fresh one is drawn when there is none.
    """
    if req.idempotency_key:
        return req.idempotency_key
    if req.draft_id:
        source = f"draft={req.draft_id}"
    else:
        lines = sorted(f"{li.item_id}x{li.quantity}" for li in req.lines or [])
        source = "lines=" + ",".join(lines) + f"|req={request_ref or uuid.uuid4().hex}"
    base = f"collect|{kind.value}|{req.customer.crm_customer_id}|{req.customer.commerce_customer_id or ''}|{source}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class PaymentIntentService:
    def __init__(
        self,
        processor: PaymentProcessor,
        commerce: CommerceBackend,
        settings: PaymentSettings,
        catalog: Optional[CatalogPriceResolver] = None,
    ) -> None:
        self.processor = processor
        self.commerce = commerce
        self.settings = settings
        self.catalog = catalog or CatalogPriceResolver(commerce)

    async def create_collection(
        self, kind: ArtifactKind, req: CreateCollectionRequest, *, request_ref: Optional[str] = None
    ) -> PaymentCollection:
        key = collection_idempotency_key(kind, req, request_ref)
        logger.info(
            "payment_collection_request",
            kind=kind.value,
            mode=req.mode,
            draft_id=req.draft_id,
            crm_customer_id=req.customer.crm_customer_id,
            idempotency_key=key,
        )
        if req.draft_id:
            lines = await self._draft_lines(req.draft_id)
        else:
            lines = await self._direct_lines(req.lines or [])

        collection = CreateCollection(
            kind=kind,
            currency=self.settings.currency,
            lines=lines,
            metadata=self._metadata(req.customer, req.draft_id),
            success_url=self._success_url(req.customer),
            cancel_url=self._cancel_url(req.customer),
            customer_email=req.customer.email,
            idempotency_key=key,
        )
        artifact = await self.processor.create_collection(collection)
        logger.info(
            "payment_collection_created",
            kind=kind.value,
            artifact_id=artifact.id,
            amount_total=artifact.amount_total,
            currency=artifact.currency,
        )
        return PaymentCollection(
            artifact_id=artifact.id,
            kind=kind,
            mode="draft" if req.draft_id else "direct",
            url=artifact.url,
            amount_total=artifact.amount_total_major,
            amount_total_minor=artifact.amount_total,
            currency=artifact.currency,
            idempotency_key=key,
        )

    async def _draft_lines(self, draft_id: str) -> list[CollectionLine]:
        draft = await self.commerce.get_draft_order(draft_id)
        if draft.is_completed:
            raise DomainValidationException(
                f"Draft {draft_id} is already completed",
                field="draft_id",
                details={"draft_id": draft_id, "order_id": draft.order_id},
            )
        if not draft.line_items:
            raise DomainValidationException(f"Draft {draft_id} has no lines", field="draft_id")
        rate = self.settings.vat_rate
        lines = []
        for li in draft.line_items:
            metadata = {MetadataKey.DRAFT_ORDER_ID: draft.draft_id}
            if li.variant_id:
                metadata[MetadataKey.VARIANT_ID] = li.variant_id
            lines.append(
                CollectionLine(
                    description=li.display_name,
                    quantity=li.quantity,
                    unit_amount=ex_to_inc_minor(li.unit_price_ex_tax, rate),
                    metadata=metadata,
                )
            )
        return lines

    async def _direct_lines(self, cart: list[CartLineInput]) -> list[CollectionLine]:
        variants = await self.catalog.resolve([li.item_id for li in cart])
        rate = self.settings.vat_rate
        return [
            CollectionLine(
                description=variants[li.item_id].display_name,
                quantity=li.quantity,
                unit_amount=ex_to_inc_minor(variants[li.item_id].unit_price_ex_tax, rate),
                metadata={MetadataKey.VARIANT_ID: li.item_id},
            )
            for li in cart
        ]

    def _metadata(self, customer: CustomerInput, draft_id: Optional[str]) -> dict[str, str]:
        metadata = {
            MetadataKey.CRM_CUSTOMER_ID: customer.crm_customer_id,
            MetadataKey.SOURCE: self.settings.source_tag,
        }
        if customer.commerce_customer_id:
            metadata[MetadataKey.COMMERCE_CUSTOMER_ID] = customer.commerce_customer_id
        if draft_id:
            metadata[MetadataKey.DRAFT_ORDER_ID] = draft_id
        return metadata

    def _success_url(self, customer: CustomerInput) -> str:
        # {CHECKOUT_SESSION_ID} is substituted by the processor
        return f"{self.settings.app_base_url}/customers/{customer.crm_customer_id}?paid=1&session_id={{CHECKOUT_SESSION_ID}}"

    def _cancel_url(self, customer: CustomerInput) -> str:
        return f"{self.settings.app_base_url}/orders/new?customerId={customer.crm_customer_id}"
