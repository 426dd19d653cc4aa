"""
Order completion: turns a paid artifact into exactly one Paid commerce order.

Received -> DraftCompleting -> DraftCompleted -> Paid -> Disabling -> Done
Received -> DirectCreating  -> DirectCreated  -> Paid -> Disabling -> Done
Any non-terminal state may move to Failed.

Every step is safe to repeat: finalize-if-not-already, post a sale only if
none exists, mark paid only if not paid, create only if no order carries the
artifact's dedup tag, disable only if active. A redelivered event walks the
same path and converges on the same order.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from application.dtos.commerce import DraftCompleted, NewOrder, NewOrderLine, NewTransaction
from application.dtos.payments import OrderCompletion
from application.ports.commerce import CommerceBackend
from application.ports.payment_processor import PaymentProcessor
from application.services.crm_mirror_service import CrmMirrorService
from application.services.dedup_guard import DeduplicationGuard, dedup_tag
from application.services.reference_resolver import DirectSale, DraftReference, ReferenceResolver
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.common.exceptions import BusinessException, ReconciliationError
from domain.common.money import from_minor, inc_to_ex, line_tax, quantize
from domain.payment.entity import MetadataKey, PaymentArtifact


logger = get_logger(__name__)


class CompletionState(str, Enum):
    RECEIVED = "received"
    DRAFT_COMPLETING = "draft_completing"
    DRAFT_COMPLETED = "draft_completed"
    DIRECT_CREATING = "direct_creating"
    DIRECT_CREATED = "direct_created"
    PAID = "paid"
    DISABLING = "disabling"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[CompletionState, frozenset[CompletionState]] = {
    CompletionState.RECEIVED: frozenset({CompletionState.DRAFT_COMPLETING, CompletionState.DIRECT_CREATING}),
    CompletionState.DRAFT_COMPLETING: frozenset({CompletionState.DRAFT_COMPLETED}),
    CompletionState.DRAFT_COMPLETED: frozenset({CompletionState.PAID}),
    CompletionState.DIRECT_CREATING: frozenset({CompletionState.DIRECT_CREATED}),
    CompletionState.DIRECT_CREATED: frozenset({CompletionState.PAID}),
    CompletionState.PAID: frozenset({CompletionState.DISABLING}),
    CompletionState.DISABLING: frozenset({CompletionState.DONE}),
    CompletionState.DONE: frozenset(),
    CompletionState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({CompletionState.DONE, CompletionState.FAILED})


@dataclass
class CompletionRun:
    """State trace for one delivery; lives only as long as the handler call."""

    artifact_id: str
    state: CompletionState = CompletionState.RECEIVED
    history: list[CompletionState] = field(default_factory=lambda: [CompletionState.RECEIVED])

    def advance(self, target: CompletionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ReconciliationError(
                f"Illegal completion transition {self.state.value} -> {target.value}",
                details={"artifact_id": self.artifact_id},
            )
        self.state = target
        self.history.append(target)
        logger.debug("order_completion_state", artifact_id=self.artifact_id, state=target.value)

    def fail(self) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.state = CompletionState.FAILED
        self.history.append(CompletionState.FAILED)


class OrderCompletionService:
    def __init__(
        self,
        processor: PaymentProcessor,
        commerce: CommerceBackend,
        settings: PaymentSettings,
        mirror: Optional[CrmMirrorService] = None,
        resolver: Optional[ReferenceResolver] = None,
        guard: Optional[DeduplicationGuard] = None,
    ) -> None:
        self.processor = processor
        self.commerce = commerce
        self.settings = settings
        self.mirror = mirror
        self.resolver = resolver or ReferenceResolver(processor)
        self.guard = guard or DeduplicationGuard(processor, commerce)

    async def complete(self, artifact: PaymentArtifact) -> OrderCompletion:
        run = CompletionRun(artifact_id=artifact.id)
        logger.info(
            "order_completion_started",
            artifact_id=artifact.id,
            payment_intent_id=artifact.payment_intent_id,
            amount_total=artifact.amount_total,
        )
        try:
            resolution = await self.resolver.resolve(artifact)
            if isinstance(resolution, DraftReference):
                path = "draft"
                order_id, created = await self._complete_draft(run, artifact, resolution)
            else:
                path = "direct"
                order_id, created = await self._create_direct(run, artifact, resolution)

            run.advance(CompletionState.DISABLING)
            if artifact.payment_link_id:
                await self.processor.disable_payment_link(artifact.payment_link_id)
            run.advance(CompletionState.DONE)
        except BusinessException as exc:
            run.fail()
            logger.error(
                "order_completion_failed",
                artifact_id=artifact.id,
                state_trace=[s.value for s in run.history],
                error_type=exc.error_type,
                error=exc.message,
            )
            raise

        if self.mirror is not None:
            await self.mirror.sync_order(order_id)

        logger.info(
            "order_completion_done",
            artifact_id=artifact.id,
            order_id=order_id,
            path=path,
            created=created,
        )
        return OrderCompletion(
            order_id=order_id,
            admin_url=self.commerce.admin_order_url(order_id),
            path=path,
            states=[s.value for s in run.history],
            created=created,
        )

    # ---- draft path ----

    async def _complete_draft(
        self, run: CompletionRun, artifact: PaymentArtifact, ref: DraftReference
    ) -> tuple[str, bool]:
        run.advance(CompletionState.DRAFT_COMPLETING)
        outcome = await self.commerce.complete_draft_order(ref.draft_id)
        if isinstance(outcome, DraftCompleted):
            order_id, created = outcome.order_id, True
        else:
            # already finalized by an earlier delivery, or refused: the draft knows
            draft = await self.commerce.get_draft_order(ref.draft_id)
            if not draft.order_id:
                raise ReconciliationError(
                    f"Draft {ref.draft_id} could not be completed",
                    details={
                        "draft_id": ref.draft_id,
                        "artifact_id": artifact.id,
                        "status_code": outcome.status_code,
                        "errors": outcome.errors,
                    },
                )
            order_id, created = draft.order_id, False
            logger.info("draft_already_completed", draft_id=ref.draft_id, order_id=order_id)
        run.advance(CompletionState.DRAFT_COMPLETED)

        await self._record_sale(order_id, artifact)
        order = await self.commerce.get_order(order_id)
        if not order.is_paid:
            await self.commerce.mark_order_paid(order_id)
        run.advance(CompletionState.PAID)

        await self._annotate(order_id, artifact, order.note, order.note_attributes)
        return order_id, created

    async def _record_sale(self, order_id: str, artifact: PaymentArtifact) -> None:
        existing = await self.guard.existing_sale(order_id, artifact)
        if existing is not None:
            logger.info("sale_transaction_exists", order_id=order_id, transaction_id=existing.id)
            return
        txn = await self.commerce.create_transaction(
            order_id,
            NewTransaction(
                kind="sale",
                amount=artifact.amount_total_major,
                currency=artifact.currency,
                gateway=self.settings.shopify.gateway,
                authorization=artifact.payment_intent_id,
                message=f"Stripe Checkout {artifact.id}",
            ),
        )
        logger.info("sale_transaction_recorded", order_id=order_id, transaction_id=txn.id, amount=str(txn.amount))

    async def _annotate(
        self, order_id: str, artifact: PaymentArtifact, note: Optional[str], existing: dict[str, str]
    ) -> None:
        attrs = dict(existing)
        attrs["Stripe Session"] = artifact.id
        if artifact.payment_intent_id:
            attrs["Stripe Payment Intent"] = artifact.payment_intent_id
        if attrs == existing:
            return
        try:
            await self.commerce.annotate_order(order_id, note=note or "", note_attributes=attrs)
        except BusinessException as exc:
            logger.warning("order_annotation_failed", order_id=order_id, error=exc.message)

    # ---- direct path ----

    async def _create_direct(
        self, run: CompletionRun, artifact: PaymentArtifact, sale: DirectSale
    ) -> tuple[str, bool]:
        run.advance(CompletionState.DIRECT_CREATING)
        existing = await self.guard.existing_order_id(artifact)
        if existing:
            run.advance(CompletionState.DIRECT_CREATED)
            run.advance(CompletionState.PAID)
            return existing, False

        order = await self.commerce.create_order(self._build_order(artifact, sale))
        logger.info("direct_order_created", artifact_id=artifact.id, order_id=order.id)
        run.advance(CompletionState.DIRECT_CREATED)
        await self.guard.record_order(artifact, order.id)
        run.advance(CompletionState.PAID)
        return order.id, True

    def _build_order(self, artifact: PaymentArtifact, sale: DirectSale) -> NewOrder:
        rate = self.settings.vat_rate
        lines = []
        total_tax = Decimal("0.00")
        for direct in sale.lines:
            qty = direct.line.quantity
            unit_inc = from_minor(direct.line.amount_total) / qty
            unit_ex = inc_to_ex(unit_inc, rate)
            tax = line_tax(unit_ex, qty, rate)
            total_tax += tax
            lines.append(
                NewOrderLine(
                    variant_id=direct.variant_id,
                    quantity=qty,
                    price=unit_ex,
                    tax_amount=tax,
                    tax_rate=rate,
                )
            )
        return NewOrder(
            lines=lines,
            currency=artifact.currency,
            total_tax=quantize(total_tax),
            customer_id=artifact.metadata.get(MetadataKey.COMMERCE_CUSTOMER_ID),
            note=f"Stripe Checkout {artifact.id}",
            note_attributes={
                "Source": self.settings.source_tag,
                "Stripe Checkout": artifact.id,
                **({"Stripe Payment Intent": artifact.payment_intent_id} if artifact.payment_intent_id else {}),
            },
            tags=[self.settings.source_tag, dedup_tag(artifact.id)],
        )
