"""
Refund engine: validate, let commerce calculate, then move money on both
systems with the one calculated amount.

Processor first, commerce second. If the processor refund went through and
the commerce record did not, the failure is reported with both sides'
identifiers and never retried with a fresh calculation.
"""
from __future__ import annotations

import hashlib
import re
from typing import Optional, Sequence

from application.dtos.commerce import NewTransaction, RefundLineItem
from application.dtos.payments import ProcessorRefundRequest
from application.dtos.refunds import RefundConfirmation, RefundPreview
from application.ports.commerce import CommerceBackend
from application.ports.payment_processor import PaymentProcessor
from application.services.crm_mirror_service import CrmMirrorService
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.commerce.entity import CommerceOrder, OrderTransaction
from domain.common.exceptions import (
    BusinessException,
    OriginalPaymentNotFound,
    PartialExecutionFailure,
    ZeroAmountRefund,
)
from domain.payment.entity import MetadataKey
from domain.refund.entity import OriginalPayment, RefundCalculation, RefundExecution, RefundRequest


logger = get_logger(__name__)

SESSION_ID_PATTERN = re.compile(r"cs_(?:test|live)_[A-Za-z0-9]+")


def refund_idempotency_key(request: RefundRequest, amount_minor: int, prior_refund_ids: Sequence[str] = ()) -> str:
    """
    Processor key for one refund.

    A caller-supplied key wins. Otherwise the key also covers the refunds
    already recorded on the order, so a retry of a refund that never reached
    commerce replays, while a later refund of the same lines is new money.
    """
    if request.idempotency_key:
        base = f"refund|{request.order_id}|client={request.idempotency_key}"
    else:
        lines = ",".join(sorted(f"{li.line_item_id}x{li.quantity}" for li in request.lines))
        after = ",".join(sorted(prior_refund_ids))
        base = f"refund|{request.order_id}|{lines}|{amount_minor}|after={after}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def find_session_id(order: CommerceOrder) -> Optional[str]:
    """Session id recorded on the order: the note first, then attribute values."""
    for text in [order.note or "", *order.note_attributes.values()]:
        match = SESSION_ID_PATTERN.search(text or "")
        if match:
            return match.group(0)
    return None


class RefundService:
    def __init__(
        self,
        processor: PaymentProcessor,
        commerce: CommerceBackend,
        settings: PaymentSettings,
        mirror: Optional[CrmMirrorService] = None,
    ) -> None:
        self.processor = processor
        self.commerce = commerce
        self.settings = settings
        self.mirror = mirror

    async def _load_order(self, order_id: str) -> CommerceOrder:
        if self.mirror is not None:
            # None on a miss or when the mirror cannot be read
            mirrored = await self.mirror.get_order(order_id)
            if mirrored is not None:
                return mirrored
        return await self.commerce.get_order(order_id)

    async def _calculate(self, request: RefundRequest) -> RefundCalculation:
        order = await self._load_order(request.order_id)
        request.validate_against(order)
        return await self.commerce.calculate_refund(request.order_id, self._line_items(request))

    @staticmethod
    def _line_items(request: RefundRequest) -> list[RefundLineItem]:
        return [RefundLineItem(line_item_id=li.line_item_id, quantity=li.quantity) for li in request.lines]

    async def preview(self, request: RefundRequest) -> RefundPreview:
        calc = await self._calculate(request)
        logger.info("refund_preview", order_id=request.order_id, amount=str(calc.amount), currency=calc.currency)
        return RefundPreview(
            order_id=calc.order_id,
            amount=calc.amount,
            currency=calc.currency,
            per_line=calc.per_line,
        )

    async def execute(self, request: RefundRequest) -> RefundConfirmation:
        calc = await self._calculate(request)
        if not calc.is_positive:
            raise ZeroAmountRefund(request.order_id, str(calc.amount))

        transactions = await self.commerce.list_transactions(request.order_id)
        original = await self.resolve_original_payment(request.order_id, transactions)
        recorded = [t for t in transactions if t.is_successful_refund]
        key = refund_idempotency_key(request, calc.amount_minor, [t.id for t in recorded])
        logger.info(
            "refund_execute_request",
            order_id=request.order_id,
            amount=str(calc.amount),
            currency=calc.currency,
            payment_intent_id=original.payment_intent_id,
            parent_transaction_id=original.parent_transaction_id,
            idempotency_key=key,
        )

        processor_refund = await self.processor.create_refund(
            ProcessorRefundRequest(
                payment_intent_id=original.payment_intent_id,
                amount=calc.amount_minor,
                currency=calc.currency,
                idempotency_key=key,
                metadata={
                    MetadataKey.COMMERCE_ORDER_ID: request.order_id,
                    MetadataKey.SOURCE: self.settings.source_tag,
                    "reason": (request.reason or "")[:500],
                },
            )
        )

        # a replayed processor refund that commerce already holds moves no more money
        already = next((t for t in recorded if t.authorization == processor_refund.id), None)
        if already is not None:
            logger.info(
                "refund_already_recorded",
                order_id=request.order_id,
                processor_refund_id=processor_refund.id,
                commerce_transaction_id=already.id,
            )
            return RefundConfirmation(
                order_id=request.order_id,
                amount=already.amount,
                currency=already.currency or calc.currency,
                commerce_refund_id=already.id,
                processor_refund_id=processor_refund.id,
            )

        try:
            commerce_refund_id = await self.commerce.create_refund(
                request.order_id,
                self._line_items(request),
                NewTransaction(
                    kind="refund",
                    amount=calc.amount,
                    currency=calc.currency,
                    gateway=original.gateway or self.settings.shopify.gateway,
                    parent_id=original.parent_transaction_id,
                    authorization=processor_refund.id,
                ),
                note=request.reason,
            )
        except BusinessException as exc:
            logger.critical(
                "refund_partial_execution",
                order_id=request.order_id,
                processor_refund_id=processor_refund.id,
                payment_intent_id=original.payment_intent_id,
                amount=str(calc.amount),
                currency=calc.currency,
                error_type=exc.error_type,
                error=exc.message,
            )
            raise PartialExecutionFailure(
                order_id=request.order_id,
                processor_refund_id=processor_refund.id,
                amount=str(calc.amount),
                currency=calc.currency,
                cause=exc.message,
            ) from exc

        execution = RefundExecution(
            order_id=request.order_id,
            commerce_refund_id=commerce_refund_id,
            processor_refund_id=processor_refund.id,
            amount=calc.amount,
            currency=calc.currency,
        )
        logger.info(
            "refund_executed",
            order_id=execution.order_id,
            commerce_refund_id=execution.commerce_refund_id,
            processor_refund_id=execution.processor_refund_id,
            amount=str(execution.amount),
        )
        if self.mirror is not None:
            await self.mirror.sync_order(request.order_id)
        return RefundConfirmation(
            order_id=execution.order_id,
            amount=execution.amount,
            currency=execution.currency,
            commerce_refund_id=execution.commerce_refund_id,
            processor_refund_id=execution.processor_refund_id,
        )

    async def resolve_original_payment(
        self, order_id: str, transactions: Optional[Sequence[OrderTransaction]] = None
    ) -> OriginalPayment:
        """Parent sale on commerce plus the processor payment intent behind it."""
        if transactions is None:
            transactions = await self.commerce.list_transactions(order_id)
        sales = [t for t in transactions if t.is_successful_sale]
        if not sales:
            raise OriginalPaymentNotFound(order_id, "no successful sale transaction")
        parent = sales[-1]

        if parent.authorization and parent.authorization.startswith("pi_"):
            return OriginalPayment(parent.authorization, parent.id, parent.gateway)

        order = await self.commerce.get_order(order_id)
        session_id = find_session_id(order)
        if session_id:
            session = await self.processor.retrieve_session(session_id)
            if session.payment_intent_id:
                return OriginalPayment(session.payment_intent_id, parent.id, parent.gateway)
        raise OriginalPaymentNotFound(order_id, "no payment intent recorded on the order")
