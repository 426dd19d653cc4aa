"""
Application service orchestrating processor webhook deliveries.

Depends only on the PaymentProcessor/CommerceBackend ports; implementations
are injected from the composition root (API), keeping dependencies one-way.

Delivery outcome:
- bad signature: raised, the caller answers 400 and nothing else runs
- transient upstream failure: raised, the caller answers 503 and the
  processor redelivers
- any other business failure: acknowledged as "failed" and logged for an
  operator, so the processor stops redelivering a poison event
"""
from __future__ import annotations

from typing import Any

from application.dtos.payments import IgnoredEvent, WebhookAck
from application.ports.payment_processor import PaymentProcessor
from application.services.order_completion_service import OrderCompletionService
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, UpstreamAuthError, UpstreamTransientError


logger = get_logger(__name__)


class PaymentService:
    def __init__(self, processor: PaymentProcessor, completion: OrderCompletionService) -> None:
        self.processor = processor
        self.completion = completion

    async def handle_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookAck:
        event = self.processor.parse_webhook(headers, body)
        logger.info(
            "payment_webhook_parsed",
            provider=self.processor.provider,
            event_type=event.event_type,
            event_id=event.event_id,
            kind=event.kind,
        )
        if isinstance(event, IgnoredEvent):
            return WebhookAck(event_id=event.event_id, event_type=event.event_type, status="ignored")

        try:
            # the event body may be stale; the session read is authoritative
            artifact = await self.processor.retrieve_session(event.session_id)
            if not artifact.is_paid:
                logger.info(
                    "payment_webhook_not_paid",
                    event_id=event.event_id,
                    session_id=event.session_id,
                    payment_status=artifact.payment_status,
                )
                return WebhookAck(event_id=event.event_id, event_type=event.event_type, status="ignored")
            if event.payment_link_id and not artifact.payment_link_id:
                artifact.payment_link_id = event.payment_link_id
            result = await self.completion.complete(artifact)
        except (UpstreamTransientError, UpstreamAuthError):
            raise
        except BusinessException as exc:
            logger.error(
                "payment_webhook_unprocessable",
                event_id=event.event_id,
                session_id=event.session_id,
                error_type=exc.error_type,
                code=exc.code,
                error=exc.message,
                details=exc.details,
            )
            return WebhookAck(
                event_id=event.event_id,
                event_type=event.event_type,
                status="failed",
                error_type=exc.error_type,
            )
        return WebhookAck(
            event_id=event.event_id,
            event_type=event.event_type,
            status="processed",
            order_id=result.order_id,
        )
