"""
Base payment client implementing shared concerns: timeouts, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
Provider SDKs are synchronous; calls run in a worker thread under an explicit
deadline so the event loop is never blocked by a slow processor.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from core.logging_config import get_logger
from core.settings import PaymentTimeouts
from application.dtos.payments import (
    CreateCollection,
    ProcessorRefundRequest,
    WebhookEvent,
)
from application.ports.payment_processor import PaymentProcessor
from domain.payment.entity import PaymentArtifact
from domain.refund.entity import ProcessorRefund
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient(PaymentProcessor):
    provider: str = "base"

    def __init__(self, *, timeouts: Optional[PaymentTimeouts] = None) -> None:
        self._timeouts = timeouts or PaymentTimeouts()

    @property
    def deadline(self) -> float:
        return self._timeouts.total

    async def _call(self, operation: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
        """Run a blocking SDK call off the loop, bounded by the total timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self.deadline)
        except asyncio.TimeoutError as exc:
            logger.warning("payment_provider_timeout", provider=self.provider, operation=operation, timeout=self.deadline)
            raise PaymentRecoverableError(
                f"{self.provider} {operation} timed out after {self.deadline}s",
                provider=self.provider,
            ) from exc

    async def aclose(self) -> None:
        """SDK clients hold no sockets of their own here."""
        return None

    # Default implementations raise to force override where needed
    async def create_collection(self, req: CreateCollection) -> PaymentArtifact:  # type: ignore[override]
        raise NotImplementedError

    async def retrieve_session(self, session_id: str) -> PaymentArtifact:  # type: ignore[override]
        raise NotImplementedError

    async def retrieve_payment_link(self, link_id: str) -> PaymentArtifact:  # type: ignore[override]
        raise NotImplementedError

    async def disable_payment_link(self, link_id: str) -> bool:  # type: ignore[override]
        raise NotImplementedError

    async def get_payment_intent_metadata(self, payment_intent_id: str) -> dict[str, str]:  # type: ignore[override]
        raise NotImplementedError

    async def update_payment_intent_metadata(self, payment_intent_id: str, metadata: dict[str, str]) -> None:  # type: ignore[override]
        raise NotImplementedError

    async def create_refund(self, req: ProcessorRefundRequest) -> ProcessorRefund:  # type: ignore[override]
        raise NotImplementedError

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
