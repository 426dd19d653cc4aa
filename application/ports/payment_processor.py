"""
Payment processor port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from application.dtos.payments import (
    CreateCollection,
    ProcessorRefundRequest,
    WebhookEvent,
)
from domain.payment.entity import PaymentArtifact
from domain.refund.entity import ProcessorRefund


@runtime_checkable
class PaymentProcessor(Protocol):
    """Protocol for the card processor.

    Implementations should be async and side-effect free beyond IO. Writes
    that can be retried take an idempotency key.
    """

    provider: str

    async def create_collection(self, req: CreateCollection) -> PaymentArtifact: ...

    async def retrieve_session(self, session_id: str) -> PaymentArtifact:
        """Session with its charged lines and their metadata."""
        ...

    async def retrieve_payment_link(self, link_id: str) -> PaymentArtifact: ...

    async def disable_payment_link(self, link_id: str) -> bool:
        """Deactivate if still active. Returns True when this call disabled it."""
        ...

    async def get_payment_intent_metadata(self, payment_intent_id: str) -> dict[str, str]: ...

    async def update_payment_intent_metadata(self, payment_intent_id: str, metadata: dict[str, str]) -> None: ...

    async def create_refund(self, req: ProcessorRefundRequest) -> ProcessorRefund: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...
