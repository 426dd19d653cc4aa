"""
De-duplication guard: answers "has this already happened?" from the external
systems themselves, so a redelivered webhook converges instead of repeating
side effects. There is no local lock or cache; each check is a read.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from application.ports.commerce import CommerceBackend
from application.ports.payment_processor import PaymentProcessor
from core.logging_config import get_logger
from domain.commerce.entity import OrderTransaction
from domain.common.exceptions import BusinessException
from domain.payment.entity import MetadataKey, PaymentArtifact


logger = get_logger(__name__)

DEDUP_TAG_PREFIX = "crm-pay-"


def dedup_tag(artifact_id: str) -> str:
    """Order tag tying a commerce order to the artifact that paid for it.

    Hashed because commerce tags are capped at 40 characters and session ids
    are longer.
    """
    return DEDUP_TAG_PREFIX + hashlib.sha256(artifact_id.encode("utf-8")).hexdigest()[:24]


class DeduplicationGuard:
    def __init__(self, processor: PaymentProcessor, commerce: CommerceBackend) -> None:
        self._processor = processor
        self._commerce = commerce

    async def existing_order_id(self, artifact: PaymentArtifact) -> Optional[str]:
        """Order already created from this artifact, if any.

        The processor-side marker is read first: it is written right after
        creation and is immediately consistent. The commerce tag search covers
        the window where the marker write itself failed.
        """
        if artifact.payment_intent_id:
            metadata = await self._processor.get_payment_intent_metadata(artifact.payment_intent_id)
            marker = metadata.get(MetadataKey.COMMERCE_ORDER_ID)
            if marker:
                logger.info("dedup_order_found", artifact_id=artifact.id, order_id=marker, via="processor_marker")
                return marker
        found = await self._commerce.find_order_id_by_tag(dedup_tag(artifact.id))
        if found:
            logger.info("dedup_order_found", artifact_id=artifact.id, order_id=found, via="commerce_tag")
        return found

    async def record_order(self, artifact: PaymentArtifact, order_id: str) -> bool:
        """Write the processor-side marker. Best effort: the tag still guards."""
        if not artifact.payment_intent_id:
            return False
        try:
            await self._processor.update_payment_intent_metadata(
                artifact.payment_intent_id, {MetadataKey.COMMERCE_ORDER_ID: order_id}
            )
        except BusinessException as exc:
            logger.error(
                "dedup_marker_write_failed",
                artifact_id=artifact.id,
                order_id=order_id,
                error=exc.message,
            )
            return False
        return True

    async def existing_sale(self, order_id: str, artifact: PaymentArtifact) -> Optional[OrderTransaction]:
        """A successful sale already recorded for this artifact's payment."""
        for txn in await self._commerce.list_transactions(order_id):
            if not txn.is_successful_sale:
                continue
            if artifact.payment_intent_id and txn.authorization == artifact.payment_intent_id:
                return txn
            if txn.message and artifact.id in txn.message:
                return txn
        return None
