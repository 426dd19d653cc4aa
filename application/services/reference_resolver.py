"""
Reference resolution: which commerce object a paid artifact belongs to.

Priority, first match wins:
1. the artifact's own draft back-reference (session metadata)
2. the originating payment link's metadata
3. any charged line's metadata

With no draft reference the payment is a direct sale, and every charged line
must name the variant it was sold as.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Union

from application.ports.payment_processor import PaymentProcessor
from core.logging_config import get_logger
from domain.common.exceptions import UnresolvableReference
from domain.payment.entity import ArtifactLine, MetadataKey, PaymentArtifact


logger = get_logger(__name__)


@dataclass(frozen=True)
class DraftReference:
    draft_id: str
    source: Literal["session", "payment_link", "line_item"]


@dataclass(frozen=True)
class DirectLine:
    variant_id: str
    line: ArtifactLine


@dataclass(frozen=True)
class DirectSale:
    lines: tuple[DirectLine, ...]


Resolution = Union[DraftReference, DirectSale]


class ReferenceResolver:
    def __init__(self, processor: PaymentProcessor) -> None:
        self._processor = processor

    async def resolve(self, artifact: PaymentArtifact) -> Resolution:
        if artifact.back_reference:
            return self._found(artifact, DraftReference(artifact.back_reference, "session"))

        if artifact.payment_link_id:
            link = await self._processor.retrieve_payment_link(artifact.payment_link_id)
            if link.back_reference:
                return self._found(artifact, DraftReference(link.back_reference, "payment_link"))

        for line in artifact.lines:
            draft_id = line.metadata.get(MetadataKey.DRAFT_ORDER_ID)
            if draft_id:
                return self._found(artifact, DraftReference(draft_id, "line_item"))

        missing = [i for i, line in enumerate(artifact.lines) if not line.metadata.get(MetadataKey.VARIANT_ID)]
        if not artifact.lines or missing:
            logger.error(
                "reference_unresolvable",
                artifact_id=artifact.id,
                lines=len(artifact.lines),
                missing_lines=missing,
            )
            raise UnresolvableReference(artifact.id, missing_lines=missing)

        logger.info("reference_resolved_direct", artifact_id=artifact.id, lines=len(artifact.lines))
        return DirectSale(
            lines=tuple(DirectLine(variant_id=line.metadata[MetadataKey.VARIANT_ID], line=line) for line in artifact.lines)
        )

    @staticmethod
    def _found(artifact: PaymentArtifact, ref: DraftReference) -> DraftReference:
        logger.info("reference_resolved_draft", artifact_id=artifact.id, draft_id=ref.draft_id, source=ref.source)
        return ref
