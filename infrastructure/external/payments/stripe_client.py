"""
Stripe Checkout / Payment Links adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources are called with per-request ``api_key`` and
  ``stripe_version`` so the pinned API version never depends on global state.
- Idempotency keys are supplied via the ``idempotency_key`` kwarg; the SDK
  only retries POSTs (``max_network_retries``) when one is present.
- Webhook verification uses ``stripe.Webhook.construct_event`` over the raw
  request bytes with the ``Stripe-Signature`` header.
"""
from __future__ import annotations

from typing import Any, Optional

import stripe
from pydantic import ValidationError

from application.dtos.payments import (
    CollectionLine,
    CreateCollection,
    ProcessorRefundRequest,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import PaymentSettings
from domain.payment.entity import ArtifactKind, ArtifactStatus, PaymentArtifact
from domain.refund.entity import ProcessorRefund
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from infrastructure.external.payments.schemas import (
    StripeCheckoutSession,
    StripePaymentIntent,
    StripePaymentLink,
    StripeRefund,
    stripe_event_adapter,
)


logger = get_logger(__name__)

SESSION_EXPAND = ["line_items.data.price.product"]


def _plain(obj: Any) -> Any:
    """StripeObject -> plain dict; test doubles are already dicts."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return obj


def _header(headers: dict[str, Any], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, settings: PaymentSettings):
        super().__init__(timeouts=settings.timeouts)
        self._settings = settings
        if settings.stripe.secret_key:
            stripe.max_network_retries = settings.stripe.max_network_retries

    @property
    def _request_opts(self) -> dict[str, Any]:
        key = self._settings.stripe.secret_key
        if not key:
            raise PaymentProviderError("STRIPE__SECRET_KEY not configured", provider=self.provider)
        return {"api_key": key, "stripe_version": self._settings.stripe.api_version}

    async def _stripe(self, operation: str, fn, /, *args: Any, **kwargs: Any) -> Any:
        try:
            return _plain(await self._call(operation, fn, *args, **kwargs))
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc
        except stripe.StripeError as exc:
            status = getattr(exc, "http_status", None)
            if status is not None and status >= 500:
                raise PaymentRecoverableError(str(exc), provider=self.provider, status_code=status) from exc
            raise PaymentProviderError(
                str(exc),
                provider=self.provider,
                provider_code=getattr(exc, "code", None),
                details={"operation": operation, "http_status": status},
            ) from exc

    # Collection
    async def create_collection(self, req: CreateCollection) -> PaymentArtifact:  # type: ignore[override]
        if req.kind == ArtifactKind.SESSION:
            return await self._create_session(req)
        return await self._create_payment_link(req)

    async def _create_session(self, req: CreateCollection) -> PaymentArtifact:
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [self._price_data_line(line, req.currency) for line in req.lines],
            "metadata": req.metadata,
            "payment_intent_data": {"metadata": req.metadata},
            "success_url": req.success_url,
            "cancel_url": req.cancel_url or req.success_url,
        }
        if req.customer_email:
            params["customer_email"] = req.customer_email
        raw = await self._stripe(
            "checkout_session_create",
            stripe.checkout.Session.create,
            idempotency_key=req.idempotency_key,
            **params,
            **self._request_opts,
        )
        session = StripeCheckoutSession.model_validate(raw)
        self._log("stripe_session_created", session_id=session.id, amount_total=session.amount_total)
        return PaymentArtifact(
            id=session.id,
            kind=ArtifactKind.SESSION,
            status=ArtifactStatus(self._map_status(session.status or "open")),
            amount_total=session.amount_total if session.amount_total is not None else req.amount_total,
            currency=session.currency or req.currency,
            metadata=dict(session.metadata),
            payment_status=session.payment_status,
            payment_intent_id=session.payment_intent_id,
            url=session.url,
        )

    async def _create_payment_link(self, req: CreateCollection) -> PaymentArtifact:
        # Links cannot take inline price_data; each line gets its own Price
        link_items = []
        for i, line in enumerate(req.lines):
            price = await self._stripe(
                "price_create",
                stripe.Price.create,
                currency=req.currency,
                unit_amount=line.unit_amount,
                product_data={"name": line.description, "metadata": line.metadata},
                idempotency_key=f"{req.idempotency_key}:price:{i}",
                **self._request_opts,
            )
            link_items.append({"price": price["id"], "quantity": line.quantity})

        raw = await self._stripe(
            "payment_link_create",
            stripe.PaymentLink.create,
            line_items=link_items,
            metadata=req.metadata,
            payment_intent_data={"metadata": req.metadata},
            after_completion={"type": "redirect", "redirect": {"url": req.success_url}},
            idempotency_key=req.idempotency_key,
            **self._request_opts,
        )
        link = StripePaymentLink.model_validate(raw)
        self._log("stripe_payment_link_created", payment_link_id=link.id, amount_total=req.amount_total)
        return PaymentArtifact(
            id=link.id,
            kind=ArtifactKind.LINK,
            status=ArtifactStatus.OPEN if link.active else ArtifactStatus.DISABLED,
            amount_total=req.amount_total,
            currency=link.currency or req.currency,
            metadata=dict(link.metadata),
            payment_link_id=link.id,
            url=link.url,
        )

    @staticmethod
    def _price_data_line(line: CollectionLine, currency: str) -> dict[str, Any]:
        return {
            "quantity": line.quantity,
            "price_data": {
                "currency": currency,
                "unit_amount": line.unit_amount,
                "product_data": {"name": line.description, "metadata": line.metadata},
            },
        }

    # Reads
    async def retrieve_session(self, session_id: str) -> PaymentArtifact:  # type: ignore[override]
        raw = await self._stripe(
            "checkout_session_retrieve",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=SESSION_EXPAND,
            **self._request_opts,
        )
        session = StripeCheckoutSession.model_validate(raw)
        lines = [li.to_line() for li in (session.line_items.data if session.line_items else [])]
        return PaymentArtifact(
            id=session.id,
            kind=ArtifactKind.SESSION,
            status=ArtifactStatus(self._map_status(session.status or "open")),
            amount_total=session.amount_total or 0,
            currency=session.currency or self._settings.currency,
            metadata=dict(session.metadata),
            lines=lines,
            payment_status=session.payment_status,
            payment_intent_id=session.payment_intent_id,
            payment_link_id=session.payment_link_id,
            url=session.url,
        )

    async def retrieve_payment_link(self, link_id: str) -> PaymentArtifact:  # type: ignore[override]
        raw = await self._stripe("payment_link_retrieve", stripe.PaymentLink.retrieve, link_id, **self._request_opts)
        link = StripePaymentLink.model_validate(raw)
        return PaymentArtifact(
            id=link.id,
            kind=ArtifactKind.LINK,
            status=ArtifactStatus.OPEN if link.active else ArtifactStatus.DISABLED,
            amount_total=0,
            currency=link.currency or self._settings.currency,
            metadata=dict(link.metadata),
            payment_link_id=link.id,
            url=link.url,
        )

    async def disable_payment_link(self, link_id: str) -> bool:  # type: ignore[override]
        link = await self.retrieve_payment_link(link_id)
        if not link.disable():
            self._log("stripe_payment_link_already_inactive", payment_link_id=link_id)
            return False
        await self._stripe("payment_link_update", stripe.PaymentLink.modify, link_id, active=False, **self._request_opts)
        self._log("stripe_payment_link_disabled", payment_link_id=link_id)
        return True

    async def get_payment_intent_metadata(self, payment_intent_id: str) -> dict[str, str]:  # type: ignore[override]
        raw = await self._stripe(
            "payment_intent_retrieve", stripe.PaymentIntent.retrieve, payment_intent_id, **self._request_opts
        )
        return dict(StripePaymentIntent.model_validate(raw).metadata)

    async def update_payment_intent_metadata(self, payment_intent_id: str, metadata: dict[str, str]) -> None:  # type: ignore[override]
        # Stripe merges metadata keys; existing keys are kept
        await self._stripe(
            "payment_intent_update",
            stripe.PaymentIntent.modify,
            payment_intent_id,
            metadata=metadata,
            **self._request_opts,
        )

    # Refunds
    async def create_refund(self, req: ProcessorRefundRequest) -> ProcessorRefund:  # type: ignore[override]
        raw = await self._stripe(
            "refund_create",
            stripe.Refund.create,
            payment_intent=req.payment_intent_id,
            amount=req.amount,
            reason=req.reason,
            metadata=req.metadata,
            idempotency_key=req.idempotency_key,
            **self._request_opts,
        )
        refund = StripeRefund.model_validate(raw)
        self._log("stripe_refund_created", refund_id=refund.id, amount=refund.amount, status=refund.status)
        return ProcessorRefund(id=refund.id, amount=refund.amount, status=refund.status or "pending")

    # Webhooks
    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:  # type: ignore[override]
        secret = self._settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = _header(headers, "Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=secret,
                tolerance=self._settings.webhook.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        except ValueError as exc:
            raise PaymentSignatureError("Webhook body is not valid JSON", provider=self.provider) from exc

        # The verified bytes are the source of truth, not the SDK object
        try:
            raw_event = stripe_event_adapter.validate_json(body)
        except ValidationError as exc:
            raise PaymentProviderError(
                "Verified webhook does not match the expected event shape",
                provider=self.provider,
                details={"errors": exc.error_count()},
            ) from exc
        return raw_event.to_event()
