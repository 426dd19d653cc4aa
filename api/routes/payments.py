"""
Payments API routes.

Checkout session / payment link creation and the processor webhook. Keep
this thin: no SDK details here.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_payment_intent_service, get_payment_service
from api.middleware import get_request_id
from application.dtos.payments import CreateCollectionRequest
from application.services.payment_intent_service import PaymentIntentService
from application.services.payment_service import PaymentService
from core.response import success_response
from domain.payment.entity import ArtifactKind


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/checkout-sessions", summary="Create checkout session")
async def create_checkout_session(
    payload: CreateCollectionRequest,
    service: PaymentIntentService = Depends(get_payment_intent_service),
):
    collection = await service.create_collection(ArtifactKind.SESSION, payload, request_ref=get_request_id())
    return success_response(data=collection.model_dump(mode="json"), message="Checkout session created")


@router.post("/payment-links", summary="Create payment link")
async def create_payment_link(
    payload: CreateCollectionRequest,
    service: PaymentIntentService = Depends(get_payment_intent_service),
):
    collection = await service.create_collection(ArtifactKind.LINK, payload, request_ref=get_request_id())
    return success_response(data=collection.model_dump(mode="json"), message="Payment link created")


@router.post("/webhooks/stripe", summary="Stripe webhook")
async def stripe_webhook(request: Request, service: PaymentService = Depends(get_payment_service)):
    """Authenticated deliveries are acknowledged; signature failures answer 400
    and transient upstream failures 503 (via the global handler) so the
    processor redelivers."""
    # signature covers the exact bytes received
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    ack = await service.handle_webhook(headers, raw_body)
    return success_response(data=ack.model_dump(mode="json"), message=f"Webhook {ack.status}")
