"""
Orders API routes: draft creation and refunds against commerce orders.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from api.dependencies import get_draft_order_service, get_refund_service
from application.dtos.orders import CreateDraftOrderRequest
from application.dtos.refunds import RefundRequestIn
from application.services.draft_order_service import DraftOrderService
from application.services.refund_service import RefundService
from core.response import success_response


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/drafts", summary="Create draft order")
async def create_draft_order(
    payload: CreateDraftOrderRequest,
    service: DraftOrderService = Depends(get_draft_order_service),
):
    draft = await service.create_draft(payload)
    return success_response(data=draft.model_dump(mode="json"), message="Draft order created")


@router.post("/{order_id}/refunds/preview", summary="Preview refund")
async def preview_refund(
    payload: RefundRequestIn,
    order_id: str = Path(..., min_length=1),
    service: RefundService = Depends(get_refund_service),
):
    preview = await service.preview(payload.to_domain(order_id))
    return success_response(data=preview.model_dump(mode="json"), message="Refund calculated")


@router.post("/{order_id}/refunds", summary="Execute refund")
async def execute_refund(
    payload: RefundRequestIn,
    order_id: str = Path(..., min_length=1),
    service: RefundService = Depends(get_refund_service),
):
    confirmation = await service.execute(payload.to_domain(order_id))
    return success_response(data=confirmation.model_dump(mode="json"), message="Refund executed")
