"""
API依赖项 - 从 app.state 组装应用服务

客户端（Stripe/Shopify）与配置在 lifespan 中创建一次，挂在 app.state 上；
测试通过 dependency_overrides 替换 get_processor/get_commerce 等即可。
"""
from typing import Callable

from fastapi import Depends, Request

from application.ports.commerce import CommerceBackend
from application.ports.payment_processor import PaymentProcessor
from application.services.crm_mirror_service import CrmMirrorService
from application.services.draft_order_service import DraftOrderService
from application.services.order_completion_service import OrderCompletionService
from application.services.payment_intent_service import PaymentIntentService
from application.services.payment_service import PaymentService
from application.services.refund_service import RefundService
from core.settings import PaymentSettings
from domain.common.unit_of_work import AbstractUnitOfWork


def get_settings(request: Request) -> PaymentSettings:
    return request.app.state.payment_settings


def get_processor(request: Request) -> PaymentProcessor:
    return request.app.state.processor


def get_commerce(request: Request) -> CommerceBackend:
    return request.app.state.commerce


def get_uow_factory(request: Request) -> Callable[..., AbstractUnitOfWork]:
    return request.app.state.uow_factory


async def get_mirror_service(
    commerce: CommerceBackend = Depends(get_commerce),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> CrmMirrorService:
    return CrmMirrorService(uow_factory=uow_factory, commerce=commerce)


async def get_payment_intent_service(
    processor: PaymentProcessor = Depends(get_processor),
    commerce: CommerceBackend = Depends(get_commerce),
    settings: PaymentSettings = Depends(get_settings),
) -> PaymentIntentService:
    return PaymentIntentService(processor=processor, commerce=commerce, settings=settings)


async def get_payment_service(
    processor: PaymentProcessor = Depends(get_processor),
    commerce: CommerceBackend = Depends(get_commerce),
    settings: PaymentSettings = Depends(get_settings),
    mirror: CrmMirrorService = Depends(get_mirror_service),
) -> PaymentService:
    completion = OrderCompletionService(processor=processor, commerce=commerce, settings=settings, mirror=mirror)
    return PaymentService(processor=processor, completion=completion)


async def get_refund_service(
    processor: PaymentProcessor = Depends(get_processor),
    commerce: CommerceBackend = Depends(get_commerce),
    settings: PaymentSettings = Depends(get_settings),
    mirror: CrmMirrorService = Depends(get_mirror_service),
) -> RefundService:
    return RefundService(processor=processor, commerce=commerce, settings=settings, mirror=mirror)


async def get_draft_order_service(
    commerce: CommerceBackend = Depends(get_commerce),
    settings: PaymentSettings = Depends(get_settings),
) -> DraftOrderService:
    return DraftOrderService(commerce=commerce, settings=settings)
