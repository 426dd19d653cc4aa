"""
CRM 订单镜像应用服务 - 把商城订单同步到本地库
"""
from __future__ import annotations

from typing import Callable, Optional

from application.ports.commerce import CommerceBackend
from core.logging_config import get_logger
from domain.commerce.entity import CommerceOrder
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class CrmMirrorService:
    """本地镜像只是副本：写入失败只记录日志，不影响商城侧状态"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], commerce: CommerceBackend):
        self._uow_factory = uow_factory
        self._commerce = commerce

    async def get_order(self, order_id: str) -> Optional[CommerceOrder]:
        """Mirrored copy, or None when missing or the mirror cannot be read."""
        try:
            async with self._uow_factory(readonly=True) as uow:
                return await uow.order_repository.get_by_commerce_id(order_id)
        except Exception as exc:
            logger.warning("crm_mirror_read_failed", order_id=order_id, error=str(exc), error_type=type(exc).__name__)
            return None

    async def upsert(self, order: CommerceOrder) -> CommerceOrder:
        async with self._uow_factory() as uow:
            return await uow.order_repository.upsert(order)

    async def sync_order(self, order_id: str) -> bool:
        """Fetch the order from commerce and mirror it. Never raises."""
        try:
            order = await self._commerce.get_order(order_id)
            stored = await self.upsert(order)
        except Exception as exc:
            logger.error("crm_mirror_write_failed", order_id=order_id, error=str(exc), error_type=type(exc).__name__)
            return False
        logger.info(
            "crm_mirror_written",
            order_id=order_id,
            financial_status=stored.financial_status.value,
            net_ex_tax=str(stored.net_ex_tax_total),
        )
        return True
