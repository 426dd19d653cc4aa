"""
订单镜像仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.commerce.entity import CommerceOrder, FinancialStatus, OrderLineItem
from domain.commerce.repository import OrderMirrorRepository
from infrastructure.models.order import CrmOrderLineItemModel, CrmOrderModel


logger = get_logger(__name__)


class SQLAlchemyOrderMirrorRepository(OrderMirrorRepository):
    """订单镜像仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CrmOrderModel) -> CommerceOrder:
        """将数据库模型转换为领域实体"""
        return CommerceOrder(
            id=model.commerce_order_id,
            name=model.name,
            financial_status=FinancialStatus(model.financial_status),
            currency=model.currency,
            line_items=[
                OrderLineItem(
                    id=li.commerce_line_item_id,
                    quantity=li.quantity,
                    unit_price=Decimal(li.unit_price),
                    title=li.title,
                    variant_id=li.variant_id,
                    variant_title=li.variant_title,
                    sku=li.sku,
                )
                for li in model.line_items
            ],
            total_tax=Decimal(model.taxes or 0),
            total_shipping=Decimal(model.shipping or 0),
            total_price=Decimal(model.total) if model.total is not None else None,
            subtotal_price=Decimal(model.subtotal) if model.subtotal is not None else None,
            customer_id=model.commerce_customer_id,
            note=model.note,
            note_attributes=dict(model.note_attributes or {}),
            tags=list(model.tags or []),
        )

    @staticmethod
    def _apply(model: CrmOrderModel, order: CommerceOrder) -> None:
        model.name = order.name
        model.commerce_customer_id = order.customer_id
        model.currency = order.currency
        model.subtotal = order.subtotal_price
        model.total = order.total_price
        model.taxes = order.total_tax
        model.shipping = order.total_shipping
        model.net_ex_tax = order.net_ex_tax_total
        model.note = order.note
        model.note_attributes = dict(order.note_attributes)
        model.tags = list(order.tags)
        # 按行ID原地更新，避免同一次 flush 中先插入后删除触发唯一约束
        existing = {li.commerce_line_item_id: li for li in (model.line_items or [])}
        incoming = {li.id for li in order.line_items}
        for stale_id in set(existing) - incoming:
            model.line_items.remove(existing[stale_id])
        for li in order.line_items:
            row = existing.get(li.id)
            if row is None:
                row = CrmOrderLineItemModel(commerce_line_item_id=li.id)
                model.line_items.append(row)
            row.variant_id = li.variant_id
            row.title = li.title
            row.variant_title = li.variant_title
            row.sku = li.sku
            row.quantity = li.quantity
            row.unit_price = li.unit_price

    async def _get_model(self, order_id: str) -> Optional[CrmOrderModel]:
        result = await self.session.execute(
            select(CrmOrderModel).where(CrmOrderModel.commerce_order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def get_by_commerce_id(self, order_id: str) -> Optional[CommerceOrder]:
        """根据商城订单ID获取镜像订单"""
        model = await self._get_model(order_id)
        return self._to_entity(model) if model else None

    async def upsert(self, order: CommerceOrder) -> CommerceOrder:
        """插入或更新镜像订单；乱序到达的旧快照不会让财务状态回退"""
        model = await self._get_model(order.id)
        if model is None:
            model = CrmOrderModel(
                commerce_order_id=order.id,
                financial_status=order.financial_status.value,
            )
            self._apply(model, order)
            self.session.add(model)
        else:
            current = self._to_entity(model)
            if not current.advance_financial_status(order.financial_status):
                logger.info(
                    "crm_order_status_regression_ignored",
                    order_id=order.id,
                    stored=current.financial_status.value,
                    incoming=order.financial_status.value,
                )
            self._apply(model, order)
            model.financial_status = current.financial_status.value
        await self.session.flush()
        return self._to_entity(model)
