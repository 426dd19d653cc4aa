"""
CRM 订单镜像模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class CrmOrderModel(Base):
    """
    商城订单在 CRM 中的镜像

    以商城订单ID为键；财务状态只前进不回退（规则在 domain.commerce.entity 中）
    """
    __tablename__ = "crm_orders"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 商城订单信息
    commerce_order_id = Column(String(64), unique=True, index=True, nullable=False, comment="商城订单ID")
    name = Column(String(64), nullable=True, comment="商城订单号，如 #1001")
    commerce_customer_id = Column(String(64), nullable=True, index=True, comment="商城客户ID")

    # 金额信息（使用 Numeric 存储精确金额）
    currency = Column(String(3), nullable=False, default="GBP", comment="货币代码 ISO-4217")
    subtotal = Column(Numeric(precision=15, scale=2), nullable=True, comment="小计")
    total = Column(Numeric(precision=15, scale=2), nullable=True, comment="含税总额")
    taxes = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="税额")
    shipping = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="运费")
    net_ex_tax = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="不含税净额")

    # 状态
    financial_status = Column(
        String(32),
        nullable=False,
        default="pending",
        index=True,
        comment="财务状态: pending/paid/partially_refunded/refunded"
    )

    note = Column(Text, nullable=True, comment="订单备注")
    note_attributes = Column(JSON, nullable=True, comment="订单附加属性")
    tags = Column(JSON, nullable=True, comment="标签")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    # 关系（异步会话下必须预加载）
    line_items = relationship(
        "CrmOrderLineItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="CrmOrderLineItemModel.id",
    )

    __table_args__ = (
        Index("ix_crm_orders_customer_status", "commerce_customer_id", "financial_status"),
    )

    def __repr__(self):
        return (
            f"<CrmOrderModel(id={self.id}, commerce_order_id='{self.commerce_order_id}', "
            f"financial_status='{self.financial_status}', total={self.total})>"
        )


class CrmOrderLineItemModel(Base):
    """订单行镜像"""
    __tablename__ = "crm_order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(
        Integer,
        ForeignKey("crm_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的镜像订单ID"
    )
    commerce_line_item_id = Column(String(64), nullable=False, comment="商城订单行ID")
    variant_id = Column(String(64), nullable=True, index=True, comment="商品变体ID")
    title = Column(String(255), nullable=True, comment="商品标题")
    variant_title = Column(String(255), nullable=True, comment="变体标题")
    sku = Column(String(100), nullable=True, comment="SKU")
    quantity = Column(Integer, nullable=False, comment="购买数量")
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False, comment="不含税单价")

    order = relationship("CrmOrderModel", back_populates="line_items")

    __table_args__ = (
        UniqueConstraint("order_id", "commerce_line_item_id", name="uq_crm_order_line"),
    )

    def __repr__(self):
        return (
            f"<CrmOrderLineItemModel(id={self.id}, commerce_line_item_id='{self.commerce_line_item_id}', "
            f"quantity={self.quantity})>"
        )
