"""add_crm_order_mirror_tables

Revision ID: 4c1e9a2b7d10
Revises:
Create Date: 2026-10-17 09:30:12.418203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1e9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create crm_orders table
    op.create_table(
        'crm_orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('commerce_order_id', sa.String(length=64), nullable=False, comment='商城订单ID'),
        sa.Column('name', sa.String(length=64), nullable=True, comment='商城订单号，如 #1001'),
        sa.Column('commerce_customer_id', sa.String(length=64), nullable=True, comment='商城客户ID'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='GBP', comment='货币代码 ISO-4217'),
        sa.Column('subtotal', sa.Numeric(precision=15, scale=2), nullable=True, comment='小计'),
        sa.Column('total', sa.Numeric(precision=15, scale=2), nullable=True, comment='含税总额'),
        sa.Column('taxes', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='税额'),
        sa.Column('shipping', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='运费'),
        sa.Column('net_ex_tax', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='不含税净额'),
        sa.Column('financial_status', sa.String(length=32), nullable=False, server_default='pending', comment='财务状态: pending/paid/partially_refunded/refunded'),
        sa.Column('note', sa.Text(), nullable=True, comment='订单备注'),
        sa.Column('note_attributes', sa.JSON(), nullable=True, comment='订单附加属性'),
        sa.Column('tags', sa.JSON(), nullable=True, comment='标签'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='商城订单在 CRM 中的镜像'
    )
    op.create_index('ix_crm_orders_id', 'crm_orders', ['id'], unique=False)
    op.create_index('ix_crm_orders_commerce_order_id', 'crm_orders', ['commerce_order_id'], unique=True)
    op.create_index('ix_crm_orders_commerce_customer_id', 'crm_orders', ['commerce_customer_id'], unique=False)
    op.create_index('ix_crm_orders_financial_status', 'crm_orders', ['financial_status'], unique=False)
    op.create_index('ix_crm_orders_customer_status', 'crm_orders', ['commerce_customer_id', 'financial_status'], unique=False)

    # Create crm_order_line_items table
    op.create_table(
        'crm_order_line_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False, comment='关联的镜像订单ID'),
        sa.Column('commerce_line_item_id', sa.String(length=64), nullable=False, comment='商城订单行ID'),
        sa.Column('variant_id', sa.String(length=64), nullable=True, comment='商品变体ID'),
        sa.Column('title', sa.String(length=255), nullable=True, comment='商品标题'),
        sa.Column('variant_title', sa.String(length=255), nullable=True, comment='变体标题'),
        sa.Column('sku', sa.String(length=100), nullable=True, comment='SKU'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='购买数量'),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False, comment='不含税单价'),
        sa.ForeignKeyConstraint(['order_id'], ['crm_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'commerce_line_item_id', name='uq_crm_order_line'),
        comment='订单行镜像'
    )
    op.create_index('ix_crm_order_line_items_id', 'crm_order_line_items', ['id'], unique=False)
    op.create_index('ix_crm_order_line_items_order_id', 'crm_order_line_items', ['order_id'], unique=False)
    op.create_index('ix_crm_order_line_items_variant_id', 'crm_order_line_items', ['variant_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_crm_order_line_items_variant_id', table_name='crm_order_line_items')
    op.drop_index('ix_crm_order_line_items_order_id', table_name='crm_order_line_items')
    op.drop_index('ix_crm_order_line_items_id', table_name='crm_order_line_items')
    op.drop_table('crm_order_line_items')

    op.drop_index('ix_crm_orders_customer_status', table_name='crm_orders')
    op.drop_index('ix_crm_orders_financial_status', table_name='crm_orders')
    op.drop_index('ix_crm_orders_commerce_customer_id', table_name='crm_orders')
    op.drop_index('ix_crm_orders_commerce_order_id', table_name='crm_orders')
    op.drop_index('ix_crm_orders_id', table_name='crm_orders')
    op.drop_table('crm_orders')
