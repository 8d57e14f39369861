"""fulfillment_schema

Revision ID: 4c1f9a2d7e10
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4c1f9a2d7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = True) -> list:
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    # 商家目录
    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False, comment='商家名称'),
        sa.Column('owner_id', sa.Integer(), nullable=False, comment='所有者用户ID'),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='EUR', comment='结算币种 ISO-4217'),
        sa.Column('is_platform', sa.Boolean(), nullable=False, server_default=sa.false(), comment='是否平台自营商家'),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_businesses_id', 'businesses', ['id'])
    op.create_index('ix_businesses_owner_id', 'businesses', ['owner_id'])

    op.create_table(
        'business_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='STAFF', comment='ADMIN / STAFF'),
        sa.UniqueConstraint('business_id', 'user_id', name='uq_business_members_business_user'),
    )
    op.create_index('ix_business_members_business_id', 'business_members', ['business_id'])
    op.create_index('ix_business_members_user_id', 'business_members', ['user_id'])

    # 库存
    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False, comment='售价'),
        sa.Column('purchase_price', sa.Numeric(precision=15, scale=2), nullable=True, comment='进价'),
        sa.Column('quantity_in_stock', sa.Integer(), nullable=False, server_default='0', comment='批次数量之和（缓存）'),
        *_timestamps(),
        sa.CheckConstraint('quantity_in_stock >= 0', name='ck_product_variants_stock_non_negative'),
    )
    op.create_index('ix_product_variants_id', 'product_variants', ['id'])
    op.create_index('ix_product_variants_business_id', 'product_variants', ['business_id'])
    op.create_index('ix_product_variants_sku', 'product_variants', ['sku'])

    op.create_table(
        'product_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('product_variants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expiration_date', sa.DateTime(timezone=True), nullable=True, comment='为空表示无保质期，最后消耗'),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_product_batches_quantity_non_negative'),
    )
    op.create_index('ix_product_batches_id', 'product_batches', ['id'])
    op.create_index('ix_product_batches_variant_id', 'product_batches', ['variant_id'])
    op.create_index('ix_product_batches_variant_expiration', 'product_batches', ['variant_id', 'expiration_date'])

    # 订单
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='SALE / PURCHASE / RESERVATION'),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='EUR'),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('purchasing_business_id', sa.Integer(), sa.ForeignKey('businesses.id'), nullable=True),
        sa.Column('employee_id', sa.Integer(), nullable=True),
        sa.Column('table_id', sa.String(length=64), nullable=True),
        sa.Column('reservation_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('payment_intent_id', sa.String(length=200), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_business_id', 'orders', ['business_id'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_payment_intent_id', 'orders', ['payment_intent_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_customer_status', 'orders', ['customer_id', 'status'])
    op.create_index('ix_orders_business_status', 'orders', ['business_id', 'status'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('product_variants.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=False, comment='下单时价格快照'),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
    )
    op.create_index('ix_order_lines_id', 'order_lines', ['id'])
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])

    # 支付流水
    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, comment='支付提供商: stripe/mobile_money/manual'),
        sa.Column('provider_transaction_id', sa.String(length=200), nullable=False, comment='渠道交易号'),
        sa.Column('kind', sa.String(length=20), nullable=False, server_default='PAYMENT', comment='PAYMENT / REFUND'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='渠道原始数据'),
        *_timestamps(),
        sa.UniqueConstraint('provider', 'provider_transaction_id', name='uq_payment_transactions_provider_ref'),
        sa.UniqueConstraint('idempotency_key', name='uq_payment_transactions_idempotency_key'),
    )
    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'])
    op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])
    op.create_index('ix_payment_transactions_created_at', 'payment_transactions', ['created_at'])
    op.create_index('ix_payment_transactions_order_kind', 'payment_transactions', ['order_id', 'kind'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('triggered_by', sa.String(length=64), nullable=False, comment='用户ID 或 system'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_transaction_id', sa.Integer(), sa.ForeignKey('payment_transactions.id'), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_order_status_history_id', 'order_status_history', ['id'])
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('product_variants.id'), nullable=False),
        sa.Column('business_id', sa.Integer(), sa.ForeignKey('businesses.id'), nullable=False),
        sa.Column('performed_by_id', sa.Integer(), nullable=True, comment='操作人用户ID，系统操作为空'),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('quantity_change', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False, comment='变更后库存快照'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_stock_movements_id', 'stock_movements', ['id'])
    op.create_index('ix_stock_movements_variant_id', 'stock_movements', ['variant_id'])
    op.create_index('ix_stock_movements_business_id', 'stock_movements', ['business_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_order_id', 'stock_movements', ['order_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])

    # 钱包
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='每个用户一个钱包'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('balance', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0', comment='已完成流水之和（物化）'),
        *_timestamps(),
    )
    op.create_index('ix_wallets_id', 'wallets', ['id'])
    op.create_index('ix_wallets_user_id', 'wallets', ['user_id'], unique=True)

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('wallet_id', sa.Integer(), sa.ForeignKey('wallets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='有符号金额'),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('related_order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('related_payment_transaction_id', sa.Integer(), sa.ForeignKey('payment_transactions.id'), nullable=True),
        sa.Column('balance_after', sa.Numeric(precision=15, scale=2), nullable=True, comment='完成时的余额快照'),
        *_timestamps(),
    )
    op.create_index('ix_wallet_transactions_id', 'wallet_transactions', ['id'])
    op.create_index('ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id'])
    op.create_index('ix_wallet_transactions_status', 'wallet_transactions', ['status'])
    op.create_index('ix_wallet_transactions_related_order_id', 'wallet_transactions', ['related_order_id'])
    op.create_index('ix_wallet_transactions_created_at', 'wallet_transactions', ['created_at'])
    op.create_index('ix_wallet_transactions_wallet_status', 'wallet_transactions', ['wallet_id', 'status'])


def downgrade() -> None:
    for table in (
        'wallet_transactions',
        'wallets',
        'stock_movements',
        'order_status_history',
        'payment_transactions',
        'order_lines',
        'orders',
        'product_batches',
        'product_variants',
        'business_members',
        'businesses',
    ):
        op.drop_table(table)
