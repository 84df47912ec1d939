"""Create catalog, order, payment, webhook and audit tables

Revision ID: 001
Revises:
Create Date: 2025-03-10 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False)]


def upgrade() -> None:
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('role', sa.String(length=20), nullable=False, server_default='CUSTOMER'),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'products' not in existing_tables:
        op.create_table(
            'products',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('name_am', sa.String(length=255), nullable=True),
            sa.Column('slug', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('price', sa.Numeric(12, 2), nullable=False),
            sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint('price > 0', name='ck_products_price_positive')
        )
        op.create_index('ix_products_id', 'products', ['id'])
        op.create_index('ix_products_vendor_id', 'products', ['vendor_id'])
        op.create_index('ix_products_slug', 'products', ['slug'], unique=True)
        op.create_index('ix_products_is_active', 'products', ['is_active'])

    if 'addresses' not in existing_tables:
        op.create_table(
            'addresses',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
            sa.Column('first_name', sa.String(length=100), nullable=False),
            sa.Column('last_name', sa.String(length=100), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('phone', sa.String(length=50), nullable=False),
            sa.Column('address1', sa.String(length=255), nullable=False),
            sa.Column('address2', sa.String(length=255), nullable=True),
            sa.Column('city', sa.String(length=100), nullable=False),
            sa.Column('region', sa.String(length=100), nullable=False),
            sa.Column('postal_code', sa.String(length=20), nullable=True),
            sa.Column('country', sa.String(length=100), nullable=False, server_default='Ethiopia'),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_addresses_id', 'addresses', ['id'])
        op.create_index('ix_addresses_user_id', 'addresses', ['user_id'])

    if 'orders' not in existing_tables:
        op.create_table(
            'orders',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
            sa.Column('tax', sa.Numeric(12, 2), nullable=False),
            sa.Column('total', sa.Numeric(12, 2), nullable=False),
            sa.Column('payment_method', sa.String(length=20), nullable=False, server_default='CHAPA'),
            sa.Column('shipping_address_id', sa.Integer(), sa.ForeignKey('addresses.id'), nullable=False),
            sa.Column('billing_address_id', sa.Integer(), sa.ForeignKey('addresses.id'), nullable=False),
            sa.Column('notes', sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_orders_id', 'orders', ['id'])
        op.create_index('ix_orders_user_id', 'orders', ['user_id'])
        op.create_index('ix_orders_status', 'orders', ['status'])
        op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    if 'order_items' not in existing_tables:
        op.create_table(
            'order_items',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
            sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('variant_id', sa.String(length=100), nullable=True),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive')
        )
        op.create_index('ix_order_items_id', 'order_items', ['id'])
        op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
        op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    if 'payments' not in existing_tables:
        op.create_table(
            'payments',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('amount', sa.Numeric(12, 2), nullable=False),
            sa.Column('currency', sa.String(length=3), nullable=False),
            sa.Column('provider', sa.String(length=20), nullable=False),
            sa.Column('provider_reference', sa.String(length=255), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
            sa.Column('method', sa.String(length=30), nullable=False),
            sa.Column('payment_metadata', sa.JSON(), nullable=True),
            sa.Column('failure_reason', sa.Text(), nullable=True),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('provider', 'provider_reference', name='uq_payments_provider_reference')
        )
        op.create_index('ix_payments_id', 'payments', ['id'])
        op.create_index('ix_payments_order_id', 'payments', ['order_id'])
        op.create_index('ix_payments_status', 'payments', ['status'])

    if 'webhook_events' not in existing_tables:
        op.create_table(
            'webhook_events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('provider', sa.String(length=20), nullable=False),
            sa.Column('event_id', sa.String(length=255), nullable=False),
            sa.Column('event_type', sa.String(length=100), nullable=False),
            sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('payload', sa.JSON(), nullable=False),
            sa.Column('error_message', sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event')
        )
        op.create_index('ix_webhook_events_id', 'webhook_events', ['id'])
        op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])

    if 'audit_logs' not in existing_tables:
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
            sa.Column('actor', sa.String(length=100), nullable=False),
            sa.Column('action', sa.String(length=50), nullable=False),
            sa.Column('entity_type', sa.String(length=50), nullable=False),
            sa.Column('entity_id', sa.Integer(), nullable=False),
            sa.Column('old_values', sa.JSON(), nullable=True),
            sa.Column('new_values', sa.JSON(), nullable=True),
            sa.Column('ip_address', sa.String(length=100), nullable=True),
            sa.Column('user_agent', sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_audit_logs_id', 'audit_logs', ['id'])
        op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
        op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade() -> None:
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    for table in (
        'audit_logs', 'webhook_events', 'payments', 'order_items',
        'orders', 'addresses', 'products', 'users'
    ):
        if table in existing_tables:
            op.drop_table(table)
