"""
Alembic migration: Create the order aggregate tables.

This migration creates addresses, users, variants and stock, payment
methods, orders with their line items, shipments, shipping rates,
inventory units, adjustments, payments, refunds and the order state change
log. State columns are VARCHAR with CHECK constraints so the schema is the
same on PostgreSQL and SQLite.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Optional, Sequence, Union

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False, comment='Unique identifier for the record'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def _money(name: str, nullable: bool = False, scale: int = 2, comment: Optional[str] = None) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12 if scale > 2 else 10, scale=scale),
        nullable=nullable,
        server_default=None if nullable else '0',
        comment=comment,
    )


def _state(name: str, values: Sequence[str], table: str, nullable: bool = False, default: Optional[str] = None):
    column = sa.Column(
        name,
        sa.String(length=32),
        nullable=nullable,
        server_default=default,
    )
    quoted = ", ".join(f"'{value}'" for value in values)
    check = sa.CheckConstraint(f"{name} IN ({quoted})", name=f'ck_{table}_{name}')
    return column, check


ORDER_STATES = (
    'cart', 'address', 'delivery', 'payment', 'confirm', 'complete', 'canceled',
    'awaiting_return', 'returned', 'resumed', 'considered_risky',
)
ORDER_PAYMENT_STATES = ('balance_due', 'paid', 'credit_owed', 'failed', 'void')
ORDER_SHIPMENT_STATES = ('pending', 'ready', 'partial', 'shipped', 'backorder', 'canceled')
SHIPMENT_STATES = ('pending', 'ready', 'shipped', 'canceled')
INVENTORY_UNIT_STATES = ('on_hand', 'backordered', 'shipped', 'returned')
PAYMENT_STATES = ('checkout', 'pending', 'processing', 'completed', 'failed', 'void', 'invalid')
ADJUSTMENT_STATES = ('open', 'closed')
ADJUSTMENT_SOURCES = ('tax', 'promotion', 'shipping', 'manual')


def upgrade() -> None:
    """
    Upgrade database schema to add the order aggregate.

    Tables are created parents first so every foreign key resolves.
    """
    op.create_table(
        'addresses',
        *_base_columns(),
        sa.Column('firstname', sa.String(length=100), nullable=False),
        sa.Column('lastname', sa.String(length=100), nullable=False),
        sa.Column('company', sa.String(length=255), nullable=True),
        sa.Column('address1', sa.String(length=255), nullable=False),
        sa.Column('address2', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('state_name', sa.String(length=100), nullable=True),
        sa.Column('zipcode', sa.String(length=20), nullable=False),
        sa.Column('country_iso', sa.String(length=2), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_addresses'),
        comment='Billing and shipping addresses',
    )

    op.create_table(
        'users',
        *_base_columns(),
        sa.Column('email', sa.String(length=255), nullable=False, comment='Login and contact email'),
        sa.Column('admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('bill_address_id', sa.Uuid(), nullable=True),
        sa.Column('ship_address_id', sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.ForeignKeyConstraint(
            ['bill_address_id'], ['addresses.id'],
            name='fk_users_bill_address_id', ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['ship_address_id'], ['addresses.id'],
            name='fk_users_ship_address_id', ondelete='SET NULL',
        ),
        comment='Customer and administrator accounts',
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'variants',
        *_base_columns(),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _money('price', comment='Current unit price'),
        sa.Column('track_inventory', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id', name='pk_variants'),
        sa.CheckConstraint('price >= 0', name='ck_variants_price_non_negative'),
        comment='Purchasable product variants',
    )
    op.create_index('ix_variants_sku', 'variants', ['sku'], unique=True)

    op.create_table(
        'stock_locations',
        *_base_columns(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('backorderable_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name='pk_stock_locations'),
        comment='Locations holding inventory',
    )

    op.create_table(
        'stock_items',
        *_base_columns(),
        sa.Column('stock_location_id', sa.Uuid(), nullable=False),
        sa.Column('variant_id', sa.Uuid(), nullable=False),
        sa.Column('count_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('backorderable', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name='pk_stock_items'),
        sa.ForeignKeyConstraint(
            ['stock_location_id'], ['stock_locations.id'],
            name='fk_stock_items_stock_location_id', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'], ['variants.id'],
            name='fk_stock_items_variant_id', ondelete='CASCADE',
        ),
        sa.UniqueConstraint('stock_location_id', 'variant_id', name='uq_stock_items_location_variant'),
        comment='Per-location variant stock counts',
    )
    op.create_index('ix_stock_items_stock_location_id', 'stock_items', ['stock_location_id'])
    op.create_index('ix_stock_items_variant_id', 'stock_items', ['variant_id'])

    op.create_table(
        'payment_methods',
        *_base_columns(),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_on', sa.String(length=16), nullable=True),
        sa.Column('environment', sa.String(length=32), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_payment_methods'),
        comment='Configured payment methods',
    )

    order_state, order_state_check = _state('state', ORDER_STATES, 'orders', default='cart')
    payment_state, payment_state_check = _state(
        'payment_state', ORDER_PAYMENT_STATES, 'orders', nullable=True
    )
    shipment_state, shipment_state_check = _state(
        'shipment_state', ORDER_SHIPMENT_STATES, 'orders', nullable=True
    )
    op.create_table(
        'orders',
        *_base_columns(),
        sa.Column('number', sa.String(length=32), nullable=True, comment='Public order number'),
        sa.Column('guest_token', sa.String(length=64), nullable=True, comment='Guest cart token'),
        sa.Column('email', sa.String(length=255), nullable=True),
        order_state,
        payment_state,
        shipment_state,
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0'),
        _money('item_total', comment='Sum of line item amounts'),
        _money('adjustment_total', comment='Sum of eligible adjustments'),
        _money('shipment_total', comment='Sum of shipment costs'),
        _money('promo_total', comment='Promotion part of adjustment_total'),
        _money('included_tax_total', comment='Tax included in prices'),
        _money('additional_tax_total', comment='Tax added on top of prices'),
        _money('payment_total', comment='Sum of completed payments'),
        _money('total', comment='Grand total'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('canceled_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('confirmation_delivered', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('considered_risky', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('special_instructions', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('canceler_id', sa.Uuid(), nullable=True),
        sa.Column('approver_id', sa.Uuid(), nullable=True),
        sa.Column('bill_address_id', sa.Uuid(), nullable=True),
        sa.Column('ship_address_id', sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_orders_user_id', ondelete='SET NULL'),
        sa.ForeignKeyConstraint(
            ['created_by_id'], ['users.id'], name='fk_orders_created_by_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['canceler_id'], ['users.id'], name='fk_orders_canceler_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['approver_id'], ['users.id'], name='fk_orders_approver_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['bill_address_id'], ['addresses.id'], name='fk_orders_bill_address_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['ship_address_id'], ['addresses.id'], name='fk_orders_ship_address_id', ondelete='SET NULL'
        ),
        sa.CheckConstraint('item_count >= 0', name='ck_orders_item_count_non_negative'),
        order_state_check,
        payment_state_check,
        shipment_state_check,
        comment='Customer orders',
    )
    op.create_index('ix_orders_number', 'orders', ['number'], unique=True)
    op.create_index('ix_orders_state', 'orders', ['state'])
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_completed_at', 'orders', ['completed_at'])

    op.create_table(
        'line_items',
        *_base_columns(),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('variant_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        _money('price'),
        sa.Column('currency', sa.String(length=3), nullable=True),
        _money('pre_tax_amount', scale=4),
        _money('adjustment_total'),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_line_items'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_line_items_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'], ['variants.id'], name='fk_line_items_variant_id', ondelete='RESTRICT'
        ),
        sa.CheckConstraint('quantity >= 0', name='ck_line_items_quantity_non_negative'),
        comment='Variant quantities within orders',
    )
    op.create_index('ix_line_items_order_id', 'line_items', ['order_id'])
    op.create_index('ix_line_items_variant_id', 'line_items', ['variant_id'])

    shipment_state_column, shipment_state_column_check = _state(
        'state', SHIPMENT_STATES, 'shipments', default='pending'
    )
    op.create_table(
        'shipments',
        *_base_columns(),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('stock_location_id', sa.Uuid(), nullable=True),
        sa.Column('number', sa.String(length=32), nullable=False),
        shipment_state_column,
        _money('cost'),
        _money('adjustment_total'),
        _money('promo_total'),
        sa.Column('shipped_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_shipments'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_shipments_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['stock_location_id'], ['stock_locations.id'],
            name='fk_shipments_stock_location_id', ondelete='SET NULL',
        ),
        sa.UniqueConstraint('number', name='uq_shipments_number'),
        shipment_state_column_check,
        comment='Order shipments',
    )
    op.create_index('ix_shipments_order_id', 'shipments', ['order_id'])

    op.create_table(
        'shipping_rates',
        *_base_columns(),
        sa.Column('shipment_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        _money('cost'),
        sa.Column('selected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id', name='pk_shipping_rates'),
        sa.ForeignKeyConstraint(
            ['shipment_id'], ['shipments.id'], name='fk_shipping_rates_shipment_id', ondelete='CASCADE'
        ),
        comment='Shipping options estimated for a shipment',
    )
    op.create_index('ix_shipping_rates_shipment_id', 'shipping_rates', ['shipment_id'])

    unit_state, unit_state_check = _state(
        'state', INVENTORY_UNIT_STATES, 'inventory_units', default='on_hand'
    )
    op.create_table(
        'inventory_units',
        *_base_columns(),
        sa.Column('shipment_id', sa.Uuid(), nullable=False),
        sa.Column('line_item_id', sa.Uuid(), nullable=True),
        sa.Column('variant_id', sa.Uuid(), nullable=False),
        unit_state,
        sa.Column('pending', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_units'),
        sa.ForeignKeyConstraint(
            ['shipment_id'], ['shipments.id'], name='fk_inventory_units_shipment_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['line_item_id'], ['line_items.id'],
            name='fk_inventory_units_line_item_id', ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'], ['variants.id'], name='fk_inventory_units_variant_id', ondelete='RESTRICT'
        ),
        unit_state_check,
        comment='Units of a variant packed into shipments',
    )
    op.create_index('ix_inventory_units_shipment_id', 'inventory_units', ['shipment_id'])

    adjustment_state, adjustment_state_check = _state(
        'state', ADJUSTMENT_STATES, 'adjustments', default='open'
    )
    source_type, source_type_check = _state(
        'source_type', ADJUSTMENT_SOURCES, 'adjustments', default='manual'
    )
    op.create_table(
        'adjustments',
        *_base_columns(),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('line_item_id', sa.Uuid(), nullable=True),
        sa.Column('shipment_id', sa.Uuid(), nullable=True),
        sa.Column('label', sa.String(length=255), nullable=False),
        source_type,
        _money('amount'),
        sa.Column('included', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('eligible', sa.Boolean(), nullable=False, server_default=sa.true()),
        adjustment_state,
        sa.PrimaryKeyConstraint('id', name='pk_adjustments'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_adjustments_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['line_item_id'], ['line_items.id'], name='fk_adjustments_line_item_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['shipment_id'], ['shipments.id'], name='fk_adjustments_shipment_id', ondelete='CASCADE'
        ),
        source_type_check,
        adjustment_state_check,
        comment='Order, line item and shipment adjustments',
    )
    op.create_index('ix_adjustments_order_id', 'adjustments', ['order_id'])

    payment_state_column, payment_state_column_check = _state(
        'state', PAYMENT_STATES, 'payments', default='checkout'
    )
    op.create_table(
        'payments',
        *_base_columns(),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('payment_method_id', sa.Uuid(), nullable=True),
        sa.Column('source_payment_id', sa.Uuid(), nullable=True),
        _money('amount'),
        payment_state_column,
        sa.Column('avs_response', sa.String(length=8), nullable=True),
        sa.Column('cvv_response_code', sa.String(length=8), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_payments_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['payment_method_id'], ['payment_methods.id'],
            name='fk_payments_payment_method_id', ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['source_payment_id'], ['payments.id'],
            name='fk_payments_source_payment_id', ondelete='SET NULL',
        ),
        payment_state_column_check,
        comment='Order payments',
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])

    op.create_table(
        'refunds',
        *_base_columns(),
        sa.Column('payment_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('reimbursement_id', sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_refunds'),
        sa.ForeignKeyConstraint(
            ['payment_id'], ['payments.id'], name='fk_refunds_payment_id', ondelete='CASCADE'
        ),
        comment='Refunds against payments',
    )
    op.create_index('ix_refunds_payment_id', 'refunds', ['payment_id'])

    op.create_table(
        'state_changes',
        *_base_columns(),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=32), nullable=False),
        sa.Column('previous_state', sa.String(length=32), nullable=True),
        sa.Column('next_state', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_state_changes'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_state_changes_order_id', ondelete='CASCADE'
        ),
        comment='Order state change log',
    )
    op.create_index('ix_state_changes_order_id', 'state_changes', ['order_id'])


def downgrade() -> None:
    """Drop the order aggregate tables, children first."""
    for table in (
        'state_changes',
        'refunds',
        'payments',
        'adjustments',
        'inventory_units',
        'shipping_rates',
        'shipments',
        'line_items',
        'orders',
        'payment_methods',
        'stock_items',
        'stock_locations',
        'variants',
        'users',
        'addresses',
    ):
        op.drop_table(table)
