"""
Alembic migration: Initial marketplace schema.

Creates users, products with color variants, orders with line items and
tracking history, payment transactions and notifications, together with
their enum types, indexes and check constraints.

Revision ID: 001
Revises:
Create Date: 2024-05-02 10:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_role = postgresql.ENUM(
    'buyer', 'seller', 'driver', 'admin', name='user_role', create_type=False
)
product_status = postgresql.ENUM(
    'pending', 'approved', 'rejected', 'inactive', name='product_status', create_type=False
)
discount_type = postgresql.ENUM(
    'none', 'flat', 'percentage', name='discount_type', create_type=False
)
order_status = postgresql.ENUM(
    'pending',
    'processing',
    'in-transit',
    'out-for-delivery',
    'delivered',
    'cancelled',
    'refunded',
    name='order_status',
    create_type=False,
)
payment_method = postgresql.ENUM(
    'card', 'cash_on_delivery', name='payment_method', create_type=False
)
payment_status = postgresql.ENUM(
    'pending', 'completed', 'failed', 'refunded', name='payment_status', create_type=False
)
transaction_type = postgresql.ENUM(
    'payment', 'refund', 'partial_refund', name='transaction_type', create_type=False
)
transaction_status = postgresql.ENUM(
    'pending',
    'processing',
    'succeeded',
    'failed',
    'cancelled',
    'requires_action',
    'requires_payment_method',
    name='transaction_status',
    create_type=False,
)
notification_type = postgresql.ENUM(
    'NEW_ORDER',
    'ORDER_CONFIRMED',
    'ORDER_CANCELLED',
    'ORDER_DELIVERED',
    'ORDER_REFUNDED',
    'ORDER_STATUS_UPDATED',
    'PAYMENT_FAILED',
    name='notification_type',
    create_type=False,
)
notification_status = postgresql.ENUM(
    'pending', 'sent', 'failed', name='notification_status', create_type=False
)

ENUM_TYPES = (
    user_role,
    product_status,
    discount_type,
    order_status,
    payment_method,
    payment_status,
    transaction_type,
    transaction_status,
    notification_type,
    notification_status,
)


def _base_columns() -> list[sa.Column]:
    """Primary key and timestamp columns shared by every table."""
    return [
        sa.Column(
            'id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Unique identifier for the record',
        ),
        sa.Column(
            'created_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Create the marketplace schema.
    """
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'users',
        *_base_columns(),
        sa.Column('email', sa.String(length=255), nullable=False, comment='User email address'),
        sa.Column('first_name', sa.String(length=100), nullable=False, comment='User first name'),
        sa.Column('last_name', sa.String(length=100), nullable=False, comment='User last name'),
        sa.Column('role', user_role, nullable=False, comment='User role'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Whether the account is active'),
        sa.Column(
            'stripe_customer_id',
            sa.String(length=255),
            nullable=True,
            comment='Stripe customer identifier',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        comment='Marketplace user accounts',
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'products',
        *_base_columns(),
        sa.Column(
            'seller_id',
            postgresql.UUID(as_uuid=True),
            nullable=False,
            comment='Seller that owns the product',
        ),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Product title'),
        sa.Column('description', sa.Text(), nullable=True, comment='Product description'),
        sa.Column('image_url', sa.String(length=1024), nullable=True, comment='Primary product image'),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, comment='Base unit price'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='Top-level stock quantity'),
        sa.Column('sold', sa.Integer(), nullable=False, comment='Total units sold'),
        sa.Column(
            'out_of_stock',
            sa.Boolean(),
            nullable=False,
            comment='Whether top-level stock is exhausted',
        ),
        sa.Column('discount_type', discount_type, nullable=False, comment='Discount type'),
        sa.Column(
            'discount_value',
            sa.Numeric(precision=10, scale=2),
            nullable=False,
            comment='Discount amount or percentage',
        ),
        sa.Column('status', product_status, nullable=False, comment='Moderation status'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.ForeignKeyConstraint(
            ['seller_id'], ['users.id'], name='fk_products_seller_id', ondelete='RESTRICT'
        ),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        sa.CheckConstraint('quantity >= 0', name='ck_products_quantity_non_negative'),
        sa.CheckConstraint('sold >= 0', name='ck_products_sold_non_negative'),
        comment='Marketplace product catalog',
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])
    op.create_index('ix_products_status', 'products', ['status'])
    op.create_index('ix_products_seller_status', 'products', ['seller_id', 'status'])

    op.create_table(
        'product_variants',
        *_base_columns(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Owning product'),
        sa.Column('color', sa.String(length=64), nullable=False, comment='Variant color selector'),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False, comment='Variant unit price'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='Variant stock quantity'),
        sa.Column(
            'out_of_stock',
            sa.Boolean(),
            nullable=False,
            comment='Whether variant stock is exhausted',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_product_variants'),
        sa.ForeignKeyConstraint(
            ['product_id'],
            ['products.id'],
            name='fk_product_variants_product_id',
            ondelete='CASCADE',
        ),
        sa.UniqueConstraint('product_id', 'color', name='uq_product_variants_color'),
        sa.CheckConstraint('quantity >= 0', name='ck_product_variants_quantity_non_negative'),
        sa.CheckConstraint('price >= 0', name='ck_product_variants_price_non_negative'),
        comment='Color variants of a product',
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    money = sa.Numeric(precision=10, scale=2)
    op.create_table(
        'orders',
        *_base_columns(),
        sa.Column('order_number', sa.String(length=32), nullable=False, comment='Human-readable order number'),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Buyer who placed the order'),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Seller fulfilling the order'),
        sa.Column('driver_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Driver assigned for delivery'),
        sa.Column('status', order_status, nullable=False, comment='Current order status'),
        sa.Column('payment_method', payment_method, nullable=False, comment='Payment method'),
        sa.Column('payment_status', payment_status, nullable=False, comment='Current payment status'),
        sa.Column(
            'transaction_id',
            sa.String(length=255),
            nullable=True,
            comment='Gateway payment intent identifier',
        ),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='When the payment was confirmed'),
        sa.Column('subtotal', money, nullable=False, comment='Sum of line items'),
        sa.Column('shipping_fee', money, nullable=False, comment='Shipping fee'),
        sa.Column('marketplace_fee', money, nullable=False, comment='Marketplace commission'),
        sa.Column('taxes', money, nullable=False, comment='Sales tax'),
        sa.Column('total', money, nullable=False, comment='Order total'),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Delivery address',
        ),
        sa.Column('notes', sa.Text(), nullable=True, comment='Buyer notes'),
        sa.Column('cancel_reason', sa.String(length=500), nullable=True, comment='Cancellation reason'),
        sa.Column('refund_reason', sa.String(length=500), nullable=True, comment='Refund reason'),
        sa.Column(
            'estimated_delivery_date',
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment='Estimated delivery date',
        ),
        sa.Column(
            'actual_delivery_date',
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment='Actual delivery date',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.ForeignKeyConstraint(
            ['customer_id'], ['users.id'], name='fk_orders_customer_id', ondelete='RESTRICT'
        ),
        sa.ForeignKeyConstraint(
            ['seller_id'], ['users.id'], name='fk_orders_seller_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['driver_id'], ['users.id'], name='fk_orders_driver_id', ondelete='SET NULL'
        ),
        sa.CheckConstraint('subtotal >= 0', name='ck_orders_subtotal_non_negative'),
        sa.CheckConstraint('shipping_fee >= 0', name='ck_orders_shipping_fee_non_negative'),
        sa.CheckConstraint('marketplace_fee >= 0', name='ck_orders_marketplace_fee_non_negative'),
        sa.CheckConstraint('taxes >= 0', name='ck_orders_taxes_non_negative'),
        sa.CheckConstraint(
            'total = subtotal + shipping_fee + marketplace_fee + taxes',
            name='ck_orders_total_matches_summary',
        ),
        comment='Customer orders with payment and tracking state',
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_seller_id', 'orders', ['seller_id'])
    op.create_index('ix_orders_driver_id', 'orders', ['driver_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_transaction_id', 'orders', ['transaction_id'])
    op.create_index('ix_orders_customer_status', 'orders', ['customer_id', 'status'])
    op.create_index('ix_orders_seller_status', 'orders', ['seller_id', 'status'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Owning order'),
        sa.Column('position', sa.Integer(), nullable=False, comment='Position of the item within the order'),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Live product reference'),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Seller of the product'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Product title snapshot'),
        sa.Column('price', money, nullable=False, comment='Unit price snapshot'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='Units ordered'),
        sa.Column('color', sa.String(length=64), nullable=True, comment='Variant color selector'),
        sa.Column('image_url', sa.String(length=1024), nullable=True, comment='Product image snapshot'),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_order_items_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['product_id'], ['products.id'], name='fk_order_items_product_id', ondelete='SET NULL'
        ),
        sa.ForeignKeyConstraint(
            ['seller_id'], ['users.id'], name='fk_order_items_seller_id', ondelete='SET NULL'
        ),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
        comment='Frozen line items of an order',
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'])

    op.create_table(
        'order_tracking_events',
        *_base_columns(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Owning order'),
        sa.Column('status', order_status, nullable=False, comment='Status the order moved to'),
        sa.Column('description', sa.String(length=500), nullable=False, comment='Description of the change'),
        sa.Column('location', sa.String(length=255), nullable=True, comment='Reported location'),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True, comment='User who made the change'),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False, comment='When the change happened'),
        sa.PrimaryKeyConstraint('id', name='pk_order_tracking_events'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_order_tracking_events_order_id', ondelete='CASCADE'
        ),
        sa.ForeignKeyConstraint(
            ['actor_id'], ['users.id'], name='fk_order_tracking_events_actor_id', ondelete='SET NULL'
        ),
        comment='Order status history',
    )
    op.create_index('ix_order_tracking_events_order_id', 'order_tracking_events', ['order_id'])
    op.create_index(
        'ix_order_tracking_events_order_occurred',
        'order_tracking_events',
        ['order_id', 'occurred_at'],
    )

    op.create_table(
        'transactions',
        *_base_columns(),
        sa.Column('type', transaction_type, nullable=False, comment='Transaction type'),
        sa.Column('status', transaction_status, nullable=False, comment='Transaction status'),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Order covered by the transaction'),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True, comment='Paying user'),
        sa.Column(
            'amount',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment='Amount in major currency units',
        ),
        sa.Column('currency', sa.String(length=3), nullable=False, comment='ISO currency code'),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True, comment='Gateway payment intent id'),
        sa.Column('charge_id', sa.String(length=255), nullable=True, comment='Gateway charge id'),
        sa.Column('refund_id', sa.String(length=255), nullable=True, comment='Gateway refund id'),
        sa.Column('card_brand', sa.String(length=32), nullable=True, comment='Card brand'),
        sa.Column('card_last4', sa.String(length=4), nullable=True, comment='Last four card digits'),
        sa.Column('failure_code', sa.String(length=100), nullable=True, comment='Gateway failure code'),
        sa.Column('failure_message', sa.String(length=1000), nullable=True, comment='Gateway failure message'),
        sa.Column('description', sa.String(length=500), nullable=True, comment='Transaction description'),
        sa.Column(
            'metadata',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Additional gateway data',
        ),
        sa.Column(
            'processed_at',
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment='When the gateway finished the operation',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.ForeignKeyConstraint(
            ['user_id'], ['users.id'], name='fk_transactions_user_id', ondelete='SET NULL'
        ),
        comment='Payment gateway operation audit log',
    )
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'])
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_payment_intent_id', 'transactions', ['payment_intent_id'])
    op.create_index('ix_transactions_intent_type', 'transactions', ['payment_intent_id', 'type'])

    op.create_table(
        'notifications',
        *_base_columns(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, comment='Recipient user'),
        sa.Column('type', notification_type, nullable=False, comment='Notification type'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Notification title'),
        sa.Column('message', sa.Text(), nullable=False, comment='Notification message'),
        sa.Column('action_url', sa.String(length=1024), nullable=True, comment='Storefront link'),
        sa.Column(
            'meta',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
            comment='Additional notification data',
        ),
        sa.Column('is_read', sa.Boolean(), nullable=False, comment='Whether the notification was read'),
        sa.Column('read_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='When the notification was read'),
        sa.Column('status', notification_status, nullable=False, comment='Delivery status'),
        sa.PrimaryKeyConstraint('id', name='pk_notifications'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_notifications_user_id'),
        comment='In-app user notifications',
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_type', 'notifications', ['type'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    """
    Drop the marketplace schema.
    """
    op.drop_table('notifications')
    op.drop_table('transactions')
    op.drop_table('order_tracking_events')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
