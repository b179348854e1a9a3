"""Initial reconciler schema

Revision ID: 5c1e7a2d9b40
Revises:
Create Date: 2026-10-12 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c1e7a2d9b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Local catalog mirror
    op.create_table('products',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=False),
    sa.Column('name', sa.String(length=500), nullable=False),
    sa.Column('brand_name', sa.String(length=200), nullable=True),
    sa.Column('image_url', sa.String(length=1000), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('source', sa.String(length=20), nullable=False),
    sa.Column('feed_signature', sa.String(length=64), nullable=True),
    sa.Column('extra_data', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('last_feed_sync', sa.DateTime(), nullable=True),
    sa.Column('last_remote_sync', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku')
    )
    op.create_index('ix_products_status', 'products', ['status'], unique=False)
    op.create_index('ix_products_updated_at', 'products', ['updated_at'], unique=False)

    op.create_table('product_variations',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('product_id', sa.Integer(), nullable=False),
    sa.Column('sku', sa.String(length=120), nullable=False),
    sa.Column('size', sa.String(length=20), nullable=False),
    sa.Column('offer_price', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('retail_price', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('stock_quantity', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku')
    )
    op.create_index(op.f('ix_product_variations_product_id'), 'product_variations', ['product_id'], unique=False)
    op.create_index('ix_product_variations_stock', 'product_variations', ['stock_quantity'], unique=False)
    op.create_index('ix_product_variations_status', 'product_variations', ['status'], unique=False)

    # Remote mappings
    op.create_table('remote_product_map',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=False),
    sa.Column('remote_id', sa.BigInteger(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku')
    )
    op.create_index(op.f('ix_remote_product_map_remote_id'), 'remote_product_map', ['remote_id'], unique=False)

    op.create_table('remote_variation_map',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('sku', sa.String(length=120), nullable=False),
    sa.Column('remote_id', sa.BigInteger(), nullable=False),
    sa.Column('remote_parent_id', sa.BigInteger(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku')
    )
    op.create_index(op.f('ix_remote_variation_map_remote_id'), 'remote_variation_map', ['remote_id'], unique=False)
    op.create_index(op.f('ix_remote_variation_map_remote_parent_id'), 'remote_variation_map', ['remote_parent_id'], unique=False)

    # Audit trail
    op.create_table('sync_log',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('sync_type', sa.String(length=20), nullable=False),
    sa.Column('entity_type', sa.String(length=20), nullable=False),
    sa.Column('entity_id', sa.Integer(), nullable=True),
    sa.Column('remote_id', sa.BigInteger(), nullable=True),
    sa.Column('sku', sa.String(length=120), nullable=True),
    sa.Column('action', sa.String(length=20), nullable=False),
    sa.Column('changes', sa.JSON(), nullable=True),
    sa.Column('source', sa.String(length=50), nullable=True),
    sa.Column('message', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_log_sku'), 'sync_log', ['sku'], unique=False)
    op.create_index(op.f('ix_sync_log_created_at'), 'sync_log', ['created_at'], unique=False)
    op.create_index('ix_sync_log_type_action', 'sync_log', ['sync_type', 'action'], unique=False)

    # Inbound webhook queue
    op.create_table('webhook_queue',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('delivery_id', sa.String(length=100), nullable=True),
    sa.Column('topic', sa.String(length=100), nullable=False),
    sa.Column('resource', sa.String(length=50), nullable=False),
    sa.Column('resource_id', sa.BigInteger(), nullable=False),
    sa.Column('payload', sa.JSON(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('attempts', sa.Integer(), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('delivery_id')
    )
    op.create_index(op.f('ix_webhook_queue_topic'), 'webhook_queue', ['topic'], unique=False)
    op.create_index('ix_webhook_queue_status_received', 'webhook_queue', ['status', 'received_at'], unique=False)
    op.create_index('ix_webhook_queue_resource', 'webhook_queue', ['resource', 'resource_id'], unique=False)

    # Market-price registrations
    op.create_table('sku_registrations',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('sku', sa.String(length=100), nullable=False),
    sa.Column('market_product_id', sa.String(length=100), nullable=False),
    sa.Column('registered_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('sku')
    )
    op.create_index(op.f('ix_sku_registrations_market_product_id'), 'sku_registrations', ['market_product_id'], unique=False)

    op.create_table('price_subscriptions',
    sa.Column('market', sa.String(length=10), nullable=False),
    sa.Column('subscription_id', sa.String(length=100), nullable=False),
    sa.Column('callback_url', sa.String(length=500), nullable=True),
    sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('market')
    )

    op.create_table('sync_status',
    sa.Column('id', sa.String(length=50), nullable=False),
    sa.Column('last_sync_at', sa.DateTime(), nullable=True),
    sa.Column('records_synced', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('details', sa.JSON(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('sync_status')
    op.drop_table('price_subscriptions')
    op.drop_index(op.f('ix_sku_registrations_market_product_id'), table_name='sku_registrations')
    op.drop_table('sku_registrations')
    op.drop_index('ix_webhook_queue_resource', table_name='webhook_queue')
    op.drop_index('ix_webhook_queue_status_received', table_name='webhook_queue')
    op.drop_index(op.f('ix_webhook_queue_topic'), table_name='webhook_queue')
    op.drop_table('webhook_queue')
    op.drop_index('ix_sync_log_type_action', table_name='sync_log')
    op.drop_index(op.f('ix_sync_log_created_at'), table_name='sync_log')
    op.drop_index(op.f('ix_sync_log_sku'), table_name='sync_log')
    op.drop_table('sync_log')
    op.drop_index(op.f('ix_remote_variation_map_remote_parent_id'), table_name='remote_variation_map')
    op.drop_index(op.f('ix_remote_variation_map_remote_id'), table_name='remote_variation_map')
    op.drop_table('remote_variation_map')
    op.drop_index(op.f('ix_remote_product_map_remote_id'), table_name='remote_product_map')
    op.drop_table('remote_product_map')
    op.drop_index('ix_product_variations_status', table_name='product_variations')
    op.drop_index('ix_product_variations_stock', table_name='product_variations')
    op.drop_index(op.f('ix_product_variations_product_id'), table_name='product_variations')
    op.drop_table('product_variations')
    op.drop_index('ix_products_updated_at', table_name='products')
    op.drop_index('ix_products_status', table_name='products')
    op.drop_table('products')
