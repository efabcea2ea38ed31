"""Initial migration - create all tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Stores
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('access_token', sa.String(255)),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stores_shop_domain', 'stores', ['shop_domain'], unique=True)

    # Products and variants
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('shopify_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('status', sa.String(50)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'shopify_id', name='uq_product_store_shopify')
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'])
    op.create_index('ix_products_shopify_id', 'products', ['shopify_id'])

    op.create_table(
        'variants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('shopify_id', sa.String(255)),
        sa.Column('title', sa.String(500)),
        sa.Column('sku', sa.String(255)),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('starting_price', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_variants_product_id', 'variants', ['product_id'])
    op.create_index('ix_variants_store_id', 'variants', ['store_id'])
    op.create_index('ix_variants_shopify_id', 'variants', ['shopify_id'])

    # Smart pricing configs
    op.create_table(
        'variant_pricing_configs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('variants.id'), nullable=False),
        sa.Column('auto_pricing_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('state', sa.String(50), nullable=False, server_default='increasing'),
        sa.Column('increment_percent', sa.Float(), nullable=False, server_default='5.0'),
        sa.Column('period_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('revenue_drop_threshold_percent', sa.Float(), nullable=False, server_default='1.0'),
        sa.Column('wait_hours_after_revert', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('max_increase_percent', sa.Float(), nullable=False, server_default='100.0'),
        sa.Column('baseline_price', sa.Float()),
        sa.Column('last_smart_price', sa.Float()),
        sa.Column('last_price_change_at', sa.DateTime(timezone=True)),
        sa.Column('next_eligible_at', sa.DateTime(timezone=True)),
        sa.Column('revert_wait_until', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "(state = 'waiting_after_revert' AND revert_wait_until IS NOT NULL) OR "
            "(state != 'waiting_after_revert' AND revert_wait_until IS NULL)",
            name='ck_revert_wait_matches_state'
        )
    )
    op.create_index('ix_variant_pricing_configs_variant_id', 'variant_pricing_configs', ['variant_id'], unique=True)
    op.create_index('idx_pricing_config_enabled', 'variant_pricing_configs', ['auto_pricing_enabled'])

    # Pricing history
    op.create_table(
        'pricing_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('variants.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('old_price', sa.Float(), nullable=False),
        sa.Column('new_price', sa.Float(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('reason', sa.Text()),
        sa.Column('revenue_previous_period', sa.Float()),
        sa.Column('revenue_current_period', sa.Float()),
        sa.Column('revenue_change_percent', sa.Float()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pricing_history_variant_id', 'pricing_history', ['variant_id'])
    op.create_index('ix_pricing_history_product_id', 'pricing_history', ['product_id'])
    op.create_index('ix_pricing_history_store_id', 'pricing_history', ['store_id'])
    op.create_index('ix_pricing_history_created_at', 'pricing_history', ['created_at'])
    op.create_index('idx_history_variant_action', 'pricing_history', ['variant_id', 'action'])

    # Daily revenue per variant
    op.create_table(
        'sales_data',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('variant_id', sa.Integer(), sa.ForeignKey('variants.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('units_sold', sa.Integer(), default=0),
        sa.Column('revenue', sa.Float(), default=0.0),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'date', name='uq_sales_variant_date')
    )
    op.create_index('ix_sales_data_store_id', 'sales_data', ['store_id'])
    op.create_index('ix_sales_data_variant_id', 'sales_data', ['variant_id'])

    # Run audit trail
    op.create_table(
        'algorithm_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('products_processed', sa.Integer(), default=0),
        sa.Column('products_increased', sa.Integer(), default=0),
        sa.Column('products_reverted', sa.Integer(), default=0),
        sa.Column('products_waiting', sa.Integer(), default=0),
        sa.Column('errors', sa.JSON()),
        sa.Column('execution_time_ms', sa.Integer(), default=0),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_algorithm_runs_store_id', 'algorithm_runs', ['store_id'])
    op.create_index('ix_algorithm_runs_created_at', 'algorithm_runs', ['created_at'])

    # Webhook ledger
    op.create_table(
        'processed_webhooks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('webhook_id', sa.String(255), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('topic', sa.String(100), nullable=False),
        sa.Column('payload_hash', sa.String(64)),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('webhook_id', 'store_id', name='uq_processed_webhook_store')
    )
    op.create_index('ix_processed_webhooks_store_id', 'processed_webhooks', ['store_id'])

    # Settings
    op.create_table(
        'settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('value', sa.Text()),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_settings_key', 'settings', ['key'], unique=True)


def downgrade():
    op.drop_table('settings')
    op.drop_table('processed_webhooks')
    op.drop_table('algorithm_runs')
    op.drop_table('sales_data')
    op.drop_table('pricing_history')
    op.drop_table('variant_pricing_configs')
    op.drop_table('variants')
    op.drop_table('products')
    op.drop_table('stores')
