"""initial valuation schema

Revision ID: v1a2b3c4d5e6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the inventory valuation schema:
- stores, products: key space and catalog
- inventory_records: per (store, product) quantity and weighted-average cost
- stock_movements: append-only quantity ledger
- price_change_events, inventory_revaluation_events: typed cost event logs
- inventory_cost_layers: received cost layers (audit only)
- transactions, transaction_items: POS input with cost captured at sale time
- product_profitability_snapshots, batch_runs: batch outputs and run tracking
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'v1a2b3c4d5e6'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # stores / products
    # ============================================================================
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sale_price', sa.Numeric(18, 2), nullable=True),
        sa.Column('cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # inventory_records: running cost basis per (store, product)
    # ============================================================================
    op.create_table(
        'inventory_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('total_cost_value', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('last_cost_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_restocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_stock_level', sa.Integer(), nullable=True),
        sa.Column('is_frozen', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('frozen_reason', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', name='uq_inventory_records_store_product'),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_records_quantity_nonnegative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_records_store_id', 'inventory_records', ['store_id'])
    op.create_index('ix_inventory_records_product_id', 'inventory_records', ['product_id'])
    op.create_index('ix_inventory_records_store_quantity', 'inventory_records', ['store_id', 'quantity'])

    # ============================================================================
    # stock_movements: append-only, one row per record mutation
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('delta = quantity_after - quantity_before', name='ck_movements_delta_consistent'),
        sa.CheckConstraint('delta <> 0', name='ck_movements_delta_nonzero'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_reference_id', 'stock_movements', ['reference_id'])
    op.create_index('ix_movements_store_product_occurred', 'stock_movements', ['store_id', 'product_id', 'occurred_at'])
    op.create_index('ix_movements_store_action_occurred', 'stock_movements', ['store_id', 'action_type', 'occurred_at'])

    # ============================================================================
    # cost events
    # ============================================================================
    op.create_table(
        'price_change_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('old_cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('new_cost', sa.Numeric(18, 6), nullable=True),
        sa.Column('old_sale_price', sa.Numeric(18, 2), nullable=True),
        sa.Column('new_sale_price', sa.Numeric(18, 2), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_price_change_store_product_occurred', 'price_change_events', ['store_id', 'product_id', 'occurred_at'])

    op.create_table(
        'inventory_revaluation_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('revalued_quantity', sa.Integer(), nullable=True),
        sa.Column('avg_cost_before', sa.Numeric(18, 6), nullable=True),
        sa.Column('avg_cost_after', sa.Numeric(18, 6), nullable=True),
        sa.Column('total_cost_before', sa.Numeric(18, 6), nullable=True),
        sa.Column('total_cost_after', sa.Numeric(18, 6), nullable=True),
        sa.Column('delta_value', sa.Numeric(18, 6), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_revaluation_events_movement_id', 'inventory_revaluation_events', ['movement_id'])
    op.create_index('ix_revaluation_store_product_occurred', 'inventory_revaluation_events', ['store_id', 'product_id', 'occurred_at'])
    op.create_index('ix_revaluation_store_source_occurred', 'inventory_revaluation_events', ['store_id', 'source', 'occurred_at'])

    op.create_table(
        'inventory_cost_layers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=False),
        sa.Column('quantity_received', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity_received > 0', name='ck_cost_layers_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_cost_layers_movement_id', 'inventory_cost_layers', ['movement_id'])
    op.create_index('ix_cost_layers_store_product_created', 'inventory_cost_layers', ['store_id', 'product_id', 'created_at'])

    # ============================================================================
    # transactions / transaction_items
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='SALE'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('original_transaction_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['original_transaction_id'], ['transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_store_id', 'transactions', ['store_id'])
    op.create_index('ix_transactions_original_transaction_id', 'transactions', ['original_transaction_id'])
    op.create_index('ix_transactions_store_kind_created', 'transactions', ['store_id', 'kind', 'created_at'])
    op.create_index('ix_transactions_store_status_created', 'transactions', ['store_id', 'status', 'created_at'])

    op.create_table(
        'transaction_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(18, 2), nullable=False),
        sa.Column('unit_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('total_price', sa.Numeric(18, 2), nullable=False),
        sa.Column('total_cost', sa.Numeric(18, 6), nullable=False, server_default='0'),
        sa.Column('original_item_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['original_item_id'], ['transaction_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_items_transaction_id', 'transaction_items', ['transaction_id'])
    op.create_index('ix_transaction_items_original_item_id', 'transaction_items', ['original_item_id'])
    op.create_index('ix_transaction_items_product', 'transaction_items', ['product_id'])

    # ============================================================================
    # batch outputs
    # ============================================================================
    op.create_table(
        'product_profitability_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('period_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('units_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gross_revenue', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('refunded_amount', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('refunded_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_revenue', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('gross_cost', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('net_cost', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('total_profit', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('profit_margin', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('avg_profit_per_unit', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('sale_velocity', sa.Numeric(12, 4), nullable=False, server_default='0'),
        sa.Column('current_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('days_to_stockout', sa.Integer(), nullable=True),
        sa.Column('min_stock_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('removal_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('removal_loss_value', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('trend', sa.String(length=16), nullable=False, server_default='stable'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', 'period_days', name='uq_profitability_store_product_period'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_profitability_snapshots_store_id', 'product_profitability_snapshots', ['store_id'])
    op.create_index('ix_profitability_store_profit', 'product_profitability_snapshots', ['store_id', 'total_profit'])
    op.create_index('ix_profitability_store_velocity', 'product_profitability_snapshots', ['store_id', 'sale_velocity'])

    op.create_table(
        'batch_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('job_type', sa.String(length=32), nullable=False, server_default='profitability'),
        sa.Column('period_days', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('snapshots_written', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_batch_runs_store_job_created', 'batch_runs', ['store_id', 'job_type', 'created_at'])
    op.create_index('ix_batch_runs_status', 'batch_runs', ['status'])


def downgrade():
    op.drop_table('batch_runs')
    op.drop_table('product_profitability_snapshots')
    op.drop_table('transaction_items')
    op.drop_table('transactions')
    op.drop_table('inventory_cost_layers')
    op.drop_table('inventory_revaluation_events')
    op.drop_table('price_change_events')
    op.drop_table('stock_movements')
    op.drop_table('inventory_records')
    op.drop_table('products')
    op.drop_table('stores')
