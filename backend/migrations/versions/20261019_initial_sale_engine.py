"""Initial schema: tenancy, catalog stock, sales, loyalty, ledger

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. stores / branches (tenant root, per-branch POS settings)
2. products (stock_on_hand counter, CHECK >= 0) and stock_movements
3. customers and loyalty_transactions
4. sales, sale_items and the per-branch sale_sequences counter
5. ledger_events (append-only audit trail)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. TENANCY
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_banned', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('subscription_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stores_code', 'stores', ['code'], unique=True)

    op.create_table('branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('default_tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_included', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('allow_discounts', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('max_discount_percent', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('require_customer_info', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('allowed_payment_methods', sa.String(length=255), nullable=False, server_default='cash,card,mobile_money'),
        sa.Column('loyalty_program', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('restock_on_refund', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('restock_on_cancel', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('reverse_loyalty_on_cancel', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'name', name='uq_branches_store_name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_branches_store_id', 'branches', ['store_id'])

    # ==========================================================================
    # 2. PRODUCTS & STOCK MOVEMENTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('stock_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('max_stock', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('reorder_point', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_perishable', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('stock_on_hand >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'sku', name='uq_products_branch_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_branch_id', 'products', ['branch_id'])
    op.create_index('ix_products_branch_name', 'products', ['branch_id', 'name'])

    # ==========================================================================
    # 3. CUSTOMERS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_purchases_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_visit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'email', name='uq_customers_store_email'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_store_id', 'customers', ['store_id'])
    op.create_index('ix_customers_branch_id', 'customers', ['branch_id'])

    # ==========================================================================
    # 4. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_mode', sa.String(length=16), nullable=False, server_default='percentage'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_mode', sa.String(length=16), nullable=False, server_default='percentage'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('amount_received_cents', sa.Integer(), nullable=True),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('refunded_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'sale_number', name='uq_sales_branch_number'),
        sa.UniqueConstraint('branch_id', 'idempotency_key', name='uq_sales_branch_idempotency'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_branch_id', 'sales', ['branch_id'])
    op.create_index('ix_sales_store_id', 'sales', ['store_id'])
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_branch_status_created', 'sales', ['branch_id', 'status', 'created_at'])

    op.create_table('sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('line_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_items_sale_line'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])

    op.create_table('sale_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', name='uq_sale_sequences_branch'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_sequences_branch_id', 'sale_sequences', ['branch_id'])

    # ==========================================================================
    # 5. AUDIT TRAILS
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_branch_id', 'stock_movements', ['branch_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])

    op.create_table('loyalty_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('points_requested', sa.Integer(), nullable=False),
        sa.Column('points_applied', sa.Integer(), nullable=False),
        sa.Column('purchases_delta_cents', sa.Integer(), nullable=False),
        sa.Column('points_balance_after', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_loyalty_transactions_customer_id', 'loyalty_transactions', ['customer_id'])
    op.create_index('ix_loyalty_transactions_sale_id', 'loyalty_transactions', ['sale_id'])
    op.create_index('ix_loyalty_transactions_transaction_type', 'loyalty_transactions', ['transaction_type'])
    op.create_index('ix_loyalty_transactions_occurred_at', 'loyalty_transactions', ['occurred_at'])
    op.create_index('ix_loyalty_txns_customer_occurred', 'loyalty_transactions', ['customer_id', 'occurred_at'])

    op.create_table('ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_ledger_events_branch_id', 'ledger_events', ['branch_id'])
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_events_sale_id', 'ledger_events', ['sale_id'])
    op.create_index('ix_ledger_events_occurred_at', 'ledger_events', ['occurred_at'])
    op.create_index('ix_ledger_events_branch_occurred', 'ledger_events', ['branch_id', 'occurred_at'])


def downgrade():
    op.drop_table('ledger_events')
    op.drop_table('loyalty_transactions')
    op.drop_table('stock_movements')
    op.drop_table('sale_sequences')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('customers')
    op.drop_table('products')
    op.drop_table('branches')
    op.drop_table('stores')
