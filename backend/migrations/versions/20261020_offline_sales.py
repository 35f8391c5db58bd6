"""Offline sale queue

Revision ID: 20261020_offline_sales
Revises: 20261019_initial
Create Date: 2026-10-20

This migration creates:
1. offline_sales (checkouts uploaded by terminals after working offline,
   unique per branch on local_id)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261020_offline_sales'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('offline_sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('local_id', sa.String(length=128), nullable=False),
        sa.Column('device_id', sa.String(length=128), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('sync_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_sync_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('synced_sale_id', sa.Integer(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id']),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['synced_sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'local_id', name='uq_offline_sales_branch_local'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_offline_sales_branch_id', 'offline_sales', ['branch_id'])
    op.create_index('ix_offline_sales_store_id', 'offline_sales', ['store_id'])
    op.create_index('ix_offline_sales_status', 'offline_sales', ['status'])
    op.create_index('ix_offline_sales_branch_status', 'offline_sales', ['branch_id', 'status'])


def downgrade():
    op.drop_table('offline_sales')
