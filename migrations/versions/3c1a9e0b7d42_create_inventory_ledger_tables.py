"""create inventory ledger and stock count tables

Revision ID: 3c1a9e0b7d42
Revises:
Create Date: 2026-10-19 09:12:44.118203
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = '3c1a9e0b7d42'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

transaction_type = sa.Enum('in', 'out', 'transfer', 'count', 'adjustment', name='transactiontype')
transaction_status = sa.Enum('pending', 'approved', 'rejected', 'completed', name='transactionstatus')
transaction_reason = sa.Enum(
    'purchase', 'sale', 'return', 'damage', 'expiry', 'transfer', 'count', 'adjustment', 'theft', 'other',
    name='transactionreason',
)
stock_count_type = sa.Enum('full', 'partial', 'cycle', name='stockcounttype')
stock_count_status = sa.Enum('draft', 'in_progress', 'completed', 'cancelled', name='stockcountstatus')


def audit_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'products',
        *audit_columns(),
        sa.Column('sku', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('cost', sa.Numeric(10, 2), nullable=True),
        sa.Column('min_stock', sa.Integer(), nullable=True),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=True),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)
    op.create_index('ix_products_category', 'products', ['category'])

    op.create_table(
        'inventory_transactions',
        *audit_columns(),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('type', transaction_type, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('reference_number', sa.String(length=100), nullable=True),
        sa.Column('location_from', sa.String(length=100), nullable=True),
        sa.Column('location_to', sa.String(length=100), nullable=True),
        sa.Column('reason', transaction_reason, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('unit_cost', sa.Numeric(10, 2), nullable=True),
        sa.Column('total_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('performed_by', sa.Integer(), nullable=False),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('status', transaction_status, nullable=False),
        sa.Column('compensates_id', sa.Integer(), sa.ForeignKey('inventory_transactions.id'), nullable=True),
    )
    op.create_index('ix_inventory_transactions_product_id', 'inventory_transactions', ['product_id'])
    op.create_index('ix_inventory_transactions_reference_number', 'inventory_transactions', ['reference_number'])

    op.create_table(
        'stock_counts',
        *audit_columns(),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('count_type', stock_count_type, nullable=True),
        sa.Column('status', stock_count_status, nullable=False),
        sa.Column('location', sa.String(length=100), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('scheduled_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counted_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_variance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_value', sa.Numeric(14, 2), nullable=True),
        sa.Column('variance_value', sa.Numeric(14, 2), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )

    op.create_table(
        'stock_count_items',
        *audit_columns(),
        sa.Column('stock_count_id', sa.Integer(), sa.ForeignKey('stock_counts.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expected_quantity', sa.Integer(), nullable=False),
        sa.Column('actual_quantity', sa.Integer(), nullable=True),
        sa.Column('variance', sa.Integer(), nullable=True),
        sa.Column('unit_cost', sa.Numeric(10, 2), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('counted_by', sa.Integer(), nullable=True),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('inventory_transactions.id'), nullable=True),
        sa.UniqueConstraint('stock_count_id', 'product_id', name='uq_stock_count_product'),
    )
    op.create_index('ix_stock_count_items_stock_count_id', 'stock_count_items', ['stock_count_id'])


def downgrade() -> None:
    op.drop_table('stock_count_items')
    op.drop_table('stock_counts')
    op.drop_table('inventory_transactions')
    op.drop_table('products')
    bind = op.get_bind()
    for enum in (stock_count_status, stock_count_type, transaction_reason, transaction_status, transaction_type):
        enum.drop(bind, checkfirst=True)
