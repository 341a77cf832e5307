"""initial back-office schema

Revision ID: b0f1c2a3d4e5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete back-office schema:
- products: catalog entries referenced by every document
- outlet_stock / stock_movements: the stock ledger and its movement log
- purchase_orders / purchase_order_items
- stock_transfers / stock_transfer_items
- transactions / transaction_items: sales recorded by the point of sale
- returns / return_items
- return_policies
- audit_events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b0f1c2a3d4e5'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=None if nullable else sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category_id', sa.String(length=36), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    # ============================================================================
    # outlet_stock: one row per (outlet, product); never negative
    # ============================================================================
    op.create_table(
        'outlet_stock',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('outlet_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_outlet_stock_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_outlet_stock'),
        sa.UniqueConstraint('outlet_id', 'product_id', name='uq_outlet_stock_outlet_product'),
        sa.CheckConstraint('quantity >= 0', name='ck_outlet_stock_quantity_non_negative'),
    )
    op.create_index('ix_outlet_stock_outlet_id', 'outlet_stock', ['outlet_id'])
    op.create_index('ix_outlet_stock_product_id', 'outlet_stock', ['product_id'])

    # ============================================================================
    # stock_movements: append-only, signed quantities
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('outlet_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('movement_type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_movements_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
    )
    op.create_index('ix_stock_movements_outlet_id', 'stock_movements', ['outlet_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # purchase_orders
    # ============================================================================
    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False),
        sa.Column('supplier_id', sa.String(length=36), nullable=False),
        sa.Column('outlet_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        _timestamp('order_date'),
        _timestamp('expected_date', nullable=True),
        _timestamp('received_date', nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id', name='pk_purchase_orders'),
        sa.UniqueConstraint('order_number', name='uq_purchase_orders_order_number'),
    )
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'])
    op.create_index('ix_purchase_orders_outlet_id', 'purchase_orders', ['outlet_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])
    op.create_index('ix_purchase_orders_order_date', 'purchase_orders', ['order_date'])

    op.create_table(
        'purchase_order_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('purchase_order_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'],
                                name='fk_purchase_order_items_purchase_order_id_purchase_orders'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'],
                                name='fk_purchase_order_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_purchase_order_items'),
    )
    op.create_index('ix_purchase_order_items_purchase_order_id', 'purchase_order_items', ['purchase_order_id'])

    # ============================================================================
    # stock_transfers
    # ============================================================================
    op.create_table(
        'stock_transfers',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transfer_number', sa.String(length=32), nullable=False),
        sa.Column('source_outlet_id', sa.String(length=36), nullable=False),
        sa.Column('destination_outlet_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        _timestamp('approved_at', nullable=True),
        _timestamp('completed_at', nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_transfers'),
        sa.UniqueConstraint('transfer_number', name='uq_stock_transfers_transfer_number'),
        sa.CheckConstraint('source_outlet_id <> destination_outlet_id',
                           name='ck_stock_transfers_distinct_outlets'),
    )
    op.create_index('ix_stock_transfers_source_outlet_id', 'stock_transfers', ['source_outlet_id'])
    op.create_index('ix_stock_transfers_destination_outlet_id', 'stock_transfers', ['destination_outlet_id'])
    op.create_index('ix_stock_transfers_status', 'stock_transfers', ['status'])
    op.create_index('ix_stock_transfers_created_at', 'stock_transfers', ['created_at'])

    op.create_table(
        'stock_transfer_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transfer_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id'],
                                name='fk_stock_transfer_items_transfer_id_stock_transfers'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'],
                                name='fk_stock_transfer_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_transfer_items'),
        sa.CheckConstraint('quantity > 0', name='ck_stock_transfer_items_quantity_positive'),
    )
    op.create_index('ix_stock_transfer_items_transfer_id', 'stock_transfer_items', ['transfer_id'])

    # ============================================================================
    # transactions: sales, written by the point of sale
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transaction_number', sa.String(length=32), nullable=False),
        sa.Column('outlet_id', sa.String(length=36), nullable=True),
        _timestamp('transaction_date'),
        sa.Column('total_amount', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.UniqueConstraint('transaction_number', name='uq_transactions_transaction_number'),
    )
    op.create_index('ix_transactions_outlet_id', 'transactions', ['outlet_id'])
    op.create_index('ix_transactions_transaction_date', 'transactions', ['transaction_date'])

    op.create_table(
        'transaction_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Integer(), nullable=False),
        sa.Column('original_price', sa.Integer(), nullable=True),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'],
                                name='fk_transaction_items_transaction_id_transactions'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'],
                                name='fk_transaction_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_transaction_items'),
    )
    op.create_index('ix_transaction_items_transaction_id', 'transaction_items', ['transaction_id'])

    # ============================================================================
    # returns
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('return_number', sa.String(length=32), nullable=False),
        sa.Column('transaction_id', sa.String(length=36), nullable=False),
        sa.Column('outlet_id', sa.String(length=36), nullable=True),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('total_refund', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refund_method', sa.String(length=16), nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approval_reason', sa.Text(), nullable=True),
        sa.Column('rejected_reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        _timestamp('completed_at', nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'],
                                name='fk_returns_transaction_id_transactions'),
        sa.PrimaryKeyConstraint('id', name='pk_returns'),
        sa.UniqueConstraint('return_number', name='uq_returns_return_number'),
    )
    op.create_index('ix_returns_transaction_id', 'returns', ['transaction_id'])
    op.create_index('ix_returns_outlet_id', 'returns', ['outlet_id'])
    op.create_index('ix_returns_status', 'returns', ['status'])
    op.create_index('ix_returns_created_at', 'returns', ['created_at'])

    op.create_table(
        'return_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('return_id', sa.String(length=36), nullable=False),
        sa.Column('transaction_item_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('original_price', sa.Integer(), nullable=False),
        sa.Column('discount_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refund_amount', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('reason_detail', sa.Text(), nullable=True),
        sa.Column('is_damaged', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_resellable', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], name='fk_return_items_return_id_returns'),
        sa.ForeignKeyConstraint(['transaction_item_id'], ['transaction_items.id'],
                                name='fk_return_items_transaction_item_id_transaction_items'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_return_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_return_items'),
        sa.CheckConstraint('quantity > 0', name='ck_return_items_quantity_positive'),
        sa.CheckConstraint('discount_amount <= original_price', name='ck_return_items_discount_within_price'),
    )
    op.create_index('ix_return_items_return_id', 'return_items', ['return_id'])
    op.create_index('ix_return_items_transaction_item_id', 'return_items', ['transaction_item_id'])

    # ============================================================================
    # return_policies
    # ============================================================================
    op.create_table(
        'return_policies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('max_return_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('non_returnable_categories', sa.JSON(), nullable=False),
        sa.Column('require_receipt', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id', name='pk_return_policies'),
    )
    op.create_index('ix_return_policies_is_active', 'return_policies', ['is_active'])

    # ============================================================================
    # audit_events: written in the same transaction as the change
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False),
        _timestamp('occurred_at'),
        sa.PrimaryKeyConstraint('id', name='pk_audit_events'),
    )
    op.create_index('ix_audit_events_event_type', 'audit_events', ['event_type'])
    op.create_index('ix_audit_events_actor_id', 'audit_events', ['actor_id'])
    op.create_index('ix_audit_events_occurred_at', 'audit_events', ['occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('return_policies')
    op.drop_table('return_items')
    op.drop_table('returns')
    op.drop_table('transaction_items')
    op.drop_table('transactions')
    op.drop_table('stock_transfer_items')
    op.drop_table('stock_transfers')
    op.drop_table('purchase_order_items')
    op.drop_table('purchase_orders')
    op.drop_table('stock_movements')
    op.drop_table('outlet_stock')
    op.drop_table('products')
