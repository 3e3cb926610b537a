"""diesel ledger: products, warehouses and transactions

Revision ID: 0001_diesel_ledger
Revises:
Create Date: 2025-01-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_diesel_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create the product, warehouse and ledger tables"""
    op.create_table(
        'diesel_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('product_type', sa.String(length=32), nullable=False),
        sa.Column('reference_price', sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_code'),
    )
    with op.batch_alter_table('diesel_products', schema=None) as batch_op:
        batch_op.create_index('ix_diesel_products_product_type', ['product_type'], unique=False)

    op.create_table(
        'diesel_warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('warehouse_code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('plant_code', sa.String(length=32), nullable=False),
        sa.Column('plant_name', sa.String(length=128), nullable=True),
        sa.Column('product_type', sa.String(length=32), nullable=False),
        sa.Column('current_inventory', sa.Float(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('warehouse_code'),
    )
    with op.batch_alter_table('diesel_warehouses', schema=None) as batch_op:
        batch_op.create_index('ix_diesel_warehouses_plant_code', ['plant_code'], unique=False)

    op.create_table(
        'diesel_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.String(length=64), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_liters', sa.Float(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=True),
        sa.Column('total_cost', sa.Float(), nullable=True),
        sa.Column('previous_balance', sa.Float(), nullable=True),
        sa.Column('current_balance', sa.Float(), nullable=True),
        sa.Column('transaction_date', sa.DateTime(), nullable=False),
        sa.Column('is_transfer', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reference_transaction_id', sa.Integer(), nullable=True),
        sa.Column('asset_id', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('source_system', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('quantity_liters > 0', name='check_quantity_liters_positive'),
        sa.CheckConstraint(
            "transaction_type IN ('entry', 'consumption')", name='check_transaction_type_valid'
        ),
        sa.ForeignKeyConstraint(['product_id'], ['diesel_products.id']),
        sa.ForeignKeyConstraint(['reference_transaction_id'], ['diesel_transactions.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['diesel_warehouses.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('diesel_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_diesel_transactions_transaction_id', ['transaction_id'], unique=False)
        batch_op.create_index(
            'idx_diesel_tx_window', ['warehouse_id', 'product_id', 'transaction_date'], unique=False
        )
        batch_op.create_index('idx_diesel_tx_type', ['transaction_type'], unique=False)


def downgrade():
    """Drop the ledger tables"""
    with op.batch_alter_table('diesel_transactions', schema=None) as batch_op:
        batch_op.drop_index('idx_diesel_tx_type')
        batch_op.drop_index('idx_diesel_tx_window')
        batch_op.drop_index('ix_diesel_transactions_transaction_id')
    op.drop_table('diesel_transactions')

    with op.batch_alter_table('diesel_warehouses', schema=None) as batch_op:
        batch_op.drop_index('ix_diesel_warehouses_plant_code')
    op.drop_table('diesel_warehouses')

    with op.batch_alter_table('diesel_products', schema=None) as batch_op:
        batch_op.drop_index('ix_diesel_products_product_type')
    op.drop_table('diesel_products')
