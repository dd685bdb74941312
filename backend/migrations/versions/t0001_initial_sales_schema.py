"""initial sales schema

Revision ID: t0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the four core tables:
- products: current price, cost and stock (stock never negative)
- customers: master data plus RFM segment label
- orders: purchase sessions with incrementally maintained total
- order_lines: append-only sold lines with frozen price/cost snapshots
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 't0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(64), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(64), nullable=True),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_nonnegative'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_category', 'products', ['category'])
    op.create_index('ix_products_category_active', 'products', ['category', 'is_active'])

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(128), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('city', sa.String(64), nullable=True),
        sa.Column('state', sa.String(2), nullable=True),
        sa.Column('segment', sa.String(16), nullable=False, server_default='New'),
        sa.Column('loyalty_score', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('segment_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_customers_email'),
        sa.CheckConstraint(
            "segment IN ('New', 'Promising', 'Champion', 'At-Risk', 'Lost')",
            name='ck_customers_segment',
        ),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_customers_segment', 'customers', ['segment'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='Pending'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('Pending', 'Paid', 'Cancelled')", name='ck_orders_status'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_status', 'orders', ['created_at', 'status'])
    op.create_index('ix_orders_customer_status', 'orders', ['customer_id', 'status'])

    op.create_table(
        'order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents_at_sale', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents_at_sale', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('margin_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_order_lines_order_id', 'order_lines', ['order_id'])
    op.create_index('ix_order_lines_product_id', 'order_lines', ['product_id'])


def downgrade():
    op.drop_index('ix_order_lines_product_id', table_name='order_lines')
    op.drop_index('ix_order_lines_order_id', table_name='order_lines')
    op.drop_table('order_lines')

    op.drop_index('ix_orders_customer_status', table_name='orders')
    op.drop_index('ix_orders_created_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_customers_segment', table_name='customers')
    op.drop_table('customers')

    op.drop_index('ix_products_category_active', table_name='products')
    op.drop_index('ix_products_category', table_name='products')
    op.drop_table('products')
