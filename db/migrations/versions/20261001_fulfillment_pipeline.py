# NG-HEADER: Nombre de archivo: 20261001_fulfillment_pipeline.py
# NG-HEADER: Ubicación: db/migrations/versions/20261001_fulfillment_pipeline.py
# NG-HEADER: Descripción: Esquema inicial: catálogo, recetas, cuentas y órdenes de fulfillment
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""fulfillment pipeline schema"""

from alembic import op
import sqlalchemy as sa

from db.migrations.util import has_table, index_exists

# revision identifiers, used by Alembic.
revision = '20261001_fulfillment_pipeline'
down_revision = None
branch_labels = None
depends_on = None

STATUS_CHECK = "status IN ('pending','processing','success','failed')"


def upgrade() -> None:
    bind = op.get_bind()

    if not has_table(bind, 'products'):
        op.create_table(
            'products',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('denomination', sa.Integer(), nullable=True),
            sa.Column('price', sa.Numeric(12, 2), nullable=True),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not has_table(bind, 'suppliers'):
        op.create_table(
            'suppliers',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('code', sa.String(length=50), nullable=False, unique=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not has_table(bind, 'upstream_items'):
        op.create_table(
            'upstream_items',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False),
            sa.Column('external_ref', sa.String(length=100), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=True),
            sa.Column('denomination', sa.Integer(), nullable=True),
            sa.Column('cost', sa.Numeric(12, 2), nullable=True),
            sa.UniqueConstraint('supplier_id', 'external_ref', name='uq_upstream_items_supplier_ref'),
        )

    if not has_table(bind, 'recipe_lines'):
        op.create_table(
            'recipe_lines',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
            sa.Column('upstream_item_id', sa.Integer(), sa.ForeignKey('upstream_items.id', ondelete='RESTRICT'), nullable=False),
            sa.Column('multiplier', sa.Integer(), nullable=False),
            sa.CheckConstraint('multiplier > 0', name='ck_recipe_lines_multiplier'),
        )
    if not index_exists(bind, 'recipe_lines', 'ix_recipe_lines_product_id'):
        op.create_index('ix_recipe_lines_product_id', 'recipe_lines', ['product_id'])

    if not has_table(bind, 'accounts'):
        op.create_table(
            'accounts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('telegram_chat_id', sa.String(length=64), nullable=True),
            sa.Column('webhook_url', sa.String(length=500), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if not has_table(bind, 'buyer_orders'):
        op.create_table(
            'buyer_orders',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
            sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=True),
            sa.Column('destination', sa.String(length=100), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(STATUS_CHECK, name='ck_buyer_orders_status'),
            sa.CheckConstraint('quantity > 0', name='ck_buyer_orders_quantity'),
        )

    if not has_table(bind, 'fulfillment_orders'):
        op.create_table(
            'fulfillment_orders',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('buyer_order_id', sa.Integer(), sa.ForeignKey('buyer_orders.id', ondelete='CASCADE'), nullable=False),
            sa.Column('supplier_id', sa.Integer(), sa.ForeignKey('suppliers.id'), nullable=False),
            sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
            sa.Column('last_error', sa.Text(), nullable=True),
            sa.Column('provider_trx_id', sa.String(length=100), nullable=True),
            sa.Column('provider_trx_ids', sa.JSON(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint(STATUS_CHECK, name='ck_fulfillment_orders_status'),
        )
    if not index_exists(bind, 'fulfillment_orders', 'ix_fulfillment_orders_buyer_order_id'):
        op.create_index('ix_fulfillment_orders_buyer_order_id', 'fulfillment_orders', ['buyer_order_id'])
    if not index_exists(bind, 'fulfillment_orders', 'ix_fulfillment_orders_status'):
        op.create_index('ix_fulfillment_orders_status', 'fulfillment_orders', ['status'])

    if not has_table(bind, 'fulfillment_lines'):
        op.create_table(
            'fulfillment_lines',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column(
                'fulfillment_order_id',
                sa.Integer(),
                sa.ForeignKey('fulfillment_orders.id', ondelete='CASCADE'),
                nullable=False,
            ),
            sa.Column('upstream_item_id', sa.Integer(), sa.ForeignKey('upstream_items.id'), nullable=False),
            sa.Column('quantity', sa.Integer(), nullable=False),
            sa.CheckConstraint('quantity > 0', name='ck_fulfillment_lines_quantity'),
        )
    if not index_exists(bind, 'fulfillment_lines', 'ix_fulfillment_lines_fulfillment_order_id'):
        op.create_index('ix_fulfillment_lines_fulfillment_order_id', 'fulfillment_lines', ['fulfillment_order_id'])


def downgrade() -> None:
    op.drop_table('fulfillment_lines')
    op.drop_table('fulfillment_orders')
    op.drop_table('buyer_orders')
    op.drop_table('accounts')
    op.drop_table('recipe_lines')
    op.drop_table('upstream_items')
    op.drop_table('suppliers')
    op.drop_table('products')
