"""initial stock ledger schema

Revision ID: sl0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete schema from scratch:
- tenants / locations / products: tenancy root, stock sites, catalog subset
- stock_levels: current-quantity projection (unique per tenant/location/product/variant)
- stock_movements: append-only ledger with before/after quantities
- product_batches + stock_movement_batches: lot registry and lot-level lineage
- sales, purchase_orders, stock_transfers, inventories (+ lines/items)
- document_sequences: per-location document numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'sl0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ============================================================================
    # Tenancy and catalog
    # ============================================================================
    op.create_table('tenants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_tenants_code', 'tenants', ['code'], unique=True)

    op.create_table('locations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='SHOP'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_locations_tenant_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_locations_tenant_id', 'locations', ['tenant_id'])

    op.create_table('products',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=True),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='unit'),
        sa.Column('minimum_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('track_batches', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_products_tenant_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])
    op.create_index('ix_products_location_id', 'products', ['location_id'])
    op.create_index('ix_products_tenant_active', 'products', ['tenant_id', 'is_active'])

    # ============================================================================
    # Stock projection, ledger and lots
    # ============================================================================
    op.create_table('stock_levels',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('variant_key', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'location_id', 'product_id', 'variant_key', name='uq_stock_levels_key'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_stock_levels_reserved_non_negative'),
        sa.CheckConstraint('available_quantity = quantity - reserved_quantity', name='ck_stock_levels_available'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_levels_tenant_id', 'stock_levels', ['tenant_id'])
    op.create_index('ix_stock_levels_location_id', 'stock_levels', ['location_id'])
    op.create_index('ix_stock_levels_product_id', 'stock_levels', ['product_id'])

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('variant_key', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_tenant_id', 'stock_movements', ['tenant_id'])
    op.create_index('ix_stock_movements_location_id', 'stock_movements', ['location_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index(
        'ix_stock_movements_key_created', 'stock_movements',
        ['tenant_id', 'location_id', 'product_id', 'created_at'],
    )
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    op.create_table('product_batches',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('variant_key', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('expiration_date', sa.Date(), nullable=True),
        sa.Column('manufactured_on', sa.Date(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('available_quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('source_batch_id', sa.Integer(), nullable=True),
        sa.Column('stock_movement_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['source_batch_id'], ['product_batches.id']),
        sa.ForeignKeyConstraint(['stock_movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'tenant_id', 'location_id', 'product_id', 'batch_number',
            name='uq_product_batches_key_number',
        ),
        sa.CheckConstraint('available_quantity >= 0', name='ck_product_batches_available_non_negative'),
        sa.CheckConstraint('available_quantity <= quantity', name='ck_product_batches_available_le_quantity'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_product_batches_tenant_id', 'product_batches', ['tenant_id'])
    op.create_index('ix_product_batches_location_id', 'product_batches', ['location_id'])
    op.create_index('ix_product_batches_product_id', 'product_batches', ['product_id'])
    op.create_index('ix_product_batches_expiration_date', 'product_batches', ['expiration_date'])
    op.create_index('ix_product_batches_status', 'product_batches', ['status'])
    op.create_index(
        'ix_product_batches_fefo', 'product_batches',
        ['tenant_id', 'location_id', 'product_id', 'variant_key', 'status', 'expiration_date'],
    )

    op.create_table('stock_movement_batches',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['product_batches.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('movement_id', 'batch_id', name='uq_stock_movement_batches_pair'),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movement_batches_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movement_batches_movement_id', 'stock_movement_batches', ['movement_id'])
    op.create_index('ix_stock_movement_batches_batch_id', 'stock_movement_batches', ['batch_id'])

    # ============================================================================
    # Workflow documents
    # ============================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('completed_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        sa.Column('returned_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'document_number', name='uq_sales_location_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_tenant_id', 'sales', ['tenant_id'])
    op.create_index('ix_sales_location_id', 'sales', ['location_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('movement_id', sa.Integer(), nullable=True),
        sa.Column('return_movement_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id']),
        sa.ForeignKeyConstraint(['return_movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'])
    op.create_index('ix_sale_lines_product_id', 'sale_lines', ['product_id'])

    op.create_table('purchase_orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('supplier_reference', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'document_number', name='uq_purchase_orders_location_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchase_orders_tenant_id', 'purchase_orders', ['tenant_id'])
    op.create_index('ix_purchase_orders_location_id', 'purchase_orders', ['location_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table('purchase_order_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('ordered_quantity', sa.Integer(), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('received_quantity >= 0', name='ck_po_lines_received_non_negative'),
        sa.CheckConstraint('received_quantity <= ordered_quantity', name='ck_po_lines_received_le_ordered'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_purchase_order_lines_purchase_order_id', 'purchase_order_lines', ['purchase_order_id'])
    op.create_index('ix_purchase_order_lines_product_id', 'purchase_order_lines', ['product_id'])

    op.create_table('stock_transfers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('from_location_id', sa.Integer(), nullable=False),
        sa.Column('to_location_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('validated_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['from_location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['to_location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_location_id', 'document_number', name='uq_stock_transfers_location_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_transfers_tenant_id', 'stock_transfers', ['tenant_id'])
    op.create_index('ix_stock_transfers_from_location_id', 'stock_transfers', ['from_location_id'])
    op.create_index('ix_stock_transfers_to_location_id', 'stock_transfers', ['to_location_id'])
    op.create_index('ix_stock_transfers_status', 'stock_transfers', ['status'])

    op.create_table('stock_transfer_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('out_movement_id', sa.Integer(), nullable=True),
        sa.Column('in_movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transfer_id'], ['stock_transfers.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['out_movement_id'], ['stock_movements.id']),
        sa.ForeignKeyConstraint(['in_movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_stock_transfer_items_quantity_positive'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_transfer_items_transfer_id', 'stock_transfer_items', ['transfer_id'])
    op.create_index('ix_stock_transfer_items_product_id', 'stock_transfer_items', ['product_id'])

    op.create_table('inventories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('started_by', sa.Integer(), nullable=True),
        sa.Column('validated_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'document_number', name='uq_inventories_location_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventories_tenant_id', 'inventories', ['tenant_id'])
    op.create_index('ix_inventories_location_id', 'inventories', ['location_id'])
    op.create_index('ix_inventories_status', 'inventories', ['status'])

    op.create_table('inventory_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('inventory_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('system_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counted_quantity', sa.Integer(), nullable=True),
        sa.Column('difference', sa.Integer(), nullable=True),
        sa.Column('adjustment_movement_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['inventory_id'], ['inventories.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['adjustment_movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('inventory_id', 'product_id', name='uq_inventory_items_inventory_product'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_items_inventory_id', 'inventory_items', ['inventory_id'])
    op.create_index('ix_inventory_items_product_id', 'inventory_items', ['product_id'])

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'document_type', name='uq_document_sequences_location_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_location_id', 'document_sequences', ['location_id'])


def downgrade():
    for table in (
        'document_sequences',
        'inventory_items',
        'inventories',
        'stock_transfer_items',
        'stock_transfers',
        'purchase_order_lines',
        'purchase_orders',
        'sale_lines',
        'sales',
        'stock_movement_batches',
        'product_batches',
        'stock_movements',
        'stock_levels',
        'products',
        'locations',
        'tenants',
    ):
        op.drop_table(table)
