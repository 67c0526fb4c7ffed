"""Initial fleet ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Creates:
1. Organizations, vehicles and drivers (fleet master data)
2. Waybills and route segments
3. Stock items, stock movements and movement lines
4. Period locks and balance snapshots (integrity)
5. Business events, season settings and document sequences
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
    # 1. FLEET MASTER DATA
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_organizations_code'),
        sqlite_autoincrement=True
    )

    op.create_table('vehicles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('registration_number', sa.String(length=32), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=True),
        sa.Column('summer_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('winter_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('city_increase_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('warming_increase_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('mountain_increase_percent', sa.Float(), nullable=False, server_default='0'),
        sa.Column('mileage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_fuel', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('registration_number', name='uq_vehicles_registration'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('vehicles', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_vehicles_organization_id'), ['organization_id'], unique=False)

    op.create_table('drivers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('personnel_number', sa.String(length=32), nullable=True),
        sa.Column('fuel_card_number', sa.String(length=64), nullable=True),
        sa.Column('fuel_card_balance', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('drivers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_drivers_organization_id'), ['organization_id'], unique=False)

    # ==========================================================================
    # 2. WAYBILLS
    # ==========================================================================
    op.create_table('waybills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('number', sa.String(length=64), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('vehicle_id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('valid_from', sa.DateTime(), nullable=False),
        sa.Column('valid_to', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('odometer_start', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('odometer_end', sa.Integer(), nullable=True),
        sa.Column('fuel_at_start', sa.Float(), nullable=False, server_default='0'),
        sa.Column('fuel_filled', sa.Float(), nullable=True),
        sa.Column('fuel_at_end', sa.Float(), nullable=True),
        sa.Column('fuel_planned', sa.Float(), nullable=True),
        sa.Column('calculation_method', sa.String(length=16), nullable=False, server_default='by_total'),
        sa.Column('blank_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('posted_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('waybills', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_waybills_number'), ['number'], unique=False)
        batch_op.create_index(batch_op.f('ix_waybills_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_waybills_vehicle_id'), ['vehicle_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_waybills_driver_id'), ['driver_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_waybills_date'), ['date'], unique=False)
        batch_op.create_index(batch_op.f('ix_waybills_status'), ['status'], unique=False)
        batch_op.create_index('ix_waybills_vehicle_valid_from', ['vehicle_id', 'valid_from'], unique=False)
        batch_op.create_index('ix_waybills_driver_status_date', ['driver_id', 'status', 'date'], unique=False)

    op.create_table('route_segments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('waybill_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('origin', sa.String(length=255), nullable=True),
        sa.Column('destination', sa.String(length=255), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_city_driving', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_warming', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_mountain_driving', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('segment_date', sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(['waybill_id'], ['waybills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('waybill_id', 'position', name='uq_route_segments_waybill_position'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('route_segments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_route_segments_waybill_id'), ['waybill_id'], unique=False)

    # ==========================================================================
    # 3. STOCK
    # ==========================================================================
    op.create_table('stock_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('group', sa.String(length=64), nullable=True),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='l'),
        sa.Column('is_fuel', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('balance', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_purchase_price', sa.Float(), nullable=True),
        sa.Column('last_movement_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_items_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index('ix_stock_items_org_name', ['organization_id', 'name'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('doc_number', sa.String(length=64), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('expense_reason', sa.String(length=32), nullable=True),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('driver_id', sa.Integer(), nullable=True),
        sa.Column('vehicle_id', sa.Integer(), nullable=True),
        sa.Column('waybill_id', sa.Integer(), nullable=True),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id'], ),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ),
        sa.ForeignKeyConstraint(['waybill_id'], ['waybills.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_doc_number'), ['doc_number'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_date'), ['date'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_organization_id'), ['organization_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_driver_id'), ['driver_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_vehicle_id'), ['vehicle_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_waybill_id'), ['waybill_id'], unique=False)
        batch_op.create_index('ix_stock_movements_driver_reason_date', ['driver_id', 'expense_reason', 'date'], unique=False)
        batch_op.create_index('ix_stock_movements_status_date', ['status', 'date'], unique=False)

    op.create_table('stock_movement_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock_item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id'], ),
        sa.ForeignKeyConstraint(['stock_item_id'], ['stock_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movement_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movement_lines_movement_id'), ['movement_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movement_lines_stock_item_id'), ['stock_item_id'], unique=False)

    # ==========================================================================
    # 4. INTEGRITY
    # ==========================================================================
    op.create_table('period_locks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('data_hash', sa.String(length=64), nullable=False),
        sa.Column('record_count', sa.Integer(), nullable=False),
        sa.Column('locked_by', sa.String(length=64), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('period', name='uq_period_locks_period'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('period_locks', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_period_locks_period'), ['period'], unique=False)

    op.create_table('balance_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('balance', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('driver_id', 'date', name='uq_balance_snapshots_driver_date'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('balance_snapshots', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_balance_snapshots_driver_id'), ['driver_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_balance_snapshots_date'), ['date'], unique=False)

    # ==========================================================================
    # 5. AUDIT, SETTINGS, NUMBERING
    # ==========================================================================
    op.create_table('business_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('business_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_business_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_business_events_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_business_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_business_events_type_at', ['event_type', 'occurred_at'], unique=False)

    op.create_table('season_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rule_type', sa.String(length=16), nullable=False, server_default='recurring'),
        sa.Column('winter_month', sa.Integer(), nullable=True),
        sa.Column('winter_day', sa.Integer(), nullable=True),
        sa.Column('summer_month', sa.Integer(), nullable=True),
        sa.Column('summer_day', sa.Integer(), nullable=True),
        sa.Column('winter_start_date', sa.Date(), nullable=True),
        sa.Column('winter_end_date', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('period_key', sa.String(length=8), nullable=False, server_default=''),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', 'period_key', name='uq_doc_sequences_type_period'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_document_sequences_document_type'), ['document_type'], unique=False)


def downgrade():
    for table in (
        'document_sequences',
        'season_settings',
        'business_events',
        'balance_snapshots',
        'period_locks',
        'stock_movement_lines',
        'stock_movements',
        'stock_items',
        'route_segments',
        'waybills',
        'drivers',
        'vehicles',
        'organizations',
    ):
        op.drop_table(table)
