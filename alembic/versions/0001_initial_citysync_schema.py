"""Initial CitySync schema

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create organizations table
    op.create_table(
        'organizations',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('api_url', sa.Text(), nullable=True),
        sa.Column('sync_interval', sa.BigInteger(), server_default='300000', nullable=True),
        sa.Column('org_metadata', sa.Text(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Create citizens table
    op.create_table(
        'citizens',
        sa.Column('citizen_id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('first_name', sa.Text(), nullable=True),
        sa.Column('last_name', sa.Text(), nullable=True),
        sa.Column('date_of_birth', sa.DateTime(timezone=True), nullable=True),
        sa.Column('gender', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('nationality', sa.Text(), nullable=True),
        sa.Column('money', sa.Text(), nullable=True),
        sa.Column('charinfo', sa.Text(), nullable=True),
        sa.Column('job', sa.Text(), nullable=True),
        sa.Column('gang', sa.Text(), nullable=True),
        sa.Column('position', sa.Text(), nullable=True),
        sa.Column('citizen_metadata', sa.Text(), nullable=True),
        sa.Column('inventory', sa.Text(), nullable=True),
        sa.Column('fingerprint', sa.Text(), nullable=True),
        sa.Column('blood_type', sa.Text(), nullable=True),
        sa.Column('is_dead', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('is_handcuffed', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('in_jail', sa.Integer(), server_default='0', nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('citizen_id')
    )
    op.create_index('ix_citizens_organization_id', 'citizens', ['organization_id'])
    op.create_index('ix_citizens_fingerprint', 'citizens', ['fingerprint'])
    op.create_index('ix_citizens_last_synced_at', 'citizens', ['last_synced_at'])

    # Create vehicles table
    op.create_table(
        'vehicles',
        sa.Column('plate', sa.Text(), nullable=False),
        sa.Column('citizen_id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), nullable=False),
        sa.Column('vin', sa.Text(), nullable=True),
        sa.Column('hash', sa.Text(), nullable=True),
        sa.Column('vehicle', sa.Text(), nullable=True),
        sa.Column('model', sa.Text(), nullable=True),
        sa.Column('brand', sa.Text(), nullable=True),
        sa.Column('type', sa.Text(), nullable=True),
        sa.Column('vehicle_class', sa.Text(), nullable=True),
        sa.Column('fuel', sa.Float(), nullable=True),
        sa.Column('engine_health', sa.Float(), nullable=True),
        sa.Column('body_health', sa.Float(), nullable=True),
        sa.Column('mileage', sa.Float(), nullable=True),
        sa.Column('driving_distance', sa.Float(), nullable=True),
        sa.Column('color', sa.Text(), nullable=True),
        sa.Column('damage', sa.Text(), nullable=True),
        sa.Column('mods', sa.Text(), nullable=True),
        sa.Column('extras', sa.Text(), nullable=True),
        sa.Column('glovebox', sa.Text(), nullable=True),
        sa.Column('trunk', sa.Text(), nullable=True),
        sa.Column('last_position', sa.Text(), nullable=True),
        sa.Column('state', sa.Text(), nullable=True),
        sa.Column('garage', sa.Text(), nullable=True),
        sa.Column('garage_state', sa.Text(), nullable=True),
        sa.Column('stored', sa.Boolean(), nullable=True),
        sa.Column('wheelclamp', sa.Boolean(), nullable=True),
        sa.Column('custom_name', sa.Text(), nullable=True),
        sa.Column('is_favorite', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('depot_price', sa.Float(), nullable=True),
        sa.Column('balance', sa.Float(), nullable=True),
        sa.Column('payment_amount', sa.Float(), nullable=True),
        sa.Column('payments_left', sa.Integer(), nullable=True),
        sa.Column('finance_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('impounded_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('impound_reason', sa.Text(), nullable=True),
        sa.Column('impounded_by', sa.Text(), nullable=True),
        sa.Column('impound_type', sa.Text(), nullable=True),
        sa.Column('impound_fee', sa.Float(), nullable=True),
        sa.Column('impound_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('job', sa.Text(), nullable=True),
        sa.Column('stored_in_gang', sa.Text(), nullable=True),
        sa.Column('shared_garage_id', sa.Text(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['citizen_id'], ['citizens.citizen_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('plate')
    )
    op.create_index('ix_vehicles_citizen_id', 'vehicles', ['citizen_id'])
    op.create_index('ix_vehicles_organization_id', 'vehicles', ['organization_id'])
    op.create_index('ix_vehicles_state', 'vehicles', ['state'])

    # Sync state table
    op.create_table(
        'sync_state',
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True)),
        sa.Column('status', sa.String(), server_default='success'),
        sa.Column('error_count', sa.Integer(), server_default='0'),
        sa.Column('error_message', sa.Text()),
        sa.Column('sync_metadata', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('organization_id')
    )
    op.create_index('ix_sync_state_last_synced_at', 'sync_state', ['last_synced_at'])
    op.create_index('ix_sync_state_status', 'sync_state', ['status'])


def downgrade() -> None:
    op.drop_table('sync_state')
    op.drop_table('vehicles')
    op.drop_table('citizens')
    op.drop_table('organizations')
