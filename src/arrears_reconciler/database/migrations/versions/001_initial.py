"""Initial migration - create tenancy, rent schedule and arrears tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='tenant'),
        sa.Column('api_token_hash', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_profiles_api_token_hash', 'profiles', ['api_token_hash'], unique=True)

    op.create_table(
        'properties',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(36), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('address_line_1', sa.String(255), nullable=True),
        sa.Column('suburb', sa.String(100), nullable=True),
        sa.Column('state', sa.String(10), nullable=True),
        sa.Column('postcode', sa.String(10), nullable=True),
    )
    op.create_index('ix_properties_owner_id', 'properties', ['owner_id'])

    op.create_table(
        'tenancies',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('property_id', sa.String(36), sa.ForeignKey('properties.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenancies_property_id', 'tenancies', ['property_id'])
    op.create_index('ix_tenancies_status', 'tenancies', ['status'])

    op.create_table(
        'tenancy_tenants',
        sa.Column('tenancy_id', sa.String(36), sa.ForeignKey('tenancies.id'), primary_key=True),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('profiles.id'), primary_key=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'rent_schedules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenancy_id', sa.String(36), sa.ForeignKey('tenancies.id'), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_rent_schedules_tenancy_unpaid', 'rent_schedules', ['tenancy_id', 'is_paid', 'due_date']
    )

    op.create_table(
        'arrears_records',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('tenancy_id', sa.String(36), sa.ForeignKey('tenancies.id'), nullable=False),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('profiles.id'), nullable=False),
        sa.Column('first_overdue_date', sa.Date(), nullable=False),
        sa.Column('total_overdue', sa.Numeric(10, 2), nullable=False),
        sa.Column('days_overdue', sa.Integer(), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='minor'),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_arrears_records_tenant_id', 'arrears_records', ['tenant_id'])
    op.create_index('ix_arrears_records_severity', 'arrears_records', ['severity', 'days_overdue'])
    # One open record per tenancy; resolved records don't count
    op.create_index(
        'uq_arrears_records_open_tenancy',
        'arrears_records',
        ['tenancy_id'],
        unique=True,
        sqlite_where=sa.text('NOT is_resolved'),
        postgresql_where=sa.text('NOT is_resolved'),
    )

    op.create_table(
        'arrears_actions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('arrears_record_id', sa.String(36), sa.ForeignKey('arrears_records.id'), nullable=False),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('performed_by', sa.String(36), sa.ForeignKey('profiles.id'), nullable=True),
        sa.Column('is_automated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_arrears_actions_record', 'arrears_actions', ['arrears_record_id', 'created_at'])

    op.create_table(
        'reconciler_leases',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('holder', sa.String(36), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('reconciler_leases')

    op.drop_index('ix_arrears_actions_record', table_name='arrears_actions')
    op.drop_table('arrears_actions')

    op.drop_index('uq_arrears_records_open_tenancy', table_name='arrears_records')
    op.drop_index('ix_arrears_records_severity', table_name='arrears_records')
    op.drop_index('ix_arrears_records_tenant_id', table_name='arrears_records')
    op.drop_table('arrears_records')

    op.drop_index('ix_rent_schedules_tenancy_unpaid', table_name='rent_schedules')
    op.drop_table('rent_schedules')

    op.drop_table('tenancy_tenants')

    op.drop_index('ix_tenancies_status', table_name='tenancies')
    op.drop_index('ix_tenancies_property_id', table_name='tenancies')
    op.drop_table('tenancies')

    op.drop_index('ix_properties_owner_id', table_name='properties')
    op.drop_table('properties')

    op.drop_index('ix_profiles_api_token_hash', table_name='profiles')
    op.drop_table('profiles')
