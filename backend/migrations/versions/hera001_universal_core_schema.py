"""Universal core schema: organizations, entities, dynamic data, metadata,
relationships and transactions

1. Creates 'organizations' as the tenant root
2. Creates the six universal tables plus transaction status events and sequences
3. Partial unique indexes keep (org, type, code) unique among ACTIVE entities
   and allow one ACTIVE metadata version per key

Revision ID: hera001_universal_core
Revises:
Create Date: 2026-02-14
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'hera001_universal_core'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated=True):
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade():
    # ==========================================================================
    # Tenancy
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_organizations_code', 'organizations', ['code'], unique=True)
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    # ==========================================================================
    # Entities and dynamic data
    # ==========================================================================
    op.create_table('core_entities',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_name', sa.String(length=255), nullable=False),
        sa.Column('entity_code', sa.String(length=128), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_core_entities_org_id', 'core_entities', ['org_id'])
    op.create_index('ix_core_entities_is_active', 'core_entities', ['is_active'])
    op.create_index('ix_core_entities_org_type_active', 'core_entities', ['org_id', 'entity_type', 'is_active'])
    op.create_index(
        'uq_core_entities_org_type_code_active',
        'core_entities',
        ['org_id', 'entity_type', 'entity_code'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table('core_dynamic_data',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_id', sa.Integer(), sa.ForeignKey('core_entities.id'), nullable=False),
        sa.Column('field_name', sa.String(length=128), nullable=False),
        sa.Column('field_value', sa.Text(), nullable=True),
        sa.Column('field_type', sa.String(length=16), nullable=False, server_default='text'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_id', 'field_name', name='uq_core_dynamic_data_entity_field'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_core_dynamic_data_entity_id', 'core_dynamic_data', ['entity_id'])
    op.create_index('ix_core_dynamic_data_field_value', 'core_dynamic_data', ['field_name', 'field_value'])

    # ==========================================================================
    # Metadata
    # ==========================================================================
    op.create_table('core_metadata',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), sa.ForeignKey('core_entities.id'), nullable=False),
        sa.Column('metadata_type', sa.String(length=64), nullable=False),
        sa.Column('metadata_category', sa.String(length=64), nullable=False),
        sa.Column('metadata_key', sa.String(length=128), nullable=False),
        sa.Column('metadata_value', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_core_metadata_org_id', 'core_metadata', ['org_id'])
    op.create_index('ix_core_metadata_entity_id', 'core_metadata', ['entity_id'])
    op.create_index('ix_core_metadata_is_active', 'core_metadata', ['is_active'])
    op.create_index('ix_core_metadata_org_entity', 'core_metadata', ['org_id', 'entity_id'])
    op.create_index(
        'uq_core_metadata_active_key',
        'core_metadata',
        ['org_id', 'entity_type', 'entity_id', 'metadata_type', 'metadata_category', 'metadata_key'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active'),
    )

    # ==========================================================================
    # Relationships
    # ==========================================================================
    op.create_table('core_relationships',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('relationship_type', sa.String(length=64), nullable=False),
        sa.Column('parent_entity_id', sa.Integer(), sa.ForeignKey('core_entities.id'), nullable=False),
        sa.Column('child_entity_id', sa.Integer(), sa.ForeignKey('core_entities.id'), nullable=False),
        sa.Column('relationship_data', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_core_relationships_org_id', 'core_relationships', ['org_id'])
    op.create_index('ix_core_relationships_is_active', 'core_relationships', ['is_active'])
    op.create_index('ix_core_relationships_parent', 'core_relationships',
                    ['org_id', 'parent_entity_id', 'relationship_type', 'is_active'])
    op.create_index('ix_core_relationships_child', 'core_relationships',
                    ['org_id', 'child_entity_id', 'relationship_type', 'is_active'])

    # ==========================================================================
    # Transactions
    # ==========================================================================
    op.create_table('universal_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('transaction_type', sa.String(length=64), nullable=False),
        sa.Column('transaction_number', sa.String(length=64), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('total_amount', sa.Numeric(24, 8), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('transaction_status', sa.String(length=32), nullable=False),
        sa.Column('transaction_data', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'transaction_type', 'transaction_number',
                            name='uq_universal_transactions_org_type_number'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_universal_transactions_org_id', 'universal_transactions', ['org_id'])
    op.create_index('ix_universal_transactions_transaction_type', 'universal_transactions', ['transaction_type'])
    op.create_index('ix_universal_transactions_transaction_status', 'universal_transactions', ['transaction_status'])
    op.create_index('ix_universal_transactions_org_status_date', 'universal_transactions',
                    ['org_id', 'transaction_status', 'transaction_date'])

    op.create_table('universal_transaction_lines',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('universal_transactions.id'), nullable=False),
        sa.Column('entity_id', sa.Integer(), sa.ForeignKey('core_entities.id'), nullable=True),
        sa.Column('line_description', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Numeric(18, 4), nullable=False),
        sa.Column('unit_price', sa.Numeric(18, 4), nullable=False),
        sa.Column('line_amount', sa.Numeric(24, 8), nullable=False),
        sa.Column('line_order', sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'line_order', name='uq_transaction_lines_order'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_universal_transaction_lines_transaction_id', 'universal_transaction_lines', ['transaction_id'])
    op.create_index('ix_universal_transaction_lines_entity_id', 'universal_transaction_lines', ['entity_id'])

    op.create_table('transaction_status_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('transaction_id', sa.Integer(), sa.ForeignKey('universal_transactions.id'), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_transaction_status_events_org_id', 'transaction_status_events', ['org_id'])
    op.create_index('ix_transaction_status_events_transaction_id', 'transaction_status_events', ['transaction_id'])

    op.create_table('transaction_sequences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('transaction_type', sa.String(length=64), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'transaction_type', 'year', name='uq_transaction_sequences_org_type_year'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_transaction_sequences_org_id', 'transaction_sequences', ['org_id'])


def downgrade():
    op.drop_table('transaction_sequences')
    op.drop_table('transaction_status_events')
    op.drop_table('universal_transaction_lines')
    op.drop_table('universal_transactions')
    op.drop_table('core_relationships')
    op.drop_table('core_metadata')
    op.drop_table('core_dynamic_data')
    op.drop_table('core_entities')
    op.drop_table('organizations')
