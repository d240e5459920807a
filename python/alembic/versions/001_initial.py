"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

Baseline for the HalamangGaling knowledge registry. Mirrors
database/models.py; for databases created with ``create_tables()`` use
`alembic stamp 001_initial` to mark it as applied.

Enum columns are stored as plain strings (the models use non-native enums),
so the same migration runs on PostgreSQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum_column(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.String(40), **kwargs)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('username', sa.String(50), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(255), nullable=False),
        _enum_column('role', nullable=False, server_default='user'),
        sa.Column('first_name', sa.String(100)),
        sa.Column('last_name', sa.String(100)),
        sa.Column('institution', sa.String(255)),
        sa.Column('position', sa.String(255)),
        sa.Column('can_review', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('can_edit', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('can_approve', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('can_access_restricted_knowledge', sa.Boolean, nullable=False,
                  server_default=sa.false()),
        sa.Column('can_manage_ipr', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('affiliation_community', sa.String(300)),
        sa.Column('affiliation_group', sa.String(200)),
        sa.Column('affiliation_role', sa.String(200)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('last_login', sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    # Create indigenous_knowledge table
    op.create_table(
        'indigenous_knowledge',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('community_name', sa.String(300), nullable=False),
        sa.Column('indigenous_group', sa.String(200), nullable=False),
        sa.Column('location', sa.JSON),
        _enum_column('knowledge_type', nullable=False),
        sa.Column('plant_ids', sa.JSON, nullable=False),
        sa.Column('related_study_ids', sa.JSON, nullable=False),
        sa.Column('traditional_knowledge', sa.JSON, nullable=False),
        sa.Column('consent_obtained', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('consent_id', sa.String(64), unique=True),
        sa.Column('consent_date', sa.DateTime(timezone=True)),
        sa.Column('consent_expiry_date', sa.DateTime(timezone=True)),
        sa.Column('consent_scope_of_use', sa.JSON, nullable=False),
        sa.Column('consent_document', sa.String(1000)),
        sa.Column('consent_witnesses', sa.JSON, nullable=False),
        sa.Column('consent_restrictions', sa.Text),
        sa.Column('consent_revocable', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('consent_revoked_at', sa.DateTime(timezone=True)),
        sa.Column('consent_revoked_reason', sa.Text),
        _enum_column('ipr_status', nullable=False, server_default='pending_assessment'),
        sa.Column('ipr_registration_number', sa.String(100)),
        sa.Column('ipr_registered_with', sa.String(100)),
        sa.Column('ipr_registration_date', sa.DateTime(timezone=True)),
        sa.Column('ipr_protection_level', sa.String(20)),
        sa.Column('ipr_right_holders', sa.JSON, nullable=False),
        sa.Column('benefit_sharing', sa.JSON),
        sa.Column('recorded_by', sa.JSON, nullable=False),
        sa.Column('recording_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('methodology', sa.Text),
        sa.Column('knowledge_holders', sa.JSON, nullable=False),
        _enum_column('verification_status', nullable=False, server_default='unverified'),
        sa.Column('verification_details', sa.JSON),
        _enum_column('access_level', nullable=False, server_default='restricted'),
        sa.Column('access_restrictions', sa.Text),
        _enum_column('sensitivity_level', nullable=False, server_default='Medium'),
        sa.Column('sensitivity_reason', sa.Text),
        sa.Column('cultural_significance', sa.Text),
        sa.Column('media', sa.JSON, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('archived_at', sa.DateTime(timezone=True)),
        sa.Column('archive_reason', sa.Text),
        sa.Column('ipra_compliant', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('nagoya_compliant', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('ncip_approved', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('last_review_date', sa.DateTime(timezone=True)),
        sa.Column('next_review_date', sa.DateTime(timezone=True)),
        sa.Column('created_by_id', sa.Uuid,
                  sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_timestamps(),
        sa.CheckConstraint(
            "consent_obtained OR access_level = 'private'",
            name='ck_knowledge_consent_before_access'
        ),
        sa.CheckConstraint(
            "consent_revoked_at IS NULL OR "
            "(NOT consent_obtained AND access_level = 'private')",
            name='ck_knowledge_revocation_is_private'
        ),
    )

    # Create knowledge_access_log table
    op.create_table(
        'knowledge_access_log',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('record_id', sa.Uuid, sa.ForeignKey('indigenous_knowledge.id'),
                  nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id')),
        sa.Column('accessed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('purpose', sa.String(500), nullable=False, server_default='View'),
        sa.Column('approved', sa.Boolean, nullable=False, server_default=sa.true()),
    )

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        _enum_column('action', nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(100)),
        sa.Column('actor_id', sa.String(100)),
        sa.Column('actor_name', sa.String(200)),
        sa.Column('actor_role', sa.String(50)),
        sa.Column('actor_ip', sa.String(50)),
        sa.Column('details', sa.JSON),
        sa.Column('old_value', sa.JSON),
        sa.Column('new_value', sa.JSON),
        sa.Column('success', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('error_message', sa.Text),
    )

    # Create indexes
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_affiliation_community', 'users', ['affiliation_community'])

    op.create_index('ix_indigenous_knowledge_community_name', 'indigenous_knowledge', ['community_name'])
    op.create_index('ix_indigenous_knowledge_indigenous_group', 'indigenous_knowledge', ['indigenous_group'])
    op.create_index('ix_indigenous_knowledge_knowledge_type', 'indigenous_knowledge', ['knowledge_type'])
    op.create_index('ix_knowledge_active_level', 'indigenous_knowledge', ['is_active', 'access_level'])
    op.create_index('ix_knowledge_ipr_review', 'indigenous_knowledge',
                    ['ipr_status', 'consent_obtained', 'is_active'])

    op.create_index('ix_access_log_record_date', 'knowledge_access_log', ['record_id', 'accessed_at'])
    op.create_index('ix_knowledge_access_log_user_id', 'knowledge_access_log', ['user_id'])

    op.create_index('ix_audit_timestamp_action', 'audit_logs', ['timestamp', 'action'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])
    op.create_index('ix_audit_actor', 'audit_logs', ['actor_id', 'timestamp'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_table('audit_logs')
    op.drop_table('knowledge_access_log')
    op.drop_table('indigenous_knowledge')
    op.drop_table('users')
