"""create lifecycle tables

Revision ID: 0001_lifecycle
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_lifecycle'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create credential, schedule, orphan, rightsizing and action log tables."""

    op.create_table(
        'cloud_accounts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='aws'),
        sa.Column('account_name', sa.String(length=255), nullable=False),
        sa.Column('account_identifier', sa.String(length=255), nullable=True),
        sa.Column('credentials_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('regions', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cloud_accounts_id'), 'cloud_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_cloud_accounts_owner_id'), 'cloud_accounts', ['owner_id'], unique=False)

    op.create_table(
        'scheduled_actions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('cloud_account_id', sa.UUID(), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('resource_kind', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('action_kind', sa.String(length=30), nullable=False),
        sa.Column('cron_expression', sa.String(length=100), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('action_params', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_run_status', sa.String(length=20), nullable=True),
        sa.Column('last_run_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cloud_account_id'], ['cloud_accounts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scheduled_actions_id'), 'scheduled_actions', ['id'], unique=False)
    op.create_index(op.f('ix_scheduled_actions_owner_id'), 'scheduled_actions', ['owner_id'], unique=False)
    op.create_index(op.f('ix_scheduled_actions_resource_id'), 'scheduled_actions', ['resource_id'], unique=False)
    op.create_index(op.f('ix_scheduled_actions_action_kind'), 'scheduled_actions', ['action_kind'], unique=False)
    op.create_index(op.f('ix_scheduled_actions_is_active'), 'scheduled_actions', ['is_active'], unique=False)

    op.create_table(
        'orphaned_resources',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('cloud_account_id', sa.UUID(), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_name', sa.String(length=255), nullable=True),
        sa.Column('service_name', sa.String(length=50), nullable=False),
        sa.Column('region', sa.String(length=50), nullable=False),
        sa.Column('orphan_type', sa.String(length=30), nullable=False),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_monthly_cost', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('risk_level', sa.String(length=10), nullable=False, server_default='medium'),
        sa.Column('detection_metadata', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('cleanup_status', sa.String(length=20), nullable=False, server_default='detected'),
        sa.Column('detected_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('cleaned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cloud_account_id'], ['cloud_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_orphaned_resources_id'), 'orphaned_resources', ['id'], unique=False)
    op.create_index(op.f('ix_orphaned_resources_owner_id'), 'orphaned_resources', ['owner_id'], unique=False)
    op.create_index(op.f('ix_orphaned_resources_cloud_account_id'), 'orphaned_resources', ['cloud_account_id'], unique=False)
    op.create_index(op.f('ix_orphaned_resources_resource_id'), 'orphaned_resources', ['resource_id'], unique=False)
    op.create_index(op.f('ix_orphaned_resources_resource_type'), 'orphaned_resources', ['resource_type'], unique=False)
    op.create_index(op.f('ix_orphaned_resources_cleanup_status'), 'orphaned_resources', ['cleanup_status'], unique=False)
    # One open row per owner, account and resource; cleaned rows are kept as history
    op.create_index(
        'uq_orphaned_resources_owner_account_resource_open',
        'orphaned_resources',
        ['owner_id', 'cloud_account_id', 'resource_id'],
        unique=True,
        postgresql_where=sa.text("cleanup_status != 'cleaned'"),
    )

    op.create_table(
        'rightsizing_recommendations',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('cloud_account_id', sa.UUID(), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('region', sa.String(length=50), nullable=True),
        sa.Column('current_type', sa.String(length=50), nullable=False),
        sa.Column('recommended_type', sa.String(length=50), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=False),
        sa.Column('estimated_monthly_savings', sa.Float(), nullable=False, server_default='0.0'),
        sa.Column('performance_impact', sa.String(length=10), nullable=False, server_default='low'),
        sa.Column('analysis_data', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['cloud_account_id'], ['cloud_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rightsizing_recommendations_id'), 'rightsizing_recommendations', ['id'], unique=False)
    op.create_index(op.f('ix_rightsizing_recommendations_owner_id'), 'rightsizing_recommendations', ['owner_id'], unique=False)
    op.create_index(op.f('ix_rightsizing_recommendations_resource_id'), 'rightsizing_recommendations', ['resource_id'], unique=False)
    op.create_index(op.f('ix_rightsizing_recommendations_status'), 'rightsizing_recommendations', ['status'], unique=False)

    op.create_table(
        'lifecycle_action_logs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.UUID(), nullable=False),
        sa.Column('schedule_id', sa.UUID(), nullable=True),
        sa.Column('resource_id', sa.String(length=255), nullable=False),
        sa.Column('action_kind', sa.String(length=30), nullable=False),
        sa.Column('trigger', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('details', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_lifecycle_action_logs_id'), 'lifecycle_action_logs', ['id'], unique=False)
    op.create_index(op.f('ix_lifecycle_action_logs_owner_id'), 'lifecycle_action_logs', ['owner_id'], unique=False)
    op.create_index(op.f('ix_lifecycle_action_logs_schedule_id'), 'lifecycle_action_logs', ['schedule_id'], unique=False)
    op.create_index(op.f('ix_lifecycle_action_logs_resource_id'), 'lifecycle_action_logs', ['resource_id'], unique=False)


def downgrade() -> None:
    """Drop lifecycle tables."""
    op.drop_table('lifecycle_action_logs')
    op.drop_table('rightsizing_recommendations')
    op.drop_index('uq_orphaned_resources_owner_account_resource_open', table_name='orphaned_resources')
    op.drop_table('orphaned_resources')
    op.drop_table('scheduled_actions')
    op.drop_table('cloud_accounts')
