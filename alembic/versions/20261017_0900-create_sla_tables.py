"""Create SLA engine tables

Revision ID: create_sla_tables
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'create_sla_tables'
down_revision = None
branch_labels = None
depends_on = None

PENDING_CONDITION = (
    "cancelled_at IS NULL AND "
    "(response_status = 'pending' OR resolution_status = 'pending')"
)


def upgrade() -> None:
    # Create sla_policies table
    op.create_table(
        'sla_policies',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),

        # Applicability
        sa.Column('applies_to', sa.String(), nullable=False),
        sa.Column('conditions', sa.JSON(), nullable=False),

        # Budgets
        sa.Column('response_time_minutes', sa.Integer(), nullable=True),
        sa.Column('resolution_time_minutes', sa.Integer(), nullable=True),
        sa.Column('warning_threshold', sa.Integer(), nullable=False, server_default='80'),

        # Calendar and escalation ladder
        sa.Column('business_hours_only', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('business_hours', sa.JSON(), nullable=False),
        sa.Column('escalation_rules', sa.JSON(), nullable=False),

        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sla_policies_workspace_id', 'sla_policies', ['workspace_id'])
    op.create_index('ix_sla_policies_workspace_active', 'sla_policies', ['workspace_id', 'is_active'])

    # Create sla_instances table
    op.create_table(
        'sla_instances',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('policy_id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=False),
        sa.Column('target_id', sa.String(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),

        # Response track
        sa.Column('response_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('response_warning_at', sa.DateTime(timezone=True), nullable=True),

        # Resolution track
        sa.Column('resolution_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('resolution_warning_at', sa.DateTime(timezone=True), nullable=True),

        # Pause state
        sa.Column('is_paused', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accumulated_paused_minutes', sa.Float(), nullable=False, server_default='0'),

        # Escalation
        sa.Column('current_escalation_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_escalation_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),

        # Bookkeeping
        sa.Column('event_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['policy_id'], ['sla_policies.id'], ondelete='CASCADE')
    )
    op.create_index('ix_sla_instances_policy_id', 'sla_instances', ['policy_id'])
    op.create_index('ix_sla_instances_workspace_id', 'sla_instances', ['workspace_id'])
    op.create_index('ix_sla_instances_target', 'sla_instances', ['target_type', 'target_id'])
    op.create_index(
        'ix_sla_instances_pending', 'sla_instances', ['workspace_id'],
        postgresql_where=sa.text(PENDING_CONDITION),
        sqlite_where=sa.text(PENDING_CONDITION)
    )
    op.create_index(
        'uq_sla_instances_active_target', 'sla_instances', ['policy_id', 'target_type', 'target_id'],
        unique=True,
        postgresql_where=sa.text(PENDING_CONDITION),
        sqlite_where=sa.text(PENDING_CONDITION)
    )

    # Create sla_events table
    op.create_table(
        'sla_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('instance_id', sa.String(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['instance_id'], ['sla_instances.id'], ondelete='CASCADE')
    )
    op.create_index('ix_sla_events_instance_id', 'sla_events', ['instance_id'])
    op.create_index('ix_sla_events_instance_sequence', 'sla_events', ['instance_id', 'sequence'], unique=True)
    op.create_index('ix_sla_events_instance_type', 'sla_events', ['instance_id', 'event_type'])


def downgrade() -> None:
    # Drop sla_events table
    op.drop_index('ix_sla_events_instance_type', table_name='sla_events')
    op.drop_index('ix_sla_events_instance_sequence', table_name='sla_events')
    op.drop_index('ix_sla_events_instance_id', table_name='sla_events')
    op.drop_table('sla_events')

    # Drop sla_instances table
    op.drop_index('uq_sla_instances_active_target', table_name='sla_instances')
    op.drop_index('ix_sla_instances_pending', table_name='sla_instances')
    op.drop_index('ix_sla_instances_target', table_name='sla_instances')
    op.drop_index('ix_sla_instances_workspace_id', table_name='sla_instances')
    op.drop_index('ix_sla_instances_policy_id', table_name='sla_instances')
    op.drop_table('sla_instances')

    # Drop sla_policies table
    op.drop_index('ix_sla_policies_workspace_active', table_name='sla_policies')
    op.drop_index('ix_sla_policies_workspace_id', table_name='sla_policies')
    op.drop_table('sla_policies')
