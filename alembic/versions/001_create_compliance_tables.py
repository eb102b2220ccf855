"""create compliance checklist, reminder and reminder event tables

Revision ID: 001_create_compliance_tables
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from typing import Sequence, Union


# revision identifiers, used by Alembic.
revision: str = '001_create_compliance_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'compliance_checklists',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=True, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(75), nullable=True),
        sa.Column('status', sa.String(25), nullable=False, server_default='active'),
        sa.Column('frequency_type', sa.String(25), nullable=False),
        sa.Column('frequency_interval', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('custom_frequency_unit', sa.String(25), nullable=True),
        sa.Column('custom_frequency_value', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('due_time', sa.Time(), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('next_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_user_id', sa.Integer(), nullable=True),
        sa.Column('assigned_role', sa.String(75), nullable=True),
        sa.Column('escalate_to_user_id', sa.Integer(), nullable=True),
        sa.Column('escalation_offset_hours', sa.Integer(), nullable=True),
        sa.Column('advance_reminder_offsets', JSONType, nullable=False),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('requires_acknowledgement', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('allow_partial_completion', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_compliance_checklists_id', 'compliance_checklists', ['id'], unique=False)
    op.create_index('ix_compliance_checklists_branch_id', 'compliance_checklists', ['branch_id'], unique=False)
    op.create_index('ix_compliance_checklists_next_due_at', 'compliance_checklists', ['next_due_at'], unique=False)
    op.create_index('ix_compliance_checklists_branch_status', 'compliance_checklists', ['branch_id', 'status'], unique=False)
    op.create_index('ix_compliance_checklists_frequency', 'compliance_checklists', ['frequency_type'], unique=False)

    op.create_table(
        'compliance_reminders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('compliance_checklist_id', sa.Integer(),
                  sa.ForeignKey('compliance_checklists.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_user_id', sa.Integer(), nullable=True),
        sa.Column('assigned_role', sa.String(75), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reminder_type', sa.String(50), nullable=False, server_default='manual'),
        sa.Column('priority', sa.String(25), nullable=False, server_default='medium'),
        sa.Column('delivery_channel', sa.String(25), nullable=False, server_default='email'),
        sa.Column('delivery_channels', JSONType, nullable=False),
        sa.Column('remind_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalate_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(25), nullable=False, server_default='scheduled'),
        sa.Column('auto_escalate', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('escalate_to_user_id', sa.Integer(), nullable=True),
        sa.Column('escalate_to_role', sa.String(75), nullable=True),
        sa.Column('last_triggered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_escalated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_compliance_reminders_id', 'compliance_reminders', ['id'], unique=False)
    op.create_index('ix_compliance_reminders_branch_id', 'compliance_reminders', ['branch_id'], unique=False)
    op.create_index('ix_compliance_reminders_status_remind_at', 'compliance_reminders', ['status', 'remind_at'], unique=False)
    op.create_index('ix_compliance_reminders_assigned_status', 'compliance_reminders', ['assigned_user_id', 'status'], unique=False)
    op.create_index('ix_compliance_reminders_type', 'compliance_reminders', ['reminder_type'], unique=False)

    op.create_table(
        'compliance_reminder_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('compliance_reminder_id', sa.Integer(),
                  sa.ForeignKey('compliance_reminders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('channel', sa.String(25), nullable=True),
        sa.Column('status', sa.String(25), nullable=False, server_default='queued'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_compliance_reminder_events_id', 'compliance_reminder_events', ['id'], unique=False)
    op.create_index('ix_compliance_reminder_events_compliance_reminder_id', 'compliance_reminder_events', ['compliance_reminder_id'], unique=False)
    op.create_index('ix_compliance_reminder_events_processed_at', 'compliance_reminder_events', ['processed_at'], unique=False)
    op.create_index('ix_compliance_reminder_events_type_status', 'compliance_reminder_events', ['event_type', 'status'], unique=False)


def downgrade() -> None:
    op.drop_table('compliance_reminder_events')
    op.drop_table('compliance_reminders')
    op.drop_table('compliance_checklists')
