"""Alarm tables

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17

Alarm definitions, alarms and notifications for the parking alarm engine.
Column layout matches the schema AlarmStore creates for SQLite.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision: str = '20261017_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_ALARM_FILTER = "status IN ('TRIGGERED', 'ACKNOWLEDGED')"


def upgrade() -> None:
    """Create alarm tables."""

    # =========================================================================
    # Definitions
    # =========================================================================

    op.create_table(
        'alarm_definitions',
        sa.Column('definition_id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False, server_default='WARNING'),
        sa.Column('site_id', sa.String(100), nullable=True),
        sa.Column('conditions', sa.Text, nullable=False, server_default='{}'),
        sa.Column('cron_schedule', sa.String(100), nullable=True),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('notification_channels', sa.Text, nullable=False, server_default='["IN_APP"]'),
        sa.Column('actions', sa.Text, nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=False),
    )
    op.create_index('idx_alarm_definitions_type', 'alarm_definitions', ['type'])
    op.create_index('idx_alarm_definitions_enabled', 'alarm_definitions', ['enabled'])

    # =========================================================================
    # Alarms
    # =========================================================================

    op.create_table(
        'alarms',
        sa.Column('alarm_id', sa.String(36), primary_key=True),
        sa.Column(
            'definition_id',
            sa.String(36),
            sa.ForeignKey('alarm_definitions.definition_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('severity', sa.String(20), nullable=False),
        sa.Column('site_id', sa.String(100), nullable=True),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('triggered_at', sa.DateTime, nullable=False),
        sa.Column('acknowledged_at', sa.DateTime, nullable=True),
        sa.Column('acknowledged_by', sa.String(100), nullable=True),
        sa.Column('acknowledge_notes', sa.Text, nullable=True),
        sa.Column('resolved_at', sa.DateTime, nullable=True),
        sa.Column('resolved_by', sa.String(100), nullable=True),
        sa.Column('resolve_notes', sa.Text, nullable=True),
    )
    op.create_index('idx_alarms_triggered_at', 'alarms', ['triggered_at'])
    op.create_index('idx_alarms_status', 'alarms', ['status'])
    op.create_index('idx_alarms_site_id', 'alarms', ['site_id'])

    # At most one non-terminal alarm per definition
    op.create_index(
        'idx_alarms_one_active',
        'alarms',
        ['definition_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_ALARM_FILTER),
        postgresql_where=sa.text(ACTIVE_ALARM_FILTER),
    )

    # =========================================================================
    # Notifications
    # =========================================================================

    op.create_table(
        'alarm_notifications',
        sa.Column('notification_id', sa.String(36), primary_key=True),
        sa.Column(
            'alarm_id',
            sa.String(36),
            sa.ForeignKey('alarms.alarm_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=True),
        sa.Column('recipient', sa.String(255), nullable=True),
        sa.Column('sent_at', sa.DateTime, nullable=True),
        sa.Column('read_at', sa.DateTime, nullable=True),
        sa.Column('metadata', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
    )
    op.create_index('idx_alarm_notifications_alarm_id', 'alarm_notifications', ['alarm_id'])
    op.create_index('idx_alarm_notifications_status', 'alarm_notifications', ['status'])


def downgrade() -> None:
    """Drop alarm tables."""
    op.drop_index('idx_alarm_notifications_status', table_name='alarm_notifications')
    op.drop_index('idx_alarm_notifications_alarm_id', table_name='alarm_notifications')
    op.drop_table('alarm_notifications')

    op.drop_index('idx_alarms_one_active', table_name='alarms')
    op.drop_index('idx_alarms_site_id', table_name='alarms')
    op.drop_index('idx_alarms_status', table_name='alarms')
    op.drop_index('idx_alarms_triggered_at', table_name='alarms')
    op.drop_table('alarms')

    op.drop_index('idx_alarm_definitions_enabled', table_name='alarm_definitions')
    op.drop_index('idx_alarm_definitions_type', table_name='alarm_definitions')
    op.drop_table('alarm_definitions')
