"""Initial schema - devices, telemetry and ota_updates tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create devices table
    op.create_table(
        'devices',
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('firmware_version', sa.String(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=True),
        sa.Column('registered_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('device_id')
    )

    # Create telemetry table (no FK: history survives device deletion)
    op.create_table(
        'telemetry',
        sa.Column('telemetry_id', sa.String(), nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('telemetry_id')
    )
    op.create_index('ix_telemetry_device_id', 'telemetry', ['device_id'], unique=False)
    op.create_index('ix_telemetry_timestamp', 'telemetry', ['timestamp'], unique=False)

    # Create ota_updates table
    op.create_table(
        'ota_updates',
        sa.Column('update_id', sa.String(), nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('from_version', sa.String(), nullable=False),
        sa.Column('to_version', sa.String(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('download_url', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('update_id')
    )
    op.create_index('ix_ota_updates_device_id', 'ota_updates', ['device_id'], unique=False)
    op.create_index('ix_ota_updates_created_at', 'ota_updates', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_ota_updates_created_at', table_name='ota_updates')
    op.drop_index('ix_ota_updates_device_id', table_name='ota_updates')
    op.drop_table('ota_updates')
    op.drop_index('ix_telemetry_timestamp', table_name='telemetry')
    op.drop_index('ix_telemetry_device_id', table_name='telemetry')
    op.drop_table('telemetry')
    op.drop_table('devices')
