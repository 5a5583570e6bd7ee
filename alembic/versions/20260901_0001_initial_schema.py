"""Initial schema - devices and readings tables

Revision ID: 0001
Revises:
Create Date: 2026-09-01

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
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('credential', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_devices_credential', 'devices', ['credential'], unique=True)

    # Create readings table
    op.create_table(
        'readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.Integer(), nullable=False),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('secondary_temperature', sa.Float(), nullable=True),
        sa.Column('humidity', sa.Float(), nullable=True),
        sa.Column('weight', sa.Float(), nullable=True),
        sa.Column('battery_voltage', sa.Float(), nullable=True),
        sa.Column('battery_percent', sa.Float(), nullable=True),
        sa.Column('relay_connected', sa.Boolean(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        # No cascade: devices are soft-deleted and history must survive
        sa.ForeignKeyConstraint(['device_id'], ['devices.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_readings_device_id', 'readings', ['device_id'], unique=False)
    op.create_index('ix_readings_recorded_at', 'readings', ['recorded_at'], unique=False)
    op.create_index('ix_readings_device_time', 'readings', ['device_id', 'recorded_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_readings_device_time', table_name='readings')
    op.drop_index('ix_readings_recorded_at', table_name='readings')
    op.drop_index('ix_readings_device_id', table_name='readings')
    op.drop_table('readings')
    op.drop_index('ix_devices_credential', table_name='devices')
    op.drop_table('devices')
