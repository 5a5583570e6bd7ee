"""Add threshold_policy singleton table (LVD hysteresis settings)

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002'
down_revision: Union[str, None] = '0001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'threshold_policy',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('disconnect_voltage', sa.Float(), nullable=False),
        sa.Column('reconnect_voltage', sa.Float(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('disconnect_voltage < reconnect_voltage', name='ck_policy_hysteresis'),
        sa.PrimaryKeyConstraint('id')
    )

    # Default policy: disconnect 3.30V, reconnect 3.60V, enabled
    op.execute(
        "INSERT INTO threshold_policy (id, disconnect_voltage, reconnect_voltage, enabled, version) "
        "VALUES (1, 3.30, 3.60, true, 1)"
    )


def downgrade() -> None:
    op.drop_table('threshold_policy')
