"""Initial investigation tables

Revision ID: 5a1c9e2f7b30
Revises:
Create Date: 2026-10-19 09:12:04.481226

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5a1c9e2f7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Agents are registered elsewhere; the table is mirrored here for reads
    op.create_table(
        'agents',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('owner', sa.String(length=64), nullable=True),
        sa.Column('websocket_connected', sa.Boolean(), nullable=False),
        sa.Column('websocket_connected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_agents_owner'), 'agents', ['owner'], unique=False)

    op.create_table(
        'agent_metrics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_id', sa.String(length=64), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cpu_percent', sa.Float(), nullable=True),
        sa.Column('memory_mb', sa.Float(), nullable=True),
        sa.Column('kernel_version', sa.String(length=128), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('os_info', sa.JSON(), nullable=True),
        sa.Column('load_averages', sa.JSON(), nullable=True),
        sa.Column('network_stats', sa.JSON(), nullable=True),
        sa.Column('filesystem_info', sa.JSON(), nullable=True),
        sa.Column('block_devices', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_agent_metrics_agent_recorded', 'agent_metrics', ['agent_id', 'recorded_at'], unique=False)

    op.create_table(
        'investigations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('investigation_id', sa.String(length=64), nullable=False),
        sa.Column('agent_id', sa.String(length=64), nullable=False),
        sa.Column('issue', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('episode_id', sa.String(length=64), nullable=True),
        sa.Column('tensorzero_response', sa.Text(), nullable=True),
        sa.Column('initiated_by', sa.String(length=128), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('initiated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('investigation_id')
    )
    op.create_index(op.f('ix_investigations_episode_id'), 'investigations', ['episode_id'], unique=False)
    op.create_index('ix_investigations_agent_created', 'investigations', ['agent_id', 'created_at'], unique=False)

    op.create_table(
        'pending_investigations',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('investigation_id', sa.String(length=64), nullable=False),
        sa.Column('agent_id', sa.String(length=64), nullable=False),
        sa.Column('diagnostic_payload', sa.JSON(), nullable=False),
        sa.Column('episode_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('command_results', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['investigation_id'], ['investigations.investigation_id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_pending_investigations_investigation_id'), 'pending_investigations', ['investigation_id'], unique=False)
    op.create_index(op.f('ix_pending_investigations_agent_id'), 'pending_investigations', ['agent_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_pending_investigations_agent_id'), table_name='pending_investigations')
    op.drop_index(op.f('ix_pending_investigations_investigation_id'), table_name='pending_investigations')
    op.drop_table('pending_investigations')
    op.drop_index('ix_investigations_agent_created', table_name='investigations')
    op.drop_index(op.f('ix_investigations_episode_id'), table_name='investigations')
    op.drop_table('investigations')
    op.drop_index('ix_agent_metrics_agent_recorded', table_name='agent_metrics')
    op.drop_table('agent_metrics')
    op.drop_index(op.f('ix_agents_owner'), table_name='agents')
    op.drop_table('agents')
