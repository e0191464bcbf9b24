"""Create agent_memory and interaction tables

Revision ID: 3f9c2a7d1e04
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1e04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create agent_memory and interaction with their lookup indexes."""
    op.create_table(
        'agent_memory',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('agent_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('memory_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('emotional_context', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='neutral'),
        sa.Column('importance_score', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_agent_memory_agent_id'), 'agent_memory', ['agent_id'], unique=False)
    op.create_index(op.f('ix_agent_memory_user_id'), 'agent_memory', ['user_id'], unique=False)
    op.create_index(op.f('ix_agent_memory_created_at'), 'agent_memory', ['created_at'], unique=False)

    op.create_table(
        'interaction',
        sa.Column('id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('agent_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('user_message', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('agent_response', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default=''),
        sa.Column('emotional_context', sqlmodel.sql.sqltypes.AutoString(), nullable=False, server_default='neutral'),
        sa.Column('rating', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_interaction_agent_id'), 'interaction', ['agent_id'], unique=False)
    op.create_index(op.f('ix_interaction_user_id'), 'interaction', ['user_id'], unique=False)


def downgrade() -> None:
    """Drop interaction and agent_memory."""
    op.drop_index(op.f('ix_interaction_user_id'), table_name='interaction')
    op.drop_index(op.f('ix_interaction_agent_id'), table_name='interaction')
    op.drop_table('interaction')
    op.drop_index(op.f('ix_agent_memory_created_at'), table_name='agent_memory')
    op.drop_index(op.f('ix_agent_memory_user_id'), table_name='agent_memory')
    op.drop_index(op.f('ix_agent_memory_agent_id'), table_name='agent_memory')
    op.drop_table('agent_memory')
