"""initial schema: activity, recommendation, dead letter

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'activity',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('activity_type', sa.Text(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('calories_burned', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('additional_metrics', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_activity_user_id', 'activity', ['user_id'])
    op.create_index('ix_activity_user_created', 'activity', ['user_id', 'created_at'])

    # No FK to activity: the recommendation worker may run against its own database
    op.create_table(
        'recommendation',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('activity_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('activity_type', sa.Text(), nullable=False),
        sa.Column('recommendation_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('improvements', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('suggestions', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('safety', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.UniqueConstraint('activity_id', name='uq_recommendation_activity_id'),
    )
    op.create_index('ix_recommendation_user_id', 'recommendation', ['user_id'])

    op.create_table(
        'recommendation_dead_letter',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('topic', sa.Text(), nullable=False),
        sa.Column('activity_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=True),
        sa.Column('error_type', sa.Text(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_recommendation_dead_letter_activity_id', 'recommendation_dead_letter', ['activity_id'])


def downgrade() -> None:
    op.drop_index('ix_recommendation_dead_letter_activity_id', table_name='recommendation_dead_letter')
    op.drop_table('recommendation_dead_letter')
    op.drop_index('ix_recommendation_user_id', table_name='recommendation')
    op.drop_table('recommendation')
    op.drop_index('ix_activity_user_created', table_name='activity')
    op.drop_index('ix_activity_user_id', table_name='activity')
    op.drop_table('activity')
