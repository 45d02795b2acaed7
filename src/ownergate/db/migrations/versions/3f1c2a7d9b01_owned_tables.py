"""owned tables: user_profiles, user_stats, user_preferences

Learn: Every user-owned table carries a text user_id holding the owner's
canonical identity. user_profiles.user_id is UNIQUE, so when two
bootstrap creates race for the same owner the first commit wins and the
second fails on the constraint.

Revision ID: 3f1c2a7d9b01
Revises:
Create Date: 2026-10-18 09:12:40.118204
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a7d9b01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'user_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(length=100), nullable=False, unique=True),
        sa.Column('display_name', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('wallet_address', sa.String(length=44), nullable=True),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'user_stats',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'user_id', sa.String(length=100),
            sa.ForeignKey('user_profiles.user_id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('streak_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        'user_preferences',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'user_id', sa.String(length=100),
            sa.ForeignKey('user_profiles.user_id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('theme', sa.String(length=10), nullable=False, server_default='system'),
        sa.Column('language', sa.String(length=10), nullable=False, server_default='en'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('user_preferences')
    op.drop_table('user_stats')
    op.drop_table('user_profiles')
