"""initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 01:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('display_name', sa.String(length=128), nullable=False),
        sa.Column('status', sa.String(length=16), server_default='active', nullable=False),
        sa.Column('is_admin', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    # --- friendships ---
    op.create_table(
        'friendships',
        sa.Column('id', sa.String(length=160), nullable=False),
        sa.Column('user_a_id', sa.String(length=64), nullable=False),
        sa.Column('user_b_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('initiator_id', sa.String(length=64), nullable=False),
        sa.Column('blocked_by', sa.String(length=64), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('user_a_id < user_b_id', name='chk_friendships_sorted_pair'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_friendships_user_a', 'friendships', ['user_a_id', 'status'], unique=False)
    op.create_index('idx_friendships_user_b', 'friendships', ['user_b_id', 'status'], unique=False)

    # --- user_friendships ---
    op.create_table(
        'user_friendships',
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('other_user_id', sa.String(length=64), nullable=False),
        sa.Column('friendship_id', sa.String(length=160), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('owner_id', 'other_user_id')
    )
    op.create_index('idx_user_friendships_owner_status', 'user_friendships', ['owner_id', 'status'], unique=False)
    op.create_index('idx_user_friendships_other', 'user_friendships', ['other_user_id'], unique=False)

    # --- friendship_events ---
    op.create_table(
        'friendship_events',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('friendship_id', sa.String(length=160), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('initiator_id', sa.String(length=64), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_friendship_events_pair', 'friendship_events', ['friendship_id', 'timestamp'], unique=False)

    # --- chats ---
    op.create_table(
        'chats',
        sa.Column('id', sa.String(length=160), nullable=False),
        sa.Column('participants', sa.JSON(), nullable=False),
        sa.Column('last_message_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('expiration_days', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # --- chat_messages ---
    op.create_table(
        'chat_messages',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('chat_id', sa.String(length=160), nullable=False),
        sa.Column('sender_id', sa.String(length=64), nullable=False),
        sa.Column('media_url', sa.String(length=1024), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_archived', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('archived_reason', sa.String(length=32), nullable=True),
        sa.Column('original_chat_id', sa.String(length=160), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_chat_messages_chat_sender', 'chat_messages', ['chat_id', 'sender_id', 'is_archived'], unique=False)
    op.create_index('idx_chat_messages_chat_created', 'chat_messages', ['chat_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('chat_messages')
    op.drop_table('chats')
    op.drop_table('friendship_events')
    op.drop_table('user_friendships')
    op.drop_table('friendships')
    op.drop_table('users')
