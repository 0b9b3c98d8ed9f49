"""Create user_storage key/value table

Revision ID: 001_user_storage
Revises:
Create Date: 2025-06-02

This migration adds:
- user_storage table holding one JSON document per (owner, storage_key)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_user_storage'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user_storage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner', sa.String(255), nullable=False),
        sa.Column('storage_key', sa.String(255), nullable=False),
        sa.Column('storage_value', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('owner', 'storage_key', name='uq_user_storage_owner_key')
    )
    op.create_index('ix_user_storage_owner', 'user_storage', ['owner'])


def downgrade():
    op.drop_index('ix_user_storage_owner', table_name='user_storage')
    op.drop_table('user_storage')
