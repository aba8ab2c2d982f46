"""create_kv_entries

Revision ID: 20261019_1200_kv_entries
Revises: None
Create Date: 2026-10-19 12:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_1200_kv_entries'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create the key/value table holding orders, claims, idempotency records
    and list indexes.
    """
    op.create_table(
        'kv_entries',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )
    op.create_index('ix_kv_entries_expires_at', 'kv_entries', ['expires_at'])


def downgrade() -> None:
    """
    Drop the key/value table.
    """
    op.drop_index('ix_kv_entries_expires_at', table_name='kv_entries')
    op.drop_table('kv_entries')
