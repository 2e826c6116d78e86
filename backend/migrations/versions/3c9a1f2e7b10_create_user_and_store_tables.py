"""create user, store_node and store_change tables

Revision ID: 3c9a1f2e7b10
Revises:
Create Date: 2026-10-17 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9a1f2e7b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.Column('pub', sa.String(length=128), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)
        op.create_index('ix_user_pub', 'user', ['pub'], unique=True)

    if 'store_node' not in existing_tables:
        op.create_table(
            'store_node',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('path', sa.String(length=255), nullable=False),
            sa.Column('parent', sa.String(length=255), nullable=False),
            sa.Column('field', sa.String(length=128), nullable=False),
            sa.Column('value', sa.Text(), nullable=True),
            sa.Column('state', sa.BigInteger(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('path', 'field', name='uq_store_node_path_field'),
        )
        op.create_index('ix_store_node_path', 'store_node', ['path'], unique=False)
        op.create_index('ix_store_node_parent', 'store_node', ['parent'], unique=False)

    if 'store_change' not in existing_tables:
        op.create_table(
            'store_change',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('path', sa.String(length=255), nullable=False),
            sa.Column('origin', sa.String(length=64), nullable=True),
            sa.Column('created_at', sa.Float(), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'store_change' in existing_tables:
        op.drop_table('store_change')
    if 'store_node' in existing_tables:
        op.drop_index('ix_store_node_parent', table_name='store_node')
        op.drop_index('ix_store_node_path', table_name='store_node')
        op.drop_table('store_node')
    if 'user' in existing_tables:
        op.drop_index('ix_user_pub', table_name='user')
        op.drop_index('ix_user_username', table_name='user')
        op.drop_table('user')
