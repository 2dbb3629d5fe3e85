"""Create n8n_instances table

Revision ID: instances_001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'instances_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'n8n_instances',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('api_key_encrypted', sa.Text(), nullable=False),
        sa.Column('environment', sa.String(), nullable=False, server_default='production'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.String(), nullable=True),
        sa.Column('last_scanned_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_n8n_instances_id'), 'n8n_instances', ['id'], unique=False)
    op.create_index(op.f('ix_n8n_instances_user_id'), 'n8n_instances', ['user_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_n8n_instances_user_id'), table_name='n8n_instances')
    op.drop_index(op.f('ix_n8n_instances_id'), table_name='n8n_instances')
    op.drop_table('n8n_instances')
