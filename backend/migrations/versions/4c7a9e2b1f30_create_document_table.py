"""create document table for the path-addressed session store

Revision ID: 4c7a9e2b1f30
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7a9e2b1f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)

    # db-reset / create_all may already have built it
    if 'document' in set(insp.get_table_names()):
        return

    op.create_table(
        'document',
        sa.Column('collection', sa.String(length=64), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('collection', 'key'),
    )
    op.create_index('ix_document_status', 'document', ['status'], unique=False)


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'document' not in set(insp.get_table_names()):
        return
    op.drop_index('ix_document_status', table_name='document')
    op.drop_table('document')
