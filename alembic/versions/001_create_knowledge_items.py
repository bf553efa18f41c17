"""Create knowledge_items table

Revision ID: 001
Revises:
Create Date: 2026-10-19

Stores one row per ingested file: blob locations, compression metadata,
extracted text and enrichment outputs.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def table_exists(table_name):
    """Check if table exists in database"""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def upgrade() -> None:
    if table_exists('knowledge_items'):
        return

    op.create_table(
        'knowledge_items',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('owner_id', sa.String(255), nullable=False),
        sa.Column('category_id', sa.String(255), nullable=False),
        sa.Column('custom_category_type', sa.String(255), nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('compressed_size', sa.BigInteger(), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('original_file_path', sa.Text(), nullable=True),
        sa.Column('compression_type', sa.String(64), nullable=False),
        sa.Column('compression_ratio', sa.Float(), nullable=False),
        sa.Column('quality', sa.Integer(), nullable=True),
        sa.Column('preserved_for_ai', sa.Boolean(), server_default=sa.false()),
        sa.Column('extracted_text', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('key_points', sa.JSON(), nullable=True),
        sa.Column('ai_analysis', sa.JSON(), nullable=True),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('processing_status', sa.String(20), server_default='pending'),
        sa.Column('enrichment_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "processing_status IN ('pending', 'processing', 'completed', 'failed')",
            name='check_processing_status',
        ),
        sa.CheckConstraint('file_size > 0', name='check_file_size_positive'),
    )

    op.create_index('ix_knowledge_items_owner_id', 'knowledge_items', ['owner_id'])
    op.create_index('ix_knowledge_items_category_id', 'knowledge_items', ['category_id'])
    op.create_index('ix_knowledge_items_processing_status', 'knowledge_items', ['processing_status'])


def downgrade() -> None:
    op.drop_index('ix_knowledge_items_processing_status', table_name='knowledge_items')
    op.drop_index('ix_knowledge_items_category_id', table_name='knowledge_items')
    op.drop_index('ix_knowledge_items_owner_id', table_name='knowledge_items')
    op.drop_table('knowledge_items')
