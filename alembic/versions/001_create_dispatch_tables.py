"""Create dispatch tables

Revision ID: 001_dispatch
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision = '001_dispatch'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create active, per-branch and archive dispatch tables"""

    # ====================
    # DISPATCHES TABLE
    # ====================
    op.create_table(
        'dispatches',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('created_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivery_date', sa.Date, nullable=False),
        sa.Column('created_by', sa.String(200), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_dispatches_delivery_date', 'dispatches', ['delivery_date'])

    # ====================
    # BRANCH DISPATCHES TABLE
    # ====================
    op.create_table(
        'branch_dispatches',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('dispatch_id', sa.String(64), sa.ForeignKey('dispatches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
        sa.Column('branch_slug', sa.String(100), nullable=False),
        sa.Column('branch_name', sa.String(200), nullable=False),
        sa.Column('status', sa.String(50), server_default='pending', nullable=False,
                  comment='pending, packing, packed, dispatched, received, issue'),
        sa.Column('status_before_issue', sa.String(50), nullable=True),
        sa.Column('items', sa.JSON, nullable=False),
        sa.Column('packed_by', sa.String(200), nullable=True),
        sa.Column('packing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('packing_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_by', sa.String(200), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('overall_notes', sa.Text, nullable=True),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('dispatch_id', 'branch_slug', name='uq_branch_dispatch_slug'),
    )
    op.create_index('ix_branch_dispatches_dispatch_id', 'branch_dispatches', ['dispatch_id'])
    op.create_index('ix_branch_dispatches_branch_slug', 'branch_dispatches', ['branch_slug'])
    op.create_index('ix_branch_dispatches_status', 'branch_dispatches', ['status'])

    # ====================
    # DISPATCH ARCHIVE TABLE
    # ====================
    op.create_table(
        'dispatch_archive',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('created_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivery_date', sa.Date, nullable=False),
        sa.Column('created_by', sa.String(200), nullable=False),
        sa.Column('branch_dispatches', sa.JSON, nullable=False),
        sa.Column('is_archived', sa.Boolean, server_default='true', nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_by', sa.String(200), nullable=False),
        sa.Column('archived_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_dispatch_archive_delivery_date', 'dispatch_archive', ['delivery_date'])
    op.create_index('ix_dispatch_archive_deleted_at', 'dispatch_archive', ['deleted_at'])


def downgrade():
    """Drop dispatch tables"""
    op.drop_table('dispatch_archive')
    op.drop_table('branch_dispatches')
    op.drop_table('dispatches')
