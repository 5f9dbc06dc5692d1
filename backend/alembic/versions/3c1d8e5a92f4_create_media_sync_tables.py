"""create media sync tables

Revision ID: 3c1d8e5a92f4
Revises:
Create Date: 2026-10-19 10:04:12.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1d8e5a92f4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('media_assets',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.String(), nullable=True),
    sa.Column('correlation_id', sa.String(), nullable=True),
    sa.Column('filename', sa.String(), nullable=False),
    sa.Column('resource_type', sa.String(), nullable=False),
    sa.Column('mime_type', sa.String(), nullable=True),
    sa.Column('format', sa.String(), nullable=True),
    sa.Column('folder', sa.String(), nullable=True),
    sa.Column('byte_size', sa.Integer(), nullable=True),
    sa.Column('checksum', sa.String(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=True),
    sa.Column('secure_url', sa.String(), nullable=True),
    sa.Column('tags', sa.JSON(), nullable=True),
    sa.Column('sync_status', sa.String(), nullable=False),
    sa.Column('confirmation_state', sa.String(), nullable=False),
    sa.Column('sync_error_message', sa.Text(), nullable=True),
    sa.Column('sync_retry_count', sa.Integer(), nullable=False),
    sa.Column('last_synced_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("sync_status != 'synced' OR external_id IS NOT NULL", name='ck_media_assets_synced_has_external_id'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_media_assets_external_id'), 'media_assets', ['external_id'], unique=True)
    op.create_index(op.f('ix_media_assets_correlation_id'), 'media_assets', ['correlation_id'], unique=True)
    op.create_index(op.f('ix_media_assets_deleted_at'), 'media_assets', ['deleted_at'], unique=False)

    op.create_table('sync_operations',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('operation_type', sa.String(), nullable=False),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('source', sa.String(), nullable=False),
    sa.Column('progress', sa.Integer(), nullable=False),
    sa.Column('total_items', sa.Integer(), nullable=False),
    sa.Column('processed_items', sa.Integer(), nullable=False),
    sa.Column('failed_items', sa.Integer(), nullable=False),
    sa.Column('operation_data', sa.JSON(), nullable=True),
    sa.Column('error_details', sa.JSON(), nullable=True),
    sa.Column('start_time', sa.DateTime(), nullable=True),
    sa.Column('end_time', sa.DateTime(), nullable=True),
    sa.Column('estimated_completion', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )

    op.create_table('connection_status',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('client_id', sa.String(), nullable=False),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('last_ping', sa.DateTime(), nullable=True),
    sa.Column('connection_start', sa.DateTime(), nullable=True),
    sa.Column('reconnect_attempts', sa.Integer(), nullable=False),
    sa.Column('latency_ms', sa.Integer(), nullable=True),
    sa.Column('user_agent', sa.String(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_connection_status_client_id'), 'connection_status', ['client_id'], unique=True)

    op.create_table('sync_status_snapshots',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('snapshot_type', sa.String(), nullable=False),
    sa.Column('total_assets', sa.Integer(), nullable=False),
    sa.Column('synced_assets', sa.Integer(), nullable=False),
    sa.Column('pending_assets', sa.Integer(), nullable=False),
    sa.Column('error_assets', sa.Integer(), nullable=False),
    sa.Column('active_operations', sa.Integer(), nullable=False),
    sa.Column('system_health', sa.String(), nullable=False),
    sa.Column('error_rate', sa.Float(), nullable=False),
    sa.Column('avg_sync_time_ms', sa.Integer(), nullable=True),
    sa.Column('performance_score', sa.Integer(), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_status_snapshots_created_at'), 'sync_status_snapshots', ['created_at'], unique=False)

    op.create_table('cleanup_queue',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('action', sa.String(), nullable=False),
    sa.Column('asset_id', sa.String(length=36), nullable=True),
    sa.Column('external_id', sa.String(), nullable=True),
    sa.Column('resource_type', sa.String(), nullable=True),
    sa.Column('reason', sa.String(), nullable=True),
    sa.Column('source', sa.String(), nullable=False),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('attempts', sa.Integer(), nullable=False),
    sa.Column('max_attempts', sa.Integer(), nullable=False),
    sa.Column('last_error', sa.Text(), nullable=True),
    sa.Column('payload', sa.JSON(), nullable=True),
    sa.Column('not_before', sa.DateTime(), nullable=True),
    sa.Column('queued_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['asset_id'], ['media_assets.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cleanup_queue_asset_id'), 'cleanup_queue', ['asset_id'], unique=False)
    op.create_index(op.f('ix_cleanup_queue_status'), 'cleanup_queue', ['status'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_cleanup_queue_status'), table_name='cleanup_queue')
    op.drop_index(op.f('ix_cleanup_queue_asset_id'), table_name='cleanup_queue')
    op.drop_table('cleanup_queue')
    op.drop_index(op.f('ix_sync_status_snapshots_created_at'), table_name='sync_status_snapshots')
    op.drop_table('sync_status_snapshots')
    op.drop_index(op.f('ix_connection_status_client_id'), table_name='connection_status')
    op.drop_table('connection_status')
    op.drop_table('sync_operations')
    op.drop_index(op.f('ix_media_assets_deleted_at'), table_name='media_assets')
    op.drop_index(op.f('ix_media_assets_correlation_id'), table_name='media_assets')
    op.drop_index(op.f('ix_media_assets_external_id'), table_name='media_assets')
    op.drop_table('media_assets')
