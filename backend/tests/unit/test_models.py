"""Unit tests for SQLAlchemy models."""

import pytest
from sqlalchemy.exc import IntegrityError

from models import CleanupQueueItem, ConnectionStatus, MediaAsset, SyncOperation, utc_now
from tests.fixtures import make_asset


def test_media_asset_defaults(db):
    """A bare row starts pending and unconfirmed."""
    asset = MediaAsset(filename="clip.mp4")
    db.add(asset)
    db.commit()
    db.refresh(asset)

    assert len(asset.id) == 36
    assert asset.resource_type == "image"
    assert asset.sync_status == "pending"
    assert asset.confirmation_state == "pending"
    assert asset.sync_retry_count == 0
    assert asset.created_at is not None
    assert asset.is_deleted is False


def test_synced_asset(synced_asset):
    assert synced_asset.external_id == "media/photo_1"
    assert synced_asset.sync_status == "synced"
    assert synced_asset.confirmation_state == "confirmed"


def test_pending_asset(pending_asset):
    assert pending_asset.external_id is None
    assert pending_asset.correlation_id.startswith("temp_")


def test_external_id_is_unique(db, synced_asset):
    db.add(MediaAsset(filename="copy.jpg", external_id=synced_asset.external_id))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_correlation_id_is_unique(db, pending_asset):
    db.add(MediaAsset(filename="again.jpg", correlation_id=pending_asset.correlation_id))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_soft_deleted_row_is_kept(db):
    asset = make_asset(db, deleted_at=utc_now())
    assert asset.is_deleted is True
    assert db.query(MediaAsset).count() == 1


def test_updated_at_moves_on_update(db, synced_asset):
    before = synced_asset.updated_at
    synced_asset.tags = ["edited"]
    db.commit()
    db.refresh(synced_asset)
    assert synced_asset.updated_at >= before


def test_sync_operation_terminal_flag(db):
    op = SyncOperation(operation_type="upload", source="api")
    db.add(op)
    db.commit()
    assert op.status == "pending"
    assert op.progress == 0
    assert op.is_terminal is False

    op.status = "cancelled"
    assert op.is_terminal is True


def test_cleanup_item_references_asset(db, synced_asset):
    item = CleanupQueueItem(action="purge_remote", asset_id=synced_asset.id, external_id=synced_asset.external_id)
    db.add(item)
    db.commit()
    db.refresh(item)

    assert item.status == "pending"
    assert item.attempts == 0
    assert item.max_attempts == 3
    assert item.queued_at is not None


def test_connection_status_metadata_column(db):
    row = ConnectionStatus(client_id="c1", connection_metadata={"ua": "x"})
    db.add(row)
    db.commit()
    db.refresh(row)

    assert row.status == "disconnected"
    assert row.connection_metadata == {"ua": "x"}
