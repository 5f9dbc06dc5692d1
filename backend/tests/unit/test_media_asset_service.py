"""Tests for MediaAssetService and the version-guarded merge."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from models import CleanupQueueItem, MediaAsset
from services.cleanup_queue_service import CleanupQueueService
from services.error_classification import CatalogDivergenceError
from services.media_asset_service import MediaAssetService, apply_remote_changes, store_changes
from tests.fixtures import make_asset
from tests.fixtures.mocks import MockAssetStore, make_store_asset


class TestApplyRemoteChanges:
    def test_older_version_is_stale(self):
        asset = MediaAsset(filename="a.jpg", version=5, byte_size=10)
        assert apply_remote_changes(asset, {"byte_size": 99}, version=4) == "stale"
        assert asset.byte_size == 10
        assert asset.version == 5

    def test_same_values_are_unchanged(self):
        asset = MediaAsset(filename="a.jpg", version=5, byte_size=10)
        assert apply_remote_changes(asset, {"byte_size": 10, "filename": "a.jpg"}, version=5) == "unchanged"

    def test_newer_version_applies(self):
        asset = MediaAsset(filename="a.jpg", version=5, byte_size=10)
        assert apply_remote_changes(asset, {"byte_size": 20}, version=6) == "applied"
        assert asset.byte_size == 20
        assert asset.version == 6

    def test_unversioned_change_applies(self):
        asset = MediaAsset(filename="a.jpg", version=5, tags=["a"])
        assert apply_remote_changes(asset, {"tags": ["a", "b"]}) == "applied"
        assert asset.version == 5

    def test_version_key_in_changes_is_ignored(self):
        asset = MediaAsset(filename="a.jpg", version=5)
        assert apply_remote_changes(asset, {"version": 1}) == "unchanged"
        assert asset.version == 5

    def test_store_changes_skips_nulls(self):
        changes = store_changes(make_store_asset("media/a", checksum=None, folder=None))
        assert "checksum" not in changes
        assert "folder" not in changes
        assert changes["byte_size"] == 2048


class TestUnchangedMergeDoesNotTouchRow:
    def test_updated_at_is_not_bumped(self, db, synced_asset):
        before = synced_asset.updated_at
        result = apply_remote_changes(
            synced_asset, {"byte_size": synced_asset.byte_size}, synced_asset.version
        )
        db.commit()
        db.refresh(synced_asset)
        assert result == "unchanged"
        assert synced_asset.updated_at == before


class TestQueries:
    def test_lookups(self, db, synced_asset, pending_asset):
        service = MediaAssetService()
        assert service.get(db, synced_asset.id) is synced_asset
        assert service.get_by_external_id(db, "media/photo_1") is synced_asset
        assert service.get_by_correlation_id(db, "temp_abc123") is pending_asset
        assert service.get_by_external_id(db, "nope") is None

    def test_list_active_excludes_deleted_and_filters(self, db, synced_asset, pending_asset):
        service = MediaAssetService()
        make_asset(db, external_id="other/x", folder="other", filename="x.jpg")
        gone = make_asset(db, external_id="media/gone", filename="gone.jpg")
        service.soft_delete(gone)
        db.commit()

        ids = {a.id for a in service.list_active(db)}
        assert gone.id not in ids
        assert len(ids) == 3
        assert [a.id for a in service.list_active(db, sync_status="pending")] == [pending_asset.id]
        assert len(service.list_active(db, folder="other")) == 1
        assert len(service.list_active(db, limit=1)) == 1

    def test_count_by_status(self, db, synced_asset, pending_asset):
        make_asset(db, external_id="media/broken", sync_status="error")
        counts = MediaAssetService().count_by_status(db)
        assert counts == {"pending": 1, "synced": 1, "error": 1, "total": 3}


class TestMarking:
    def test_mark_synced_binds_external_id(self, db, pending_asset):
        MediaAssetService().mark_synced(pending_asset, make_store_asset("media/sunset_1"))
        db.commit()
        assert pending_asset.external_id == "media/sunset_1"
        assert pending_asset.sync_status == "synced"
        assert pending_asset.confirmation_state == "confirmed"
        assert pending_asset.last_synced_at is not None

    def test_mark_synced_refuses_to_rebind(self, synced_asset):
        service = MediaAssetService()
        with pytest.raises(CatalogDivergenceError, match="media/photo_1"):
            service.mark_synced(synced_asset, make_store_asset("media/other_2"))
        assert synced_asset.external_id == "media/photo_1"

        service.mark_synced(synced_asset, make_store_asset("media/photo_1"))
        assert synced_asset.sync_status == "synced"

    def test_mark_error_counts_retries(self, pending_asset):
        service = MediaAssetService()
        service.mark_error(pending_asset, "boom")
        service.mark_error(pending_asset, "boom again", rolled_back=True)
        assert pending_asset.sync_status == "error"
        assert pending_asset.sync_retry_count == 2
        assert pending_asset.confirmation_state == "rolled_back"
        assert pending_asset.sync_error_message == "boom again"

    def test_insert_from_store(self, db):
        asset = MediaAssetService().insert_from_store(db, make_store_asset("media/orphan", tags=["x"]))
        db.commit()
        assert asset.sync_status == "synced"
        assert asset.external_id == "media/orphan"
        assert asset.tags == ["x"]

    def test_soft_delete_is_idempotent(self, synced_asset):
        service = MediaAssetService()
        assert service.soft_delete(synced_asset) is True
        first = synced_asset.deleted_at
        assert service.soft_delete(synced_asset) is False
        assert synced_asset.deleted_at == first
        assert synced_asset.is_deleted


class TestDeleteAsset:
    def test_queues_store_purge(self, db, synced_asset):
        queue = CleanupQueueService(MockAssetStore())
        service = MediaAssetService(queue)
        asset = service.delete_asset(db, synced_asset.id)
        db.commit()

        assert asset.deleted_at is not None
        assert asset.sync_status == "pending"
        item = db.query(CleanupQueueItem).one()
        assert item.action == "purge_remote"
        assert item.external_id == "media/photo_1"
        assert item.source == "catalog"
        assert db.info.get("change_origin") == "catalog"

    def test_unconfirmed_row_needs_no_purge(self, db, pending_asset):
        queue = MagicMock()
        asset = MediaAssetService(queue).delete_asset(db, pending_asset.id)
        assert asset.deleted_at is not None
        queue.enqueue.assert_not_called()

    def test_missing_asset(self, db):
        assert MediaAssetService().delete_asset(db, "missing") is None

    def test_second_delete_is_noop(self, db, synced_asset):
        queue = MagicMock()
        service = MediaAssetService(queue)
        service.delete_asset(db, synced_asset.id)
        service.delete_asset(db, synced_asset.id)
        assert queue.enqueue.call_count == 1


def test_synced_row_requires_external_id(db):
    """The catalog refuses a synced row with no external id."""
    db.add(MediaAsset(filename="a.jpg", sync_status="synced"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
