"""Media asset service - catalog queries and version-guarded merges."""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.asset_store_protocol import StoreAsset
from models import MediaAsset, utc_now
from services.error_classification import CatalogDivergenceError
from services.realtime_broadcaster import set_change_origin

logger = logging.getLogger(__name__)

# Store-owned fields copied onto the catalog row on merge
MERGE_FIELDS = (
    "filename",
    "resource_type",
    "format",
    "folder",
    "byte_size",
    "checksum",
    "version",
    "secure_url",
    "tags",
)


def store_changes(store_asset: StoreAsset) -> dict:
    """Return the non-null mergeable fields of a store asset."""
    changes = {}
    for field_name in MERGE_FIELDS:
        value = getattr(store_asset, field_name)
        if value is not None:
            changes[field_name] = list(value) if field_name == "tags" else value
    return changes


def apply_remote_changes(asset: MediaAsset, changes: dict, version: int | None = None) -> str:
    """Merge store-side field values onto a catalog row, guarded by version.

    Args:
        asset: Catalog row to update in place.
        changes: Field name to new value.
        version: Store version the changes were observed at.

    Returns:
        ``"stale"`` if ``version`` is older than the row's, ``"unchanged"`` if
        every value already matches, otherwise ``"applied"``.
    """
    if version is not None and asset.version is not None and version < asset.version:
        return "stale"

    changed = False
    for field_name, value in changes.items():
        if field_name == "version":
            continue
        if getattr(asset, field_name) != value:
            setattr(asset, field_name, value)
            changed = True

    if version is not None and asset.version != version:
        asset.version = version
        changed = True

    return "applied" if changed else "unchanged"


class MediaAssetService:
    """Catalog-side operations on :class:`MediaAsset` rows."""

    def __init__(self, queue_service=None):
        """Initialize with an optional cleanup queue.

        Args:
            queue_service: A ``CleanupQueueService`` used to schedule the
                store-side purge when an asset is deleted from the catalog.
        """
        self._queue = queue_service

    def get(self, db: Session, asset_id: str) -> Optional[MediaAsset]:
        return db.get(MediaAsset, asset_id)

    def get_by_external_id(self, db: Session, external_id: str) -> Optional[MediaAsset]:
        return db.query(MediaAsset).filter_by(external_id=external_id).first()

    def get_by_correlation_id(self, db: Session, correlation_id: str) -> Optional[MediaAsset]:
        return db.query(MediaAsset).filter_by(correlation_id=correlation_id).first()

    def list_active(
        self,
        db: Session,
        sync_status: str | None = None,
        folder: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[MediaAsset]:
        """List non-deleted assets, newest first."""
        query = db.query(MediaAsset).filter(MediaAsset.deleted_at.is_(None))
        if sync_status:
            query = query.filter(MediaAsset.sync_status == sync_status)
        if folder:
            query = query.filter(MediaAsset.folder == folder)
        return (
            query.order_by(MediaAsset.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_by_status(self, db: Session) -> dict[str, int]:
        """Count active assets per sync status."""
        rows = (
            db.query(MediaAsset.sync_status, func.count(MediaAsset.id))
            .filter(MediaAsset.deleted_at.is_(None))
            .group_by(MediaAsset.sync_status)
            .all()
        )
        counts = {"pending": 0, "synced": 0, "error": 0}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(counts[s] for s in ("pending", "synced", "error"))
        return counts

    def mark_synced(self, asset: MediaAsset, store_asset: StoreAsset) -> None:
        """Bind a row to a store resource and mark it synced and confirmed.

        Raises:
            CatalogDivergenceError: If the row already mirrors a different
                store resource. Rows are never rebound.
        """
        if asset.external_id and asset.external_id != store_asset.external_id:
            raise CatalogDivergenceError(
                f"asset {asset.id} is bound to {asset.external_id}, not {store_asset.external_id}"
            )
        asset.external_id = store_asset.external_id
        apply_remote_changes(asset, store_changes(store_asset), store_asset.version)
        asset.sync_status = "synced"
        asset.confirmation_state = "confirmed"
        asset.sync_error_message = None
        asset.last_synced_at = utc_now()

    def mark_error(self, asset: MediaAsset, message: str, rolled_back: bool = False) -> None:
        asset.sync_status = "error"
        asset.sync_error_message = message
        asset.sync_retry_count = (asset.sync_retry_count or 0) + 1
        if rolled_back:
            asset.confirmation_state = "rolled_back"

    def insert_from_store(self, db: Session, store_asset: StoreAsset) -> MediaAsset:
        """Insert a synced row for a store resource the catalog lacks."""
        asset = MediaAsset(
            filename=store_asset.filename,
            resource_type=store_asset.resource_type,
            sync_status="synced",
            confirmation_state="confirmed",
        )
        self.mark_synced(asset, store_asset)
        db.add(asset)
        db.flush()
        logger.info("Imported store asset %s as catalog row %s", store_asset.external_id, asset.id)
        return asset

    def soft_delete(self, asset: MediaAsset) -> bool:
        """Set ``deleted_at``. Returns False if the row was already deleted."""
        if asset.deleted_at is not None:
            return False
        asset.deleted_at = utc_now()
        return True

    def delete_asset(self, db: Session, asset_id: str) -> Optional[MediaAsset]:
        """Delete an asset from the catalog side.

        The row is soft-deleted and marked pending; when it is bound to a
        store resource a ``purge_remote`` cleanup item is queued so the store
        copy is removed too. Deleting an already deleted row is a no-op.

        Returns:
            The row, or None if no such asset exists.
        """
        asset = self.get(db, asset_id)
        if asset is None:
            return None
        if asset.deleted_at is not None:
            return asset

        set_change_origin(db, "catalog")
        self.soft_delete(asset)
        if asset.external_id:
            asset.sync_status = "pending"
            if self._queue is not None:
                self._queue.enqueue(
                    db,
                    "purge_remote",
                    asset_id=asset.id,
                    external_id=asset.external_id,
                    resource_type=asset.resource_type,
                    reason="deleted from catalog",
                    source="catalog",
                )
        db.flush()
        logger.info("Catalog delete of asset %s (external_id=%s)", asset.id, asset.external_id)
        return asset
