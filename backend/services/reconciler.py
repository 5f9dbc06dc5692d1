"""Reconciler - full-listing diff between the asset store and the catalog.

Lists every store resource by cursor, compares with the active synced
catalog rows, and optionally heals the differences:

- missing_in_db: store resource with no catalog row -> insert a synced row
- missing_in_cloud: synced row whose resource is gone -> mark error and
  queue ``verify_missing`` (skipped when the listing was incomplete)
- conflicts: both sides present but size, checksum or filename differ ->
  overwrite the row from the store
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.asset_store_protocol import AssetStoreClient, StoreAsset
from integrations.exceptions import AssetStoreError
from models import MediaAsset, SyncOperation, utc_now
from services.cleanup_queue_service import CleanupQueueService
from services.error_classification import classify_error
from services.media_asset_service import MediaAssetService, apply_remote_changes, store_changes
from services.realtime_broadcaster import set_change_origin
from services.sync_operation_service import SyncOperationService

logger = logging.getLogger(__name__)

CONFLICT_FIELDS = (
    ("byte_size", "byte_size"),
    ("checksum", "checksum"),
    ("filename", "filename"),
)


@dataclass
class AssetConflict:
    external_id: str
    asset_id: str
    differences: dict  # field -> {"catalog": ..., "store": ...}


@dataclass
class FixResults:
    fixed_missing_in_db: int = 0
    fixed_missing_in_cloud: int = 0
    fixed_conflicts: int = 0
    fix_errors: list[str] = field(default_factory=list)


@dataclass
class VerificationReport:
    cloud_count: int
    db_count: int
    missing_in_db: list[str]
    missing_in_cloud: list[str]
    conflicts: list[AssetConflict]
    listing_complete: bool = True
    listing_errors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    fix_results: Optional[FixResults] = None
    operation_id: str | None = None

    @property
    def is_in_sync(self) -> bool:
        return (
            self.listing_complete
            and not self.missing_in_db
            and not self.missing_in_cloud
            and not self.conflicts
        )


def find_conflict(asset: MediaAsset, store_asset: StoreAsset) -> Optional[AssetConflict]:
    """Compare the fields both sides own; None values on the store are ignored."""
    differences = {}
    for row_field, store_field in CONFLICT_FIELDS:
        store_value = getattr(store_asset, store_field)
        catalog_value = getattr(asset, row_field)
        if store_value is not None and catalog_value != store_value:
            differences[row_field] = {"catalog": catalog_value, "store": store_value}
    if not differences:
        return None
    return AssetConflict(external_id=store_asset.external_id, asset_id=asset.id, differences=differences)


class Reconciler:
    """Compare the store listing with the catalog and optionally fix drift."""

    def __init__(
        self,
        store: AssetStoreClient,
        queue_service: CleanupQueueService,
        media_service: Optional[MediaAssetService] = None,
        operations: Optional[SyncOperationService] = None,
        page_size: int = 500,
        missing_grace: timedelta = timedelta(hours=24),
    ):
        self._store = store
        self._queue = queue_service
        self._media = media_service or MediaAssetService(queue_service)
        self._operations = operations or SyncOperationService()
        self._page_size = page_size
        self._missing_grace = missing_grace

    def list_store(self) -> tuple[dict[str, StoreAsset], list[str]]:
        """Collect every store resource, following cursors.

        A failing page stops the listing; the error is returned, not raised.
        """
        assets: dict[str, StoreAsset] = {}
        errors: list[str] = []
        cursor = None
        seen_cursors = set()
        while True:
            try:
                page = self._store.list_page(cursor, self._page_size)
            except AssetStoreError as exc:
                errors.append(f"listing failed after {len(assets)} resources: {exc}")
                logger.warning("Store listing stopped at cursor %s: %s", cursor, exc)
                break
            for store_asset in page.assets:
                assets[store_asset.external_id] = store_asset
            cursor = page.next_cursor
            if not cursor:
                break
            if cursor in seen_cursors:
                errors.append(f"store returned repeated cursor {cursor}")
                break
            seen_cursors.add(cursor)
        return assets, errors

    def verify(self, db: Session, auto_fix: bool = False, source: str = "manual") -> VerificationReport:
        """Diff the store against the catalog.

        Args:
            db: Database session (committed at the end).
            auto_fix: Apply corrective actions for each discrepancy.
            source: Recorded on the ``full_sync`` operation.
        """
        operation = self._operations.create(
            db, "full_sync", source=source, total_items=0,
            operation_data={"auto_fix": auto_fix}, status="in_progress",
        )
        db.commit()
        operation_id = operation.id

        try:
            return self._run(db, operation_id, auto_fix)
        except Exception as exc:
            db.rollback()
            operation = db.get(SyncOperation, operation_id)
            if operation is not None and not operation.is_terminal:
                self._operations.complete(
                    db, operation, status="failed",
                    error_details={"kind": classify_error(exc).value, "message": str(exc)},
                )
                db.commit()
            logger.exception("Reconcile %s failed", operation_id)
            raise

    def _run(self, db: Session, operation_id: str, auto_fix: bool) -> VerificationReport:
        store_assets, listing_errors = self.list_store()
        listing_complete = not listing_errors

        rows = db.query(MediaAsset).filter(MediaAsset.external_id.isnot(None)).all()
        tombstoned = {r.external_id for r in rows if r.deleted_at is not None}
        active_synced = {
            r.external_id: r for r in rows if r.deleted_at is None and r.sync_status == "synced"
        }
        known_active = {r.external_id for r in rows if r.deleted_at is None}

        missing_in_db = sorted(
            ext for ext in store_assets if ext not in known_active and ext not in tombstoned
        )
        missing_in_cloud = sorted(ext for ext in active_synced if ext not in store_assets)
        conflicts = []
        for ext, asset in active_synced.items():
            if ext in store_assets:
                conflict = find_conflict(asset, store_assets[ext])
                if conflict:
                    conflicts.append(conflict)
        conflicts.sort(key=lambda c: c.external_id)

        report = VerificationReport(
            cloud_count=len(store_assets),
            db_count=len(known_active),
            missing_in_db=missing_in_db,
            missing_in_cloud=missing_in_cloud,
            conflicts=conflicts,
            listing_complete=listing_complete,
            listing_errors=listing_errors,
            operation_id=operation_id,
        )

        if auto_fix:
            report.fix_results = self._fix(db, report, store_assets, active_synced)
        report.recommendations = self._recommendations(report)

        operation = db.get(SyncOperation, operation_id)
        self._finish_operation(db, operation, report)
        db.commit()

        logger.info(
            "Reconcile: store=%d catalog=%d missing_in_db=%d missing_in_cloud=%d conflicts=%d%s",
            report.cloud_count, report.db_count, len(missing_in_db), len(missing_in_cloud),
            len(conflicts), "" if listing_complete else " (listing incomplete)",
        )
        return report

    def _fix(
        self,
        db: Session,
        report: VerificationReport,
        store_assets: dict[str, StoreAsset],
        active_synced: dict[str, MediaAsset],
    ) -> FixResults:
        results = FixResults()
        set_change_origin(db, "reconciler")
        try:
            for ext in report.missing_in_db:
                self._media.insert_from_store(db, store_assets[ext])
                results.fixed_missing_in_db += 1

            if report.missing_in_cloud and not report.listing_complete:
                results.fix_errors.append(
                    "missing_in_cloud fixes skipped: store listing was incomplete"
                )
            elif report.missing_in_cloud:
                not_before = utc_now() + self._missing_grace
                for ext in report.missing_in_cloud:
                    asset = active_synced[ext]
                    asset.sync_status = "error"
                    asset.sync_error_message = "missing from asset store"
                    self._queue.enqueue(
                        db,
                        "verify_missing",
                        asset_id=asset.id,
                        external_id=ext,
                        resource_type=asset.resource_type,
                        reason="missing from store listing",
                        source="reconciler",
                        not_before=not_before,
                    )
                    results.fixed_missing_in_cloud += 1

            for conflict in report.conflicts:
                asset = active_synced[conflict.external_id]
                store_asset = store_assets[conflict.external_id]
                apply_remote_changes(asset, store_changes(store_asset))
                if store_asset.version is not None:
                    asset.version = max(asset.version or 0, store_asset.version)
                asset.last_synced_at = utc_now()
                results.fixed_conflicts += 1

            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Reconcile fixes rolled back")
            return FixResults(fix_errors=[f"catalog write failed, no fixes applied: {exc.__class__.__name__}"])
        return results

    @staticmethod
    def _recommendations(report: VerificationReport) -> list[str]:
        recs = []
        fixed = report.fix_results
        if not report.listing_complete:
            recs.append("Store listing was incomplete; rerun verification before deleting anything.")
        if report.missing_in_db and not (fixed and fixed.fixed_missing_in_db):
            recs.append(
                f"{len(report.missing_in_db)} store asset(s) are missing from the catalog; "
                "run with auto_fix to import them."
            )
        if report.missing_in_cloud and not (fixed and fixed.fixed_missing_in_cloud):
            recs.append(
                f"{len(report.missing_in_cloud)} catalog asset(s) are missing from the store; "
                "run with auto_fix to flag them for verification."
            )
        if report.conflicts and not (fixed and fixed.fixed_conflicts):
            recs.append(
                f"{len(report.conflicts)} asset(s) differ between store and catalog; "
                "run with auto_fix to take the store's values."
            )
        if not recs and report.is_in_sync:
            recs.append("Store and catalog are in sync.")
        return recs

    def _finish_operation(self, db: Session, operation, report: VerificationReport) -> None:
        discrepancies = len(report.missing_in_db) + len(report.missing_in_cloud) + len(report.conflicts)
        fixed = report.fix_results
        fixed_count = 0
        fix_errors = []
        if fixed:
            fixed_count = fixed.fixed_missing_in_db + fixed.fixed_missing_in_cloud + fixed.fixed_conflicts
            fix_errors = fixed.fix_errors
        failed = min(len(fix_errors), discrepancies - fixed_count) if fixed else 0

        self._operations.update_progress(
            db, operation,
            total_items=discrepancies,
            processed_items=fixed_count,
            failed_items=max(0, failed),
        )
        summary = {
            "cloud_count": report.cloud_count,
            "db_count": report.db_count,
            "missing_in_db": len(report.missing_in_db),
            "missing_in_cloud": len(report.missing_in_cloud),
            "conflicts": len(report.conflicts),
            "listing_complete": report.listing_complete,
        }
        if report.listing_complete:
            self._operations.complete(db, operation, operation_data=summary)
        else:
            self._operations.complete(
                db, operation, status="failed", operation_data=summary,
                error_details={"listing_errors": report.listing_errors},
            )
