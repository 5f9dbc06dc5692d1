"""Upload coordinator - optimistic catalog rows ahead of store uploads.

``submit()`` commits a pending row carrying a ``temp_`` correlation id and
returns at once; ``process()`` performs the store upload afterwards (as a
FastAPI background task) and confirms or rolls back the row.
"""

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from integrations.asset_store_protocol import AssetStoreClient, StoreAsset
from models import CleanupQueueItem, MediaAsset, SyncOperation
from services.cleanup_queue_service import COMPLETED, SKIPPED, CleanupQueueService
from services.error_classification import CatalogDivergenceError, ErrorKind, classify_error
from services.media_asset_service import MediaAssetService, apply_remote_changes, store_changes
from services.realtime_broadcaster import set_change_origin
from services.sync_operation_service import SyncOperationService

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    temp_id: str
    asset_id: str
    operation_id: str


@dataclass
class UploadResult:
    """Outcome of one store upload attempt."""

    asset_id: str
    status: str  # "synced" | "error" | "duplicate" | "skipped"
    external_id: str | None = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    retry_queued: bool = False


def resource_type_for(mime_type: str | None) -> str:
    if mime_type:
        if mime_type.startswith("image/"):
            return "image"
        if mime_type.startswith("video/") or mime_type.startswith("audio/"):
            return "video"
    return "raw"


class UploadCoordinator:
    """Drive uploads from submission through store confirmation."""

    def __init__(
        self,
        store: AssetStoreClient,
        queue_service: CleanupQueueService,
        staging_dir: str | Path,
        default_folder: str | None = None,
        media_service: Optional[MediaAssetService] = None,
        operations: Optional[SyncOperationService] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self._store = store
        self._queue = queue_service
        self._staging_dir = Path(staging_dir)
        self._default_folder = default_folder
        self._media = media_service or MediaAssetService(queue_service)
        self._operations = operations or SyncOperationService()
        self._session_factory = session_factory
        queue_service.register_action(
            "retry_upload", self.retry_from_queue, on_exhausted=self.discard_abandoned
        )

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _staged_path(self, temp_id: str) -> Path:
        return self._staging_dir / temp_id

    def _stage(self, temp_id: str, content: bytes) -> None:
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        self._staged_path(temp_id).write_bytes(content)

    def _discard_staged(self, temp_id: str | None) -> None:
        if temp_id:
            self._staged_path(temp_id).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def submit(
        self,
        db: Session,
        filename: str,
        content: bytes,
        destination_folder: str | None = None,
        mime_type: str | None = None,
        tags: list[str] | None = None,
    ) -> SubmitResult:
        """Create the pending catalog row and the upload operation.

        Commits before returning so the row is visible to webhooks that may
        arrive before ``process()`` finishes.

        Raises:
            ValueError: If the filename or content is empty.
        """
        filename = (filename or "").strip()
        if not filename:
            raise ValueError("filename is required")
        if not content:
            raise ValueError("file content is empty")

        mime_type = mime_type or mimetypes.guess_type(filename)[0]
        temp_id = f"temp_{uuid.uuid4().hex}"
        folder = destination_folder or self._default_folder
        suffix = Path(filename).suffix.lstrip(".").lower() or None

        self._stage(temp_id, content)
        try:
            set_change_origin(db, "upload")
            asset = MediaAsset(
                correlation_id=temp_id,
                filename=filename,
                resource_type=resource_type_for(mime_type),
                mime_type=mime_type,
                format=suffix,
                folder=folder,
                byte_size=len(content),
                tags=list(tags or []),
                sync_status="pending",
                confirmation_state="pending",
            )
            db.add(asset)
            db.flush()
            operation = self._operations.create(
                db,
                "upload",
                source="api",
                total_items=1,
                operation_data={"asset_id": asset.id, "temp_id": temp_id, "filename": filename},
            )
            db.commit()
        except Exception:
            db.rollback()
            self._discard_staged(temp_id)
            raise

        logger.info("Upload submitted: %s as %s (asset %s)", filename, temp_id, asset.id)
        return SubmitResult(temp_id=temp_id, asset_id=asset.id, operation_id=operation.id)

    # ------------------------------------------------------------------
    # Process
    # ------------------------------------------------------------------

    def _find_operation(self, db: Session, asset_id: str, operation_id: str | None) -> Optional[SyncOperation]:
        if operation_id:
            return db.get(SyncOperation, operation_id)
        candidates = (
            db.query(SyncOperation)
            .filter(
                SyncOperation.operation_type == "upload",
                SyncOperation.status.in_(("pending", "in_progress")),
            )
            .order_by(SyncOperation.created_at.desc())
            .all()
        )
        for op in candidates:
            if (op.operation_data or {}).get("asset_id") == asset_id:
                return op
        return None

    def process_in_new_session(self, asset_id: str, operation_id: str | None = None) -> UploadResult:
        """Run :meth:`process` on a fresh session (background task entry point)."""
        if self._session_factory is None:
            raise RuntimeError("UploadCoordinator has no session factory")
        db = self._session_factory()
        try:
            return self.process(db, asset_id, operation_id)
        finally:
            db.close()

    def process(self, db: Session, asset_id: str, operation_id: str | None = None) -> UploadResult:
        """Upload the staged bytes for ``asset_id`` and confirm or roll back.

        Never raises for store failures: transient ones queue a
        ``retry_upload`` item, permanent ones are recorded on the row.
        """
        set_change_origin(db, "upload")
        asset = db.get(MediaAsset, asset_id)
        operation = self._find_operation(db, asset_id, operation_id)

        if asset is None or asset.deleted_at is not None:
            logger.info("Upload of asset %s skipped: row missing or deleted", asset_id)
            if operation is not None and not operation.is_terminal:
                self._operations.complete(db, operation, status="cancelled")
                db.commit()
            if asset is not None:
                self._discard_staged(asset.correlation_id)
            return UploadResult(asset_id=asset_id, status="skipped")

        if asset.confirmation_state == "confirmed" and asset.sync_status == "synced":
            # A webhook confirmed the row first
            if operation is not None and not operation.is_terminal:
                self._operations.update_progress(db, operation, processed_items=1)
                self._operations.complete(
                    db, operation, operation_data={"external_id": asset.external_id}
                )
            db.commit()
            self._discard_staged(asset.correlation_id)
            return UploadResult(asset_id=asset.id, status="synced", external_id=asset.external_id)

        if operation is not None:
            self._operations.update_progress(db, operation, progress=10)
            db.commit()

        try:
            store_asset = self._upload(asset)
        except Exception as exc:
            return self._record_failure(db, asset_id, operation.id if operation else None, exc, queue_retry=True)

        return self._confirm(db, asset_id, operation.id if operation else None, store_asset)

    def _upload(self, asset: MediaAsset) -> StoreAsset:
        staged = self._staged_path(asset.correlation_id)
        if not staged.exists():
            raise FileNotFoundError(f"Staged upload for {asset.correlation_id} is missing")
        content = staged.read_bytes()
        return self._store.create(
            content,
            asset.filename,
            folder=asset.folder,
            resource_type="auto",
            tags=list(asset.tags or []),
            context={"correlation_id": asset.correlation_id, "asset_id": asset.id},
        )

    def _confirm(
        self,
        db: Session,
        asset_id: str,
        operation_id: str | None,
        store_asset: StoreAsset,
        retried: bool = False,
    ) -> UploadResult:
        """Bind the row to the stored resource. Idempotent with webhook confirmation."""
        asset = db.get(MediaAsset, asset_id)
        operation = db.get(SyncOperation, operation_id) if operation_id else None
        owner = self._media.get_by_external_id(db, store_asset.external_id)

        try:
            result = self._bind(asset, owner, store_asset)
        except CatalogDivergenceError as exc:
            # A webhook matched the row to a different upload while ours ran
            kept = owner or self._media.insert_from_store(db, store_asset)
            logger.warning("Upload of asset %s diverged: %s; store copy kept as asset %s", asset.id, exc, kept.id)
            result = UploadResult(
                asset_id=asset.id,
                status="duplicate",
                external_id=asset.external_id,
                error_kind=classify_error(exc),
                message=f"{exc}; {store_asset.external_id} mirrored by asset {kept.id}",
            )

        if operation is not None and not operation.is_terminal:
            self._operations.update_progress(db, operation, processed_items=1)
            self._operations.complete(
                db,
                operation,
                operation_data={"external_id": store_asset.external_id, "asset_id": result.asset_id},
            )

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if retried:
                raise
            # A concurrent webhook inserted the external id between our read and commit
            return self._confirm(db, asset_id, operation_id, store_asset, retried=True)

        self._discard_staged(asset.correlation_id)
        logger.info(
            "Upload confirmed: asset %s -> %s (%s)",
            result.asset_id, store_asset.external_id, result.status,
        )
        return result

    def _bind(self, asset: MediaAsset, owner: Optional[MediaAsset], store_asset: StoreAsset) -> UploadResult:
        if asset.external_id and asset.external_id != store_asset.external_id:
            raise CatalogDivergenceError(
                f"asset {asset.id} is bound to {asset.external_id}, not {store_asset.external_id}"
            )
        if owner is not None and owner.id != asset.id:
            # Another row (e.g. inserted by a webhook) already mirrors this resource
            asset.confirmation_state = "rolled_back"
            asset.sync_status = "error"
            asset.sync_error_message = f"duplicate of asset {owner.id}"
            self._media.soft_delete(asset)
            apply_remote_changes(owner, store_changes(store_asset), store_asset.version)
            if owner.sync_status != "synced" and owner.deleted_at is None:
                self._media.mark_synced(owner, store_asset)
            return UploadResult(asset_id=owner.id, status="duplicate", external_id=store_asset.external_id)

        self._media.mark_synced(asset, store_asset)
        return UploadResult(asset_id=asset.id, status="synced", external_id=store_asset.external_id)

    def _record_failure(
        self,
        db: Session,
        asset_id: str,
        operation_id: str | None,
        exc: Exception,
        queue_retry: bool,
    ) -> UploadResult:
        db.rollback()
        kind = classify_error(exc)
        message = str(exc)
        asset = db.get(MediaAsset, asset_id)
        operation = db.get(SyncOperation, operation_id) if operation_id else None

        self._media.mark_error(asset, message, rolled_back=True)
        if operation is not None and not operation.is_terminal:
            self._operations.update_progress(db, operation, failed_items=1)
            self._operations.complete(
                db, operation, status="failed",
                error_details={"kind": kind.value, "message": message},
            )

        retry_queued = False
        if queue_retry and kind == ErrorKind.TRANSIENT:
            self._queue.enqueue(
                db,
                "retry_upload",
                asset_id=asset.id,
                resource_type=asset.resource_type,
                reason=message[:200],
                source="upload",
            )
            retry_queued = True
        elif kind != ErrorKind.TRANSIENT:
            self._discard_staged(asset.correlation_id)

        db.commit()
        logger.warning(
            "Upload of asset %s failed (%s): %s%s",
            asset_id, kind.value, message, "; retry queued" if retry_queued else "",
        )
        return UploadResult(
            asset_id=asset_id,
            status="error",
            error_kind=kind,
            message=message,
            retry_queued=retry_queued,
        )

    # ------------------------------------------------------------------
    # Queue handlers
    # ------------------------------------------------------------------

    def retry_from_queue(self, db: Session, item: CleanupQueueItem) -> str:
        """``retry_upload`` handler. Raises on failure so the queue counts the attempt."""
        asset = db.get(MediaAsset, item.asset_id) if item.asset_id else None
        if asset is None or asset.deleted_at is not None:
            return SKIPPED
        if asset.sync_status == "synced":
            self._discard_staged(asset.correlation_id)
            return SKIPPED

        item_id = item.id
        asset_id = asset.id
        operation = self._operations.create(
            db,
            "upload",
            source="scheduled",
            total_items=1,
            operation_data={"asset_id": asset_id, "temp_id": asset.correlation_id, "queue_item_id": item_id},
            status="in_progress",
        )
        operation_id = operation.id
        db.commit()

        try:
            store_asset = self._upload(db.get(MediaAsset, asset_id))
        except Exception as exc:
            self._record_failure(db, asset_id, operation_id, exc, queue_retry=False)
            raise

        result = self._confirm(db, asset_id, operation_id, store_asset)
        return COMPLETED if result.status in ("synced", "duplicate") else SKIPPED

    def discard_abandoned(self, db: Session, item: CleanupQueueItem) -> None:
        """Drop the staged bytes once a ``retry_upload`` item has no attempts left."""
        asset = db.get(MediaAsset, item.asset_id) if item.asset_id else None
        if asset is None:
            return
        self._discard_staged(asset.correlation_id)
        logger.warning(
            "Upload of asset %s abandoned after %d attempt(s); staged bytes discarded",
            asset.id, item.attempts,
        )
