"""Cleanup queue service - durable corrective work with claim-based processing.

Items move ``pending -> in_progress`` through a compare-and-set UPDATE before
any work starts, so a scheduler tick, a forced cleanup, and the realtime
delete handler can never process the same item twice concurrently.
"""

import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from integrations.asset_store_protocol import AssetStoreClient
from integrations.exceptions import AssetNotFoundError
from models import CleanupQueueItem, MediaAsset, utc_now
from services.error_classification import ErrorKind, classify_error
from services.media_asset_service import MediaAssetService, apply_remote_changes, store_changes
from services.realtime_broadcaster import set_change_origin

logger = logging.getLogger(__name__)

ACTIONS = frozenset({"retry_upload", "purge_remote", "import_orphan", "verify_missing"})
OPEN_STATUSES = ("pending", "in_progress")

# Handler outcomes
COMPLETED = "completed"
SKIPPED = "skipped"
DEFERRED = "deferred"

ActionHandler = Callable[[Session, CleanupQueueItem], str]
ExhaustedHook = Callable[[Session, CleanupQueueItem], None]


class CleanupQueueService:
    """Enqueue, claim and process :class:`CleanupQueueItem` rows."""

    def __init__(
        self,
        store: AssetStoreClient,
        media_service: Optional[MediaAssetService] = None,
        max_attempts: int = 3,
        missing_grace: timedelta = timedelta(hours=24),
        claim_lease: timedelta = timedelta(minutes=30),
    ):
        self._store = store
        self._media = media_service or MediaAssetService()
        self.max_attempts = max_attempts
        self.missing_grace = missing_grace
        self.claim_lease = claim_lease
        self._handlers: dict[str, ActionHandler] = {
            "purge_remote": self._purge_remote,
            "import_orphan": self._import_orphan,
            "verify_missing": self._verify_missing,
        }
        self._on_exhausted: dict[str, ExhaustedHook] = {}

    def register_action(
        self,
        action: str,
        handler: ActionHandler,
        on_exhausted: Optional[ExhaustedHook] = None,
    ) -> None:
        """Register the handler for an action implemented elsewhere.

        ``on_exhausted`` runs once when an item of this action becomes
        ``permanently_failed``, after the status change is committed.
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown cleanup action: {action!r}")
        self._handlers[action] = handler
        if on_exhausted is not None:
            self._on_exhausted[action] = on_exhausted

    # ------------------------------------------------------------------
    # Enqueue / query
    # ------------------------------------------------------------------

    def find_open(
        self,
        db: Session,
        action: str,
        asset_id: str | None = None,
        external_id: str | None = None,
    ) -> Optional[CleanupQueueItem]:
        query = db.query(CleanupQueueItem).filter(
            CleanupQueueItem.action == action,
            CleanupQueueItem.status.in_(OPEN_STATUSES),
        )
        if asset_id is not None:
            query = query.filter(CleanupQueueItem.asset_id == asset_id)
        if external_id is not None:
            query = query.filter(CleanupQueueItem.external_id == external_id)
        return query.first()

    def enqueue(
        self,
        db: Session,
        action: str,
        asset_id: str | None = None,
        external_id: str | None = None,
        resource_type: str | None = None,
        reason: str | None = None,
        source: str = "api",
        payload: dict | None = None,
        not_before=None,
        max_attempts: int | None = None,
    ) -> CleanupQueueItem:
        """Add an item unless an open one already covers the same target.

        The item is flushed, not committed.
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown cleanup action: {action!r}")
        if asset_id is None and external_id is None:
            raise ValueError("A cleanup item needs an asset_id or an external_id")

        existing = self.find_open(db, action, asset_id=asset_id, external_id=external_id)
        if existing is not None:
            logger.debug("Cleanup %s already queued as %s", action, existing.id)
            return existing

        item = CleanupQueueItem(
            action=action,
            asset_id=asset_id,
            external_id=external_id,
            resource_type=resource_type,
            reason=reason,
            source=source,
            payload=payload or {},
            not_before=not_before,
            max_attempts=max_attempts or self.max_attempts,
        )
        db.add(item)
        db.flush()
        logger.info(
            "Queued cleanup %s for asset=%s external_id=%s (%s)",
            action, asset_id, external_id, reason,
        )
        return item

    def due_item_ids(self, db: Session, limit: int) -> list[str]:
        """Ids of pending items whose ``not_before`` has passed, oldest first."""
        now = utc_now()
        rows = (
            db.query(CleanupQueueItem.id)
            .filter(CleanupQueueItem.status == "pending")
            .filter(
                (CleanupQueueItem.not_before.is_(None))
                | (CleanupQueueItem.not_before <= now)
            )
            .order_by(CleanupQueueItem.queued_at)
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    def list_items(
        self, db: Session, status: str | None = None, limit: int = 100
    ) -> list[CleanupQueueItem]:
        query = db.query(CleanupQueueItem)
        if status:
            query = query.filter(CleanupQueueItem.status == status)
        return query.order_by(CleanupQueueItem.queued_at.desc()).limit(limit).all()

    def stats(self, db: Session) -> dict[str, int]:
        """Count items per status."""
        rows = (
            db.query(CleanupQueueItem.status, func.count(CleanupQueueItem.id))
            .group_by(CleanupQueueItem.status)
            .all()
        )
        counts = {s: 0 for s in ("pending", "in_progress", "completed", "skipped", "permanently_failed")}
        for status, count in rows:
            counts[status] = count
        return counts

    # ------------------------------------------------------------------
    # Claim / process
    # ------------------------------------------------------------------

    def claim(self, db: Session, item_id: str) -> bool:
        """Atomically move an item from pending to in_progress.

        Commits the claim. Returns True only for the caller that won.
        """
        result = db.execute(
            update(CleanupQueueItem)
            .where(CleanupQueueItem.id == item_id, CleanupQueueItem.status == "pending")
            .values(
                status="in_progress",
                attempts=CleanupQueueItem.attempts + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def process_item(self, db: Session, item_id: str) -> str:
        """Claim and run one item.

        Returns:
            ``"not_claimed"`` if another worker holds it, otherwise the final
            status: ``completed``, ``skipped``, ``pending`` (will retry) or
            ``permanently_failed``.
        """
        if not self.claim(db, item_id):
            return "not_claimed"

        item = db.get(CleanupQueueItem, item_id)
        db.refresh(item)
        handler = self._handlers.get(item.action)
        set_change_origin(db, "scheduler")

        if handler is None:
            return self._fail(db, item_id, f"No handler for action {item.action!r}", ErrorKind.PERMANENT)

        try:
            outcome = handler(db, item)
        except Exception as exc:
            kind = classify_error(exc)
            logger.warning(
                "Cleanup %s (%s) attempt %d/%d failed: %s",
                item_id, item.action, item.attempts, item.max_attempts, exc,
            )
            db.rollback()
            return self._fail(db, item_id, str(exc), kind)

        item = db.get(CleanupQueueItem, item_id)
        if outcome == DEFERRED:
            item.status = "pending"
            item.attempts = max(0, item.attempts - 1)
        else:
            item.status = outcome
            item.completed_at = utc_now()
            item.last_error = None if outcome == COMPLETED else item.last_error
        db.commit()
        logger.info("Cleanup %s (%s) -> %s", item_id, item.action, item.status)
        return item.status

    def recover_stale_claims(self, db: Session) -> int:
        """Release items left ``in_progress`` longer than the claim lease.

        A worker that died mid-item never finishes its claim. Such items go
        back to ``pending``, or to ``permanently_failed`` when the abandoned
        attempt was their last. Returns the number of items released.
        """
        cutoff = utc_now() - self.claim_lease
        stale = (
            db.query(CleanupQueueItem)
            .filter(
                CleanupQueueItem.status == "in_progress",
                CleanupQueueItem.updated_at < cutoff,
            )
            .all()
        )
        if not stale:
            return 0

        exhausted = []
        for item in stale:
            item.last_error = f"claim expired after {self.claim_lease}"
            if item.attempts >= item.max_attempts:
                item.status = "permanently_failed"
                item.completed_at = utc_now()
                exhausted.append(item)
            else:
                item.status = "pending"
        db.commit()

        logger.warning("Released %d stale cleanup claim(s)", len(stale))
        for item in exhausted:
            self._run_exhausted_hook(db, item)
        return len(stale)

    def _fail(self, db: Session, item_id: str, message: str, kind: ErrorKind) -> str:
        item = db.get(CleanupQueueItem, item_id)
        db.refresh(item)
        item.last_error = message[:1000]
        if kind == ErrorKind.PERMANENT or item.attempts >= item.max_attempts:
            item.status = "permanently_failed"
            item.completed_at = utc_now()
            logger.error(
                "Cleanup %s (%s) permanently failed after %d attempt(s): %s",
                item.id, item.action, item.attempts, message,
            )
        else:
            item.status = "pending"
        db.commit()
        if item.status == "permanently_failed":
            self._run_exhausted_hook(db, item)
        return item.status

    def _run_exhausted_hook(self, db: Session, item: CleanupQueueItem) -> None:
        hook = self._on_exhausted.get(item.action)
        if hook is None:
            return
        try:
            hook(db, item)
        except Exception:
            logger.exception("Exhausted hook for cleanup %s (%s) failed", item.id, item.action)
            db.rollback()

    # ------------------------------------------------------------------
    # Built-in actions
    # ------------------------------------------------------------------

    def _asset_for(self, db: Session, item: CleanupQueueItem) -> Optional[MediaAsset]:
        if item.asset_id:
            return db.get(MediaAsset, item.asset_id)
        if item.external_id:
            return self._media.get_by_external_id(db, item.external_id)
        return None

    def _purge_remote(self, db: Session, item: CleanupQueueItem) -> str:
        asset = self._asset_for(db, item)
        external_id = item.external_id or (asset.external_id if asset else None)
        if not external_id:
            return SKIPPED
        if asset is not None and asset.deleted_at is None:
            # Row was restored after the delete was queued
            logger.info("Skipping purge of %s: catalog row is active", external_id)
            return SKIPPED

        resource_type = item.resource_type or (asset.resource_type if asset else None) or "image"
        deleted = self._store.delete(external_id, resource_type)
        if not deleted:
            logger.info("Purge of %s: already absent from store", external_id)
        if asset is not None:
            asset.sync_status = "synced"
            asset.last_synced_at = utc_now()
        return COMPLETED

    def _import_orphan(self, db: Session, item: CleanupQueueItem) -> str:
        existing = self._media.get_by_external_id(db, item.external_id)
        if existing is not None:
            # Tombstoned or already mirrored
            return SKIPPED
        try:
            store_asset = self._store.get(item.external_id, item.resource_type or "image")
        except AssetNotFoundError:
            return SKIPPED
        self._media.insert_from_store(db, store_asset)
        return COMPLETED

    def _verify_missing(self, db: Session, item: CleanupQueueItem) -> str:
        asset = self._asset_for(db, item)
        if asset is None or asset.deleted_at is not None or not asset.external_id:
            return SKIPPED

        try:
            store_asset = self._store.get(asset.external_id, asset.resource_type or "image")
        except AssetNotFoundError:
            deadline = item.not_before or (item.queued_at + self.missing_grace)
            if utc_now() < deadline:
                return DEFERRED
            self._media.soft_delete(asset)
            asset.sync_error_message = "missing from asset store"
            logger.warning(
                "Asset %s (%s) still missing from store after grace period; soft-deleted",
                asset.id, asset.external_id,
            )
            return COMPLETED

        apply_remote_changes(asset, store_changes(store_asset), store_asset.version)
        asset.sync_status = "synced"
        asset.sync_error_message = None
        asset.last_synced_at = utc_now()
        logger.info("Asset %s found in store again; restored to synced", asset.id)
        return COMPLETED
