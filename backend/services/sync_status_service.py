"""Sync status service - live health summary and append-only snapshots."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from models import CleanupQueueItem, SyncOperation, SyncStatusSnapshot, utc_now
from models.sync_operation import TERMINAL_OPERATION_STATUSES
from services.media_asset_service import MediaAssetService

logger = logging.getLogger(__name__)

SNAPSHOT_TYPES = frozenset({"hourly", "daily", "manual", "error"})

# Health thresholds
WARNING_ERROR_RATE = 5.0  # percent
CRITICAL_ERROR_RATE = 20.0
WARNING_PENDING = 20
CRITICAL_PENDING = 100
LATENCY_SAMPLE_SIZE = 100


def classify_health(error_rate: float, pending: int) -> str:
    if error_rate >= CRITICAL_ERROR_RATE or pending >= CRITICAL_PENDING:
        return "critical"
    if error_rate >= WARNING_ERROR_RATE or pending >= WARNING_PENDING:
        return "warning"
    return "healthy"


def performance_score(error_rate: float, pending: int, avg_sync_time_ms: int | None) -> int:
    """Score 0-100; error rate weighs most, then backlog, then latency."""
    score = 100.0
    score -= min(60.0, error_rate * 2)
    score -= min(20.0, pending * 0.2)
    if avg_sync_time_ms:
        score -= min(20.0, avg_sync_time_ms / 1000)
    return max(0, min(100, int(round(score))))


class SyncStatusService:
    """Compute sync health and record snapshots."""

    def __init__(self, media_service: Optional[MediaAssetService] = None):
        self._media = media_service or MediaAssetService()

    def _avg_sync_time_ms(self, db: Session) -> int | None:
        ops = (
            db.query(SyncOperation)
            .filter(
                SyncOperation.operation_type == "upload",
                SyncOperation.status == "completed",
                SyncOperation.start_time.isnot(None),
                SyncOperation.end_time.isnot(None),
            )
            .order_by(SyncOperation.end_time.desc())
            .limit(LATENCY_SAMPLE_SIZE)
            .all()
        )
        if not ops:
            return None
        total = sum((op.end_time - op.start_time).total_seconds() for op in ops)
        return int(total / len(ops) * 1000)

    def current_status(self, db: Session) -> dict:
        """Live counts and derived health, without persisting anything."""
        counts = self._media.count_by_status(db)
        active_operations = (
            db.query(SyncOperation)
            .filter(SyncOperation.status.in_(("pending", "in_progress")))
            .count()
        )
        error_rate = round(counts["error"] / counts["total"] * 100, 2) if counts["total"] else 0.0
        avg_ms = self._avg_sync_time_ms(db)
        return {
            "total_assets": counts["total"],
            "synced_assets": counts["synced"],
            "pending_assets": counts["pending"],
            "error_assets": counts["error"],
            "active_operations": active_operations,
            "error_rate": error_rate,
            "avg_sync_time_ms": avg_ms,
            "system_health": classify_health(error_rate, counts["pending"]),
            "performance_score": performance_score(error_rate, counts["pending"], avg_ms),
        }

    def create_snapshot(
        self, db: Session, snapshot_type: str = "manual", metadata: dict | None = None
    ) -> SyncStatusSnapshot:
        """Append a snapshot of the current status (flushed, not committed)."""
        if snapshot_type not in SNAPSHOT_TYPES:
            raise ValueError(f"Unknown snapshot type: {snapshot_type!r}")
        status = self.current_status(db)
        snapshot = SyncStatusSnapshot(
            snapshot_type=snapshot_type,
            snapshot_metadata=metadata or {},
            **status,
        )
        db.add(snapshot)
        db.flush()
        logger.info(
            "Sync snapshot (%s): health=%s error_rate=%.1f%% pending=%d",
            snapshot_type, snapshot.system_health, snapshot.error_rate, snapshot.pending_assets,
        )
        return snapshot

    def latest_snapshot(self, db: Session) -> Optional[SyncStatusSnapshot]:
        return db.query(SyncStatusSnapshot).order_by(SyncStatusSnapshot.created_at.desc()).first()

    def purge_old_data(self, db: Session, days_to_keep: int = 30) -> dict[str, int]:
        """Delete finished history older than ``days_to_keep`` days.

        Removes terminal sync operations, snapshots, and completed or skipped
        cleanup items. Open work and permanently failed items are kept.
        Commits and returns the number of rows removed per table.
        """
        if days_to_keep < 1:
            raise ValueError("days_to_keep must be at least 1")
        cutoff = utc_now() - timedelta(days=days_to_keep)

        removed = {
            "sync_operations": (
                db.query(SyncOperation)
                .filter(
                    SyncOperation.status.in_(TERMINAL_OPERATION_STATUSES),
                    SyncOperation.created_at < cutoff,
                )
                .delete(synchronize_session=False)
            ),
            "sync_status_snapshots": (
                db.query(SyncStatusSnapshot)
                .filter(SyncStatusSnapshot.created_at < cutoff)
                .delete(synchronize_session=False)
            ),
            "cleanup_queue": (
                db.query(CleanupQueueItem)
                .filter(
                    CleanupQueueItem.status.in_(("completed", "skipped")),
                    CleanupQueueItem.completed_at < cutoff,
                )
                .delete(synchronize_session=False)
            ),
        }
        db.commit()
        logger.info("Purged history older than %d days: %s", days_to_keep, removed)
        return removed
