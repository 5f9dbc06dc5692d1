"""Sync operation tracking - progress, counts and terminal transitions."""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from models import SyncOperation, utc_now

logger = logging.getLogger(__name__)

OPERATION_TYPES = frozenset({"upload", "delete", "update", "full_sync", "webhook"})
OPERATION_SOURCES = frozenset({"manual", "webhook", "api", "scheduled"})
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


class SyncOperationStateError(ValueError):
    """Raised on an illegal transition or count update of a sync operation."""

    pass


class SyncOperationService:
    """Create and advance :class:`SyncOperation` rows.

    All methods ``flush()``; committing is left to the caller.
    """

    def create(
        self,
        db: Session,
        operation_type: str,
        source: str = "api",
        total_items: int = 1,
        operation_data: dict | None = None,
        status: str = "pending",
    ) -> SyncOperation:
        if operation_type not in OPERATION_TYPES:
            raise ValueError(f"Unknown operation type: {operation_type!r}")
        if source not in OPERATION_SOURCES:
            raise ValueError(f"Unknown operation source: {source!r}")
        if total_items < 0:
            raise ValueError("total_items must be non-negative")

        now = utc_now()
        operation = SyncOperation(
            operation_type=operation_type,
            source=source,
            status=status,
            total_items=total_items,
            operation_data=operation_data or {},
            start_time=now if status == "in_progress" else None,
        )
        db.add(operation)
        db.flush()
        return operation

    def _check_mutable(self, operation: SyncOperation) -> None:
        if operation.status in TERMINAL_STATUSES:
            raise SyncOperationStateError(
                f"Sync operation {operation.id} is {operation.status} and cannot change"
            )

    def start(self, db: Session, operation: SyncOperation) -> SyncOperation:
        self._check_mutable(operation)
        if operation.status == "pending":
            operation.status = "in_progress"
            operation.start_time = utc_now()
        db.flush()
        return operation

    def update_progress(
        self,
        db: Session,
        operation: SyncOperation,
        progress: int | None = None,
        processed_items: int | None = None,
        failed_items: int | None = None,
        total_items: int | None = None,
    ) -> SyncOperation:
        """Advance progress and counts on a non-terminal operation.

        Progress is clamped to 0..100 and never moves backwards. Counts may
        only grow, and ``processed + failed`` may never exceed ``total``.

        Raises:
            SyncOperationStateError: If the operation is terminal or the
                counts would violate the invariant.
        """
        self._check_mutable(operation)

        new_total = operation.total_items if total_items is None else total_items
        new_processed = operation.processed_items if processed_items is None else processed_items
        new_failed = operation.failed_items if failed_items is None else failed_items

        if new_processed < operation.processed_items or new_failed < operation.failed_items:
            raise SyncOperationStateError("Item counts cannot decrease")
        if new_total < 0 or new_processed + new_failed > new_total:
            raise SyncOperationStateError(
                f"processed ({new_processed}) + failed ({new_failed}) exceeds total ({new_total})"
            )

        operation.total_items = new_total
        operation.processed_items = new_processed
        operation.failed_items = new_failed

        if progress is not None:
            clamped = max(0, min(100, int(progress)))
            operation.progress = max(operation.progress or 0, clamped)

        if operation.status == "pending":
            operation.status = "in_progress"
            operation.start_time = utc_now()

        done = new_processed + new_failed
        if operation.start_time is not None and 0 < done < new_total:
            elapsed = utc_now() - operation.start_time
            operation.estimated_completion = utc_now() + timedelta(
                seconds=elapsed.total_seconds() / done * (new_total - done)
            )

        db.flush()
        return operation

    def complete(
        self,
        db: Session,
        operation: SyncOperation,
        status: str = "completed",
        error_details: dict | None = None,
        operation_data: dict | None = None,
    ) -> SyncOperation:
        """Move an operation to a terminal status.

        ``completed`` forces progress to 100.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status!r}")
        self._check_mutable(operation)

        now = utc_now()
        operation.status = status
        operation.end_time = now
        operation.estimated_completion = None
        if operation.start_time is None:
            operation.start_time = now
        if status == "completed":
            operation.progress = 100
        if error_details is not None:
            operation.error_details = error_details
        if operation_data:
            operation.operation_data = {**(operation.operation_data or {}), **operation_data}

        db.flush()
        logger.debug("Sync operation %s (%s) -> %s", operation.id, operation.operation_type, status)
        return operation

    def record(
        self,
        db: Session,
        operation_type: str,
        source: str,
        status: str = "completed",
        operation_data: dict | None = None,
        error_details: dict | None = None,
    ) -> SyncOperation:
        """Create an already-terminal audit row in one step."""
        operation = self.create(db, operation_type, source=source, total_items=1, operation_data=operation_data)
        if status == "completed":
            operation.processed_items = 1
        elif status == "failed":
            operation.failed_items = 1
        return self.complete(db, operation, status=status, error_details=error_details)

    def list_recent(
        self,
        db: Session,
        limit: int = 50,
        operation_type: str | None = None,
        status: str | None = None,
    ) -> list[SyncOperation]:
        query = db.query(SyncOperation)
        if operation_type:
            query = query.filter(SyncOperation.operation_type == operation_type)
        if status:
            query = query.filter(SyncOperation.status == status)
        return query.order_by(SyncOperation.created_at.desc()).limit(limit).all()
