"""Propagates catalog-side deletes to the asset store."""

import logging
from typing import Callable

from sqlalchemy.orm import Session

from services.cleanup_queue_service import CleanupQueueService
from services.realtime_broadcaster import ChangeEvent, ChangeType

logger = logging.getLogger(__name__)


class CatalogDeleteHandler:
    """Best-effort store delete for rows deleted from the catalog side.

    Work goes through the cleanup queue's claim, so a concurrent scheduler
    batch can never delete the same resource twice. If the attempt fails the
    item stays queued for the scheduler.
    """

    def __init__(self, session_factory: Callable[[], Session], queue_service: CleanupQueueService):
        self._session_factory = session_factory
        self._queue = queue_service

    def __call__(self, change: ChangeEvent) -> str | None:
        if change.change_type != ChangeType.DELETE or change.origin != "catalog":
            return None
        if not change.external_id:
            return None

        db = self._session_factory()
        try:
            item = self._queue.find_open(db, "purge_remote", asset_id=change.asset_id)
            if item is None:
                item = self._queue.enqueue(
                    db,
                    "purge_remote",
                    asset_id=change.asset_id,
                    external_id=change.external_id,
                    resource_type=change.resource_type,
                    reason="catalog delete event",
                    source="realtime",
                )
                db.commit()
            outcome = self._queue.process_item(db, item.id)
        finally:
            db.close()

        logger.info("Catalog delete of %s propagated: %s", change.external_id, outcome)
        return outcome
