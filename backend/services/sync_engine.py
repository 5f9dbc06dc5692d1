"""Sync engine - builds and owns the long-lived sync components.

Created once in the app lifespan and stored on ``app.state``. Holds the
broadcaster, scheduler and background tasks so their lifetimes follow the
application's, with no module-level singletons.
"""

import logging
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from config import settings as default_settings
from integrations.asset_store_protocol import AssetStoreClient
from services.catalog_delete_handler import CatalogDeleteHandler
from services.cleanup_queue_service import CleanupQueueService
from services.cleanup_scheduler import CleanupScheduler, SchedulerConfig
from services.connection_status_service import ConnectionStatusService
from services.media_asset_service import MediaAssetService
from services.periodic import PeriodicTask
from services.realtime_broadcaster import RealtimeBroadcaster, install_change_capture
from services.realtime_subscriber import ConnectionState, RealtimeSubscriber
from services.reconciler import Reconciler
from services.sync_operation_service import SyncOperationService
from services.sync_status_service import SyncStatusService
from services.upload_coordinator import UploadCoordinator
from services.webhook_ingestor import WebhookIngestor

logger = logging.getLogger(__name__)


class SyncEngine:
    """Container for the sync components sharing one store and session factory."""

    def __init__(
        self,
        store: AssetStoreClient,
        session_factory: Callable[[], Session],
        settings=None,
        broadcaster: RealtimeBroadcaster | None = None,
    ):
        self.settings = settings or default_settings
        s = self.settings
        self.store = store
        self.session_factory = session_factory
        grace = timedelta(hours=s.MISSING_ASSET_GRACE_HOURS)

        self.broadcaster = broadcaster or RealtimeBroadcaster(queue_size=s.REALTIME_QUEUE_SIZE)
        self.operations = SyncOperationService()
        self.queue_service = CleanupQueueService(
            store,
            max_attempts=s.SCHEDULER_MAX_RETRIES,
            missing_grace=grace,
            claim_lease=timedelta(seconds=s.CLEANUP_CLAIM_LEASE_SECONDS),
        )
        self.media_service = MediaAssetService(self.queue_service)
        self.upload_coordinator = UploadCoordinator(
            store,
            self.queue_service,
            staging_dir=s.UPLOAD_STAGING_DIR,
            default_folder=s.DEFAULT_UPLOAD_FOLDER or None,
            media_service=self.media_service,
            operations=self.operations,
            session_factory=session_factory,
        )
        self.webhook_ingestor = WebhookIngestor(
            secret=s.WEBHOOK_SIGNING_SECRET,
            algorithm=s.WEBHOOK_SIGNATURE_ALGORITHM,
            max_skew_seconds=s.WEBHOOK_MAX_SKEW_SECONDS,
            media_service=self.media_service,
            operations=self.operations,
        )
        self.reconciler = Reconciler(
            store,
            self.queue_service,
            media_service=self.media_service,
            operations=self.operations,
            page_size=s.ASSET_STORE_PAGE_SIZE,
            missing_grace=grace,
        )
        self.scheduler = CleanupScheduler(
            SchedulerConfig.from_settings(s), session_factory, self.queue_service
        )
        self.status_service = SyncStatusService(self.media_service)
        self.connection_service = ConnectionStatusService()
        self.delete_subscriber = RealtimeSubscriber(
            "catalog-delete-propagation",
            connect=self.broadcaster.subscribe,
            handler=CatalogDeleteHandler(session_factory, self.queue_service),
            max_retries=s.REALTIME_MAX_RECONNECT_ATTEMPTS,
            base_delay=s.REALTIME_RECONNECT_BASE_DELAY_SECONDS,
            on_state_change=self.record_subscriber_state if s.REALTIME_TRACK_SUBSCRIBER_STATUS else None,
        )

        self._background: list[PeriodicTask] = []
        self._remove_capture: Callable[[], None] | None = None

    def install_change_capture(self, target=None) -> None:
        """Publish committed catalog changes made through ``target`` sessions."""
        if self._remove_capture is not None:
            return
        self._remove_capture = install_change_capture(target or self.session_factory, self.broadcaster)

    def start(self) -> None:
        s = self.settings
        self.install_change_capture()
        self.delete_subscriber.start()
        if self.scheduler.config.auto_start:
            self.scheduler.start()
        if s.RECONCILE_INTERVAL_SECONDS > 0:
            self._background.append(
                PeriodicTask("reconciler", s.RECONCILE_INTERVAL_SECONDS, self.run_reconcile)
            )
        if s.SNAPSHOT_INTERVAL_SECONDS > 0:
            self._background.append(
                PeriodicTask("sync-snapshots", s.SNAPSHOT_INTERVAL_SECONDS, self.take_snapshot)
            )
        if s.RETENTION_INTERVAL_SECONDS > 0:
            self._background.append(
                PeriodicTask("sync-retention", s.RETENTION_INTERVAL_SECONDS, self.purge_old_data)
            )
        for task in self._background:
            task.start()
        logger.info("Sync engine started (store=%s)", self.store.store_name)

    def stop(self) -> None:
        for task in self._background:
            task.stop()
        self._background.clear()
        self.scheduler.stop()
        self.delete_subscriber.stop()
        self.broadcaster.close()
        if self._remove_capture is not None:
            self._remove_capture()
            self._remove_capture = None
        logger.info("Sync engine stopped")

    def run_reconcile(self):
        db = self.session_factory()
        try:
            return self.reconciler.verify(
                db, auto_fix=self.settings.RECONCILE_AUTO_FIX, source="scheduled"
            )
        finally:
            db.close()

    def take_snapshot(self, snapshot_type: str = "hourly"):
        db = self.session_factory()
        try:
            snapshot = self.status_service.create_snapshot(db, snapshot_type)
            db.commit()
            return snapshot.id
        finally:
            db.close()

    def purge_old_data(self) -> dict[str, int]:
        db = self.session_factory()
        try:
            return self.status_service.purge_old_data(db, self.settings.DATA_RETENTION_DAYS)
        finally:
            db.close()

    def record_subscriber_state(self, old: ConnectionState, new: ConnectionState) -> None:
        """Mirror the delete-propagation subscriber's state into ``connection_status``."""
        if new == ConnectionState.CONNECTING:
            return
        subscriber = self.delete_subscriber
        db = self.session_factory()
        try:
            if new == ConnectionState.CONNECTED:
                self.connection_service.mark_connected(
                    db, subscriber.name, metadata={"kind": "internal_subscriber"}
                )
            else:
                self.connection_service.set_status(
                    db, subscriber.name, new.value, reconnect_attempts=subscriber.reconnect_attempts
                )
            db.commit()
        finally:
            db.close()
