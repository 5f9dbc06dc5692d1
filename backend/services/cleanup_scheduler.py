"""Cleanup scheduler - drains the cleanup queue on a timer.

An explicit service object owned by the app's lifespan. Batches run on a
background thread; a forced cleanup runs on the caller's thread and is
serialized with scheduled batches.
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import Session

from models import utc_now
from services.cleanup_queue_service import CleanupQueueService
from services.periodic import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class SchedulerConfig:
    enabled: bool = True
    interval_seconds: float = 300
    batch_size: int = 10
    max_retries: int = 3
    auto_start: bool = True
    health_check_interval_seconds: float = 60
    queue_warning_threshold: int = 20
    failure_warning_threshold: int = 10

    @classmethod
    def from_settings(cls, settings) -> "SchedulerConfig":
        return cls(
            enabled=settings.SCHEDULER_ENABLED,
            interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
            batch_size=settings.SCHEDULER_BATCH_SIZE,
            max_retries=settings.SCHEDULER_MAX_RETRIES,
            auto_start=settings.SCHEDULER_AUTO_START,
            health_check_interval_seconds=settings.SCHEDULER_HEALTH_CHECK_INTERVAL_SECONDS,
            queue_warning_threshold=settings.SCHEDULER_QUEUE_WARNING_THRESHOLD,
            failure_warning_threshold=settings.SCHEDULER_FAILURE_WARNING_THRESHOLD,
        )

    def validate(self) -> None:
        if self.interval_seconds <= 0 or self.health_check_interval_seconds <= 0:
            raise ValueError("intervals must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


@dataclass
class BatchResult:
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    permanently_failed: int = 0

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


class CleanupScheduler:
    """Recurring processor for :class:`~models.CleanupQueueItem` rows."""

    def __init__(
        self,
        config: SchedulerConfig,
        session_factory: Callable[[], Session],
        queue_service: CleanupQueueService,
    ):
        config.validate()
        self.config = config
        self._session_factory = session_factory
        self._queue = queue_service
        self._queue.max_attempts = config.max_retries

        self._state_lock = threading.RLock()
        self._batch_lock = threading.Lock()
        self._batch_task: PeriodicTask | None = None
        self._health_task: PeriodicTask | None = None

        self.started_at = None
        self.last_run = None
        self.total_processed = 0
        self.total_failed = 0

    @property
    def is_running(self) -> bool:
        return self._batch_task is not None and self._batch_task.is_running

    def start(self) -> bool:
        """Start the batch and health-check timers. Returns False if disabled."""
        with self._state_lock:
            if not self.config.enabled:
                logger.info("Cleanup scheduler is disabled; not starting")
                return False
            if self.is_running:
                return True
            self._batch_task = PeriodicTask(
                "cleanup-scheduler", self.config.interval_seconds, self.run_batch
            )
            self._health_task = PeriodicTask(
                "cleanup-health-check",
                self.config.health_check_interval_seconds,
                self.health_check,
            )
            self._batch_task.start()
            self._health_task.start()
            self.started_at = utc_now()
            logger.info(
                "Cleanup scheduler started (interval=%ss, batch_size=%d, max_retries=%d)",
                self.config.interval_seconds, self.config.batch_size, self.config.max_retries,
            )
            return True

    def stop(self) -> None:
        """Stop the timers; waits for an in-flight batch to finish."""
        with self._state_lock:
            for task in (self._batch_task, self._health_task):
                if task is not None:
                    task.stop()
            was_running = self._batch_task is not None
            self._batch_task = None
            self._health_task = None
            self.started_at = None
            if was_running:
                logger.info("Cleanup scheduler stopped")

    def restart(self) -> bool:
        with self._state_lock:
            self.stop()
            return self.start()

    def update_config(self, **changes) -> SchedulerConfig:
        """Apply config changes, restarting the timers if they were running.

        Raises:
            ValueError: On unknown keys or invalid values. The current
                config is left untouched.
        """
        known = {f.name for f in dataclasses.fields(SchedulerConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown scheduler config keys: {sorted(unknown)}")

        new_config = dataclasses.replace(self.config, **changes)
        new_config.validate()

        with self._state_lock:
            was_running = self.is_running
            self.stop()
            self.config = new_config
            self._queue.max_attempts = new_config.max_retries
            if was_running:
                self.start()
        logger.info("Cleanup scheduler config updated: %s", changes)
        return self.config

    def run_batch(self) -> BatchResult:
        """Process up to ``batch_size`` due items."""
        result = BatchResult()
        with self._batch_lock:
            db = self._session_factory()
            try:
                self._queue.recover_stale_claims(db)
                item_ids = self._queue.due_item_ids(db, self.config.batch_size)
                for item_id in item_ids:
                    outcome = self._queue.process_item(db, item_id)
                    if outcome == "not_claimed":
                        continue
                    result.claimed += 1
                    if outcome in ("completed", "skipped"):
                        result.succeeded += 1
                    else:
                        result.failed += 1
                        if outcome == "permanently_failed":
                            result.permanently_failed += 1
            finally:
                db.close()
            self.last_run = utc_now()
            self.total_processed += result.succeeded
            self.total_failed += result.failed

        if result.claimed:
            logger.info(
                "Cleanup batch: %d claimed, %d succeeded, %d failed",
                result.claimed, result.succeeded, result.failed,
            )
        return result

    def force_cleanup(self) -> BatchResult:
        """Run one batch now on the calling thread."""
        logger.info("Forced cleanup requested")
        return self.run_batch()

    def health_check(self) -> list[str]:
        """Log warnings when the queue backs up or failures pile up."""
        db = self._session_factory()
        try:
            counts = self._queue.stats(db)
        finally:
            db.close()

        warnings = []
        if counts["pending"] > self.config.queue_warning_threshold:
            warnings.append(f"cleanup queue backlog: {counts['pending']} pending items")
        if counts["permanently_failed"] > self.config.failure_warning_threshold:
            warnings.append(
                f"{counts['permanently_failed']} cleanup items need manual intervention"
            )
        for message in warnings:
            logger.warning("Cleanup health: %s", message)
        return warnings

    def stats(self) -> dict:
        db = self._session_factory()
        try:
            counts = self._queue.stats(db)
        finally:
            db.close()

        attempted = self.total_processed + self.total_failed
        uptime_minutes = 0.0
        if self.started_at is not None:
            uptime_minutes = round((utc_now() - self.started_at).total_seconds() / 60, 1)
        return {
            "is_running": self.is_running,
            "enabled": self.config.enabled,
            "last_run": self.last_run,
            "next_run": self._batch_task.next_run if self._batch_task else None,
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "success_rate": round(self.total_processed / attempted * 100, 1) if attempted else 100.0,
            "queue_size": counts["pending"],
            "permanently_failed": counts["permanently_failed"],
            "uptime_minutes": uptime_minutes,
            "config": dataclasses.asdict(self.config),
        }
