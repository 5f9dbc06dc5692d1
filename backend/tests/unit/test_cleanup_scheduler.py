"""Tests for CleanupScheduler batches, lifecycle and configuration."""

from datetime import timedelta

import pytest

from models import CleanupQueueItem, utc_now
from services.cleanup_queue_service import CleanupQueueService
from services.cleanup_scheduler import CleanupScheduler, SchedulerConfig
from tests.fixtures import make_asset
from tests.fixtures.mocks import MockAssetStore, make_store_asset


@pytest.fixture
def store():
    return MockAssetStore([make_store_asset(f"media/{i}") for i in range(5)])


@pytest.fixture
def queue(store):
    return CleanupQueueService(store)


def make_scheduler(session_factory, queue, **overrides) -> CleanupScheduler:
    config = SchedulerConfig(interval_seconds=3600, health_check_interval_seconds=3600, auto_start=False)
    for key, value in overrides.items():
        setattr(config, key, value)
    return CleanupScheduler(config, session_factory, queue)


def queue_purges(db, queue, count):
    for i in range(count):
        asset = make_asset(db, external_id=f"media/{i}", deleted_at=utc_now(), sync_status="pending")
        queue.enqueue(db, "purge_remote", asset_id=asset.id, external_id=asset.external_id)
    db.commit()


class TestSchedulerConfig:
    def test_from_settings(self, test_settings):
        config = SchedulerConfig.from_settings(test_settings)
        assert config.interval_seconds == 300
        assert config.batch_size == 10
        assert config.auto_start is False

    @pytest.mark.parametrize(
        "field,value",
        [("interval_seconds", 0), ("batch_size", 0), ("max_retries", 0), ("health_check_interval_seconds", -1)],
    )
    def test_validate_rejects(self, field, value):
        config = SchedulerConfig()
        setattr(config, field, value)
        with pytest.raises(ValueError):
            config.validate()


class TestRunBatch:
    def test_processes_due_items(self, db, session_factory, store, queue):
        queue_purges(db, queue, 2)
        scheduler = make_scheduler(session_factory, queue)

        result = scheduler.run_batch()

        assert result.to_dict() == {"claimed": 2, "succeeded": 2, "failed": 0, "permanently_failed": 0}
        assert "media/0" not in store.assets
        assert "media/1" not in store.assets
        assert scheduler.last_run is not None
        assert scheduler.total_processed == 2

    def test_respects_batch_size(self, db, session_factory, queue):
        queue_purges(db, queue, 3)
        scheduler = make_scheduler(session_factory, queue, batch_size=2)

        assert scheduler.run_batch().claimed == 2
        assert scheduler.force_cleanup().claimed == 1
        assert scheduler.force_cleanup().claimed == 0

    def test_counts_failures(self, db, session_factory, store, queue):
        scheduler = make_scheduler(session_factory, queue, max_retries=1)
        queue_purges(db, queue, 1)
        store.should_fail = True

        result = scheduler.run_batch()

        assert result.failed == 1
        assert result.permanently_failed == 1
        stats = scheduler.stats()
        assert stats["total_failed"] == 1
        assert stats["success_rate"] == 0.0
        assert stats["permanently_failed"] == 1
        item = db.query(CleanupQueueItem).one()
        db.refresh(item)
        assert item.status == "permanently_failed"

    def test_transient_failure_is_retried_next_batch(self, db, session_factory, store, queue):
        queue_purges(db, queue, 1)
        store.should_fail = True
        scheduler = make_scheduler(session_factory, queue)

        first = scheduler.run_batch()
        store.should_fail = False
        second = scheduler.run_batch()

        assert (first.failed, first.permanently_failed) == (1, 0)
        assert second.succeeded == 1

    def test_abandoned_claim_is_recovered_and_processed(self, db, session_factory, store, queue):
        queue_purges(db, queue, 1)
        item = db.query(CleanupQueueItem).one()
        assert queue.claim(db, item.id)
        db.refresh(item)
        item.updated_at = utc_now() - timedelta(hours=2)
        db.commit()
        scheduler = make_scheduler(session_factory, queue)

        result = scheduler.run_batch()

        assert result.succeeded == 1
        assert "media/0" not in store.assets
        db.refresh(item)
        assert item.status == "completed"
        assert item.attempts == 2


class TestHealthCheck:
    def test_warns_on_backlog_and_failures(self, db, session_factory, queue):
        queue_purges(db, queue, 2)
        scheduler = make_scheduler(
            session_factory, queue, queue_warning_threshold=1, failure_warning_threshold=0
        )
        warnings = scheduler.health_check()
        assert len(warnings) == 1
        assert "backlog" in warnings[0]

    def test_quiet_when_healthy(self, session_factory, queue):
        assert make_scheduler(session_factory, queue).health_check() == []


class TestLifecycle:
    def test_disabled_scheduler_does_not_start(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue, enabled=False)
        assert scheduler.start() is False
        assert scheduler.is_running is False

    def test_start_stop_restart(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue)
        try:
            assert scheduler.start() is True
            assert scheduler.is_running
            assert scheduler.start() is True
            assert scheduler.restart() is True
            assert scheduler.is_running
        finally:
            scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler.stats()["uptime_minutes"] == 0.0

    def test_stats_shape(self, session_factory, queue):
        stats = make_scheduler(session_factory, queue).stats()
        assert stats["is_running"] is False
        assert stats["queue_size"] == 0
        assert stats["success_rate"] == 100.0
        assert stats["config"]["batch_size"] == 10


class TestUpdateConfig:
    def test_updates_and_propagates_max_retries(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue)
        config = scheduler.update_config(batch_size=5, max_retries=7)
        assert config.batch_size == 5
        assert queue.max_attempts == 7

    def test_unknown_key_rejected(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue)
        with pytest.raises(ValueError, match="Unknown"):
            scheduler.update_config(colour="blue")

    def test_invalid_value_leaves_config_untouched(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue)
        with pytest.raises(ValueError):
            scheduler.update_config(batch_size=0)
        assert scheduler.config.batch_size == 10

    def test_running_scheduler_is_restarted(self, session_factory, queue):
        scheduler = make_scheduler(session_factory, queue)
        scheduler.start()
        try:
            scheduler.update_config(interval_seconds=1800)
            assert scheduler.is_running
            assert scheduler._batch_task.interval == 1800
        finally:
            scheduler.stop()
