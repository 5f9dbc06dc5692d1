"""CleanupQueueItem model - durable retry/cleanup work item."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, Text

from database import Base
from models.utils import generate_uuid, utc_now


class CleanupQueueItem(Base):
    """A unit of deferred reconciliation work processed by the scheduler.

    Items are claimed with a compare-and-set on ``status`` so at most one
    worker processes an item at a time.
    """

    __tablename__ = "cleanup_queue"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    action = Column(
        String, nullable=False
    )  # "retry_upload" | "purge_remote" | "import_orphan" | "verify_missing"
    asset_id = Column(String(36), ForeignKey("media_assets.id"), nullable=True, index=True)
    external_id = Column(String, nullable=True)
    resource_type = Column(String, nullable=True)
    reason = Column(String, nullable=True)
    source = Column(String, nullable=False, default="api")  # "upload" | "catalog" | "reconciler" | "realtime"
    status = Column(
        String, nullable=False, default="pending", index=True
    )  # "pending" | "in_progress" | "completed" | "skipped" | "permanently_failed"
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    not_before = Column(DateTime, nullable=True)  # Not processed before this time
    queued_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
    completed_at = Column(DateTime, nullable=True)
