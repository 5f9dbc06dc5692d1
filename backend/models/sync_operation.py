"""SyncOperation model - progress and audit record for one unit of sync work."""

from sqlalchemy import Column, DateTime, Integer, JSON, String

from database import Base
from models.utils import generate_uuid, utc_now

TERMINAL_OPERATION_STATUSES = frozenset({"completed", "failed", "cancelled"})


class SyncOperation(Base):
    """A tracked sync operation (upload, delete, webhook delivery, full sync).

    Counts obey ``processed_items + failed_items <= total_items``; terminal
    rows are never mutated again.
    """

    __tablename__ = "sync_operations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    operation_type = Column(
        String, nullable=False
    )  # "upload" | "delete" | "update" | "full_sync" | "webhook"
    status = Column(
        String, nullable=False, default="pending"
    )  # "pending" | "in_progress" | "completed" | "failed" | "cancelled"
    source = Column(String, nullable=False, default="api")  # "manual" | "webhook" | "api" | "scheduled"
    progress = Column(Integer, nullable=False, default=0)  # 0-100
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    operation_data = Column(JSON, nullable=True)
    error_details = Column(JSON, nullable=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    estimated_completion = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OPERATION_STATUSES
