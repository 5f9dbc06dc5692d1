"""SyncStatusSnapshot model - append-only point-in-time health record."""

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String

from database import Base
from models.utils import generate_uuid, utc_now


class SyncStatusSnapshot(Base):
    """Aggregate sync health at a point in time. Rows are never updated."""

    __tablename__ = "sync_status_snapshots"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    snapshot_type = Column(String, nullable=False)  # "hourly" | "daily" | "manual" | "error"
    total_assets = Column(Integer, nullable=False, default=0)
    synced_assets = Column(Integer, nullable=False, default=0)
    pending_assets = Column(Integer, nullable=False, default=0)
    error_assets = Column(Integer, nullable=False, default=0)
    active_operations = Column(Integer, nullable=False, default=0)
    system_health = Column(String, nullable=False)  # "healthy" | "warning" | "critical"
    error_rate = Column(Float, nullable=False, default=0.0)  # Percent of active assets in error
    avg_sync_time_ms = Column(Integer, nullable=True)
    performance_score = Column(Integer, nullable=False, default=100)  # 0-100
    snapshot_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now, index=True)
