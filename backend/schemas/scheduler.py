"""Pydantic schemas for the cleanup scheduler endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict


class SchedulerConfigUpdate(BaseModel):
    """Partial scheduler config; unset fields are left unchanged."""

    enabled: Optional[bool] = None
    interval_seconds: Optional[float] = None
    batch_size: Optional[int] = None
    max_retries: Optional[int] = None
    auto_start: Optional[bool] = None
    health_check_interval_seconds: Optional[float] = None
    queue_warning_threshold: Optional[int] = None
    failure_warning_threshold: Optional[int] = None


class SchedulerActionRequest(BaseModel):
    action: Literal["start", "stop", "restart", "configure", "force_cleanup"]
    config: Optional[SchedulerConfigUpdate] = None


class SchedulerStatusResponse(BaseModel):
    is_running: bool
    enabled: bool
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_processed: int
    total_failed: int
    success_rate: float
    queue_size: int
    permanently_failed: int
    uptime_minutes: float
    config: dict[str, Any]


class SchedulerActionResponse(BaseModel):
    action: str
    message: str
    status: SchedulerStatusResponse
    batch: Optional[dict[str, int]] = None


class CleanupItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    asset_id: Optional[str] = None
    external_id: Optional[str] = None
    resource_type: Optional[str] = None
    reason: Optional[str] = None
    source: str
    status: str
    attempts: int
    max_attempts: int
    last_error: Optional[str] = None
    not_before: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CleanupQueueResponse(BaseModel):
    counts: dict[str, int]
    items: list[CleanupItemResponse]
