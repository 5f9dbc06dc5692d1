"""Pydantic schemas for verification, status and operation endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class VerifyRequest(BaseModel):
    """Body for ``POST /sync/verify``.

    ``fix_missing_in_database`` and ``fix_conflicts`` are accepted as
    aliases of ``auto_fix`` for older clients.
    """

    auto_fix: bool = False
    fix_missing_in_database: bool = False
    fix_conflicts: bool = False

    @property
    def wants_fix(self) -> bool:
        return self.auto_fix or self.fix_missing_in_database or self.fix_conflicts


class ConflictResponse(BaseModel):
    external_id: str
    asset_id: str
    differences: dict[str, Any]


class FixResultsResponse(BaseModel):
    fixed_missing_in_db: int
    fixed_missing_in_cloud: int
    fixed_conflicts: int
    fix_errors: list[str]


class VerificationResponse(BaseModel):
    cloud_count: int
    db_count: int
    missing_in_db: list[str]
    missing_in_cloud: list[str]
    conflicts: list[ConflictResponse]
    listing_complete: bool
    listing_errors: list[str]
    recommendations: list[str]
    is_in_sync: bool
    fix_results: Optional[FixResultsResponse] = None
    operation_id: Optional[str] = None


class SyncOperationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    operation_type: str
    status: str
    source: str
    progress: int
    total_items: int
    processed_items: int
    failed_items: int
    operation_data: Optional[dict[str, Any]] = None
    error_details: Optional[dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SnapshotRequest(BaseModel):
    snapshot_type: str = "manual"


class SnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    snapshot_type: str
    total_assets: int
    synced_assets: int
    pending_assets: int
    error_assets: int
    active_operations: int
    system_health: str
    error_rate: float
    avg_sync_time_ms: Optional[int] = None
    performance_score: int
    created_at: Optional[datetime] = None


class SyncStatusResponse(BaseModel):
    total_assets: int
    synced_assets: int
    pending_assets: int
    error_assets: int
    active_operations: int
    error_rate: float
    avg_sync_time_ms: Optional[int] = None
    system_health: str
    performance_score: int
    latest_snapshot: Optional[SnapshotResponse] = None
