"""Pydantic request/response schemas."""

from .media import MediaAssetResponse, UploadAcceptedResponse
from .realtime import ConnectionStatusResponse
from .scheduler import (
    CleanupItemResponse,
    CleanupQueueResponse,
    SchedulerActionRequest,
    SchedulerActionResponse,
    SchedulerConfigUpdate,
    SchedulerStatusResponse,
)
from .sync import (
    ConflictResponse,
    FixResultsResponse,
    SnapshotRequest,
    SnapshotResponse,
    SyncOperationResponse,
    SyncStatusResponse,
    VerificationResponse,
    VerifyRequest,
)

__all__ = [
    "CleanupItemResponse",
    "CleanupQueueResponse",
    "ConflictResponse",
    "ConnectionStatusResponse",
    "FixResultsResponse",
    "MediaAssetResponse",
    "SchedulerActionRequest",
    "SchedulerActionResponse",
    "SchedulerConfigUpdate",
    "SchedulerStatusResponse",
    "SnapshotRequest",
    "SnapshotResponse",
    "SyncOperationResponse",
    "SyncStatusResponse",
    "UploadAcceptedResponse",
    "VerificationResponse",
    "VerifyRequest",
]
