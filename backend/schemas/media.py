"""Pydantic schemas for media assets and uploads."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MediaAssetResponse(BaseModel):
    """Catalog row as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: Optional[str] = None
    correlation_id: Optional[str] = None
    filename: str
    resource_type: str
    mime_type: Optional[str] = None
    format: Optional[str] = None
    folder: Optional[str] = None
    byte_size: Optional[int] = None
    checksum: Optional[str] = None
    version: Optional[int] = None
    secure_url: Optional[str] = None
    tags: Optional[list[str]] = None
    sync_status: str
    confirmation_state: str
    sync_error_message: Optional[str] = None
    sync_retry_count: int = 0
    last_synced_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UploadAcceptedResponse(BaseModel):
    """Returned immediately by ``POST /media/upload``."""

    temp_id: str
    asset_id: str
    operation_id: str
    sync_status: str = "pending"
