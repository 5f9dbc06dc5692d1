"""Pydantic schemas for realtime connection status."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectionStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    client_id: str
    status: str
    last_ping: Optional[datetime] = None
    connection_start: Optional[datetime] = None
    reconnect_attempts: int
    latency_ms: Optional[int] = None
    user_agent: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="connection_metadata")
    updated_at: Optional[datetime] = None
