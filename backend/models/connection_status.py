"""ConnectionStatus model - liveness of realtime subscribers."""

from sqlalchemy import Column, DateTime, Integer, JSON, String

from database import Base
from models.utils import generate_uuid, utc_now


class ConnectionStatus(Base):
    """One realtime client connection, upserted on connect and heartbeat."""

    __tablename__ = "connection_status"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    client_id = Column(String, unique=True, index=True, nullable=False)
    status = Column(
        String, nullable=False, default="disconnected"
    )  # "connected" | "disconnected" | "reconnecting" | "error"
    last_ping = Column(DateTime, nullable=True)
    connection_start = Column(DateTime, nullable=True)
    reconnect_attempts = Column(Integer, nullable=False, default=0)
    latency_ms = Column(Integer, nullable=True)
    user_agent = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    connection_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
