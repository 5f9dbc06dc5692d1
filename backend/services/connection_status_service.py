"""Connection status service - realtime client liveness rows."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import ConnectionStatus, utc_now

logger = logging.getLogger(__name__)

CONNECTION_STATES = frozenset({"connected", "disconnected", "reconnecting", "error"})


class ConnectionStatusService:
    """Upsert :class:`ConnectionStatus` rows. Methods flush; callers commit."""

    def _get_or_create(self, db: Session, client_id: str) -> ConnectionStatus:
        row = db.query(ConnectionStatus).filter_by(client_id=client_id).first()
        if row is None:
            row = ConnectionStatus(client_id=client_id, status="disconnected")
            db.add(row)
        return row

    def mark_connected(
        self,
        db: Session,
        client_id: str,
        user_agent: str | None = None,
        metadata: dict | None = None,
    ) -> ConnectionStatus:
        row = self._get_or_create(db, client_id)
        now = utc_now()
        row.status = "connected"
        row.connection_start = now
        row.last_ping = now
        row.reconnect_attempts = 0
        if user_agent is not None:
            row.user_agent = user_agent
        if metadata is not None:
            row.connection_metadata = metadata
        db.flush()
        return row

    def heartbeat(self, db: Session, client_id: str, latency_ms: int | None = None) -> ConnectionStatus:
        row = self._get_or_create(db, client_id)
        row.last_ping = utc_now()
        if row.status != "connected":
            row.status = "connected"
            row.connection_start = row.connection_start or row.last_ping
        if latency_ms is not None:
            row.latency_ms = latency_ms
        db.flush()
        return row

    def set_status(
        self,
        db: Session,
        client_id: str,
        status: str,
        reconnect_attempts: int | None = None,
    ) -> ConnectionStatus:
        if status not in CONNECTION_STATES:
            raise ValueError(f"Unknown connection status: {status!r}")
        row = self._get_or_create(db, client_id)
        row.status = status
        if reconnect_attempts is not None:
            row.reconnect_attempts = reconnect_attempts
        db.flush()
        return row

    def mark_disconnected(self, db: Session, client_id: str) -> Optional[ConnectionStatus]:
        row = db.query(ConnectionStatus).filter_by(client_id=client_id).first()
        if row is None:
            return None
        row.status = "disconnected"
        db.flush()
        return row

    def list_connections(self, db: Session, status: str | None = None) -> list[ConnectionStatus]:
        query = db.query(ConnectionStatus)
        if status:
            query = query.filter(ConnectionStatus.status == status)
        return query.order_by(ConnectionStatus.last_ping.desc()).all()
