"""Tests for ConnectionStatusService."""

import pytest

from models import ConnectionStatus
from services.connection_status_service import ConnectionStatusService


@pytest.fixture
def service():
    return ConnectionStatusService()


def test_mark_connected_creates_row(db, service):
    row = service.mark_connected(db, "client-1", user_agent="pytest", metadata={"room": "media"})
    db.commit()

    stored = db.query(ConnectionStatus).filter_by(client_id="client-1").one()
    assert stored.id == row.id
    assert stored.status == "connected"
    assert stored.connection_start is not None
    assert stored.last_ping == stored.connection_start
    assert stored.user_agent == "pytest"
    assert stored.connection_metadata == {"room": "media"}


def test_mark_connected_is_an_upsert(db, service):
    service.set_status(db, "client-1", "reconnecting", reconnect_attempts=2)
    service.mark_connected(db, "client-1")
    db.commit()

    rows = db.query(ConnectionStatus).all()
    assert len(rows) == 1
    assert rows[0].status == "connected"
    assert rows[0].reconnect_attempts == 0


def test_heartbeat_updates_ping_and_latency(db, service):
    first = service.mark_connected(db, "client-1")
    connected_at = first.connection_start
    service.heartbeat(db, "client-1", latency_ms=42)
    db.commit()

    row = db.query(ConnectionStatus).filter_by(client_id="client-1").one()
    assert row.latency_ms == 42
    assert row.last_ping >= connected_at
    assert row.connection_start == connected_at


def test_heartbeat_revives_disconnected_client(db, service):
    service.mark_connected(db, "client-1")
    service.mark_disconnected(db, "client-1")
    row = service.heartbeat(db, "client-1")
    assert row.status == "connected"


def test_set_status_rejects_unknown_state(db, service):
    with pytest.raises(ValueError, match="connection status"):
        service.set_status(db, "client-1", "sleeping")


def test_mark_disconnected_unknown_client(db, service):
    assert service.mark_disconnected(db, "nobody") is None


def test_list_connections_filters_by_status(db, service):
    service.mark_connected(db, "a")
    service.mark_connected(db, "b")
    service.mark_disconnected(db, "b")
    db.commit()

    assert [r.client_id for r in service.list_connections(db, status="connected")] == ["a"]
    assert {r.client_id for r in service.list_connections(db)} == {"a", "b"}
