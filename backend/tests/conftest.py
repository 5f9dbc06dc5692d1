"""Pytest configuration and fixtures."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.helpers import get_sync_engine
from config import Settings
from database import Base, get_db
from main import app
from services.sync_engine import SyncEngine
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import WEBHOOK_SECRET, pending_asset, synced_asset  # noqa: F401
from tests.fixtures.mocks import MockAssetStore


@pytest.fixture(name="db_engine")
def db_engine_fixture():
    """Create an in-memory SQLite database shared by every session in a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine):
    """Sessionmaker bound to the test database (what background workers use)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create a session on the in-memory database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="store")
def store_fixture():
    """An empty in-memory asset store."""
    return MockAssetStore()


@pytest.fixture(name="test_settings")
def test_settings_fixture(tmp_path):
    """Settings with background work disabled and a temp staging dir."""
    with patch("config.get_credential", return_value=None):
        return Settings(
            _env_file=None,
            CLOUDINARY_CLOUD_NAME="demo",
            CLOUDINARY_API_KEY="key",
            CLOUDINARY_API_SECRET="secret",
            WEBHOOK_SIGNING_SECRET=WEBHOOK_SECRET,
            UPLOAD_STAGING_DIR=str(tmp_path / "staging"),
            SCHEDULER_AUTO_START=False,
            RECONCILE_INTERVAL_SECONDS=0,
            SNAPSHOT_INTERVAL_SECONDS=0,
            RETENTION_INTERVAL_SECONDS=0,
            REALTIME_TRACK_SUBSCRIBER_STATUS=False,
            REALTIME_RECONNECT_BASE_DELAY_SECONDS=0.01,
        )


@pytest.fixture(name="sync_engine")
def sync_engine_fixture(store, session_factory, test_settings):
    """A SyncEngine wired to the mock store and test database.

    Change capture is installed; the background subscriber is not started.
    """
    engine = SyncEngine(store, session_factory, settings=test_settings)
    engine.install_change_capture()
    try:
        yield engine
    finally:
        engine.stop()


@pytest.fixture(name="client")
def client_fixture(db, sync_engine):
    """Create a test client with the test database and sync engine."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_sync_engine():
        return sync_engine

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_engine] = override_get_sync_engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
