"""Test fixtures and sample data."""
from datetime import datetime

import pytest
from sqlalchemy.orm import Session

from models import MediaAsset
from services.realtime_broadcaster import ChangeEvent, ChangeType

WEBHOOK_SECRET = "test-webhook-secret"


def make_asset(db: Session, **overrides) -> MediaAsset:
    """Insert and commit a MediaAsset row.

    Defaults describe a synced image; pass ``external_id=None`` together
    with ``sync_status="pending"`` for an unconfirmed upload.
    """
    data = {
        "external_id": "media/photo_1",
        "filename": "photo.jpg",
        "resource_type": "image",
        "format": "jpg",
        "folder": "media",
        "byte_size": 2048,
        "checksum": "etag-photo_1",
        "version": 1700000000,
        "tags": [],
        "sync_status": "synced",
        "confirmation_state": "confirmed",
    }
    data.update(overrides)
    asset = MediaAsset(**data)
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


@pytest.fixture
def synced_asset(db: Session) -> MediaAsset:
    """A confirmed row bound to store resource ``media/photo_1``."""
    return make_asset(db)


@pytest.fixture
def pending_asset(db: Session) -> MediaAsset:
    """An optimistic row still waiting for the store to confirm it."""
    return make_asset(
        db,
        external_id=None,
        correlation_id="temp_abc123",
        filename="sunset.jpg",
        checksum=None,
        version=None,
        sync_status="pending",
        confirmation_state="pending",
    )


def make_change_event(asset_id: str = "a1", change_type: ChangeType | None = None, **overrides) -> ChangeEvent:
    """Build a ChangeEvent for broadcaster and subscriber tests."""
    data = {
        "change_type": change_type or ChangeType.UPDATE,
        "asset_id": asset_id,
        "external_id": "media/a",
        "correlation_id": None,
        "sync_status": "synced",
        "confirmation_state": "confirmed",
        "resource_type": "image",
        "filename": "a.jpg",
        "updated_at": datetime(2024, 6, 25, 8, 40, 55),
        "deleted_at": None,
        "origin": "catalog",
    }
    data.update(overrides)
    return ChangeEvent(**data)
