"""Shared utilities for ORM models."""

import uuid
from datetime import datetime, timezone


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current UTC time as a naive datetime.

    SQLite drops tzinfo on read, so every timestamp the engine writes is
    naive UTC to keep in-memory and reloaded values comparable.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
