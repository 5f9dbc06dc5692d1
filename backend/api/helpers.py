"""Shared API helpers for route handlers."""

from typing import TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from database import Base
from services.sync_engine import SyncEngine

T = TypeVar("T", bound=Base)


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single entity by primary key or raise 404.

    Raises:
        HTTPException: 404 if the entity doesn't exist.
    """
    entity = db.query(model).filter(model.id == entity_id).first()
    if not entity:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def get_sync_engine(connection: HTTPConnection) -> SyncEngine:
    """Return the engine built by the app lifespan.

    Tests override this dependency with an engine bound to their database.

    Raises:
        HTTPException: 503 if the engine has not been started.
    """
    engine = getattr(connection.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine is not running.")
    return engine
