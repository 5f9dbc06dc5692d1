"""Cleanup scheduler control and queue inspection endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_sync_engine
from database import get_db
from schemas import (
    CleanupQueueResponse,
    SchedulerActionRequest,
    SchedulerActionResponse,
    SchedulerStatusResponse,
)
from services.cleanup_scheduler import CleanupScheduler
from services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scheduler"])


def get_scheduler(engine: SyncEngine = Depends(get_sync_engine)) -> CleanupScheduler:
    return engine.scheduler


@router.get("/scheduler", response_model=SchedulerStatusResponse)
def get_scheduler_status(scheduler: CleanupScheduler = Depends(get_scheduler)):
    return scheduler.stats()


@router.post("/scheduler", response_model=SchedulerActionResponse)
def control_scheduler(
    request: SchedulerActionRequest,
    scheduler: CleanupScheduler = Depends(get_scheduler),
):
    """Start, stop, restart, reconfigure, or force a cleanup batch.

    Raises:
        HTTPException:
            - 400 Bad Request: Missing or invalid config for ``configure``
            - 409 Conflict: ``start`` while the scheduler is disabled
    """
    batch = None
    if request.action == "start":
        if not scheduler.start():
            raise HTTPException(status_code=409, detail="Scheduler is disabled.")
        message = "Scheduler started"
    elif request.action == "stop":
        scheduler.stop()
        message = "Scheduler stopped"
    elif request.action == "restart":
        scheduler.restart()
        message = "Scheduler restarted"
    elif request.action == "configure":
        if request.config is None:
            raise HTTPException(status_code=400, detail="configure requires a config object")
        changes = request.config.model_dump(exclude_none=True)
        try:
            scheduler.update_config(**changes)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        message = "Scheduler configuration updated"
    else:
        batch = scheduler.force_cleanup().to_dict()
        message = f"Cleanup batch processed {batch['claimed']} item(s)"

    return SchedulerActionResponse(
        action=request.action,
        message=message,
        status=scheduler.stats(),
        batch=batch,
    )


@router.get("/cleanup", response_model=CleanupQueueResponse)
def get_cleanup_queue(
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Queue counts per status plus the most recent items."""
    queue = engine.queue_service
    return {
        "counts": queue.stats(db),
        "items": queue.list_items(db, status=status, limit=limit),
    }
