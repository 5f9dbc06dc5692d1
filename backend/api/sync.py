"""Sync verification, status and operation endpoints."""

import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_sync_engine
from database import get_db
from schemas import (
    SnapshotRequest,
    SnapshotResponse,
    SyncOperationResponse,
    SyncStatusResponse,
    VerificationResponse,
    VerifyRequest,
)
from services.reconciler import Reconciler, VerificationReport
from services.sync_engine import SyncEngine
from services.sync_status_service import SyncStatusService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def get_reconciler(engine: SyncEngine = Depends(get_sync_engine)) -> Reconciler:
    return engine.reconciler


def get_status_service(engine: SyncEngine = Depends(get_sync_engine)) -> SyncStatusService:
    return engine.status_service


def _report_response(report: VerificationReport) -> dict:
    data = dataclasses.asdict(report)
    data["is_in_sync"] = report.is_in_sync
    return data


def _run_verify(db: Session, reconciler: Reconciler, auto_fix: bool) -> dict:
    try:
        report = reconciler.verify(db, auto_fix=auto_fix, source="manual")
    except Exception:
        # Never expose str(e)
        logger.error("Unexpected error during sync verification", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred during sync verification.",
        )
    return _report_response(report)


@router.get("/verify", response_model=VerificationResponse)
def verify_sync(
    db: Session = Depends(get_db),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Compare the asset store with the catalog without changing anything."""
    return _run_verify(db, reconciler, auto_fix=False)


@router.post("/verify", response_model=VerificationResponse)
def verify_and_fix_sync(
    request: VerifyRequest,
    db: Session = Depends(get_db),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """Compare the asset store with the catalog, optionally fixing drift."""
    return _run_verify(db, reconciler, auto_fix=request.wants_fix)


@router.get("/status", response_model=SyncStatusResponse)
def get_sync_status(
    db: Session = Depends(get_db),
    status_service: SyncStatusService = Depends(get_status_service),
):
    """Live sync health plus the most recent stored snapshot."""
    status = status_service.current_status(db)
    status["latest_snapshot"] = status_service.latest_snapshot(db)
    return status


@router.post("/snapshots", response_model=SnapshotResponse, status_code=201)
def create_snapshot(
    request: SnapshotRequest,
    db: Session = Depends(get_db),
    status_service: SyncStatusService = Depends(get_status_service),
):
    try:
        snapshot = status_service.create_snapshot(db, request.snapshot_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    db.refresh(snapshot)
    return snapshot


@router.get("/operations", response_model=list[SyncOperationResponse])
def list_operations(
    operation_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Recent sync operations, newest first."""
    return engine.operations.list_recent(
        db, limit=limit, operation_type=operation_type, status=status
    )
