"""Media asset API endpoints."""

import logging
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
)
from sqlalchemy.orm import Session

from api.helpers import get_or_404, get_sync_engine
from database import get_db
from models import MediaAsset
from schemas import MediaAssetResponse, UploadAcceptedResponse
from services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


@router.post("/upload", response_model=UploadAcceptedResponse, status_code=202)
def upload_media(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    folder: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Accept an upload and return before the asset store has it.

    The catalog row is created as ``pending`` and the store upload runs in
    the background; progress is visible through ``/ws/media`` and
    ``/sync/operations``.
    """
    content = file.file.read()
    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    try:
        result = engine.upload_coordinator.submit(
            db,
            filename=file.filename or "",
            content=content,
            destination_folder=folder,
            mime_type=file.content_type,
            tags=tag_list,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(
        engine.upload_coordinator.process_in_new_session,
        result.asset_id,
        result.operation_id,
    )
    return UploadAcceptedResponse(
        temp_id=result.temp_id,
        asset_id=result.asset_id,
        operation_id=result.operation_id,
    )


@router.get("", response_model=list[MediaAssetResponse])
def list_media(
    sync_status: Optional[str] = Query(None, pattern="^(pending|synced|error)$"),
    folder: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """List active (not deleted) assets."""
    return engine.media_service.list_active(
        db, sync_status=sync_status, folder=folder, limit=limit, offset=offset
    )


@router.get("/{asset_id}", response_model=MediaAssetResponse)
def get_media(asset_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, MediaAsset, asset_id, detail="Asset not found")


@router.delete("/{asset_id}", response_model=MediaAssetResponse)
def delete_media(
    asset_id: str,
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Soft-delete an asset; the store copy is purged asynchronously."""
    asset = engine.media_service.delete_asset(db, asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    db.commit()
    db.refresh(asset)
    return asset
