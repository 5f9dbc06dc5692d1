"""Asset provider webhook endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from api.helpers import get_sync_engine
from database import get_db
from services.sync_engine import SyncEngine
from services.webhook_ingestor import WebhookIngestor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def raw_body(request: Request) -> bytes:
    """The unparsed request body; signatures are computed over these bytes."""
    return await request.body()


def get_webhook_ingestor(engine: SyncEngine = Depends(get_sync_engine)) -> WebhookIngestor:
    return engine.webhook_ingestor


@router.post("/asset-provider")
def receive_asset_provider_webhook(
    body: bytes = Depends(raw_body),
    x_cld_signature: Optional[str] = Header(None),
    x_cld_timestamp: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
):
    """Receive a change notification from the asset store.

    Returns:
        200 once applied or harmlessly ignored.

    Raises:
        HTTPException:
            - 400 Bad Request: Signature, timestamp or payload rejected
            - 503 Service Unavailable: Catalog write failed; provider should redeliver
    """
    result = ingestor.handle(db, body, x_cld_signature, x_cld_timestamp)

    if result.outcome == "reject":
        raise HTTPException(status_code=400, detail=f"Webhook rejected: {result.message}")
    if result.outcome == "retry":
        raise HTTPException(
            status_code=503,
            detail="Webhook could not be processed. Please retry later.",
        )

    return {
        "status": "ok",
        "notification_type": result.notification_type,
        "asset_ids": result.asset_ids,
    }
