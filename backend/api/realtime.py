"""WebSocket stream of catalog changes and realtime connection status."""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.helpers import get_sync_engine
from database import get_db
from schemas import ConnectionStatusResponse
from services.connection_status_service import CONNECTION_STATES
from services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

POLL_TIMEOUT_SECONDS = 1.0


def _record(engine: SyncEngine, action: str, client_id: str, **kwargs) -> None:
    db = engine.session_factory()
    try:
        getattr(engine.connection_service, action)(db, client_id, **kwargs)
        db.commit()
    finally:
        db.close()


@router.websocket("/ws/media")
async def media_changes(websocket: WebSocket, engine: SyncEngine = Depends(get_sync_engine)):
    """Stream committed media asset changes as JSON.

    Clients may send ``{"type": "ping"}``; each ping refreshes the
    connection's liveness row and is answered with ``{"type": "pong"}``.
    """
    await websocket.accept()
    client_id = websocket.query_params.get("client_id") or f"ws_{uuid.uuid4().hex[:12]}"
    user_agent = websocket.headers.get("user-agent")
    subscription = engine.broadcaster.subscribe()
    await run_in_threadpool(_record, engine, "mark_connected", client_id, user_agent=user_agent)
    await websocket.send_json({"type": "connected", "client_id": client_id})

    async def send_changes():
        while not subscription.closed:
            change = await run_in_threadpool(subscription.get, POLL_TIMEOUT_SECONDS)
            if change is not None:
                await websocket.send_json({"type": "change", **change.to_dict()})

    async def receive_pings():
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                latency = message.get("latency_ms")
                await run_in_threadpool(
                    _record, engine, "heartbeat", client_id,
                    latency_ms=latency if isinstance(latency, int) else None,
                )
                await websocket.send_json({"type": "pong"})

    tasks = [asyncio.create_task(send_changes()), asyncio.create_task(receive_pings())]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Realtime connection %s failed: %s", client_id, exc)
    finally:
        subscription.close()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await run_in_threadpool(_record, engine, "mark_disconnected", client_id)
        logger.info("Realtime client %s disconnected", client_id)


@router.get("/realtime/connections", response_model=list[ConnectionStatusResponse])
def list_connections(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    """Realtime client and subscriber liveness rows, most recently seen first."""
    if status is not None and status not in CONNECTION_STATES:
        raise HTTPException(status_code=400, detail=f"Unknown connection status: {status}")
    return engine.connection_service.list_connections(db, status=status)
