"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import media, realtime, scheduler, sync, webhooks
from database import get_session_local
from integrations.cloudinary_client import CloudinaryClient
from logging_config import setup_logging
from services.sync_engine import SyncEngine

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the sync engine and run its background workers for the app's lifetime."""
    store = CloudinaryClient()
    if not store.is_configured():
        logger.warning(
            "Cloudinary credentials are not configured; uploads and verification will fail "
            "until they are set (python -m scripts.setup_cloudinary)"
        )
    engine = SyncEngine(store, get_session_local())
    engine.start()
    app.state.sync_engine = engine
    try:
        yield
    finally:
        engine.stop()
        app.state.sync_engine = None


app = FastAPI(
    title="Media Sync",
    description="Bidirectional sync between the asset store and the media catalog",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for the admin frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(media.router)
app.include_router(realtime.router)
app.include_router(scheduler.router)
app.include_router(sync.router)
app.include_router(webhooks.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
