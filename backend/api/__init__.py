"""API route handlers."""
from . import media, realtime, scheduler, sync, webhooks

__all__ = ["media", "realtime", "scheduler", "sync", "webhooks"]
