"""SQLAlchemy ORM models."""

from .cleanup_queue_item import CleanupQueueItem
from .connection_status import ConnectionStatus
from .media_asset import MediaAsset
from .sync_operation import SyncOperation
from .sync_status_snapshot import SyncStatusSnapshot
from .utils import generate_uuid, utc_now

__all__ = ["CleanupQueueItem", "ConnectionStatus", "MediaAsset", "SyncOperation", "SyncStatusSnapshot", "generate_uuid", "utc_now"]
