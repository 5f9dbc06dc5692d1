"""Realtime fan-out of catalog row changes.

Change capture hooks SQLAlchemy session events: ``after_flush`` snapshots
the MediaAsset rows touched by the flush into ``session.info``,
``after_commit`` publishes them, and ``after_rollback`` discards them, so
subscribers only ever see committed state.
"""

import logging
import queue
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import event, inspect

from models import MediaAsset

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_change_events"
_ORIGIN_KEY = "change_origin"
DEFAULT_ORIGIN = "catalog"


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed change to one MediaAsset row."""

    change_type: ChangeType
    asset_id: str
    external_id: str | None
    correlation_id: str | None
    sync_status: str
    confirmation_state: str
    resource_type: str | None
    filename: str | None
    updated_at: datetime | None
    deleted_at: datetime | None
    origin: str  # "catalog" | "provider" | "upload" | "reconciler" | "scheduler"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["change_type"] = self.change_type.value
        for key in ("updated_at", "deleted_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def set_change_origin(session, origin: str) -> None:
    """Tag subsequent changes made through ``session`` with ``origin``."""
    session.info[_ORIGIN_KEY] = origin


def _snapshot(asset: MediaAsset, change_type: ChangeType, origin: str) -> ChangeEvent:
    return ChangeEvent(
        change_type=change_type,
        asset_id=asset.id,
        external_id=asset.external_id,
        correlation_id=asset.correlation_id,
        sync_status=asset.sync_status,
        confirmation_state=asset.confirmation_state,
        resource_type=asset.resource_type,
        filename=asset.filename,
        updated_at=asset.updated_at,
        deleted_at=asset.deleted_at,
        origin=origin,
    )


def _classify_dirty(asset: MediaAsset) -> ChangeType | None:
    """Return the change type for a flushed dirty row, or None to skip it."""
    history = inspect(asset).attrs.deleted_at.history
    if history.has_changes():
        previous = history.deleted[0] if history.deleted else None
        if previous is None and asset.deleted_at is not None:
            return ChangeType.DELETE
        if previous is not None and asset.deleted_at is None:
            return ChangeType.UPDATE  # restored
    if asset.deleted_at is not None:
        return None
    return ChangeType.UPDATE


def collect_changes(session) -> list[ChangeEvent]:
    """Build change events for the MediaAsset rows in the current flush."""
    origin = session.info.get(_ORIGIN_KEY, DEFAULT_ORIGIN)
    events = []
    for obj in session.new:
        if isinstance(obj, MediaAsset) and obj.deleted_at is None:
            events.append(_snapshot(obj, ChangeType.INSERT, origin))
    for obj in session.dirty:
        if not isinstance(obj, MediaAsset):
            continue
        if not session.is_modified(obj, include_collections=False):
            continue
        change_type = _classify_dirty(obj)
        if change_type is not None:
            events.append(_snapshot(obj, change_type, origin))
    for obj in session.deleted:
        if isinstance(obj, MediaAsset):
            events.append(_snapshot(obj, ChangeType.DELETE, origin))
    return events


class Subscription:
    """A bounded per-subscriber event queue.

    When the queue is full the oldest event is dropped so a slow consumer
    never blocks publishers.
    """

    def __init__(self, broadcaster: "RealtimeBroadcaster", maxsize: int):
        self._broadcaster = broadcaster
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, change: ChangeEvent) -> None:
        if self.closed:
            return
        while True:
            try:
                self._queue.put_nowait(change)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Return the next event, or None on timeout or once closed."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return item if isinstance(item, ChangeEvent) else None

    def close(self) -> None:
        """Detach from the broadcaster. Safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._broadcaster._remove(self)
        # Wake a consumer blocked in get()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass


class RealtimeBroadcaster:
    """Thread-safe fan-out of :class:`ChangeEvent` to subscriptions."""

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: set[Subscription] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._queue_size)
        with self._lock:
            if self._closed:
                sub._closed.set()
                return sub
            self._subscriptions.add(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(sub)

    def publish(self, change: ChangeEvent) -> None:
        with self._lock:
            if self._closed:
                return
            targets = list(self._subscriptions)
            self.published += 1
        for sub in targets:
            sub.offer(change)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            targets = list(self._subscriptions)
        for sub in targets:
            sub.close()


def install_change_capture(target, broadcaster: RealtimeBroadcaster):
    """Publish committed MediaAsset changes from sessions made by ``target``.

    Args:
        target: A ``sessionmaker`` or ``Session`` (class or instance).
        broadcaster: Where committed changes are published.

    Returns:
        A zero-argument callable that removes the listeners.
    """

    def after_flush(session, flush_context):
        changes = collect_changes(session)
        if changes:
            session.info.setdefault(_PENDING_KEY, []).extend(changes)

    def after_commit(session):
        changes = session.info.pop(_PENDING_KEY, [])
        for change in changes:
            broadcaster.publish(change)
        if changes:
            logger.debug("Published %d change event(s)", len(changes))

    def after_rollback(session):
        session.info.pop(_PENDING_KEY, None)

    event.listen(target, "after_flush", after_flush)
    event.listen(target, "after_commit", after_commit)
    event.listen(target, "after_rollback", after_rollback)

    def remove() -> None:
        event.remove(target, "after_flush", after_flush)
        event.remove(target, "after_commit", after_commit)
        event.remove(target, "after_rollback", after_rollback)

    return remove