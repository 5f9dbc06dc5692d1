"""Realtime subscriber - connection state machine around a change feed.

States: ``disconnected -> connecting -> connected``; a transport error moves
``connected -> reconnecting`` and retries with a growing delay; once the
retries are exhausted the subscriber parks in ``error`` until ``reset()``.
"""

import logging
import threading
from collections import OrderedDict
from enum import Enum
from typing import Callable, Optional, Protocol

from services.realtime_broadcaster import ChangeEvent

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class ChangeFeed(Protocol):
    """What a transport factory returns (e.g. a broadcaster Subscription)."""

    @property
    def closed(self) -> bool: ...

    def get(self, timeout: float | None = None) -> Optional[ChangeEvent]: ...

    def close(self) -> None: ...


class FeedClosedError(ConnectionError):
    """The change feed was closed underneath the subscriber."""


class RealtimeSubscriber:
    """Consume a change feed on one dispatch thread and apply each change once.

    Args:
        name: Thread name, also used in log lines.
        connect: Transport factory returning a fresh :class:`ChangeFeed`.
        handler: Called once per distinct change.
        max_retries: Reconnect attempts before entering ``error``.
        base_delay: Delay before the first reconnect; attempt *n* waits
            ``base_delay * n`` seconds.
        on_state_change: Optional callback ``(old, new)``.
    """

    def __init__(
        self,
        name: str,
        connect: Callable[[], ChangeFeed],
        handler: Callable[[ChangeEvent], object],
        max_retries: int = 3,
        base_delay: float = 2.0,
        poll_timeout: float = 0.5,
        on_state_change: Optional[Callable[[ConnectionState, ConnectionState], None]] = None,
        dedupe_capacity: int = 10_000,
    ):
        self.name = name
        self._connect = connect
        self._handler = handler
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._poll_timeout = poll_timeout
        self.on_state_change = on_state_change
        self._dedupe_capacity = dedupe_capacity

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._feed: ChangeFeed | None = None
        self._seen: OrderedDict = OrderedDict()

        self.reconnect_attempts = 0
        self.applied = 0
        self.duplicates = 0
        self.handler_errors = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, new: ConnectionState) -> None:
        with self._state_lock:
            old = self._state
            if old == new:
                return
            self._state = new
        logger.info("%s: %s -> %s", self.name, old.value, new.value)
        if self.on_state_change is not None:
            try:
                self.on_state_change(old, new)
            except Exception:
                logger.warning("%s: state callback failed", self.name, exc_info=True)

    def start(self) -> None:
        """Begin connecting. No-op unless ``disconnected``."""
        if self._state != ConnectionState.DISCONNECTED or self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Close the feed immediately and wait for the dispatch thread."""
        self._stop_event.set()
        feed = self._feed
        if feed is not None:
            feed.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self._feed = None
        self._set_state(ConnectionState.DISCONNECTED)

    def reset(self) -> None:
        """Restart the cycle from ``disconnected`` (e.g. after network recovery)."""
        self.stop()
        self.reconnect_attempts = 0
        self.start()

    # ------------------------------------------------------------------

    def _run(self) -> None:
        attempts = 0
        self._set_state(ConnectionState.CONNECTING)
        while not self._stop_event.is_set():
            try:
                self._feed = self._connect()
            except Exception as exc:
                logger.warning("%s: connect failed: %s", self.name, exc)
                attempts += 1
                if not self._backoff(attempts):
                    return
                continue

            self._set_state(ConnectionState.CONNECTED)
            attempts = 0
            self.reconnect_attempts = 0
            try:
                self._dispatch(self._feed)
            except Exception as exc:
                if self._stop_event.is_set():
                    break
                logger.warning("%s: feed failed: %s", self.name, exc)
                attempts += 1
                if not self._backoff(attempts):
                    return
            finally:
                feed, self._feed = self._feed, None
                if feed is not None:
                    feed.close()

    def _backoff(self, attempts: int) -> bool:
        """Wait before the next attempt. Returns False once retries are exhausted."""
        self.reconnect_attempts = attempts
        if attempts > self.max_retries:
            self._set_state(ConnectionState.ERROR)
            logger.error("%s: giving up after %d reconnect attempts", self.name, self.max_retries)
            self._thread = None
            return False
        self._set_state(ConnectionState.RECONNECTING)
        delay = self.base_delay * attempts
        return not self._stop_event.wait(delay)

    def _dispatch(self, feed: ChangeFeed) -> None:
        while not self._stop_event.is_set():
            change = feed.get(timeout=self._poll_timeout)
            if change is None:
                if feed.closed and not self._stop_event.is_set():
                    raise FeedClosedError("change feed closed")
                continue
            self._apply(change)

    def _apply(self, change: ChangeEvent) -> None:
        key = (change.asset_id, change.updated_at, change.change_type)
        if key in self._seen:
            self.duplicates += 1
            return
        self._seen[key] = True
        if len(self._seen) > self._dedupe_capacity:
            self._seen.popitem(last=False)
        try:
            self._handler(change)
            self.applied += 1
        except Exception:
            self.handler_errors += 1
            logger.exception("%s: handler failed for asset %s", self.name, change.asset_id)
