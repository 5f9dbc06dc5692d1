"""Interval-driven background thread."""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from models import utc_now

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a callable every ``interval`` seconds on a daemon thread.

    Exceptions raised by the callable are logged and counted; the loop keeps
    running. ``stop()`` returns only after the current run has finished.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], object],
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._func = func
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.next_run: datetime | None = None
        self.last_run: datetime | None = None
        self.error_count = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Started %s (every %ss)", self.name, self.interval)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait for the in-flight run."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        self.next_run = None
        logger.info("Stopped %s", self.name)

    def _run_once(self) -> None:
        self.last_run = utc_now()
        try:
            self._func()
        except Exception:
            self.error_count += 1
            logger.exception("%s run failed", self.name)

    def _loop(self) -> None:
        if self._run_immediately:
            self._run_once()
        while True:
            self.next_run = utc_now() + timedelta(seconds=self.interval)
            if self._stop_event.wait(self.interval):
                break
            self._run_once()
