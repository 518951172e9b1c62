"""Recurring sync trigger running on a background thread."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from adguard_sync.sync import SyncAlreadyRunningError, Worker

logger = logging.getLogger(__name__)


class IntervalScheduler:
    """Calls ``worker.run_sync()`` every ``interval`` seconds.

    With ``run_on_start`` the first pass starts right away, otherwise after
    the first interval. An interval of 0 disables the recurring schedule, so
    at most the start-up pass runs.
    """

    def __init__(self, worker: Worker, interval: float, run_on_start: bool = True) -> None:
        self._worker = worker
        self._interval = interval
        self._run_on_start = run_on_start

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._ticks = 0

    @property
    def ticks(self) -> int:
        with self._lock:
            return self._ticks

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="SyncScheduler", daemon=True)
        self._thread.start()
        if self._interval > 0:
            logger.info(f"Scheduler started: interval={self._interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking. A pass that is already running is not interrupted."""
        self._stop.set()
        t = self._thread
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=timeout)
        logger.info("Scheduler stopped")

    def _tick(self) -> None:
        with self._lock:
            self._ticks += 1
        try:
            self._worker.run_sync()
        except SyncAlreadyRunningError:
            logger.info("Skipping scheduled sync: a sync is already running")
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}", exc_info=True)

    def _loop(self) -> None:
        if self._run_on_start and not self._stop.is_set():
            logger.info("Running sync on startup")
            self._tick()

        if self._interval <= 0:
            return

        while not self._stop.wait(self._interval):
            self._tick()
