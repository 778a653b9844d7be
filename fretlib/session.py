from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Event, Lock
from typing import Optional

from .models import ScannerBusy

logger = logging.getLogger(__name__)


class ScanSession:
    """Owns the "scan in progress" state shared by discovery and processing.

    Only one run may hold the session at a time. The stop event is the
    cooperative cancellation flag polled by the walkers.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._active: Optional[str] = None
        self.stop_event = Event()

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def active_operation(self) -> Optional[str]:
        return self._active

    @property
    def should_stop(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        if self._active is not None:
            logger.info("Stop requested for %s", self._active)
        self.stop_event.set()

    @contextmanager
    def running(self, operation: str) -> Iterator[Event]:
        if not self._lock.acquire(blocking=False):
            raise ScannerBusy(
                f"Cannot start {operation}: {self._active or 'another run'} is already running"
            )
        self._active = operation
        self.stop_event.clear()
        logger.debug("Scan session acquired for %s", operation)
        try:
            yield self.stop_event
        finally:
            self._active = None
            self.stop_event.clear()
            self._lock.release()
            logger.debug("Scan session released after %s", operation)
