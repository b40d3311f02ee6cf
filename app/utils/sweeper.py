"""Background thread that runs a cleanup callable on a fixed interval."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicSweeper:
    """Call ``sweep`` every ``interval_seconds`` on a daemon thread.

    Used to bound the memory of the rate limiters and the cache independently
    of how often they are accessed.
    """

    def __init__(self, name: str, sweep: Callable[[], int], interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self._sweep = sweep
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"sweeper-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run_once(self) -> int:
        removed = self._sweep()
        if removed:
            logger.debug("sweeper.removed", extra={"sweeper": self.name, "removed": removed})
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                # A failed sweep is retried on the next tick
                logger.exception("sweeper.failed", extra={"sweeper": self.name})
