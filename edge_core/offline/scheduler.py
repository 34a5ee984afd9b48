# =============================================================================
# edge_core/offline/scheduler.py
# Timer Service for Background Work
# =============================================================================
"""
PeriodicTask - a cancellable interval timer on a daemon thread.

Replaces fire-and-forget intervals: the owner starts it, may trigger it
early with ``run_now()``, and ``cancel()`` stops it and joins the thread.
"""

from __future__ import annotations
import threading
from typing import Callable, Optional, Union
import logging

logger = logging.getLogger(__name__)

Interval = Union[float, Callable[[], float]]


class PeriodicTask:
    """
    Run ``func`` every ``interval`` seconds until cancelled.

    ``interval`` may be a callable so the period can follow state (e.g. a
    shorter probe interval while offline).
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], object],
        interval: Interval,
        run_immediately: bool = False,
    ):
        self.name = name
        self._func = func
        self._interval = interval
        self._run_immediately = run_immediately
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def interval(self) -> float:
        return float(self._interval() if callable(self._interval) else self._interval)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f"Timer '{self.name}' started (interval={self.interval:.0f}s)")

    def run_now(self) -> None:
        """Wake the timer so it runs before its interval elapses."""
        self._wake.set()

    def cancel(self, timeout: float = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug(f"Timer '{self.name}' cancelled")

    def tick(self) -> None:
        """Run the task once in the calling thread; errors are logged."""
        self.runs += 1
        try:
            self._func()
        except Exception as e:
            logger.error(f"Error in timer '{self.name}': {e}")

    def _loop(self) -> None:
        if self._run_immediately and not self._stop.is_set():
            self.tick()
        while not self._stop.is_set():
            self._wake.wait(timeout=self.interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.tick()
