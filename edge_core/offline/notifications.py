# =============================================================================
# edge_core/offline/notifications.py
# Notification Collaborator
# =============================================================================
"""
Notifier - fire-and-forget signals to whoever listens (UI, telemetry).

Listeners are called synchronously with ``(event_type, payload)``; their
failures are logged and swallowed so a broken listener can never disturb
the engine.
"""

from __future__ import annotations
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]

SYNC_COMPLETED = "sync_completed"
SYNC_FAILED = "sync_failed"
ONLINE = "online"
OFFLINE = "offline"
LIFECYCLE_CHANGED = "lifecycle_changed"
CACHE_CLEARED = "cache_cleared"
ERROR = "error"


class Notifier:
    """Keeps a listener list and a short history of recent events."""

    def __init__(self, history_size: int = 50, clock: Callable[[], float] = time.time):
        self._listeners: List[Listener] = []
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self._clock = clock

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def notify(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload or {}
        with self._lock:
            self._history.append({"type": event_type, "data": payload, "at": self._clock()})
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event_type, payload)
            except Exception as e:
                logger.error(f"Error in notification listener for '{event_type}': {e}")

    def recent(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._history)
        if event_type is None:
            return events
        return [e for e in events if e["type"] == event_type]
