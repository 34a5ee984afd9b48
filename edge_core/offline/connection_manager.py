# =============================================================================
# edge_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors connectivity to the remote store.

Features:
- Pluggable reachability probe (TCP connect by default)
- Platform online/offline signals via set_online()
- Periodic health checks on a cancellable timer
- Callbacks fired only on status transitions
"""

from __future__ import annotations
import socket
import threading
import time
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlparse
import logging

from edge_core.offline import notifications
from edge_core.offline.models import ConnectivityState
from edge_core.offline.scheduler import PeriodicTask

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]

PROBE_HOSTS = [
    ("8.8.8.8", 53),        # Google DNS
    ("1.1.1.1", 53),        # Cloudflare DNS
    ("208.67.222.222", 53), # OpenDNS
]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"     # Initial state


def _can_connect(host: str, port: int, timeout: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def tcp_probe(remote_url: str = "", timeout: float = 5.0) -> Probe:
    """
    Build a probe that tries the remote store's host, or well-known DNS
    resolvers when no remote is configured.
    """
    targets = list(PROBE_HOSTS)
    if remote_url:
        parsed = urlparse(remote_url)
        if parsed.hostname:
            default_port = 443 if parsed.scheme == "https" else 80
            targets = [(parsed.hostname, parsed.port or default_port)]

    def probe() -> bool:
        return any(_can_connect(host, port, timeout) for host, port in targets)

    return probe


class ConnectionManager:
    """
    Tracks whether the remote store is reachable.

    Usage:
        manager = ConnectionManager(probe=tcp_probe(settings.remote_base_url))
        manager.register_callback(on_change)
        manager.initialize()
        if manager.is_online:
            ...
    """

    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline

    def __init__(
        self,
        probe: Optional[Probe] = None,
        notifier: Optional[notifications.Notifier] = None,
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
        clock: Callable[[], float] = time.time,
    ):
        self._probe = probe or tcp_probe()
        self._notifier = notifier
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._clock = clock

        self._status = ConnectionStatus.UNKNOWN
        self._state = ConnectivityState()
        self._state_lock = threading.Lock()
        self._callbacks: List[Callable[[ConnectivityState], None]] = []

        self._last_check: Optional[float] = None
        self._consecutive_failures = 0
        self._error_message: Optional[str] = None

        self._monitor = PeriodicTask(
            "ConnectionMonitor",
            self.check_connection,
            interval=self._check_interval,
        )

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_online(self) -> bool:
        return self._status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._status == ConnectionStatus.OFFLINE

    def _check_interval(self) -> float:
        return self.check_interval_online if self.is_online else self.check_interval_offline

    def initialize(self, start_monitoring: bool = True) -> ConnectivityState:
        """
        Run a first check and optionally start background monitoring.

        Args:
            start_monitoring: Whether to start the periodic probe
        """
        self.check_connection()
        if start_monitoring:
            self.start_monitoring()
        logger.info(f"ConnectionManager initialized. Status: {self._status.value}")
        return self._state

    def check_connection(self) -> ConnectivityState:
        """Probe reachability and update state."""
        self._last_check = self._clock()
        try:
            reachable = bool(self._probe())
            self._error_message = None
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e}")
            self._error_message = str(e)
            reachable = False

        if reachable:
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1

        self._transition(ConnectionStatus.ONLINE if reachable else ConnectionStatus.OFFLINE)
        return self._state

    def set_online(self, online: bool) -> bool:
        """
        Apply a platform online/offline signal.

        Returns:
            True if the status changed
        """
        return self._transition(ConnectionStatus.ONLINE if online else ConnectionStatus.OFFLINE)

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self._transition(ConnectionStatus.OFFLINE)
        logger.info("Forced offline mode")

    def force_check(self) -> ConnectivityState:
        return self.check_connection()

    def _transition(self, status: ConnectionStatus) -> bool:
        with self._state_lock:
            old_status = self._status
            if old_status == status:
                return False
            self._status = status
            self._state = ConnectivityState(
                is_online=status == ConnectionStatus.ONLINE,
                last_transition_at=self._clock(),
            )
            state = self._state

        logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
        if self._notifier is not None:
            event = notifications.ONLINE if state.is_online else notifications.OFFLINE
            self._notifier.notify(event, state.to_dict())
        self._notify_callbacks(state)
        return True

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        self._monitor.start()

    def stop_monitoring(self) -> None:
        self._monitor.cancel()

    @property
    def is_monitoring(self) -> bool:
        return self._monitor.is_running

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectivityState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectivityState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectivityState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, state: ConnectivityState) -> None:
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Status information for status replies."""
        return {
            "status": self._status.value,
            "is_online": self.is_online,
            "last_transition_at": self._state.last_transition_at,
            "last_check": self._last_check,
            "failures": self._consecutive_failures,
            "error": self._error_message,
        }
