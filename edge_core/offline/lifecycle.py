# =============================================================================
# edge_core/offline/lifecycle.py
# Cache Generations and Background Triggers
# =============================================================================
"""
Connectivity & Lifecycle Controller.

A CacheGeneration is one named cache version moving through
INSTALLING -> WAITING -> ACTIVE -> RETIRING -> RETIRED (or REDUNDANT when
its install fails for good). The LifecycleController owns the generations,
listens for connectivity transitions and runs the periodic sync and
cleanup timers.
"""

from __future__ import annotations
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional
import logging

from edge_core.errors import EdgeCoreError, LifecycleError
from edge_core.offline import notifications
from edge_core.offline.cache_manager import CacheManager
from edge_core.offline.connection_manager import ConnectionManager
from edge_core.offline.models import ConnectivityState
from edge_core.offline.scheduler import PeriodicTask
from edge_core.offline.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

# Suffix of the cache a generation precaches into before it is promoted
STAGING_SUFFIX = "-installing"


class LifecycleState(Enum):
    INSTALLING = "installing"
    WAITING = "waiting"
    ACTIVE = "active"
    RETIRING = "retiring"
    RETIRED = "retired"
    REDUNDANT = "redundant"


ALLOWED_TRANSITIONS = {
    LifecycleState.INSTALLING: {LifecycleState.WAITING, LifecycleState.REDUNDANT},
    LifecycleState.WAITING: {LifecycleState.ACTIVE, LifecycleState.REDUNDANT},
    LifecycleState.ACTIVE: {LifecycleState.RETIRING},
    LifecycleState.RETIRING: {LifecycleState.RETIRED},
    LifecycleState.RETIRED: set(),
    LifecycleState.REDUNDANT: set(),
}


class CacheGeneration:
    """One versioned cache and its lifecycle state."""

    def __init__(
        self,
        name: str,
        install_attempts: int = 3,
        notifier: Optional[notifications.Notifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.install_attempts = install_attempts
        self._notifier = notifier
        self._clock = clock
        self._lock = threading.Lock()

        self.state = LifecycleState.INSTALLING
        self.consumers = 0
        self.skip_waiting_requested = False
        self.changed_at = clock()

    def __repr__(self) -> str:
        return f"CacheGeneration({self.name!r}, {self.state.value})"

    def _move(self, target: LifecycleState) -> None:
        with self._lock:
            if target not in ALLOWED_TRANSITIONS[self.state]:
                raise LifecycleError(
                    f"Cannot move generation '{self.name}' from "
                    f"{self.state.value} to {target.value}",
                    generation=self.name,
                    state=self.state.value,
                    target=target.value,
                )
            previous, self.state = self.state, target
            self.changed_at = self._clock()

        logger.info(f"Cache generation '{self.name}': {previous.value} -> {target.value}")
        if self._notifier is not None:
            self._notifier.notify(notifications.LIFECYCLE_CHANGED, {
                "generation": self.name,
                "from": previous.value,
                "to": target.value,
            })

    def install(self, precache: Callable[[], Any]) -> bool:
        """
        Run ``precache`` up to ``install_attempts`` times.

        Returns:
            True when the generation reached WAITING, False if it went REDUNDANT
        """
        if self.state != LifecycleState.INSTALLING:
            raise LifecycleError(
                f"Generation '{self.name}' is not installing",
                generation=self.name,
                state=self.state.value,
                target=LifecycleState.WAITING.value,
            )

        for attempt in range(1, self.install_attempts + 1):
            try:
                precache()
            except EdgeCoreError as e:
                logger.warning(
                    f"Install of '{self.name}' failed "
                    f"(attempt {attempt}/{self.install_attempts}): {e}"
                )
                continue
            self._move(LifecycleState.WAITING)
            return True

        self._move(LifecycleState.REDUNDANT)
        return False

    def skip_waiting(self) -> None:
        self.skip_waiting_requested = True

    def acquire(self) -> None:
        """Register a consumer (an open client) bound to this generation."""
        with self._lock:
            self.consumers += 1

    def release(self) -> None:
        with self._lock:
            self.consumers = max(0, self.consumers - 1)

    def can_replace(self, previous: Optional[CacheGeneration] = None) -> bool:
        """WAITING and either told to skip waiting or ``previous`` has no consumers left."""
        if self.state != LifecycleState.WAITING:
            return False
        if self.skip_waiting_requested or previous is None or previous is self:
            return True
        return previous.consumers == 0

    def activate(self, previous: Optional[CacheGeneration] = None) -> None:
        """
        WAITING -> ACTIVE.

        Raises:
            LifecycleError: ``previous`` still has consumers, or the move is illegal
        """
        if self.state == LifecycleState.WAITING and not self.can_replace(previous):
            raise LifecycleError(
                f"Generation '{self.name}' is waiting on {previous.consumers} "
                f"consumers of '{previous.name}'",
                generation=self.name,
                state=self.state.value,
                target=LifecycleState.ACTIVE.value,
                details={"blocking": previous.name},
            )
        self._move(LifecycleState.ACTIVE)

    def retire(self, finish: Optional[Callable[[], Any]] = None) -> None:
        """ACTIVE -> RETIRING, let in-flight work finish, then RETIRED."""
        self._move(LifecycleState.RETIRING)
        if finish is not None:
            finish()
        self._move(LifecycleState.RETIRED)


class LifecycleController:
    """
    Owns the cache generations and the background triggers.

    Usage:
        controller = LifecycleController(cache, sync, connectivity)
        controller.start()
        generation = controller.install_generation("edge-offline-v2", urls)
        controller.activate_generation(generation)
        ...
        controller.shutdown()
    """

    def __init__(
        self,
        cache: CacheManager,
        sync: SyncEngine,
        connectivity: ConnectionManager,
        notifier: Optional[notifications.Notifier] = None,
        sync_interval: float = 30.0,
        cleanup_interval: float = 3600.0,
        install_attempts: int = 3,
        drain_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.sync = sync
        self.connectivity = connectivity
        self.notifier = notifier
        self.install_attempts = install_attempts
        self.drain_timeout = drain_timeout
        self._clock = clock

        self.active: Optional[CacheGeneration] = None
        self.waiting: Optional[CacheGeneration] = None

        self._sync_timer = PeriodicTask("PeriodicSync", self.periodic_sync, sync_interval)
        self._cleanup_timer = PeriodicTask("CacheCleanup", self.periodic_cleanup, cleanup_interval)
        self._started = False

    # =========================================================================
    # START / STOP
    # =========================================================================

    def start(self, start_timers: bool = True) -> None:
        if self._started:
            return
        self.connectivity.register_callback(self._on_connectivity_change)
        if start_timers:
            self._sync_timer.start()
            self._cleanup_timer.start()
        self._started = True
        logger.info("Lifecycle controller started")

    def shutdown(self) -> None:
        """Cancel timers and stop listening; safe to call twice."""
        self._sync_timer.cancel()
        self._cleanup_timer.cancel()
        self.connectivity.unregister_callback(self._on_connectivity_change)
        self._started = False
        logger.info("Lifecycle controller stopped")

    @property
    def timers_running(self) -> bool:
        return self._sync_timer.is_running or self._cleanup_timer.is_running

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    def _on_connectivity_change(self, state: ConnectivityState) -> None:
        if state.is_online:
            logger.info("Connection restored, triggering sync")
            self.sync.request_drain()

    def periodic_sync(self) -> None:
        if self.sync.status().count == 0:
            return
        if not self.connectivity.is_online:
            # Re-check a possibly stale OFFLINE status; coming back online
            # fires the reconnect drain.
            self.connectivity.check_connection()
            return
        self.sync.drain()

    def periodic_cleanup(self) -> None:
        self.cache.enforce_budget()

    # =========================================================================
    # GENERATIONS
    # =========================================================================

    @staticmethod
    def staging_name(name: str) -> str:
        return f"{name}{STAGING_SUFFIX}"

    def install_generation(self, name: str, precache_urls: Iterable[str]) -> CacheGeneration:
        """
        Create a generation and precache into it; it ends WAITING or REDUNDANT.

        Resources are fetched into a staging cache and only moved under
        ``name`` once every one of them arrived, so a failed install never
        touches a live cache of the same name.
        """
        urls = list(precache_urls)
        staging = self.staging_name(name)
        generation = CacheGeneration(
            name,
            install_attempts=self.install_attempts,
            notifier=self.notifier,
            clock=self._clock,
        )
        if generation.install(lambda: self.cache.precache(urls, cache_name=staging)):
            self.cache.store.rename_cache(staging, name)
            self.waiting = generation
        else:
            self.cache.store.clear_cache(staging)
        return generation

    def activate_generation(self, generation: Optional[CacheGeneration] = None) -> CacheGeneration:
        """
        Promote a WAITING generation, retire the current one and delete
        every other cache.

        Raises:
            LifecycleError: nothing to activate, or the current generation
                still has consumers and skip-waiting was not requested
        """
        generation = generation or self.waiting
        if generation is None:
            raise LifecycleError("No cache generation is waiting to activate")

        previous = self.active
        generation.activate(previous)

        if previous is not None and previous is not generation:
            previous.retire(finish=lambda: self.sync.wait_idle(self.drain_timeout))

        self.active = generation
        if self.waiting is generation:
            self.waiting = None
        self.cache.cache_name = generation.name

        removed = self.cache.store.delete_other_caches([generation.name])
        if removed:
            logger.info(f"Deleted {removed} entries from superseded caches")

        self.sync.request_drain()
        return generation

    def activate_if_ready(self) -> Optional[CacheGeneration]:
        """Activate the waiting generation unless clients still hold the current one."""
        waiting = self.waiting
        if waiting is None:
            return None
        if not waiting.can_replace(self.active):
            logger.info(
                f"Generation '{waiting.name}' waiting on "
                f"{self.active.consumers} clients of '{self.active.name}'"
            )
            return None
        return self.activate_generation(waiting)

    def skip_waiting(self) -> Optional[CacheGeneration]:
        """Activate the waiting generation without waiting for consumers."""
        if self.waiting is None:
            return None
        self.waiting.skip_waiting()
        return self.activate_generation(self.waiting)

    # =========================================================================
    # CLIENTS
    # =========================================================================

    def acquire(self) -> Optional[CacheGeneration]:
        """Bind a new client to the active generation."""
        generation = self.active
        if generation is not None:
            generation.acquire()
        return generation

    def release(self, generation: Optional[CacheGeneration]) -> Optional[CacheGeneration]:
        """
        Unbind a client from the generation it acquired. When that was the
        last client of the active generation a waiting one takes over.

        Returns:
            The newly activated generation, if any
        """
        if generation is None:
            return None
        generation.release()
        if generation is self.active:
            return self.activate_if_ready()
        return None

    def status(self) -> Dict[str, Any]:
        return {
            "active": self.active.name if self.active else None,
            "waiting": self.waiting.name if self.waiting else None,
            "state": self.active.state.value if self.active else None,
            "clients": self.active.consumers if self.active else 0,
            "timers_running": self.timers_running,
        }
