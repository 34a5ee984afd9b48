# =============================================================================
# edge_core/offline/offline_engine.py
# Offline Engine Facade
# =============================================================================
"""
OfflineEngine - one explicit instance wiring the store, cache router, sync
queue, connectivity monitor and lifecycle controller together.

Platform events (install, activate, fetch, sync, message) come in through
the ``on_*`` methods; commands from the host application go through
``execute``.
"""

from __future__ import annotations
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import urlparse
import logging

from edge_core.config import OfflineSettings, load_settings
from edge_core.errors import (
    EdgeCoreError,
    NetworkError,
    StorageError,
    UnknownCommandError,
    handle_error,
    safe_execute,
)
from edge_core.offline import notifications
from edge_core.offline.cache_manager import (
    CacheManager,
    build_routes,
    offline_response,
    spawn_daemon,
)
from edge_core.offline.commands import (
    ClearCache,
    Command,
    ForceSync,
    GetData,
    GetStatus,
    SkipWaiting,
    StoreData,
    parse_message,
)
from edge_core.offline.connection_manager import ConnectionManager, Probe, tcp_probe
from edge_core.offline.lifecycle import CacheGeneration, LifecycleController
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import HttpRequest, HttpResponse, record_timestamp
from edge_core.offline.notifications import Notifier
from edge_core.offline.remote_store import RemoteStore
from edge_core.offline.sync_engine import DrainResult, SyncEngine, spawn_drain

logger = logging.getLogger(__name__)

SYNC_TAG = "offline-sync"

# Read endpoints answered from mirrored records while offline
MIRRORED_ENDPOINTS = (
    ("/api/orders", LocalDatabase.ORDERS),
    ("/api/inventory", LocalDatabase.INVENTORY),
)


class OfflineEngine:
    """
    Offline cache and background-sync engine.

    Usage:
        with OfflineEngine(load_settings("edge.toml")) as engine:
            engine.on_install()
            engine.on_activate()
            response = engine.on_fetch(HttpRequest("/api/menu"))
            engine.execute(ForceSync())
    """

    def __init__(
        self,
        settings: Optional[OfflineSettings] = None,
        store: Optional[LocalDatabase] = None,
        remote: Optional[Any] = None,
        notifier: Optional[Notifier] = None,
        probe: Optional[Probe] = None,
        scheduler: Callable[[Callable[[], Any]], None] = spawn_drain,
        executor: Callable[[Callable[[], None]], None] = spawn_daemon,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            settings: Engine settings (defaults when omitted)
            store: Persistent store (SQLite file at ``settings.db_path`` by default)
            remote: Remote store with ``fetch(HttpRequest)`` (RemoteStore by default)
            notifier: Event sink for sync and lifecycle notifications
            probe: Reachability check (TCP probe of the remote by default)
            scheduler: Runs triggered drains (daemon thread by default)
            executor: Runs background revalidations (daemon thread by default)
            clock: Time source shared by every component
        """
        self.settings = settings or OfflineSettings()
        s = self.settings

        self.notifier = notifier or Notifier(clock=clock)
        self.store = store or LocalDatabase(s.db_path, clock=clock)
        self.remote = remote or RemoteStore(
            s.remote_base_url,
            timeout=s.request_timeout,
            tenant_id=s.tenant_id,
        )

        self.connectivity = ConnectionManager(
            probe=probe or tcp_probe(s.remote_base_url),
            notifier=self.notifier,
            check_interval_online=s.check_interval_online,
            check_interval_offline=s.check_interval_offline,
            clock=clock,
        )
        self.cache = CacheManager(
            self.store,
            self.remote,
            routes=build_routes(s.routes),
            cache_name=s.cache_name,
            max_cache_size=s.max_cache_size,
            default_ttl=s.default_ttl,
            cacheable_statuses=s.cacheable_statuses,
            offline_page=s.offline_page,
            offline_responder=self._mirrored_response,
            executor=executor,
            clock=clock,
        )
        self.sync = SyncEngine(
            self.store,
            self.remote,
            notifier=self.notifier,
            max_retries=s.max_retries,
            batch_size=s.batch_size,
            is_online=lambda: self.connectivity.is_online,
            scheduler=scheduler,
            clock=clock,
        )
        self.lifecycle = LifecycleController(
            self.cache,
            self.sync,
            self.connectivity,
            notifier=self.notifier,
            sync_interval=s.sync_interval,
            cleanup_interval=s.cleanup_interval,
            install_attempts=s.install_attempts,
            clock=clock,
        )
        self._started = False

    @classmethod
    def from_config(cls, path: Optional[Union[str, Path]] = None, **kwargs) -> OfflineEngine:
        """Build an engine from a TOML settings file plus environment overrides."""
        return cls(load_settings(path), **kwargs)

    # =========================================================================
    # START / STOP
    # =========================================================================

    def start(self, background: bool = True) -> None:
        """
        Open the store, subscribe to connectivity and start the timers.

        Args:
            background: Start monitoring and periodic timers (off in tests)
        """
        if self._started:
            return
        self.store.initialize()
        self.lifecycle.start(start_timers=background)
        self.connectivity.initialize(start_monitoring=background)
        self._started = True
        logger.info(f"Offline engine started (cache '{self.cache.cache_name}')")

    def shutdown(self) -> None:
        self.lifecycle.shutdown()
        self.connectivity.stop_monitoring()
        self.sync.wait_idle(timeout=self.settings.request_timeout)
        if hasattr(self.remote, "close"):
            self.remote.close()
        self.store.close()
        self._started = False
        logger.info("Offline engine stopped")

    def __enter__(self) -> OfflineEngine:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.shutdown()
        return False

    # =========================================================================
    # PLATFORM EVENTS
    # =========================================================================

    def on_install(self) -> CacheGeneration:
        """Precache the critical resources into a new cache generation."""
        self.store.initialize()
        return self.lifecycle.install_generation(
            self.settings.cache_name,
            self.settings.precache_resources,
        )

    def on_activate(self) -> Optional[CacheGeneration]:
        """
        Promote the waiting generation and drop superseded caches.

        Returns:
            The activated generation; None when nothing is waiting or while
            clients still hold the current one (the waiting generation then
            takes over when the last client releases)
        """
        return self.lifecycle.activate_if_ready()

    def on_fetch(self, request: HttpRequest) -> Optional[HttpResponse]:
        """
        Answer an outbound request.

        Returns:
            The response, or None for cross-origin requests the engine
            does not handle
        """
        if not self.is_same_origin(request):
            return None

        if request.is_write:
            return self._forward_write(request)

        try:
            return self.cache.handle(request)
        except NetworkError as e:
            logger.warning(f"No network and nothing cached for {request.key}: {e.message}")
            return HttpResponse(status=503, body=b"Service Unavailable", offline=True)

    def on_sync(self, tag: str) -> Optional[DrainResult]:
        """Background-sync trigger; only the ``offline-sync`` tag drains."""
        if tag != SYNC_TAG:
            logger.debug(f"Ignoring sync tag '{tag}'")
            return None
        return self.sync.drain()

    def on_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Decode a wire message and execute it. Every message gets a plain-data
        reply; unknown types and failed commands answer
        ``{"success": False, "error": {...}}``.
        """
        try:
            return self.execute(parse_message(message))
        except EdgeCoreError as e:
            handle_error(e, notifier=self.notifier)
            return {"success": False, "error": e.to_dict()}

    def execute(self, command: Command) -> Dict[str, Any]:
        """Run one command and build its plain-data reply."""
        if isinstance(command, StoreData):
            self.store_offline_data(
                orders=command.orders,
                inventory=command.inventory,
                customers=command.customers,
                settings=command.settings,
                replace=command.replace,
            )
            return {"success": True}

        if isinstance(command, GetData):
            return {"data": self.get_offline_data()}

        if isinstance(command, ForceSync):
            result = self.sync.drain()
            return {"success": True, "result": result.to_dict() if result else None}

        if isinstance(command, ClearCache):
            removed = self.cache.clear()
            self.notifier.notify(notifications.CACHE_CLEARED, {"removed": removed})
            return {"success": True}

        if isinstance(command, GetStatus):
            return {"status": self.status()}

        if isinstance(command, SkipWaiting):
            generation = self.lifecycle.skip_waiting()
            return {"success": generation is not None}

        raise UnknownCommandError(f"Unsupported command: {type(command).__name__}")

    # =========================================================================
    # CLIENTS
    # =========================================================================

    def acquire_client(self) -> Optional[CacheGeneration]:
        """
        Register an open client (a tab, a window) on the active generation.
        A newer generation stays waiting until every such client released.

        Returns:
            The generation to hand back to ``release_client``
        """
        return self.lifecycle.acquire()

    def release_client(self, generation: Optional[CacheGeneration]) -> Optional[CacheGeneration]:
        """Close a client; returns the generation that took over, if any."""
        return self.lifecycle.release(generation)

    # =========================================================================
    # FETCH HELPERS
    # =========================================================================

    def is_same_origin(self, request: HttpRequest) -> bool:
        if not self.settings.origin:
            return True
        parsed = urlparse(request.url)
        if not parsed.netloc:
            return True
        origin = urlparse(self.settings.origin)
        return (parsed.scheme, parsed.netloc) == (origin.scheme, origin.netloc)

    def _forward_write(self, request: HttpRequest) -> HttpResponse:
        try:
            return self.remote.fetch(request)
        except NetworkError:
            logger.info(f"Offline, queueing {request.key} for sync")
            self._queue_for_sync(request)
            return offline_response()

    def _queue_for_sync(self, request: HttpRequest) -> None:
        tenant_id = self.settings.tenant_id
        if tenant_id and "X-Tenant-ID" not in request.headers:
            request.headers["X-Tenant-ID"] = tenant_id
        safe_execute(
            self.sync.enqueue_request,
            request,
            error_message=f"Could not queue {request.key} for sync",
            notifier=self.notifier,
        )

    def _mirrored_response(self, request: HttpRequest) -> Optional[HttpResponse]:
        if request.method != "GET":
            return None
        for fragment, partition in MIRRORED_ENDPOINTS:
            if fragment in request.path:
                records = safe_execute(
                    self.store.get_all,
                    partition,
                    default=[],
                    error_message=f"Failed to read mirrored {partition}",
                )
                return HttpResponse.json_response(records, offline=True)
        return None

    # =========================================================================
    # MIRRORED DATA
    # =========================================================================

    def store_offline_data(
        self,
        orders: Optional[List[Dict[str, Any]]] = None,
        inventory: Optional[List[Dict[str, Any]]] = None,
        customers: Optional[List[Dict[str, Any]]] = None,
        settings: Optional[Dict[str, Any]] = None,
        replace: bool = False,
    ) -> Dict[str, int]:
        """
        Mirror domain records locally.

        Partitions passed as None are left alone. A merge ignores a record
        older than the stored copy (by ``updated_at`` / ``server_timestamp``);
        ``replace=True`` is a full resync and makes each given partition hold
        exactly the given records. Every record is checked before anything
        is written, and all partitions are written in one transaction.

        Returns:
            Records written per partition

        Raises:
            StorageError: a record has no ``id`` or cannot be stored
        """
        batches: Dict[str, List[Dict[str, Any]]] = {}
        for partition, records in (
            (LocalDatabase.ORDERS, orders),
            (LocalDatabase.INVENTORY, inventory),
            (LocalDatabase.CUSTOMERS, customers),
        ):
            if records is not None:
                batches[partition] = list(records)
        if settings is not None:
            batches[LocalDatabase.SETTINGS] = [
                {"id": key, "value": value} for key, value in settings.items()
            ]

        if not replace:
            batches = {
                partition: self._newer_records(partition, records)
                for partition, records in batches.items()
            }
            batches = {partition: records for partition, records in batches.items() if records}

        written = self.store.write_partitions(batches, replace=replace) if batches else {}
        logger.info(f"Offline data {'replaced' if replace else 'stored'}: {written}")
        return written

    def _newer_records(self, partition: str, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        accepted = []
        for record in records:
            record_id = record.get("id") if isinstance(record, dict) else None
            if record_id in (None, ""):
                raise StorageError(
                    "Record has no 'id'",
                    partition=partition,
                    operation="store_offline_data",
                )
            existing = self.store.get(partition, record_id)
            if existing is not None and self._is_older(record, existing):
                logger.debug(f"Ignoring stale {partition} record {record_id}")
                continue
            accepted.append(record)
        return accepted

    @staticmethod
    def _is_older(incoming: Dict[str, Any], existing: Dict[str, Any]) -> bool:
        incoming_ts = record_timestamp(incoming)
        existing_ts = record_timestamp(existing)
        if incoming_ts is None or existing_ts is None:
            return False
        return incoming_ts < existing_ts

    def get_offline_data(self) -> Dict[str, Any]:
        return {
            "orders": self.store.get_all(LocalDatabase.ORDERS),
            "inventory": self.store.get_all(LocalDatabase.INVENTORY),
            "customers": self.store.get_all(LocalDatabase.CUSTOMERS),
            "settings": {
                r["id"]: r.get("value") for r in self.store.get_all(LocalDatabase.SETTINGS)
            },
        }

    # =========================================================================
    # STATUS
    # =========================================================================

    def status(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.status(),
            "sync": self.sync.status().to_dict(),
            "connectivity": self.connectivity.get_status_display(),
            "lifecycle": self.lifecycle.status(),
            "offline_records": {
                partition: self.store.count(partition)
                for partition in LocalDatabase.DOMAIN_PARTITIONS
            },
            "recent_events": self.notifier.recent()[-10:],
        }
