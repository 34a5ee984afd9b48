# =============================================================================
# edge_core/offline/cache_manager.py
# Cache Strategy Router
# =============================================================================
"""
CacheManager - routes each outbound request to a caching policy and keeps
the response cache inside its size budget.

Features:
- Ordered route table (regex on URL + method), first match wins
- Cache-first, network-first, stale-while-revalidate and network-only
- Per-route TTLs, write-through of successful cacheable responses
- Oldest-first eviction against a global byte budget
- Precaching of a critical resource set

Size accounting is approximate when several instances share one store.
"""

from __future__ import annotations
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Pattern, Tuple
import logging

from edge_core.errors import NetworkError, StorageError, error_boundary
from edge_core.logging import LogContext
from edge_core.offline.cache_strategies import STRATEGY_REGISTRY, CacheStrategy
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import (
    CacheEntry,
    CacheStrategyKind,
    HttpRequest,
    HttpResponse,
)

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "This request will be synced when online"

OfflineResponder = Callable[[HttpRequest], Optional[HttpResponse]]
Executor = Callable[[Callable[[], None]], None]


def spawn_daemon(func: Callable[[], None]) -> None:
    """Run ``func`` on a fresh daemon thread."""
    threading.Thread(target=func, daemon=True, name="CacheRevalidate").start()


@dataclass(frozen=True)
class CacheRoute:
    """A route-table rule: which requests get which policy and TTL."""
    pattern: Pattern
    strategy: CacheStrategyKind
    ttl: float
    methods: Tuple[str, ...] = ("GET",)
    name: str = ""

    def matches(self, request: HttpRequest) -> bool:
        return request.method in self.methods and bool(self.pattern.search(request.url))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> CacheRoute:
        return cls(
            pattern=re.compile(config["pattern"]),
            strategy=CacheStrategyKind(config["strategy"]),
            ttl=float(config.get("ttl", 0)),
            methods=tuple(m.upper() for m in config.get("methods", ("GET",))),
            name=config.get("name", config["pattern"]),
        )


def build_routes(configs: Iterable[Dict[str, Any]]) -> List[CacheRoute]:
    return [CacheRoute.from_config(c) for c in configs]


class CacheManager:
    """
    Cache Strategy Router.

    Usage:
        cache = CacheManager(store, remote, routes=build_routes(settings.routes))
        response = cache.handle(HttpRequest("/api/menu"))
    """

    CACHEABLE_METHODS = ("GET",)

    def __init__(
        self,
        store: LocalDatabase,
        remote: Any,
        routes: Optional[List[CacheRoute]] = None,
        cache_name: str = "edge-offline-v1",
        max_cache_size: int = 50 * 1024 * 1024,
        default_ttl: float = 300.0,
        cacheable_statuses: Iterable[int] = (200,),
        offline_page: str = "/offline.html",
        offline_responder: Optional[OfflineResponder] = None,
        strategies: Optional[Dict[CacheStrategyKind, type]] = None,
        executor: Executor = spawn_daemon,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.remote = remote
        self.routes = list(routes or [])
        self.cache_name = cache_name
        self.max_cache_size = max_cache_size
        self.default_ttl = default_ttl
        self.cacheable_statuses = frozenset(cacheable_statuses)
        self.offline_page = offline_page
        self.offline_responder = offline_responder
        self._executor = executor
        self._clock = clock

        registry = strategies or STRATEGY_REGISTRY
        self._strategies: Dict[CacheStrategyKind, CacheStrategy] = {
            kind: strategy_cls(self) for kind, strategy_cls in registry.items()
        }

        self._fallback_route = CacheRoute(
            pattern=re.compile(""),
            strategy=CacheStrategyKind.NETWORK_FIRST,
            ttl=default_ttl,
            methods=("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"),
            name="default",
        )
        self._revalidating: set = set()
        self._revalidating_lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def strategy(self, kind: CacheStrategyKind) -> CacheStrategy:
        return self._strategies[kind]

    # =========================================================================
    # ROUTING
    # =========================================================================

    def route(self, request: HttpRequest) -> CacheRoute:
        """First matching route, or network-first with the default TTL."""
        for route in self.routes:
            if route.matches(request):
                return route
        return self._fallback_route

    def handle(self, request: HttpRequest, route: Optional[CacheRoute] = None) -> HttpResponse:
        """
        Answer a request through its caching policy.

        Raises:
            NetworkError: the policy had nothing to serve and the network failed
        """
        route = route or self.route(request)
        return self.strategy(route.strategy).handle(request, route)

    # =========================================================================
    # HELPERS USED BY STRATEGIES
    # =========================================================================

    @error_boundary(default_return=None)
    def lookup(self, request: HttpRequest) -> Optional[CacheEntry]:
        """Cached entry for ``request`` in the current generation; ``None`` on a miss."""
        return self.store.get_cache_entry(request.key, self.cache_name)

    def fetch(self, request: HttpRequest) -> HttpResponse:
        return self.remote.fetch(request)

    def is_cacheable(self, request: HttpRequest, response: HttpResponse) -> bool:
        return (
            request.method in self.CACHEABLE_METHODS
            and response.status in self.cacheable_statuses
        )

    def fetch_and_store(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        """Network fetch with write-through of cacheable responses."""
        response = self.fetch(request)
        if self.is_cacheable(request, response):
            self.store_response(request, response, route)
        return response

    def store_response(
        self,
        request: HttpRequest,
        response: HttpResponse,
        route: CacheRoute,
        cache_name: Optional[str] = None,
    ) -> bool:
        """Write a response into the cache, evicting first if needed."""
        entry = CacheEntry(
            key=request.key,
            payload=response.body,
            stored_at=self.now(),
            ttl=route.ttl if route.ttl > 0 else self.default_ttl,
            strategy=route.strategy,
            status=response.status,
            headers=dict(response.headers),
            cache_name=cache_name or self.cache_name,
        )

        if entry.size > self.max_cache_size:
            logger.warning(
                f"Not caching {entry.key}: {entry.size} bytes exceeds the "
                f"{self.max_cache_size} byte budget"
            )
            return False

        try:
            self.enforce_budget(incoming=entry.size, replacing=entry.key, cache_name=entry.cache_name)
            self.store.put_cache_entry(entry)
            return True
        except StorageError as e:
            logger.error(f"Could not cache {entry.key}: {e}")
            return False

    def revalidate_in_background(self, request: HttpRequest, route: CacheRoute) -> bool:
        """Schedule one refresh per key; returns False if one is already running."""
        with self._revalidating_lock:
            if request.key in self._revalidating:
                return False
            self._revalidating.add(request.key)

        def refresh():
            try:
                self.fetch_and_store(request, route)
            except NetworkError as e:
                logger.debug(f"Background revalidation of {request.key} failed: {e}")
            except Exception as e:
                logger.error(f"Error revalidating {request.key}: {e}")
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(request.key)

        self._executor(refresh)
        return True

    def offline_fallback(self, request: HttpRequest, error: NetworkError) -> HttpResponse:
        """
        Last resort when neither network nor cache can answer.

        Order: injected responder (mirrored data), cached offline page for
        navigations, a 202 "queued" reply for API-shaped requests; anything
        else re-raises ``error``.
        """
        if self.offline_responder is not None:
            response = self.offline_responder(request)
            if response is not None:
                return response

        if request.navigate:
            page = self.lookup(HttpRequest(self.offline_page))
            if page is not None:
                return page.to_response()

        if request.is_api:
            return offline_response()

        raise error

    # =========================================================================
    # EVICTION
    # =========================================================================

    def cache_size(self) -> int:
        return self.store.cache_size()

    def enforce_budget(
        self,
        incoming: int = 0,
        replacing: Optional[str] = None,
        cache_name: Optional[str] = None,
    ) -> int:
        """
        Delete oldest entries until the cache plus ``incoming`` bytes fits
        the budget.

        Args:
            incoming: Size of an entry about to be written
            replacing: Key that write will overwrite
            cache_name: Cache holding ``replacing`` (current generation by default)

        Returns:
            Number of entries removed
        """
        frame = self.store.cache_frame()
        if frame.empty:
            return 0

        if replacing is not None:
            target = cache_name or self.cache_name
            same = (frame["cache_name"] == target) & (frame["key"] == replacing)
            frame = frame[~same]

        budget = self.max_cache_size - incoming
        total = int(frame["size"].sum())
        if total <= budget:
            return 0

        overflow = total - budget
        frame = frame.sort_values("stored_at", kind="stable")
        removed_before = frame["size"].cumsum().shift(fill_value=0)
        victims = frame[removed_before < overflow]

        removed = 0
        for name, group in victims.groupby("cache_name"):
            removed += self.store.delete_cache_entries(list(group["key"]), name)

        logger.info(
            f"Evicted {removed} cache entries ({int(victims['size'].sum())} bytes) "
            f"to stay under {self.max_cache_size} bytes"
        )
        return removed

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def precache(self, urls: Iterable[str], cache_name: Optional[str] = None) -> int:
        """
        Fetch and store a fixed resource set. All-or-nothing: any failure
        raises and the caller treats the install as failed.
        """
        urls = list(urls)
        with LogContext(logger, f"Precaching {len(urls)} resources"):
            for url in urls:
                request = HttpRequest(url)
                route = self.route(request)
                if route.strategy == CacheStrategyKind.NETWORK_ONLY:
                    route = self._fallback_route
                response = self.fetch(request)
                if not response.ok:
                    raise NetworkError(
                        f"Precache of {url} returned status {response.status}",
                        url=url,
                        method="GET",
                    )
                self.store_response(request, response, route, cache_name=cache_name)
        return len(urls)

    def purge(self, request: HttpRequest) -> bool:
        return self.store.delete_cache_entry(request.key, self.cache_name)

    def clear(self) -> int:
        removed = self.store.clear_cache()
        logger.info(f"Cleared {removed} cached responses")
        return removed

    def status(self) -> Dict[str, Any]:
        frame = self.store.cache_frame()
        return {
            "cache_name": self.cache_name,
            "size": int(frame["size"].sum()) if not frame.empty else 0,
            "entries": len(frame),
            "caches": sorted(frame["cache_name"].unique().tolist()) if not frame.empty else [],
            "max_size": self.max_cache_size,
        }


def offline_response(data: Optional[Dict[str, Any]] = None, status: int = 202) -> HttpResponse:
    """Well-formed JSON reply for API requests that could not reach the network."""
    return HttpResponse.json_response(
        data or {"error": "Offline", "message": OFFLINE_MESSAGE},
        status=status,
        offline=True,
    )
