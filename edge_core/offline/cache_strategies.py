# =============================================================================
# edge_core/offline/cache_strategies.py
# Caching Policies
# =============================================================================
"""
One class per caching policy, selected from a static registry.

Each strategy is bound to the CacheManager that owns it and only talks to
the cache through its public helpers (lookup, fetch, fetch_and_store,
revalidate_in_background, offline_fallback).
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Type
import logging

from edge_core.errors import NetworkError
from edge_core.offline.models import CacheStrategyKind, HttpRequest, HttpResponse

if TYPE_CHECKING:
    from edge_core.offline.cache_manager import CacheManager, CacheRoute

logger = logging.getLogger(__name__)


class CacheStrategy(ABC):
    """A caching policy: turn a request into a response."""

    kind: CacheStrategyKind

    def __init__(self, cache: CacheManager):
        self.cache = cache

    @abstractmethod
    def handle(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        """Produce a response for ``request`` under ``route``."""


class CacheFirst(CacheStrategy):
    """Serve fresh cache hits; otherwise go to the network and store."""

    kind = CacheStrategyKind.CACHE_FIRST

    def handle(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        entry = self.cache.lookup(request)
        if entry is not None and entry.is_fresh(self.cache.now()):
            return entry.to_response()

        try:
            return self.cache.fetch_and_store(request, route)
        except NetworkError:
            if entry is None:
                raise
            # Revalidation failed; a stale copy beats an error.
            logger.info(f"Serving stale cache entry for {request.key}")
            return entry.to_response()


class NetworkFirst(CacheStrategy):
    """Prefer the network; fall back to any cached copy, then offline."""

    kind = CacheStrategyKind.NETWORK_FIRST

    def handle(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        try:
            return self.cache.fetch_and_store(request, route)
        except NetworkError as e:
            entry = self.cache.lookup(request)
            if entry is not None:
                logger.info(f"Network failed, serving cached {request.key}")
                return entry.to_response()
            return self.cache.offline_fallback(request, e)


class StaleWhileRevalidate(CacheStrategy):
    """Serve whatever is cached right away and refresh it in the background."""

    kind = CacheStrategyKind.STALE_WHILE_REVALIDATE

    def handle(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        entry = self.cache.lookup(request)
        if entry is None:
            return self.cache.strategy(CacheStrategyKind.NETWORK_FIRST).handle(request, route)

        self.cache.revalidate_in_background(request, route)
        return entry.to_response()


class NetworkOnly(CacheStrategy):
    """Never touch the cache (payments and other sensitive endpoints)."""

    kind = CacheStrategyKind.NETWORK_ONLY

    def handle(self, request: HttpRequest, route: CacheRoute) -> HttpResponse:
        return self.cache.fetch(request)


STRATEGY_REGISTRY: Dict[CacheStrategyKind, Type[CacheStrategy]] = {
    CacheStrategyKind.CACHE_FIRST: CacheFirst,
    CacheStrategyKind.NETWORK_FIRST: NetworkFirst,
    CacheStrategyKind.STALE_WHILE_REVALIDATE: StaleWhileRevalidate,
    CacheStrategyKind.NETWORK_ONLY: NetworkOnly,
}
