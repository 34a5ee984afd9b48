# =============================================================================
# edge_core/offline/__init__.py
# Offline-First Cache and Background Sync
# =============================================================================
"""
Offline-First Engine Module

Keeps an edge application usable with intermittent connectivity: outbound
requests are answered from a policy-driven response cache, writes made
while offline are queued durably and replayed once the network returns.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                        OFFLINE ENGINE                            │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                    OfflineEngine                          │  │
│   │      (on_install / on_fetch / on_sync / on_message)       │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                  │                  │             │
│              ▼                  ▼                  ▼             │
│   ┌──────────────────┐ ┌──────────────────┐ ┌──────────────────┐│
│   │   CacheManager   │ │    SyncEngine    │ │LifecycleController│
│   │ (Strategy router)│ │  (Replay queue)  │ │ (Timers, versions)││
│   └──────────────────┘ └──────────────────┘ └──────────────────┘│
│              │                  │                  │             │
│              ▼                  ▼                  ▼             │
│   ┌──────────────────┐ ┌──────────────────┐ ┌──────────────────┐│
│   │  LocalDatabase   │ │   RemoteStore    │ │ConnectionManager ││
│   │     (SQLite)     │ │    (requests)    │ │ (Online/Offline) ││
│   └──────────────────┘ └──────────────────┘ └──────────────────┘│
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from edge_core.offline import OfflineEngine, HttpRequest

with OfflineEngine.from_config("edge.toml") as engine:
    engine.on_install()
    engine.on_activate()
    response = engine.on_fetch(HttpRequest("/api/menu"))
    print(engine.on_message({"type": "GET_CACHE_STATUS"}))
"""

from edge_core.offline.models import (
    CacheEntry,
    CacheStrategyKind,
    ConnectivityState,
    HttpRequest,
    HttpResponse,
    SyncTask,
)

from edge_core.offline.local_database import LocalDatabase

from edge_core.offline.cache_manager import (
    CacheManager,
    CacheRoute,
    build_routes,
)

from edge_core.offline.sync_engine import (
    SyncEngine,
    DrainResult,
    SyncQueueStatus,
    priority_for,
)

from edge_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionStatus,
)

from edge_core.offline.lifecycle import (
    CacheGeneration,
    LifecycleController,
    LifecycleState,
)

from edge_core.offline.commands import parse_message
from edge_core.offline.notifications import Notifier
from edge_core.offline.remote_store import RemoteStore
from edge_core.offline.offline_engine import OfflineEngine

__all__ = [
    # Data model
    "CacheEntry",
    "CacheStrategyKind",
    "ConnectivityState",
    "HttpRequest",
    "HttpResponse",
    "SyncTask",
    # Persistent Store
    "LocalDatabase",
    # Cache Strategy Router
    "CacheManager",
    "CacheRoute",
    "build_routes",
    # Sync Queue Manager
    "SyncEngine",
    "DrainResult",
    "SyncQueueStatus",
    "priority_for",
    # Connectivity & Lifecycle
    "ConnectionManager",
    "ConnectionStatus",
    "CacheGeneration",
    "LifecycleController",
    "LifecycleState",
    # Engine
    "parse_message",
    "Notifier",
    "RemoteStore",
    "OfflineEngine",
]
