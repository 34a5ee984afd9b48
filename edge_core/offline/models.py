# =============================================================================
# edge_core/offline/models.py
# Data Model for the Offline Cache and Sync Engine
# =============================================================================
"""
Plain data containers shared by every offline component.

Timestamps are POSIX seconds and TTLs are seconds.
"""

from __future__ import annotations
import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import numpy as np
import pandas as pd


class CacheStrategyKind(Enum):
    """Caching policy applied to a route."""
    CACHE_FIRST = "cache_first"
    NETWORK_FIRST = "network_first"
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"
    NETWORK_ONLY = "network_only"


# =============================================================================
# HTTP BOUNDARY
# =============================================================================

@dataclass
class HttpRequest:
    """An outbound request as seen by the engine."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    navigate: bool = False  # page navigation rather than a sub-resource

    def __post_init__(self):
        self.method = self.method.upper()
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    @property
    def key(self) -> str:
        """Cache key: method + URL."""
        return f"{self.method} {self.url}"

    @property
    def path(self) -> str:
        return urlparse(self.url).path or self.url

    @property
    def is_api(self) -> bool:
        return "/api/" in self.path

    @property
    def is_write(self) -> bool:
        return self.method not in ("GET", "HEAD", "OPTIONS")

    def to_payload(self) -> Dict[str, Any]:
        """Snapshot suitable for a SyncTask payload."""
        return {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": self.body.decode("utf-8", errors="replace") if self.body is not None else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> HttpRequest:
        body = payload.get("body")
        if body is not None and not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        return cls(
            url=payload["url"],
            method=payload.get("method", "GET"),
            headers=dict(payload.get("headers") or {}),
            body=body,
        )


@dataclass
class HttpResponse:
    """A response from the network, the cache, or synthesized offline."""
    status: int = 200
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False
    offline: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8")) if self.body else None

    @classmethod
    def json_response(cls, data: Any, status: int = 200, **kwargs) -> HttpResponse:
        return cls(
            status=status,
            body=json.dumps(data, default=to_jsonable).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            **kwargs,
        )


# =============================================================================
# CACHE ENTRY
# =============================================================================

@dataclass
class CacheEntry:
    """A cached response tied to a request key."""
    key: str
    payload: bytes
    stored_at: float
    ttl: float
    strategy: CacheStrategyKind
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    cache_name: str = ""

    @property
    def size(self) -> int:
        return len(self.payload)

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl

    def to_response(self) -> HttpResponse:
        return HttpResponse(
            status=self.status,
            body=self.payload,
            headers=dict(self.headers),
            from_cache=True,
        )


# =============================================================================
# SYNC TASK
# =============================================================================


def generate_task_id(now: Optional[float] = None) -> str:
    """Unique task id: ``task_<millis>_<random>``."""
    millis = int((now if now is not None else time.time()) * 1000)
    return f"task_{millis}_{uuid.uuid4().hex[:9]}"


@dataclass
class SyncTask:
    """A deferred mutation awaiting delivery to the remote store."""
    type: str
    payload: Dict[str, Any]
    priority: int = 1
    created_at: float = field(default_factory=time.time)
    id: str = ""
    retry_count: int = 0
    last_error: Optional[str] = None
    # Assigned from the store on enqueue; FIFO tie-break across restarts
    sequence: Optional[int] = None

    def __post_init__(self):
        if not self.id:
            self.id = generate_task_id(self.created_at)

    @property
    def sort_key(self):
        # Higher priority first, then FIFO.
        return (-self.priority, self.created_at, self.sequence if self.sequence is not None else -1)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "priority": self.priority,
            "created_at": self.created_at,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "sequence": self.sequence,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> SyncTask:
        return cls(
            id=record["id"],
            type=record.get("type", "api_request"),
            payload=record.get("payload") or {},
            priority=int(record.get("priority", 1)),
            created_at=float(record.get("created_at", 0.0)),
            retry_count=int(record.get("retry_count", 0)),
            last_error=record.get("last_error"),
            sequence=record.get("sequence"),
        )


# =============================================================================
# CONNECTIVITY
# =============================================================================

@dataclass
class ConnectivityState:
    """Process-wide connectivity snapshot; never persisted."""
    is_online: bool = False
    last_transition_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_transition_at": self.last_transition_at,
        }


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

def to_jsonable(obj: Any) -> Any:
    """``json.dumps`` default hook for numpy/pandas/datetime values."""
    if obj is pd.NaT:
        return None
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return None if np.isnan(obj) else float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def record_timestamp(record: Dict[str, Any]) -> Optional[float]:
    """
    Server timestamp of a domain record, as POSIX seconds.

    Looks at ``updated_at`` then ``server_timestamp``; accepts numbers
    (seconds or milliseconds) and ISO-8601 strings.
    """
    for key in ("updated_at", "server_timestamp"):
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, (int, float, np.integer, np.floating)):
            value = float(value)
            # Millisecond epoch values from JS clients
            return value / 1000.0 if value > 1e11 else value
        try:
            ts = pd.Timestamp(value)
        except (ValueError, TypeError):
            continue
        if pd.isna(ts):
            continue
        if ts.tzinfo is None:
            ts = ts.tz_localize("UTC")
        return ts.timestamp()
    return None
