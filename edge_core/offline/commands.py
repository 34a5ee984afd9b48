# =============================================================================
# edge_core/offline/commands.py
# Host -> Engine Command Messages
# =============================================================================
"""
Closed set of commands the host application can send to the engine.

``parse_message`` turns a wire message ``{"type": ..., "data": ...}`` into
one of the command classes below; anything else raises
UnknownCommandError.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from edge_core.errors import UnknownCommandError

Record = Dict[str, Any]


@dataclass(frozen=True)
class StoreData:
    """
    Mirror domain records into the local store.

    A partition left as None is not touched. With ``replace`` each given
    partition ends up holding exactly the given records (full resync);
    otherwise records are merged and the newest write wins.
    """
    orders: Optional[List[Record]] = None
    inventory: Optional[List[Record]] = None
    customers: Optional[List[Record]] = None
    settings: Optional[Dict[str, Any]] = None
    replace: bool = False


@dataclass(frozen=True)
class GetData:
    """Read back every mirrored domain record."""


@dataclass(frozen=True)
class ForceSync:
    """Drain the sync queue now, online or not."""


@dataclass(frozen=True)
class ClearCache:
    """Drop every cached response in every generation."""


@dataclass(frozen=True)
class GetStatus:
    """Report cache, queue and connectivity status."""


@dataclass(frozen=True)
class SkipWaiting:
    """Activate a waiting cache generation immediately."""


Command = Union[StoreData, GetData, ForceSync, ClearCache, GetStatus, SkipWaiting]


def _optional_list(value: Any) -> Optional[List[Record]]:
    return None if value is None else list(value)


def _parse_store_data(data: Optional[Dict[str, Any]]) -> StoreData:
    data = data or {}
    settings = data.get("settings")
    return StoreData(
        orders=_optional_list(data.get("orders")),
        inventory=_optional_list(data.get("inventory")),
        customers=_optional_list(data.get("customers")),
        settings=None if settings is None else dict(settings),
        replace=bool(data.get("replace", False)),
    )


MESSAGE_TYPES = {
    "STORE_OFFLINE_DATA": _parse_store_data,
    "GET_OFFLINE_DATA": lambda data: GetData(),
    "FORCE_SYNC": lambda data: ForceSync(),
    "CLEAR_CACHE": lambda data: ClearCache(),
    "GET_CACHE_STATUS": lambda data: GetStatus(),
    "SKIP_WAITING": lambda data: SkipWaiting(),
}


def parse_message(message: Dict[str, Any]) -> Command:
    """
    Map a wire message to a command.

    Raises:
        UnknownCommandError: missing or unrecognized ``type``
    """
    if not isinstance(message, dict):
        raise UnknownCommandError(f"Message must be an object, got {type(message).__name__}")

    message_type = message.get("type")
    parser = MESSAGE_TYPES.get(message_type)
    if parser is None:
        raise UnknownCommandError(
            f"Unknown message type: {message_type!r}",
            message_type=str(message_type),
        )
    return parser(message.get("data"))
