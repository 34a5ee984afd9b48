# =============================================================================
# edge_core/config/settings.py
# Settings for the Offline Cache and Sync Engine
# =============================================================================
"""
Settings are read from the ``[offline]`` table of a TOML file and can be
overridden through ``EDGE_*`` environment variables.

Expected edge.toml format:

    [offline]
    cache_name = "edge-offline-v2"
    max_cache_size = 52428800
    max_retries = 3
    sync_interval = 30
    remote_base_url = "https://api.example.com"
    tenant_id = "tenant-42"

    [[offline.routes]]
    pattern = "/api/menu"
    strategy = "cache_first"
    ttl = 3600
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib

from edge_core.errors import ConfigurationError
from edge_core.logging import get_logger

logger = get_logger(__name__)

MB = 1024 * 1024

DEFAULT_DB_PATH = Path("local_data") / "edge_offline.db"

# Ordered; first match wins. Payment endpoints are never cached.
DEFAULT_ROUTES: List[Dict[str, Any]] = [
    {"name": "payments", "pattern": r"/api/(payment|stripe|twint)", "strategy": "network_only", "ttl": 0},
    {"name": "menu", "pattern": r"/api/menu", "strategy": "cache_first", "ttl": 3600},
    {"name": "orders", "pattern": r"/api/orders", "strategy": "network_first", "ttl": 300},
    {"name": "inventory", "pattern": r"/api/inventory", "strategy": "stale_while_revalidate", "ttl": 1800},
    {"name": "static", "pattern": r"\.(js|css|png|jpg|jpeg|svg|woff2?)$", "strategy": "cache_first", "ttl": 86400},
]

DEFAULT_PRECACHE: List[str] = [
    "/",
    "/offline.html",
    "/manifest.json",
    "/api/menu",
    "/api/settings",
]

# Environment variable -> (field name, converter)
ENV_OVERRIDES = {
    "EDGE_DB_PATH": ("db_path", Path),
    "EDGE_REMOTE_URL": ("remote_base_url", str),
    "EDGE_TENANT_ID": ("tenant_id", str),
    "EDGE_CACHE_NAME": ("cache_name", str),
    "EDGE_MAX_CACHE_SIZE": ("max_cache_size", int),
    "EDGE_MAX_RETRIES": ("max_retries", int),
    "EDGE_BATCH_SIZE": ("batch_size", int),
    "EDGE_SYNC_INTERVAL": ("sync_interval", float),
}


@dataclass
class OfflineSettings:
    """All tunables of the offline engine; durations are in seconds."""
    cache_name: str = "edge-offline-v1"
    max_cache_size: int = 50 * MB
    max_retries: int = 3
    batch_size: int = 10
    sync_interval: float = 30.0
    cleanup_interval: float = 3600.0
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    default_ttl: float = 300.0
    cacheable_statuses: List[int] = field(default_factory=lambda: [200])
    routes: List[Dict[str, Any]] = field(default_factory=lambda: [dict(r) for r in DEFAULT_ROUTES])
    precache_resources: List[str] = field(default_factory=lambda: list(DEFAULT_PRECACHE))
    offline_page: str = "/offline.html"
    install_attempts: int = 3
    db_path: Path = DEFAULT_DB_PATH
    remote_base_url: str = ""
    request_timeout: float = 30.0
    tenant_id: Optional[str] = None
    origin: Optional[str] = None

    def __post_init__(self):
        self.db_path = Path(self.db_path)
        self.validate()

    def validate(self) -> None:
        """Reject values the engine cannot run with."""
        positive = {
            "max_cache_size": self.max_cache_size,
            "max_retries": self.max_retries,
            "batch_size": self.batch_size,
            "sync_interval": self.sync_interval,
            "cleanup_interval": self.cleanup_interval,
            "install_attempts": self.install_attempts,
        }
        for key, value in positive.items():
            if value <= 0:
                raise ConfigurationError(
                    f"Setting '{key}' must be positive, got {value}",
                    config_key=key,
                    expected_type="positive number",
                )

        for route in self.routes:
            if "pattern" not in route or "strategy" not in route:
                raise ConfigurationError(
                    f"Route entry needs 'pattern' and 'strategy': {route}",
                    config_key="routes",
                )

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["db_path"] = str(self.db_path)
        return data


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            document = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Cannot read settings file {path}: {e}", config_key=str(path))
    return document.get("offline", {})


def _apply_env(values: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    for env_name, (key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            values[key] = convert(raw)
        except ValueError:
            raise ConfigurationError(
                f"Environment variable {env_name}={raw!r} is not a valid {convert.__name__}",
                config_key=env_name,
                expected_type=convert.__name__,
            )
    return values


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
    **overrides,
) -> OfflineSettings:
    """
    Build settings from defaults, an optional TOML file, the environment,
    and explicit keyword overrides (in that order of precedence).

    Args:
        path: TOML file with an ``[offline]`` table (optional)
        environ: Environment mapping (defaults to ``os.environ``)
        **overrides: Field values that win over everything else

    Returns:
        Validated OfflineSettings
    """
    values: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if path.exists():
            values.update(_read_toml(path))
            logger.info(f"Loaded offline settings from {path}")
        else:
            logger.warning(f"Settings file {path} not found, using defaults")

    _apply_env(values, dict(os.environ if environ is None else environ))
    values.update(overrides)

    known = {f.name for f in fields(OfflineSettings)}
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown settings: {', '.join(sorted(unknown))}",
            config_key=sorted(unknown)[0],
        )

    try:
        return OfflineSettings(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid settings: {e}")


def with_overrides(settings: OfflineSettings, **changes) -> OfflineSettings:
    """Copy of ``settings`` with some fields replaced (re-validated)."""
    return replace(settings, **changes)
