# =============================================================================
# edge_core/config/__init__.py
# Engine Settings
# =============================================================================

from .settings import (
    OfflineSettings,
    DEFAULT_ROUTES,
    DEFAULT_PRECACHE,
    load_settings,
)

__all__ = [
    "OfflineSettings",
    "DEFAULT_ROUTES",
    "DEFAULT_PRECACHE",
    "load_settings",
]
