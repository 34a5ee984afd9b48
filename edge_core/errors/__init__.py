# =============================================================================
# edge_core/errors/__init__.py
# Centralized Error Handling for the Edge Offline Engine
# =============================================================================

from .exceptions import (
    EdgeCoreError,
    StorageError,
    NetworkError,
    RetryExhaustedError,
    LifecycleError,
    UnknownCommandError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "EdgeCoreError",
    "StorageError",
    "NetworkError",
    "RetryExhaustedError",
    "LifecycleError",
    "UnknownCommandError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
