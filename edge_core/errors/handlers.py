# =============================================================================
# edge_core/errors/handlers.py
# Error Handling Utilities for the Edge Offline Engine
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Any, Callable, Optional, TypeVar

from edge_core.logging import get_logger
from .exceptions import EdgeCoreError, RetryExhaustedError

logger = get_logger(__name__)

T = TypeVar("T")


def should_escalate(error: Exception) -> bool:
    """Only retry exhaustion and unrecoverable engine errors reach the user."""
    if isinstance(error, RetryExhaustedError):
        return True
    return isinstance(error, EdgeCoreError) and not error.recoverable


def handle_error(
    error: Exception,
    notifier: Optional[Any] = None,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        notifier: Optional notification collaborator; escalated errors are
            reported to it as an "error" event
        log_error: Whether to log the error
        user_message: Custom message for the escalation (uses error message if None)
    """
    if isinstance(error, EdgeCoreError):
        message = user_message or error.message
        code = error.code
        details = error.details
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if notifier is not None and should_escalate(error):
        notifier.notify("error", {
            "code": code,
            "message": message,
            "details": details,
        })


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    notifier: Optional[Any] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        records = safe_execute(
            store.get_all, "orders",
            default=[],
            error_message="Failed to read mirrored orders"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, notifier=notifier, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging and escalation.

    Usage:
        with ErrorContext("Precaching critical resources", recoverable=True):
            cache.precache(resources)
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        notifier: Optional[Any] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.notifier = notifier
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        if not issubclass(exc_type, Exception):
            return False

        self.error = exc_val
        if isinstance(exc_val, EdgeCoreError):
            handle_error(exc_val, notifier=self.notifier)
        else:
            handle_error(
                exc_val,
                notifier=self.notifier,
                user_message=f"Error during: {self.operation}",
            )

        # Suppress exception if recoverable
        return self.recoverable


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator to wrap functions with error handling.

    Usage:
        @error_boundary(default_return=None)
        def lookup(request) -> Optional[CacheEntry]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(
                        f"Error in {func.__name__}: {e}",
                        exc_info=True,
                    )
                return default_return

        return wrapper

    return decorator
