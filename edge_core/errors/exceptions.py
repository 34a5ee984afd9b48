# =============================================================================
# edge_core/errors/exceptions.py
# Custom Exception Hierarchy for the Edge Offline Engine
# =============================================================================

from typing import Optional, Dict, Any


class EdgeCoreError(Exception):
    """
    Base exception for all offline-engine errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "EDGE_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# STORAGE EXCEPTIONS
# =============================================================================

class StorageError(EdgeCoreError):
    """Raised when local persistence fails (quota, corruption, bad partition)"""

    def __init__(
        self,
        message: str,
        partition: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if partition:
            details["partition"] = partition
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# NETWORK / SYNC EXCEPTIONS
# =============================================================================

class NetworkError(EdgeCoreError):
    """Raised when a request could not reach the remote store"""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        method: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if url:
            details["url"] = url
        if method:
            details["method"] = method

        super().__init__(
            message=message,
            code="NET_001",
            details=details,
            **kwargs,
        )


class RetryExhaustedError(EdgeCoreError):
    """Raised (and reported) when a sync task exceeds its retry budget"""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        retries: Optional[int] = None,
        last_error: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if task_id:
            details["task_id"] = task_id
        if retries is not None:
            details["retries"] = retries
        if last_error:
            details["last_error"] = last_error

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# LIFECYCLE / COMMAND EXCEPTIONS
# =============================================================================

class LifecycleError(EdgeCoreError):
    """Raised on an illegal cache-generation state transition"""

    def __init__(
        self,
        message: str,
        generation: Optional[str] = None,
        state: Optional[str] = None,
        target: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if generation:
            details["generation"] = generation
        if state:
            details["state"] = state
        if target:
            details["target"] = target

        super().__init__(
            message=message,
            code="LIFE_001",
            details=details,
            **kwargs,
        )


class UnknownCommandError(EdgeCoreError):
    """Raised when an inbound message does not map to a known command"""

    def __init__(self, message: str, message_type: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if message_type:
            details["message_type"] = message_type

        super().__init__(
            message=message,
            code="CMD_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(EdgeCoreError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
