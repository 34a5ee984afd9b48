# =============================================================================
# tests/unit/test_errors.py
# Unit Tests for the error hierarchy and handlers
# =============================================================================

from unittest.mock import MagicMock

import pytest

from edge_core.errors import (
    EdgeCoreError,
    ErrorContext,
    NetworkError,
    RetryExhaustedError,
    StorageError,
    error_boundary,
    handle_error,
    safe_execute,
)
from edge_core.errors.handlers import should_escalate


class TestExceptions:
    """Test exception payloads"""

    def test_to_dict(self):
        error = StorageError("disk full", partition="orders", operation="put", recoverable=False)
        data = error.to_dict()

        assert data["error_type"] == "StorageError"
        assert data["code"] == "STORE_001"
        assert data["details"] == {"partition": "orders", "operation": "put"}
        assert data["recoverable"] is False

    def test_str_includes_code(self):
        error = NetworkError("unreachable", url="/api/menu", method="GET")
        assert str(error).startswith("[NET_001] unreachable")

    def test_hierarchy(self):
        assert issubclass(RetryExhaustedError, EdgeCoreError)
        assert not RetryExhaustedError("gave up", task_id="t1").recoverable


class TestEscalation:
    """Test which errors reach the notifier"""

    def test_should_escalate(self):
        assert should_escalate(RetryExhaustedError("gave up"))
        assert should_escalate(StorageError("corrupt", recoverable=False))
        assert not should_escalate(StorageError("busy"))
        assert not should_escalate(NetworkError("down"))
        assert not should_escalate(ValueError("x"))

    def test_handle_error_notifies_escalated(self):
        notifier = MagicMock()
        handle_error(RetryExhaustedError("gave up", task_id="t1"), notifier=notifier)

        event_type, payload = notifier.notify.call_args[0]
        assert event_type == "error"
        assert payload["code"] == "SYNC_001"
        assert payload["details"]["task_id"] == "t1"

    def test_handle_error_only_logs_recoverable(self):
        notifier = MagicMock()
        handle_error(NetworkError("down"), notifier=notifier)
        notifier.notify.assert_not_called()


class TestHelpers:
    """Test safe_execute, ErrorContext and error_boundary"""

    def test_safe_execute_returns_default(self):
        def broken():
            raise StorageError("locked")

        assert safe_execute(broken, default=[]) == []

    def test_safe_execute_reraise(self):
        with pytest.raises(ValueError):
            safe_execute(MagicMock(side_effect=ValueError("bad")), reraise=True)

    def test_safe_execute_passes_arguments(self):
        assert safe_execute(lambda a, b=0: a + b, 1, b=2) == 3

    def test_error_context_suppresses_recoverable(self):
        with ErrorContext("Precaching", recoverable=True) as ctx:
            raise NetworkError("down")
        assert isinstance(ctx.error, NetworkError)

    def test_error_context_propagates_unrecoverable(self):
        with pytest.raises(StorageError):
            with ErrorContext("Writing", recoverable=False):
                raise StorageError("corrupt", recoverable=False)

    def test_error_boundary(self):
        @error_boundary(default_return="fallback")
        def lookup():
            raise RuntimeError("boom")

        assert lookup() == "fallback"
