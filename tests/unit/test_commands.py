# =============================================================================
# tests/unit/test_commands.py
# Unit Tests for message parsing
# =============================================================================

import pytest

from edge_core.errors import UnknownCommandError
from edge_core.offline.commands import (
    ClearCache,
    ForceSync,
    GetData,
    GetStatus,
    SkipWaiting,
    StoreData,
    parse_message,
)


class TestParseMessage:
    """Test wire message decoding"""

    @pytest.mark.parametrize("message_type,expected", [
        ("GET_OFFLINE_DATA", GetData),
        ("FORCE_SYNC", ForceSync),
        ("CLEAR_CACHE", ClearCache),
        ("GET_CACHE_STATUS", GetStatus),
        ("SKIP_WAITING", SkipWaiting),
    ])
    def test_simple_commands(self, message_type, expected):
        assert isinstance(parse_message({"type": message_type}), expected)

    def test_store_offline_data(self):
        command = parse_message({
            "type": "STORE_OFFLINE_DATA",
            "data": {
                "orders": [{"id": "o1"}],
                "inventory": [{"id": "i1"}],
                "settings": {"currency": "CHF"},
            },
        })

        assert isinstance(command, StoreData)
        assert command.orders == [{"id": "o1"}]
        assert command.inventory == [{"id": "i1"}]
        assert command.customers is None
        assert not command.replace
        assert command.settings == {"currency": "CHF"}

    def test_store_without_data(self):
        command = parse_message({"type": "STORE_OFFLINE_DATA"})
        assert command == StoreData()

    def test_store_full_resync(self):
        command = parse_message({
            "type": "STORE_OFFLINE_DATA",
            "data": {"orders": [], "replace": True},
        })

        assert command == StoreData(orders=[], replace=True)

    def test_unknown_type_raises(self):
        with pytest.raises(UnknownCommandError) as exc_info:
            parse_message({"type": "MESH_DISCOVER"})

        assert exc_info.value.code == "CMD_001"
        assert exc_info.value.details["message_type"] == "MESH_DISCOVER"

    def test_missing_type_raises(self):
        with pytest.raises(UnknownCommandError):
            parse_message({"data": {}})

    def test_non_dict_raises(self):
        with pytest.raises(UnknownCommandError):
            parse_message("FORCE_SYNC")
