# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for LocalDatabase
# =============================================================================

import sqlite3

import numpy as np
import pytest

from edge_core.errors import StorageError
from edge_core.offline.local_database import LocalDatabase
from edge_core.offline.models import CacheEntry, CacheStrategyKind


def make_entry(key, size=10, stored_at=0.0, cache_name="v1"):
    return CacheEntry(
        key=key,
        payload=b"x" * size,
        stored_at=stored_at,
        ttl=60,
        strategy=CacheStrategyKind.CACHE_FIRST,
        cache_name=cache_name,
    )


class TestSchema:
    """Test schema creation and migrations"""

    def test_initialize_sets_schema_version(self, store):
        assert store.schema_version == LocalDatabase.SCHEMA_VERSION

    def test_initialize_creates_partitions(self, store):
        partitions = store.partitions()
        for name in ("orders", "inventory", "customers", "settings", "sync_queue", "failed_tasks"):
            assert name in partitions
        assert "http_cache" not in partitions

    def test_migrates_from_version_one(self, tmp_path):
        """A v1 database gains the v2 partitions on initialize"""
        path = tmp_path / "old.db"
        conn = sqlite3.connect(str(path))
        for statement in LocalDatabase.MIGRATIONS[1]:
            conn.execute(statement)
        conn.execute("PRAGMA user_version = 1")
        conn.commit()
        conn.close()

        db = LocalDatabase(path)
        assert not db.has_partition("failed_tasks")
        db.initialize()

        assert db.schema_version == LocalDatabase.SCHEMA_VERSION
        assert db.has_partition("failed_tasks")
        assert db.has_partition("settings")
        db.close()

    def test_initialize_is_idempotent(self, store):
        store.initialize()
        assert store.schema_version == LocalDatabase.SCHEMA_VERSION


class TestPartitionCrud:
    """Test record storage per partition"""

    def test_put_and_get(self, store):
        store.put("orders", {"id": "o1", "total": 12.5})
        assert store.get("orders", "o1") == {"id": "o1", "total": 12.5}

    def test_get_miss_returns_none(self, store):
        assert store.get("orders", "missing") is None

    def test_put_overwrites_by_id(self, store):
        store.put("orders", {"id": "o1", "total": 1})
        store.put("orders", {"id": "o1", "total": 2})
        assert store.count("orders") == 1
        assert store.get("orders", "o1")["total"] == 2

    def test_unknown_partition_reads_empty(self, store):
        assert store.get_all("loyalty") == []
        assert store.get("loyalty", "x") is None
        assert store.count("loyalty") == 0

    def test_partition_created_on_first_write(self, store):
        store.put("loyalty", {"id": "l1", "points": 3})
        assert store.has_partition("loyalty")
        assert store.get_all("loyalty") == [{"id": "l1", "points": 3}]

    def test_record_without_id_raises(self, store):
        with pytest.raises(StorageError) as exc_info:
            store.put("orders", {"total": 1})
        assert exc_info.value.code == "STORE_001"

    def test_invalid_partition_name_raises(self, store):
        with pytest.raises(StorageError):
            store.put("orders; DROP TABLE orders", {"id": "1"})

    def test_numpy_values_are_serialized(self, store):
        store.put("inventory", {"id": "i1", "qty": np.int64(4), "price": np.float64(2.5)})
        assert store.get("inventory", "i1") == {"id": "i1", "qty": 4, "price": 2.5}

    def test_replace_all(self, store):
        store.put_many("customers", [{"id": "c1"}, {"id": "c2"}])
        store.replace_all("customers", [{"id": "c3"}])
        assert [r["id"] for r in store.get_all("customers")] == ["c3"]

    def test_delete_and_clear(self, store):
        store.put_many("orders", [{"id": "a"}, {"id": "b"}])
        assert store.delete("orders", "a")
        assert not store.delete("orders", "a")
        assert store.clear("orders") == 1
        assert store.count("orders") == 0

    def test_move_between_partitions(self, store):
        store.put("sync_queue", {"id": "t1", "type": "api_request"})
        store.move("sync_queue", "failed_tasks", {"id": "t1", "type": "api_request", "failed_at": 1})

        assert store.get("sync_queue", "t1") is None
        assert store.get("failed_tasks", "t1")["failed_at"] == 1

    def test_write_partitions_is_all_or_nothing(self, store):
        with pytest.raises(StorageError):
            store.write_partitions({
                "orders": [{"id": "o1"}],
                "inventory": [{"name": "no id"}],
            })

        assert store.count("orders") == 0
        assert store.count("inventory") == 0

    def test_write_partitions_replace(self, store):
        store.put_many("orders", [{"id": "o1"}, {"id": "o2"}])
        store.put("customers", {"id": "c1"})

        written = store.write_partitions({"orders": [{"id": "o2"}], "inventory": []}, replace=True)

        assert written == {"orders": 1, "inventory": 0}
        assert [r["id"] for r in store.get_all("orders")] == ["o2"]
        assert store.count("customers") == 1

    def test_next_sequence_persists(self, store, tmp_path, clock):
        assert store.next_sequence("sync_queue") == 0
        assert store.next_sequence("sync_queue") == 1
        assert store.next_sequence("other") == 0
        store.close()

        reopened = LocalDatabase(tmp_path / "edge_offline.db", clock=clock)
        reopened.initialize()
        assert reopened.next_sequence("sync_queue") == 2
        assert "counters" not in reopened.partitions()
        reopened.close()

    def test_to_dataframe(self, store):
        store.put_many("orders", [{"id": "a", "total": 1}, {"id": "b", "total": 2}])
        df = store.to_dataframe("orders")
        assert list(df["id"]) == ["a", "b"]
        assert df["total"].sum() == 3

    def test_to_dataframe_empty(self, store):
        assert store.to_dataframe("orders").empty


class TestResponseCache:
    """Test cached response storage"""

    def test_put_and_get_entry(self, store):
        store.put_cache_entry(make_entry("GET /api/menu", size=5, stored_at=100.0))
        entry = store.get_cache_entry("GET /api/menu", "v1")

        assert entry.payload == b"xxxxx"
        assert entry.stored_at == 100.0
        assert entry.strategy == CacheStrategyKind.CACHE_FIRST

    def test_entries_are_scoped_by_cache_name(self, store):
        store.put_cache_entry(make_entry("GET /a", cache_name="v1"))
        assert store.get_cache_entry("GET /a", "v2") is None

    def test_cache_size_and_frame(self, store):
        store.put_cache_entry(make_entry("GET /a", size=10, stored_at=2.0))
        store.put_cache_entry(make_entry("GET /b", size=20, stored_at=1.0))

        assert store.cache_size() == 30
        frame = store.cache_frame()
        assert list(frame["key"]) == ["GET /b", "GET /a"]

    def test_delete_other_caches(self, store):
        store.put_cache_entry(make_entry("GET /a", cache_name="v1"))
        store.put_cache_entry(make_entry("GET /a", cache_name="v2"))

        assert store.delete_other_caches(["v2"]) == 1
        assert store.cache_names() == ["v2"]

    def test_rename_cache_replaces_same_keys(self, store):
        store.put_cache_entry(make_entry("GET /a", size=1, cache_name="v1"))
        store.put_cache_entry(make_entry("GET /b", size=1, cache_name="v1"))
        store.put_cache_entry(make_entry("GET /a", size=3, cache_name="v1-installing"))

        assert store.rename_cache("v1-installing", "v1") == 1

        assert store.cache_names() == ["v1"]
        assert store.get_cache_entry("GET /a", "v1").size == 3
        assert store.get_cache_entry("GET /b", "v1") is not None

    def test_clear_cache(self, store):
        store.put_cache_entry(make_entry("GET /a", cache_name="v1"))
        store.put_cache_entry(make_entry("GET /b", cache_name="v2"))
        assert store.clear_cache("v1") == 1
        assert store.clear_cache() == 1
        assert store.cache_size() == 0


class TestStorageErrors:
    """Test sqlite failures surface as StorageError"""

    def test_corrupt_file_is_unrecoverable(self, tmp_path):
        path = tmp_path / "corrupt.db"
        path.write_bytes(b"this is not a sqlite database" * 100)

        db = LocalDatabase(path)
        with pytest.raises(StorageError) as exc_info:
            db.initialize()

        assert not exc_info.value.recoverable
        db.close()
