# =============================================================================
# edge_core/offline/local_database.py
# Local SQLite Store for Offline Operations
# =============================================================================
"""
LocalDatabase - durable, versioned local storage that survives restarts.

Features:
- Named partitions (orders, inventory, customers, settings, sync_queue,
  failed_tasks), each keyed by record ``id``
- Generic HTTP response cache, split by cache generation
- Versioned schema; migrations only ever add tables
- Thread-local connections and WAL journaling so several engine instances
  can share one database file
- DataFrame export (pandas) for accounting and inspection

Every sqlite failure is surfaced as StorageError. The store never retries.
"""

from __future__ import annotations
import json
import re
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

import pandas as pd

from edge_core.errors import StorageError
from edge_core.offline.models import CacheEntry, CacheStrategyKind, to_jsonable

logger = logging.getLogger(__name__)

_PARTITION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# sqlite messages that mean the store itself is unusable
_FATAL_MARKERS = ("database or disk is full", "not a database", "malformed", "disk i/o error")


def _partition_ddl(name: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {name} (
            id TEXT PRIMARY KEY,
            data_json TEXT NOT NULL,
            updated_at REAL
        )
    """


class LocalDatabase:
    """
    Local SQLite database backing the offline engine.

    Usage:
        store = LocalDatabase(Path("local_data/edge.db"))
        store.initialize()
        store.put("orders", {"id": "o1", "total": 12.5})
        store.get("orders", "o1")
    """

    DEFAULT_DB_PATH = Path("local_data") / "edge_offline.db"

    ORDERS = "orders"
    INVENTORY = "inventory"
    CUSTOMERS = "customers"
    SETTINGS = "settings"
    SYNC_QUEUE = "sync_queue"
    FAILED_TASKS = "failed_tasks"

    DOMAIN_PARTITIONS = (ORDERS, INVENTORY, CUSTOMERS, SETTINGS)

    SCHEMA_VERSION = 3

    # Version -> statements bringing the schema from version-1 to version
    MIGRATIONS = {
        1: [
            _partition_ddl(ORDERS),
            _partition_ddl(INVENTORY),
            _partition_ddl(CUSTOMERS),
            _partition_ddl(SYNC_QUEUE),
            """
            CREATE TABLE IF NOT EXISTS http_cache (
                cache_name TEXT NOT NULL,
                key TEXT NOT NULL,
                payload BLOB,
                status INTEGER DEFAULT 200,
                headers_json TEXT,
                stored_at REAL NOT NULL,
                ttl REAL NOT NULL,
                strategy TEXT NOT NULL,
                size INTEGER NOT NULL,
                PRIMARY KEY (cache_name, key)
            )
            """,
        ],
        2: [
            _partition_ddl(SETTINGS),
            _partition_ddl(FAILED_TASKS),
            "CREATE INDEX IF NOT EXISTS idx_http_cache_stored_at ON http_cache (stored_at)",
        ],
        3: [
            """
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
            """,
        ],
    }

    def __init__(
        self,
        db_path: Optional[Path] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a lock held by another instance
            clock: Time source for ``updated_at`` bookkeeping
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.timeout = timeout
        self._clock = clock
        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.timeout,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
            except sqlite3.Error as e:
                raise self._wrap(e, operation="connect")
            self._local.connection = conn
        return conn

    @staticmethod
    def _wrap(
        error: sqlite3.Error,
        partition: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> StorageError:
        text = str(error).lower()
        fatal = any(marker in text for marker in _FATAL_MARKERS)
        return StorageError(
            f"Local store {operation or 'operation'} failed: {error}",
            partition=partition,
            operation=operation,
            recoverable=not fatal,
        )

    @contextmanager
    def transaction(self, partition: Optional[str] = None, operation: Optional[str] = None):
        """Context manager for a write transaction; sqlite errors become StorageError."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise self._wrap(e, partition, operation) from e
        except Exception:
            conn.rollback()
            raise

    def _query(self, sql: str, params: Iterable = (), partition: Optional[str] = None) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, list(params)).fetchall()
        except sqlite3.Error as e:
            raise self._wrap(e, partition, "read") from e

    # =========================================================================
    # SCHEMA
    # =========================================================================

    @property
    def schema_version(self) -> int:
        return self._query("PRAGMA user_version")[0][0]

    def initialize(self) -> None:
        """Create or migrate the schema up to SCHEMA_VERSION."""
        if self._initialized:
            return

        with self._init_lock:
            if self._initialized:
                return
            current = self.schema_version
            with self.transaction(operation="migrate") as conn:
                for version in range(current + 1, self.SCHEMA_VERSION + 1):
                    for statement in self.MIGRATIONS.get(version, []):
                        conn.execute(statement)
                    logger.debug(f"Applied schema migration {version}")
                if current < self.SCHEMA_VERSION:
                    conn.execute(f"PRAGMA user_version = {int(self.SCHEMA_VERSION)}")
            self._initialized = True

        logger.info(f"Local store initialized at {self.db_path} (schema v{self.SCHEMA_VERSION})")

    @staticmethod
    def _check_partition(partition: str) -> str:
        if not isinstance(partition, str) or not _PARTITION_NAME.match(partition):
            raise StorageError(f"Invalid partition name: {partition!r}", partition=str(partition))
        return partition

    def has_partition(self, partition: str) -> bool:
        self._check_partition(partition)
        rows = self._query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            [partition],
        )
        return bool(rows)

    def partitions(self) -> List[str]:
        rows = self._query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' AND name NOT IN ('http_cache', 'counters') ORDER BY name"
        )
        return [row["name"] for row in rows]

    # =========================================================================
    # PARTITION CRUD
    # =========================================================================

    def get(self, partition: str, key: str) -> Optional[Dict[str, Any]]:
        """Fetch one record; ``None`` on a miss or an unknown partition."""
        if not self.has_partition(partition):
            return None
        rows = self._query(
            f"SELECT data_json FROM {partition} WHERE id = ?",
            [str(key)],
            partition,
        )
        return json.loads(rows[0]["data_json"]) if rows else None

    def get_all(self, partition: str) -> List[Dict[str, Any]]:
        """All records of a partition; ``[]`` if it was never written."""
        if not self.has_partition(partition):
            return []
        rows = self._query(
            f"SELECT data_json FROM {partition} ORDER BY rowid",
            partition=partition,
        )
        return [json.loads(row["data_json"]) for row in rows]

    def count(self, partition: str) -> int:
        if not self.has_partition(partition):
            return 0
        return self._query(f"SELECT COUNT(*) FROM {partition}", partition=partition)[0][0]

    def _record_row(self, partition: str, record: Dict[str, Any]) -> List[Any]:
        if not isinstance(record, dict) or record.get("id") in (None, ""):
            raise StorageError("Record has no 'id'", partition=partition, operation="put")
        try:
            data = json.dumps(record, default=to_jsonable)
        except TypeError as e:
            raise StorageError(f"Record is not serializable: {e}", partition=partition, operation="put")
        return [str(record["id"]), data, self._clock()]

    def put(self, partition: str, record: Dict[str, Any]) -> None:
        """Upsert a record by its ``id``; the partition is created on first write."""
        self.put_many(partition, [record])

    def put_many(self, partition: str, records: List[Dict[str, Any]]) -> int:
        """Upsert several records in one transaction."""
        self._check_partition(partition)
        rows = [self._record_row(partition, r) for r in records]
        with self.transaction(partition, "put") as conn:
            conn.execute(_partition_ddl(partition))
            conn.executemany(
                f"INSERT OR REPLACE INTO {partition} (id, data_json, updated_at) VALUES (?, ?, ?)",
                rows,
            )
        return len(rows)

    def replace_all(self, partition: str, records: List[Dict[str, Any]]) -> int:
        """Clear a partition and write ``records`` in a single transaction."""
        self._check_partition(partition)
        rows = [self._record_row(partition, r) for r in records]
        with self.transaction(partition, "replace") as conn:
            conn.execute(_partition_ddl(partition))
            conn.execute(f"DELETE FROM {partition}")
            conn.executemany(
                f"INSERT OR REPLACE INTO {partition} (id, data_json, updated_at) VALUES (?, ?, ?)",
                rows,
            )
        return len(rows)

    def write_partitions(
        self,
        batches: Dict[str, List[Dict[str, Any]]],
        replace: bool = False,
    ) -> Dict[str, int]:
        """
        Upsert records into several partitions in a single transaction.

        Every record is checked before anything is written, so a bad record
        leaves all partitions untouched.

        Args:
            batches: Partition name -> records
            replace: Clear each listed partition before writing (full resync)

        Returns:
            Records written per partition
        """
        rows = {
            self._check_partition(partition): [self._record_row(partition, r) for r in records]
            for partition, records in batches.items()
        }
        with self.transaction(operation="replace" if replace else "put") as conn:
            for partition, partition_rows in rows.items():
                conn.execute(_partition_ddl(partition))
                if replace:
                    conn.execute(f"DELETE FROM {partition}")
                conn.executemany(
                    f"INSERT OR REPLACE INTO {partition} (id, data_json, updated_at) VALUES (?, ?, ?)",
                    partition_rows,
                )
        return {partition: len(partition_rows) for partition, partition_rows in rows.items()}

    def next_sequence(self, name: str) -> int:
        """Next value of a persistent counter, starting at 0."""
        with self.transaction("counters", "increment") as conn:
            conn.execute(
                "INSERT INTO counters (name, value) VALUES (?, 0) "
                "ON CONFLICT(name) DO UPDATE SET value = value + 1",
                [name],
            )
            row = conn.execute("SELECT value FROM counters WHERE name = ?", [name]).fetchone()
        return int(row[0])

    def delete(self, partition: str, key: str) -> bool:
        if not self.has_partition(partition):
            return False
        with self.transaction(partition, "delete") as conn:
            cursor = conn.execute(f"DELETE FROM {partition} WHERE id = ?", [str(key)])
            return cursor.rowcount > 0

    def move(self, source: str, target: str, record: Dict[str, Any]) -> None:
        """Write ``record`` into ``target`` and drop its id from ``source`` atomically."""
        self._check_partition(source)
        self._check_partition(target)
        row = self._record_row(target, record)
        with self.transaction(target, "move") as conn:
            conn.execute(_partition_ddl(source))
            conn.execute(_partition_ddl(target))
            conn.execute(
                f"INSERT OR REPLACE INTO {target} (id, data_json, updated_at) VALUES (?, ?, ?)",
                row,
            )
            conn.execute(f"DELETE FROM {source} WHERE id = ?", [row[0]])

    def clear(self, partition: str) -> int:
        """Wipe all records of a partition."""
        if not self.has_partition(partition):
            return 0
        with self.transaction(partition, "clear") as conn:
            cursor = conn.execute(f"DELETE FROM {partition}")
            return cursor.rowcount

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, partition: str) -> pd.DataFrame:
        """Load a partition into a DataFrame, one column per record field."""
        records = self.get_all(partition)
        if not records:
            return pd.DataFrame()
        return pd.DataFrame.from_records(records)

    def cache_frame(self, cache_name: Optional[str] = None) -> pd.DataFrame:
        """Cache metadata (no payloads): cache_name, key, size, stored_at."""
        query = "SELECT cache_name, key, size, stored_at FROM http_cache"
        params: List[Any] = []
        if cache_name is not None:
            query += " WHERE cache_name = ?"
            params.append(cache_name)
        query += " ORDER BY stored_at ASC"
        try:
            return pd.read_sql_query(query, self._get_connection(), params=params)
        except (sqlite3.Error, pd.errors.DatabaseError) as e:
            raise StorageError(f"Cannot read cache index: {e}", partition="http_cache", operation="read")

    # =========================================================================
    # HTTP CACHE
    # =========================================================================

    def put_cache_entry(self, entry: CacheEntry) -> None:
        with self.transaction("http_cache", "put") as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO http_cache
                    (cache_name, key, payload, status, headers_json, stored_at, ttl, strategy, size)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    entry.cache_name,
                    entry.key,
                    sqlite3.Binary(entry.payload),
                    entry.status,
                    json.dumps(entry.headers),
                    entry.stored_at,
                    entry.ttl,
                    entry.strategy.value,
                    entry.size,
                ],
            )

    def get_cache_entry(self, key: str, cache_name: str) -> Optional[CacheEntry]:
        rows = self._query(
            "SELECT * FROM http_cache WHERE cache_name = ? AND key = ?",
            [cache_name, key],
            "http_cache",
        )
        if not rows:
            return None
        row = rows[0]
        return CacheEntry(
            key=row["key"],
            payload=bytes(row["payload"] or b""),
            stored_at=row["stored_at"],
            ttl=row["ttl"],
            strategy=CacheStrategyKind(row["strategy"]),
            status=row["status"],
            headers=json.loads(row["headers_json"] or "{}"),
            cache_name=row["cache_name"],
        )

    def delete_cache_entries(self, keys: List[str], cache_name: str) -> int:
        if not keys:
            return 0
        with self.transaction("http_cache", "delete") as conn:
            cursor = conn.executemany(
                "DELETE FROM http_cache WHERE cache_name = ? AND key = ?",
                [[cache_name, k] for k in keys],
            )
            return cursor.rowcount

    def delete_cache_entry(self, key: str, cache_name: str) -> bool:
        return self.delete_cache_entries([key], cache_name) > 0

    def cache_size(self, cache_name: Optional[str] = None) -> int:
        if cache_name is None:
            rows = self._query("SELECT COALESCE(SUM(size), 0) FROM http_cache")
        else:
            rows = self._query(
                "SELECT COALESCE(SUM(size), 0) FROM http_cache WHERE cache_name = ?",
                [cache_name],
            )
        return int(rows[0][0])

    def cache_names(self) -> List[str]:
        rows = self._query("SELECT DISTINCT cache_name FROM http_cache ORDER BY cache_name")
        return [row["cache_name"] for row in rows]

    def clear_cache(self, cache_name: Optional[str] = None) -> int:
        """Remove cached responses of one generation, or of all generations."""
        with self.transaction("http_cache", "clear") as conn:
            if cache_name is None:
                cursor = conn.execute("DELETE FROM http_cache")
            else:
                cursor = conn.execute("DELETE FROM http_cache WHERE cache_name = ?", [cache_name])
            return cursor.rowcount

    def rename_cache(self, source: str, target: str) -> int:
        """
        Move every entry of ``source`` under ``target``. Entries of ``target``
        with the same key are replaced; the others are kept.
        """
        with self.transaction("http_cache", "rename") as conn:
            cursor = conn.execute(
                "UPDATE OR REPLACE http_cache SET cache_name = ? WHERE cache_name = ?",
                [target, source],
            )
            return cursor.rowcount

    def delete_other_caches(self, keep: Iterable[str]) -> int:
        """Drop every cache generation not listed in ``keep``."""
        keep = list(keep)
        placeholders = ", ".join("?" for _ in keep) or "''"
        with self.transaction("http_cache", "clear") as conn:
            cursor = conn.execute(
                f"DELETE FROM http_cache WHERE cache_name NOT IN ({placeholders})",
                keep,
            )
            return cursor.rowcount

    def close(self) -> None:
        """Close this thread's database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is not None:
            conn.close()
            self._local.connection = None
