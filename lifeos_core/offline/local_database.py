# =============================================================================
# lifeos_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - durable client-side storage.

Holds three things:
- kv_store: string key/value pairs (cache snapshots, legacy blobs, id map)
- sync_queue: pending mutations waiting for the remote store
- schema bookkeeping

A single connection is shared by all threads and guarded by a re-entrant
lock, so ":memory:" databases behave the same as file-backed ones.
"""

from __future__ import annotations
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union
import logging

from lifeos_core.errors import StorageError

logger = logging.getLogger(__name__)


class LocalDatabase:
    """
    Local SQLite database for offline data storage.

    Usage:
        db = LocalDatabase(Path("local_data/lifeos.db"))
        db.initialize()
        db.set_item("darkMode", "true")
    """

    MEMORY = ":memory:"

    SCHEMA = {
        "kv_store": """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """,
        "sync_queue": """
            CREATE TABLE IF NOT EXISTS sync_queue (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                action TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                cache_key TEXT,
                owner_id TEXT,
                enqueued_at TEXT NOT NULL,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                last_error TEXT,
                status TEXT DEFAULT 'pending'
            )
        """,
        "idx_sync_queue_status": """
            CREATE INDEX IF NOT EXISTS idx_sync_queue_status
            ON sync_queue(status, id)
        """,
    }

    def __init__(self, db_path: Union[Path, str] = MEMORY):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path
        self._is_memory = str(db_path) == self.MEMORY
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._initialized = False

        if not self._is_memory:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # explicit BEGIN/COMMIT in transaction()
            )
            self._conn.row_factory = sqlite3.Row
            if not self._is_memory:
                self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for an atomic group of statements."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for name, ddl in self.SCHEMA.items():
                try:
                    conn.execute(ddl)
                    logger.debug(f"Created/verified: {name}")
                except sqlite3.Error as e:
                    raise StorageError(f"Error creating {name}: {e}")

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        """Execute a read query."""
        with self._lock:
            cursor = self._get_connection().execute(sql, params or [])
            return cursor.fetchall()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a single write statement in its own transaction."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    # =========================================================================
    # KEY/VALUE STORAGE
    # =========================================================================

    def get_item(self, key: str) -> Optional[str]:
        """Get a stored string, or None if the key is absent."""
        rows = self.query("SELECT value FROM kv_store WHERE key = ?", [key])
        return rows[0]["value"] if rows else None

    def set_item(self, key: str, value: str) -> None:
        """Store a string under key, replacing any previous value."""
        self.execute(
            """
            INSERT OR REPLACE INTO kv_store (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value, datetime.now().isoformat()]
        )

    def remove_item(self, key: str) -> bool:
        return self.execute("DELETE FROM kv_store WHERE key = ?", [key]) > 0

    def keys(self, prefix: str = "") -> List[str]:
        rows = self.query(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            [len(prefix), prefix]
        )
        return [row["key"] for row in rows]

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._initialized = False
