# =============================================================================
# lifeos_core/offline/cache_manager.py
# Local snapshot cache for collections
# =============================================================================
"""
LocalCache - last known snapshot of each collection, for instant reads and
offline fallback.

Snapshots are JSON arrays stored in the LocalDatabase key/value table under
"cache:<key>". There is no TTL: entries are replaced on every write or
successful remote read, last writer wins per key. Oversized snapshots are
pruned to the newest `max_records` so the store stays bounded.

Writes (put, upsert, update_existing, discard) are serialized by a
per-cache lock: the background drain thread and the caller thread
merge into the same snapshots.
"""

from __future__ import annotations
import json
import threading
from typing import Any, Dict, List, Optional
import logging

from lifeos_core.errors import CacheCorruptionError
from lifeos_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

CACHE_PREFIX = "cache:"


def cache_key(collection: str, /, **params: Any) -> str:
    """
    Build a cache key for a collection, optionally parameterized.

    >>> cache_key("notes")
    'notes'
    >>> cache_key("notes", type="quicknotes")
    'notes:type=quicknotes'
    """
    if not params:
        return collection
    suffix = ",".join(f"{name}={params[name]}" for name in sorted(params))
    return f"{collection}:{suffix}"


def same_record(a: Record, b: Record) -> bool:
    """Records match on remote id first, then on client-side local_id."""
    if a.get("id") is not None and b.get("id") is not None:
        return a["id"] == b["id"]
    if a.get("local_id") is not None and b.get("local_id") is not None:
        return a["local_id"] == b["local_id"]
    return False


class LocalCache:
    """
    Durable mapping from cache key to a list of records.

    Usage:
        cache = LocalCache(db)
        cache.put("todos", rows)
        cache.upsert("todos", {"id": 7, "title": "Ship it"})
        rows = cache.get("todos") or []
    """

    DEFAULT_MAX_RECORDS = 5000

    def __init__(self, db: LocalDatabase, max_records: int = DEFAULT_MAX_RECORDS):
        self._db = db
        self.max_records = max_records
        self._lock = threading.RLock()

    def _storage_key(self, key: str) -> str:
        return CACHE_PREFIX + key

    def load(self, key: str) -> Optional[List[Record]]:
        """
        Read a snapshot, raising on corrupt data.

        Raises:
            CacheCorruptionError: if the stored value is not a JSON array
        """
        raw = self._db.get_item(self._storage_key(key))
        if raw is None:
            return None

        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CacheCorruptionError(f"Cached snapshot is not valid JSON: {e}", key=key)

        if not isinstance(records, list):
            raise CacheCorruptionError(
                f"Cached snapshot is a {type(records).__name__}, expected a list", key=key
            )
        return [r for r in records if isinstance(r, dict)]

    def get(self, key: str) -> Optional[List[Record]]:
        """Read a snapshot; corrupt data is logged and reported as missing."""
        try:
            return self.load(key)
        except CacheCorruptionError as e:
            logger.warning(f"Ignoring corrupt cache entry: {e}")
            return None

    def put(self, key: str, records: List[Record]) -> None:
        """Replace the snapshot stored under key; the oldest records are pruned first."""
        records = list(records)
        if self.max_records and len(records) > self.max_records:
            logger.warning(
                f"Cache '{key}' holds {len(records)} records; keeping the last {self.max_records}"
            )
            records = records[-self.max_records:]

        with self._lock:
            self._db.set_item(self._storage_key(key), json.dumps(records, default=str))

    def upsert(self, key: str, record: Record) -> None:
        """Merge one record into a snapshot; the first match is replaced, else it is appended."""
        with self._lock:
            records = self.get(key) or []
            for index, existing in enumerate(records):
                if same_record(existing, record):
                    records[index] = {**existing, **record}
                    break
            else:
                records.append(dict(record))
            self.put(key, records)

    def update_existing(self, key: str, record: Record) -> bool:
        """Merge into a matching record only; never adds one."""
        with self._lock:
            records = self.get(key)
            if not records:
                return False

            for index, existing in enumerate(records):
                if same_record(existing, record):
                    records[index] = {**existing, **record}
                    self.put(key, records)
                    return True
            return False

    def discard(self, key: str, record: Record) -> bool:
        """Drop the first record matching `record`; returns True if one was removed."""
        with self._lock:
            records = self.get(key)
            if not records:
                return False

            for index, existing in enumerate(records):
                if same_record(existing, record):
                    del records[index]
                    self.put(key, records)
                    return True
            return False

    def find(self, key: str, /, **fields: Any) -> Optional[Record]:
        """First cached record whose fields equal the given values."""
        for record in self.get(key) or []:
            if all(record.get(name) == value for name, value in fields.items()):
                return record
        return None

    def invalidate(self, key: str) -> None:
        self._db.remove_item(self._storage_key(key))

    def keys(self) -> List[str]:
        return [k[len(CACHE_PREFIX):] for k in self._db.keys(CACHE_PREFIX)]
