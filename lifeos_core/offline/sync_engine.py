# =============================================================================
# lifeos_core/offline/sync_engine.py
# Sync Coordinator: cache, queue and remote store behind one write/read API
# =============================================================================
"""
SyncCoordinator - the only component that mutates the cache and the queue.

Write path:
    1. write-through to the LocalCache (always, before any remote call)
    2. ONLINE_AUTHENTICATED -> RemoteStoreClient.write
       otherwise            -> SyncQueue.enqueue
    3. remote failures fall back to the queue (retryable), the dead-letter
       list (permanently rejected) or the queue plus a session teardown
       (authorization expired)

Read path: remote when authenticated, refreshing the cache; the cache on
any failure or when offline. Queued writes that have not reached the remote
store yet are laid over remote results so a refresh never hides them.

Replay: records created offline carry a client-side `local_id`. The remote
`id` assigned on first insert is stored in a persisted local_id -> id map,
so a record saved twice while offline is inserted once and updated once,
and a delete queued after an offline insert removes the inserted row.

Ordering: a failed entry is re-appended behind later ones so it cannot
block the queue. If a later SAVE of the same record applies first, the
retried older SAVE resolves to the same id and overwrites it with the
older payload when it finally succeeds.

Features:
- Background drain thread with exponential backoff on failures
- Drain on reconnect and on login
- Sync status tracking and event callbacks
"""

from __future__ import annotations
import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from lifeos_core.auth import AuthProvider, CurrentUser
from lifeos_core.config import Settings
from lifeos_core.errors import (
    AuthExpiredError,
    AuthRequiredError,
    LifeOSError,
    RemoteStoreError,
)
from lifeos_core.logging import LogContext
from lifeos_core.offline.cache_manager import LocalCache, cache_key as make_cache_key, same_record
from lifeos_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from lifeos_core.offline.local_database import LocalDatabase
from lifeos_core.offline.remote_store import Filters, RemoteStoreClient, normalize_filters
from lifeos_core.offline.sync_queue import (
    ApplyOutcome,
    DrainReport,
    QueueAction,
    QueueEntry,
    SyncQueue,
)

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

ID_MAP_PREFIX = "idmap:"


class WriteStatus(Enum):
    """Where a write ended up."""
    SYNCED = "synced"                   # Stored remotely
    QUEUED = "queued"                   # Cached and waiting in the sync queue
    AUTH_REQUIRED = "auth_required"     # Queued; the user must sign in again
    DEAD_LETTER = "dead_letter"         # Cached, but the remote store refused it


@dataclass
class WriteResult:
    status: WriteStatus
    record: Record = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.status is WriteStatus.SYNCED

    @property
    def queued(self) -> bool:
        return self.status in (WriteStatus.QUEUED, WriteStatus.AUTH_REQUIRED)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    dead_letter_count: int = 0
    total_synced: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class SyncCoordinator:
    """
    Offline-tolerant write/read API over the remote store.

    Usage:
        coordinator = SyncCoordinator(cache, queue, remote, connection, auth, db, settings)
        coordinator.notify_connectivity(True)
        result = coordinator.write("todos", {"title": "Call mom"})
        todos = coordinator.read("todos")
    """

    def __init__(
        self,
        cache: LocalCache,
        queue: SyncQueue,
        remote: RemoteStoreClient,
        connection: ConnectionManager,
        auth: AuthProvider,
        db: LocalDatabase,
        settings: Optional[Settings] = None,
    ):
        self._cache = cache
        self._queue = queue
        self._remote = remote
        self._connection = connection
        self._auth = auth
        self._db = db
        self._settings = settings or Settings()

        self._state = SyncState()
        self._drain_lock = threading.Lock()
        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._initialized = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    @property
    def pending_count(self) -> int:
        return self._queue.pending_count()

    def initialize(self) -> None:
        """Recover interrupted drains and subscribe to connection changes."""
        if self._initialized:
            return

        self._queue.recover()
        self._connection.register_callback(self._on_connection_change)
        self._refresh_counts()
        self._initialized = True
        logger.info(f"SyncCoordinator initialized ({self._state.pending_count} pending)")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _current_user(self) -> Optional[CurrentUser]:
        try:
            return self._auth.get_current_user()
        except Exception as e:
            logger.debug(f"Current user unavailable: {e}")
            return None

    def _owner_id(self) -> Optional[str]:
        user = self._current_user()
        return user.id if user else None

    def _load_id_map(self, collection: str) -> Dict[str, Any]:
        raw = self._db.get_item(ID_MAP_PREFIX + collection)
        if raw is None:
            return {}
        try:
            mapping = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt id map for {collection}")
            return {}
        return mapping if isinstance(mapping, dict) else {}

    def _remember_id(self, collection: str, local_id: Optional[str], remote_id: Any) -> None:
        if local_id is None or remote_id is None:
            return
        mapping = self._load_id_map(collection)
        if mapping.get(local_id) == remote_id:
            return
        mapping[local_id] = remote_id
        self._db.set_item(ID_MAP_PREFIX + collection, json.dumps(mapping, default=str))

    def _forget_id(self, collection: str, local_id: Optional[str]) -> None:
        if local_id is None:
            return
        mapping = self._load_id_map(collection)
        if mapping.pop(local_id, None) is not None:
            self._db.set_item(ID_MAP_PREFIX + collection, json.dumps(mapping, default=str))

    def resolve_id(self, collection: str, record: Record) -> Record:
        """Fill in the remote id of a record known only by its local_id."""
        if record.get("id") is None and record.get("local_id") is not None:
            remote_id = self._load_id_map(collection).get(record["local_id"])
            if remote_id is not None:
                record = {**record, "id": remote_id}
        return record

    def _has_outstanding(self, collection: str, record: Record) -> bool:
        return any(
            same_record(entry.payload, record)
            for entry in self._queue.outstanding(collection)
        )

    def _refresh_counts(self) -> None:
        self._state.pending_count = self._queue.pending_count()
        self._state.dead_letter_count = self._queue.dead_letter_count()

    # =========================================================================
    # WRITES
    # =========================================================================

    def write(self, collection: str, record: Record, cache_key: Optional[str] = None) -> WriteResult:
        """
        Save a record: cache first, then remote store or sync queue.

        Never raises for a write that could be queued.

        Args:
            collection: Remote collection (table) name
            record: Record to save; a record without `id` is created
            cache_key: Snapshot to update (default: the collection name)

        Returns:
            WriteResult with the cached record and where the write went
        """
        key = cache_key or collection
        record = dict(record)
        if record.get("id") is None and record.get("local_id") is None:
            record["local_id"] = uuid.uuid4().hex
        record = self.resolve_id(collection, record)

        self._cache.upsert(key, record)
        return self._send(collection, QueueAction.SAVE, record, key)

    def delete(
        self,
        collection: str,
        record_or_id: Union[Record, Any],
        cache_key: Optional[str] = None,
    ) -> WriteResult:
        """Remove a record from the cache now and from the remote store when possible."""
        key = cache_key or collection
        record = dict(record_or_id) if isinstance(record_or_id, dict) else {"id": record_or_id}
        record = self.resolve_id(collection, record)

        self._cache.discard(key, record)
        if record.get("id") is None and record.get("local_id") is None:
            return WriteResult(WriteStatus.SYNCED, record)

        return self._send(collection, QueueAction.DELETE, record, key)

    def _send(self, collection: str, action: QueueAction, record: Record, key: str) -> WriteResult:
        owner_id = self._owner_id()

        def enqueue(status: WriteStatus, error: Optional[str] = None) -> WriteResult:
            self._queue.enqueue(collection, action, record, owner_id=owner_id, cache_key=key)
            self._refresh_counts()
            self._notify_callbacks()
            return WriteResult(status, record, error)

        if self._connection.status == ConnectionStatus.OFFLINE:
            return enqueue(WriteStatus.QUEUED)
        if not self._connection.is_authenticated_online:
            return enqueue(WriteStatus.AUTH_REQUIRED)

        # Earlier writes to the same record are still queued; keep their order
        if self._has_outstanding(collection, record):
            result = enqueue(WriteStatus.QUEUED)
            self.drain()
            return result

        if action is QueueAction.DELETE and record.get("id") is None:
            # Created offline and never synced; the queued insert precedes this
            return enqueue(WriteStatus.QUEUED)

        try:
            if action is QueueAction.SAVE:
                stored = self._remote.write(collection, dict(record))
                record = {**record, **stored}
                self._remember_id(collection, record.get("local_id"), record.get("id"))
                self._cache.update_existing(key, record)
            else:
                self._remote.remove(collection, record["id"])
                self._forget_id(collection, record.get("local_id"))
            return WriteResult(WriteStatus.SYNCED, record)

        except AuthExpiredError as e:
            self._connection.report_auth_expired()
            return enqueue(WriteStatus.AUTH_REQUIRED, e.message)
        except AuthRequiredError as e:
            return enqueue(WriteStatus.AUTH_REQUIRED, e.message)
        except RemoteStoreError as e:
            if e.retryable:
                logger.info(f"Remote {action.value} on {collection} failed, queued: {e.message}")
                return enqueue(WriteStatus.QUEUED, e.message)

            self._queue.dead_letter(
                collection, action, record, e.message, owner_id=owner_id, cache_key=key
            )
            self._refresh_counts()
            self._notify_callbacks()
            return WriteResult(WriteStatus.DEAD_LETTER, record, e.message)
        except Exception as e:
            logger.error(f"Unexpected error on remote {action.value} of {collection}, queued: {e}")
            return enqueue(WriteStatus.QUEUED, str(e))

    # =========================================================================
    # READS
    # =========================================================================

    def read(
        self,
        collection: str,
        filters: Filters = None,
        cache_key: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> List[Record]:
        """
        Read a collection, remote first when possible, cache otherwise.

        Never raises; always returns a list.
        """
        try:
            clauses = normalize_filters(filters)
        except ValueError as e:
            logger.warning(f"Unusable filter for {collection}, serving cache: {e}")
            return (self._cache.get(cache_key) or []) if cache_key else []

        key = cache_key or make_cache_key(
            collection, **{f.field: f"{f.op}.{f.criteria()}" for f in clauses}
        )

        if self._connection.is_authenticated_online:
            try:
                rows = self._remote.read_filtered(collection, clauses, order_by=order_by)
                rows = self._overlay_outstanding(collection, key, rows)
                self._cache.put(key, rows)
                return rows
            except AuthExpiredError:
                self._connection.report_auth_expired()
            except LifeOSError as e:
                logger.info(f"Remote read of {collection} failed, serving cache: {e.message}")
            except Exception as e:
                logger.error(f"Unexpected error reading {collection}: {e}")

        return self._cache.get(key) or []

    def read_cached(self, collection: str) -> List[Record]:
        """
        Every cached record of a collection, across all of its snapshots.

        The unfiltered snapshot comes first; records from filtered snapshots
        ("notes:type=eq.quicknotes") are merged into matching records or
        appended, their fields taking precedence.
        """
        prefix = collection + ":"
        keys = [collection] + sorted(k for k in self._cache.keys() if k.startswith(prefix))

        merged: List[Record] = []
        for key in keys:
            for record in self._cache.get(key) or []:
                index = next((i for i, row in enumerate(merged) if same_record(row, record)), None)
                if index is None:
                    merged.append(dict(record))
                else:
                    merged[index] = {**merged[index], **record}
        return merged

    def _overlay_outstanding(self, collection: str, key: str, rows: List[Record]) -> List[Record]:
        """Apply queued writes for this snapshot on top of fresh remote rows."""
        owner_id = self._owner_id()
        rows = list(rows)
        for entry in self._queue.outstanding(collection):
            if entry.cache_key != key or (entry.owner_id and entry.owner_id != owner_id):
                continue

            payload = self.resolve_id(collection, entry.payload)
            index = next((i for i, row in enumerate(rows) if same_record(row, payload)), None)
            if entry.action is QueueAction.DELETE:
                if index is not None:
                    del rows[index]
            elif index is None:
                rows.append(payload)
            else:
                rows[index] = {**rows[index], **payload}
        return rows

    # =========================================================================
    # DRAIN
    # =========================================================================

    def drain(self) -> Optional[DrainReport]:
        """
        Replay the sync queue against the remote store.

        Returns:
            DrainReport, or None when nothing was attempted (offline,
            signed out, queue empty, or another drain in progress)
        """
        if not self._connection.is_authenticated_online:
            logger.debug("Cannot drain: not signed in online")
            return None

        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already in progress")
            return None

        try:
            if self._queue.pending_count() == 0:
                return None

            self._state.is_syncing = True
            self._state.last_sync = datetime.now()
            self._notify_callbacks()

            with LogContext(logger, "Draining sync queue"):
                report = self._queue.drain(self._apply_entry)

            self._state.total_synced += report.applied
            if report.clean:
                self._state.last_sync_success = datetime.now()
                self._state.consecutive_failures = 0
                self._state.last_error = None
            else:
                self._state.consecutive_failures += 1
                self._state.last_error = report.errors[-1] if report.errors else None

            logger.info(
                f"Drain complete: {report.applied} applied, {report.requeued} requeued, "
                f"{report.deferred} deferred, {report.dead_lettered} dead-lettered"
            )
            return report

        finally:
            self._state.is_syncing = False
            self._refresh_counts()
            self._drain_lock.release()
            self._notify_callbacks()

    def sync_now(self) -> bool:
        """Drain immediately; True when nothing failed."""
        report = self.drain()
        return report is None or report.clean

    def _apply_entry(self, entry: QueueEntry) -> ApplyOutcome:
        """Replay one queued mutation."""
        if not self._connection.is_authenticated_online:
            return ApplyOutcome.DEFER

        user = self._current_user()
        if user is None or (entry.owner_id and entry.owner_id != user.id):
            return ApplyOutcome.DEFER

        collection = entry.collection
        payload = self.resolve_id(collection, entry.payload)
        key = entry.cache_key or collection

        try:
            if entry.action is QueueAction.SAVE:
                stored = self._remote.write(collection, dict(payload))
                record = {**payload, **stored}
                self._remember_id(collection, record.get("local_id"), record.get("id"))
                self._cache.update_existing(key, record)
            elif payload.get("id") is not None:
                self._remote.remove(collection, payload["id"])
                self._forget_id(collection, payload.get("local_id"))
            else:
                # Insert never reached the remote store: nothing to delete
                logger.debug(f"Dropping delete of unsynced {collection} record")
            return ApplyOutcome.APPLIED

        except AuthExpiredError as e:
            self._connection.report_auth_expired()
            self._queue.record_error(entry, e.message)
            return ApplyOutcome.DEFER
        except AuthRequiredError:
            return ApplyOutcome.DEFER
        except RemoteStoreError as e:
            self._queue.record_error(entry, e.message)
            return ApplyOutcome.RETRY if e.retryable else ApplyOutcome.DEAD

    # =========================================================================
    # CONNECTIVITY AND SESSION SIGNALS
    # =========================================================================

    def notify_connectivity(self, online: bool) -> None:
        """Platform online/offline signal."""
        self._connection.set_network_available(online)

    def notify_login(self) -> None:
        """A user signed in; re-arms expiry handling and drains the queue."""
        self._connection.mark_authenticated()

    def notify_logout(self) -> None:
        self._connection.mark_signed_out()

    def _on_connection_change(self, state: ConnectionState) -> None:
        if state.status == ConnectionStatus.ONLINE_AUTHENTICATED:
            logger.info("Online and signed in, triggering drain")
            try:
                self.drain()
            except Exception as e:
                logger.error(f"Drain after reconnect failed: {e}")

    # =========================================================================
    # BACKGROUND LOOP
    # =========================================================================

    def next_interval(self) -> float:
        """Seconds until the next background drain."""
        interval = self._settings.sync_interval
        failures = self._state.consecutive_failures
        if failures == 0:
            return interval
        return min(interval * self._settings.backoff_base ** failures, self._settings.max_backoff)

    def start(self) -> None:
        """Start background sync thread."""
        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self.initialize()
        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncCoordinator"
        )
        self._sync_thread.start()
        logger.info("Sync loop started")

    def stop(self) -> None:
        """Stop background sync thread."""
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
        logger.info("Sync loop stopped")

    def _sync_loop(self) -> None:
        while not self._stop_sync.wait(timeout=self.next_interval()):
            if not self._connection.is_authenticated_online:
                continue
            try:
                self.drain()
            except Exception as e:
                self._state.consecutive_failures += 1
                logger.error(f"Sync error: {e}")

    # =========================================================================
    # DEAD LETTERS
    # =========================================================================

    def dead_letters(self) -> List[QueueEntry]:
        return self._queue.dead_letters()

    def retry_dead_letters(self) -> int:
        """Give every dead letter a fresh retry budget."""
        revived = self._queue.retry_dead_letters()
        if revived:
            logger.info(f"Re-queued {revived} dead letters")
            self._refresh_counts()
            self._notify_callbacks()
        return revived

    def discard_dead_letter(self, entry_id: int) -> bool:
        removed = self._queue.discard(entry_id)
        self._refresh_counts()
        return removed

    # =========================================================================
    # CALLBACKS / STATUS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "connection": self._connection.status.value,
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self._queue.pending_count(),
            "dead_letter_count": self._queue.dead_letter_count(),
            "total_synced": self._state.total_synced,
            "consecutive_failures": self._state.consecutive_failures,
            "next_sync_in": self.next_interval(),
            "last_error": self._state.last_error,
        }
