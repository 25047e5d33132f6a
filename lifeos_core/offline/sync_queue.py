# =============================================================================
# lifeos_core/offline/sync_queue.py
# Durable FIFO of mutations waiting for the remote store
# =============================================================================
"""
SyncQueue - ordered, durable list of pending save/delete operations.

Drain semantics:
- The rows pending when drain() starts form the snapshot; they are marked
  'in_flight' in one transaction. Rows enqueued while the drain runs are not
  part of it and wait for the next drain.
- Each snapshot entry is offered to `apply` in enqueue order.
- A failed entry is deleted and appended again at the end of the queue. One
  entry that keeps failing therefore never blocks the entries behind it, but
  it can end up after entries that arrived later: liveness over ordering.
- After `max_attempts` failed replays an entry becomes a dead letter and is
  no longer replayed until retry_dead_letters() is called.

Marking the snapshot instead of deleting it means a crash mid-drain loses
nothing; recover() puts 'in_flight' rows back to 'pending' on startup.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from lifeos_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


class QueueAction(Enum):
    SAVE = "save"
    DELETE = "delete"


class EntryStatus(Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DEAD = "dead"


class ApplyOutcome(Enum):
    """What drain() should do with an entry after trying to apply it."""
    APPLIED = "applied"     # Remove from the queue
    RETRY = "retry"         # Append to the end, count an attempt
    DEAD = "dead"           # Permanent failure, move to dead letters now
    DEFER = "defer"         # Not attempted (e.g. wrong owner), append without counting


@dataclass
class QueueEntry:
    """One pending mutation."""
    entry_id: int
    collection: str
    action: QueueAction
    payload: Dict[str, Any]
    owner_id: Optional[str] = None
    cache_key: Optional[str] = None
    enqueued_at: str = ""
    attempts: int = 0
    last_error: Optional[str] = None
    status: EntryStatus = EntryStatus.PENDING


@dataclass
class DrainReport:
    """Summary of one drain() pass."""
    applied: int = 0
    requeued: int = 0
    deferred: int = 0
    dead_lettered: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.applied + self.requeued + self.dead_lettered

    @property
    def failed(self) -> int:
        return self.requeued + self.dead_lettered

    @property
    def clean(self) -> bool:
        return self.failed == 0


ApplyFunc = Callable[[QueueEntry], ApplyOutcome]


class SyncQueue:
    """
    SQLite-backed FIFO queue for offline writes.

    Usage:
        queue = SyncQueue(db)
        queue.enqueue("todos", QueueAction.SAVE, {"title": "Milk"})
        report = queue.drain(apply_entry)
    """

    DEFAULT_MAX_ATTEMPTS = 5

    def __init__(self, db: LocalDatabase, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._db = db
        self.max_attempts = max_attempts

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    @staticmethod
    def _to_entry(row) -> Optional[QueueEntry]:
        try:
            payload = json.loads(row["payload_json"])
        except json.JSONDecodeError as e:
            logger.error(f"Dropping queue entry {row['id']} with corrupt payload: {e}")
            return None

        return QueueEntry(
            entry_id=row["id"],
            collection=row["collection"],
            action=QueueAction(row["action"]),
            payload=payload if isinstance(payload, dict) else {},
            owner_id=row["owner_id"],
            cache_key=row["cache_key"],
            enqueued_at=row["enqueued_at"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            status=EntryStatus(row["status"]),
        )

    def _select(self, status: EntryStatus) -> List[QueueEntry]:
        rows = self._db.query(
            "SELECT * FROM sync_queue WHERE status = ? ORDER BY id ASC",
            [status.value]
        )
        entries = [self._to_entry(row) for row in rows]
        return [e for e in entries if e is not None]

    # =========================================================================
    # QUEUE OPERATIONS
    # =========================================================================

    @staticmethod
    def _insert(conn, entry: QueueEntry, last_attempt: Optional[str] = None) -> int:
        cursor = conn.execute(
            """
            INSERT INTO sync_queue
                (collection, action, payload_json, cache_key, owner_id, enqueued_at,
                 attempts, last_attempt, last_error, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                entry.collection, entry.action.value,
                json.dumps(entry.payload, default=str), entry.cache_key,
                entry.owner_id, entry.enqueued_at, entry.attempts,
                last_attempt, entry.last_error, entry.status.value,
            ]
        )
        return cursor.lastrowid

    def enqueue(
        self,
        collection: str,
        action: QueueAction,
        payload: Dict[str, Any],
        owner_id: Optional[str] = None,
        cache_key: Optional[str] = None,
    ) -> QueueEntry:
        """Append a mutation; committed before this returns."""
        entry = QueueEntry(
            entry_id=0,
            collection=collection,
            action=action,
            payload=dict(payload),
            owner_id=owner_id,
            cache_key=cache_key,
            enqueued_at=datetime.now().isoformat(),
        )
        with self._db.transaction() as conn:
            entry.entry_id = self._insert(conn, entry)

        logger.debug(f"Queued {action.value} on {collection} (entry {entry.entry_id})")
        return entry

    def dead_letter(
        self,
        collection: str,
        action: QueueAction,
        payload: Dict[str, Any],
        error: str,
        owner_id: Optional[str] = None,
        cache_key: Optional[str] = None,
    ) -> QueueEntry:
        """Record a mutation the remote store rejected permanently."""
        entry = QueueEntry(
            entry_id=0,
            collection=collection,
            action=action,
            payload=dict(payload),
            owner_id=owner_id,
            cache_key=cache_key,
            enqueued_at=datetime.now().isoformat(),
            attempts=1,
            last_error=error,
            status=EntryStatus.DEAD,
        )
        with self._db.transaction() as conn:
            entry.entry_id = self._insert(conn, entry, last_attempt=entry.enqueued_at)

        logger.warning(f"Dead-lettered {action.value} on {collection}: {error}")
        return entry

    def _append_again(self, entry: QueueEntry, status: EntryStatus, count_attempt: bool, error: Optional[str]) -> None:
        """Delete an entry and insert it again at the end of the queue."""
        attempts = entry.attempts + 1 if count_attempt else entry.attempts
        now = datetime.now().isoformat()
        moved = QueueEntry(
            entry_id=entry.entry_id,
            collection=entry.collection,
            action=entry.action,
            payload=entry.payload,
            owner_id=entry.owner_id,
            cache_key=entry.cache_key,
            enqueued_at=entry.enqueued_at,
            attempts=attempts,
            last_error=error,
            status=status,
        )
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", [entry.entry_id])
            new_id = self._insert(conn, moved, last_attempt=now if count_attempt else None)
        entry.entry_id = new_id
        entry.attempts = attempts
        entry.last_error = error
        entry.status = status

    def drain(self, apply: ApplyFunc) -> DrainReport:
        """
        Offer every pending entry (as of now) to `apply`, in order.

        Args:
            apply: Callable returning an ApplyOutcome for one entry. An
                exception counts as ApplyOutcome.RETRY.

        Returns:
            DrainReport with per-outcome counts
        """
        report = DrainReport()

        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE status = ? ORDER BY id ASC",
                [EntryStatus.PENDING.value]
            ).fetchall()
            conn.execute(
                "UPDATE sync_queue SET status = ? WHERE status = ? AND id <= ?",
                [EntryStatus.IN_FLIGHT.value, EntryStatus.PENDING.value,
                 rows[-1]["id"] if rows else 0]
            )

        snapshot = []
        for row in rows:
            entry = self._to_entry(row)
            if entry is None:
                self._db.execute("DELETE FROM sync_queue WHERE id = ?", [row["id"]])
                continue
            snapshot.append(entry)

        for entry in snapshot:
            error = None
            try:
                outcome = apply(entry)
            except Exception as e:
                logger.error(f"Error applying queue entry {entry.entry_id}: {e}")
                outcome = ApplyOutcome.RETRY
                error = str(e)

            if outcome is ApplyOutcome.APPLIED:
                self._db.execute("DELETE FROM sync_queue WHERE id = ?", [entry.entry_id])
                report.applied += 1
            elif outcome is ApplyOutcome.DEFER:
                self._append_again(entry, EntryStatus.PENDING, count_attempt=False, error=entry.last_error)
                report.deferred += 1
            elif outcome is ApplyOutcome.DEAD:
                self._append_again(entry, EntryStatus.DEAD, count_attempt=True, error=error or entry.last_error)
                report.dead_lettered += 1
            else:
                error = error or entry.last_error or "replay failed"
                if entry.attempts + 1 >= self.max_attempts:
                    self._append_again(entry, EntryStatus.DEAD, count_attempt=True, error=error)
                    report.dead_lettered += 1
                    logger.warning(
                        f"Queue entry for {entry.collection} dead-lettered after "
                        f"{entry.attempts} attempts: {error}"
                    )
                else:
                    self._append_again(entry, EntryStatus.PENDING, count_attempt=True, error=error)
                    report.requeued += 1

            if error:
                report.errors.append(error)

        return report

    def record_error(self, entry: QueueEntry, error: str) -> None:
        """Attach the reason for a failed apply; used by the next append."""
        entry.last_error = error

    def recover(self) -> int:
        """Return rows left 'in_flight' by a crash to 'pending'."""
        recovered = self._db.execute(
            "UPDATE sync_queue SET status = ? WHERE status = ?",
            [EntryStatus.PENDING.value, EntryStatus.IN_FLIGHT.value]
        )
        if recovered:
            logger.info(f"Recovered {recovered} interrupted queue entries")
        return recovered

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def pending(self) -> List[QueueEntry]:
        return self._select(EntryStatus.PENDING)

    def outstanding(self, collection: Optional[str] = None) -> List[QueueEntry]:
        """Entries not yet applied (pending or in flight), in queue order."""
        sql = "SELECT * FROM sync_queue WHERE status IN (?, ?)"
        params: List[Any] = [EntryStatus.PENDING.value, EntryStatus.IN_FLIGHT.value]
        if collection is not None:
            sql += " AND collection = ?"
            params.append(collection)
        rows = self._db.query(sql + " ORDER BY id ASC", params)
        entries = [self._to_entry(row) for row in rows]
        return [e for e in entries if e is not None]

    def pending_count(self) -> int:
        rows = self._db.query(
            "SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?",
            [EntryStatus.PENDING.value]
        )
        return rows[0]["count"] if rows else 0

    def dead_letters(self) -> List[QueueEntry]:
        return self._select(EntryStatus.DEAD)

    def dead_letter_count(self) -> int:
        rows = self._db.query(
            "SELECT COUNT(*) AS count FROM sync_queue WHERE status = ?",
            [EntryStatus.DEAD.value]
        )
        return rows[0]["count"] if rows else 0

    def retry_dead_letters(self) -> int:
        """Put every dead letter back at the end of the queue with a fresh budget."""
        revived = 0
        for entry in self.dead_letters():
            entry.attempts = 0
            self._append_again(entry, EntryStatus.PENDING, count_attempt=False, error=entry.last_error)
            revived += 1
        return revived

    def discard(self, entry_id: int) -> bool:
        return self._db.execute("DELETE FROM sync_queue WHERE id = ?", [entry_id]) > 0

    def clear(self) -> int:
        return self._db.execute("DELETE FROM sync_queue")
