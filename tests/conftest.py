# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import fnmatch
import itertools
import json
import threading
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from lifeos_core.auth import AuthProvider, CurrentUser
from lifeos_core.config import Settings
from lifeos_core.offline.cache_manager import LocalCache
from lifeos_core.offline.connection_manager import ConnectionManager
from lifeos_core.offline.local_database import LocalDatabase
from lifeos_core.offline.remote_store import RemoteStoreClient
from lifeos_core.offline.sync_engine import SyncCoordinator
from lifeos_core.offline.sync_queue import SyncQueue


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# =============================================================================
# FAKE SUPABASE (PostgREST query builder over in-memory tables)
# =============================================================================

def _text(value: Any) -> str:
    """Render a column value the way PostgREST compares it in filters."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compare(actual: str, expected: str):
    try:
        return float(actual), float(expected)
    except ValueError:
        return actual, expected


def _matches(row: Dict[str, Any], field: str, op: str, value: str) -> bool:
    actual = _text(row.get(field))
    if op == "eq":
        return actual == value
    if op == "neq":
        return actual != value
    if op == "is":
        return actual == value
    if op == "in":
        return actual in value.strip("()").split(",")
    if op in ("like", "ilike"):
        pattern = value.replace("%", "*")
        if op == "ilike":
            return fnmatch.fnmatch(actual.lower(), pattern.lower())
        return fnmatch.fnmatchcase(actual, pattern)

    left, right = _compare(actual, value)
    return {
        "gt": left > right,
        "gte": left >= right,
        "lt": left < right,
        "lte": left <= right,
    }[op]


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data
        self.count = None


class FakeQuery:
    """Chainable stand-in for a postgrest request builder."""

    def __init__(self, client: "FakeSupabase", table: str, kind: str, payload: Any = None):
        self._client = client
        self._table = table
        self._kind = kind
        self._payload = payload
        self._filters: List[tuple] = []
        self._order: Optional[tuple] = None
        self._range: Optional[tuple] = None

    def select(self, *columns):
        return self

    def filter(self, field: str, op: str, value: Any):
        self._filters.append((field, op, _text(value)))
        return self

    def eq(self, field: str, value: Any):
        return self.filter(field, "eq", value)

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def range(self, start: int, end: int):
        self._range = (start, end)
        return self

    def _selected(self, rows):
        return [r for r in rows if all(_matches(r, f, op, v) for f, op, v in self._filters)]

    def execute(self) -> FakeResponse:
        self._client.requests.append((self._table, self._kind, list(self._filters)))
        self._client.raise_injected_failure()

        rows = self._client.tables.setdefault(self._table, [])
        with self._client.lock:
            if self._kind == "select":
                selected = self._selected(rows)
                if self._order:
                    column, desc = self._order
                    selected.sort(key=lambda r: _text(r.get(column)), reverse=desc)
                if self._range:
                    start, end = self._range
                    selected = selected[start:end + 1]
                return FakeResponse([dict(r) for r in selected])

            if self._kind == "insert":
                payload = self._payload if isinstance(self._payload, list) else [self._payload]
                self._client.check_unique(self._table, payload)
                inserted = []
                for row in payload:
                    stored = dict(row)
                    stored.setdefault("id", next(self._client.ids))
                    rows.append(stored)
                    inserted.append(dict(stored))
                return FakeResponse(inserted)

            if self._kind == "update":
                updated = []
                for row in self._selected(rows):
                    row.update(self._payload)
                    updated.append(dict(row))
                return FakeResponse(updated)

            if self._kind == "delete":
                removed = self._selected(rows)
                self._client.tables[self._table] = [r for r in rows if r not in removed]
                return FakeResponse([dict(r) for r in removed])

        raise AssertionError(f"Unknown request kind {self._kind}")


class FakeTable:
    def __init__(self, client: "FakeSupabase", name: str):
        self._client = client
        self._name = name

    def select(self, *columns):
        return FakeQuery(self._client, self._name, "select")

    def insert(self, rows):
        return FakeQuery(self._client, self._name, "insert", rows)

    def update(self, row):
        return FakeQuery(self._client, self._name, "update", row)

    def delete(self):
        return FakeQuery(self._client, self._name, "delete")


class FakeSupabase:
    """
    In-memory Supabase client.

    Usage:
        fake.tables["todos"] = [{"id": 1, "user_id": USER_ID, "title": "x"}]
        fake.fail_with(httpx.ConnectError("down"), times=2)
        fake.unique["simple_routines"] = ("user_id", "date")
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.unique: Dict[str, tuple] = {}
        self.requests: List[tuple] = []
        self.ids = itertools.count(1)
        self.lock = threading.RLock()
        self._failures: List[Exception] = []
        self.postgrest = MagicMock()
        self.auth = MagicMock()

    def table(self, name: str) -> FakeTable:
        return FakeTable(self, name)

    def fail_with(self, error: Exception, times: int = 1) -> None:
        self._failures.extend([error] * times)

    def raise_injected_failure(self) -> None:
        with self.lock:
            error = self._failures.pop(0) if self._failures else None
        if error is not None:
            raise error

    def check_unique(self, table: str, payload: List[Dict[str, Any]]) -> None:
        fields = self.unique.get(table)
        if not fields:
            return
        existing = {tuple(r.get(f) for f in fields) for r in self.tables.get(table, [])}
        for row in payload:
            key = tuple(row.get(f) for f in fields)
            if key in existing:
                raise api_error("23505", "duplicate key value violates unique constraint")
            existing.add(key)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def count_requests(self, table: Optional[str] = None, kind: Optional[str] = None) -> int:
        return sum(
            1 for t, k, _ in self.requests
            if (table is None or t == table) and (kind is None or k == kind)
        )


def api_error(code: str, message: str = "rejected") -> APIError:
    return APIError({"code": code, "message": message, "details": None, "hint": None})


def network_error(message: str = "connection refused") -> httpx.ConnectError:
    return httpx.ConnectError(message)


# =============================================================================
# FAKE AUTH
# =============================================================================

class FakeAuthProvider(AuthProvider):
    def __init__(self, user_id: Optional[str] = USER_ID):
        self.user = CurrentUser(id=user_id, email=f"{user_id}@example.com") if user_id else None
        self.clear_calls = 0
        self._lock = threading.Lock()

    def sign_in(self, user_id: str = USER_ID) -> None:
        self.user = CurrentUser(id=user_id, email=f"{user_id}@example.com")

    def is_authenticated(self) -> bool:
        return self.user is not None

    def get_current_user(self) -> Optional[CurrentUser]:
        return self.user

    def clear_session(self) -> None:
        with self._lock:
            self.clear_calls += 1
        self.user = None


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_key="anon-key",
        db_path=tmp_path / "lifeos.db",
        sync_interval=0.05,
        max_retry_attempts=3,
    )


@pytest.fixture
def db():
    database = LocalDatabase(LocalDatabase.MEMORY)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def file_db(tmp_path):
    database = LocalDatabase(tmp_path / "lifeos.db")
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def cache(db):
    return LocalCache(db)


@pytest.fixture
def queue(db, settings):
    return SyncQueue(db, max_attempts=settings.max_retry_attempts)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def auth():
    return FakeAuthProvider()


@pytest.fixture
def remote(fake_supabase, auth):
    return RemoteStoreClient(fake_supabase, auth)


@pytest.fixture
def connection(auth, settings):
    return ConnectionManager(auth, supabase_url=settings.supabase_url)


@pytest.fixture
def coordinator(cache, queue, remote, connection, auth, db, settings):
    """Coordinator wired to fakes; starts OFFLINE and without a background loop."""
    sync = SyncCoordinator(cache, queue, remote, connection, auth, db, settings)
    sync.initialize()
    yield sync
    sync.stop()


@pytest.fixture
def online_coordinator(coordinator):
    coordinator.notify_connectivity(True)
    return coordinator


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def remote_rows(fake: FakeSupabase, table: str) -> List[Dict[str, Any]]:
    """Rows of a fake table without the owner column, for comparisons."""
    return [{k: v for k, v in r.items() if k != "user_id"} for r in fake.rows(table)]


def legacy_blob(days: Dict[str, Any]) -> str:
    return json.dumps(days)
