# =============================================================================
# lifeos_core/offline/remote_store.py
# Typed CRUD over the Supabase (PostgREST) table endpoints
# =============================================================================
"""
RemoteStoreClient - one method per logical operation against the hosted
backend:

    read_filtered  -> GET    /rest/v1/<collection>?field=op.value&...
    write (insert) -> POST   /rest/v1/<collection>
    write (update) -> PATCH  /rest/v1/<collection>?id=eq.<id>
    remove         -> DELETE /rest/v1/<collection>?id=eq.<id> | ?<filter>

Ownership: `user_id` is stamped from the signed-in user on every write and
added as a filter on every read/delete; it is never taken from the caller
and is stripped from the rows handed back. Client-only fields (`local_id`)
never leave the process.

Failures are split into NetworkError (retryable), AuthExpiredError
(terminal for the session) and RemoteRejectedError (retryable unless the
Postgres/PostgREST code says the request can never succeed).
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union
import logging

import httpx
from postgrest.exceptions import APIError

from lifeos_core.auth import AuthProvider, CurrentUser
from lifeos_core.errors import (
    AuthExpiredError,
    AuthRequiredError,
    DuplicateKeyError,
    NetworkError,
    RemoteRejectedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Record = Dict[str, Any]

OWNER_FIELD = "user_id"
LOCAL_ONLY_FIELDS = frozenset({"local_id"})

# PostgREST JWT errors: expired, invalid, missing claims
AUTH_ERROR_CODES = frozenset({"PGRST301", "PGRST302", "PGRST303", "401"})
UNIQUE_VIOLATION = "23505"
# Postgres SQLSTATE classes that will fail the same way on every retry:
# 22 data exception, 23 integrity violation, 42 syntax/undefined object
PERMANENT_SQLSTATE_CLASSES = ("22", "23", "42")
# PostgREST request errors (bad filter, unknown column, ...)
PERMANENT_PGRST_PREFIX = "PGRST1"

FILTER_OPERATORS = frozenset({
    "eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "is", "in", "cs", "cd",
})
# Non-filter query-string keys; the client always selects * and orders via order_by
QUERY_PARAMETERS = frozenset({"select", "order", "limit", "offset"})


class ConflictPolicy(Enum):
    """How bulk_insert treats rows that collide with a unique constraint."""
    SKIP = "skip"       # Count the row as skipped, keep going
    FAIL = "fail"       # Raise DuplicateKeyError


@dataclass(frozen=True)
class Filter:
    """One PostgREST filter: `field=op.value`."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def criteria(self) -> str:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if self.value is None:
            return "null"
        if self.op == "in" and isinstance(self.value, (list, tuple, set)):
            return "(" + ",".join(str(v) for v in self.value) + ")"
        return str(self.value)

    def __str__(self) -> str:
        return f"{self.field}={self.op}.{self.criteria()}"


Filters = Union[None, str, Record, Sequence[Filter]]


def parse_filter_expr(expr: str) -> List[Filter]:
    """
    Parse a query-string filter expression.

    >>> parse_filter_expr("type=eq.quicknotes&date=gte.2024-01-01")
    [Filter(field='type', op='eq', value='quicknotes'), Filter(field='date', op='gte', value='2024-01-01')]
    """
    filters = []
    for part in expr.split("&"):
        part = part.strip()
        if not part:
            continue
        name, sep, rest = part.partition("=")
        if sep and name in QUERY_PARAMETERS:
            continue
        op, dot, value = rest.partition(".")
        if not sep or not dot or not name:
            raise ValueError(f"Malformed filter clause: {part!r}")
        filters.append(Filter(name, op, value))
    return filters


def normalize_filters(filters: Filters) -> List[Filter]:
    """Accept None, an expression string, an equality dict or Filter objects."""
    if filters is None:
        return []
    if isinstance(filters, str):
        return parse_filter_expr(filters)
    if isinstance(filters, dict):
        return [Filter(name, "eq", value) for name, value in filters.items()]
    return list(filters)


@dataclass
class BulkInsertResult:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _classify_api_error(error: APIError, collection: str, operation: str) -> Exception:
    code = str(error.code) if error.code is not None else ""
    message = error.message or str(error)

    if code in AUTH_ERROR_CODES:
        return AuthExpiredError(message, collection=collection, operation=operation)
    if code == UNIQUE_VIOLATION:
        return DuplicateKeyError(message, collection=collection, operation=operation)

    permanent = code.startswith(PERMANENT_SQLSTATE_CLASSES) or code.startswith(PERMANENT_PGRST_PREFIX)
    return RemoteRejectedError(
        message,
        remote_code=code or None,
        retryable=not permanent,
        collection=collection,
        operation=operation,
    )


class RemoteStoreClient:
    """
    Supabase-backed CRUD for schema-less collections.

    Usage:
        remote = RemoteStoreClient(client, auth)
        saved = remote.write("todos", {"title": "Call mom"})
        rows = remote.read_filtered("todos", "completed=eq.true")
    """

    PAGE_SIZE = 1000  # PostgREST max rows per response

    def __init__(self, client, auth: AuthProvider):
        self._client = client
        self._auth = auth

    # =========================================================================
    # PLUMBING
    # =========================================================================

    def _require_user(self, operation: str) -> CurrentUser:
        try:
            user = self._auth.get_current_user() if self._auth.is_authenticated() else None
        except Exception as e:
            # Session refresh goes over the network through the auth client
            raise NetworkError(f"Session lookup failed: {e}", operation=operation) from e
        if user is None:
            raise AuthRequiredError(operation)
        return user

    def _call(self, collection: str, operation: str, request: Callable[[], T]) -> T:
        """Run one request and translate transport/API failures."""
        try:
            return request()
        except APIError as e:
            raise _classify_api_error(e, collection, operation) from e
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {e}", collection=collection, operation=operation) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed: {e}", collection=collection, operation=operation) from e
        except httpx.RequestError as e:
            # Decoding errors, redirect loops: the response never arrived intact
            raise NetworkError(f"Request failed: {e}", collection=collection, operation=operation) from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                raise AuthExpiredError(str(e), collection=collection, operation=operation) from e
            raise RemoteRejectedError(
                str(e),
                remote_code=str(e.response.status_code),
                retryable=e.response.status_code >= 500,
                collection=collection,
                operation=operation,
            ) from e

    @staticmethod
    def _apply_filters(query, filters: Iterable[Filter]):
        for f in filters:
            query = query.filter(f.field, f.op, f.criteria())
        return query

    @staticmethod
    def to_remote(record: Record, user: CurrentUser) -> Record:
        """Application record -> remote row (owner stamped, local fields dropped)."""
        row = {k: v for k, v in record.items() if k not in LOCAL_ONLY_FIELDS}
        row[OWNER_FIELD] = user.id
        return row

    @staticmethod
    def from_remote(row: Record) -> Record:
        return {k: v for k, v in row.items() if k != OWNER_FIELD}

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def write(self, collection: str, record: Record) -> Record:
        """
        Insert or update one record.

        With an `id` the row is updated by primary key; without one it is
        inserted and the assigned `id` is copied back into `record`.

        Returns:
            The stored record as returned by the backend
        """
        user = self._require_user(f"write {collection}")
        row = self.to_remote(record, user)

        if record.get("id") is not None:
            row.pop("id")
            response = self._call(
                collection, "update",
                lambda: self._client.table(collection)
                    .update(row)
                    .eq("id", record["id"])
                    .eq(OWNER_FIELD, user.id)
                    .execute()
            )
        else:
            row.pop("id", None)
            response = self._call(
                collection, "insert",
                lambda: self._client.table(collection).insert(row).execute()
            )

        stored = response.data[0] if response.data else None
        if stored is None:
            # Update matched nothing (row deleted remotely) or representation
            # was not returned; keep the caller's view of the record.
            logger.debug(f"No representation returned for {collection} write")
            return dict(record)

        if record.get("id") is None and stored.get("id") is not None:
            record["id"] = stored["id"]

        result = self.from_remote(stored)
        if record.get("local_id") is not None:
            result["local_id"] = record["local_id"]
        return result

    def read_filtered(
        self,
        collection: str,
        filters: Filters = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Record]:
        """
        Read owned rows matching every filter.

        Returns:
            List of records, empty when nothing matches
        """
        user = self._require_user(f"read {collection}")
        clauses = [Filter(OWNER_FIELD, "eq", user.id)] + normalize_filters(filters)

        def request():
            query = self._apply_filters(self._client.table(collection).select("*"), clauses)
            if order_by:
                query = query.order(order_by, desc=descending)
            return query.execute()

        response = self._call(collection, "read", request)
        return [self.from_remote(row) for row in (response.data or [])]

    def remove(self, collection: str, id_or_filter: Union[Any, Filters]) -> int:
        """
        Delete by primary key or by filter (always within the owner's rows).

        Returns:
            Number of rows the backend reported as deleted
        """
        user = self._require_user(f"delete {collection}")

        if isinstance(id_or_filter, (str, dict, list, tuple)) and not _looks_like_id(id_or_filter):
            clauses = normalize_filters(id_or_filter)
            if not clauses:
                raise ValueError("Refusing to delete without a filter")
        else:
            clauses = [Filter("id", "eq", id_or_filter)]
        clauses.append(Filter(OWNER_FIELD, "eq", user.id))

        response = self._call(
            collection, "delete",
            lambda: self._apply_filters(self._client.table(collection).delete(), clauses).execute()
        )
        return len(response.data or [])

    # =========================================================================
    # BULK OPERATIONS (backup export / import)
    # =========================================================================

    def read_all(self, collection: str, order_by: Optional[str] = "id") -> List[Record]:
        """
        Fetch every owned row, paging past the PostgREST row limit.

        Bypasses any cache: used for point-in-time exports.
        """
        user = self._require_user(f"export {collection}")
        all_rows: List[Record] = []
        offset = 0

        while True:
            def request(start=offset):
                query = self._client.table(collection).select("*").eq(OWNER_FIELD, user.id)
                if order_by:
                    query = query.order(order_by)
                return query.range(start, start + self.PAGE_SIZE - 1).execute()

            response = self._call(collection, "read_all", request)
            batch = response.data or []
            all_rows.extend(self.from_remote(row) for row in batch)

            if len(batch) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        logger.info(f"Exported {len(all_rows)} rows from {collection}")
        return all_rows

    def bulk_insert(
        self,
        collection: str,
        records: Sequence[Record],
        conflict_policy: ConflictPolicy = ConflictPolicy.SKIP,
    ) -> BulkInsertResult:
        """
        Insert many records as new rows owned by the current user.

        Source ids are dropped and `user_id` is rewritten, so a dump taken by
        one account can be imported into another.
        """
        user = self._require_user(f"import {collection}")
        rows = []
        for record in records:
            row = self.to_remote(record, user)
            row.pop("id", None)
            rows.append(row)

        result = BulkInsertResult()
        if not rows:
            return result

        try:
            self._call(collection, "bulk_insert", lambda: self._client.table(collection).insert(rows).execute())
            result.inserted = len(rows)
            return result
        except DuplicateKeyError:
            if conflict_policy is ConflictPolicy.FAIL:
                raise
            logger.info(f"Duplicate rows in {collection} import; retrying row by row")

        for row in rows:
            try:
                self._call(collection, "insert", lambda r=row: self._client.table(collection).insert(r).execute())
                result.inserted += 1
            except DuplicateKeyError:
                result.skipped += 1
            except RemoteRejectedError as e:
                result.failed += 1
                result.errors.append(e.message)

        logger.info(
            f"Imported {collection}: {result.inserted} inserted, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result


def _looks_like_id(value: Any) -> bool:
    """A bare string without '=' is a primary key, not a filter expression."""
    return isinstance(value, str) and "=" not in value
