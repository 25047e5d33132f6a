# =============================================================================
# lifeos_core/offline/context.py
# Wiring for the offline sync stack
# =============================================================================
"""
SyncContext - every long-lived component of the sync engine, built once and
passed to whoever needs it.

Usage:
    context = build_context(load_settings())
    context.start()
    context.coordinator.write("todos", {"title": "Call mom"})
    ...
    context.close()
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from lifeos_core.auth import AuthProvider, SupabaseAuthProvider
from lifeos_core.config import Settings
from lifeos_core.data import close_supabase_client, get_supabase_client
from lifeos_core.offline.cache_manager import LocalCache
from lifeos_core.offline.connection_manager import ConnectionManager
from lifeos_core.offline.local_database import LocalDatabase
from lifeos_core.offline.remote_store import RemoteStoreClient
from lifeos_core.offline.sync_engine import SyncCoordinator
from lifeos_core.offline.sync_queue import SyncQueue

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    settings: Settings
    db: LocalDatabase
    cache: LocalCache
    queue: SyncQueue
    remote: RemoteStoreClient
    auth: AuthProvider
    connection: ConnectionManager
    coordinator: SyncCoordinator
    client: Optional[object] = None

    def start(self, monitor_connection: bool = True) -> None:
        """Start the background drain loop and, optionally, the host probe."""
        self.coordinator.start()
        if monitor_connection:
            self.connection.start_monitoring()

    def close(self) -> None:
        self.connection.stop_monitoring()
        self.coordinator.stop()
        self.db.close()
        close_supabase_client(self.client)
        logger.info("Sync context closed")


def build_context(
    settings: Settings,
    client=None,
    auth: Optional[AuthProvider] = None,
    db: Optional[LocalDatabase] = None,
) -> SyncContext:
    """
    Assemble the sync stack.

    Args:
        settings: Runtime configuration
        client: Existing Supabase client (default: built from settings)
        auth: Authentication provider (default: Supabase Auth on `client`)
        db: Local database (default: SQLite file at settings.db_path)

    Raises:
        ConfigurationError: if no client is given and Supabase is not configured
    """
    if client is None:
        client = get_supabase_client(settings)
    if auth is None:
        auth = SupabaseAuthProvider(client)
    if db is None:
        db = LocalDatabase(settings.db_path)
    db.initialize()

    cache = LocalCache(db, max_records=settings.max_cached_records)
    queue = SyncQueue(db, max_attempts=settings.max_retry_attempts)
    remote = RemoteStoreClient(client, auth)
    connection = ConnectionManager(
        auth,
        supabase_url=settings.supabase_url,
        probe_timeout=settings.probe_timeout,
    )
    coordinator = SyncCoordinator(cache, queue, remote, connection, auth, db, settings)
    coordinator.initialize()

    return SyncContext(
        settings=settings,
        db=db,
        cache=cache,
        queue=queue,
        remote=remote,
        auth=auth,
        connection=connection,
        coordinator=coordinator,
        client=client,
    )
