# =============================================================================
# lifeos_core/offline/__init__.py
# Offline-First Architecture for the Life OS dashboard
# =============================================================================
"""
Offline-First Architecture Module

Reads are served instantly from a local cache; writes never fail because the
network is down. Everything flows through one SyncCoordinator.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE-FIRST ARCHITECTURE                    │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                  SyncCoordinator                          │  │
│   │          write / delete / read / drain                    │  │
│   └──────────────────────────────────────────────────────────┘  │
│          │                 │                  │                  │
│          ▼                 ▼                  ▼                  │
│   ┌────────────┐   ┌──────────────┐   ┌──────────────────┐      │
│   │ LocalCache │   │  SyncQueue   │   │ RemoteStoreClient│      │
│   │ (snapshots)│   │ (FIFO, dead  │   │ (Supabase REST)  │      │
│   └────────────┘   │   letters)   │   └──────────────────┘      │
│          │         └──────────────┘            │                 │
│          └────────┬────────┘                   ▼                 │
│                   ▼                      ┌──────────┐            │
│            ┌──────────────┐              │ Supabase │            │
│            │    SQLite    │              │ (Cloud)  │            │
│            │ LocalDatabase│              └──────────┘            │
│            └──────────────┘                                      │
│                                                                  │
│   ConnectionManager: OFFLINE / ONLINE_UNAUTHENTICATED /          │
│                      ONLINE_AUTHENTICATED                        │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from lifeos_core.config import load_settings
from lifeos_core.offline import build_context

context = build_context(load_settings())
coordinator = context.coordinator

coordinator.notify_connectivity(True)
coordinator.write("todos", {"title": "Call mom", "completed": False})
todos = coordinator.read("todos")

print(coordinator.get_status_display())
"""

from lifeos_core.offline.local_database import LocalDatabase

from lifeos_core.offline.cache_manager import (
    LocalCache,
    cache_key,
)

from lifeos_core.offline.sync_queue import (
    SyncQueue,
    QueueAction,
    QueueEntry,
    ApplyOutcome,
    DrainReport,
    EntryStatus,
)

from lifeos_core.offline.remote_store import (
    RemoteStoreClient,
    Filter,
    parse_filter_expr,
    ConflictPolicy,
    BulkInsertResult,
)

from lifeos_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from lifeos_core.offline.sync_engine import (
    SyncCoordinator,
    SyncState,
    WriteResult,
    WriteStatus,
)

from lifeos_core.offline.context import (
    SyncContext,
    build_context,
)

__all__ = [
    # Local storage
    "LocalDatabase",
    "LocalCache",
    "cache_key",
    # Sync Queue
    "SyncQueue",
    "QueueAction",
    "QueueEntry",
    "ApplyOutcome",
    "DrainReport",
    "EntryStatus",
    # Remote store
    "RemoteStoreClient",
    "Filter",
    "parse_filter_expr",
    "ConflictPolicy",
    "BulkInsertResult",
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Sync Coordinator (Main API)
    "SyncCoordinator",
    "SyncState",
    "WriteResult",
    "WriteStatus",
    # Wiring
    "SyncContext",
    "build_context",
]
