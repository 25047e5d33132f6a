# =============================================================================
# lifeos_core/services/backup_service.py
# Point-in-time export and import of the user's collections
# =============================================================================
"""
BackupService - copies every owned row of a set of collections out of the
remote store, and inserts such a copy back (possibly into another account).

Reads go straight to the remote store, bypassing the cache, so an export
reflects the backend and never a stale snapshot. How the copy is written to
disk is up to the caller.
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional

from lifeos_core.errors.handlers import Notifier
from lifeos_core.offline.remote_store import (
    BulkInsertResult,
    ConflictPolicy,
    Record,
    RemoteStoreClient,
)
from lifeos_core.services.base_service import BaseService, ServiceResult

DEFAULT_COLLECTIONS = (
    "todos",
    "deadlines",
    "links",
    "notes",
    "resources",
    "routine_templates",
    "routine_completions",
    "simple_routines",
)


class BackupService(BaseService):
    """
    Usage:
        backup = BackupService(context.remote, notify=print)
        result = backup.export_collections()
        if result:
            dump = result.data                  # {"todos": [...], ...}
        backup.import_collections(dump, ConflictPolicy.SKIP)
    """

    def __init__(self, remote: RemoteStoreClient, notify: Optional[Notifier] = None):
        super().__init__(notify=notify)
        self._remote = remote

    def export_collections(self, collections: Iterable[str] = DEFAULT_COLLECTIONS) -> ServiceResult:
        """
        Read every owned row of each collection.

        A collection that cannot be read fails the whole export: a partial
        backup that looks complete is worse than none.
        """
        return self.run("Exporting collections", self._export, list(collections))

    def _export(self, collections: List[str]) -> Dict[str, List[Record]]:
        dump: Dict[str, List[Record]] = {}
        for index, collection in enumerate(collections):
            self._report_progress(index, len(collections), collection)
            dump[collection] = self._remote.read_all(collection)
        self._report_progress(len(collections), len(collections))
        return dump

    def import_collections(
        self,
        dump: Dict[str, List[Record]],
        conflict_policy: ConflictPolicy = ConflictPolicy.SKIP,
    ) -> ServiceResult:
        """
        Insert a previously exported copy as new rows of the current user.

        Returns:
            ServiceResult whose data maps collection -> BulkInsertResult
        """
        result = self.run("Importing collections", self._import, dump, conflict_policy)
        if result and self._notify is not None:
            failed = sum(r.failed for r in result.data.values())
            if failed:
                self._notify(f"Import finished with {failed} rejected records")
        return result

    def _import(
        self,
        dump: Dict[str, List[Record]],
        conflict_policy: ConflictPolicy,
    ) -> Dict[str, BulkInsertResult]:
        if not dump:
            return {}

        results: Dict[str, BulkInsertResult] = {}
        names = sorted(dump)
        for index, collection in enumerate(names):
            self._report_progress(index, len(names), collection)
            records = dump[collection]
            if not isinstance(records, list):
                self.logger.warning(f"Skipping {collection}: expected a list of records")
                continue
            results[collection] = self._remote.bulk_insert(collection, records, conflict_policy)
        self._report_progress(len(names), len(names))
        return results
