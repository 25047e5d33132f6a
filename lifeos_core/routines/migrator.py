# =============================================================================
# lifeos_core/routines/migrator.py
# Upgrade legacy routine completion data to per-task RoutineDay records
# =============================================================================
"""
RoutineCompletionMigrator - moves days out of the legacy local blob
"routineCompletionData" into the simple_routines collection.

The legacy blob recorded each period either as a single boolean (whole
routine done) or as a list of booleans in template order. Conversion:

    True          every template task of the period checked (lossy: the
                  legacy data never said which tasks were done)
    False         every task unchecked
    [bool, ...]   zipped positionally with the template keys; the shorter
                  of the two wins, missing tasks stay unchecked
    anything else skipped, never guessed

A day is written through the SyncCoordinator (cache first, then remote or
queue) and only then removed from the legacy blob. A day that already has
current data is left alone, so running the migration twice is harmless.
"""

from __future__ import annotations
import json
from dataclasses import dataclass
from datetime import date as date_cls
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging

from lifeos_core.errors import MigrationError
from lifeos_core.offline.local_database import LocalDatabase
from lifeos_core.offline.sync_engine import SyncCoordinator, WriteStatus
from lifeos_core.routines.models import (
    DEFAULT_TEMPLATE,
    LEGACY_SCHEMA_VERSION,
    PERIODS,
    ROUTINE_COLLECTION,
    RoutineDay,
    RoutineTemplate,
    routine_cache_key,
)

logger = logging.getLogger(__name__)

LEGACY_KEY = "routineCompletionData"


class MigrationStatus(Enum):
    MIGRATED = "migrated"
    ALREADY_MIGRATED = "already_migrated"
    NOTHING_TO_MIGRATE = "nothing_to_migrate"
    UNRECOGNIZED = "unrecognized"
    FAILED = "failed"


@dataclass
class MigrationResult:
    date: str
    status: MigrationStatus
    day: Optional[RoutineDay] = None
    write_status: Optional[WriteStatus] = None
    error: Optional[str] = None

    @property
    def migrated(self) -> bool:
        return self.status is MigrationStatus.MIGRATED


def _convert_period(value: Any, keys) -> Optional[Dict[str, bool]]:
    """Legacy period value -> task map, or None for an unrecognized shape."""
    if isinstance(value, bool):
        return {key: value for key in keys}
    if isinstance(value, list):
        tasks = {key: False for key in keys}
        for key, checked in zip(keys, value):
            tasks[key] = checked is True
        return tasks
    return None


class RoutineCompletionMigrator:
    """
    Usage:
        migrator = RoutineCompletionMigrator(context.coordinator, context.db)
        result = migrator.migrate_day()             # today
        results = migrator.migrate_history()        # every legacy date
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        db: LocalDatabase,
        template: RoutineTemplate = DEFAULT_TEMPLATE,
        today: Callable[[], date_cls] = date_cls.today,
    ):
        self._coordinator = coordinator
        self._db = db
        self._template = template
        self._today = today

    # =========================================================================
    # LEGACY BLOB
    # =========================================================================

    def load_legacy(self) -> Dict[str, Any]:
        """
        The whole legacy blob, {} when absent.

        Raises:
            MigrationError: if the blob is not a JSON object
        """
        raw = self._db.get_item(LEGACY_KEY)
        if raw is None:
            return {}

        try:
            blob = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MigrationError(
                f"Legacy routine data is not valid JSON: {e}",
                schema_version=LEGACY_SCHEMA_VERSION,
            )

        if not isinstance(blob, dict):
            raise MigrationError(
                "Legacy routine data is not an object",
                schema_version=LEGACY_SCHEMA_VERSION,
            )
        return blob

    def _remove_legacy_day(self, date: str) -> None:
        blob = self.load_legacy()
        if blob.pop(date, None) is None:
            return
        if blob:
            self._db.set_item(LEGACY_KEY, json.dumps(blob))
        else:
            self._db.remove_item(LEGACY_KEY)

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert(self, legacy_day: Any, date: str) -> Optional[RoutineDay]:
        """
        Convert one legacy day entry; None when no period is recognized.

        Pure: reads nothing and writes nothing.
        """
        if not isinstance(legacy_day, Mapping):
            return None

        day = RoutineDay.empty(date, self._template)
        recognized = False
        for period in PERIODS:
            if period not in legacy_day:
                continue
            tasks = _convert_period(legacy_day[period], self._template.keys(period))
            if tasks is None:
                logger.debug(f"Skipping unrecognized legacy {period} value for {date}")
                continue
            day.period(period).update(tasks)
            recognized = True

        return day if recognized else None

    # =========================================================================
    # MIGRATION
    # =========================================================================

    def has_current_data(self, date: str) -> bool:
        """True if simple_routines already holds a row for the date (remote, cache or queue)."""
        rows = self._coordinator.read(
            ROUTINE_COLLECTION,
            {"date": date},
            cache_key=routine_cache_key(date),
        )
        return any(row.get("date") == date for row in rows)

    def migrate_day(self, date: Optional[str] = None) -> MigrationResult:
        """
        Migrate one day (default: today).

        Raises:
            MigrationError: if the legacy blob is corrupt or the remote store
                permanently rejected the converted record
        """
        date = date or self._today().isoformat()

        if self.has_current_data(date):
            return MigrationResult(date, MigrationStatus.ALREADY_MIGRATED)

        legacy_day = self.load_legacy().get(date)
        if legacy_day is None:
            return MigrationResult(date, MigrationStatus.NOTHING_TO_MIGRATE)

        day = self.convert(legacy_day, date)
        if day is None:
            logger.warning(f"Legacy routine data for {date} has no recognizable period")
            return MigrationResult(date, MigrationStatus.UNRECOGNIZED)

        write = self._coordinator.write(
            ROUTINE_COLLECTION, day.to_record(), cache_key=routine_cache_key(date)
        )
        if write.status is WriteStatus.DEAD_LETTER:
            raise MigrationError(
                f"Migrated routine day was rejected: {write.error}",
                date=date,
                schema_version=LEGACY_SCHEMA_VERSION,
            )

        day.id = write.record.get("id")
        day.local_id = write.record.get("local_id")
        self._remove_legacy_day(date)
        logger.info(f"Migrated legacy routine data for {date} ({write.status.value})")
        return MigrationResult(date, MigrationStatus.MIGRATED, day, write.status)

    def migrate_history(self) -> List[MigrationResult]:
        """Migrate every date present in the legacy blob, oldest first."""
        results = []
        for date in sorted(self.load_legacy()):
            try:
                results.append(self.migrate_day(date))
            except MigrationError as e:
                logger.error(f"Migration of {date} failed: {e.message}")
                results.append(MigrationResult(date, MigrationStatus.FAILED, error=e.message))
        return results
