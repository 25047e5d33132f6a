# =============================================================================
# lifeos_core/routines/service.py
# Today's routine checklist on top of the sync coordinator
# =============================================================================

from __future__ import annotations
from datetime import date as date_cls
from typing import Callable, Optional

from lifeos_core.errors import MigrationError
from lifeos_core.offline.sync_engine import SyncCoordinator, WriteResult
from lifeos_core.routines.migrator import RoutineCompletionMigrator
from lifeos_core.routines.models import (
    DEFAULT_TEMPLATE,
    ROUTINE_COLLECTION,
    RoutineDay,
    RoutineTemplate,
    routine_cache_key,
)
from lifeos_core.services.base_service import BaseService


class RoutineService(BaseService):
    """
    Load, toggle and reset one day's routine checklist.

    A day is looked up in simple_routines first; if there is none, legacy
    data for it is migrated; otherwise an empty checklist from the template
    is used. Saves go through the coordinator, so they work offline.

    Usage:
        routines = RoutineService(context.coordinator, migrator)
        day = routines.set_task("morning", "tag-planen", True)
        print(routines.progress("morning"))
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        migrator: Optional[RoutineCompletionMigrator] = None,
        template: RoutineTemplate = DEFAULT_TEMPLATE,
        today: Callable[[], date_cls] = date_cls.today,
    ):
        super().__init__()
        self._coordinator = coordinator
        self._migrator = migrator
        self._template = template
        self._today = today

    def _date(self, date: Optional[str]) -> str:
        return date or self._today().isoformat()

    def load_day(self, date: Optional[str] = None) -> RoutineDay:
        date = self._date(date)
        rows = self._coordinator.read(
            ROUTINE_COLLECTION, {"date": date}, cache_key=routine_cache_key(date)
        )
        for row in rows:
            if row.get("date") != date:
                continue
            try:
                return RoutineDay.from_record(row)
            except MigrationError as e:
                self.logger.warning(f"Ignoring undecodable routine row for {date}: {e.message}")

        if self._migrator is not None:
            try:
                result = self._migrator.migrate_day(date)
                if result.migrated:
                    return result.day
            except MigrationError as e:
                self.logger.error(f"Legacy routine migration for {date} failed: {e.message}")

        return RoutineDay.empty(date, self._template)

    def save_day(self, day: RoutineDay) -> WriteResult:
        """Upsert by date: an existing row keeps its id (or local_id)."""
        result = self._coordinator.write(
            ROUTINE_COLLECTION, day.to_record(), cache_key=routine_cache_key(day.date)
        )
        day.id = result.record.get("id", day.id)
        day.local_id = result.record.get("local_id", day.local_id)
        return result

    def set_task(self, period: str, task_key: str, checked: bool, date: Optional[str] = None) -> RoutineDay:
        day = self.load_day(date)
        day.period(period)[task_key] = bool(checked)
        self.save_day(day)
        return day

    def reset_day(self, date: Optional[str] = None) -> RoutineDay:
        """Uncheck everything, back to the template's task list."""
        current = self.load_day(date)
        day = RoutineDay.empty(current.date, self._template)
        day.id = current.id
        day.local_id = current.local_id
        self.save_day(day)
        return day

    def progress(self, period: str, date: Optional[str] = None) -> int:
        return self.load_day(date).progress(period)
