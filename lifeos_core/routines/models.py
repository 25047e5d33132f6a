# =============================================================================
# lifeos_core/routines/models.py
# Daily routine checklist: template, day record and schema versions
# =============================================================================
"""
A RoutineDay is one date's morning and evening checklists, each a mapping
of task key -> checked.

Stored in the `simple_routines` collection as `{date, routine_data}` where
`routine_data` is a JSON string. Three representations exist:

    version 0  legacy local blob "routineCompletionData":
               {"<date>": {"morning": true | [bool, ...], "evening": ...}}
    version 1  unversioned per-task maps nested under the date:
               {"<date>": {"morning": {...}, "evening": {...}}}
    version 2  {"schema_version": 2, "morning": {...}, "evening": {...}}

Versions 1 and 2 are read here; version 0 only through the migrator.
Everything written uses version 2.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from lifeos_core.errors import MigrationError
from lifeos_core.offline.cache_manager import cache_key

MORNING = "morning"
EVENING = "evening"
PERIODS = (MORNING, EVENING)

LEGACY_SCHEMA_VERSION = 0
NESTED_SCHEMA_VERSION = 1
CURRENT_SCHEMA_VERSION = 2

ROUTINE_COLLECTION = "simple_routines"


def routine_cache_key(date: str) -> str:
    """Snapshot key of the rows read for one date."""
    return cache_key(ROUTINE_COLLECTION, date=f"eq.{date}")


@dataclass(frozen=True)
class RoutineTemplate:
    """Ordered task keys per period; order matters for legacy list data."""
    morning: Tuple[str, ...]
    evening: Tuple[str, ...]

    def keys(self, period: str) -> Tuple[str, ...]:
        if period == MORNING:
            return self.morning
        if period == EVENING:
            return self.evening
        raise ValueError(f"Unknown routine period: {period}")

    def empty_period(self, period: str) -> Dict[str, bool]:
        return {key: False for key in self.keys(period)}


DEFAULT_TEMPLATE = RoutineTemplate(
    morning=("wasser-kreatin", "bbue-sport", "tag-planen", "todos-checken"),
    evening=("journal-reflexion", "lesen-lessons", "trades-evaluieren", "naechsten-tag-planen"),
)


def is_period_complete(tasks: Mapping[str, Any]) -> bool:
    """A period is complete when it has tasks and every one is checked."""
    return bool(tasks) and all(value is True for value in tasks.values())


def _checklist(value: Any) -> Dict[str, bool]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): checked is True for key, checked in value.items()}


def detect_schema_version(routine_data: Any, date: str) -> int:
    """
    Identify the stored representation of one day's routine_data.

    Raises:
        MigrationError: if the data matches no known version
    """
    if isinstance(routine_data, Mapping):
        version = routine_data.get("schema_version")
        if version is not None:
            if version == CURRENT_SCHEMA_VERSION:
                return CURRENT_SCHEMA_VERSION
            raise MigrationError(f"Unsupported schema_version {version!r}", date=date)
        if isinstance(routine_data.get(date), Mapping):
            return NESTED_SCHEMA_VERSION

    raise MigrationError("Unrecognized routine data", date=date)


@dataclass
class RoutineDay:
    """One date's routine checklists."""
    date: str
    morning: Dict[str, bool] = field(default_factory=dict)
    evening: Dict[str, bool] = field(default_factory=dict)
    schema_version: int = CURRENT_SCHEMA_VERSION
    id: Optional[Any] = None
    local_id: Optional[str] = None

    @classmethod
    def empty(cls, date: str, template: RoutineTemplate = DEFAULT_TEMPLATE) -> RoutineDay:
        return cls(
            date=date,
            morning=template.empty_period(MORNING),
            evening=template.empty_period(EVENING),
        )

    def period(self, name: str) -> Dict[str, bool]:
        if name == MORNING:
            return self.morning
        if name == EVENING:
            return self.evening
        raise ValueError(f"Unknown routine period: {name}")

    def is_complete(self, period: str) -> bool:
        return is_period_complete(self.period(period))

    def progress(self, period: str) -> int:
        """Checked tasks as a whole percentage (0 for an empty period)."""
        tasks = self.period(period)
        if not tasks:
            return 0
        return int(100 * sum(1 for v in tasks.values() if v is True) / len(tasks))

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_routine_data(self) -> Dict[str, Any]:
        return {
            "schema_version": CURRENT_SCHEMA_VERSION,
            MORNING: dict(self.morning),
            EVENING: dict(self.evening),
        }

    def to_record(self) -> Dict[str, Any]:
        """Row for the simple_routines collection."""
        record: Dict[str, Any] = {
            "date": self.date,
            "routine_data": json.dumps(self.to_routine_data()),
        }
        if self.id is not None:
            record["id"] = self.id
        if self.local_id is not None:
            record["local_id"] = self.local_id
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> RoutineDay:
        """
        Decode a simple_routines row (current or nested representation).

        Raises:
            MigrationError: if routine_data cannot be decoded
        """
        date = record.get("date")
        if not date:
            raise MigrationError("Routine record has no date")

        raw = record.get("routine_data")
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as e:
                raise MigrationError(f"routine_data is not valid JSON: {e}", date=date)
        else:
            data = raw

        version = detect_schema_version(data, date)
        if version == NESTED_SCHEMA_VERSION:
            data = data[date]

        return cls(
            date=date,
            morning=_checklist(data.get(MORNING)),
            evening=_checklist(data.get(EVENING)),
            schema_version=version,
            id=record.get("id"),
            local_id=record.get("local_id"),
        )
