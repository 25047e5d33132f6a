# =============================================================================
# lifeos_core/routines/counters.py
# 30-day completion counters for routines and todos
# =============================================================================
"""
Dashboard counters: complete morning routines, complete evening routines and
completed todos in the last 30 days, each compared with the 30 days before.

Windows (inclusive, by calendar date):
    last      today - 30  ..  today
    previous  today - 60  ..  today - 31

Todos count by the date part of `updated_at` (when they were completed).
Routine rows that cannot be decoded are skipped.
"""

from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import date as date_cls, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging

import pandas as pd

from lifeos_core.errors import MigrationError
from lifeos_core.offline.sync_engine import SyncCoordinator
from lifeos_core.routines.models import EVENING, MORNING, ROUTINE_COLLECTION, RoutineDay

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
TODO_COLLECTION = "todos"


def percent_change(old: int, new: int) -> int:
    """
    Change from old to new in whole percent, rounded half up.

    >>> percent_change(0, 3)
    100
    >>> percent_change(4, 3)
    -25
    """
    if old == 0:
        return 100 if new > 0 else 0
    return math.floor((new - old) / old * 100 + 0.5)


def window_bounds(today: date_cls) -> Tuple[Tuple[date_cls, date_cls], Tuple[date_cls, date_cls]]:
    last = (today - timedelta(days=WINDOW_DAYS), today)
    previous = (today - timedelta(days=2 * WINDOW_DAYS), today - timedelta(days=WINDOW_DAYS + 1))
    return last, previous


@dataclass
class CounterWindow:
    current: int
    previous: int

    @property
    def percent_change(self) -> int:
        return percent_change(self.previous, self.current)


@dataclass
class CompletionCounters:
    morning: CounterWindow
    evening: CounterWindow
    todos: CounterWindow
    as_of: date_cls

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: {
                "count": window.current,
                "previous": window.previous,
                "percent_change": window.percent_change,
            }
            for name, window in (("morning", self.morning), ("evening", self.evening), ("todos", self.todos))
        }


# =============================================================================
# FRAMES
# =============================================================================

def routine_frame(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """One row per decodable routine day: date, morning_complete, evening_complete."""
    records = []
    for row in rows:
        try:
            day = RoutineDay.from_record(row)
        except MigrationError as e:
            logger.debug(f"Skipping routine row: {e.message}")
            continue
        records.append({
            "date": day.date,
            "morning_complete": day.is_complete(MORNING),
            "evening_complete": day.is_complete(EVENING),
        })

    df = pd.DataFrame(records, columns=["date", "morning_complete", "evening_complete"])
    df["date"] = pd.to_datetime(df["date"], format="%Y-%m-%d", errors="coerce")
    # One row per date; the last one read wins
    return df.dropna(subset=["date"]).drop_duplicates(subset=["date"], keep="last")


def todo_frame(rows: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Completed todos with the date they were last updated."""
    df = pd.DataFrame(list(rows))
    if df.empty or "updated_at" not in df.columns:
        return pd.DataFrame({"date": pd.Series(dtype="datetime64[ns]")})

    if "completed" in df.columns:
        df = df[df["completed"] == True]  # noqa: E712
    dates = df["updated_at"].astype(str).str[:10]
    return pd.DataFrame({"date": pd.to_datetime(dates, format="%Y-%m-%d", errors="coerce")}).dropna()


def _in_window(dates: pd.Series, bounds: Tuple[date_cls, date_cls]) -> pd.Series:
    start, end = (pd.Timestamp(bound) for bound in bounds)
    return (dates >= start) & (dates <= end)


def compute_counters(
    routine_rows: Iterable[Dict[str, Any]],
    todo_rows: Iterable[Dict[str, Any]],
    today: date_cls,
) -> CompletionCounters:
    last, previous = window_bounds(today)
    routines = routine_frame(routine_rows)
    todos = todo_frame(todo_rows)

    def routine_window(column: str) -> CounterWindow:
        complete = routines[routines[column] == True]  # noqa: E712
        return CounterWindow(
            current=int(_in_window(complete["date"], last).sum()),
            previous=int(_in_window(complete["date"], previous).sum()),
        )

    return CompletionCounters(
        morning=routine_window("morning_complete"),
        evening=routine_window("evening_complete"),
        todos=CounterWindow(
            current=int(_in_window(todos["date"], last).sum()),
            previous=int(_in_window(todos["date"], previous).sum()),
        ),
        as_of=today,
    )


def monthly_counts(routine_rows: Iterable[Dict[str, Any]], year: int, month: int) -> Dict[str, int]:
    """Complete morning/evening routines within one calendar month."""
    routines = routine_frame(routine_rows)
    in_month = routines[(routines["date"].dt.year == year) & (routines["date"].dt.month == month)]
    return {
        MORNING: int(in_month["morning_complete"].sum()),
        EVENING: int(in_month["evening_complete"].sum()),
    }


class CompletionCounterService:
    """
    Counters over whatever the coordinator can see (remote when signed in,
    the cached snapshots otherwise).
    """

    def __init__(self, coordinator: SyncCoordinator, today: Callable[[], date_cls] = date_cls.today):
        self._coordinator = coordinator
        self._today = today

    def _routine_rows(self) -> List[Dict[str, Any]]:
        if not self._coordinator.connection.is_authenticated_online:
            # Days saved offline live in per-date snapshots
            return self._coordinator.read_cached(ROUTINE_COLLECTION)
        return self._coordinator.read(ROUTINE_COLLECTION)

    def counters(self) -> CompletionCounters:
        todo_rows = self._coordinator.read(TODO_COLLECTION, {"completed": True})
        return compute_counters(self._routine_rows(), todo_rows, self._today())

    def monthly(self, year: Optional[int] = None, month: Optional[int] = None) -> Dict[str, int]:
        today = self._today()
        return monthly_counts(self._routine_rows(), year or today.year, month or today.month)
