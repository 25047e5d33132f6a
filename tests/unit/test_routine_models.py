# =============================================================================
# tests/unit/test_routine_models.py
# Unit Tests for RoutineDay and schema detection
# =============================================================================

import json

import pytest

from lifeos_core.errors import MigrationError
from lifeos_core.routines.models import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_TEMPLATE,
    EVENING,
    MORNING,
    NESTED_SCHEMA_VERSION,
    RoutineDay,
    detect_schema_version,
    is_period_complete,
    routine_cache_key,
)


DATE = "2024-05-01"


class TestCompletion:
    def test_empty_map_is_not_complete(self):
        assert is_period_complete({}) is False

    def test_all_checked_is_complete(self):
        assert is_period_complete({"a": True, "b": True})

    def test_one_unchecked_is_not_complete(self):
        assert not is_period_complete({"a": True, "b": False})

    def test_truthy_non_bool_does_not_count(self):
        assert not is_period_complete({"a": 1, "b": "yes"})

    def test_progress(self):
        day = RoutineDay(DATE, morning={"a": True, "b": False, "c": False, "d": True})
        assert day.progress(MORNING) == 50
        assert day.progress(EVENING) == 0

    def test_progress_truncates(self):
        day = RoutineDay(DATE, morning={"a": True, "b": False, "c": False})
        assert day.progress(MORNING) == 33

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            RoutineDay(DATE).period("noon")


class TestSchemaDetection:
    def test_current(self):
        data = {"schema_version": 2, "morning": {}, "evening": {}}
        assert detect_schema_version(data, DATE) == CURRENT_SCHEMA_VERSION

    def test_nested_under_date(self):
        data = {DATE: {"morning": {"a": True}}}
        assert detect_schema_version(data, DATE) == NESTED_SCHEMA_VERSION

    def test_future_version_is_rejected(self):
        with pytest.raises(MigrationError):
            detect_schema_version({"schema_version": 3}, DATE)

    @pytest.mark.parametrize("data", [None, [], "done", {"other-date": {}}, {DATE: True}])
    def test_unrecognized(self, data):
        with pytest.raises(MigrationError) as exc_info:
            detect_schema_version(data, DATE)
        assert exc_info.value.details["date"] == DATE


class TestRecords:
    def test_empty_day_uses_template(self):
        day = RoutineDay.empty(DATE)
        assert list(day.morning) == list(DEFAULT_TEMPLATE.morning)
        assert not any(day.evening.values())

    def test_to_record_writes_current_version(self):
        day = RoutineDay(DATE, morning={"a": True}, evening={"b": False}, id=4)
        record = day.to_record()

        assert record["date"] == DATE
        assert record["id"] == 4
        assert "local_id" not in record
        assert json.loads(record["routine_data"]) == {
            "schema_version": 2,
            "morning": {"a": True},
            "evening": {"b": False},
        }

    def test_from_record_current(self):
        record = RoutineDay(DATE, morning={"a": True}, local_id="abc").to_record()
        day = RoutineDay.from_record(record)

        assert day.morning == {"a": True}
        assert day.local_id == "abc"
        assert day.schema_version == CURRENT_SCHEMA_VERSION

    def test_from_record_nested(self):
        record = {
            "id": 9,
            "date": DATE,
            "routine_data": json.dumps({DATE: {"morning": {"a": True}, "evening": {"b": True}}}),
        }
        day = RoutineDay.from_record(record)

        assert day.schema_version == NESTED_SCHEMA_VERSION
        assert day.is_complete(MORNING) and day.is_complete(EVENING)
        assert day.id == 9

    def test_from_record_accepts_decoded_json(self):
        record = {"date": DATE, "routine_data": {"schema_version": 2, "morning": {"a": True}}}
        day = RoutineDay.from_record(record)
        assert day.morning == {"a": True}
        assert day.evening == {}

    def test_invalid_json_raises(self):
        with pytest.raises(MigrationError):
            RoutineDay.from_record({"date": DATE, "routine_data": "{oops"})

    def test_missing_date_raises(self):
        with pytest.raises(MigrationError):
            RoutineDay.from_record({"routine_data": "{}"})

    def test_cache_key_per_date(self):
        assert routine_cache_key(DATE) == f"simple_routines:date=eq.{DATE}"
