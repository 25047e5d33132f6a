# =============================================================================
# tests/unit/test_routine_migrator.py
# Unit Tests for RoutineCompletionMigrator
# =============================================================================

import json
from datetime import date

import pytest

from lifeos_core.errors import MigrationError
from lifeos_core.offline.sync_engine import WriteStatus
from lifeos_core.routines.migrator import LEGACY_KEY, MigrationStatus, RoutineCompletionMigrator
from lifeos_core.routines.models import EVENING, MORNING, RoutineDay, RoutineTemplate, routine_cache_key

from conftest import USER_ID, api_error, legacy_blob


DATE = "2024-05-01"
TEMPLATE = RoutineTemplate(morning=("m1", "m2", "m3"), evening=("e1", "e2"))


@pytest.fixture
def migrator(coordinator, db):
    return RoutineCompletionMigrator(coordinator, db, TEMPLATE, today=lambda: date(2024, 5, 1))


@pytest.fixture
def online_migrator(online_coordinator, db):
    return RoutineCompletionMigrator(online_coordinator, db, TEMPLATE, today=lambda: date(2024, 5, 1))


class TestConvert:
    """Conversion of one legacy day; no storage involved"""

    def test_true_checks_every_task(self, migrator):
        day = migrator.convert({"morning": True}, DATE)
        assert day.morning == {"m1": True, "m2": True, "m3": True}
        assert day.evening == {"e1": False, "e2": False}

    def test_false_unchecks_every_task(self, migrator):
        day = migrator.convert({"morning": False, "evening": False}, DATE)
        assert not any(day.morning.values())
        assert not day.is_complete(EVENING)

    def test_list_is_zipped_with_template_order(self, migrator):
        day = migrator.convert({"morning": [True, False]}, DATE)
        assert day.morning == {"m1": True, "m2": False, "m3": False}

    def test_longer_list_is_truncated(self, migrator):
        day = migrator.convert({"evening": [True, True, True, True]}, DATE)
        assert day.evening == {"e1": True, "e2": True}
        assert day.is_complete(EVENING)

    def test_unrecognized_period_is_skipped(self, migrator):
        day = migrator.convert({"morning": True, "evening": 3}, DATE)
        assert day.is_complete(MORNING)
        assert day.evening == {"e1": False, "e2": False}

    @pytest.mark.parametrize("legacy", [True, "done", {"morning": 1}, {"evening": {"e1": True}}, {}])
    def test_nothing_recognized(self, migrator, legacy):
        assert migrator.convert(legacy, DATE) is None

    def test_convert_touches_no_storage(self, migrator, db, fake_supabase):
        migrator.convert({"morning": True}, DATE)
        assert db.keys() == []
        assert fake_supabase.requests == []


class TestMigrateDay:
    def test_offline_migration_is_queued_and_cached(self, migrator, db, cache, queue):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": True, "evening": [True, False]}}))

        result = migrator.migrate_day()

        assert result.status is MigrationStatus.MIGRATED
        assert result.write_status is WriteStatus.QUEUED
        assert result.day.is_complete(MORNING)
        assert queue.pending_count() == 1
        cached = RoutineDay.from_record(cache.get(routine_cache_key(DATE))[0])
        assert cached.evening == {"e1": True, "e2": False}

    def test_legacy_entry_removed_after_write(self, migrator, db):
        db.set_item(LEGACY_KEY, legacy_blob({
            DATE: {"morning": True},
            "2024-04-30": {"morning": False},
        }))

        migrator.migrate_day(DATE)

        assert json.loads(db.get_item(LEGACY_KEY)) == {"2024-04-30": {"morning": False}}

    def test_last_legacy_entry_removes_key(self, migrator, db):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": True}}))
        migrator.migrate_day(DATE)
        assert db.get_item(LEGACY_KEY) is None

    def test_second_run_is_already_migrated(self, migrator, db, queue):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": True}}))
        migrator.migrate_day(DATE)

        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": False}}))
        result = migrator.migrate_day(DATE)

        assert result.status is MigrationStatus.ALREADY_MIGRATED
        assert queue.pending_count() == 1
        assert db.get_item(LEGACY_KEY) is not None

    def test_existing_remote_row_wins(self, online_migrator, db, fake_supabase):
        fake_supabase.tables["simple_routines"] = [{
            "id": 1,
            "user_id": USER_ID,
            "date": DATE,
            "routine_data": json.dumps(RoutineDay(DATE, morning={"m1": True}).to_routine_data()),
        }]
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": False}}))

        result = online_migrator.migrate_day(DATE)

        assert result.status is MigrationStatus.ALREADY_MIGRATED
        assert fake_supabase.count_requests("simple_routines", "insert") == 0

    def test_online_migration_syncs(self, online_migrator, db, fake_supabase):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"evening": True}}))

        result = online_migrator.migrate_day(DATE)

        assert result.write_status is WriteStatus.SYNCED
        assert result.day.id == 1
        row = fake_supabase.rows("simple_routines")[0]
        assert json.loads(row["routine_data"])["schema_version"] == 2

    def test_nothing_to_migrate(self, migrator):
        assert migrator.migrate_day(DATE).status is MigrationStatus.NOTHING_TO_MIGRATE

    def test_unrecognized_day_keeps_legacy_data(self, migrator, db):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": 42}}))

        result = migrator.migrate_day(DATE)

        assert result.status is MigrationStatus.UNRECOGNIZED
        assert DATE in json.loads(db.get_item(LEGACY_KEY))

    def test_rejected_write_raises_and_keeps_legacy(self, online_migrator, db, fake_supabase):
        db.set_item(LEGACY_KEY, legacy_blob({DATE: {"morning": True}}))
        # First failure hits the existence check (served from cache), second the write
        fake_supabase.fail_with(api_error("23502"), times=2)

        with pytest.raises(MigrationError):
            online_migrator.migrate_day(DATE)

        assert DATE in json.loads(db.get_item(LEGACY_KEY))

    @pytest.mark.parametrize("raw", ["{broken", "[1, 2]"])
    def test_corrupt_blob_raises(self, migrator, db, raw):
        db.set_item(LEGACY_KEY, raw)
        with pytest.raises(MigrationError):
            migrator.migrate_day(DATE)


class TestMigrateHistory:
    def test_every_date_oldest_first(self, migrator, db):
        db.set_item(LEGACY_KEY, legacy_blob({
            "2024-05-02": {"morning": True},
            "2024-04-30": {"evening": [True, True]},
            "2024-05-01": {"morning": "?"},
        }))

        results = migrator.migrate_history()

        assert [(r.date, r.status) for r in results] == [
            ("2024-04-30", MigrationStatus.MIGRATED),
            ("2024-05-01", MigrationStatus.UNRECOGNIZED),
            ("2024-05-02", MigrationStatus.MIGRATED),
        ]
        assert list(json.loads(db.get_item(LEGACY_KEY))) == ["2024-05-01"]

    def test_failed_day_does_not_stop_history(self, online_migrator, db, fake_supabase):
        db.set_item(LEGACY_KEY, legacy_blob({
            "2024-04-30": {"morning": True},
            "2024-05-01": {"morning": True},
        }))
        fake_supabase.fail_with(api_error("23502"), times=2)

        results = online_migrator.migrate_history()

        assert [r.status for r in results] == [MigrationStatus.FAILED, MigrationStatus.MIGRATED]
        assert results[0].error
        assert list(json.loads(db.get_item(LEGACY_KEY))) == ["2024-04-30"]

    def test_empty_history(self, migrator):
        assert migrator.migrate_history() == []
