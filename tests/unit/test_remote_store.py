# =============================================================================
# tests/unit/test_remote_store.py
# Unit Tests for RemoteStoreClient
# =============================================================================

import httpx
import pytest

from lifeos_core.errors import (
    AuthExpiredError,
    AuthRequiredError,
    DuplicateKeyError,
    NetworkError,
    RemoteRejectedError,
)
from lifeos_core.offline.remote_store import (
    ConflictPolicy,
    Filter,
    RemoteStoreClient,
    parse_filter_expr,
)

from conftest import OTHER_USER_ID, USER_ID, FakeAuthProvider, api_error, network_error


class TestFilters:
    def test_parse_expression(self):
        filters = parse_filter_expr("type=eq.quicknotes&date=gte.2024-01-01")
        assert filters == [
            Filter("type", "eq", "quicknotes"),
            Filter("date", "gte", "2024-01-01"),
        ]

    def test_parse_ignores_select_and_order(self):
        filters = parse_filter_expr("completed=eq.true&select=*&order=created_at.desc")
        assert filters == [Filter("completed", "eq", "true")]

    def test_parse_ignores_column_list(self):
        filters = parse_filter_expr("select=id,updated_at&date=eq.2024-05-01&limit=1")
        assert filters == [Filter("date", "eq", "2024-05-01")]

    def test_malformed_clause_raises(self):
        with pytest.raises(ValueError):
            parse_filter_expr("completed")

    def test_unknown_operator_raises(self):
        with pytest.raises(ValueError):
            Filter("a", "between", 1)

    def test_criteria_rendering(self):
        assert Filter("completed", "eq", True).criteria() == "true"
        assert Filter("deleted_at", "is", None).criteria() == "null"
        assert Filter("id", "in", [1, 2]).criteria() == "(1,2)"
        assert str(Filter("id", "eq", 7)) == "id=eq.7"


class TestWrite:
    def test_insert_assigns_id_and_stamps_owner(self, remote, fake_supabase):
        record = {"title": "Call mom", "local_id": "abc"}
        stored = remote.write("todos", record)

        row = fake_supabase.rows("todos")[0]
        assert row["user_id"] == USER_ID
        assert "local_id" not in row
        assert record["id"] == row["id"]
        assert stored["id"] == row["id"]
        assert stored["local_id"] == "abc"
        assert "user_id" not in stored

    def test_caller_cannot_choose_owner(self, remote, fake_supabase):
        remote.write("todos", {"title": "x", "user_id": OTHER_USER_ID})
        assert fake_supabase.rows("todos")[0]["user_id"] == USER_ID

    def test_update_by_id(self, remote, fake_supabase):
        fake_supabase.tables["todos"] = [{"id": 3, "user_id": USER_ID, "title": "old"}]

        stored = remote.write("todos", {"id": 3, "title": "new"})

        assert fake_supabase.rows("todos") == [{"id": 3, "user_id": USER_ID, "title": "new"}]
        assert stored == {"id": 3, "title": "new"}
        assert fake_supabase.count_requests("todos", "update") == 1

    def test_update_never_touches_other_owners_rows(self, remote, fake_supabase):
        fake_supabase.tables["todos"] = [{"id": 3, "user_id": OTHER_USER_ID, "title": "theirs"}]

        remote.write("todos", {"id": 3, "title": "mine"})

        assert fake_supabase.rows("todos")[0]["title"] == "theirs"

    def test_requires_signed_in_user(self, fake_supabase):
        remote = RemoteStoreClient(fake_supabase, FakeAuthProvider(user_id=None))
        with pytest.raises(AuthRequiredError):
            remote.write("todos", {"title": "x"})
        assert fake_supabase.requests == []


class TestRead:
    def test_read_filtered_scopes_to_owner(self, remote, fake_supabase):
        fake_supabase.tables["notes"] = [
            {"id": 1, "user_id": USER_ID, "type": "quicknotes"},
            {"id": 2, "user_id": USER_ID, "type": "journal"},
            {"id": 3, "user_id": OTHER_USER_ID, "type": "quicknotes"},
        ]

        rows = remote.read_filtered("notes", "type=eq.quicknotes")

        assert rows == [{"id": 1, "type": "quicknotes"}]

    def test_read_accepts_dict_and_filter_objects(self, remote, fake_supabase):
        fake_supabase.tables["todos"] = [
            {"id": 1, "user_id": USER_ID, "completed": True, "priority": 3},
            {"id": 2, "user_id": USER_ID, "completed": False, "priority": 5},
        ]

        assert [r["id"] for r in remote.read_filtered("todos", {"completed": True})] == [1]
        assert [r["id"] for r in remote.read_filtered("todos", [Filter("priority", "gte", 4)])] == [2]

    def test_no_rows_returns_empty_list(self, remote):
        assert remote.read_filtered("links") == []

    def test_order_by(self, remote, fake_supabase):
        fake_supabase.tables["deadlines"] = [
            {"id": 1, "user_id": USER_ID, "due": "2024-03-01"},
            {"id": 2, "user_id": USER_ID, "due": "2024-01-01"},
        ]
        rows = remote.read_filtered("deadlines", order_by="due")
        assert [r["id"] for r in rows] == [2, 1]


class TestRemove:
    def test_remove_by_id(self, remote, fake_supabase):
        fake_supabase.tables["todos"] = [
            {"id": 1, "user_id": USER_ID},
            {"id": 2, "user_id": USER_ID},
        ]
        assert remote.remove("todos", 1) == 1
        assert [r["id"] for r in fake_supabase.rows("todos")] == [2]

    def test_remove_by_filter(self, remote, fake_supabase):
        fake_supabase.tables["todos"] = [
            {"id": 1, "user_id": USER_ID, "completed": True},
            {"id": 2, "user_id": USER_ID, "completed": False},
            {"id": 3, "user_id": OTHER_USER_ID, "completed": True},
        ]
        assert remote.remove("todos", "completed=eq.true") == 1
        assert [r["id"] for r in fake_supabase.rows("todos")] == [2, 3]

    def test_string_id_is_not_a_filter(self, remote, fake_supabase):
        fake_supabase.tables["links"] = [{"id": "a1b2", "user_id": USER_ID}]
        assert remote.remove("links", "a1b2") == 1

    def test_empty_filter_refused(self, remote):
        with pytest.raises(ValueError):
            remote.remove("todos", {})


class TestErrorTranslation:
    """Remote failures map to distinct error types by code, never by message"""

    def test_transport_failure_is_network_error(self, remote, fake_supabase):
        fake_supabase.fail_with(network_error())
        with pytest.raises(NetworkError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert exc_info.value.retryable

    def test_timeout_is_network_error(self, remote, fake_supabase):
        fake_supabase.fail_with(httpx.ReadTimeout("timed out"))
        with pytest.raises(NetworkError):
            remote.read_filtered("todos")

    @pytest.mark.parametrize("error", [
        httpx.DecodingError("bad gzip"),
        httpx.TooManyRedirects("redirect loop"),
    ])
    def test_other_request_errors_are_network_errors(self, remote, fake_supabase, error):
        fake_supabase.fail_with(error)
        with pytest.raises(NetworkError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert exc_info.value.retryable

    def test_session_lookup_failure_is_network_error(self, fake_supabase, monkeypatch):
        auth = FakeAuthProvider()

        def refresh_failed():
            raise ConnectionError("auth server unreachable")

        monkeypatch.setattr(auth, "get_current_user", refresh_failed)

        with pytest.raises(NetworkError):
            RemoteStoreClient(fake_supabase, auth).read_filtered("todos")
        assert fake_supabase.requests == []

    @pytest.mark.parametrize("code", ["PGRST301", "PGRST303"])
    def test_jwt_errors_are_auth_expired(self, remote, fake_supabase, code):
        fake_supabase.fail_with(api_error(code, "JWT expired"))
        with pytest.raises(AuthExpiredError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert not exc_info.value.retryable

    def test_unique_violation_is_duplicate_key(self, remote, fake_supabase):
        fake_supabase.fail_with(api_error("23505"))
        with pytest.raises(DuplicateKeyError):
            remote.write("todos", {"title": "x"})

    @pytest.mark.parametrize("code", ["23502", "22P02", "42703", "PGRST102"])
    def test_permanent_rejections_are_not_retryable(self, remote, fake_supabase, code):
        fake_supabase.fail_with(api_error(code))
        with pytest.raises(RemoteRejectedError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert exc_info.value.retryable is False
        assert exc_info.value.remote_code == code

    def test_other_rejections_are_retryable(self, remote, fake_supabase):
        fake_supabase.fail_with(api_error("57014", "canceling statement due to statement timeout"))
        with pytest.raises(RemoteRejectedError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert exc_info.value.retryable is True

    def test_message_text_does_not_drive_classification(self, remote, fake_supabase):
        fake_supabase.fail_with(api_error("57014", "duplicate key JWT expired"))
        with pytest.raises(RemoteRejectedError) as exc_info:
            remote.write("todos", {"title": "x"})
        assert not isinstance(exc_info.value, (DuplicateKeyError, AuthExpiredError))


class TestBulkOperations:
    def test_read_all_pages_past_limit(self, remote, fake_supabase, monkeypatch):
        monkeypatch.setattr(RemoteStoreClient, "PAGE_SIZE", 2)
        fake_supabase.tables["todos"] = [{"id": i, "user_id": USER_ID} for i in range(1, 6)]
        fake_supabase.tables["todos"].append({"id": 99, "user_id": OTHER_USER_ID})

        rows = remote.read_all("todos")

        assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
        assert fake_supabase.count_requests("todos", "select") == 3

    def test_bulk_insert_rewrites_owner_and_drops_ids(self, remote, fake_supabase):
        result = remote.bulk_insert("todos", [
            {"id": 50, "user_id": OTHER_USER_ID, "title": "a"},
            {"id": 51, "user_id": OTHER_USER_ID, "title": "b"},
        ])

        assert result.inserted == 2
        rows = fake_supabase.rows("todos")
        assert {r["user_id"] for r in rows} == {USER_ID}
        assert {r["id"] for r in rows}.isdisjoint({50, 51})

    def test_bulk_insert_skips_duplicates(self, remote, fake_supabase):
        fake_supabase.unique["notes"] = ("user_id", "title")
        fake_supabase.tables["notes"] = [{"id": 1, "user_id": USER_ID, "title": "a"}]

        result = remote.bulk_insert(
            "notes", [{"title": "a"}, {"title": "b"}], ConflictPolicy.SKIP
        )

        assert (result.inserted, result.skipped, result.failed) == (1, 1, 0)
        assert sorted(r["title"] for r in fake_supabase.rows("notes")) == ["a", "b"]

    def test_bulk_insert_fail_policy_raises(self, remote, fake_supabase):
        fake_supabase.unique["notes"] = ("user_id", "title")
        fake_supabase.tables["notes"] = [{"id": 1, "user_id": USER_ID, "title": "a"}]

        with pytest.raises(DuplicateKeyError):
            remote.bulk_insert("notes", [{"title": "a"}], ConflictPolicy.FAIL)

    def test_bulk_insert_empty(self, remote, fake_supabase):
        assert remote.bulk_insert("notes", []).inserted == 0
        assert fake_supabase.requests == []
