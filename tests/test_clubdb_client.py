"""
tests/test_clubdb_client.py -- Unit tests for clubdb/client.py.

The supabase-py client is replaced with MagicMock so these tests pin down the
gateway's own behaviour: result normalization, user-scoped clients, and the
translation of platform and transport failures.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from supabase import PostgrestAPIError

from clubdb import ClubDatabase, ClubDatabaseError, ClubDatabaseUnavailable


def _gateway() -> tuple[ClubDatabase, MagicMock, MagicMock]:
    admin = MagicMock(name="admin_client")
    factory = MagicMock(name="client_factory")
    db = ClubDatabase("https://club.example.co", "service-key", anon_key="anon-key", client=admin, client_factory=factory)
    return db, admin, factory


class TestRpc:
    def test_rows_returned(self) -> None:
        db, admin, _ = _gateway()
        admin.rpc.return_value.execute.return_value = SimpleNamespace(data=[{"is_valid": True}])
        assert db.rpc("verify_staff_pin", {"p_staff_id": "s", "p_pin": "1234"}) == [{"is_valid": True}]
        admin.rpc.assert_called_once_with("verify_staff_pin", {"p_staff_id": "s", "p_pin": "1234"})

    def test_null_is_empty(self) -> None:
        db, admin, _ = _gateway()
        admin.rpc.return_value.execute.return_value = SimpleNamespace(data=None)
        assert db.rpc("log_staff_action") == []
        assert db.rpc_first("log_staff_action") is None

    def test_single_object_and_scalar(self) -> None:
        db, admin, _ = _gateway()
        admin.rpc.return_value.execute.return_value = SimpleNamespace(data={"total": 3})
        assert db.rpc_first("x") == {"total": 3}
        admin.rpc.return_value.execute.return_value = SimpleNamespace(data=7)
        assert db.rpc("x") == [{"value": 7}]

    def test_user_scoped_call_uses_fresh_anon_client(self) -> None:
        db, admin, factory = _gateway()
        user_client = factory.return_value
        user_client.rpc.return_value.execute.return_value = SimpleNamespace(data=[{"role": "member"}])

        assert db.rpc_first("get_user_profile", access_token="user-jwt") == {"role": "member"}

        admin.rpc.assert_not_called()
        args, kwargs = factory.call_args
        assert args == ("https://club.example.co", "anon-key")
        assert kwargs["options"].headers["Authorization"] == "Bearer user-jwt"

    def test_platform_error_translated(self) -> None:
        db, admin, _ = _gateway()
        admin.rpc.return_value.execute.side_effect = PostgrestAPIError(
            {"message": "Member not found", "code": "P0001", "hint": None, "details": None}
        )
        with pytest.raises(ClubDatabaseError) as excinfo:
            db.rpc("check_renewal_eligibility", {"p_member_id": "m"})
        assert excinfo.value.message == "Member not found"
        assert excinfo.value.code == "P0001"
        assert not isinstance(excinfo.value, ClubDatabaseUnavailable)

    def test_transport_error_is_unavailable(self) -> None:
        db, admin, _ = _gateway()
        admin.rpc.return_value.execute.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(ClubDatabaseUnavailable):
            db.rpc("get_renewal_analytics")


class TestTables:
    def test_select_applies_filters_order_and_limit(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.select.return_value
        query.eq.return_value = query
        query.order.return_value = query
        query.limit.return_value = query
        query.execute.return_value = SimpleNamespace(data=[{"id": "p1"}])

        rows = db.select("packages", "id, name", order_by="price", descending=True, limit=5, branch_id="b-1")

        assert rows == [{"id": "p1"}]
        admin.table.assert_called_with("packages")
        admin.table.return_value.select.assert_called_with("id, name")
        query.eq.assert_called_once_with("branch_id", "b-1")
        query.order.assert_called_once_with("price", desc=True)
        query.limit.assert_called_once_with(5)

    def test_select_range_and_exclusion(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.select.return_value
        query.eq.return_value = query
        query.gte.return_value = query
        query.lt.return_value = query
        query.not_.like.return_value = query
        query.execute.return_value = SimpleNamespace(data=[])

        db.select(
            "audit_logs",
            between=("timestamp", "2024-01-01", "2024-02-01"),
            not_like=("action", "%READ%"),
            branch_id="b-1",
        )

        query.gte.assert_called_once_with("timestamp", "2024-01-01")
        query.lt.assert_called_once_with("timestamp", "2024-02-01")
        query.not_.like.assert_called_once_with("action", "%READ%")

    def test_select_one_none_when_empty(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.select.return_value
        query.eq.return_value = query
        query.limit.return_value = query
        query.execute.return_value = SimpleNamespace(data=[])
        assert db.select_one("members", id="missing") is None

    def test_count_uses_exact_count(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.select.return_value
        query.eq.return_value = query
        query.limit.return_value = query
        query.execute.return_value = SimpleNamespace(data=[{"id": 1}], count=42)

        assert db.count("members", status="active") == 42
        admin.table.return_value.select.assert_called_with("id", count="exact")
        query.eq.assert_called_once_with("status", "active")

    def test_insert_returns_stored_row(self) -> None:
        db, admin, _ = _gateway()
        admin.table.return_value.insert.return_value.execute.return_value = SimpleNamespace(
            data=[{"id": "c-1", "member_id": "m-1"}]
        )
        assert db.insert("member_check_ins", {"member_id": "m-1"}) == {"id": "c-1", "member_id": "m-1"}

    def test_delete_filters_and_returns_rows(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.delete.return_value
        query.eq.return_value = query
        query.execute.return_value = SimpleNamespace(data=[{"id": "m-1"}])
        assert db.delete("members", id="m-1") == [{"id": "m-1"}]
        query.eq.assert_called_once_with("id", "m-1")

    def test_delete_without_filter_refused(self) -> None:
        db, admin, _ = _gateway()
        with pytest.raises(ValueError):
            db.delete("members")
        admin.table.assert_not_called()

    def test_delete_error_translated(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.delete.return_value
        query.eq.return_value = query
        query.execute.side_effect = PostgrestAPIError(
            {"message": "violates foreign key constraint", "code": "23503", "hint": None, "details": None}
        )
        with pytest.raises(ClubDatabaseError) as excinfo:
            db.delete("members", id="m-1")
        assert excinfo.value.code == "23503"

    def test_get_user_role(self) -> None:
        db, admin, _ = _gateway()
        query = admin.table.return_value.select.return_value
        query.eq.return_value = query
        query.limit.return_value = query
        query.execute.return_value = SimpleNamespace(data=[{"role": "staff"}])
        assert db.get_user_role("auth-1") == "staff"
        query.eq.assert_called_once_with("auth_user_id", "auth-1")


class TestAuthService:
    def test_get_auth_user_dumps_model(self) -> None:
        db, admin, _ = _gateway()
        user = MagicMock()
        user.model_dump.return_value = {"id": "u-1", "email": "a@b.co"}
        admin.auth.get_user.return_value = SimpleNamespace(user=user)
        assert db.get_auth_user("jwt") == {"id": "u-1", "email": "a@b.co"}
        admin.auth.get_user.assert_called_once_with("jwt")

    def test_get_auth_user_none_for_missing_user(self) -> None:
        db, admin, _ = _gateway()
        admin.auth.get_user.return_value = None
        assert db.get_auth_user("jwt") is None

    def test_get_auth_user_outage_still_raises(self) -> None:
        db, admin, _ = _gateway()
        admin.auth.get_user.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ClubDatabaseUnavailable):
            db.get_auth_user("jwt")

    def test_create_auth_user_unconfirmed(self) -> None:
        db, admin, _ = _gateway()
        admin.auth.admin.create_user.return_value = SimpleNamespace(user={"id": "u-2"})
        assert db.create_auth_user("a@b.co", "secret1", {"role": "member"}) == {"id": "u-2"}
        payload = admin.auth.admin.create_user.call_args.args[0]
        assert payload["email_confirm"] is False
        assert payload["user_metadata"] == {"role": "member"}

    def test_sign_in_uses_public_client(self) -> None:
        db, admin, factory = _gateway()
        public = factory.return_value
        public.auth.sign_in_with_password.return_value = SimpleNamespace(user={"id": "u-1"}, session={"t": 1})
        assert db.sign_in("a@b.co", "pw") == {"user": {"id": "u-1"}, "session": {"t": 1}}
        admin.auth.sign_in_with_password.assert_not_called()

    def test_password_reset_redirect(self) -> None:
        db, _, factory = _gateway()
        db.send_password_reset("a@b.co", "http://localhost:5173/reset-password")
        factory.return_value.auth.reset_password_for_email.assert_called_once_with(
            "a@b.co", {"redirect_to": "http://localhost:5173/reset-password"}
        )
