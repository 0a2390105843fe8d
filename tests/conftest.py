"""
tests/conftest.py -- Shared test fixtures for FitClub integration tests.

This module provides:
  - FakeClubDatabase: in-memory stand-in for clubdb.ClubDatabase (tables,
    stored procedures, auth service) so no test touches the network
  - _make_pin_store(): isolated in-memory PIN attempt store
  - _patch_lifespan(): wires the fakes into app.state, bypassing real startup
  - api_client: (client, db, pin_store) -- module-scoped TestClient
  - auth_headers: role name -> request headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import copy
import os
import re
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.store import PinAttemptStore
from clubdb import ClubDatabaseError

# ---------------------------------------------------------------------------
# Seed identifiers
# ---------------------------------------------------------------------------

BRANCH_DOWNTOWN = "11111111-1111-4111-8111-111111111111"
BRANCH_UPTOWN = "22222222-2222-4222-8222-222222222222"

ADMIN_UID = "a0000000-0000-4000-8000-000000000001"
STAFF_UID = "a0000000-0000-4000-8000-000000000002"
MEMBER_UID = "a0000000-0000-4000-8000-000000000003"
ORPHAN_UID = "a0000000-0000-4000-8000-000000000004"

MEMBER_ACTIVE = "b0000000-0000-4000-8000-000000000001"
MEMBER_EXPIRED = "b0000000-0000-4000-8000-000000000002"
MEMBER_SUSPENDED = "b0000000-0000-4000-8000-000000000003"
MEMBER_UPTOWN = "b0000000-0000-4000-8000-000000000004"

STAFF_MANAGER = "c0000000-0000-4000-8000-000000000001"
STAFF_ASSOCIATE = "c0000000-0000-4000-8000-000000000002"
STAFF_UPTOWN = "c0000000-0000-4000-8000-000000000003"

PACKAGE_MONTHLY = "d0000000-0000-4000-8000-000000000001"
PACKAGE_RETIRED = "d0000000-0000-4000-8000-000000000002"

RENEWALS = (
    "e0000000-0000-4000-8000-000000000001",
    "e0000000-0000-4000-8000-000000000002",
    "e0000000-0000-4000-8000-000000000003",
)

GOOD_PIN = "1234"

TOKENS = {
    "admin": "token-admin",
    "staff": "token-staff",
    "member": "token-member",
    "orphan": "token-orphan",
}


def _today() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Fake platform gateway
# ---------------------------------------------------------------------------


class FakeClubDatabase:
    """In-memory ClubDatabase with the same method surface.

    Tables are lists of dicts filtered by equality, like the real select().
    Dotted filter keys ("members.branch_id") follow embedded rows.
    Stored procedures are callables in rpc_handlers: (params, access_token) -> rows.
    Every rpc call is appended to rpc_calls for assertions.
    """

    def __init__(self) -> None:
        self.reset()

    # -- seeding --------------------------------------------------------

    def reset(self) -> None:
        today = _today().date()
        self.auth_users: dict[str, dict] = {
            TOKENS["admin"]: {
                "id": ADMIN_UID,
                "email": "admin@fitclub.test",
                "email_confirmed_at": "2024-01-01T00:00:00Z",
                "user_metadata": {"first_name": "Ada"},
            },
            TOKENS["staff"]: {
                "id": STAFF_UID,
                "email": "desk@fitclub.test",
                "email_confirmed_at": "2024-01-01T00:00:00Z",
                "user_metadata": {},
            },
            TOKENS["member"]: {
                "id": MEMBER_UID,
                "email": "member@fitclub.test",
                "email_confirmed_at": None,
                "user_metadata": {"first_name": "Mo"},
            },
            TOKENS["orphan"]: {
                "id": ORPHAN_UID,
                "email": "new@fitclub.test",
                "email_confirmed_at": None,
                "user_metadata": {},
            },
        }
        self.passwords = {"member@fitclub.test": "correct-horse"}
        self.tables: dict[str, list[dict]] = {
            "users": [
                {"id": "u1", "auth_user_id": ADMIN_UID, "role": "admin", "email": "admin@fitclub.test"},
                {"id": "u2", "auth_user_id": STAFF_UID, "role": "staff", "email": "desk@fitclub.test"},
                {"id": "u3", "auth_user_id": MEMBER_UID, "role": "member", "email": "member@fitclub.test"},
            ],
            "branches": [
                {"id": BRANCH_DOWNTOWN, "name": "Downtown", "member_count": 3, "staff_count": 2},
                {"id": BRANCH_UPTOWN, "name": "Uptown", "member_count": 1, "staff_count": 1},
            ],
            "members": [
                self._member(MEMBER_ACTIVE, "Mo", "Active", "active", today + timedelta(days=30), BRANCH_DOWNTOWN),
                self._member(MEMBER_EXPIRED, "Ed", "Lapsed", "active", today - timedelta(days=1), BRANCH_DOWNTOWN),
                self._member(
                    MEMBER_SUSPENDED, "Sue", "Paused", "suspended", today + timedelta(days=30), BRANCH_DOWNTOWN
                ),
                self._member(MEMBER_UPTOWN, "Uma", "Up", "expired", today - timedelta(days=60), BRANCH_UPTOWN),
            ],
            "branch_staff": [
                self._staff(STAFF_MANAGER, "Mia", "Manager", "manager", BRANCH_DOWNTOWN),
                self._staff(STAFF_ASSOCIATE, "Al", "Associate", "associate", BRANCH_DOWNTOWN),
                self._staff(STAFF_UPTOWN, "Sam", "Senior", "senior_staff", BRANCH_UPTOWN),
            ],
            "packages": [
                {"id": PACKAGE_MONTHLY, "branch_id": BRANCH_DOWNTOWN, "name": "Monthly", "type": "individual",
                 "price": 50.0, "duration_months": 1, "is_active": True},
                {"id": PACKAGE_RETIRED, "branch_id": BRANCH_DOWNTOWN, "name": "Legacy", "type": "individual",
                 "price": 30.0, "duration_months": 1, "is_active": False},
            ],
            "member_renewals": [
                {"id": RENEWALS[i], "member_id": MEMBER_ACTIVE, "package_id": PACKAGE_MONTHLY,
                 "amount_paid": amount, "payment_method": "cash",
                 "created_at": f"2024-0{i + 1}-01T10:00:00Z",
                 "members": {"first_name": "Mo", "last_name": "Active", "branch_id": BRANCH_DOWNTOWN},
                 "packages": {"name": "Monthly"}}
                for i, amount in enumerate((50.0, "49.50", 100))
            ],
            "member_check_ins": [],
            "member_reports": [
                {"id": "rep1", "member_id": MEMBER_ACTIVE, "created_at": "2024-03-01T00:00:00Z", "weight": 80},
            ],
            "audit_logs": [
                self._audit("al1", BRANCH_DOWNTOWN, "2024-03-02T10:00:00Z", "CREATE_MEMBER", "mia@fitclub.test"),
                self._audit("al2", BRANCH_DOWNTOWN, "2024-03-03T10:00:00Z", "READ_ANALYTICS", "mia@fitclub.test"),
                self._audit(
                    "al3", BRANCH_DOWNTOWN, "2024-03-04T10:00:00Z", "PROCESS_MEMBER_RENEWAL", "al@fitclub.test",
                    success=False, error_message="Invalid staff PIN",
                ),
                self._audit("al4", BRANCH_DOWNTOWN, "2024-03-05T10:00:00Z", "UPDATE_PACKAGE", "mia@fitclub.test"),
                self._audit("al5", BRANCH_UPTOWN, "2024-03-06T10:00:00Z", "DELETE_MEMBER", "sam@fitclub.test"),
            ],
        }
        self.rpc_calls: list[tuple[str, dict, Optional[str]]] = []
        self.emails_sent: list[tuple[str, str]] = []
        self.rpc_handlers: dict[str, Callable[[dict, Optional[str]], Any]] = {
            "verify_staff_pin": self._verify_staff_pin,
            "process_member_renewal": self._process_member_renewal,
            "check_renewal_eligibility": self._check_renewal_eligibility,
            "get_renewal_analytics": self._get_renewal_analytics,
            "get_user_profile": self._get_user_profile,
            "log_staff_action": lambda params, token: None,
        }

    @staticmethod
    def _member(member_id, first, last, status, expiry, branch_id) -> dict:
        return {
            "id": member_id,
            "first_name": first,
            "last_name": last,
            "status": status,
            "expiry_date": expiry.isoformat(),
            "email": f"{first.lower()}@members.test",
            "package_name": "Monthly",
            "package_price": 50.0,
            "branch_id": branch_id,
            "branches": {"name": "Downtown" if branch_id == BRANCH_DOWNTOWN else "Uptown"},
            # Only the active member joined inside the seeded analytics window.
            "created_at": "2024-02-10T09:00:00Z" if member_id == MEMBER_ACTIVE else "2023-06-01T09:00:00Z",
        }

    @staticmethod
    def _audit(log_id, branch_id, timestamp, action, user_email, success=True, error_message=None) -> dict:
        return {
            "id": log_id,
            "branch_id": branch_id,
            "timestamp": timestamp,
            "action": action,
            "resource_type": action.split("_")[-1].lower(),
            "resource_id": None,
            "user_email": user_email,
            "success": success,
            "status_code": 200 if success else 400,
            "error_message": error_message,
        }

    @staticmethod
    def _staff(staff_id, first, last, role, branch_id) -> dict:
        return {
            "id": staff_id,
            "branch_id": branch_id,
            "first_name": first,
            "last_name": last,
            "role": role,
            "email": f"{first.lower()}@fitclub.test",
            "phone": None,
            "last_active": None,
            "pin_hash": None,
        }

    # -- stored procedures ---------------------------------------------

    def _verify_staff_pin(self, params: dict, token: Optional[str]) -> list[dict]:
        staff = self.select_one("branch_staff", id=params["p_staff_id"])
        if staff is None or params["p_pin"] != GOOD_PIN:
            return [{"is_valid": False, "staff_data": None, "error_message": "Invalid PIN"}]
        data = {k: staff[k] for k in ("id", "first_name", "last_name", "role", "branch_id")}
        return [{"is_valid": True, "staff_data": data, "error_message": None}]

    def _process_member_renewal(self, params: dict, token: Optional[str]) -> list[dict]:
        if params["p_staff_pin"] != GOOD_PIN:
            return [{"success": False, "error_message": "Invalid staff PIN"}]
        return [
            {
                "success": True,
                "renewal_data": {"id": "r-new", "amount_paid": params["p_amount_paid"]},
                "member_data": {"id": params["p_member_id"], "status": "active"},
                "success_message": "Membership renewed",
                "package_name": "Monthly",
                "new_expiry": "2030-01-01",
                "staff_name": "Mia Manager",
            }
        ]

    def _check_renewal_eligibility(self, params: dict, token: Optional[str]) -> list[dict]:
        member = self.select_one("members", id=params["p_member_id"])
        if member is None:
            return []
        return [
            {
                "is_eligible": True,
                "member_status": member["status"],
                "expiry_date": member["expiry_date"],
                "days_until_expiry": 30,
                "is_expired": False,
                "message": "Member can renew",
            }
        ]

    def _get_renewal_analytics(self, params: dict, token: Optional[str]) -> list[dict]:
        return [
            {
                "total_renewals": 3,
                "total_revenue": "199.50",
                "average_amount": 66.5,
                "payment_methods": {"cash": 3},
                "popular_packages": None,
                "monthly_trends": {"2024-01": 1},
            }
        ]

    def _get_user_profile(self, params: dict, token: Optional[str]) -> list[dict]:
        if token == TOKENS["member"]:
            return [{"role": "member", "email": "member@fitclub.test", "member_data": {"member_id": MEMBER_ACTIVE}}]
        if token == TOKENS["admin"]:
            return [{"role": "admin", "email": "admin@fitclub.test", "member_data": None}]
        if token == TOKENS["staff"]:
            return [{"role": "staff", "email": "desk@fitclub.test", "member_data": None}]
        return []

    # -- ClubDatabase surface ------------------------------------------

    def get_auth_user(self, access_token: str) -> Optional[dict]:
        user = self.auth_users.get(access_token)
        return copy.deepcopy(user) if user else None

    def get_user_role(self, auth_user_id: str) -> Optional[str]:
        row = self.select_one("users", auth_user_id=auth_user_id)
        return row.get("role") if row else None

    def rpc(self, name: str, params: Optional[dict] = None, access_token: Optional[str] = None) -> list[dict]:
        params = params or {}
        self.rpc_calls.append((name, params, access_token))
        result = self.rpc_handlers[name](params, access_token)
        if result is None:
            return []
        if isinstance(result, dict):
            return [result]
        return result

    def rpc_first(self, name: str, params: Optional[dict] = None, access_token: Optional[str] = None):
        rows = self.rpc(name, params, access_token=access_token)
        return rows[0] if rows else None

    def calls_to(self, name: str) -> list[dict]:
        return [params for called, params, _ in self.rpc_calls if called == name]

    @staticmethod
    def _matches(row: dict, filters: dict) -> bool:
        for key, expected in filters.items():
            value: Any = row
            for part in key.split("."):
                value = value.get(part) if isinstance(value, dict) else None
            if value != expected:
                return False
        return True

    def count(self, table: str, **filters: Any) -> int:
        return len([r for r in self.tables.get(table, []) if self._matches(r, filters)])

    def select(
        self,
        table: str,
        columns: str = "*",
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        between: Optional[tuple[str, str, str]] = None,
        not_like: Optional[tuple[str, str]] = None,
        **filters: Any,
    ) -> list[dict]:
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if self._matches(r, filters)]
        if between:
            column, lower, upper = between
            rows = [r for r in rows if lower <= str(r.get(column)) < upper]
        if not_like:
            column, pattern = not_like
            regex = ".*".join(re.escape(part) for part in pattern.split("%"))
            rows = [r for r in rows if not re.fullmatch(regex, str(r.get(column) or ""))]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, str(r.get(order_by))), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def select_one(self, table: str, columns: str = "*", **filters: Any) -> Optional[dict]:
        rows = self.select(table, columns, limit=1, **filters)
        return rows[0] if rows else None

    def insert(self, table: str, row: dict) -> dict:
        stored = {"id": str(uuid.uuid4()), "created_at": _today().isoformat(), **row}
        self.tables.setdefault(table, []).append(stored)
        return copy.deepcopy(stored)

    def update(self, table: str, values: dict, **filters: Any) -> list[dict]:
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def delete(self, table: str, **filters: Any) -> list[dict]:
        rows = self.tables.get(table, [])
        removed = [r for r in rows if self._matches(r, filters)]
        self.tables[table] = [r for r in rows if not self._matches(r, filters)]
        return copy.deepcopy(removed)

    def create_auth_user(self, email: str, password: str, metadata: dict) -> dict:
        if any(u["email"] == email for u in self.auth_users.values()):
            raise ClubDatabaseError("User already registered", code="email_exists")
        user = {"id": str(uuid.uuid4()), "email": email, "email_confirmed_at": None, "user_metadata": metadata}
        self.auth_users[f"token-{user['id']}"] = user
        self.passwords[email] = password
        return copy.deepcopy(user)

    def sign_in(self, email: str, password: str) -> dict:
        if self.passwords.get(email) != password:
            raise ClubDatabaseError("Invalid login credentials", code="invalid_credentials")
        user = next(u for u in self.auth_users.values() if u["email"] == email)
        return {"user": copy.deepcopy(user), "session": {"access_token": "session-token", "expires_in": 3600}}

    def send_password_reset(self, email: str, redirect_to: str) -> None:
        self.emails_sent.append(("reset", f"{email} -> {redirect_to}"))

    def resend_verification(self, email: str) -> None:
        self.emails_sent.append(("verify", email))

    def verify_email(self, email: str, token: str) -> dict:
        if token != "123456":
            raise ClubDatabaseError("Token has expired or is invalid", code="otp_expired")
        user = next(u for u in self.auth_users.values() if u["email"] == email)
        user["email_confirmed_at"] = _today().isoformat()
        return {"user": copy.deepcopy(user), "session": None}

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_pin_store(db_suffix: str) -> PinAttemptStore:
    """Create an isolated named shared-memory PIN attempt store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share lockout state.
    """
    url = f"sqlite:///file:test_pins_{db_suffix}?mode=memory&cache=shared&uri=true"
    return PinAttemptStore(db_url=url, max_attempts=5, window_seconds=900)


def _patch_lifespan(club_db: FakeClubDatabase, pin_store: PinAttemptStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.club_db = club_db
        app.state.pin_attempts = pin_store
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, FakeClubDatabase, PinAttemptStore], None, None]:
    """Yield (client, db, pin_store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, dependencies and error handlers, while
    the platform is the in-memory FakeClubDatabase.
    """
    club_db = FakeClubDatabase()
    pin_store = _make_pin_store(request.module.__name__.rsplit(".", 1)[-1])

    app.router.lifespan_context = _patch_lifespan(club_db, pin_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, club_db, pin_store

    pin_store.close()


@pytest.fixture(autouse=True)
def _fresh_state(request) -> None:
    """Reset rate-limit counters, and the fake platform when the test uses one."""
    limiter.reset()
    if "api_client" in request.fixturenames:
        _client, club_db, _pins = request.getfixturevalue("api_client")
        club_db.reset()


@pytest.fixture
def auth_headers() -> Callable[[str], dict]:
    """Return a function mapping a role name to Authorization headers."""

    def _headers(role: str) -> dict:
        return {"Authorization": f"Bearer {TOKENS[role]}"}

    return _headers


@pytest.fixture
def staff_session_headers() -> Callable[..., dict]:
    """Return a function building X-Session-Token headers for a PIN-verified staff member."""
    from auth.tokens import create_staff_session_token

    def _headers(staff_id: str = STAFF_MANAGER, branch_id: str = BRANCH_DOWNTOWN, role: str = "manager") -> dict:
        return {"X-Session-Token": create_staff_session_token(staff_id, branch_id, role)}

    return _headers
