"""
clubdb/client.py -- Gateway to the managed database platform.

The platform hosts the relational store, its stored procedures, and the
authentication service. This module is the single place that talks to it:
route handlers and auth dependencies call ClubDatabase methods and receive
plain dicts/lists back, never supabase-py response objects.

Client lifetimes:
  _admin  -- one service-role client built at startup. Used for token
             validation, role lookups, table reads/writes and RPCs that run
             with elevated rights.
  per-call clients -- password sign-in, email flows and user-scoped RPCs each
             get a fresh anon-key client. Signing in mutates a client's
             session, and a user-scoped RPC must carry the caller's JWT; a
             shared client would leak one caller's identity into the next.

Errors:
  ClubDatabaseError        -- the platform answered with an error (bad
                              parameters, RLS denial, procedure raised). The
                              message is passed through unchanged.
  ClubDatabaseUnavailable  -- the platform could not be reached.
  get_auth_user() is the exception: a rejected token returns None so the
  caller can treat it as "unauthenticated" without a try/except.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

import httpx
from supabase import AuthError, Client, PostgrestAPIError, create_client
from supabase.lib.client_options import ClientOptions

logger = logging.getLogger("fitclub.clubdb")


class ClubDatabaseError(Exception):
    """The platform rejected a request. message is safe to show the caller."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ClubDatabaseUnavailable(ClubDatabaseError):
    """Network or transport failure talking to the platform."""


def _options(headers: Optional[dict[str, str]] = None) -> ClientOptions:
    # Server-side clients never persist or refresh sessions.
    return ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
        headers=headers or {},
    )


def _as_rows(data: Any) -> list[dict]:
    """Normalize an RPC/select payload to a list of rows."""
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    # Scalar-returning procedures
    return [{"value": data}]


def _dump(model: Any) -> Optional[dict]:
    """supabase-py returns pydantic models for users and sessions."""
    if model is None:
        return None
    if hasattr(model, "model_dump"):
        return model.model_dump(mode="json")
    return dict(model)


class ClubDatabase:
    """Repository-style facade over the platform.

    Usage:
        db = ClubDatabase(settings.supabase_url, settings.supabase_service_role_key)
        user = db.get_auth_user(token)
        row = db.rpc_first("check_renewal_eligibility", {"p_member_id": member_id})
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        anon_key: str = "",
        client: Optional[Client] = None,
        client_factory: Callable[..., Client] = create_client,
    ) -> None:
        self._url = url
        self._service_key = service_key
        self._anon_key = anon_key or service_key
        self._client_factory = client_factory
        self._admin: Client = client or client_factory(url, service_key, options=_options())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _public_client(self, access_token: Optional[str] = None) -> Client:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        return self._client_factory(self._url, self._anon_key, options=_options(headers))

    def _call(self, what: str, fn: Callable[[], Any]) -> Any:
        """Run one platform call and translate its failures.

        Every public method funnels through here so the error contract above
        holds for all of them.
        """
        try:
            return fn()
        except PostgrestAPIError as exc:
            logger.warning("Platform query failed (%s): %s", what, exc.message)
            raise ClubDatabaseError(exc.message or "Database request failed", code=exc.code) from exc
        except AuthError as exc:
            logger.warning("Auth service call failed (%s): %s", what, exc.message)
            code = getattr(exc, "code", None)
            raise ClubDatabaseError(exc.message or "Authentication service error", code=code) from exc
        except httpx.HTTPError as exc:
            logger.error("Platform unreachable (%s): %s", what, exc)
            raise ClubDatabaseUnavailable("Database service unavailable") from exc

    # ------------------------------------------------------------------
    # Authentication service
    # ------------------------------------------------------------------

    def get_auth_user(self, access_token: str) -> Optional[dict]:
        """Return the auth user owning access_token, or None if the token is rejected.

        Transport failures still raise ClubDatabaseUnavailable -- an outage is
        not the same thing as a bad token and must not read as a 401.
        """
        try:
            resp = self._call("get_user", lambda: self._admin.auth.get_user(access_token))
        except ClubDatabaseUnavailable:
            raise
        except ClubDatabaseError:
            return None
        if resp is None or resp.user is None:
            return None
        return _dump(resp.user)

    def create_auth_user(self, email: str, password: str, metadata: dict) -> dict:
        """Admin-create an auth user. The address stays unconfirmed until verified."""
        resp = self._call(
            "admin.create_user",
            lambda: self._admin.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "email_confirm": False,
                    "user_metadata": metadata,
                }
            ),
        )
        return _dump(resp.user) or {}

    def sign_in(self, email: str, password: str) -> dict:
        """Password sign-in. Returns {"user": ..., "session": ...}."""
        client = self._public_client()
        resp = self._call(
            "sign_in_with_password",
            lambda: client.auth.sign_in_with_password({"email": email, "password": password}),
        )
        return {"user": _dump(resp.user), "session": _dump(resp.session)}

    def send_password_reset(self, email: str, redirect_to: str) -> None:
        client = self._public_client()
        self._call(
            "reset_password_for_email",
            lambda: client.auth.reset_password_for_email(email, {"redirect_to": redirect_to}),
        )

    def resend_verification(self, email: str) -> None:
        client = self._public_client()
        self._call("resend", lambda: client.auth.resend({"type": "signup", "email": email}))

    def verify_email(self, email: str, token: str) -> dict:
        client = self._public_client()
        resp = self._call(
            "verify_otp",
            lambda: client.auth.verify_otp({"email": email, "token": token, "type": "signup"}),
        )
        return {"user": _dump(resp.user), "session": _dump(resp.session)}

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_user_role(self, auth_user_id: str) -> Optional[str]:
        """Role column of the users profile row, None when no row exists."""
        row = self.select_one("users", "role", auth_user_id=auth_user_id)
        return row.get("role") if row else None

    # ------------------------------------------------------------------
    # Stored procedures
    # ------------------------------------------------------------------

    def rpc(self, name: str, params: Optional[dict] = None, access_token: Optional[str] = None) -> list[dict]:
        """Invoke a stored procedure and return its result rows.

        With access_token the call runs as that user, so procedures relying on
        auth.uid() see the caller rather than the service role.
        """
        client = self._public_client(access_token) if access_token else self._admin
        resp = self._call(f"rpc:{name}", lambda: client.rpc(name, params or {}).execute())
        return _as_rows(resp.data)

    def rpc_first(self, name: str, params: Optional[dict] = None, access_token: Optional[str] = None) -> Optional[dict]:
        rows = self.rpc(name, params, access_token=access_token)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def count(self, table: str, **filters: Any) -> int:
        def run():
            query = self._admin.table(table).select("id", count="exact")
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.limit(1).execute()

        resp = self._call(f"count:{table}", run)
        return int(resp.count or 0)

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
        """Rows of table matching every equality filter.

        between is (column, lower, upper): lower inclusive, upper exclusive.
        not_like is (column, pattern) with SQL LIKE wildcards.
        """

        def run():
            query = self._admin.table(table).select(columns)
            for column, value in filters.items():
                query = query.eq(column, value)
            if between:
                column, lower, upper = between
                query = query.gte(column, lower).lt(column, upper)
            if not_like:
                query = query.not_.like(*not_like)
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(limit)
            return query.execute()

        resp = self._call(f"select:{table}", run)
        return _as_rows(resp.data)

    def select_one(self, table: str, columns: str = "*", **filters: Any) -> Optional[dict]:
        rows = self.select(table, columns, limit=1, **filters)
        return rows[0] if rows else None

    def insert(self, table: str, row: dict) -> dict:
        resp = self._call(f"insert:{table}", lambda: self._admin.table(table).insert(row).execute())
        rows = _as_rows(resp.data)
        return rows[0] if rows else {}

    def update(self, table: str, values: dict, **filters: Any) -> list[dict]:
        def run():
            query = self._admin.table(table).update(values)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.execute()

        resp = self._call(f"update:{table}", run)
        return _as_rows(resp.data)

    def delete(self, table: str, **filters: Any) -> list[dict]:
        """Delete matching rows and return them. Refuses to run without a filter."""
        if not filters:
            raise ValueError("delete() needs at least one filter")

        def run():
            query = self._admin.table(table).delete()
            for column, value in filters.items():
                query = query.eq(column, value)
            return query.execute()

        resp = self._call(f"delete:{table}", run)
        return _as_rows(resp.data)

    def close(self) -> None:
        # supabase-py sync clients hold no pooled resources that need an explicit close.
        logger.debug("ClubDatabase closed")
