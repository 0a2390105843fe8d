"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credential types are checked in priority order:
  1. Authorization: Bearer <token> -- a platform access token. The platform's
     auth service validates it (ClubDatabase.get_auth_user) and the role is
     read from the users table; a user without a profile row is a member.
  2. X-Session-Token header -- a staff session token issued by
     POST /api/v1/staff/verify-pin.

Both converge on a Principal.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_roles() / require_permission() wrap get_current_principal() and
raise HTTP 403.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, Request

from auth.models import Principal, SecurityEvent
from auth.permissions import Permission, effective_role, has_permission, permissions_for
from auth.store import PinAttemptStore
from auth.tokens import decode_staff_session_token, extract_bearer

logger = logging.getLogger("fitclub.auth")


def try_get_principal(request: Request) -> Principal | None:
    """Attempt to authenticate the request via Bearer token or staff session token.

    Returns the Principal on success, None on any credential failure.
    ClubDatabaseUnavailable is not swallowed: an outage must surface as 503,
    not as a 401 that sends the client back to the login screen.
    """
    club_db = request.app.state.club_db

    # 1. Authorization: Bearer (platform access token)
    token = extract_bearer(request.headers.get("Authorization"))
    if token:
        user = club_db.get_auth_user(token)
        if user and user.get("id"):
            role = club_db.get_user_role(user["id"]) or "member"
            return Principal(
                id=user["id"],
                role=role,
                kind="user",
                email=user.get("email"),
                email_verified=bool(user.get("email_confirmed_at")),
                access_token=token,
                metadata=user.get("user_metadata") or {},
            )

    # 2. X-Session-Token (staff PIN session)
    session_token = request.headers.get("X-Session-Token", "")
    if session_token:
        claims = decode_staff_session_token(session_token)
        if claims:
            return Principal(
                id=claims.staff_id,
                role=claims.role,
                kind="staff",
                branch_id=claims.branch_id,
            )

    return None


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return principal


def require_roles(*roles: str):
    """Dependency factory: 403 unless the caller's role is one of roles.

    Staff sub-roles (manager, senior_staff, associate) satisfy "staff".
    """

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if principal.role not in roles and effective_role(principal.role) not in roles:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "forbidden",
                    "message": f"Access denied. Required role: {' or '.join(roles)}.",
                },
            )
        return principal

    return dependency


require_admin = require_roles("admin")


def require_permission(permission: Permission):
    """Dependency factory: 403 unless the caller's role grants permission."""

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if not has_permission(permissions_for(principal.role), permission):
            logger.info("Permission denied: %s (%s) lacks %s", principal.id, principal.role, permission.value)
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "insufficient_permissions",
                    "message": f"This operation requires the {permission.value} permission.",
                    "detail": {"required": permission.value, "role": principal.role},
                },
            )
        return principal

    return dependency


def ensure_branch_access(principal: Principal, branch_id: str) -> None:
    """Raise HTTP 403 unless principal may act on branch_id.

    Admins and branches:manage_all holders reach every branch. A staff
    session is pinned to the branch its PIN was verified for. Platform staff
    accounts are not tied to a branch.
    """
    if principal.role == "admin":
        return
    if has_permission(permissions_for(principal.role), Permission.BRANCHES_MANAGE_ALL):
        return
    if principal.is_staff_session and principal.branch_id != branch_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "branch_access_denied", "message": "You can only access your assigned branch."},
        )


# ---------------------------------------------------------------------------
# PIN lockout
#
# Both PIN entry points (staff verify-pin and renewal processing) share one
# failure log in app.state.pin_attempts, so guessing through one endpoint
# also locks the other.
# ---------------------------------------------------------------------------


def ensure_pin_not_locked(request: Request, staff_id: str) -> None:
    """Raise HTTP 429 pin_locked while staff_id is locked out."""
    store: PinAttemptStore = request.app.state.pin_attempts
    remaining = store.lockout_remaining(staff_id)
    if remaining:
        lockout_until = datetime.now(timezone.utc) + timedelta(seconds=remaining)
        raise HTTPException(
            status_code=429,
            detail={
                "code": "pin_locked",
                "message": "Too many failed PIN attempts. Try again later.",
                "detail": {"lockoutUntil": lockout_until.isoformat(), "retryAfter": remaining},
            },
            headers={"Retry-After": str(remaining)},
        )


def record_pin_outcome(request: Request, staff_id: str, success: bool, details: str | None = None) -> int:
    """Log a PIN check and return the attempts left before lockout."""
    store: PinAttemptStore = request.app.state.pin_attempts
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("User-Agent")
    store.record_event(
        SecurityEvent(
            staff_id=staff_id,
            event_type="pin_success" if success else "pin_failure",
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
        )
    )
    if success:
        return store.max_attempts
    failures = store.count_recent(staff_id, "pin_failure", store.window_seconds)
    if failures >= store.max_attempts:
        logger.warning("Staff %s locked out after %d failed PIN attempts", staff_id, failures)
        store.record_event(
            SecurityEvent(staff_id=staff_id, event_type="pin_lockout", ip_address=ip_address, user_agent=user_agent)
        )
    return max(store.max_attempts - failures, 0)
