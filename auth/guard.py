"""
auth/guard.py -- Route guard decisions for the single-page client.

The client asks GET /api/v1/auth/guard before rendering a protected screen
and follows redirect_to when it is set. Keeping the rule here means the
client and the API agree on who may see what.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import GuardDecision, Principal
from auth.permissions import effective_role
from core.models import STAFF_ROLES

LOGIN_PATH = "/login"


def dashboard_for(role: str | None, branch_id: str | None = None) -> str | None:
    """Home screen for a role. None when a staff caller has no known branch."""
    if role == "admin":
        return "/admin"
    if role == "member":
        return "/member"
    if role == "staff" or role in STAFF_ROLES:
        return f"/dashboard/staff/{branch_id}" if branch_id else None
    return None


def evaluate_guard(
    principal: Principal | None,
    required_role: str | None = None,
    allowed_roles: Iterable[str] = (),
    branch_id: str | None = None,
) -> GuardDecision:
    if principal is None:
        return GuardDecision(authorized=False, redirect_to=LOGIN_PATH, error="Authentication required")

    if not principal.is_staff_session and (not principal.id or not principal.email):
        return GuardDecision(authorized=False, redirect_to=LOGIN_PATH, error="Invalid session")

    role = effective_role(principal.role)

    if required_role and role != required_role:
        redirect = dashboard_for(role, principal.branch_id)
        if role == "staff" and redirect is None:
            return GuardDecision(
                authorized=False,
                error="Staff role detected but branch access validation needed",
                role=role,
            )
        return GuardDecision(
            authorized=False,
            redirect_to=redirect or LOGIN_PATH,
            error=f"Access denied. Required role: {required_role}",
            role=role,
        )

    allowed = list(allowed_roles)
    if allowed and role not in allowed:
        return GuardDecision(
            authorized=False,
            error=f"Access denied. Allowed roles: {', '.join(allowed)}",
            role=role,
        )

    if branch_id and principal.is_staff_session and principal.branch_id != branch_id:
        return GuardDecision(
            authorized=False,
            redirect_to=dashboard_for(role, principal.branch_id),
            error="Branch access denied",
            role=role,
        )

    return GuardDecision(authorized=True, role=role)
