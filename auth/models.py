"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
properties). Dependencies and routes do the work.

Layer rule: no imports from api/ or clubdb/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Principal:
    """The authenticated caller of a request.

    Two credential types converge here:
      kind="user"  -- a platform access token (Authorization: Bearer). id is
                      the auth user id, role comes from the users table.
      kind="staff" -- a staff session token (X-Session-Token) issued after a
                      successful PIN check. id is the branch_staff id, role is
                      the staff sub-role, branch_id is the branch the PIN was
                      verified for.

    access_token is kept only for user principals so user-scoped RPCs can run
    as the caller. It is never logged or echoed.
    """

    id: str
    role: str  # "admin" | "staff" | "member" | "manager" | "senior_staff" | "associate"
    kind: str = "user"  # "user" | "staff"
    email: str | None = None
    email_verified: bool = False
    branch_id: str | None = None
    access_token: str | None = field(default=None, repr=False)
    metadata: dict = field(default_factory=dict)

    @property
    def is_staff_session(self) -> bool:
        return self.kind == "staff"


@dataclass
class StaffSessionClaims:
    """Decoded claims of a staff session token."""

    staff_id: str
    branch_id: str
    role: str
    expires_at: int  # unix seconds


@dataclass
class SecurityEvent:
    """One row of the staff security event log.

    Append-only: rows are inserted on every PIN check and never updated.
    """

    staff_id: str
    event_type: str  # "pin_attempt" | "pin_failure" | "pin_success" | "pin_lockout"
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: str | None = None
    created_at: str | None = None


@dataclass
class GuardDecision:
    """Outcome of evaluate_guard(). redirect_to is None when no redirect applies."""

    authorized: bool
    redirect_to: str | None = None
    error: str | None = None
    role: str | None = None
