"""
api/routes/v1/staff.py -- Staff PIN authentication and staff directory endpoints.

Routes:
  POST /api/v1/staff/verify-pin         -- check a staff PIN; issue a staff session token
  GET  /api/v1/staff/branch/{branchId}  -- staff list for a branch (public, for the PIN picker)
  GET  /api/v1/staff                    -- every staff member (admin only)
  PUT  /api/v1/staff/{staffId}/pin      -- set a staff PIN (staff:manage_pins)
  GET  /api/v1/staff/{staffId}/security-events -- recent PIN events (system:audit_logs)

Security:
  POST /verify-pin is rate-limited per IP (PIN_RATE_LIMIT) and locked per staff
  member after PIN_MAX_ATTEMPTS failures inside PIN_LOCKOUT_WINDOW_SECONDS.
  The PIN is compared by the verify_staff_pin procedure, never in Python.
  Public staff listings never include pin_hash.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.limiter import limiter
from api.models import Envelope, PinVerification, SecurityEventView, SetPinRequest, VerifyPinRequest
from auth.dependencies import (
    ensure_branch_access,
    ensure_pin_not_locked,
    record_pin_outcome,
    require_admin,
    require_permission,
)
from auth.models import Principal
from auth.permissions import Permission
from auth.store import PinAttemptStore
from auth.tokens import create_staff_session_token, hash_pin
from clubdb import ClubDatabase
from core.config import get_settings

logger = logging.getLogger("fitclub.api.staff")

_settings = get_settings()

_PUBLIC_COLUMNS = "id, branch_id, first_name, last_name, role, email, phone, last_active"

# Auth policy:
# - POST /api/v1/staff/verify-pin:        public -- this IS the staff login; rate-limited + lockout
# - GET  /api/v1/staff/branch/{branchId}: public -- the PIN screen lists names before anyone is signed in
# - GET  /api/v1/staff:                   requires admin (require_admin)
# - PUT  /api/v1/staff/{staffId}/pin:     requires staff:manage_pins + branch access
# - GET  /api/v1/staff/{staffId}/security-events: requires system:audit_logs
router = APIRouter()


@router.post("/staff/verify-pin", response_model=Envelope)
@limiter.limit(_settings.pin_rate_limit)  # must be BELOW @router so the registered endpoint is the limited wrapper
def verify_pin(request: Request, body: VerifyPinRequest) -> Envelope:
    """Verify a staff PIN through the verify_staff_pin procedure.

    A wrong PIN is still a 200 with isValid=false; the client shows the
    procedure's error message and attemptsRemaining. Only the lockout is an
    HTTP error (429 pin_locked).
    """
    club_db: ClubDatabase = request.app.state.club_db
    ensure_pin_not_locked(request, body.staff_id)

    result = club_db.rpc_first("verify_staff_pin", {"p_staff_id": body.staff_id, "p_pin": body.pin}) or {}
    is_valid = bool(result.get("is_valid"))
    staff = result.get("staff_data")
    attempts_remaining = record_pin_outcome(request, body.staff_id, is_valid, details=result.get("error_message"))

    verification = PinVerification(
        is_valid=is_valid,
        staff=staff,
        error=result.get("error_message"),
        attempts_remaining=attempts_remaining,
    )
    if is_valid:
        branch_id, role = _session_scope(club_db, body.staff_id, staff)
        verification.session_token = create_staff_session_token(body.staff_id, branch_id, role)
        verification.expires_in = _settings.staff_session_expire_seconds
        logger.info("Staff %s signed in at branch %s", body.staff_id, branch_id)
    else:
        logger.info("Failed PIN attempt for staff %s (%d left)", body.staff_id, attempts_remaining)

    return Envelope(
        data=verification.model_dump(mode="json", by_alias=True),
        message="PIN verified" if is_valid else "PIN verification failed",
    )


def _session_scope(club_db: ClubDatabase, staff_id: str, staff: dict | None) -> tuple[str, str]:
    """Branch and role for the session token: from staff_data, else the branch_staff row."""
    staff = staff or {}
    branch_id = staff.get("branch_id")
    role = staff.get("role")
    if not branch_id or not role:
        row = club_db.select_one("branch_staff", "id, branch_id, role", id=staff_id) or {}
        branch_id = branch_id or row.get("branch_id")
        role = role or row.get("role") or "associate"
    if not branch_id:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Staff member has no branch assignment."},
        )
    return str(branch_id), role


@router.get("/staff/branch/{branch_id}", response_model=Envelope)
def list_branch_staff(request: Request, branch_id: str) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    rows = club_db.select("branch_staff", _PUBLIC_COLUMNS, order_by="role", branch_id=branch_id)
    return Envelope(data=rows)


@router.get("/staff", response_model=Envelope)
def list_all_staff(request: Request, current: Principal = Depends(require_admin)) -> Envelope:
    """Every staff member across branches, with the branch name joined in."""
    club_db: ClubDatabase = request.app.state.club_db
    rows = club_db.select("branch_staff", f"{_PUBLIC_COLUMNS}, branches(name)", order_by="last_name")
    return Envelope(data=rows)


@router.put("/staff/{staff_id}/pin", response_model=Envelope)
def set_staff_pin(
    request: Request,
    staff_id: str,
    body: SetPinRequest,
    current: Principal = Depends(require_permission(Permission.STAFF_MANAGE_PINS)),
) -> Envelope:
    """Replace a staff member's PIN. Only the bcrypt hash is written."""
    club_db: ClubDatabase = request.app.state.club_db
    row = club_db.select_one("branch_staff", "id, branch_id", id=staff_id)
    if row is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Staff member {staff_id} not found."},
        )
    ensure_branch_access(current, str(row["branch_id"]))
    club_db.update("branch_staff", {"pin_hash": hash_pin(body.pin)}, id=staff_id)
    logger.info("PIN updated for staff %s by %s", staff_id, current.id)
    return Envelope(data={"staffId": staff_id}, message="PIN updated")


@router.get("/staff/{staff_id}/security-events", response_model=Envelope)
def list_security_events(
    request: Request,
    staff_id: str,
    limit: int = Query(20, ge=1, le=100),
    current: Principal = Depends(require_permission(Permission.SYSTEM_AUDIT_LOGS)),
) -> Envelope:
    """Newest-first PIN events for one staff member, from the local lockout log."""
    store: PinAttemptStore = request.app.state.pin_attempts
    events = [
        SecurityEventView(
            id=e.id,
            event_type=e.event_type,
            ip_address=e.ip_address,
            user_agent=e.user_agent,
            details=e.details,
            created_at=e.created_at,
        ).model_dump(mode="json", by_alias=True)
        for e in store.recent_events(staff_id, limit=limit)
    ]
    return Envelope(data=events)
