"""
api/routes/v1/checkins.py -- Member check-in endpoint.

Routes:
  POST /api/v1/checkins  -- record today's visit for a member

Who may check in whom:
  admin / staff accounts     -- any member, at any branch
  staff sessions (PIN)       -- any member, at the branch the session belongs to
  members                    -- only themselves (matched through get_user_profile)

The eligibility rules themselves are in core/checkin.py.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import CheckInRequest, Envelope
from auth.dependencies import ensure_branch_access, get_current_principal
from auth.models import Principal
from auth.permissions import effective_role, role_at_least
from clubdb import ClubDatabase, ClubDatabaseError
from core.checkin import build_checkin_row, check_in_refusal, member_from_row, utc_now

logger = logging.getLogger("fitclub.api.checkins")

# Auth policy:
# - POST /api/v1/checkins: requires auth; members limited to their own record,
#   staff sessions limited to their own branch
router = APIRouter()


def _own_member_id(club_db: ClubDatabase, principal: Principal) -> str | None:
    """members.id linked to a member account, via the caller-scoped profile procedure."""
    profile = club_db.rpc_first("get_user_profile", access_token=principal.access_token) or {}
    member_data = profile.get("member_data") or {}
    member_id = member_data.get("member_id")
    return str(member_id) if member_id else None


@router.post("/checkins", response_model=Envelope)
def check_in(
    request: Request,
    body: CheckInRequest,
    current: Principal = Depends(get_current_principal),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    role = effective_role(current.role)

    if role == "member":
        if _own_member_id(club_db, current) != body.member_id:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Members can only check themselves in."},
            )
    elif not role_at_least(current.role, "staff"):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Access denied. Required role: admin or staff."},
        )
    ensure_branch_access(current, body.branch_id)

    row = club_db.select_one("members", "*, branches(name)", id=body.member_id)
    if row is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Member not found"})
    member = member_from_row(row)

    now = utc_now()
    today = now.date()
    existing = club_db.select_one(
        "member_check_ins",
        "id",
        member_id=body.member_id,
        check_in_date=today.isoformat(),
    )
    refusal = check_in_refusal(member, today, already_checked_in=existing is not None)
    if refusal:
        raise HTTPException(status_code=400, detail={"code": "checkin_refused", "message": refusal})

    checkin = club_db.insert("member_check_ins", build_checkin_row(body.member_id, body.branch_id, now))
    logger.info("Member %s checked in at branch %s", body.member_id, body.branch_id)

    if body.staff_id:
        try:
            club_db.rpc(
                "log_staff_action",
                {
                    "p_staff_id": body.staff_id,
                    "p_action_type": "member_checkin",
                    "p_description": f"Member check-in: {member.full_name}",
                    "p_member_id": body.member_id,
                },
            )
        except ClubDatabaseError as exc:
            # The visit is already recorded; a missing audit line must not undo it.
            logger.warning("log_staff_action failed for staff %s: %s", body.staff_id, exc.message)

    return Envelope(
        data={
            "checkin": checkin,
            "member": {
                "name": member.full_name,
                "package": member.package_name,
                "expiry": member.expiry_date.isoformat() if member.expiry_date else None,
            },
        },
        message="Check-in successful",
    )
