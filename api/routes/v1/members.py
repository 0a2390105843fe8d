"""
api/routes/v1/members.py -- Member endpoints for staff screens.

Routes:
  GET    /api/v1/members/branch/{branchId}  -- members of a branch, optional ?status=
  GET    /api/v1/members/{memberId}         -- one member
  POST   /api/v1/members                    -- register a member on a package (members:write)
  PUT    /api/v1/members/{memberId}         -- change contact details or status (members:write)
  DELETE /api/v1/members/{memberId}         -- remove a member record (members:delete)

Reads need members:read. A staff session only sees and changes members of
its own branch. Registration does not create a login account; the member
signs up with the same email and the platform links the two.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import Envelope, MemberCreateRequest, MemberUpdateRequest
from auth.dependencies import ensure_branch_access, require_permission
from auth.models import Principal
from auth.permissions import Permission
from clubdb import ClubDatabase
from core.members import new_member_row

logger = logging.getLogger("fitclub.api.members")

router = APIRouter()

_MEMBER_COLUMNS = (
    "id, branch_id, first_name, last_name, email, phone, status, "
    "package_name, expiry_date, created_at"
)


@router.get("/members/branch/{branch_id}", response_model=Envelope)
def list_branch_members(
    request: Request,
    branch_id: str,
    status: Optional[str] = Query(default=None, max_length=30),
    current: Principal = Depends(require_permission(Permission.MEMBERS_READ)),
) -> Envelope:
    ensure_branch_access(current, branch_id)
    club_db: ClubDatabase = request.app.state.club_db
    filters = {"branch_id": branch_id}
    if status:
        filters["status"] = status
    rows = club_db.select("members", _MEMBER_COLUMNS, order_by="last_name", **filters)
    return Envelope(data=rows)


@router.get("/members/{member_id}", response_model=Envelope)
def get_member(
    request: Request,
    member_id: str,
    current: Principal = Depends(require_permission(Permission.MEMBERS_READ)),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    member = club_db.select_one("members", f"{_MEMBER_COLUMNS}, branches(name)", id=member_id)
    if member is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Member {member_id} not found."},
        )
    ensure_branch_access(current, str(member.get("branch_id")))
    return Envelope(data=member)


def _member_or_404(club_db: ClubDatabase, member_id: str) -> dict:
    member = club_db.select_one("members", "id, branch_id, email, first_name, last_name", id=member_id)
    if member is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Member {member_id} not found."},
        )
    return member


@router.post("/members", response_model=Envelope, status_code=201)
def create_member(
    request: Request,
    body: MemberCreateRequest,
    current: Principal = Depends(require_permission(Permission.MEMBERS_WRITE)),
) -> Envelope:
    """Register a member at a branch on an active package.

    The membership starts today and runs for the package's duration.
    """
    ensure_branch_access(current, body.branch_id)
    club_db: ClubDatabase = request.app.state.club_db

    if club_db.select_one("branches", "id, name", id=body.branch_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Branch {body.branch_id} not found."},
        )
    package = club_db.select_one(
        "packages", "id, name, type, price, duration_months, is_active", id=body.package_id
    )
    if package is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Package {body.package_id} not found."},
        )
    if not package.get("is_active"):
        raise HTTPException(
            status_code=400,
            detail={"code": "package_inactive", "message": "The selected package is not currently available."},
        )
    if club_db.select_one("members", "id", email=body.email, branch_id=body.branch_id) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "member_exists", "message": "A member with this email already exists in this branch."},
        )

    row = new_member_row(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        branch_id=body.branch_id,
        package=package,
        now=datetime.now(timezone.utc),
        phone=body.phone,
        national_id=body.national_id,
    )
    member = club_db.insert("members", row)
    logger.info("Member %s registered at branch %s by %s", member.get("id"), body.branch_id, current.id)
    return Envelope(data=member, message="Member created")


@router.put("/members/{member_id}", response_model=Envelope)
def update_member(
    request: Request,
    member_id: str,
    body: MemberUpdateRequest,
    current: Principal = Depends(require_permission(Permission.MEMBERS_WRITE)),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    values = body.model_dump(mode="json", exclude_none=True)
    if not values:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No member fields to update."},
        )
    existing = _member_or_404(club_db, member_id)
    ensure_branch_access(current, str(existing.get("branch_id")))

    values["updated_at"] = datetime.now(timezone.utc).isoformat()
    values["updated_by"] = current.id
    rows = club_db.update("members", values, id=member_id)
    logger.info("Member %s updated by %s: %s", member_id, current.id, sorted(values))
    return Envelope(data=rows[0] if rows else None, message="Member updated")


@router.delete("/members/{member_id}", response_model=Envelope)
def delete_member(
    request: Request,
    member_id: str,
    current: Principal = Depends(require_permission(Permission.MEMBERS_DELETE)),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    existing = _member_or_404(club_db, member_id)
    ensure_branch_access(current, str(existing.get("branch_id")))
    club_db.delete("members", id=member_id)
    logger.warning("Member %s deleted by %s", member_id, current.id)
    return Envelope(data={"memberId": member_id}, message="Member deleted")
