"""
api/routes/v1/branches.py -- Branch directory endpoints.

Routes:
  GET /api/v1/branches              -- every branch (public)
  GET /api/v1/branches/{branchId}   -- one branch (public, 404 when missing)

Public because the sign-up and staff PIN screens list branches before anyone
is signed in.
"""

from fastapi import APIRouter, HTTPException, Request

from api.models import Envelope
from clubdb import ClubDatabase

router = APIRouter()


@router.get("/branches", response_model=Envelope)
def list_branches(request: Request) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    return Envelope(data=club_db.select("branches", order_by="name"))


@router.get("/branches/{branch_id}", response_model=Envelope)
def get_branch(request: Request, branch_id: str) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    branch = club_db.select_one("branches", id=branch_id)
    if branch is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Branch {branch_id} not found."},
        )
    return Envelope(data=branch)
