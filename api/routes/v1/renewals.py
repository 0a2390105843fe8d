"""
api/routes/v1/renewals.py -- Membership renewal endpoints.

Routes:
  POST /api/v1/renewals/process              -- renew a membership (renewals:process)
  POST /api/v1/renewals/eligibility          -- can this member renew? (renewals:read)
  GET  /api/v1/renewals/analytics            -- renewal figures for a branch (analytics:read)
  GET  /api/v1/renewals/branch/{branchId}    -- recent renewals for a branch (renewals:read)
  GET  /api/v1/renewals/{renewalId}          -- one renewal with member, package and staff (renewals:read)

Renewal pricing, expiry arithmetic, eligibility and the staff PIN check all
live in stored procedures. These handlers validate input, gate on permission,
call the procedure and reshape its row.
"""

from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request

from api.models import (
    UUID_PATTERN,
    EligibilityRequest,
    Envelope,
    RenewalAnalytics,
    RenewalEligibility,
    RenewalProcessRequest,
    TimeframeEnum,
)
from auth.dependencies import ensure_branch_access, ensure_pin_not_locked, record_pin_outcome, require_permission
from auth.models import Principal
from auth.permissions import Permission
from clubdb import ClubDatabase
from core.models import RenewalRequest

logger = logging.getLogger("fitclub.api.renewals")

_PIN_WORD = re.compile(r"\bpin\b", re.IGNORECASE)

# Auth policy:
# - POST /api/v1/renewals/process:            requires renewals:process; staff PIN lockout applies
# - POST /api/v1/renewals/eligibility:        requires renewals:read
# - GET  /api/v1/renewals/analytics:          requires analytics:read + branch access
# - GET  /api/v1/renewals/branch/{branchId}:  requires renewals:read + branch access
# - GET  /api/v1/renewals/{renewalId}:        requires renewals:read + branch access of the member
router = APIRouter()


def _is_pin_rejection(message: str | None) -> bool:
    # process_member_renewal reports a bad PIN through error_message only.
    return bool(message) and _PIN_WORD.search(message) is not None


@router.post("/renewals/process", response_model=Envelope)
def process_renewal(
    request: Request,
    body: RenewalProcessRequest,
    current: Principal = Depends(require_permission(Permission.RENEWALS_PROCESS)),
) -> Envelope:
    """Run process_member_renewal and return the renewal, member and summary details."""
    club_db: ClubDatabase = request.app.state.club_db
    ensure_pin_not_locked(request, body.staff_id)

    renewal = RenewalRequest(
        member_id=body.member_id,
        package_id=body.package_id,
        payment_method=body.payment_method.value,
        amount_paid=body.amount_paid,
        duration_months=body.duration_months,
        staff_id=body.staff_id,
        staff_pin=body.staff_pin,
    )
    result = club_db.rpc_first("process_member_renewal", renewal.rpc_params()) or {}

    if not result.get("success"):
        message = result.get("error_message") or "Renewal processing failed"
        if _is_pin_rejection(message):
            record_pin_outcome(request, body.staff_id, False, details="renewal")
        logger.info("Renewal refused for member %s: %s", body.member_id, message)
        raise HTTPException(status_code=400, detail={"code": "renewal_failed", "message": message})

    record_pin_outcome(request, body.staff_id, True, details="renewal")
    logger.info(
        "Renewal processed for member %s by staff %s (%s %.2f)",
        body.member_id,
        body.staff_id,
        renewal.payment_method,
        renewal.amount_paid,
    )
    return Envelope(
        data={
            "renewal": result.get("renewal_data"),
            "member": result.get("member_data"),
            "message": result.get("success_message"),
            "details": {
                "packageName": result.get("package_name"),
                "newExpiry": result.get("new_expiry"),
                "processedBy": result.get("staff_name"),
            },
        },
        message=result.get("success_message") or "Renewal processed",
    )


@router.post("/renewals/eligibility", response_model=Envelope)
def check_eligibility(
    request: Request,
    body: EligibilityRequest,
    current: Principal = Depends(require_permission(Permission.RENEWALS_READ)),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    result = club_db.rpc_first("check_renewal_eligibility", {"p_member_id": body.member_id}) or {}
    eligibility = RenewalEligibility(
        is_eligible=bool(result.get("is_eligible")),
        member_status=result.get("member_status"),
        expiry_date=result.get("expiry_date"),
        days_until_expiry=result.get("days_until_expiry"),
        is_expired=result.get("is_expired"),
        message=result.get("message"),
    )
    return Envelope(data=eligibility.model_dump(mode="json", by_alias=True))


@router.get("/renewals/analytics", response_model=Envelope)
def renewal_analytics(
    request: Request,
    branch_id: str = Query(alias="branchId", min_length=1),
    timeframe: TimeframeEnum = Query(default=TimeframeEnum.month),
    current: Principal = Depends(require_permission(Permission.ANALYTICS_READ)),
) -> Envelope:
    """Totals, averages and breakdowns from get_renewal_analytics, zero-filled when empty."""
    ensure_branch_access(current, branch_id)
    club_db: ClubDatabase = request.app.state.club_db
    row = club_db.rpc_first(
        "get_renewal_analytics",
        {"p_branch_id": branch_id, "p_timeframe": timeframe.value},
    ) or {}
    analytics = RenewalAnalytics(
        total_renewals=row.get("total_renewals") or 0,
        total_revenue=row.get("total_revenue") or 0,
        average_amount=row.get("average_amount") or 0,
        payment_methods=row.get("payment_methods") or {},
        popular_packages=row.get("popular_packages") or {},
        monthly_trends=row.get("monthly_trends") or {},
        timeframe=timeframe,
    )
    return Envelope(data=analytics.model_dump(mode="json", by_alias=True))


@router.get("/renewals/branch/{branch_id}", response_model=Envelope)
def branch_renewals(
    request: Request,
    branch_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    current: Principal = Depends(require_permission(Permission.RENEWALS_READ)),
) -> Envelope:
    """Most recent renewals for members of one branch."""
    ensure_branch_access(current, branch_id)
    club_db: ClubDatabase = request.app.state.club_db
    rows = club_db.select(
        "member_renewals",
        "id, member_id, package_id, amount_paid, payment_method, created_at, "
        "members!inner(first_name, last_name, branch_id), packages(name)",
        order_by="created_at",
        descending=True,
        limit=limit,
        **{"members.branch_id": branch_id},
    )
    return Envelope(data=rows)


@router.get("/renewals/{renewal_id}", response_model=Envelope)
def get_renewal(
    request: Request,
    renewal_id: str = Path(pattern=UUID_PATTERN),
    current: Principal = Depends(require_permission(Permission.RENEWALS_READ)),
) -> Envelope:
    """One renewal with its member, package and processing staff member."""
    club_db: ClubDatabase = request.app.state.club_db
    renewal = club_db.select_one(
        "member_renewals",
        "*, members(first_name, last_name, email, branch_id), packages(name, type, price), "
        "branch_staff(first_name, last_name, role)",
        id=renewal_id,
    )
    if renewal is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Renewal {renewal_id} not found."},
        )
    member = renewal.get("members") or {}
    ensure_branch_access(current, str(member.get("branch_id") or ""))
    return Envelope(data=renewal)
