"""
api/routes/v1/analytics.py -- Aggregated metrics endpoints for the dashboards.

Routes:
  GET /api/v1/admin/analytics                       -- club-wide admin dashboard
  GET /api/v1/analytics/branch/{branchId}           -- revenue and membership report for a date window
  GET /api/v1/analytics/branch/{branchId}/activity  -- recent audited actions at a branch

The admin payload drives the dashboard widgets:
  - Member, staff and branch counts
  - Revenue over the latest renewals
  - Recent check-in and renewal activity
  - Per-branch member and staff counts

These are read-only aggregate routes -- no mutations here.
"""

from dataclasses import asdict
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import Envelope
from auth.dependencies import ensure_branch_access, require_admin, require_permission
from auth.models import Principal
from auth.permissions import Permission
from clubdb import ClubDatabase
from core.branch_analytics import (
    activity_entry,
    activity_stats,
    build_branch_analytics,
    parse_amount,
    resolve_window,
)
from core.models import AdminAnalytics, AnalyticsOverview, BranchAnalytics, DateWindow

# Auth policy:
# - GET /api/v1/admin/analytics:                      requires admin -- club-wide revenue is internal data
# - GET /api/v1/analytics/branch/{branchId}:          requires analytics:read + branch access
# - GET /api/v1/analytics/branch/{branchId}/activity: requires analytics:read + branch access
router = APIRouter()

# Revenue is summed over this many most recent renewals, and the same rows
# form the revenue trend.
REVENUE_WINDOW = 50
RECENT_ACTIVITY_LIMIT = 10
# Upper bound on rows fetched per table for one branch report.
BRANCH_REPORT_ROW_LIMIT = 10000


def _sum_amounts(rows: list[dict]) -> float:
    return round(sum(parse_amount(row.get("amount_paid")) for row in rows), 2)


def collect_admin_analytics(club_db: ClubDatabase) -> AdminAnalytics:
    """Gather every dashboard figure. One platform call per figure, no joins in Python."""
    revenue_rows = club_db.select(
        "member_renewals",
        "amount_paid, created_at",
        order_by="created_at",
        descending=True,
        limit=REVENUE_WINDOW,
    )
    overview = AnalyticsOverview(
        total_members=club_db.count("members"),
        active_members=club_db.count("members", status="active"),
        expired_members=club_db.count("members", status="expired"),
        total_staff=club_db.count("branch_staff"),
        total_branches=club_db.count("branches"),
        total_revenue=_sum_amounts(revenue_rows),
    )
    return AdminAnalytics(
        overview=overview,
        recent_checkins=club_db.select(
            "member_check_ins",
            "*, members(first_name, last_name), branches(name)",
            order_by="created_at",
            descending=True,
            limit=RECENT_ACTIVITY_LIMIT,
        ),
        recent_renewals=club_db.select(
            "member_renewals",
            "*, members(first_name, last_name), packages(name)",
            order_by="created_at",
            descending=True,
            limit=RECENT_ACTIVITY_LIMIT,
        ),
        branch_analytics=club_db.select("branches", "id, name, member_count, staff_count"),
        revenue_trend=revenue_rows,
    )


@router.get("/admin/analytics", response_model=Envelope, dependencies=[Depends(require_admin)])
def get_admin_analytics(request: Request) -> Envelope:
    """Return the admin dashboard payload.

    Response data:
      overview          -- total/active/expired members, staff, branches, revenue
      recent_activity   -- {"checkins": [...10], "renewals": [...10]}
      branch_analytics  -- id, name, member_count, staff_count per branch
      revenue_trend     -- latest renewal amounts with timestamps
    """
    club_db: ClubDatabase = request.app.state.club_db
    analytics = collect_admin_analytics(club_db)
    return Envelope(
        data={
            "overview": asdict(analytics.overview),
            "recent_activity": {
                "checkins": analytics.recent_checkins,
                "renewals": analytics.recent_renewals,
            },
            "branch_analytics": analytics.branch_analytics,
            "revenue_trend": analytics.revenue_trend,
        }
    )


def collect_branch_analytics(club_db: ClubDatabase, branch_id: str, window: DateWindow) -> BranchAnalytics:
    """Fetch one branch's renewals, registrations and packages and build the report."""

    def renewals_in(span: DateWindow) -> list[dict]:
        return club_db.select(
            "member_renewals",
            "id, member_id, package_id, amount_paid, payment_method, created_at, "
            "members!inner(first_name, last_name, branch_id), packages(name)",
            order_by="created_at",
            descending=True,
            limit=BRANCH_REPORT_ROW_LIMIT,
            between=("created_at", span.start.isoformat(), span.end_exclusive.isoformat()),
            **{"members.branch_id": branch_id},
        )

    def registrations_in(span: DateWindow) -> list[dict]:
        return club_db.select(
            "members",
            "id, first_name, last_name, package_name, package_price, created_at",
            order_by="created_at",
            descending=True,
            limit=BRANCH_REPORT_ROW_LIMIT,
            between=("created_at", span.start.isoformat(), span.end_exclusive.isoformat()),
            branch_id=branch_id,
        )

    previous = window.previous()
    previous_total = _sum_amounts(renewals_in(previous)) + sum(
        parse_amount(m.get("package_price")) for m in registrations_in(previous)
    )
    return build_branch_analytics(
        branch_id,
        window,
        renewals=renewals_in(window),
        new_members=registrations_in(window),
        packages=club_db.select(
            "packages", "id, name, type, price", order_by="price", branch_id=branch_id, is_active=True
        ),
        previous_total=previous_total,
        head_counts=(
            club_db.count("members", branch_id=branch_id),
            club_db.count("members", branch_id=branch_id, status="active"),
            club_db.count("members", branch_id=branch_id, status="expired"),
        ),
    )


@router.get("/analytics/branch/{branch_id}", response_model=Envelope)
def get_branch_analytics(
    request: Request,
    branch_id: str,
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    current: Principal = Depends(require_permission(Permission.ANALYTICS_READ)),
) -> Envelope:
    """Revenue, transactions, membership and per-package figures for one branch.

    Both dates are inclusive UTC days. Without them the report covers the
    current calendar month.
    """
    ensure_branch_access(current, branch_id)
    try:
        window = resolve_window(start_date, end_date, datetime.now(timezone.utc).date())
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_date_range", "message": str(exc)},
        ) from exc

    club_db: ClubDatabase = request.app.state.club_db
    report = collect_branch_analytics(club_db, branch_id, window)
    return Envelope(
        data={
            "branch_id": report.branch_id,
            "period": {"start": window.start.isoformat(), "end": window.end.isoformat(), "days": window.days},
            "revenue": asdict(report.revenue),
            "members": asdict(report.members),
            "transactions": report.transactions,
            "package_performance": report.package_performance,
            "time_analytics": {
                "daily": report.daily,
                "peak_day": report.peak_day,
                "average_daily": report.revenue.daily_average,
            },
        }
    )


@router.get("/analytics/branch/{branch_id}/activity", response_model=Envelope)
def get_branch_activity(
    request: Request,
    branch_id: str,
    limit: int = Query(default=50, ge=1, le=100),
    current: Principal = Depends(require_permission(Permission.ANALYTICS_READ)),
) -> Envelope:
    """Newest audited actions at a branch. Read-only actions are left out."""
    ensure_branch_access(current, branch_id)
    club_db: ClubDatabase = request.app.state.club_db
    rows = club_db.select(
        "audit_logs",
        order_by="timestamp",
        descending=True,
        limit=limit,
        not_like=("action", "%READ%"),
        branch_id=branch_id,
    )
    activities = [activity_entry(row) for row in rows]
    return Envelope(data={"activities": activities, "stats": activity_stats(activities), "limit": limit})
