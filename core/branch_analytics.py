"""
core/branch_analytics.py -- Revenue and membership figures for one branch.

Pure functions over rows the route layer has already fetched: the renewals
and new members inside a DateWindow, and the packages the branch sells.
Amounts arrive as numbers or numeric strings; an unreadable amount counts as
a transaction worth nothing rather than failing the whole report.

The activity helpers at the bottom turn audit_logs rows into the entries the
branch dashboard timeline shows.
"""

from datetime import date, timedelta
from typing import Any, Optional

from core.models import BranchAnalytics, DateWindow, MembershipSummary, RevenueSummary

MAX_RANGE_DAYS = 730

_ACTIVITY_DESCRIPTIONS = {
    "CREATE_MEMBER": "New member registration processed",
    "PROCESS_MEMBER_RENEWAL": "Member renewal processed",
    "UPDATE_MEMBER": "Member information updated",
    "DELETE_MEMBER": "Member record deleted",
}


def resolve_window(start: Optional[date], end: Optional[date], today: date) -> DateWindow:
    """Date window for a report. Without dates, the calendar month containing today.

    Raises ValueError when only one end is given, when start is after end,
    or when the window is longer than MAX_RANGE_DAYS.
    """
    if start is None and end is None:
        first = today.replace(day=1)
        next_month = (first + timedelta(days=32)).replace(day=1)
        return DateWindow(start=first, end=next_month - timedelta(days=1))
    if start is None or end is None:
        raise ValueError("startDate and endDate must be given together.")
    if end < start:
        raise ValueError("startDate must not be after endDate.")
    window = DateWindow(start=start, end=end)
    if window.days > MAX_RANGE_DAYS:
        raise ValueError(f"Maximum date range is {MAX_RANGE_DAYS} days.")
    return window


def parse_amount(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def day_of(stamp: Any) -> Optional[date]:
    """Calendar day of an ISO timestamp or date string. None when unreadable."""
    try:
        return date.fromisoformat(str(stamp)[:10])
    except ValueError:
        return None


def _member_name(row: Optional[dict]) -> str:
    row = row or {}
    name = f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()
    return name or "Unknown member"


def transactions(renewals: list[dict], new_members: list[dict]) -> list[dict]:
    """Renewals and registrations as one newest-first list."""
    entries = [
        {
            "id": r.get("id"),
            "date": r.get("created_at"),
            "type": "renewal",
            "member_name": _member_name(r.get("members")),
            "package_name": (r.get("packages") or {}).get("name"),
            "amount": parse_amount(r.get("amount_paid")),
            "payment_method": r.get("payment_method"),
        }
        for r in renewals
    ]
    entries += [
        {
            "id": m.get("id"),
            "date": m.get("created_at"),
            "type": "new_membership",
            "member_name": _member_name(m),
            "package_name": m.get("package_name"),
            "amount": parse_amount(m.get("package_price")),
            "payment_method": None,
        }
        for m in new_members
    ]
    entries.sort(key=lambda e: str(e["date"] or ""), reverse=True)
    return entries


def revenue_summary(entries: list[dict], previous_total: float, window: DateWindow) -> RevenueSummary:
    renewals = sum(e["amount"] for e in entries if e["type"] == "renewal")
    new_memberships = sum(e["amount"] for e in entries if e["type"] == "new_membership")
    total = renewals + new_memberships
    change = total - previous_total
    return RevenueSummary(
        total=round(total, 2),
        renewals=round(renewals, 2),
        new_memberships=round(new_memberships, 2),
        previous_total=round(previous_total, 2),
        change=round(change, 2),
        change_percent=round(change / previous_total * 100, 1) if previous_total > 0 else 0.0,
        daily_average=round(total / window.days, 2),
    )


def membership_summary(total: int, active: int, expired: int, entries: list[dict]) -> MembershipSummary:
    """Branch head counts plus what happened inside the window.

    retention_rate is the share of the window's transactions that were
    renewals rather than first registrations.
    """
    joined = sum(1 for e in entries if e["type"] == "new_membership")
    renewed = len(entries) - joined
    counts: dict[str, int] = {}
    for entry in entries:
        name = entry["package_name"] or "unknown"
        counts[name] = counts.get(name, 0) + 1
    distribution = [
        {"package_name": name, "count": count, "percentage": round(count / len(entries) * 100, 1)}
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
    return MembershipSummary(
        total=total,
        active=active,
        expired=expired,
        new_this_period=joined,
        renewals_this_period=renewed,
        retention_rate=round(renewed / len(entries) * 100, 1) if entries else 0.0,
        package_distribution=distribution,
    )


def package_performance(packages: list[dict], renewals: list[dict], new_members: list[dict]) -> list[dict]:
    """Sales and revenue per package, best earner first.

    Renewals point at a package id; members rows only carry the package name.
    """
    results = []
    for package in packages:
        renewed = [r for r in renewals if r.get("package_id") == package.get("id")]
        joined = [m for m in new_members if m.get("package_name") == package.get("name")]
        revenue = sum(parse_amount(r.get("amount_paid")) for r in renewed)
        revenue += sum(parse_amount(m.get("package_price")) for m in joined)
        results.append(
            {
                "id": package.get("id"),
                "name": package.get("name"),
                "type": package.get("type"),
                "price": parse_amount(package.get("price")),
                "sales": len(renewed) + len(joined),
                "revenue": round(revenue, 2),
                "new_memberships": len(joined),
                "renewals": len(renewed),
            }
        )
    results.sort(key=lambda p: p["revenue"], reverse=True)
    return results


def daily_breakdown(entries: list[dict], window: DateWindow) -> list[dict]:
    """One row per day of the window, quiet days included."""
    days = {
        window.start + timedelta(days=offset): {"revenue": 0.0, "transactions": 0, "new_members": 0, "renewals": 0}
        for offset in range(window.days)
    }
    for entry in entries:
        day = day_of(entry["date"])
        if day not in window:
            continue
        bucket = days[day]
        bucket["revenue"] += entry["amount"]
        bucket["transactions"] += 1
        bucket["renewals" if entry["type"] == "renewal" else "new_members"] += 1
    return [
        {"date": day.isoformat(), **bucket, "revenue": round(bucket["revenue"], 2)}
        for day, bucket in sorted(days.items())
    ]


def build_branch_analytics(
    branch_id: str,
    window: DateWindow,
    renewals: list[dict],
    new_members: list[dict],
    packages: list[dict],
    previous_total: float,
    head_counts: tuple[int, int, int],
) -> BranchAnalytics:
    """Assemble the report. head_counts is (total, active, expired) members of the branch."""
    entries = transactions(renewals, new_members)
    daily = daily_breakdown(entries, window)
    busiest = max(daily, key=lambda d: d["revenue"], default=None)
    return BranchAnalytics(
        branch_id=branch_id,
        window=window,
        revenue=revenue_summary(entries, previous_total, window),
        members=membership_summary(*head_counts, entries),
        transactions=entries,
        package_performance=package_performance(packages, renewals, new_members),
        daily=daily,
        peak_day=busiest if busiest and busiest["revenue"] > 0 else None,
    )


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------


def describe_activity(action: Optional[str]) -> str:
    action = action or ""
    return _ACTIVITY_DESCRIPTIONS.get(action) or action.replace("_", " ").lower()


def activity_entry(log: dict) -> dict:
    return {
        "id": log.get("id"),
        "timestamp": log.get("timestamp"),
        "action": log.get("action"),
        "resource_type": log.get("resource_type"),
        "user_email": log.get("user_email"),
        "success": bool(log.get("success")),
        "description": describe_activity(log.get("action")),
        "details": {
            "status_code": log.get("status_code"),
            "resource_id": log.get("resource_id"),
            "error_message": log.get("error_message"),
        },
    }


def activity_stats(entries: list[dict]) -> dict:
    """Counts over a newest-first list of activity entries."""
    succeeded = sum(1 for e in entries if e["success"])
    return {
        "total_activities": len(entries),
        "successful_activities": succeeded,
        "failed_activities": len(entries) - succeeded,
        "unique_users": len({e["user_email"] for e in entries if e["user_email"]}),
        "last_activity": entries[0]["timestamp"] if entries else None,
    }
