"""
core/members.py -- Building new member rows.

A new member starts active on the day they join, on the package they bought.
Membership length is counted in 30-day months, the same rule the front desk
has always quoted.
"""

from datetime import date, datetime, timedelta
from typing import Optional

DAYS_PER_MONTH = 30


def membership_expiry(start: date, duration_months: Optional[int]) -> date:
    """Expiry date for a membership of duration_months starting on start."""
    return start + timedelta(days=(duration_months or 1) * DAYS_PER_MONTH)


def new_member_row(
    first_name: str,
    last_name: str,
    email: str,
    branch_id: str,
    package: dict,
    now: datetime,
    phone: Optional[str] = None,
    national_id: Optional[str] = None,
) -> dict:
    """Row for the members table. package is the packages row being sold."""
    today = now.date()
    return {
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "phone": phone,
        "branch_id": branch_id,
        # national_id is unique and required; walk-ins without one get a placeholder.
        "national_id": national_id or f"temp-{int(now.timestamp() * 1000)}",
        "status": "active",
        "package_type": package.get("type") or "individual",
        "package_name": package.get("name"),
        "package_price": package.get("price"),
        "start_date": today.isoformat(),
        "expiry_date": membership_expiry(today, package.get("duration_months")).isoformat(),
        "is_verified": False,
    }
