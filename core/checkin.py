"""
core/checkin.py -- Member check-in rules.

Pure functions over CheckInMember. No I/O, no platform client -- the route
layer fetches rows, calls these, and writes the result. Keeping the rules
here lets the tests pin them down without an HTTP stack.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from core.models import CheckInMember


def utc_now() -> datetime:
    """Check-in dates are UTC calendar days. Read once per request and pass along."""
    return datetime.now(timezone.utc)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Columns come back as "YYYY-MM-DD" or a full ISO timestamp.
    return date.fromisoformat(str(value)[:10])


def member_from_row(row: dict) -> CheckInMember:
    """Map a members row (optionally joined with branches(name)) to CheckInMember."""
    branch = row.get("branches") or {}
    return CheckInMember(
        id=str(row["id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        status=row.get("status") or "unknown",
        expiry_date=_parse_date(row.get("expiry_date")),
        package_name=row.get("package_name"),
        branch_id=row.get("branch_id"),
        branch_name=branch.get("name") if isinstance(branch, dict) else None,
    )


def check_in_refusal(member: CheckInMember, today: date, already_checked_in: bool) -> Optional[str]:
    """Return the reason a member may not check in today, or None if they may.

    Order matters: status is reported before expiry so a suspended member with
    a stale expiry date sees "suspended", not "expired".
    """
    if member.status != "active":
        return f"Member is {member.status}. Cannot check in."
    if member.expiry_date is None or member.expiry_date < today:
        return "Membership expired. Please renew to continue."
    if already_checked_in:
        return "Member already checked in today"
    return None


def build_checkin_row(member_id: str, branch_id: str, now: Optional[datetime] = None) -> dict:
    """Row for member_check_ins: UTC date plus HH:MM:SS time."""
    now = now or utc_now()
    return {
        "member_id": member_id,
        "branch_id": branch_id,
        "check_in_date": now.date().isoformat(),
        "check_in_time": now.strftime("%H:%M:%S"),
    }
