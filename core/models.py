from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Role stored on branch_staff. All of them rank as "staff" in the user hierarchy.
STAFF_ROLES = ("manager", "senior_staff", "associate")

# Four ASCII digits. Stored hashed, verified by the database.
PIN_PATTERN = r"^[0-9]{4}$"


@dataclass
class CheckInMember:
    """The subset of a members row that check-in needs to decide eligibility."""

    id: str
    first_name: str
    last_name: str
    status: str  # "active" | "expired" | "suspended" | ...
    expiry_date: Optional[date]
    package_name: Optional[str] = None
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class RenewalRequest:
    member_id: str
    package_id: str
    payment_method: str
    amount_paid: float
    duration_months: int
    staff_id: str
    staff_pin: str

    def rpc_params(self) -> dict[str, Any]:
        """Parameters for the process_member_renewal stored procedure."""
        return {
            "p_member_id": self.member_id,
            "p_package_id": self.package_id,
            "p_payment_method": self.payment_method,
            "p_amount_paid": float(self.amount_paid),
            "p_duration_months": int(self.duration_months),
            "p_staff_id": self.staff_id,
            "p_staff_pin": self.staff_pin,
        }


@dataclass
class AnalyticsOverview:
    total_members: int = 0
    active_members: int = 0
    expired_members: int = 0
    total_staff: int = 0
    total_branches: int = 0
    total_revenue: float = 0.0


@dataclass
class AdminAnalytics:
    overview: AnalyticsOverview
    recent_checkins: list[dict] = field(default_factory=list)
    recent_renewals: list[dict] = field(default_factory=list)
    branch_analytics: list[dict] = field(default_factory=list)
    revenue_trend: list[dict] = field(default_factory=list)


@dataclass
class DateWindow:
    """A run of whole UTC days, both ends included."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def end_exclusive(self) -> date:
        return self.end + timedelta(days=1)

    def previous(self) -> "DateWindow":
        """The window of the same length ending the day before this one starts."""
        return DateWindow(start=self.start - timedelta(days=self.days), end=self.start - timedelta(days=1))

    def __contains__(self, day: Optional[date]) -> bool:
        return day is not None and self.start <= day <= self.end


@dataclass
class RevenueSummary:
    total: float = 0.0
    renewals: float = 0.0
    new_memberships: float = 0.0
    previous_total: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    daily_average: float = 0.0


@dataclass
class MembershipSummary:
    total: int = 0
    active: int = 0
    expired: int = 0
    new_this_period: int = 0
    renewals_this_period: int = 0
    retention_rate: float = 0.0
    package_distribution: list[dict] = field(default_factory=list)


@dataclass
class BranchAnalytics:
    branch_id: str
    window: DateWindow
    revenue: RevenueSummary
    members: MembershipSummary
    transactions: list[dict] = field(default_factory=list)
    package_performance: list[dict] = field(default_factory=list)
    daily: list[dict] = field(default_factory=list)
    peak_day: Optional[dict] = None
