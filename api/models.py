"""
API request and response models for the FitClub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: JSON keys are camelCase (the single-page client's convention);
Python attributes stay snake_case. CamelModel sets the alias generator once,
and populate_by_name lets tests and handlers build models with either form.

Every successful response is wrapped in Envelope; every error in ErrorResponse.
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.models import PIN_PATTERN

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_Uuid = Annotated[str, Field(pattern=UUID_PATTERN)]
_Pin = Annotated[str, Field(pattern=PIN_PATTERN)]
_Email = Annotated[str, Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)]
_Name = Annotated[str, Field(min_length=1, max_length=100)]
_Phone = Annotated[str, Field(max_length=30)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    card = "card"


class TimeframeEnum(str, Enum):
    week = "week"
    month = "month"
    quarter = "quarter"
    year = "year"


class RoleEnum(str, Enum):
    admin = "admin"
    staff = "staff"
    member = "member"


class MemberStatusEnum(str, Enum):
    active = "active"
    expired = "expired"
    suspended = "suspended"


class PackageTypeEnum(str, Enum):
    individual = "individual"
    couple = "couple"
    family = "family"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """Success envelope: {"success": true, "data": ..., "message": ...}."""

    success: bool = True
    data: Any = None
    message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Staff PIN
# ---------------------------------------------------------------------------


class VerifyPinRequest(CamelModel):
    """Request body for POST /api/v1/staff/verify-pin."""

    staff_id: _Uuid
    pin: _Pin


class SetPinRequest(CamelModel):
    """Request body for PUT /api/v1/staff/{staffId}/pin."""

    pin: _Pin


class PinVerification(CamelModel):
    is_valid: bool
    staff: Optional[dict] = None
    error: Optional[str] = None
    attempts_remaining: Optional[int] = None
    session_token: Optional[str] = None
    expires_in: Optional[int] = None


class SecurityEventView(CamelModel):
    """One PIN security event, as listed by GET /api/v1/staff/{staffId}/security-events."""

    id: Optional[int] = None
    event_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[str] = None
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Renewals
# ---------------------------------------------------------------------------


class RenewalProcessRequest(CamelModel):
    """Request body for POST /api/v1/renewals/process.

    Bounds mirror the renewal procedure's own checks so obviously bad input
    never reaches the database.
    """

    member_id: _Uuid
    package_id: _Uuid
    payment_method: PaymentMethodEnum
    amount_paid: float = Field(ge=0.01, le=999999.99)
    duration_months: int = Field(ge=1, le=24)
    staff_id: _Uuid
    staff_pin: _Pin


class EligibilityRequest(CamelModel):
    member_id: _Uuid


class RenewalEligibility(CamelModel):
    is_eligible: bool = False
    member_status: Optional[str] = None
    expiry_date: Optional[str] = None
    days_until_expiry: Optional[int] = None
    is_expired: Optional[bool] = None
    message: Optional[str] = None


class RenewalAnalytics(CamelModel):
    total_renewals: int = 0
    total_revenue: float = 0
    average_amount: float = 0
    # Shapes are owned by get_renewal_analytics; passed through untouched.
    payment_methods: Any = Field(default_factory=dict)
    popular_packages: Any = Field(default_factory=dict)
    monthly_trends: Any = Field(default_factory=dict)
    timeframe: TimeframeEnum = TimeframeEnum.month


# ---------------------------------------------------------------------------
# Check-ins
# ---------------------------------------------------------------------------


class CheckInRequest(CamelModel):
    """Request body for POST /api/v1/checkins. staffId is set when a staff member checks someone in."""

    member_id: _Uuid
    branch_id: _Uuid
    staff_id: Optional[_Uuid] = None


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


class MemberCreateRequest(CamelModel):
    """Request body for POST /api/v1/members."""

    first_name: _Name
    last_name: _Name
    email: _Email
    phone: Optional[_Phone] = None
    branch_id: _Uuid
    package_id: _Uuid
    national_id: Optional[str] = Field(default=None, max_length=50)


class MemberUpdateRequest(CamelModel):
    """Request body for PUT /api/v1/members/{memberId}. Only the fields sent are changed."""

    first_name: Optional[_Name] = None
    last_name: Optional[_Name] = None
    email: Optional[_Email] = None
    phone: Optional[_Phone] = None
    national_id: Optional[str] = Field(default=None, max_length=50)
    status: Optional[MemberStatusEnum] = None


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


class PackageCreateRequest(CamelModel):
    """Request body for POST /api/v1/packages."""

    name: str = Field(min_length=1, max_length=100)
    type: PackageTypeEnum = PackageTypeEnum.individual
    price: float = Field(ge=0, le=999999.99)
    duration_months: int = Field(ge=1, le=60)
    duration_type: str = Field(default="months", max_length=20)
    duration_value: int = Field(default=1, ge=1)
    max_members: int = Field(default=1, ge=1)
    features: list[str] = Field(default_factory=lambda: ["Gym Access"])
    is_active: bool = True
    branch_id: _Uuid


class PackageUpdateRequest(CamelModel):
    """Request body for PUT /api/v1/packages/{packageId}. The branch is fixed at creation."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[PackageTypeEnum] = None
    price: Optional[float] = Field(default=None, ge=0, le=999999.99)
    duration_months: Optional[int] = Field(default=None, ge=1, le=60)
    duration_type: Optional[str] = Field(default=None, max_length=20)
    duration_value: Optional[int] = Field(default=None, ge=1)
    max_members: Optional[int] = Field(default=None, ge=1)
    features: Optional[list[str]] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class SignupUserData(CamelModel):
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    role: RoleEnum = RoleEnum.member


class SignupRequest(CamelModel):
    """Request body for POST /api/v1/auth/signup."""

    email: _Email
    password: str = Field(min_length=6, max_length=128)
    user_data: SignupUserData = Field(default_factory=SignupUserData)


class SigninRequest(CamelModel):
    email: _Email
    password: str = Field(min_length=1, max_length=128)


class ResetPasswordRequest(CamelModel):
    email: _Email


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1, max_length=255)


class MeResponse(CamelModel):
    """Identity of the current caller, as returned by GET /api/v1/auth/me."""

    id: str
    role: str
    kind: str
    email: Optional[str] = None
    email_verified: bool = False
    branch_id: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)


class GuardResponse(CamelModel):
    authorized: bool
    redirect_to: Optional[str] = None
    error: Optional[str] = None
    role: Optional[str] = None
