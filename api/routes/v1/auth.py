"""
api/routes/v1/auth.py -- Account, profile and email verification endpoints.

Routes:
  POST /api/v1/auth/signup              -- create an account (public)
  POST /api/v1/auth/signin              -- password sign-in (public, rate-limited)
  POST /api/v1/auth/reset-password      -- send a password reset email (public)
  GET  /api/v1/auth/profile             -- caller's profile from get_user_profile
  GET  /api/v1/auth/me                  -- caller identity, role and permissions
  POST /api/v1/auth/send-verification   -- re-send the signup confirmation email
  POST /api/v1/auth/verify-email        -- confirm the caller's email with a token
  GET  /api/v1/auth/guard               -- may the caller open a given screen?

Security:
  POST /signin is rate-limited per IP (LOGIN_RATE_LIMIT) and answers wrong
  email and wrong password with the same bad_credentials error.
  Cache-Control: no-store on sign-in responses, which carry session tokens.
  Self-registration creates members only; other roles need an admin caller.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    Envelope,
    ErrorDetail,
    ErrorResponse,
    GuardResponse,
    MeResponse,
    ResetPasswordRequest,
    RoleEnum,
    SigninRequest,
    SignupRequest,
    VerifyEmailRequest,
)
from auth.dependencies import get_current_principal, try_get_principal
from auth.guard import evaluate_guard
from auth.models import Principal
from auth.permissions import permissions_for
from clubdb import ClubDatabase, ClubDatabaseError, ClubDatabaseUnavailable
from core.config import get_settings

logger = logging.getLogger("fitclub.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/signup:             public -- admin caller needed only for non-member roles
# - POST /api/v1/auth/signin:             public -- rate-limited
# - POST /api/v1/auth/reset-password:     public
# - GET  /api/v1/auth/profile:            requires a platform account (not a staff session)
# - GET  /api/v1/auth/me:                 requires auth (get_current_principal)
# - POST /api/v1/auth/send-verification:  requires a platform account
# - POST /api/v1/auth/verify-email:       requires a platform account
# - GET  /api/v1/auth/guard:              soft auth -- always 200, the decision is in the body
router = APIRouter()


def _require_account(principal: Principal) -> Principal:
    """Staff sessions have no email or profile; these routes need a platform account."""
    if principal.is_staff_session or not principal.email:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "This operation requires a signed-in account."},
        )
    return principal


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=Envelope, status_code=201)
def signup(request: Request, body: SignupRequest) -> Envelope:
    """Create an auth user. The profile row is written by a database trigger and may not exist yet."""
    club_db: ClubDatabase = request.app.state.club_db

    if body.user_data.role != RoleEnum.member:
        caller = try_get_principal(request)
        if caller is None or caller.role != "admin":
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Only administrators can create staff or admin accounts."},
            )

    metadata = {
        "first_name": body.user_data.first_name,
        "last_name": body.user_data.last_name,
        "phone": body.user_data.phone or "",
        "role": body.user_data.role.value,
    }
    user = club_db.create_auth_user(body.email, body.password, metadata)
    profile = None
    if user.get("id"):
        try:
            profile = club_db.select_one("users", "*", auth_user_id=user["id"])
        except ClubDatabaseUnavailable:
            raise
        except ClubDatabaseError as exc:
            logger.warning("Profile lookup after signup failed for %s: %s", user["id"], exc.message)
    logger.info("Account created for %s (role=%s)", user.get("id"), metadata["role"])
    return Envelope(data={"user": user, "profile": profile}, message="User created successfully")


@router.post("/auth/signin")
@limiter.limit(_settings.login_rate_limit)  # must be BELOW @router so the registered endpoint is the limited wrapper
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Password sign-in. Returns the platform session plus the users profile row."""
    club_db: ClubDatabase = request.app.state.club_db
    try:
        result = club_db.sign_in(body.email, body.password)
    except ClubDatabaseUnavailable:
        raise
    except ClubDatabaseError:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="bad_credentials", message="Invalid email or password.")
            ).model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user = result.get("user") or {}
    profile = club_db.select_one("users", "*", auth_user_id=user["id"]) if user.get("id") else None
    resp = JSONResponse(
        status_code=200,
        content=Envelope(
            data={"user": user, "session": result.get("session"), "profile": profile},
            message="Signed in",
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/reset-password", response_model=Envelope)
def reset_password(request: Request, body: ResetPasswordRequest) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    redirect_to = f"{_settings.frontend_url.rstrip('/')}/reset-password"
    club_db.send_password_reset(body.email, redirect_to)
    return Envelope(message="Password reset email sent")


@router.get("/auth/guard", response_model=Envelope)
def guard(
    request: Request,
    required_role: str | None = Query(default=None, alias="requiredRole"),
    allowed_roles: str | None = Query(default=None, alias="allowedRoles"),
    branch_id: str | None = Query(default=None, alias="branchId"),
) -> Envelope:
    """Evaluate the screen guard for the caller. allowedRoles is comma-separated."""
    principal = try_get_principal(request)
    allowed = [r.strip() for r in (allowed_roles or "").split(",") if r.strip()]
    decision = evaluate_guard(principal, required_role=required_role, allowed_roles=allowed, branch_id=branch_id)
    body = GuardResponse(
        authorized=decision.authorized,
        redirect_to=decision.redirect_to,
        error=decision.error,
        role=decision.role,
    )
    return Envelope(data=body.model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=Envelope)
def me(current: Principal = Depends(get_current_principal)) -> Envelope:
    """Return identity information for the current caller."""
    body = MeResponse(
        id=current.id,
        role=current.role,
        kind=current.kind,
        email=current.email,
        email_verified=current.email_verified,
        branch_id=current.branch_id,
        permissions=sorted(p.value for p in permissions_for(current.role)),
    )
    return Envelope(data=body.model_dump(mode="json", by_alias=True))


@router.get("/auth/profile", response_model=Envelope)
def profile(request: Request, current: Principal = Depends(get_current_principal)) -> Envelope:
    """Profile from get_user_profile, run as the caller. Members also get visits and reports."""
    _require_account(current)
    club_db: ClubDatabase = request.app.state.club_db
    user_profile = club_db.rpc_first("get_user_profile", access_token=current.access_token)
    if not user_profile:
        raise HTTPException(
            status_code=404,
            detail={"code": "profile_not_found", "message": "User profile not found"},
        )

    additional: dict = {}
    member_data = user_profile.get("member_data") or {}
    if user_profile.get("role") == "member" and member_data.get("member_id"):
        member_id = member_data["member_id"]
        additional = {
            "recent_checkins": club_db.select(
                "member_check_ins",
                "*, branches(name)",
                order_by="check_in_date",
                descending=True,
                limit=10,
                member_id=member_id,
            ),
            "reports": club_db.select(
                "member_reports",
                order_by="created_at",
                descending=True,
                member_id=member_id,
            ),
        }
    return Envelope(data={"profile": user_profile, "additional_data": additional})


@router.post("/auth/send-verification", response_model=Envelope)
def send_verification(request: Request, current: Principal = Depends(get_current_principal)) -> Envelope:
    _require_account(current)
    if current.email_verified:
        raise HTTPException(
            status_code=400,
            detail={"code": "already_verified", "message": "Email is already verified."},
        )
    club_db: ClubDatabase = request.app.state.club_db
    club_db.resend_verification(current.email)
    return Envelope(message="Verification email sent")


@router.post("/auth/verify-email", response_model=Envelope)
def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    current: Principal = Depends(get_current_principal),
) -> Envelope:
    _require_account(current)
    club_db: ClubDatabase = request.app.state.club_db
    result = club_db.verify_email(current.email, body.token)
    user = result.get("user") or {}
    logger.info("Email verified for %s", current.id)
    return Envelope(
        data={"emailVerified": bool(user.get("email_confirmed_at")), "user": user},
        message="Email verified",
    )
