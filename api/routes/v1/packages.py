"""
api/routes/v1/packages.py -- Membership packages.

Routes:
  GET    /api/v1/packages/branch/{branchId}  -- packages sold at a branch
  POST   /api/v1/packages                    -- add a package (packages:write + packages:pricing)
  PUT    /api/v1/packages/{packageId}        -- change a package (packages:write; price needs packages:pricing)
  DELETE /api/v1/packages/{packageId}        -- retire a package (packages:delete)

Active packages are public. ?includeInactive=true also returns retired
packages and needs packages:read on a staff or admin caller.

Packages are never removed: DELETE marks them inactive so past renewals keep
their package, and it is refused while active members are on the package.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import Envelope, PackageCreateRequest, PackageUpdateRequest
from auth.dependencies import ensure_branch_access, get_current_principal, require_permission
from auth.models import Principal
from auth.permissions import Permission, has_permission, permissions_for, role_at_least
from clubdb import ClubDatabase

logger = logging.getLogger("fitclub.api.packages")

router = APIRouter()


def _ensure_pricing(current: Principal, message: str) -> None:
    if not has_permission(permissions_for(current.role), Permission.PACKAGES_PRICING):
        raise HTTPException(
            status_code=403,
            detail={
                "code": "insufficient_permissions",
                "message": message,
                "detail": {"required": Permission.PACKAGES_PRICING.value, "role": current.role},
            },
        )


def _package_or_404(club_db: ClubDatabase, package_id: str) -> dict:
    package = club_db.select_one("packages", "id, branch_id, name, is_active", id=package_id)
    if package is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Package {package_id} not found."},
        )
    return package


@router.get("/packages/branch/{branch_id}", response_model=Envelope)
def list_branch_packages(
    request: Request,
    branch_id: str,
    include_inactive: bool = Query(default=False, alias="includeInactive"),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    if not include_inactive:
        rows = club_db.select("packages", order_by="price", branch_id=branch_id, is_active=True)
        return Envelope(data=rows)

    current = get_current_principal(request)
    if not role_at_least(current.role, "staff") or not has_permission(
        permissions_for(current.role), Permission.PACKAGES_READ
    ):
        raise HTTPException(
            status_code=403,
            detail={
                "code": "insufficient_permissions",
                "message": "Listing inactive packages requires staff access.",
            },
        )
    ensure_branch_access(current, branch_id)
    rows = club_db.select("packages", order_by="price", branch_id=branch_id)
    return Envelope(data=rows)


@router.post("/packages", response_model=Envelope, status_code=201)
def create_package(
    request: Request,
    body: PackageCreateRequest,
    current: Principal = Depends(require_permission(Permission.PACKAGES_WRITE)),
) -> Envelope:
    _ensure_pricing(current, "Setting package pricing requires the packages:pricing permission.")
    ensure_branch_access(current, body.branch_id)
    club_db: ClubDatabase = request.app.state.club_db

    if club_db.select_one("branches", "id", id=body.branch_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Branch {body.branch_id} not found."},
        )
    if club_db.select_one("packages", "id", branch_id=body.branch_id, name=body.name) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "package_exists", "message": f"A package named {body.name!r} already exists here."},
        )

    package = club_db.insert("packages", body.model_dump(mode="json"))
    logger.info(
        "Package %s (%s) created at branch %s by %s", package.get("id"), body.name, body.branch_id, current.id
    )
    return Envelope(data=package, message="Package created")


@router.put("/packages/{package_id}", response_model=Envelope)
def update_package(
    request: Request,
    package_id: str,
    body: PackageUpdateRequest,
    current: Principal = Depends(require_permission(Permission.PACKAGES_WRITE)),
) -> Envelope:
    values = body.model_dump(mode="json", exclude_none=True)
    if not values:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No package fields to update."},
        )
    if "price" in values:
        _ensure_pricing(current, "Updating package pricing requires the packages:pricing permission.")
    club_db: ClubDatabase = request.app.state.club_db
    existing = _package_or_404(club_db, package_id)
    ensure_branch_access(current, str(existing.get("branch_id")))

    values["updated_at"] = datetime.now(timezone.utc).isoformat()
    rows = club_db.update("packages", values, id=package_id)
    logger.info("Package %s updated by %s: %s", package_id, current.id, sorted(values))
    return Envelope(data=rows[0] if rows else None, message="Package updated")


@router.delete("/packages/{package_id}", response_model=Envelope)
def delete_package(
    request: Request,
    package_id: str,
    current: Principal = Depends(require_permission(Permission.PACKAGES_DELETE)),
) -> Envelope:
    club_db: ClubDatabase = request.app.state.club_db
    existing = _package_or_404(club_db, package_id)
    branch_id = str(existing.get("branch_id"))
    ensure_branch_access(current, branch_id)

    # members rows carry the package name, not its id.
    active = club_db.count("members", branch_id=branch_id, package_name=existing.get("name"), status="active")
    if active:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "package_in_use",
                "message": f"This package has {active} active members.",
                "detail": {"activeMembers": active},
            },
        )

    club_db.update(
        "packages",
        {"is_active": False, "updated_at": datetime.now(timezone.utc).isoformat()},
        id=package_id,
    )
    logger.info("Package %s retired by %s", package_id, current.id)
    return Envelope(data={"packageId": package_id}, message="Package deactivated")
