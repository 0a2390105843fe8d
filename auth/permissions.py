"""
auth/permissions.py -- Role to permission mapping.

Two role vocabularies meet here: users.role (admin / staff / member) for
platform-token callers, and branch_staff.role (manager / senior_staff /
associate) for PIN-session callers. Both map to the same Permission set.

system:admin is a wildcard -- has_permission() grants everything to it.
"""

from __future__ import annotations

from enum import Enum

from core.models import STAFF_ROLES


class Permission(str, Enum):
    # Member management
    MEMBERS_READ = "members:read"
    MEMBERS_WRITE = "members:write"
    MEMBERS_DELETE = "members:delete"
    MEMBERS_SEARCH = "members:search"

    # Staff management
    STAFF_READ = "staff:read"
    STAFF_WRITE = "staff:write"
    STAFF_DELETE = "staff:delete"
    STAFF_MANAGE_PINS = "staff:manage_pins"

    # Packages
    PACKAGES_READ = "packages:read"
    PACKAGES_WRITE = "packages:write"
    PACKAGES_DELETE = "packages:delete"
    PACKAGES_PRICING = "packages:pricing"

    # Branches
    BRANCHES_READ = "branches:read"
    BRANCHES_WRITE = "branches:write"
    BRANCHES_DELETE = "branches:delete"
    BRANCHES_MANAGE_ALL = "branches:manage_all"

    # Analytics
    ANALYTICS_READ = "analytics:read"
    ANALYTICS_FINANCIAL = "analytics:financial"
    ANALYTICS_EXPORT = "analytics:export"

    # System
    SYSTEM_ADMIN = "system:admin"
    SYSTEM_AUDIT_LOGS = "system:audit_logs"
    SYSTEM_BACKUP = "system:backup"

    # Renewals and payments
    RENEWALS_PROCESS = "renewals:process"
    RENEWALS_READ = "renewals:read"
    PAYMENTS_READ = "payments:read"
    PAYMENTS_PROCESS = "payments:process"


P = Permission

_ASSOCIATE = frozenset(
    {
        P.MEMBERS_READ,
        P.MEMBERS_SEARCH,
        P.STAFF_READ,
        P.PACKAGES_READ,
        P.PACKAGES_WRITE,
        P.PACKAGES_PRICING,
        P.PACKAGES_DELETE,
        P.BRANCHES_READ,
        P.RENEWALS_READ,
    }
)

_SENIOR_STAFF = _ASSOCIATE | {
    P.MEMBERS_WRITE,
    P.ANALYTICS_READ,
    P.RENEWALS_PROCESS,
    P.PAYMENTS_READ,
}

_MANAGER = _SENIOR_STAFF | {
    P.MEMBERS_DELETE,
    P.STAFF_WRITE,
    P.STAFF_DELETE,
    P.STAFF_MANAGE_PINS,
    P.ANALYTICS_FINANCIAL,
    P.PAYMENTS_PROCESS,
}

ROLE_PERMISSIONS: dict[str, frozenset[Permission]] = {
    "admin": frozenset(Permission),
    "manager": frozenset(_MANAGER),
    "senior_staff": frozenset(_SENIOR_STAFF),
    "associate": _ASSOCIATE,
    # A platform account with role=staff has no sub-role. Front-desk accounts
    # process renewals, so they rank with senior staff.
    "staff": frozenset(_SENIOR_STAFF),
    "member": frozenset({P.BRANCHES_READ, P.PACKAGES_READ}),
}

# admin > staff > member. Staff sub-roles rank as staff.
_ROLE_LEVELS = {"admin": 3, "staff": 2, "member": 1}


def permissions_for(role: str | None) -> frozenset[Permission]:
    """Permissions granted to a role. Unknown roles get none."""
    return ROLE_PERMISSIONS.get(role or "", frozenset())


def has_permission(granted: frozenset[Permission], required: Permission) -> bool:
    return required in granted or P.SYSTEM_ADMIN in granted


def role_level(role: str | None) -> int:
    if role in STAFF_ROLES:
        return _ROLE_LEVELS["staff"]
    return _ROLE_LEVELS.get(role or "", 0)


def role_at_least(role: str | None, required: str) -> bool:
    """True if role ranks at or above required in the admin > staff > member hierarchy."""
    return role_level(role) >= role_level(required) > 0


def effective_role(role: str | None) -> str | None:
    """Collapse staff sub-roles to "staff" for route rules that only know the three platform roles."""
    if role in STAFF_ROLES:
        return "staff"
    return role
