"""
auth/tokens.py -- Bearer parsing, staff session tokens, and PIN hashing.

Security design decisions:
  Platform tokens: never decoded here. The platform's auth service is the
       only authority on its own access tokens; auth/dependencies.py asks it
       via ClubDatabase.get_auth_user().

  Staff session tokens: python-jose with HS256, signed with SECRET_KEY. Issued
       after a successful PIN check and sent back as X-Session-Token. Claims:
       sub (staff id), branch_id, role, typ="staff_session", exp. The typ claim
       keeps any other HS256 token signed with the same key from being
       replayed as a staff session. Verification returns None on any failure.

  PINs: bcrypt. A 4-digit PIN has only 10^4 values, so the hash alone cannot
       protect it -- the attempt lockout in auth/store.py does. bcrypt still
       keeps a leaked table from being a plain lookup.

Layer rule: no imports from api/ or clubdb/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import StaffSessionClaims
from core.config import get_settings
from core.models import PIN_PATTERN

logger = logging.getLogger("fitclub.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_STAFF_SESSION_TYP = "staff_session"
_PIN_RE = re.compile(PIN_PATTERN)

# ---------------------------------------------------------------------------
# Bearer header
# ---------------------------------------------------------------------------


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


# ---------------------------------------------------------------------------
# PIN hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def is_valid_pin(pin: str | None) -> bool:
    return bool(pin) and _PIN_RE.match(pin) is not None


def hash_pin(pin: str) -> str:
    """Return a bcrypt hash of a 4-digit PIN. Raises ValueError for any other shape."""
    if not is_valid_pin(pin):
        raise ValueError("PIN must be exactly 4 digits.")
    return bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_pin(pin: str, hashed: str | None) -> bool:
    """Return True if the PIN matches the bcrypt hash. Never raises."""
    if not pin or not hashed:
        return False
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the table
        return False


# ---------------------------------------------------------------------------
# Staff session tokens
# ---------------------------------------------------------------------------


def create_staff_session_token(staff_id: str, branch_id: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed staff session token.

    Args:
        staff_id:       branch_staff id whose PIN was verified.
        branch_id:      Branch the session is scoped to.
        role:           Staff sub-role ("manager", "senior_staff", "associate").
        expire_seconds: Session lifetime. 0 (default) uses
                        Settings.staff_session_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.staff_session_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": str(staff_id),
        "branch_id": str(branch_id),
        "role": role,
        "typ": _STAFF_SESSION_TYP,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_staff_session_token(token: str) -> StaffSessionClaims | None:
    """Decode and verify a staff session token. Returns None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _STAFF_SESSION_TYP:
        return None
    if not payload.get("sub") or not payload.get("branch_id") or not payload.get("role"):
        return None
    return StaffSessionClaims(
        staff_id=payload["sub"],
        branch_id=payload["branch_id"],
        role=payload["role"],
        expires_at=int(payload["exp"]),
    )
