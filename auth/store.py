"""
auth/store.py -- SQLAlchemy Core persistence for staff security events.

Pattern: Repository + Data Mapper.
PinAttemptStore is the repository; _row_to_event is the mapper. Route code
never touches SQL directly.

The table is an append-only log of PIN checks. Lockout is derived from it on
read (count of pin_failure rows inside the window) rather than kept as a
mutable counter, so there is nothing to reset and nothing to race on.

Security:
  All queries use bound parameters. No f-strings in SQL.
  The PIN itself is never stored here, not even hashed.

DB path: auth/fitclub_security.db by default. Any SQLAlchemy URL works
(SECURITY_DB_URL) so several API processes can share one lockout table.

Layer rule: no imports from api/ or clubdb/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import SecurityEvent

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'fitclub_security.db'}"

EVENT_TYPES = ("pin_attempt", "pin_failure", "pin_success", "pin_lockout")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_events = Table(
    "staff_security_events",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("staff_id", String(64), nullable=False),
    Column("event_type", String(30), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("details", Text),
    Column("created_at", String(32), nullable=False),  # ISO 8601 UTC
    Index("ix_staff_security_events_lookup", "staff_id", "event_type", "created_at"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so lockout reads do not block event writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PinAttemptStore:
    """Repository for SecurityEvent rows and the PIN lockout rule derived from them.

    Usage:
        store = PinAttemptStore()
        store.record_event(SecurityEvent(staff_id=sid, event_type="pin_failure"))
        if store.lockout_remaining(sid):
            ...
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, max_attempts: int = 5, window_seconds: int = 900) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    def record_event(self, security_event: SecurityEvent) -> int:
        """Append one event and return its ID.

        created_at defaults to now; an explicit value is kept as-is (imports,
        tests). Raises ValueError for an unknown event_type.
        """
        if security_event.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown security event type: {security_event.event_type!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _events.insert().values(
                    staff_id=security_event.staff_id,
                    event_type=security_event.event_type,
                    ip_address=security_event.ip_address,
                    user_agent=security_event.user_agent,
                    details=security_event.details,
                    created_at=security_event.created_at or _iso(_now()),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def count_recent(self, staff_id: str, event_type: str, window_seconds: int) -> int:
        """Number of events of one type for a staff member in the last window_seconds."""
        cutoff = _iso(_now() - timedelta(seconds=window_seconds))
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_events)
                .where(
                    (_events.c.staff_id == staff_id)
                    & (_events.c.event_type == event_type)
                    & (_events.c.created_at >= cutoff)
                )
            ).scalar()
        return result or 0

    def recent_events(self, staff_id: str, limit: int = 20) -> list[SecurityEvent]:
        """Newest-first event history for one staff member."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _events.select()
                .where(_events.c.staff_id == staff_id)
                .order_by(_events.c.created_at.desc(), _events.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_event(r) for r in rows]

    def lockout_remaining(self, staff_id: str) -> int:
        """Seconds until the staff member may try a PIN again. 0 when not locked.

        Locked while max_attempts pin_failure events sit inside the window.
        The lock lifts when the oldest of those failures ages out.
        """
        now = _now()
        cutoff = _iso(now - timedelta(seconds=self.window_seconds))
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_events.c.created_at)
                .where(
                    (_events.c.staff_id == staff_id)
                    & (_events.c.event_type == "pin_failure")
                    & (_events.c.created_at >= cutoff)
                )
                .order_by(_events.c.created_at.desc())
                .limit(self.max_attempts)
            ).fetchall()
        if len(rows) < self.max_attempts:
            return 0
        oldest = datetime.fromisoformat(rows[-1].created_at)
        remaining = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
        return max(int(remaining) + 1, 1)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_event(row) -> SecurityEvent:
    return SecurityEvent(
        id=row.id,
        staff_id=row.staff_id,
        event_type=row.event_type,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=row.details,
        created_at=row.created_at,
    )
