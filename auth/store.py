"""
auth/store.py -- SQLAlchemy Core persistence layer for application rows.

Pattern: Repository + Data Mapper.
ProfileStore is the repository; _row_to_profile / _row_to_audit_entry /
_row_to_session are the mappers. Route and service code never touches SQL
directly.

The identity provider owns users, passwords and sessions. This store only
keeps what the application adds on top:
  user_profiles  -- role and active flag per provider user (id = provider UUID)
  audit_log      -- admin actions and auth events
  user_sessions  -- one record per sign-in, so admins can list and revoke them

In production DATABASE_URL points at the provider's Postgres database, where
these tables may already exist; create_all() leaves existing tables alone.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_profile() only accepts whitelisted column names.

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import AuditLogEntry, UserProfile, UserSession
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_profiles = Table(
    "user_profiles",
    _metadata,
    Column("id", String(36), primary_key=True),  # provider user UUID
    Column("email", String(255), nullable=False),
    Column("full_name", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36)),  # NULL for anonymous events
    Column("action", String(64), nullable=False),
    Column("resource_type", String(64)),
    Column("resource_id", String(64)),
    Column("details", JSON),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("session_token", String(128), nullable=False, unique=True),
    Column("expires_at", DateTime(timezone=True)),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

_PROFILE_FIELDS = {"email", "full_name", "role", "is_active"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (SQLite only)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProfileStore:
    """Repository for profile, audit log and session records.

    Usage:
        store = ProfileStore()
        store.create_profile(UserProfile(id=user.id, email=user.email))
        profile = store.get_profile(user.id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> UserProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_profiles.select().where(_profiles.c.id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_profile_by_email(self, email: str) -> UserProfile | None:
        """Case-insensitive lookup used by the operator CLI."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _profiles.select().where(func.lower(_profiles.c.email) == email.strip().lower())
            ).fetchone()
        return _row_to_profile(row) if row is not None else None

    def create_profile(self, profile: UserProfile) -> UserProfile:
        """Insert a profile row and return it as stored.

        Raises sqlalchemy.exc.IntegrityError if a row with this id exists.
        Callers creating rows lazily should catch it: a concurrent request
        may have created the same profile first.
        """
        now = _now()
        with self.engine.connect() as conn:
            conn.execute(
                _profiles.insert().values(
                    id=profile.id,
                    email=profile.email,
                    full_name=profile.full_name,
                    role=profile.role,
                    is_active=profile.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return self.get_profile(profile.id)

    def update_profile(self, user_id: str, **fields) -> bool:
        """Update mutable profile fields and stamp updated_at.

        Accepted fields: email, full_name, role, is_active. Unknown keys
        raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.connect() as conn:
            result = conn.execute(
                _profiles.update().where(_profiles.c.id == user_id).values(updated_at=_now(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def list_profiles(self) -> list[UserProfile]:
        """Return all profiles, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_profiles.select().order_by(_profiles.c.created_at.desc())).fetchall()
        return [_row_to_profile(r) for r in rows]

    def count_active_admins(self) -> int:
        """Return the number of active admin profiles.

        Used by the admin service to refuse removing the last admin.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_profiles)
                .where((_profiles.c.role == "admin") & (_profiles.c.is_active.is_(True)))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def add_audit_entry(self, entry: AuditLogEntry) -> str:
        entry_id = _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _audit_log.insert().values(
                    id=entry_id,
                    user_id=entry.user_id,
                    action=entry.action,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    details=entry.details,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=_now(),
                )
            )
            conn.commit()
        return entry_id

    def list_audit_entries(self, limit: int = 100) -> list[AuditLogEntry]:
        """Return the most recent audit entries, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_log.select().order_by(_audit_log.c.created_at.desc()).limit(limit)
            ).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    def count_audit_entries(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_audit_log)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Session records
    # ------------------------------------------------------------------

    def record_session(self, session: UserSession) -> str:
        """Insert a session record, or update the existing one for the same token key.

        The active flag of an existing record is left alone: a revoked or ended
        session stays revoked.
        """
        expires_at = datetime.fromisoformat(session.expires_at) if session.expires_at else None
        with self.engine.connect() as conn:
            existing = conn.execute(
                select(_sessions.c.id).where(_sessions.c.session_token == session.session_token)
            ).scalar()
            if existing is not None:
                conn.execute(
                    _sessions.update()
                    .where(_sessions.c.id == existing)
                    .values(
                        expires_at=expires_at,
                        ip_address=session.ip_address,
                        user_agent=session.user_agent,
                    )
                )
                conn.commit()
                return existing
            session_id = _new_id()
            conn.execute(
                _sessions.insert().values(
                    id=session_id,
                    user_id=session.user_id,
                    session_token=session.session_token,
                    expires_at=expires_at,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    is_active=True,
                    created_at=_now(),
                )
            )
            conn.commit()
        return session_id

    def end_session(self, session_token: str) -> None:
        """Mark the record for a signed-out session inactive."""
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.update().where(_sessions.c.session_token == session_token).values(is_active=False)
            )
            conn.commit()

    def list_sessions(self, user_id: str) -> list[UserSession]:
        """Return every session record for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def get_session(self, session_id: str) -> UserSession | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke_session(self, session_id: str) -> bool:
        """Deactivate a session record by id. Returns False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(is_active=False))
            conn.commit()
        return result.rowcount > 0

    def is_session_revoked(self, session_token: str) -> bool:
        """True only when a record exists for the token key and is inactive.

        Tokens without a record (issued before tracking, or by another client
        of the same provider project) are not considered revoked.
        """
        with self.engine.connect() as conn:
            active = conn.execute(
                select(_sessions.c.is_active).where(_sessions.c.session_token == session_token)
            ).scalar()
        return active is not None and not active

    def count_active_sessions(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.is_active.is_(True))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_profile(row) -> UserProfile:
    return UserProfile(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        role=row.role,
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
        is_active=bool(row.is_active),
    )


def _row_to_audit_entry(row) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_iso(row.created_at),
    )


def _row_to_session(row) -> UserSession:
    return UserSession(
        id=row.id,
        user_id=row.user_id,
        session_token=row.session_token,
        expires_at=_iso(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        is_active=bool(row.is_active),
        created_at=_iso(row.created_at),
    )
