"""
admin/service.py -- Admin console operations.

User management (role, active flag), the audit trail and session records.
Every write here is made on behalf of an admin already vetted by
auth.dependencies.require_admin (API) or the admin page guard (web).

Guards:
  - An admin cannot deactivate their own account.
  - The last active admin cannot be deactivated or demoted; without one the
    console is unreachable until someone edits the database by hand.

log_action() is best-effort: a failed audit write is logged and swallowed so
it never undoes the action it describes.

Layer rule: admin/ may import from auth/ and core/, never from api/ or web/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from auth.models import ROLES, AuditLogEntry, AuthUser, UserProfile, UserSession
from auth.store import ProfileStore

logger = logging.getLogger("accountdesk.admin")


class AdminActionError(Exception):
    """An admin action was refused. code is machine-readable, message user-facing."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class AdminStats:
    total_users: int
    admins: int
    active_sessions: int
    audit_logs: int


class AdminService:
    """Usage:
    admin = AdminService(store)
    admin.update_user_role(target_id, "moderator", actor=current_user)
    """

    def __init__(self, store: ProfileStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    def get_users(self) -> list[UserProfile]:
        return self.store.list_profiles()

    def get_user_by_id(self, user_id: str) -> UserProfile | None:
        return self.store.get_profile(user_id)

    def is_admin(self, user_id: str) -> bool:
        profile = self.store.get_profile(user_id)
        return profile is not None and profile.role == "admin"

    def update_user_role(self, user_id: str, role: str, actor: AuthUser) -> UserProfile:
        return self.update_user(user_id, actor=actor, role=role)

    def toggle_user_active(self, user_id: str, is_active: bool, actor: AuthUser) -> UserProfile:
        return self.update_user(user_id, actor=actor, is_active=is_active)

    def update_user(
        self,
        user_id: str,
        actor: AuthUser,
        role: str | None = None,
        is_active: bool | None = None,
    ) -> UserProfile:
        """Change role and/or active flag in one write.

        Every guard is checked against the requested end state before anything
        is written, so a refused request leaves the profile untouched.
        """
        if role is not None and role not in ROLES:
            raise AdminActionError("invalid_role", f"Unknown role: {role!r}.")
        target = self._get_target(user_id)
        deactivating = is_active is False
        if deactivating and target.id == actor.id:
            raise AdminActionError("self_deactivation", "You cannot deactivate your own account.")

        demoting = role is not None and role != "admin"
        if target.role == "admin" and target.is_active and (demoting or deactivating):
            if self.store.count_active_admins() <= 1:
                verb = "deactivate" if deactivating else "demote"
                raise AdminActionError("last_admin", f"Cannot {verb} the last active admin account.")

        changes: dict[str, Any] = {}
        if role is not None:
            changes["role"] = role
        if is_active is not None:
            changes["is_active"] = is_active
        self.store.update_profile(user_id, **changes)
        logger.info("User %s updated by %s: %s", user_id, actor.id, changes)
        return self.store.get_profile(user_id)

    def _get_target(self, user_id: str) -> UserProfile:
        target = self.store.get_profile(user_id)
        if target is None:
            raise AdminActionError("not_found", "User not found.")
        return target

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def get_audit_logs(self, limit: int = 100) -> list[AuditLogEntry]:
        return self.store.list_audit_entries(limit=limit)

    def log_action(
        self,
        action: str,
        details: dict[str, Any] | None = None,
        actor: AuthUser | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        try:
            self.store.add_audit_entry(
                AuditLogEntry(
                    action=action,
                    user_id=actor.id if actor else None,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    details=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
        except SQLAlchemyError:
            logger.exception("Failed to log action %s", action)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_user_sessions(self, user_id: str) -> list[UserSession]:
        return self.store.list_sessions(user_id)

    def revoke_session(self, session_id: str, actor: AuthUser) -> UserSession:
        """Mark a session record inactive.

        The access-token guard refuses tokens whose record is inactive, so the
        holder is signed out of this application on their next request.
        """
        if not self.store.revoke_session(session_id):
            raise AdminActionError("not_found", "Session not found.")
        logger.info("Session %s revoked by %s", session_id, actor.id)
        return self.store.get_session(session_id)

    def get_stats(self) -> AdminStats:
        users = self.store.list_profiles()
        return AdminStats(
            total_users=len(users),
            admins=sum(1 for u in users if u.role == "admin"),
            active_sessions=self.store.count_active_sessions(),
            audit_logs=self.store.count_audit_entries(),
        )
