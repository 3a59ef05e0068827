"""
auth/context.py -- The auth context: every account operation the UI calls.

AuthService sits between the screens (web/, api/) and the two things that
actually hold state: the identity provider (auth/backend.py) and the
application's profile rows (auth/store.py). It mirrors the profile row for
each identity, creating it on first sight, and records session and audit
rows around sign-in and sign-out.

Failures from the provider surface as BackendError; a deactivated profile
surfaces as AccountDisabledError. Audit writes are best-effort and never
fail the operation they describe.

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.backend import BackendError, SessionStorage, SupabaseBackend
from auth.models import AuditLogEntry, AuthSession, AuthUser, UserProfile, UserSession
from auth.store import ProfileStore
from auth.tokens import session_key
from core.config import Settings, get_settings

logger = logging.getLogger("accountdesk.auth.context")

# Fields a signed-in user may change on their own profile. role and
# is_active are admin-only (admin/service.py).
_SELF_EDITABLE = {"full_name"}


class AccountDisabledError(Exception):
    """The provider accepted the credentials but the profile is deactivated."""


class SessionRevokedError(Exception):
    """The session record behind a token was revoked or ended."""


def _expiry_iso(expires_at: int | None) -> str | None:
    if not expires_at:
        return None
    return datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat()


class AuthService:
    """Process-wide holder of the account operations.

    Usage:
        auth = AuthService(SupabaseBackend(settings), ProfileStore())
        session, profile = auth.sign_in("a@example.com", "Secret123")
        auth.sign_out(session.user, session.access_token)
    """

    def __init__(self, backend: SupabaseBackend, store: ProfileStore, settings: Settings | None = None) -> None:
        self.backend = backend
        self.store = store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Redirect targets embedded in provider emails
    # ------------------------------------------------------------------

    @property
    def callback_url(self) -> str:
        return f"{self.settings.site_url}/auth/callback"

    @property
    def recovery_url(self) -> str:
        return f"{self.settings.site_url}/auth/recovery"

    # ------------------------------------------------------------------
    # Profile mirror
    # ------------------------------------------------------------------

    def fetch_user_profile(self, user: AuthUser) -> UserProfile:
        """Return the profile row for user, creating a default one if missing."""
        profile = self.store.get_profile(user.id)
        if profile is not None:
            return profile
        logger.info("Creating profile for user %s", user.id)
        try:
            return self.store.create_profile(
                UserProfile(
                    id=user.id,
                    email=user.email,
                    full_name=user.user_metadata.get("full_name"),
                )
            )
        except IntegrityError:
            # Another request created it between the read and the insert.
            return self.store.get_profile(user.id)

    def update_user_profile(self, user: AuthUser | None, data: dict[str, Any]) -> UserProfile:
        if user is None:
            raise ValueError("No user logged in")
        updates = {k: v for k, v in data.items() if k in _SELF_EDITABLE}
        self.fetch_user_profile(user)
        if updates:
            self.store.update_profile(user.id, **updates)
        return self.store.get_profile(user.id)

    # ------------------------------------------------------------------
    # Sign-in / sign-up / sign-out
    # ------------------------------------------------------------------

    def sign_in(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[AuthSession, UserProfile]:
        session = self.backend.sign_in_with_password(email.strip(), password)
        profile = self.complete_sign_in(session, ip_address, user_agent)
        return session, profile

    def complete_sign_in(
        self,
        session: AuthSession,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UserProfile:
        """Finish any sign-in (password, OAuth, emailed link) once the provider issued a session.

        Deactivated profiles get their fresh provider session revoked and
        AccountDisabledError is raised; no cookies should be written.
        """
        profile = self.fetch_user_profile(session.user)
        if not profile.is_active:
            self._revoke(session.access_token)
            self.log_event("SIGN_IN_BLOCKED", session.user.id, ip_address, user_agent)
            raise AccountDisabledError(session.user.email)

        self.store.record_session(
            UserSession(
                user_id=session.user.id,
                session_token=session_key(session.access_token),
                expires_at=_expiry_iso(session.expires_at),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        self.log_event("SIGN_IN", session.user.id, ip_address, user_agent)
        session.user.profile = profile
        return profile

    def refresh_session(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthSession:
        """Renew an expired sign-in from its refresh token.

        The new access token carries the same session_id, so the existing
        session record is updated in place. A revoked record or a deactivated
        profile refuses the renewal and the fresh provider session is revoked.
        """
        session = self.backend.refresh_session(refresh_token)
        key = session_key(session.access_token)
        if self.store.is_session_revoked(key):
            self._revoke(session.access_token)
            raise SessionRevokedError(session.user.id)

        profile = self.store.get_profile(session.user.id)
        if profile is not None and not profile.is_active:
            self._revoke(session.access_token)
            raise AccountDisabledError(session.user.email)

        self.store.record_session(
            UserSession(
                user_id=session.user.id,
                session_token=key,
                expires_at=_expiry_iso(session.expires_at),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        logger.info("Session refreshed for user %s", session.user.id)
        session.user.profile = profile
        return session

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        storage: SessionStorage | None = None,
    ) -> tuple[AuthUser, AuthSession | None]:
        """Create the provider account.

        With email confirmation enabled the provider returns no session; the
        profile row is then created on first sign-in instead.
        """
        user, session = self.backend.sign_up(
            email.strip(),
            password,
            metadata=metadata,
            redirect_to=self.callback_url,
            storage=storage,
        )
        if session is not None:
            self.fetch_user_profile(user)
        self.log_event("SIGN_UP", user.id)
        return user, session

    def sign_out(
        self,
        user: AuthUser | None,
        access_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """End the provider session and its record. Cookies are the caller's job."""
        if not access_token:
            return
        self._revoke(access_token)
        try:
            self.store.end_session(session_key(access_token))
        except SQLAlchemyError:
            logger.exception("Failed to close session record")
        self.log_event("SIGN_OUT", user.id if user else None, ip_address, user_agent)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def reset_password(self, email: str, storage: SessionStorage | None = None) -> None:
        """Ask the provider to email a recovery link pointing at /auth/recovery."""
        self.backend.reset_password_for_email(email.strip(), redirect_to=self.recovery_url, storage=storage)

    def update_password(self, session: AuthSession, new_password: str) -> None:
        """Change the password of a signed-in user. The session stays valid."""
        self.backend.update_password(session.access_token, session.refresh_token, new_password)
        self.log_event("PASSWORD_UPDATED", session.user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _revoke(self, access_token: str) -> None:
        try:
            self.backend.sign_out(access_token)
        except BackendError as exc:
            logger.warning("Provider sign-out failed: %s", exc.message)

    def log_event(
        self,
        action: str,
        user_id: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record an auth event in the audit log. Failures are logged, never raised."""
        try:
            self.store.add_audit_entry(
                AuditLogEntry(
                    action=action,
                    user_id=user_id,
                    details=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
        except SQLAlchemyError:
            logger.exception("Failed to log action %s", action)
