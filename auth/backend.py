"""
auth/backend.py -- Supabase Auth adapter.

Every identity operation (sign-in, sign-up, sign-out, recovery emails, OTP
verification, password updates) is delegated to the hosted identity provider
through the Supabase Python SDK. This module is the only place that imports
the SDK.

Design decisions:
  One SDK client per call. The SDK's auth client keeps "the current session"
  in memory, which is correct in a browser and wrong in a server handling many
  users at once. A throwaway client with persist_session=False and
  auto_refresh_token=False keeps each request's tokens to itself.

  PKCE flow. OAuth sign-in, sign-up confirmation and recovery emails redirect
  back with ?code=. The SDK writes the code verifier into whatever storage it
  is given; SessionStorage hands it the signed Starlette session so the
  verifier survives until the callback request.

  Errors are translated at this boundary. Callers only ever see BackendError,
  carrying the provider's message (shown to users after whitelisting in the
  web layer), its error code and HTTP status.

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, Optional

import httpx
from supabase import AuthError, Client, ClientOptions, create_client

from auth.models import AuthSession, AuthUser
from core.config import Settings

logger = logging.getLogger("accountdesk.auth.backend")


class BackendError(Exception):
    """Raised when the identity provider rejects or fails an operation."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class SessionStorage:
    """Expose a mutable mapping (request.session) through the SDK storage interface."""

    def __init__(self, mapping: MutableMapping[str, Any]) -> None:
        self._mapping = mapping

    def get_item(self, key: str) -> Optional[str]:
        return self._mapping.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._mapping[key] = value

    def remove_item(self, key: str) -> None:
        self._mapping.pop(key, None)


class _MemoryStorage(SessionStorage):
    def __init__(self) -> None:
        super().__init__({})


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except AuthError as exc:
        message = getattr(exc, "message", None) or str(exc)
        logger.info("Identity provider rejected %s: %s", operation, message)
        raise BackendError(
            message,
            code=getattr(exc, "code", None),
            status=getattr(exc, "status", None),
        ) from exc
    except httpx.HTTPError as exc:
        logger.error("Identity provider unreachable during %s: %s", operation, exc)
        raise BackendError("The authentication service is unavailable.", code="backend_unavailable") from exc


# ---------------------------------------------------------------------------
# SDK -> domain mappers
# ---------------------------------------------------------------------------


def _to_user(sdk_user) -> AuthUser:
    return AuthUser(
        id=str(sdk_user.id),
        email=sdk_user.email or "",
        email_confirmed=getattr(sdk_user, "email_confirmed_at", None) is not None,
        user_metadata=dict(getattr(sdk_user, "user_metadata", None) or {}),
    )


def _to_session(sdk_session, sdk_user=None) -> AuthSession:
    user = sdk_user if sdk_user is not None else sdk_session.user
    return AuthSession(
        access_token=sdk_session.access_token,
        refresh_token=sdk_session.refresh_token or "",
        user=_to_user(user),
        expires_in=int(sdk_session.expires_in or 3600),
        expires_at=sdk_session.expires_at,
    )


def _require_session(response, operation: str) -> AuthSession:
    if response is None or response.session is None:
        raise BackendError(f"No session returned by {operation}.", code="session_missing")
    return _to_session(response.session, response.user)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class SupabaseBackend:
    """Identity provider adapter.

    Usage:
        backend = SupabaseBackend(get_settings())
        session = backend.sign_in_with_password("a@example.com", "Secret123")
        backend.sign_out(session.access_token)
    """

    def __init__(self, settings: Settings) -> None:
        self.url = settings.supabase_url
        self.key = settings.supabase_anon_key
        if self.is_configured():
            logger.info("Supabase backend configured for %s", self.url)
        else:
            logger.warning("Supabase credentials not found -- identity operations will fail")

    def is_configured(self) -> bool:
        return bool(self.url and self.key)

    def _client(self, storage: SessionStorage | None = None) -> Client:
        if not self.is_configured():
            raise BackendError("The authentication service is not configured.", code="backend_unavailable")
        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
            storage=storage if storage is not None else _MemoryStorage(),
            flow_type="pkce",
        )
        return create_client(self.url, self.key, options=options)

    # ------------------------------------------------------------------
    # Sign-in / sign-up / sign-out
    # ------------------------------------------------------------------

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        client = self._client()
        with _translate_errors("sign in"):
            response = client.auth.sign_in_with_password({"email": email, "password": password})
        return _require_session(response, "sign in")

    def sign_up(
        self,
        email: str,
        password: str,
        metadata: dict | None = None,
        redirect_to: str | None = None,
        storage: SessionStorage | None = None,
    ) -> tuple[AuthUser, AuthSession | None]:
        """Create the provider account.

        The session is None when the project requires email confirmation;
        the user then finishes through the emailed link (/auth/callback).
        """
        client = self._client(storage)
        options: dict[str, Any] = {"data": metadata or {}}
        if redirect_to:
            options["email_redirect_to"] = redirect_to
        with _translate_errors("sign up"):
            response = client.auth.sign_up({"email": email, "password": password, "options": options})
        if response.user is None:
            raise BackendError("Failed to create account.", code="signup_failed")
        session = _to_session(response.session, response.user) if response.session else None
        return _to_user(response.user), session

    def sign_out(self, access_token: str) -> None:
        """Revoke the provider session (all refresh tokens) behind access_token."""
        client = self._client()
        with _translate_errors("sign out"):
            client.auth.admin.sign_out(access_token)

    def sign_in_with_oauth(self, provider: str, redirect_to: str, storage: SessionStorage) -> str:
        """Return the provider authorization URL. The PKCE verifier lands in storage."""
        client = self._client(storage)
        with _translate_errors("oauth sign in"):
            response = client.auth.sign_in_with_oauth({"provider": provider, "options": {"redirect_to": redirect_to}})
        return response.url

    # ------------------------------------------------------------------
    # Link / token exchange
    # ------------------------------------------------------------------

    def verify_otp(self, token_hash: str, otp_type: str) -> AuthSession:
        client = self._client()
        with _translate_errors("otp verification"):
            response = client.auth.verify_otp({"token_hash": token_hash, "type": otp_type})
        return _require_session(response, "otp verification")

    def exchange_code_for_session(self, code: str, storage: SessionStorage) -> AuthSession:
        client = self._client(storage)
        with _translate_errors("code exchange"):
            response = client.auth.exchange_code_for_session({"auth_code": code})
        return _require_session(response, "code exchange")

    def set_session(self, access_token: str, refresh_token: str = "") -> AuthSession:
        """Adopt an existing token pair. An empty refresh token is accepted while the access token is valid."""
        client = self._client()
        with _translate_errors("set session"):
            response = client.auth.set_session(access_token, refresh_token)
        return _require_session(response, "set session")

    def refresh_session(self, refresh_token: str) -> AuthSession:
        """Trade a refresh token for a new token pair. The provider rotates the refresh token."""
        client = self._client()
        with _translate_errors("session refresh"):
            response = client.auth.refresh_session(refresh_token)
        return _require_session(response, "session refresh")

    def get_user(self, access_token: str) -> AuthUser | None:
        """Return the user behind a token, or None if the provider rejects it."""
        client = self._client()
        try:
            with _translate_errors("get user"):
                response = client.auth.get_user(access_token)
        except BackendError:
            return None
        if response is None or response.user is None:
            return None
        return _to_user(response.user)

    # ------------------------------------------------------------------
    # Password management
    # ------------------------------------------------------------------

    def reset_password_for_email(self, email: str, redirect_to: str, storage: SessionStorage | None = None) -> None:
        client = self._client(storage)
        with _translate_errors("password reset"):
            client.auth.reset_password_for_email(email, {"redirect_to": redirect_to})

    def update_password(self, access_token: str, refresh_token: str, new_password: str) -> None:
        """Set a new password for the session owner. The session must still be valid."""
        client = self._client()
        with _translate_errors("password update"):
            client.auth.set_session(access_token, refresh_token)
            client.auth.update_user({"password": new_password})
