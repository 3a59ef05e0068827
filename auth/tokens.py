"""
auth/tokens.py -- Access token verification and auth cookie helpers.

Security design decisions:
  JWT: the identity provider signs access tokens with HS256 using the
       project's JWT secret. When SUPABASE_JWT_SECRET is configured, tokens
       are verified locally with python-jose (signature, expiry, audience),
       which avoids a provider round trip on every page view. Verification
       returns None on any failure -- the guard layer turns that into a
       redirect or a 401. When no secret is configured, callers fall back to
       the provider's /user endpoint (see auth/dependencies.py).

  Cookies: the provider's token pair is stored in httpOnly cookies. A
       companion session_expires_at cookie outlives the access token so an
       expired session can be told apart from a visitor who never signed in.

  Recovery cookies: a session obtained from a password-reset link is kept
       in its own cookie pair with a short lifetime and is never written to
       the regular access_token cookie. That keeps it usable for the
       password-change step only.

Layer rule: no imports from api/, web/ or admin/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from jose import JWTError, jwt

from auth.models import AuthSession
from core.config import get_settings

logger = logging.getLogger("accountdesk.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
EXPIRES_COOKIE = "session_expires_at"
RECOVERY_ACCESS_COOKIE = "recovery_access_token"
RECOVERY_REFRESH_COOKIE = "recovery_refresh_token"


# ---------------------------------------------------------------------------
# JWT decode
# ---------------------------------------------------------------------------


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verify a provider access token locally. Returns the claims or None.

    Returns None when no JWT secret is configured, so callers can tell
    "cannot verify locally" and "invalid" apart only by checking the setting.
    """
    if not _settings.supabase_jwt_secret:
        return None
    try:
        claims = jwt.decode(
            token,
            _settings.supabase_jwt_secret,
            algorithms=[_ALGORITHM],
            audience=_settings.supabase_jwt_audience,
        )
    except JWTError:
        return None
    if not claims.get("sub"):
        return None
    return claims


def unverified_claims(token: str) -> dict[str, Any]:
    """Read claims without verifying them. Only for tokens the provider just vouched for."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return {}


def session_key(access_token: str, claims: dict[str, Any] | None = None) -> str:
    """Return the key a session record is stored under.

    Prefers the provider's session_id claim, which is stable across token
    refreshes. Falls back to a SHA-256 of the access token.
    """
    if claims is None:
        claims = unverified_claims(access_token)
    session_id = claims.get("session_id")
    if session_id:
        return str(session_id)
    return hashlib.sha256(access_token.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_cookie(response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value=value,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
    )


def set_session_cookies(response, session: AuthSession) -> None:
    """Write the provider token pair and the expiry marker cookie.

    access_token max_age matches the token lifetime so both expire together.
    The refresh token and the session_expires_at marker live longer.
    """
    _set_cookie(response, ACCESS_COOKIE, session.access_token, session.expires_in)
    _set_cookie(response, REFRESH_COOKIE, session.refresh_token, _settings.refresh_cookie_seconds)
    _set_cookie(
        response,
        EXPIRES_COOKIE,
        str(session.expires_at or ""),
        _settings.refresh_cookie_seconds,
    )


def clear_session_cookies(response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE, EXPIRES_COOKIE):
        response.delete_cookie(name)


def set_recovery_cookies(response, session: AuthSession) -> None:
    max_age = min(session.expires_in, _settings.recovery_session_seconds)
    _set_cookie(response, RECOVERY_ACCESS_COOKIE, session.access_token, max_age)
    _set_cookie(response, RECOVERY_REFRESH_COOKIE, session.refresh_token, max_age)


def clear_recovery_cookies(response) -> None:
    response.delete_cookie(RECOVERY_ACCESS_COOKIE)
    response.delete_cookie(RECOVERY_REFRESH_COOKIE)
