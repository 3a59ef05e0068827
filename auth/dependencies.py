"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access token is looked up in priority order:
  1. access_token cookie -- set by the web UI sign-in flows.
  2. Authorization: Bearer <token> header -- API clients.

The token is verified locally when SUPABASE_JWT_SECRET is set, otherwise by
asking the identity provider. A verified identity is still refused when its
session record was revoked by an admin or its profile is deactivated.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
refresh_request_session() renews an expired cookie session from the refresh
cookie; the web guard calls it before sending the user back to /login.
require_admin() wraps get_current_user() and raises HTTP 403 if not admin.

Layer rule: no imports from web/ or admin/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.backend import BackendError
from auth.context import AccountDisabledError, AuthService, SessionRevokedError
from auth.models import AuthSession, AuthUser
from auth.store import ProfileStore
from auth.tokens import (
    ACCESS_COOKIE,
    RECOVERY_ACCESS_COOKIE,
    RECOVERY_REFRESH_COOKIE,
    REFRESH_COOKIE,
    decode_access_token,
    session_key,
    unverified_claims,
)
from core.config import get_settings

logger = logging.getLogger("accountdesk.auth")


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def request_origin(request: Request) -> tuple[str | None, str | None]:
    """Return (client IP, User-Agent) for session records and audit entries."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("User-Agent")


def resolve_access_token(request: Request, token: str) -> AuthUser | None:
    """Return the identity behind token, or None if it cannot be verified."""
    if get_settings().supabase_jwt_secret:
        claims = decode_access_token(token)
        return AuthUser.from_claims(claims) if claims else None
    user = request.app.state.backend.get_user(token)
    if user is not None:
        user.session_id = unverified_claims(token).get("session_id")
    return user


def try_get_current_user(request: Request) -> AuthUser | None:
    """Attempt to authenticate the request via cookie or Bearer header.

    Returns the AuthUser (with its profile attached) on success, None on any
    failure. Never raises -- callers that need a hard 401 should use
    get_current_user().
    """
    token = request.cookies.get(ACCESS_COOKIE) or bearer_token(request)
    if not token:
        return None

    user = resolve_access_token(request, token)
    if user is None:
        return None

    store: ProfileStore = request.app.state.profile_store
    if store.is_session_revoked(session_key(token)):
        return None

    profile = store.get_profile(user.id)
    if profile is not None and not profile.is_active:
        return None
    user.profile = profile
    return user


def refresh_request_session(request: Request) -> AuthSession | None:
    """Renew an expired cookie session from the refresh cookie.

    Only attempted when the access token is missing or no longer verifies.
    A token that still verifies was refused for another reason (revoked
    record, deactivated profile) and is never renewed. Returns None when the
    session cannot be renewed.
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        return None

    access_token = request.cookies.get(ACCESS_COOKIE)
    if access_token:
        if resolve_access_token(request, access_token) is not None:
            return None
        store: ProfileStore = request.app.state.profile_store
        if store.is_session_revoked(session_key(access_token)):
            return None

    auth_service: AuthService = request.app.state.auth_service
    ip_address, user_agent = request_origin(request)
    try:
        return auth_service.refresh_session(refresh_token, ip_address, user_agent)
    except (BackendError, AccountDisabledError, SessionRevokedError) as exc:
        logger.info("Session refresh refused: %s", exc)
        return None


def get_current_user(request: Request) -> AuthUser:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: AuthUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_admin(request: Request) -> AuthUser:
    """Require an active admin profile. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user


def get_request_session(request: Request, user: AuthUser) -> AuthSession | None:
    """Rebuild the caller's token pair for provider calls that need a session."""
    access_token = request.cookies.get(ACCESS_COOKIE) or bearer_token(request)
    if not access_token:
        return None
    return AuthSession(
        access_token=access_token,
        refresh_token=request.cookies.get(REFRESH_COOKIE, ""),
        user=user,
    )


def get_recovery_session(request: Request) -> AuthSession | None:
    """Return the session established from a recovery link, if still valid.

    Only the recovery cookies are consulted. A regular sign-in session never
    qualifies, which is what restricts the recovery password form to users
    who arrived through a reset link.
    """
    access_token = request.cookies.get(RECOVERY_ACCESS_COOKIE)
    if not access_token:
        return None
    user = resolve_access_token(request, access_token)
    if user is None:
        return None
    store: ProfileStore = request.app.state.profile_store
    if store.is_session_revoked(session_key(access_token)):
        return None
    return AuthSession(
        access_token=access_token,
        refresh_token=request.cookies.get(RECOVERY_REFRESH_COOKIE, ""),
        user=user,
        is_recovery=True,
    )
