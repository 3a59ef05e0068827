"""
api/routes/v1/auth.py -- Authentication and profile REST endpoints.

Routes:
  POST  /api/v1/auth/login             -- password login; sets session cookies
  POST  /api/v1/auth/logout            -- provider sign-out, clears cookies
  POST  /api/v1/auth/register          -- create account (cookies set if no confirmation needed)
  POST  /api/v1/auth/password/forgot   -- send recovery email
  POST  /api/v1/auth/password          -- change password (requires auth)
  GET   /api/v1/auth/me                -- current user info (requires auth)
  PATCH /api/v1/auth/me                -- update own profile (requires auth)
  GET   /api/v1/auth/providers         -- list enabled OAuth providers (public)

Security:
  Credential endpoints (login, register, password/forgot) are rate-limited
  per IP with LOGIN_RATE_LIMIT.
  Cache-Control: no-store on every response that carries tokens.
  Wrong email and wrong password return the same "bad_credentials" error.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    OAuthProviderInfo,
    PasswordChangeRequest,
    ProfilePatch,
    RegisterRequest,
    RegisterResponse,
)
from auth.backend import BackendError, SessionStorage
from auth.context import AccountDisabledError, AuthService
from auth.dependencies import (
    bearer_token,
    get_current_user,
    get_request_session,
    request_origin,
    try_get_current_user,
)
from auth.models import AuthSession, AuthUser, UserProfile
from auth.oauth import get_enabled_providers
from auth.tokens import ACCESS_COOKIE, clear_session_cookies, set_session_cookies
from core.config import get_settings
from core.validation import validate_new_password, validate_register_form

# Auth policy:
# - POST  /api/v1/auth/login:           public -- login endpoint must be unauthenticated
# - POST  /api/v1/auth/logout:          public -- clearing cookies needs no prior auth
# - POST  /api/v1/auth/register:        public, unless SELF_REGISTRATION_ENABLED=false
# - POST  /api/v1/auth/password/forgot: public
# - GET   /api/v1/auth/providers:       public -- login page renders OAuth buttons from it
# - POST  /api/v1/auth/password:        requires auth (get_current_user)
# - GET   /api/v1/auth/me:              requires auth (get_current_user)
# - PATCH /api/v1/auth/me:              requires auth (get_current_user)
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _backend_http_error(exc: BackendError) -> HTTPException:
    """Map a provider failure to an HTTP error. Provider outages become 503."""
    if exc.code == "backend_unavailable":
        return HTTPException(
            status_code=503,
            detail={"code": "backend_unavailable", "message": "The authentication service is unavailable."},
        )
    return HTTPException(
        status_code=400,
        detail={"code": exc.code or "auth_error", "message": exc.message},
    )


def _session_payload(session: AuthSession, profile: UserProfile) -> LoginResponse:
    return LoginResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
        user_id=session.user.id,
        email=session.user.email,
        role=profile.role,
    )


def _me_response(user: AuthUser, profile: UserProfile) -> MeResponse:
    return MeResponse(
        user_id=user.id,
        email=user.email or profile.email,
        role=profile.role,
        full_name=profile.full_name,
        is_active=profile.is_active,
        email_confirmed=user.email_confirmed,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Sign in with email and password; set session cookies.

    The token pair is also returned in the body for API clients that prefer
    the Authorization header over cookies.
    """
    auth: AuthService = request.app.state.auth_service
    ip_address, user_agent = request_origin(request)
    try:
        session, profile = auth.sign_in(body.email, body.password, ip_address, user_agent)
    except AccountDisabledError:
        resp = JSONResponse(
            status_code=403,
            content={"error": {"code": "account_disabled", "message": "Your account has been disabled."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    except BackendError as exc:
        if exc.code == "backend_unavailable":
            raise _backend_http_error(exc) from exc
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(status_code=200, content=_session_payload(session, profile).model_dump())
    set_session_cookies(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """End the provider session (if any) and clear the session cookies."""
    auth: AuthService = request.app.state.auth_service
    user = try_get_current_user(request)
    access_token = request.cookies.get(ACCESS_COOKIE) or bearer_token(request)
    ip_address, user_agent = request_origin(request)
    if user is not None:
        auth.sign_out(user, access_token, ip_address, user_agent)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_session_cookies(resp)
    return resp


@limiter.limit(login_rate_limit)
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account.

    Returns 201 in both provider modes. When email confirmation is required
    the body has confirmation_required=true and no cookies are set.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    result = validate_register_form(body.email, body.password, body.confirm_password)
    if not result.is_valid:
        raise HTTPException(
            status_code=422,
            detail={
                "code": "validation_error",
                "message": "Registration form is invalid.",
                "fields": result.errors,
            },
        )

    auth: AuthService = request.app.state.auth_service
    metadata = {"full_name": body.full_name} if body.full_name else {}
    try:
        user, session = auth.sign_up(body.email, body.password, metadata, storage=SessionStorage(request.session))
    except BackendError as exc:
        if "already registered" in exc.message.lower():
            raise HTTPException(
                status_code=409,
                detail={"code": "conflict", "message": "An account with this email already exists."},
            ) from exc
        raise _backend_http_error(exc) from exc

    if session is None:
        return JSONResponse(
            status_code=201,
            content=RegisterResponse(user_id=user.id, email=user.email, confirmation_required=True).model_dump(),
        )

    ip_address, user_agent = request_origin(request)
    try:
        profile = auth.complete_sign_in(session, ip_address, user_agent)
    except AccountDisabledError as exc:
        raise HTTPException(
            status_code=403,
            detail={"code": "account_disabled", "message": "Your account has been disabled."},
        ) from exc
    resp = JSONResponse(
        status_code=201,
        content=RegisterResponse(
            user_id=user.id,
            email=user.email,
            confirmation_required=False,
            session=_session_payload(session, profile),
        ).model_dump(),
    )
    set_session_cookies(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(login_rate_limit)
@router.post("/auth/password/forgot", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a recovery link. The reply is the same whether or not the account exists."""
    auth: AuthService = request.app.state.auth_service
    try:
        auth.reset_password(body.email, storage=SessionStorage(request.session))
    except BackendError as exc:
        raise _backend_http_error(exc) from exc
    return MessageResponse(message="If an account exists for that email, a reset link has been sent.")


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the list of configured OAuth providers.

    Public endpoint -- the login page calls this to decide which provider
    buttons to render. Returns an empty list if OAUTH_PROVIDERS is unset.
    """
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: AuthUser = Depends(get_current_user),
) -> MessageResponse:
    """Change the signed-in user's password. The current session stays valid."""
    if message := validate_new_password(body.password, body.confirm_password):
        raise HTTPException(status_code=422, detail={"code": "validation_error", "message": message})

    session = get_request_session(request, current_user)
    auth: AuthService = request.app.state.auth_service
    try:
        auth.update_password(session, body.password)
    except BackendError as exc:
        raise _backend_http_error(exc) from exc
    return MessageResponse(message="Password updated.")


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: AuthUser = Depends(get_current_user)) -> MeResponse:
    """Return identity and profile information for the current user."""
    auth: AuthService = request.app.state.auth_service
    profile = current_user.profile or auth.fetch_user_profile(current_user)
    return _me_response(current_user, profile)


@router.patch("/auth/me", response_model=MeResponse)
def update_me(
    request: Request,
    body: ProfilePatch,
    current_user: AuthUser = Depends(get_current_user),
) -> MeResponse:
    """Update the current user's own profile. role and is_active are admin-only."""
    auth: AuthService = request.app.state.auth_service
    profile = auth.update_user_profile(current_user, body.model_dump(exclude_unset=True))
    return _me_response(current_user, profile)
