"""
web/routes.py -- Jinja2 template routes for the AccountDesk web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same identity backend, profile store and services) but return HTML
and redirects instead of JSON.

Route guards:
  Public screens (login, register, forgot-password) send signed-in users to
  /dashboard. Protected screens first try to renew an expired session from
  the refresh cookie and, on success, send the browser back to the same URL
  with fresh cookies (307, so a form POST is replayed). Otherwise anonymous
  users go to /login?next=<path>; when the session_expires_at marker cookie
  is still present the redirect carries expired=1 and the marker is deleted.

Route registration order matters. GET /login/oauth/{provider} is registered
before GET /login so FastAPI never treats "oauth" as part of another route.

Routes:
  GET  /                                  -- redirect to /dashboard or /login
  GET  /login/oauth/{provider}            -- redirect to the provider via the identity service
  GET  /login                             -- login form
  POST /login                             -- handle password login
  GET  /register                          -- registration form
  POST /register                          -- create account
  GET  /forgot-password                   -- request a recovery email
  POST /forgot-password                   -- send the recovery email
  GET  /auth/callback                     -- finish sign-up confirmation, magic link or OAuth
  GET  /auth/recovery                     -- exchange a recovery link for a recovery session
  GET  /update-password                   -- new-password form (recovery session only)
  POST /update-password                   -- set new password, end recovery session
  GET  /reset-password                    -- change password (auth required)
  POST /reset-password                    -- handle change password
  GET  /dashboard                         -- profile overview (auth required)
  POST /profile                           -- update own profile
  POST /logout                            -- sign out, clear cookies
  GET  /admin                             -- admin console (admin required)
  POST /admin/users/{user_id}/role        -- change role
  POST /admin/users/{user_id}/active      -- activate / deactivate
  POST /admin/sessions/{session_id}/revoke -- revoke a session record
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError

from admin.service import AdminActionError, AdminService
from api.limiter import limiter, login_rate_limit
from auth.backend import BackendError, SessionStorage, SupabaseBackend
from auth.context import AccountDisabledError, AuthService
from auth.dependencies import (
    bearer_token,
    get_recovery_session,
    get_request_session,
    refresh_request_session,
    request_origin,
    try_get_current_user,
)
from auth.models import ROLES, AuthSession, AuthUser
from auth.oauth import get_enabled_providers, is_enabled_provider
from auth.recovery import (
    RecoveryError,
    RecoveryState,
    complete_password_recovery,
    establish_recovery_session,
    parse_recovery_link,
)
from auth.tokens import (
    ACCESS_COOKIE,
    EXPIRES_COOKIE,
    REFRESH_COOKIE,
    clear_recovery_cookies,
    clear_session_cookies,
    set_recovery_cookies,
    set_session_cookies,
)
from core.config import get_settings
from core.validation import validate_email, validate_login_form, validate_new_password, validate_register_form

logger = logging.getLogger("accountdesk.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can render the
# navigation without every route handler adding current_user to its context.
templates.env.globals["try_get_current_user"] = try_get_current_user
router = APIRouter()

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

# Whitelist mappings for ?error= and ?message= query params.
# The raw query param is NEVER passed to templates -- only the message from
# these dicts is. Prevents reflected XSS via crafted query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "invalid_token": "Your reset link is invalid or has expired. Please request a new one.",
    "oauth_failed": "Sign-in with that provider failed. Please try again.",
    "callback_failed": "We could not complete sign-in from that link. Please try again.",
    "account_disabled": "Your account has been disabled. Contact an admin.",
    "registration_disabled": "Registration is currently closed. Contact an admin for an account.",
    "backend_unavailable": "The authentication service is unavailable. Please try again later.",
}

_MESSAGES: dict[str, str] = {
    "password_reset_success": "Your password has been reset. Please sign in with your new password.",
    "check_email": "Check your email for a confirmation link to finish creating your account.",
    "signed_out": "You have been signed out.",
    "profile_updated": "Profile updated.",
}

_ADMIN_MESSAGES: dict[str, str] = {
    "role_updated": "User role updated.",
    "user_activated": "User activated.",
    "user_deactivated": "User deactivated.",
    "session_revoked": "Session revoked.",
}

_ADMIN_ERRORS: dict[str, str] = {
    "invalid_role": "That role does not exist.",
    "not_found": "That record no longer exists.",
    "self_deactivation": "You cannot deactivate your own account.",
    "last_admin": "At least one active admin account must remain.",
}

_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
_UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."
_ADMIN_TABS = ("users", "logs", "sessions")
# Sign-up confirmation, invite, magic-link and email-change links land on /auth/callback.
_CALLBACK_OTP_TYPES = {"signup", "email", "magiclink", "invite", "email_change"}


def _friendly_error(exc: BackendError) -> str:
    """Translate a provider error into the message shown on the auth screens."""
    if exc.code == "backend_unavailable":
        return _ERROR_MESSAGES["backend_unavailable"]
    message = exc.message or ""
    lowered = message.lower()
    if "invalid login credentials" in lowered:
        return "Invalid email or password. Please try again."
    if "already registered" in lowered:
        return "An account with this email already exists."
    if "email not confirmed" in lowered:
        return "Please confirm your email address before signing in."
    return message or _UNEXPECTED_ERROR


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str], default: str = "/dashboard") -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs (https://attacker.com) and protocol-relative URLs
    (//attacker.com), both of which would redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return default


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Check if the current request is authenticated.

    Returns a RedirectResponse to /login if not authenticated, or back to the
    same URL after renewing an expired session. None if OK.
    On success the user is available as request.state.current_user.
    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect
    """
    user = try_get_current_user(request)
    if user is not None:
        request.state.current_user = user
        return None

    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"

    refreshed = refresh_request_session(request)
    if refreshed is not None:
        resp = RedirectResponse(target, status_code=307)
        set_session_cookies(resp, refreshed)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    location = f"/login?next={quote(target, safe='/')}"
    expired = EXPIRES_COOKIE in request.cookies
    if expired:
        location += "&expired=1"
    resp = RedirectResponse(location, status_code=302)
    if expired:
        resp.delete_cookie(EXPIRES_COOKIE)
    return resp


def _require_admin(request: Request) -> Optional[Response]:
    """Like _require_auth, but renders the access-denied page for non-admins."""
    if redirect := _require_auth(request):
        return redirect
    if not request.state.current_user.is_admin:
        return templates.TemplateResponse(request, "access_denied.html", {}, status_code=403)
    return None


def _redirect_if_authenticated(request: Request) -> Optional[RedirectResponse]:
    """Guard for public screens: signed-in users go straight to the dashboard."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=302)
    return None


def _signed_in_redirect(session: AuthSession, next_url: str) -> RedirectResponse:
    resp = RedirectResponse(next_url, status_code=302)
    set_session_cookies(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# GET / -- entry point
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    if try_get_current_user(request) is not None or REFRESH_COOKIE in request.cookies:
        return RedirectResponse("/dashboard", status_code=302)
    return RedirectResponse("/login", status_code=302)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.get("/login/oauth/{provider}", response_class=HTMLResponse)
def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the OAuth provider's authorization page.

    Validates the provider name against the enabled provider list before
    asking the identity service for the authorization URL. The PKCE code
    verifier is written into the signed session for /auth/callback.
    """
    if not is_enabled_provider(provider):
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    auth = _auth_service(request)
    request.session["post_login_next"] = _safe_next(request.query_params.get("next"))
    try:
        url = auth.backend.sign_in_with_oauth(provider, auth.callback_url, SessionStorage(request.session))
    except BackendError:
        logger.warning("OAuth redirect failed for provider %r", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)
    return RedirectResponse(url, status_code=302)


def _render_login(
    request: Request,
    *,
    email: str = "",
    next_url: str = "",
    error_msg: Optional[str] = None,
    field_errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    params = request.query_params
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "email": email,
            "next": next_url or params.get("next", ""),
            "error_msg": error_msg or _ERROR_MESSAGES.get(params.get("error", "")),
            "message": _MESSAGES.get(params.get("message", "")),
            "expired_msg": _EXPIRED_MESSAGE if params.get("expired") == "1" else None,
            "field_errors": field_errors or {},
            "providers": get_enabled_providers(),
            "registration_enabled": get_settings().self_registration_enabled,
        },
        status_code=status_code,
    )


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page with email/password form and OAuth buttons."""
    if redirect := _redirect_if_authenticated(request):
        return redirect
    return _render_login(request)


@limiter.limit(login_rate_limit)
@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    next_url: str = Form("", alias="next"),
) -> Response:
    """Handle email/password login form submission."""
    result = validate_login_form(email, password)
    if not result.is_valid:
        return _render_login(request, email=email, next_url=next_url, field_errors=result.errors, status_code=400)

    ip_address, user_agent = request_origin(request)
    try:
        session, _ = _auth_service(request).sign_in(email, password, ip_address, user_agent)
    except AccountDisabledError:
        return _render_login(
            request, email=email, next_url=next_url, error_msg=_ERROR_MESSAGES["account_disabled"], status_code=403
        )
    except BackendError as exc:
        return _render_login(request, email=email, next_url=next_url, error_msg=_friendly_error(exc), status_code=401)
    except SQLAlchemyError:
        logger.exception("Sign-in failed while writing session records")
        return _render_login(request, email=email, next_url=next_url, error_msg=_UNEXPECTED_ERROR, status_code=500)

    return _signed_in_redirect(session, _safe_next(next_url))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def _render_register(
    request: Request,
    *,
    email: str = "",
    full_name: str = "",
    error_msg: Optional[str] = None,
    field_errors: Optional[dict] = None,
    status_code: int = 200,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "register.html",
        {
            "email": email,
            "full_name": full_name,
            "error_msg": error_msg,
            "field_errors": field_errors or {},
            "providers": get_enabled_providers(),
        },
        status_code=status_code,
    )


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    if not get_settings().self_registration_enabled:
        return RedirectResponse("/login?error=registration_disabled", status_code=302)
    if redirect := _redirect_if_authenticated(request):
        return redirect
    return _render_register(request)


@limiter.limit(login_rate_limit)
@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
    full_name: str = Form(""),
) -> Response:
    """Create the account.

    With email confirmation enabled the provider returns no session: the user
    is sent to /login with a "check your email" notice and finishes through
    the emailed link. Otherwise they are signed in immediately.
    """
    if not get_settings().self_registration_enabled:
        return RedirectResponse("/login?error=registration_disabled", status_code=302)

    result = validate_register_form(email, password, confirm_password)
    if not result.is_valid:
        return _render_register(
            request, email=email, full_name=full_name, field_errors=result.errors, status_code=400
        )

    auth = _auth_service(request)
    metadata = {"full_name": full_name.strip()} if full_name.strip() else {}
    try:
        _, session = auth.sign_up(email, password, metadata, storage=SessionStorage(request.session))
    except BackendError as exc:
        return _render_register(
            request, email=email, full_name=full_name, error_msg=_friendly_error(exc), status_code=400
        )
    except SQLAlchemyError:
        logger.exception("Sign-up failed while writing the profile row")
        return _render_register(
            request, email=email, full_name=full_name, error_msg=_UNEXPECTED_ERROR, status_code=500
        )

    if session is None:
        return RedirectResponse("/login?message=check_email", status_code=302)

    ip_address, user_agent = request_origin(request)
    try:
        auth.complete_sign_in(session, ip_address, user_agent)
    except AccountDisabledError:
        return RedirectResponse("/login?error=account_disabled", status_code=302)
    return _signed_in_redirect(session, "/dashboard")


# ---------------------------------------------------------------------------
# Forgot password -- step 1 of recovery (awaiting-link)
# ---------------------------------------------------------------------------


def _render_forgot(
    request: Request,
    *,
    email: str = "",
    error_msg: Optional[str] = None,
    sent: bool = False,
    status_code: int = 200,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "forgot_password.html",
        {
            "email": email,
            "error_msg": error_msg or _ERROR_MESSAGES.get(request.query_params.get("error", "")),
            "sent": sent,
        },
        status_code=status_code,
    )


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_form(request: Request) -> HTMLResponse:
    if redirect := _redirect_if_authenticated(request):
        return redirect
    return _render_forgot(request)


@limiter.limit(login_rate_limit)
@router.post("/forgot-password", response_class=HTMLResponse)
def forgot_password_post(request: Request, email: str = Form("")) -> HTMLResponse:
    """Send the recovery email. The page then waits for the user to follow the link."""
    if not email.strip():
        return _render_forgot(request, error_msg="Email is required", status_code=400)
    if not validate_email(email.strip()):
        return _render_forgot(request, email=email, error_msg="Please enter a valid email address", status_code=400)

    try:
        _auth_service(request).reset_password(email, storage=SessionStorage(request.session))
    except BackendError as exc:
        return _render_forgot(request, email=email, error_msg=_friendly_error(exc), status_code=400)
    logger.debug("Recovery state: %s", RecoveryState.awaiting_link.value)
    return _render_forgot(request, email=email, sent=True)


# ---------------------------------------------------------------------------
# Email / OAuth callback
# ---------------------------------------------------------------------------


def _callback_session(request: Request, backend: SupabaseBackend) -> Optional[AuthSession]:
    """Exchange whatever credential the callback carries. None when it carries none."""
    params = request.query_params
    token_hash = params.get("token_hash")
    code = params.get("code")
    access_token = params.get("access_token")
    if token_hash:
        otp_type = params.get("type") or "email"
        if otp_type not in _CALLBACK_OTP_TYPES:
            raise BackendError("Unsupported link type.", code="invalid_token")
        return backend.verify_otp(token_hash, otp_type)
    if code:
        return backend.exchange_code_for_session(code, SessionStorage(request.session))
    if access_token:
        return backend.set_session(access_token, params.get("refresh_token") or "")
    return None


@router.get("/auth/callback", response_class=HTMLResponse)
def auth_callback(request: Request) -> Response:
    """Finish a sign-in started outside this app: email confirmation, magic link or OAuth.

    Recovery links that land here are forwarded to /auth/recovery so their
    session never reaches the regular session cookies.
    """
    params = request.query_params
    if params.get("type") == "recovery":
        return RedirectResponse(f"/auth/recovery?{request.url.query}", status_code=302)
    if params.get("error") or params.get("error_description"):
        logger.info("Provider returned an error to the callback: %s", params.get("error"))
        return RedirectResponse("/login?error=callback_failed", status_code=302)

    auth = _auth_service(request)
    try:
        session = _callback_session(request, auth.backend)
    except BackendError as exc:
        return templates.TemplateResponse(
            request,
            "auth_callback.html",
            {"status": "error", "error_msg": _friendly_error(exc), "redirect_to": "/login"},
            status_code=400,
        )
    if session is None:
        return RedirectResponse("/login", status_code=302)

    ip_address, user_agent = request_origin(request)
    try:
        auth.complete_sign_in(session, ip_address, user_agent)
    except AccountDisabledError:
        return RedirectResponse("/login?error=account_disabled", status_code=302)

    next_url = _safe_next(request.session.pop("post_login_next", None))
    resp = templates.TemplateResponse(
        request,
        "auth_callback.html",
        {"status": "success", "redirect_to": next_url},
    )
    set_session_cookies(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Password recovery -- link handler and new-password form
# ---------------------------------------------------------------------------


@router.get("/auth/recovery", response_class=HTMLResponse)
def auth_recovery(request: Request) -> RedirectResponse:
    """Exchange a recovery link for a recovery session (verifying-token -> session-established).

    The session goes into the recovery cookies only; it never signs the user
    in to the rest of the app.
    """
    link = parse_recovery_link(request.query_params)
    if link is None:
        return RedirectResponse("/login", status_code=302)

    auth = _auth_service(request)
    try:
        session = establish_recovery_session(auth.backend, link, SessionStorage(request.session))
    except BackendError as exc:
        logger.info("Recovery link rejected: %s", exc.message)
        return RedirectResponse("/forgot-password?error=invalid_token", status_code=302)

    resp = RedirectResponse("/update-password?recovery=true", status_code=302)
    set_recovery_cookies(resp, session)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _render_update_password(
    request: Request,
    state: RecoveryState,
    *,
    error_msg: Optional[str] = None,
    status_code: int = 200,
) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "update_password.html",
        {"state": state.value, "error_msg": error_msg},
        status_code=status_code,
    )


@router.get("/update-password", response_class=HTMLResponse)
def update_password_form(request: Request) -> Response:
    """Show the new-password form, but only to holders of a recovery session."""
    if get_recovery_session(request) is not None:
        return _render_update_password(request, RecoveryState.awaiting_new_password)
    if try_get_current_user(request) is not None:
        return RedirectResponse("/dashboard", status_code=302)
    return _render_update_password(request, RecoveryState.error, error_msg="No active session")


@router.post("/update-password", response_class=HTMLResponse)
def update_password_post(
    request: Request,
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
) -> HTMLResponse:
    """Set the new password and end the recovery session (submitting -> done -> signed-out).

    The success page forwards to /login?message=password_reset_success. All
    session cookies are cleared, so the user signs in again with the new
    password.
    """
    session = get_recovery_session(request)
    auth = _auth_service(request)
    try:
        complete_password_recovery(auth.backend, session, password, confirm_password)
    except RecoveryError as exc:
        if exc.code == "no_recovery_session":
            resp = _render_update_password(request, RecoveryState.error, error_msg=exc.message, status_code=400)
            clear_recovery_cookies(resp)
            return resp
        return _render_update_password(
            request, RecoveryState.awaiting_new_password, error_msg=exc.message, status_code=400
        )
    except BackendError as exc:
        return _render_update_password(
            request, RecoveryState.awaiting_new_password, error_msg=_friendly_error(exc), status_code=400
        )

    ip_address, user_agent = request_origin(request)
    auth.log_event("PASSWORD_RESET", session.user.id, ip_address, user_agent)
    resp = _render_update_password(request, RecoveryState.done)
    clear_recovery_cookies(resp)
    clear_session_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Change password (signed in)
# ---------------------------------------------------------------------------


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_form(request: Request) -> Response:
    if redirect := _require_auth(request):
        return redirect
    return templates.TemplateResponse(request, "reset_password.html", {"success": False})


@router.post("/reset-password", response_class=HTMLResponse)
def reset_password_post(
    request: Request,
    password: str = Form(""),
    confirm_password: str = Form("", alias="confirmPassword"),
) -> Response:
    if redirect := _require_auth(request):
        return redirect
    user: AuthUser = request.state.current_user

    if message := validate_new_password(password, confirm_password):
        return templates.TemplateResponse(
            request, "reset_password.html", {"success": False, "error_msg": message}, status_code=400
        )

    try:
        _auth_service(request).update_password(get_request_session(request, user), password)
    except BackendError as exc:
        return templates.TemplateResponse(
            request,
            "reset_password.html",
            {"success": False, "error_msg": _friendly_error(exc)},
            status_code=400,
        )
    return templates.TemplateResponse(request, "reset_password.html", {"success": True})


# ---------------------------------------------------------------------------
# Dashboard and profile
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request) -> Response:
    if redirect := _require_auth(request):
        return redirect
    user: AuthUser = request.state.current_user
    profile = user.profile or _auth_service(request).fetch_user_profile(user)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "user": user,
            "profile": profile,
            "message": _MESSAGES.get(request.query_params.get("message", "")),
        },
    )


@router.post("/profile")
def update_profile(request: Request, full_name: str = Form("")) -> RedirectResponse:
    if redirect := _require_auth(request):
        return redirect
    _auth_service(request).update_user_profile(request.state.current_user, {"full_name": full_name.strip() or None})
    return RedirectResponse("/dashboard?message=profile_updated", status_code=302)


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """End the provider session, clear the cookies and return to the login page."""
    user = try_get_current_user(request)
    access_token = request.cookies.get(ACCESS_COOKIE) or bearer_token(request)
    if user is not None:
        ip_address, user_agent = request_origin(request)
        _auth_service(request).sign_out(user, access_token, ip_address, user_agent)
    resp = RedirectResponse("/login?message=signed_out", status_code=302)
    clear_session_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Admin console
# ---------------------------------------------------------------------------


@router.get("/admin", response_class=HTMLResponse)
def admin_console(request: Request, tab: str = "users", user: str = "") -> Response:
    """Render the admin console. tab is one of users, logs or sessions."""
    if denied := _require_admin(request):
        return denied
    admin: AdminService = request.app.state.admin_service
    if tab not in _ADMIN_TABS:
        tab = "users"

    users = admin.get_users()
    selected = admin.get_user_by_id(user) if user else None
    context = {
        "tab": tab,
        "roles": ROLES,
        "users": users,
        "stats": admin.get_stats(),
        "current_user": request.state.current_user,
        "selected_user": selected,
        "sessions": admin.get_user_sessions(selected.id) if selected else [],
        "logs": admin.get_audit_logs(limit=get_settings().audit_log_page_size) if tab == "logs" else [],
        "message": _ADMIN_MESSAGES.get(request.query_params.get("message", "")),
        "error_msg": _ADMIN_ERRORS.get(request.query_params.get("error", "")),
    }
    return templates.TemplateResponse(request, "admin.html", context)


def _admin_redirect(tab: str, *, message: str = "", error: str = "", user_id: str = "") -> RedirectResponse:
    params = {"tab": tab}
    if user_id:
        params["user"] = user_id
    if message:
        params["message"] = message
    if error:
        params["error"] = error
    return RedirectResponse(f"/admin?{urlencode(params)}", status_code=302)


@router.post("/admin/users/{user_id}/role")
def admin_update_role(request: Request, user_id: str, role: str = Form("")) -> Response:
    if denied := _require_admin(request):
        return denied
    admin: AdminService = request.app.state.admin_service
    actor: AuthUser = request.state.current_user
    try:
        admin.update_user_role(user_id, role, actor=actor)
    except AdminActionError as exc:
        return _admin_redirect("users", error=exc.code)

    ip_address, user_agent = request_origin(request)
    admin.log_action(
        "UPDATE_USER_ROLE",
        {"userId": user_id, "newRole": role},
        actor=actor,
        ip_address=ip_address,
        user_agent=user_agent,
        resource_type="user_profile",
        resource_id=user_id,
    )
    return _admin_redirect("users", message="role_updated")


@router.post("/admin/users/{user_id}/active")
def admin_toggle_active(request: Request, user_id: str, is_active: str = Form("")) -> Response:
    if denied := _require_admin(request):
        return denied
    admin: AdminService = request.app.state.admin_service
    actor: AuthUser = request.state.current_user
    activate = is_active.lower() in ("1", "true", "on", "yes")
    try:
        admin.toggle_user_active(user_id, activate, actor=actor)
    except AdminActionError as exc:
        return _admin_redirect("users", error=exc.code)

    ip_address, user_agent = request_origin(request)
    admin.log_action(
        "ACTIVATE_USER" if activate else "DEACTIVATE_USER",
        {"userId": user_id},
        actor=actor,
        ip_address=ip_address,
        user_agent=user_agent,
        resource_type="user_profile",
        resource_id=user_id,
    )
    return _admin_redirect("users", message="user_activated" if activate else "user_deactivated")


@router.post("/admin/sessions/{session_id}/revoke")
def admin_revoke_session(request: Request, session_id: str, user_id: str = Form("")) -> Response:
    if denied := _require_admin(request):
        return denied
    admin: AdminService = request.app.state.admin_service
    actor: AuthUser = request.state.current_user
    try:
        admin.revoke_session(session_id, actor=actor)
    except AdminActionError as exc:
        return _admin_redirect("sessions", error=exc.code, user_id=user_id)

    ip_address, user_agent = request_origin(request)
    admin.log_action(
        "REVOKE_SESSION",
        {"sessionId": session_id},
        actor=actor,
        ip_address=ip_address,
        user_agent=user_agent,
        resource_type="user_session",
        resource_id=session_id,
    )
    return _admin_redirect("sessions", message="session_revoked", user_id=user_id)
