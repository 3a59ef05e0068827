"""
api/routes/v1/admin.py -- Admin console REST endpoints.

Routes (all require an active admin profile):
  GET    /api/v1/admin/users                  -- list all profiles
  GET    /api/v1/admin/users/{id}             -- one profile
  PATCH  /api/v1/admin/users/{id}             -- update role and/or is_active
  GET    /api/v1/admin/users/{id}/sessions    -- session records for a user
  DELETE /api/v1/admin/sessions/{id}          -- revoke a session record
  GET    /api/v1/admin/audit-logs?limit=N     -- most recent audit entries
  GET    /api/v1/admin/stats                  -- dashboard counters

Every write is recorded in the audit log with the acting admin, client IP
and User-Agent. PATCH refuses self-deactivation and removing the last active
admin (admin/service.py).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from admin.service import AdminActionError, AdminService
from api.models import AuditLogResponse, SessionResponse, StatsResponse, UserPatch, UserResponse
from auth.dependencies import request_origin, require_admin
from auth.models import AuthUser

router = APIRouter()


def _admin_http_error(exc: AdminActionError) -> HTTPException:
    status = 404 if exc.code == "not_found" else 400
    return HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"{what} not found."})


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: AuthUser = Depends(require_admin)) -> list[UserResponse]:
    admin: AdminService = request.app.state.admin_service
    return [UserResponse.from_profile(p) for p in admin.get_users()]


@router.get("/admin/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: str, current_user: AuthUser = Depends(require_admin)) -> UserResponse:
    admin: AdminService = request.app.state.admin_service
    profile = admin.get_user_by_id(user_id)
    if profile is None:
        raise _not_found("User")
    return UserResponse.from_profile(profile)


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: AuthUser = Depends(require_admin),
) -> UserResponse:
    """Update a user's role or active status. Both fields may be sent together."""
    if body.role is None and body.is_active is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    admin: AdminService = request.app.state.admin_service
    ip_address, user_agent = request_origin(request)
    role = body.role.value if body.role is not None else None
    try:
        profile = admin.update_user(user_id, actor=current_user, role=role, is_active=body.is_active)
    except AdminActionError as exc:
        raise _admin_http_error(exc) from exc

    audit = {
        "actor": current_user,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "resource_type": "user_profile",
        "resource_id": user_id,
    }
    if role is not None:
        admin.log_action("UPDATE_USER_ROLE", {"userId": user_id, "newRole": role}, **audit)
    if body.is_active is not None:
        admin.log_action("ACTIVATE_USER" if body.is_active else "DEACTIVATE_USER", {"userId": user_id}, **audit)
    return UserResponse.from_profile(profile)


@router.get("/admin/users/{user_id}/sessions", response_model=list[SessionResponse])
def list_user_sessions(
    request: Request,
    user_id: str,
    current_user: AuthUser = Depends(require_admin),
) -> list[SessionResponse]:
    admin: AdminService = request.app.state.admin_service
    if admin.get_user_by_id(user_id) is None:
        raise _not_found("User")
    return [SessionResponse.from_session(s) for s in admin.get_user_sessions(user_id)]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.delete("/admin/sessions/{session_id}", status_code=204)
def revoke_session(
    request: Request,
    session_id: str,
    current_user: AuthUser = Depends(require_admin),
) -> Response:
    """Revoke a session record. Its access token is refused from the next request on."""
    admin: AdminService = request.app.state.admin_service
    try:
        admin.revoke_session(session_id, actor=current_user)
    except AdminActionError as exc:
        raise _admin_http_error(exc) from exc
    ip_address, user_agent = request_origin(request)
    admin.log_action(
        "REVOKE_SESSION",
        {"sessionId": session_id},
        actor=current_user,
        ip_address=ip_address,
        user_agent=user_agent,
        resource_type="user_session",
        resource_id=session_id,
    )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Audit log and stats
# ---------------------------------------------------------------------------


@router.get("/admin/audit-logs", response_model=list[AuditLogResponse])
def list_audit_logs(
    request: Request,
    limit: int = Query(default=100, ge=1, le=500),
    current_user: AuthUser = Depends(require_admin),
) -> list[AuditLogResponse]:
    admin: AdminService = request.app.state.admin_service
    return [AuditLogResponse.from_entry(e) for e in admin.get_audit_logs(limit=limit)]


@router.get("/admin/stats", response_model=StatsResponse)
def stats(request: Request, current_user: AuthUser = Depends(require_admin)) -> StatsResponse:
    admin: AdminService = request.app.state.admin_service
    s = admin.get_stats()
    return StatsResponse(
        total_users=s.total_users,
        admins=s.admins,
        active_sessions=s.active_sessions,
        audit_logs=s.audit_logs,
    )
