"""
API request and response models for AccountDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuditLogEntry, UserProfile, UserSession

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"
    moderator = "moderator"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Field rules are checked by core.validation.validate_register_form() in the
    route so API clients get the same messages as the web form.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(max_length=255)
    password: str = Field(max_length=256)
    confirm_password: str = Field(alias="confirmPassword", max_length=256)
    full_name: Optional[str] = Field(default=None, max_length=255)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password (signed-in password change)."""

    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(max_length=256)
    confirm_password: str = Field(alias="confirmPassword", max_length=256)


class ProfilePatch(BaseModel):
    """Request body for PATCH /api/v1/auth/me. Only full_name is self-editable."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: Optional[str] = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response body for POST /api/v1/auth/login and /register (when signed in)."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str
    email: str
    role: str


class RegisterResponse(BaseModel):
    """Response body for POST /api/v1/auth/register.

    session is None when the project requires email confirmation; the
    account is then finished through the emailed link.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    confirmation_required: bool
    session: Optional[LoginResponse] = None


class MeResponse(BaseModel):
    """Identity information for the currently authenticated user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role: str
    full_name: Optional[str] = None
    is_active: bool = True
    email_confirmed: bool = False


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Admin models
# ---------------------------------------------------------------------------


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}. At least one field is required."""

    role: Optional[RoleEnum] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    full_name: Optional[str]
    role: str
    is_active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            role=profile.role,
            is_active=profile.is_active,
            created_at=profile.created_at or "",
            updated_at=profile.updated_at or "",
        )


class SessionResponse(BaseModel):
    """A session record. The session_token key is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    is_active: bool
    expires_at: Optional[str]
    created_at: str

    @classmethod
    def from_session(cls, session: UserSession) -> "SessionResponse":
        return cls(
            id=session.id or "",
            user_id=session.user_id,
            ip_address=session.ip_address,
            user_agent=session.user_agent,
            is_active=session.is_active,
            expires_at=session.expires_at,
            created_at=session.created_at or "",
        )


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: Optional[str]
    action: str
    resource_type: Optional[str]
    resource_id: Optional[str]
    details: Optional[dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogResponse":
        return cls(
            id=entry.id or "",
            user_id=entry.user_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=entry.created_at or "",
        )


class StatsResponse(BaseModel):
    """Response for GET /api/v1/admin/stats."""

    model_config = ConfigDict(frozen=True)

    total_users: int
    admins: int
    active_sessions: int
    audit_logs: int


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    backend_configured: bool = False
