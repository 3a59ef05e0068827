"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). The identity
provider owns users and sessions; these records are the application's view
of them. Stores and routes do the work.

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

ROLES = ("user", "admin", "moderator")


@dataclass
class UserProfile:
    """Application-level profile row kept alongside the provider's user record.

    id is the provider's user UUID. role and is_active are owned by this
    application; the provider knows nothing about them.
    """

    id: str
    email: str
    role: str = "user"  # "user", "admin", "moderator"
    full_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    is_active: bool = True


@dataclass
class AuthUser:
    """An identity vouched for by the provider.

    Built either from verified JWT claims or from the provider's user
    endpoint. profile is attached by the request guards once the profile row
    has been read.
    """

    id: str
    email: str
    email_confirmed: bool = False
    user_metadata: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    profile: UserProfile | None = None

    @property
    def role(self) -> str:
        return self.profile.role if self.profile else "user"

    @property
    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.role == "admin" and self.profile.is_active

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AuthUser":
        return cls(
            id=claims["sub"],
            email=claims.get("email") or "",
            email_confirmed=True,
            user_metadata=claims.get("user_metadata") or {},
            session_id=claims.get("session_id"),
        )


@dataclass
class AuthSession:
    """Provider-issued session: the token pair plus the user it belongs to.

    is_recovery marks sessions obtained through a password-reset link. Those
    are only ever stored in the recovery cookies and only accepted by the
    password-change step of the recovery flow.
    """

    access_token: str
    refresh_token: str
    user: AuthUser
    expires_in: int = 3600
    expires_at: int | None = None
    is_recovery: bool = False


@dataclass
class AuditLogEntry:
    action: str
    id: str | None = None
    user_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


@dataclass
class UserSession:
    """Record of a sign-in, used by the admin console to list and revoke sessions.

    session_token holds the provider's session_id claim (or a SHA-256 of the
    access token when the claim is absent), never the raw token.
    """

    user_id: str
    session_token: str
    id: str | None = None
    expires_at: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    is_active: bool = True
    created_at: str | None = None
