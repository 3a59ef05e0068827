"""
auth/recovery.py -- Password-recovery flow.

The flow moves through these states:

  awaiting-link -> verifying-token -> session-established ->
  awaiting-new-password -> submitting -> done | error -> signed-out

The state machine lives in the screens (web/routes.py); this module holds the
steps that touch the identity provider and the one rule the whole flow
exists to keep:

  A new password is only accepted while a session obtained via a recovery
  token is active, and that session is terminated immediately after a
  successful password change.

Recovery links arrive in one of three shapes, depending on the provider's
email template and flow type:
  ?token_hash=...&type=recovery        -- OTP hash template (server-side apps)
  ?code=...                            -- PKCE flow; verifier in the session
  ?access_token=...&type=recovery      -- raw token pair

Layer rule: no imports from api/, web/ or admin/.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum

from auth.backend import BackendError, SessionStorage, SupabaseBackend
from auth.models import AuthSession
from core.validation import validate_new_password

logger = logging.getLogger("accountdesk.auth.recovery")


class RecoveryState(str, Enum):
    awaiting_link = "awaiting-link"
    verifying_token = "verifying-token"
    session_established = "session-established"
    awaiting_new_password = "awaiting-new-password"
    submitting = "submitting"
    done = "done"
    error = "error"
    signed_out = "signed-out"


class RecoveryError(ValueError):
    """A recovery step was refused. message is safe to show to the user."""

    def __init__(self, message: str, code: str = "invalid") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class RecoveryLink:
    token_hash: str | None = None
    code: str | None = None
    access_token: str | None = None
    refresh_token: str = ""


def parse_recovery_link(params: Mapping[str, str]) -> RecoveryLink | None:
    """Extract the credential from recovery link query parameters.

    Returns None when the parameters do not describe a recovery link. A bare
    ?code= is accepted because PKCE redirects carry nothing else; the
    provider only issues codes for this redirect target from recovery emails.
    """
    link_type = params.get("type")
    token_hash = params.get("token_hash")
    access_token = params.get("access_token")
    code = params.get("code")

    if link_type == "recovery" and token_hash:
        return RecoveryLink(token_hash=token_hash)
    if link_type == "recovery" and access_token:
        return RecoveryLink(access_token=access_token, refresh_token=params.get("refresh_token") or "")
    if code and link_type in (None, "recovery"):
        return RecoveryLink(code=code)
    return None


def establish_recovery_session(
    backend: SupabaseBackend,
    link: RecoveryLink,
    storage: SessionStorage | None = None,
) -> AuthSession:
    """Exchange the link credential for a provider session flagged as recovery.

    Raises BackendError if the provider rejects the credential (expired,
    already used, or forged).
    """
    logger.debug("Recovery state: %s", RecoveryState.verifying_token.value)
    if link.token_hash:
        session = backend.verify_otp(link.token_hash, "recovery")
    elif link.code:
        if storage is None:
            raise BackendError("Recovery code cannot be exchanged without a session.", code="session_missing")
        session = backend.exchange_code_for_session(link.code, storage)
    elif link.access_token:
        session = backend.set_session(link.access_token, link.refresh_token)
    else:
        raise BackendError("Recovery link is missing its token.", code="invalid_token")
    logger.info("Recovery session established for user %s", session.user.id)
    return replace(session, is_recovery=True)


def complete_password_recovery(
    backend: SupabaseBackend,
    session: AuthSession | None,
    password: str,
    confirm_password: str,
) -> None:
    """Set the new password, then terminate the recovery session.

    Raises:
        RecoveryError: no active recovery session, or the password pair is
            rejected by validation. Nothing is sent to the provider.
        BackendError:  the provider refused the update. The recovery session
            is left intact so the user can try again.
    """
    if session is None or not session.is_recovery:
        raise RecoveryError(
            "Your reset link has expired. Please request a new one.",
            code="no_recovery_session",
        )

    if message := validate_new_password(password, confirm_password):
        raise RecoveryError(message, code="validation")

    logger.debug("Recovery state: %s", RecoveryState.submitting.value)
    backend.update_password(session.access_token, session.refresh_token, password)
    logger.info("Password reset completed for user %s", session.user.id)

    try:
        backend.sign_out(session.access_token)
    except BackendError as exc:
        # The password is already changed; the caller still drops the cookies.
        logger.warning("Could not revoke recovery session for user %s: %s", session.user.id, exc.message)
    logger.debug("Recovery state: %s", RecoveryState.signed_out.value)
