"""
core/validation.py -- Form validation rules shared by the web UI and the API.

Pure functions with no I/O. The identity provider applies its own password
policy on top of these checks; these exist so users get field-level feedback
before a round trip.

Error dict keys follow the form field names the templates render against:
"email", "password", "confirmPassword".
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
MIN_PASSWORD_LENGTH = 6

_EMAIL_RE = re.compile(EMAIL_PATTERN)


@dataclass
class ValidationResult:
    is_valid: bool
    errors: dict[str, str] = field(default_factory=dict)


def validate_email(email: str) -> bool:
    """Return True if email looks like local@domain.tld."""
    return bool(_EMAIL_RE.fullmatch(email))


def validate_password(password: str) -> list[str]:
    """Return every strength rule the password breaks, in display order."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    return errors


def _email_error(email: str) -> str | None:
    if not email.strip():
        return "Email is required"
    if not validate_email(email):
        return "Please enter a valid email address"
    return None


def validate_register_form(email: str, password: str, confirm_password: str) -> ValidationResult:
    errors: dict[str, str] = {}

    if email_error := _email_error(email):
        errors["email"] = email_error

    password_errors = validate_password(password)
    if password_errors:
        errors["password"] = ". ".join(password_errors)

    if password != confirm_password:
        errors["confirmPassword"] = "Passwords do not match"

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_login_form(email: str, password: str) -> ValidationResult:
    errors: dict[str, str] = {}

    if email_error := _email_error(email):
        errors["email"] = email_error

    if not password.strip():
        errors["password"] = "Password is required"

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_new_password(password: str, confirm_password: str) -> str | None:
    """Check a replacement password on the reset/update screens.

    Returns the first failing message, or None when the pair is acceptable.
    Order: presence, match, length.
    """
    if not password.strip():
        return "Password is required"
    if password != confirm_password:
        return "Passwords do not match"
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    return None
