"""
tests/test_validation.py -- Unit tests for core/validation.py.

Pure functions, no fixtures. The messages asserted here are the exact
strings the web forms and the API return to users.
"""

from __future__ import annotations

import pytest

from core.validation import (
    validate_email,
    validate_login_form,
    validate_new_password,
    validate_password,
    validate_register_form,
)


class TestValidateEmail:
    @pytest.mark.parametrize("email", ["a@b.co", "first.last@example.com", "x+tag@sub.domain.org"])
    def test_accepts_well_formed(self, email: str) -> None:
        assert validate_email(email) is True

    @pytest.mark.parametrize(
        "email", ["", "plain", "a@b", "@example.com", "a b@example.com", "a@b .com", "a@b.co\n"]
    )
    def test_rejects_malformed(self, email: str) -> None:
        assert validate_email(email) is False


class TestValidatePassword:
    def test_strong_password_has_no_errors(self) -> None:
        assert validate_password("Secret123") == []

    def test_reports_every_broken_rule_in_order(self) -> None:
        """An empty password breaks all four rules; order is length, lower, upper, digit."""
        assert validate_password("") == [
            "Password must be at least 6 characters",
            "Password must contain at least one lowercase letter",
            "Password must contain at least one uppercase letter",
            "Password must contain at least one number",
        ]

    def test_missing_uppercase_only(self) -> None:
        assert validate_password("secret123") == ["Password must contain at least one uppercase letter"]

    def test_short_but_otherwise_valid(self) -> None:
        assert validate_password("Ab1") == ["Password must be at least 6 characters"]


class TestRegisterForm:
    def test_valid_form(self) -> None:
        result = validate_register_form("a@example.com", "Secret123", "Secret123")
        assert result.is_valid
        assert result.errors == {}

    def test_empty_email_is_required(self) -> None:
        result = validate_register_form("   ", "Secret123", "Secret123")
        assert not result.is_valid
        assert result.errors["email"] == "Email is required"

    def test_invalid_email(self) -> None:
        result = validate_register_form("nope", "Secret123", "Secret123")
        assert result.errors["email"] == "Please enter a valid email address"

    def test_password_errors_joined_with_period(self) -> None:
        result = validate_register_form("a@example.com", "abcdef", "abcdef")
        assert result.errors["password"] == (
            "Password must contain at least one uppercase letter. Password must contain at least one number"
        )

    def test_mismatched_confirmation_keyed_by_form_field(self) -> None:
        """The key is the form field name the template renders against, not the Python name."""
        result = validate_register_form("a@example.com", "Secret123", "Secret124")
        assert result.errors == {"confirmPassword": "Passwords do not match"}


class TestLoginForm:
    def test_valid(self) -> None:
        assert validate_login_form("a@example.com", "anything").is_valid

    def test_password_required(self) -> None:
        result = validate_login_form("a@example.com", "  ")
        assert result.errors == {"password": "Password is required"}

    def test_login_does_not_apply_strength_rules(self) -> None:
        """Existing accounts may predate the current strength rules."""
        assert validate_login_form("a@example.com", "weak").is_valid


class TestNewPassword:
    def test_acceptable_pair(self) -> None:
        assert validate_new_password("Secret123", "Secret123") is None

    def test_presence_checked_first(self) -> None:
        assert validate_new_password("", "other") == "Password is required"

    def test_match_checked_before_length(self) -> None:
        assert validate_new_password("abc", "abd") == "Passwords do not match"

    def test_length(self) -> None:
        assert validate_new_password("abc", "abc") == "Password must be at least 6 characters"
