"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers local HS256 verification (signature, audience, expiry, sub claim),
the session record key and the cookie writers.
"""

from __future__ import annotations

import hashlib
import time

from fastapi import Response
from jose import jwt

from auth.models import AuthSession, AuthUser
from auth.tokens import (
    RECOVERY_ACCESS_COOKIE,
    clear_session_cookies,
    decode_access_token,
    session_key,
    set_recovery_cookies,
    set_session_cookies,
    unverified_claims,
)
from conftest import TEST_JWT_SECRET, cookie_deleted, set_cookie_headers


def _token(secret: str = TEST_JWT_SECRET, **overrides) -> str:
    claims = {
        "sub": "user-1",
        "email": "a@example.com",
        "aud": "authenticated",
        "exp": int(time.time()) + 600,
        "session_id": "sess-1",
    }
    claims.update(overrides)
    return jwt.encode({k: v for k, v in claims.items() if v is not None}, secret, algorithm="HS256")


class TestDecodeAccessToken:
    def test_valid_token_returns_claims(self) -> None:
        claims = decode_access_token(_token())
        assert claims is not None
        assert claims["sub"] == "user-1"
        assert claims["email"] == "a@example.com"

    def test_wrong_secret_rejected(self) -> None:
        assert decode_access_token(_token(secret="another-secret-that-is-long-enough!!")) is None

    def test_wrong_audience_rejected(self) -> None:
        assert decode_access_token(_token(aud="anon")) is None

    def test_expired_rejected(self) -> None:
        assert decode_access_token(_token(exp=int(time.time()) - 60)) is None

    def test_missing_sub_rejected(self) -> None:
        assert decode_access_token(_token(sub=None)) is None

    def test_garbage_rejected(self) -> None:
        assert decode_access_token("not.a.jwt") is None


class TestSessionKey:
    def test_prefers_session_id_claim(self) -> None:
        assert session_key(_token()) == "sess-1"

    def test_falls_back_to_token_hash(self) -> None:
        token = _token(session_id=None)
        assert session_key(token) == hashlib.sha256(token.encode()).hexdigest()

    def test_unverified_claims_of_garbage_is_empty(self) -> None:
        assert unverified_claims("garbage") == {}


def _session() -> AuthSession:
    return AuthSession(
        access_token="at",
        refresh_token="rt",
        user=AuthUser(id="user-1", email="a@example.com"),
        expires_in=3600,
        expires_at=1700000000,
    )


class TestCookies:
    def test_session_cookies_are_httponly(self) -> None:
        resp = Response()
        set_session_cookies(resp, _session())
        headers = set_cookie_headers(resp)
        names = sorted(h.split("=", 1)[0] for h in headers)
        assert names == ["access_token", "refresh_token", "session_expires_at"]
        assert all("httponly" in h.lower() for h in headers)

    def test_access_cookie_lifetime_matches_token(self) -> None:
        resp = Response()
        set_session_cookies(resp, _session())
        access = next(h for h in set_cookie_headers(resp) if h.startswith("access_token="))
        assert "Max-Age=3600" in access

    def test_recovery_cookie_lifetime_is_capped(self) -> None:
        """A recovery session never outlives RECOVERY_SESSION_SECONDS (default 900)."""
        resp = Response()
        set_recovery_cookies(resp, _session())
        recovery = next(h for h in set_cookie_headers(resp) if h.startswith(f"{RECOVERY_ACCESS_COOKIE}="))
        assert "Max-Age=900" in recovery

    def test_clear_session_cookies(self) -> None:
        resp = Response()
        clear_session_cookies(resp)
        for name in ("access_token", "refresh_token", "session_expires_at"):
            assert cookie_deleted(resp, name)
