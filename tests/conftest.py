"""
tests/conftest.py -- Shared test fixtures for AccountDesk tests.

This module provides:
  - FakeBackend: in-memory stand-in for the identity provider. It mints real
    HS256 access tokens signed with the test JWT secret, so the request guards
    verify them exactly as they verify provider tokens in production.
  - store: isolated shared-memory SQLite ProfileStore per test
  - client: TestClient over the assembled app (api + web) with a patched
    lifespan wiring the fake backend and the test store into app.state
  - login_as: signs a user in and puts the session cookies in the client jar

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any core/auth import: get_settings()
is cached on first call and auth/tokens.py reads it at import time.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-characters"

# CRITICAL: set before any core/auth import.
os.environ.setdefault("DEBUG", "true")
os.environ["SUPABASE_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost"]'
os.environ["OAUTH_PROVIDERS"] = "github"
os.environ["DATABASE_URL"] = "sqlite:///file:accountdesk_default?mode=memory&cache=shared&uri=true"

import pytest
from fastapi.testclient import TestClient
from jose import JWTError, jwt

from admin.service import AdminService
from asgi import app
from auth.backend import BackendError, SessionStorage
from auth.context import AuthService
from auth.models import AuthSession, AuthUser, UserProfile
from auth.store import ProfileStore
from auth.tokens import ACCESS_COOKIE, EXPIRES_COOKIE, REFRESH_COOKIE
from core.config import get_settings

# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


@dataclass
class FakeAccount:
    email: str
    password: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, Any] = field(default_factory=dict)


class FakeBackend:
    """In-memory identity provider with the SupabaseBackend interface.

    Records every side effect (sign-outs, reset emails, password updates) so
    tests can assert on what was sent to the provider.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, FakeAccount] = {}
        self.require_confirmation = False
        self.unavailable = False
        self.signed_out: list[str] = []
        self.reset_emails: list[tuple[str, str]] = []
        self.password_updates: list[tuple[str, str]] = []
        self.otp_links: dict[str, tuple[str, str]] = {}
        self.codes: dict[str, str] = {}
        self.refresh_tokens: dict[str, tuple[str, str]] = {}
        self.refreshes: list[str] = []

    # -- test helpers ---------------------------------------------------

    def add_account(self, email: str, password: str = "Secret123", **metadata) -> FakeAccount:
        account = FakeAccount(email=email, password=password, metadata=dict(metadata))
        self.accounts[email] = account
        return account

    def mint(self, account: FakeAccount, session_id: str | None = None) -> AuthSession:
        now = int(time.time())
        session_id = session_id or str(uuid.uuid4())
        refresh_token = f"refresh-{uuid.uuid4().hex}"
        self.refresh_tokens[refresh_token] = (account.email, session_id)
        claims = {
            "sub": account.id,
            "email": account.email,
            "aud": "authenticated",
            "role": "authenticated",
            "iat": now,
            "exp": now + 3600,
            "session_id": session_id,
            "user_metadata": account.metadata,
        }
        token = jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")
        user = AuthUser(
            id=account.id,
            email=account.email,
            email_confirmed=True,
            user_metadata=dict(account.metadata),
            session_id=session_id,
        )
        return AuthSession(
            access_token=token,
            refresh_token=refresh_token,
            user=user,
            expires_in=3600,
            expires_at=now + 3600,
        )

    def issue_link(self, email: str, otp_type: str = "recovery") -> str:
        token_hash = uuid.uuid4().hex
        self.otp_links[token_hash] = (email, otp_type)
        return token_hash

    def issue_code(self, email: str) -> str:
        code = uuid.uuid4().hex
        self.codes[code] = email
        return code

    def _check(self) -> None:
        if self.unavailable:
            raise BackendError("The authentication service is unavailable.", code="backend_unavailable")

    def _account_for_token(self, access_token: str) -> FakeAccount:
        try:
            claims = jwt.decode(access_token, TEST_JWT_SECRET, algorithms=["HS256"], audience="authenticated")
        except JWTError as exc:
            raise BackendError("invalid JWT", code="bad_jwt", status=401) from exc
        for account in self.accounts.values():
            if account.id == claims["sub"]:
                return account
        raise BackendError("User not found", code="user_not_found", status=404)

    # -- SupabaseBackend interface --------------------------------------

    def is_configured(self) -> bool:
        return True

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self._check()
        account = self.accounts.get(email)
        if account is None or account.password != password:
            raise BackendError("Invalid login credentials", code="invalid_credentials", status=400)
        return self.mint(account)

    def sign_up(self, email, password, metadata=None, redirect_to=None, storage=None):
        self._check()
        if email in self.accounts:
            raise BackendError("User already registered", code="user_already_exists", status=422)
        account = self.add_account(email, password, **(metadata or {}))
        user = AuthUser(id=account.id, email=email, user_metadata=dict(account.metadata))
        if self.require_confirmation:
            return user, None
        return user, self.mint(account)

    def sign_out(self, access_token: str) -> None:
        self._check()
        self.signed_out.append(access_token)
        try:
            session_id = jwt.get_unverified_claims(access_token).get("session_id")
        except JWTError:
            return
        for token, (_, sid) in list(self.refresh_tokens.items()):
            if sid == session_id:
                del self.refresh_tokens[token]

    def refresh_session(self, refresh_token: str) -> AuthSession:
        self._check()
        self.refreshes.append(refresh_token)
        entry = self.refresh_tokens.pop(refresh_token, None)
        if entry is None:
            raise BackendError(
                "Invalid Refresh Token: Refresh Token Not Found", code="refresh_token_not_found", status=400
            )
        email, session_id = entry
        return self.mint(self.accounts[email], session_id=session_id)

    def sign_in_with_oauth(self, provider: str, redirect_to: str, storage: SessionStorage) -> str:
        self._check()
        storage.set_item("code_verifier", "fake-verifier")
        return f"https://auth.example.test/authorize?provider={provider}"

    def verify_otp(self, token_hash: str, otp_type: str) -> AuthSession:
        self._check()
        link = self.otp_links.pop(token_hash, None)
        if link is None or link[1] != otp_type:
            raise BackendError("Token has expired or is invalid", code="otp_expired", status=403)
        return self.mint(self.accounts[link[0]])

    def exchange_code_for_session(self, code: str, storage: SessionStorage) -> AuthSession:
        self._check()
        email = self.codes.pop(code, None)
        if email is None:
            raise BackendError("invalid flow state, no valid flow state found", code="flow_state_not_found")
        return self.mint(self.accounts[email])

    def set_session(self, access_token: str, refresh_token: str = "") -> AuthSession:
        self._check()
        account = self._account_for_token(access_token)
        session = self.mint(account)
        session.access_token = access_token
        return session

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            account = self._account_for_token(access_token)
        except BackendError:
            return None
        return AuthUser(id=account.id, email=account.email, email_confirmed=True)

    def reset_password_for_email(self, email: str, redirect_to: str, storage=None) -> None:
        self._check()
        self.reset_emails.append((email, redirect_to))

    def update_password(self, access_token: str, refresh_token: str, new_password: str) -> None:
        self._check()
        account = self._account_for_token(access_token)
        account.password = new_password
        self.password_updates.append((account.email, new_password))


# ---------------------------------------------------------------------------
# Store and app fixtures
# ---------------------------------------------------------------------------


def make_test_store() -> ProfileStore:
    """Create an isolated named shared-memory SQLite store."""
    return ProfileStore(db_url=f"sqlite:///file:test_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(backend: FakeBackend, store: ProfileStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.backend = backend
        app.state.profile_store = store
        app.state.auth_service = AuthService(backend, store, get_settings())
        app.state.admin_service = AdminService(store)
        yield

    return test_lifespan


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> Generator[ProfileStore, None, None]:
    s = make_test_store()
    yield s
    s.close()


@pytest.fixture
def client(backend: FakeBackend, store: ProfileStore) -> Generator[TestClient, None, None]:
    """TestClient over the full app.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations*, which are invisible once the client follows them.
    Function-scoped so cookies never leak between tests.
    """
    app.router.lifespan_context = _patch_lifespan(backend, store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def login_as(
    client: TestClient, backend: FakeBackend, store: ProfileStore
) -> Callable[..., AuthSession]:
    """Return a function that signs a user in and stores the cookies in the client jar.

    The profile row is created with the requested role and the sign-in goes
    through AuthService.complete_sign_in, so a session record exists too.
    """

    def _login(email: str, role: str = "user", password: str = "Secret123", is_active: bool = True) -> AuthSession:
        account = backend.accounts.get(email) or backend.add_account(email, password)
        if store.get_profile(account.id) is None:
            store.create_profile(UserProfile(id=account.id, email=email, role=role))
        session = backend.mint(account)
        AuthService(backend, store, get_settings()).complete_sign_in(session, "127.0.0.1", "pytest")
        if not is_active:
            store.update_profile(account.id, is_active=False)
        client.cookies.set(ACCESS_COOKIE, session.access_token)
        client.cookies.set(REFRESH_COOKIE, session.refresh_token)
        client.cookies.set(EXPIRES_COOKIE, str(session.expires_at))
        return session

    return _login


def set_cookie_headers(resp) -> list[str]:
    """Return every Set-Cookie header value on an httpx or Starlette response."""
    if hasattr(resp.headers, "get_list"):
        return resp.headers.get_list("set-cookie")
    return resp.headers.getlist("set-cookie")


def cookie_deleted(resp, name: str) -> bool:
    """True when the response expires the named cookie."""
    return any(
        h.startswith(f"{name}=") and ("max-age=0" in h.lower() or 'expires=thu, 01 jan 1970' in h.lower())
        for h in set_cookie_headers(resp)
    )


def cookie_set(resp, name: str) -> bool:
    """True when the response sets the named cookie to a non-empty value."""
    return any(h.startswith(f"{name}=") and not h.startswith(f"{name}=;") and not h.startswith(f'{name}="";') for h in set_cookie_headers(resp))


def expire_token(access_token: str) -> str:
    """Re-sign access_token with the same claims and an exp in the past."""
    claims = jwt.get_unverified_claims(access_token)
    claims["exp"] = int(time.time()) - 60
    return jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")
