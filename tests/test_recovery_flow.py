"""
tests/test_recovery_flow.py -- End-to-end password recovery through the web UI.

Walks the whole flow with the fake provider:
  forgot-password -> emailed link -> /auth/recovery -> /update-password
  -> done page -> /login?message=password_reset_success

The invariant checked throughout: the new-password form only works with a
session obtained from a recovery link, and that session (plus any regular
session cookies) is gone once the password has changed.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import UserSession
from auth.tokens import session_key
from conftest import cookie_deleted, cookie_set


def _open_recovery_link(client: TestClient, backend, email: str = "alice@example.com"):
    token_hash = backend.issue_link(email, "recovery")
    return client.get(f"/auth/recovery?token_hash={token_hash}&type=recovery")


class TestRecoveryLink:
    def test_valid_link_sets_recovery_cookies_only(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        resp = _open_recovery_link(client, backend)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/update-password?recovery=true"
        assert cookie_set(resp, "recovery_access_token")
        assert not cookie_set(resp, "access_token")

    def test_recovery_session_does_not_sign_in(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        _open_recovery_link(client, backend)
        resp = client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login")

    def test_invalid_link(self, client: TestClient) -> None:
        resp = client.get("/auth/recovery?token_hash=bogus&type=recovery")
        assert resp.headers["location"] == "/forgot-password?error=invalid_token"

    def test_link_without_credential(self, client: TestClient) -> None:
        assert client.get("/auth/recovery").headers["location"] == "/login"

    def test_code_link(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        code = backend.issue_code("alice@example.com")
        resp = client.get(f"/auth/recovery?code={code}")
        assert resp.headers["location"] == "/update-password?recovery=true"


class TestUpdatePassword:
    def test_form_shown_with_recovery_session(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        _open_recovery_link(client, backend)
        resp = client.get("/update-password?recovery=true")
        assert resp.status_code == 200
        assert 'name="confirmPassword"' in resp.text

    def test_without_session_shows_error(self, client: TestClient) -> None:
        resp = client.get("/update-password")
        assert resp.status_code == 200
        assert "No active session" in resp.text
        assert 'name="confirmPassword"' not in resp.text

    def test_revoked_recovery_session_refused(self, client: TestClient, backend, store) -> None:
        account = backend.add_account("alice@example.com")
        token = _open_recovery_link(client, backend).cookies["recovery_access_token"]
        record_id = store.record_session(UserSession(user_id=account.id, session_token=session_key(token)))
        store.revoke_session(record_id)
        resp = client.get("/update-password?recovery=true")
        assert "No active session" in resp.text
        assert 'name="confirmPassword"' not in resp.text

    def test_regular_session_sent_to_dashboard(self, client: TestClient, login_as) -> None:
        login_as("alice@example.com")
        resp = client.get("/update-password")
        assert resp.headers["location"] == "/dashboard"

    def test_regular_session_cannot_post_new_password(self, client: TestClient, backend, login_as) -> None:
        login_as("alice@example.com")
        resp = client.post("/update-password", data={"password": "NewPass1", "confirmPassword": "NewPass1"})
        assert resp.status_code == 400
        assert "Your reset link has expired. Please request a new one." in resp.text
        assert backend.password_updates == []

    def test_mismatch_keeps_form(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        _open_recovery_link(client, backend)
        resp = client.post("/update-password", data={"password": "NewPass1", "confirmPassword": "Other1"})
        assert resp.status_code == 400
        assert "Passwords do not match" in resp.text
        assert 'name="confirmPassword"' in resp.text
        assert backend.password_updates == []

    def test_full_flow(self, client: TestClient, backend, store) -> None:
        account = backend.add_account("alice@example.com", "OldPass1")
        client.post("/forgot-password", data={"email": "alice@example.com"})
        assert backend.reset_emails

        _open_recovery_link(client, backend)
        resp = client.post("/update-password", data={"password": "NewPass1", "confirmPassword": "NewPass1"})
        assert resp.status_code == 200
        assert "Your password has been updated" in resp.text
        assert "url=/login?message=password_reset_success" in resp.text

        # Recovery session terminated at the provider and in the browser.
        assert len(backend.signed_out) == 1
        for name in ("recovery_access_token", "recovery_refresh_token", "access_token"):
            assert cookie_deleted(resp, name)
        assert account.password == "NewPass1"
        assert any(e.action == "PASSWORD_RESET" and e.user_id == account.id for e in store.list_audit_entries())

        # The form is no longer usable.
        again = client.post("/update-password", data={"password": "Other123", "confirmPassword": "Other123"})
        assert again.status_code == 400
        assert backend.password_updates == [("alice@example.com", "NewPass1")]

        login_page = client.get("/login?message=password_reset_success")
        assert "Your password has been reset." in login_page.text

        signed_in = client.post("/login", data={"email": "alice@example.com", "password": "NewPass1"})
        assert signed_in.headers["location"] == "/dashboard"

    def test_provider_failure_keeps_recovery_session(self, client: TestClient, backend) -> None:
        backend.add_account("alice@example.com")
        _open_recovery_link(client, backend)
        backend.unavailable = True
        resp = client.post("/update-password", data={"password": "NewPass1", "confirmPassword": "NewPass1"})
        assert resp.status_code == 400
        assert not cookie_deleted(resp, "recovery_access_token")
        backend.unavailable = False
        assert client.get("/update-password").status_code == 200
