"""
tests/test_profile_store.py -- Unit tests for auth/store.py (ProfileStore).

Each test gets its own shared-memory SQLite database via the store fixture.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import AuditLogEntry, UserProfile, UserSession


class TestProfiles:
    def test_create_and_get(self, store) -> None:
        created = store.create_profile(UserProfile(id="u1", email="a@example.com", full_name="Ada"))
        assert created.id == "u1"
        assert created.role == "user"
        assert created.is_active is True
        assert created.created_at is not None
        assert store.get_profile("u1") == created

    def test_get_missing_returns_none(self, store) -> None:
        assert store.get_profile("missing") is None

    def test_duplicate_id_raises_integrity_error(self, store) -> None:
        store.create_profile(UserProfile(id="u1", email="a@example.com"))
        with pytest.raises(IntegrityError):
            store.create_profile(UserProfile(id="u1", email="a@example.com"))

    def test_lookup_by_email_is_case_insensitive(self, store) -> None:
        store.create_profile(UserProfile(id="u1", email="Ada@Example.com"))
        assert store.get_profile_by_email("  ada@example.COM ").id == "u1"

    def test_update_whitelisted_fields(self, store) -> None:
        store.create_profile(UserProfile(id="u1", email="a@example.com"))
        assert store.update_profile("u1", role="moderator", is_active=False) is True
        profile = store.get_profile("u1")
        assert profile.role == "moderator"
        assert profile.is_active is False

    def test_update_unknown_field_raises(self, store) -> None:
        store.create_profile(UserProfile(id="u1", email="a@example.com"))
        with pytest.raises(ValueError):
            store.update_profile("u1", id="u2")

    def test_update_missing_row_returns_false(self, store) -> None:
        assert store.update_profile("missing", full_name="x") is False

    def test_count_active_admins_ignores_inactive(self, store) -> None:
        store.create_profile(UserProfile(id="a1", email="a1@example.com", role="admin"))
        store.create_profile(UserProfile(id="a2", email="a2@example.com", role="admin", is_active=False))
        store.create_profile(UserProfile(id="u1", email="u1@example.com"))
        assert store.count_active_admins() == 1


class TestAuditLog:
    def test_entries_round_trip_details(self, store) -> None:
        store.add_audit_entry(
            AuditLogEntry(action="UPDATE_USER_ROLE", user_id="admin", details={"userId": "u1", "newRole": "admin"})
        )
        [entry] = store.list_audit_entries()
        assert entry.action == "UPDATE_USER_ROLE"
        assert entry.details == {"userId": "u1", "newRole": "admin"}
        assert entry.id
        assert store.count_audit_entries() == 1

    def test_limit(self, store) -> None:
        for i in range(5):
            store.add_audit_entry(AuditLogEntry(action=f"A{i}"))
        assert len(store.list_audit_entries(limit=3)) == 3


class TestSessionRecords:
    def _record(self, store, token: str = "sess-1", user_id: str = "u1") -> str:
        return store.record_session(
            UserSession(
                user_id=user_id,
                session_token=token,
                expires_at="2030-01-01T00:00:00+00:00",
                ip_address="10.0.0.1",
                user_agent="pytest",
            )
        )

    def test_record_and_list(self, store) -> None:
        session_id = self._record(store)
        [session] = store.list_sessions("u1")
        assert session.id == session_id
        assert session.is_active is True
        assert session.ip_address == "10.0.0.1"

    def test_recording_same_token_reuses_row(self, store) -> None:
        assert self._record(store) == self._record(store)
        assert len(store.list_sessions("u1")) == 1

    def test_recording_revoked_token_keeps_it_revoked(self, store) -> None:
        session_id = self._record(store)
        store.revoke_session(session_id)
        assert self._record(store) == session_id
        assert store.is_session_revoked("sess-1") is True

    def test_unknown_token_is_not_revoked(self, store) -> None:
        assert store.is_session_revoked("never-seen") is False

    def test_revoke_marks_token_revoked(self, store) -> None:
        session_id = self._record(store)
        assert store.revoke_session(session_id) is True
        assert store.is_session_revoked("sess-1") is True
        assert store.count_active_sessions() == 0

    def test_revoke_missing_returns_false(self, store) -> None:
        assert store.revoke_session("missing") is False

    def test_end_session_by_token(self, store) -> None:
        self._record(store)
        store.end_session("sess-1")
        assert store.list_sessions("u1")[0].is_active is False
