"""
tests/test_sessions.py -- SessionRegistry bounds, ordering, idle window and revocation.

Sessions are keyed to bearer tokens by digest, so the tests use arbitrary
strings as tokens; the registry never decodes them.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import NotFound
from auth.sessions import SessionRegistry
from auth.tokens import token_ref


@pytest.fixture
def registry(auth_service) -> SessionRegistry:
    return auth_service.sessions


@pytest.fixture
def account(make_account):
    return make_account()


class TestBoundedList:
    def test_eleventh_session_evicts_oldest(self, registry, account, clock) -> None:
        """Eleven logins keep exactly ten sessions: the ten most recent, oldest first."""
        for i in range(11):
            registry.add_session(account.id, f"token-{i}", f"device-{i}", "10.0.0.1")
            clock.advance(seconds=1)
        sessions = registry.list_active(account.id)
        assert len(sessions) == 10
        assert [s.device for s in sessions] == [f"device-{i}" for i in range(1, 11)]

    def test_same_timestamp_evicts_in_insertion_order(self, registry, account) -> None:
        for i in range(12):
            registry.add_session(account.id, f"token-{i}", f"device-{i}", "10.0.0.1")
        devices = [s.device for s in registry.list_active(account.id)]
        assert devices == [f"device-{i}" for i in range(2, 12)]

    def test_limit_is_per_account(self, registry, make_account) -> None:
        alice = make_account()
        bob = make_account(email="bob@example.com")
        for i in range(10):
            registry.add_session(alice.id, f"a-{i}", "alice-laptop", "10.0.0.1")
        registry.add_session(bob.id, "b-0", "bob-phone", "10.0.0.2")
        assert len(registry.list_active(alice.id)) == 10
        assert len(registry.list_active(bob.id)) == 1

    def test_raw_token_is_not_stored(self, registry, account) -> None:
        session = registry.add_session(account.id, "raw-bearer", "laptop", "10.0.0.1")
        assert session.token_ref == token_ref("raw-bearer")
        assert session.token_ref != "raw-bearer"

    def test_unknown_account_raises(self, registry) -> None:
        with pytest.raises(LookupError):
            registry.add_session(4242, "t", "laptop", "10.0.0.1")


class TestIdleWindow:
    def test_idle_sessions_are_hidden(self, registry, account, clock) -> None:
        registry.add_session(account.id, "old", "old-laptop", "10.0.0.1")
        clock.advance(hours=25)
        registry.add_session(account.id, "new", "new-laptop", "10.0.0.1")
        assert [s.device for s in registry.list_active(account.id)] == ["new-laptop"]

    def test_touch_keeps_session_visible(self, registry, account, clock) -> None:
        registry.add_session(account.id, "tok", "laptop", "10.0.0.1")
        clock.advance(hours=20)
        assert registry.touch(account.id, "tok") is True
        clock.advance(hours=20)
        sessions = registry.list_active(account.id)
        assert len(sessions) == 1
        assert sessions[0].last_activity == clock() - timedelta(hours=20)

    def test_touch_unknown_token_is_noop(self, registry, account) -> None:
        assert registry.touch(account.id, "never-issued") is False


class TestRevocation:
    def test_revoke_by_id(self, registry, account) -> None:
        session = registry.add_session(account.id, "tok", "laptop", "10.0.0.1")
        assert registry.revoke(account.id, session.id) is True
        assert registry.list_active(account.id) == []
        assert registry.revoke(account.id, session.id) is False

    def test_revoke_other_accounts_session_is_refused(self, registry, make_account) -> None:
        """A session id belonging to another account is never removed."""
        alice = make_account()
        bob = make_account(email="bob@example.com")
        bobs = registry.add_session(bob.id, "bob-token", "bob-phone", "10.0.0.2")
        assert registry.revoke(alice.id, bobs.id) is False
        assert len(registry.list_active(bob.id)) == 1

    def test_revoke_all_except_current(self, registry, account) -> None:
        for i in range(4):
            registry.add_session(account.id, f"tok-{i}", f"device-{i}", "10.0.0.1")
        assert registry.revoke_all_except_current(account.id, "tok-2") == 3
        remaining = registry.list_active(account.id)
        assert [s.device for s in remaining] == ["device-2"]
        assert registry.is_current(remaining[0], "tok-2")

    def test_revoke_current(self, registry, account) -> None:
        registry.add_session(account.id, "keep", "laptop", "10.0.0.1")
        registry.add_session(account.id, "drop", "phone", "10.0.0.1")
        assert registry.revoke_current(account.id, "drop") is True
        assert registry.contains(account.id, "drop") is False
        assert registry.contains(account.id, "keep") is True

    def test_revoke_current_only_touches_own_sessions(self, registry, make_account) -> None:
        alice = make_account()
        bob = make_account(email="bob@example.com")
        registry.add_session(bob.id, "bobs-token", "phone", "10.0.0.2")
        assert registry.revoke_current(alice.id, "bobs-token") is False
        assert registry.revoke_current(alice.id, "never-issued") is False
        assert registry.contains(bob.id, "bobs-token") is True

    def test_rebind_moves_session_to_new_token(self, registry, account) -> None:
        session = registry.add_session(account.id, "old", "laptop", "10.0.0.1")
        assert registry.rebind(account.id, "old", "new") is True
        assert registry.contains(account.id, "new")
        assert not registry.contains(account.id, "old")
        assert registry.list_active(account.id)[0].id == session.id


class TestServiceSessions:
    def test_list_sessions_flags_current(self, auth_service, account) -> None:
        auth_service.sessions.add_session(account.id, "a", "laptop", "10.0.0.1")
        auth_service.sessions.add_session(account.id, "b", "phone", "10.0.0.1")
        flags = {s.device: current for s, current in auth_service.list_sessions(account, "b")}
        assert flags == {"laptop": False, "phone": True}

    def test_revoke_missing_session_is_not_found(self, auth_service, account) -> None:
        with pytest.raises(NotFound):
            auth_service.revoke_session(account, "does-not-exist")

    def test_touch_without_session_is_not_found(self, auth_service, account) -> None:
        with pytest.raises(NotFound):
            auth_service.touch_session(account, "never-issued")
