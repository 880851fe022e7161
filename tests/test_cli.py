"""
tests/test_cli.py -- Admin CLI (main.py) against throwaway SQLite files.

AUTH_DB_URL / ANALYTICS_DB_URL point at tmp_path, and the cached Settings are
cleared on both sides of each test so no other test sees these paths.
"""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

import main as cli
from auth.lockout import LockoutPolicy
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import get_settings


@pytest.fixture
def db_urls(tmp_path, monkeypatch):
    auth_url = f"sqlite:///{tmp_path / 'auth.db'}"
    monkeypatch.setenv("AUTH_DB_URL", auth_url)
    monkeypatch.setenv("ANALYTICS_DB_URL", f"sqlite:///{tmp_path / 'analytics.db'}")
    get_settings.cache_clear()
    yield auth_url
    get_settings.cache_clear()


@pytest.fixture
def store(db_urls):
    s = AccountStore(db_urls)
    yield s
    s.close()


def _passwords(monkeypatch, *values: str) -> None:
    answers = iter(values)
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))


def _seed(store: AccountStore, email: str = "alice@example.com") -> int:
    return store.create_account(
        Account(email=email, username="alice", role="user", hashed_password=hash_password("correct-horse", rounds=4))
    )


class TestCreateAdmin:
    def test_creates_admin(self, db_urls, store, monkeypatch, capsys) -> None:
        _passwords(monkeypatch, "admin-pass", "admin-pass")
        assert cli.main(["create-admin", "--email", "Root@Example.com"]) == 0
        assert "created for root@example.com" in capsys.readouterr().out
        account = store.get_by_email("root@example.com")
        assert account.role == "admin"
        assert account.username == "Root"

    def test_mismatched_confirmation(self, db_urls, store, monkeypatch, capsys) -> None:
        _passwords(monkeypatch, "admin-pass", "admin-typo")
        assert cli.main(["create-admin", "--email", "root@example.com"]) == 1
        assert "do not match" in capsys.readouterr().err
        assert store.get_by_email("root@example.com") is None

    def test_short_password(self, db_urls, monkeypatch) -> None:
        _passwords(monkeypatch, "abc")
        assert cli.main(["create-admin", "--email", "root@example.com"]) == 1

    def test_duplicate_email(self, db_urls, store, monkeypatch, capsys) -> None:
        _seed(store, "root@example.com")
        _passwords(monkeypatch, "admin-pass", "admin-pass")
        assert cli.main(["create-admin", "--email", "root@example.com"]) == 1
        assert "already registered" in capsys.readouterr().err


class TestAccountCommands:
    def test_unlock(self, db_urls, store, capsys) -> None:
        account_id = _seed(store)
        policy = LockoutPolicy(store, max_attempts=5, lock_duration=timedelta(minutes=15))
        for _ in range(5):
            policy.record_failure(account_id)
        assert cli.main(["unlock", "--email", "alice@example.com"]) == 0
        assert "was 5 failed attempt(s)" in capsys.readouterr().out
        account = store.get_by_id(account_id)
        assert account.login_attempts == 0
        assert account.lock_until is None

    def test_unknown_email(self, db_urls, store, capsys) -> None:
        assert cli.main(["unlock", "--email", "nobody@example.com"]) == 1
        assert "No account" in capsys.readouterr().err

    def test_insights_json(self, db_urls, store, capsys) -> None:
        _seed(store)
        assert cli.main(["insights", "--email", "alice@example.com", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["email"] == "alice@example.com"
        assert data["security_score"] == 100
        assert data["recommendations"] == []

    def test_sessions_empty(self, db_urls, store, capsys) -> None:
        _seed(store)
        assert cli.main(["sessions", "--email", "alice@example.com"]) == 0
        assert "No active sessions" in capsys.readouterr().out

    def test_no_command_prints_help(self, db_urls, capsys) -> None:
        assert cli.main([]) == 0
        assert "create-admin" in capsys.readouterr().out
