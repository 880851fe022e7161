"""
tests/test_reset.py -- Password reset tokens: issuance, single use, expiry, purpose.

Covers:
  - unknown email issues nothing (and the HTTP body is identical either way)
  - a token works exactly once; a newer token invalidates the previous one
  - tokens expire after one hour
  - reset tokens and bearer tokens are not interchangeable
  - the new password works for login, the old one does not
"""

from __future__ import annotations

import pytest

from auth.errors import InvalidCredentials, InvalidOrExpiredToken, InvalidResetToken, ValidationError

PASSWORD = "correct-horse"
NEW_PASSWORD = "battery-staple"


def _request(service, email: str = "alice@example.com") -> str:
    issued = service.resets.request_reset(email)
    assert issued is not None
    return issued[1]


class TestRequestReset:
    def test_unknown_email_issues_nothing(self, auth_service) -> None:
        assert auth_service.resets.request_reset("nobody@example.com") is None

    def test_service_sends_link_only_for_known_email(self, auth_service, make_account, notifier) -> None:
        make_account()
        assert auth_service.request_password_reset("nobody@example.com") is None
        assert auth_service.request_password_reset("alice@example.com") is None
        assert [to for to, _ in notifier.reset_tokens] == ["alice@example.com"]

    def test_only_digest_is_stored(self, auth_service, make_account) -> None:
        account = make_account()
        token = _request(auth_service)
        stored = auth_service.store.get_by_id(account.id)
        assert stored.reset_password_token is not None
        assert stored.reset_password_token != token
        assert stored.reset_password_expires is not None


class TestCompleteReset:
    def test_verify_returns_email(self, auth_service, make_account) -> None:
        make_account()
        token = _request(auth_service)
        assert auth_service.verify_reset_token(token) == "alice@example.com"

    def test_reset_changes_password_and_clears_token(self, auth_service, make_account) -> None:
        account = make_account()
        token = _request(auth_service)
        auth_service.complete_password_reset(token, NEW_PASSWORD)

        stored = auth_service.store.get_by_id(account.id)
        assert stored.reset_password_token is None
        assert stored.reset_password_expires is None
        assert auth_service.credentials.verify(account.id, NEW_PASSWORD)
        assert not auth_service.credentials.verify(account.id, PASSWORD)

    def test_token_is_single_use(self, auth_service, make_account) -> None:
        make_account()
        token = _request(auth_service)
        auth_service.complete_password_reset(token, NEW_PASSWORD)
        with pytest.raises(InvalidResetToken):
            auth_service.complete_password_reset(token, "another-password")
        with pytest.raises(InvalidResetToken):
            auth_service.verify_reset_token(token)

    def test_newer_token_invalidates_previous(self, auth_service, make_account) -> None:
        make_account()
        first = _request(auth_service)
        second = _request(auth_service)
        with pytest.raises(InvalidResetToken):
            auth_service.verify_reset_token(first)
        assert auth_service.verify_reset_token(second) == "alice@example.com"

    def test_token_expires_after_one_hour(self, auth_service, make_account, clock) -> None:
        make_account()
        token = _request(auth_service)
        clock.advance(minutes=59)
        assert auth_service.verify_reset_token(token) == "alice@example.com"
        clock.advance(minutes=1)
        with pytest.raises(InvalidResetToken):
            auth_service.complete_password_reset(token, NEW_PASSWORD)

    def test_short_password_rejected_before_token_is_spent(self, auth_service, make_account) -> None:
        make_account()
        token = _request(auth_service)
        with pytest.raises(ValidationError):
            auth_service.complete_password_reset(token, "abc")
        assert auth_service.verify_reset_token(token) == "alice@example.com"

    def test_login_uses_new_password(self, auth_service, make_account) -> None:
        make_account()
        token = _request(auth_service)
        auth_service.complete_password_reset(token, NEW_PASSWORD)
        with pytest.raises(InvalidCredentials):
            auth_service.login("alice@example.com", PASSWORD, ip="10.0.0.1", user_agent="pytest")
        assert auth_service.login("alice@example.com", NEW_PASSWORD, ip="10.0.0.1", user_agent="pytest").token

    def test_reset_status_code_is_400(self, auth_service) -> None:
        with pytest.raises(InvalidResetToken) as excinfo:
            auth_service.verify_reset_token("garbage")
        assert excinfo.value.status_code == 400


class TestPurposeSeparation:
    def test_access_token_is_not_a_reset_token(self, auth_service, make_account) -> None:
        account = make_account()
        bearer = auth_service.tokens.issue_for(account, auth_service.tokens.default_ttl)
        with pytest.raises(InvalidResetToken):
            auth_service.verify_reset_token(bearer)

    def test_reset_token_is_not_a_bearer(self, auth_service, make_account) -> None:
        make_account()
        token = _request(auth_service)
        with pytest.raises(InvalidOrExpiredToken):
            auth_service.authenticate(token)


class TestResetRoutes:
    def test_forgot_password_body_is_identical(self, api_client, make_account) -> None:
        """Known and unknown emails get byte-identical 200 responses."""
        make_account()
        known = api_client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        unknown = api_client.post("/api/v1/auth/forgot-password", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.content == unknown.content

    def test_full_reset_over_http(self, api_client, make_account, notifier, login) -> None:
        make_account()
        api_client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        _, token = notifier.reset_tokens[-1]

        verify = api_client.post("/api/v1/auth/verify-reset-token", json={"token": token})
        assert verify.status_code == 200
        assert verify.json() == {"valid": True, "email": "alice@example.com"}

        reset = api_client.post("/api/v1/auth/reset-password", json={"token": token, "newPassword": NEW_PASSWORD})
        assert reset.status_code == 200
        assert reset.headers["Cache-Control"] == "no-store"

        again = api_client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "third-one"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_token"

        assert login(password=NEW_PASSWORD).status_code == 200

    def test_bad_token_is_400(self, api_client) -> None:
        resp = api_client.post("/api/v1/auth/verify-reset-token", json={"token": "nope"})
        assert resp.status_code == 400
