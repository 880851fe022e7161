"""
auth/reset.py -- ResetTokenFlow: single-purpose, short-lived password reset tokens.

Flow:
  request_reset(email)        -> token for a known email, None otherwise. The
                                 HTTP layer returns the same response either
                                 way (no account enumeration).
  verify_reset_token(token)   -> the account's email, or InvalidResetToken
  complete_reset(token, pw)   -> new hash stored, reset fields cleared

The token is a JWT of type "password_reset" (1 hour). Only its SHA-256 digest
is stored on the account. Issuing a new token overwrites the digest, which
invalidates the previous token. complete_reset() swaps the password with a
conditional UPDATE on the digest, so a token works exactly once.

Every failure -- bad signature, wrong type, unknown account, digest mismatch,
expiry -- is the same InvalidResetToken.

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from auth.errors import InvalidOrExpiredToken, InvalidResetToken
from auth.models import Account, TokenClaims
from auth.tokens import RESET_PURPOSE, token_ref
from core.clock import utcnow

if TYPE_CHECKING:
    from auth.credentials import CredentialVerifier
    from auth.store import AccountStore
    from auth.tokens import TokenIssuer

logger = logging.getLogger("gatehouse.auth")


class ResetTokenFlow:
    def __init__(
        self,
        store: AccountStore,
        tokens: TokenIssuer,
        credentials: CredentialVerifier,
        ttl: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._credentials = credentials
        self.ttl = ttl
        self._clock = clock

    def request_reset(self, email: str) -> Optional[tuple[Account, str]]:
        """Mint and persist a reset token for `email` if the account exists.

        Returns (account, token) so the caller can deliver the link, or None.
        Callers must not let the return value change the client response.
        """
        account = self._store.get_by_email(email)
        if account is None or not account.is_active:
            return None
        now = self._clock()
        token = self._tokens.issue(
            TokenClaims(account_id=account.id, role=None, email=None, purpose=RESET_PURPOSE),
            self.ttl,
        )
        self._store.set_reset_token(account.id, token_ref(token), now + self.ttl, now)
        logger.info("Password reset requested for account %s", account.id)
        return account, token

    def verify_reset_token(self, token: str) -> str:
        """Return the email of the account the token belongs to."""
        return self._check(token).email

    def complete_reset(self, token: str, new_password: str) -> Account:
        account = self._check(token)
        hashed = self._credentials.hash(new_password)
        consumed = self._store.consume_reset_token(
            account.id, token_ref(token), hashed, self._clock(), self._credentials.history_depth
        )
        if not consumed:
            # Lost a race with another reset using the same token.
            raise InvalidResetToken()
        logger.info("Password reset completed for account %s", account.id)
        return account

    def _check(self, token: str) -> Account:
        try:
            claims = self._tokens.verify(token, purpose=RESET_PURPOSE)
        except InvalidOrExpiredToken as exc:
            raise InvalidResetToken() from exc
        account = self._store.get_by_id(claims.account_id)
        if account is None or account.reset_password_token is None or account.reset_password_expires is None:
            raise InvalidResetToken()
        if not hmac.compare_digest(account.reset_password_token, token_ref(token)):
            raise InvalidResetToken()
        if account.reset_password_expires <= self._clock():
            raise InvalidResetToken()
        return account
