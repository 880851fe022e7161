"""
auth/credentials.py -- CredentialVerifier: password checks and password history.

verify() is a pure check: it never changes counters or sessions. Lockout
bookkeeping is LockoutPolicy's job, and the login orchestration in
auth/service.py decides what a mismatch means.

Timing equalization [C1]: when the account does not exist, bcrypt still runs
against a dummy hash of the same cost, so response time does not reveal
whether an email is registered.

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from auth.models import Account
from auth.tokens import hash_password, verify_password

if TYPE_CHECKING:
    from auth.store import AccountStore


class CredentialVerifier:
    def __init__(self, store: AccountStore, rounds: int = 12, history_depth: int = 5) -> None:
        self._store = store
        self.rounds = rounds
        self.history_depth = history_depth
        # Same cost factor as real hashes, computed once so the first unknown-email
        # login is not measurably slower than later ones.
        self._dummy_hash = hash_password("gatehouse_timing_dummy", rounds=rounds)

    def hash(self, plain: str) -> str:
        return hash_password(plain, rounds=self.rounds)

    def verify(self, account_id: int, presented: str) -> bool:
        """Return True if `presented` matches the account's stored hash."""
        return self.verify_account(self._store.get_by_id(account_id), presented)

    def verify_account(self, account: Optional[Account], presented: str) -> bool:
        """Same as verify() for an already-loaded account (None = unknown account)."""
        if account is None or not account.hashed_password:
            verify_password(presented, self._dummy_hash)
            return False
        return verify_password(presented, account.hashed_password)

    def is_reused(self, account_id: int, candidate: str) -> bool:
        """Return True if `candidate` matches any of the last history_depth hashes.

        Only the change-password path calls this. Login never does.
        """
        return any(verify_password(candidate, h) for h in self._store.get_password_history(account_id, self.history_depth))
