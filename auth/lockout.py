"""
auth/lockout.py -- LockoutPolicy: brute-force lockout state machine per account.

States:
  Open   -- login_attempts < max and no active lock.
  Locked -- lock_until is in the future.

Transitions:
  Open -> Open      failed verification, login_attempts += 1
  Open -> Locked    login_attempts reaches max_attempts: lock_until = now + duration
  Locked -> Locked  any attempt while now < lock_until is rejected with the
                    remaining minutes BEFORE the password is checked
  Locked -> Open    at or after lock_until the next attempt proceeds normally
                    (a failure then starts a fresh count); a success clears
                    both fields together with session creation, and only if no
                    concurrent failure has locked the account since the check

The counter update itself is one conditional UPDATE in AccountStore, so
concurrent failures against the same account are never under-counted.

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from auth.models import Account
from core.clock import utcnow

if TYPE_CHECKING:
    from auth.store import AccountStore

logger = logging.getLogger("gatehouse.auth")


@dataclass(frozen=True)
class FailureOutcome:
    attempts: int
    attempts_remaining: int
    locked: bool
    remaining_minutes: int = 0


def _minutes_until(lock_until: datetime, now: datetime) -> int:
    """Whole minutes left on a lock, rounded up (never 0 while still locked)."""
    return max(1, math.ceil((lock_until - now).total_seconds() / 60))


class LockoutPolicy:
    def __init__(
        self,
        store: AccountStore,
        max_attempts: int = 5,
        lock_duration: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self._clock = clock

    def lock_state(self, account: Account) -> tuple[bool, int]:
        """Return (is_locked, remaining_minutes) for an already-loaded account."""
        now = self._clock()
        if account.lock_until is None or account.lock_until <= now:
            return False, 0
        return True, _minutes_until(account.lock_until, now)

    def is_locked(self, account_id: int) -> tuple[bool, int]:
        account = self._store.get_by_id(account_id)
        if account is None:
            return False, 0
        return self.lock_state(account)

    def record_failure(self, account_id: int) -> Optional[FailureOutcome]:
        """Count one failed verification. Returns None if the account vanished."""
        now = self._clock()
        state = self._store.record_failed_attempt(account_id, now, self.max_attempts, self.lock_duration)
        if state is None:
            return None
        attempts, lock_until = state
        locked = lock_until is not None and lock_until > now
        if locked and attempts == self.max_attempts:
            logger.warning("Account %s locked after %d failed attempts", account_id, attempts)
        return FailureOutcome(
            attempts=attempts,
            attempts_remaining=max(0, self.max_attempts - attempts),
            locked=locked,
            remaining_minutes=_minutes_until(lock_until, now) if locked else 0,
        )

    def record_success(self, account_id: int) -> None:
        """Clear the counter and lock outside of a login (e.g. admin unlock).

        Successful logins clear both fields inside SessionRegistry.add_session
        instead, so the reset is atomic with session creation.
        """
        self._store.clear_lockout(account_id, self._clock())
