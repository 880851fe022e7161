"""
auth/sessions.py -- SessionRegistry: bounded, ordered session list per account.

Invariant: an account never has more than max_sessions sessions. Adding one
more evicts the session with the earliest creation time (FIFO). Sessions are
never expired physically here; list_active() just hides sessions idle longer
than the idle window.

Sessions are keyed to the bearer token through token_ref = sha256(token).

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable

from auth.models import Session
from auth.tokens import token_ref
from core.clock import utcnow

if TYPE_CHECKING:
    from auth.store import AccountStore


class SessionRegistry:
    def __init__(
        self,
        store: AccountStore,
        max_sessions: int = 10,
        idle_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self.max_sessions = max_sessions
        self.idle_window = idle_window
        self._clock = clock

    def add_session(
        self,
        account_id: int,
        token: str,
        device: str,
        ip: str,
        *,
        complete_login: bool = False,
    ) -> Session:
        """Record a new session for `token` and trim the list to max_sessions.

        complete_login=True makes the same store transaction reset the lockout
        counters and stamp last_login (used by the login flow).
        """
        now = self._clock()
        session = Session(
            id=secrets.token_hex(12),
            account_id=account_id,
            token_ref=token_ref(token),
            device=device,
            ip=ip,
            created_at=now,
            last_activity=now,
        )
        if not self._store.open_session(session, self.max_sessions, complete_login=complete_login):
            raise LookupError(f"account {account_id} not found")
        return session

    def touch(self, account_id: int, token: str) -> bool:
        """Update last_activity on the session for `token`. No-op if there is none."""
        return self._store.touch_session(account_id, token_ref(token), self._clock())

    def rebind(self, account_id: int, old_token: str, new_token: str) -> bool:
        """Carry the session of old_token over to new_token after a refresh."""
        return self._store.replace_session_token(account_id, token_ref(old_token), token_ref(new_token), self._clock())

    def revoke(self, account_id: int, session_id: str) -> bool:
        return self._store.delete_session(account_id, session_id)

    def revoke_all_except_current(self, account_id: int, current_token: str) -> int:
        return self._store.delete_sessions_except(account_id, token_ref(current_token))

    def revoke_current(self, account_id: int, token: str) -> bool:
        """Remove the session that belongs to `token` (logout)."""
        return self._store.delete_session_by_token(account_id, token_ref(token))

    def contains(self, account_id: int, token: str) -> bool:
        return self._store.has_session(account_id, token_ref(token))

    def list_active(self, account_id: int) -> list[Session]:
        """Sessions with activity inside the idle window, oldest first."""
        return self._store.list_sessions(account_id, active_since=self._clock() - self.idle_window)

    @staticmethod
    def is_current(session: Session, token: str) -> bool:
        return session.token_ref == token_ref(token)
