"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and sessions.

Pattern: Repository + Data Mapper (same as analytics/store.py).
AccountStore is the repository; _row_to_account / _row_to_session are the
mappers. Policy and route code never touches SQL directly.

Atomicity:
  Nothing here loads a record, mutates it in Python, and writes it back.
  Every mutation is an explicit UPDATE/INSERT/DELETE inside engine.begin().
  Multi-statement mutations (session push-and-trim, password change plus
  history) first write the account row via _lock_account(), which takes the
  row lock on PostgreSQL and the database write lock on SQLite. Concurrent
  requests for the same account therefore serialize instead of losing updates.
  There is no cross-account locking.

  The failed-attempt counter is a single conditional UPDATE
  (login_attempts = login_attempts + 1 with CASE for the lock), so two
  concurrent failures always count as two.

Timestamps are stored as UTC epoch seconds (REAL) so range comparisons are
numeric. The mappers convert them to timezone-aware datetimes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Raw bearer tokens and reset tokens never reach this layer -- only their
  SHA-256 digests.

DB path: auth/gatehouse_auth.db (sibling to analytics/gatehouse_analytics.db).

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    event,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import Account, Session
from core.clock import utcnow

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gatehouse_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("username", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", Float),
    Column("reset_password_token", String(64), index=True),  # SHA-256 hex of the reset token
    Column("reset_password_expires", Float),
    Column("last_login", Float),
    Column("password_changed_at", Float),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    # pk breaks created_at ties so eviction order always matches insertion order.
    Column("pk", Integer, primary_key=True, autoincrement=True),
    Column("id", String(32), nullable=False, unique=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("token_ref", String(64), nullable=False),
    Column("device", Text, nullable=False),
    Column("ip", String(64), nullable=False),
    Column("created_at", Float, nullable=False),
    Column("last_activity", Float, nullable=False),
)

_password_history = Table(
    "password_history",
    _metadata,
    Column("pk", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("hashed_password", Text, nullable=False),
    Column("changed_at", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ts(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _dt(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, Session and password-history rows.

    Usage:
        store = AccountStore()
        account_id = store.create_account(Account(email="a@example.com", username="a",
                                                  role="user", hashed_password=hash_password("secret")))
        account = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account, now: Optional[datetime] = None) -> int:
        """Insert a new account and seed its password history. Returns the new ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers translate that into AccountExists.
        """
        now_ts = (now or utcnow()).timestamp()
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    email=account.email.strip().lower(),
                    username=account.username,
                    hashed_password=account.hashed_password,
                    role=account.role,
                    is_active=1 if account.is_active else 0,
                    login_attempts=0,
                    password_changed_at=now_ts,
                    created_at=now_ts,
                    updated_at=now_ts,
                )
            )
            account_id = result.inserted_primary_key[0]
            conn.execute(
                _password_history.insert().values(
                    account_id=account_id, hashed_password=account.hashed_password, changed_at=now_ts
                )
            )
        return account_id

    def get_by_id(self, account_id: int) -> Optional[Account]:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str) -> Optional[Account]:
        """Look up an account by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email.strip().lower())).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Lockout counters
    # ------------------------------------------------------------------

    def record_failed_attempt(
        self,
        account_id: int,
        now: datetime,
        max_attempts: int,
        lock_for: timedelta,
    ) -> Optional[tuple[int, Optional[datetime]]]:
        """Atomically count one failed login and lock the account at the threshold.

        One UPDATE computes the new state from the old row values:
          - lock expired: the count restarts at 1 and the stale lock is cleared
          - currently locked: the count grows, the existing lock_until is kept
          - otherwise: the count grows; reaching max_attempts sets lock_until

        Returns (login_attempts, lock_until) after the update, or None if the
        account does not exist.
        """
        c = _accounts.c
        now_ts = now.timestamp()
        expired = and_(c.lock_until.is_not(None), c.lock_until <= now_ts)
        locked = and_(c.lock_until.is_not(None), c.lock_until > now_ts)
        attempts = case((expired, 1), else_=c.login_attempts + 1)
        lock_until = case(
            (locked, c.lock_until),
            (attempts >= max_attempts, (now + lock_for).timestamp()),
            else_=None,
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(c.id == account_id)
                .values(login_attempts=attempts, lock_until=lock_until, updated_at=now_ts)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(select(c.login_attempts, c.lock_until).where(c.id == account_id)).fetchone()
        return row.login_attempts, _dt(row.lock_until)

    def clear_lockout(self, account_id: int, now: Optional[datetime] = None) -> bool:
        """Reset login_attempts to 0 and clear lock_until. Returns False if not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(login_attempts=0, lock_until=None, updated_at=(now or utcnow()).timestamp())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(
        self,
        session: Session,
        max_sessions: int,
        *,
        complete_login: bool = False,
    ) -> bool:
        """Append a session and evict the oldest beyond max_sessions, in one transaction.

        complete_login=True also resets the lockout counters and stamps
        last_login in the same transaction, so a successful login can never
        leave a session without the counter reset (or the reverse). That
        UPDATE only matches while the account is unlocked at session.created_at:
        a lock set by a concurrent failure after the caller's lock check makes
        it match zero rows, and no session is written.

        Returns False if the account does not exist or is locked.
        """
        now_ts = session.created_at.timestamp()
        with self.engine.begin() as conn:
            if complete_login:
                c = _accounts.c
                result = conn.execute(
                    _accounts.update()
                    .where(
                        (c.id == session.account_id)
                        & or_(c.lock_until.is_(None), c.lock_until <= now_ts)
                    )
                    .values(login_attempts=0, lock_until=None, last_login=now_ts, updated_at=now_ts)
                )
                if result.rowcount == 0:
                    return False
            elif not _lock_account(conn, session.account_id, now_ts):
                return False
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    account_id=session.account_id,
                    token_ref=session.token_ref,
                    device=session.device,
                    ip=session.ip,
                    created_at=now_ts,
                    last_activity=session.last_activity.timestamp(),
                )
            )
            stale = conn.execute(
                select(_sessions.c.pk)
                .where(_sessions.c.account_id == session.account_id)
                .order_by(_sessions.c.created_at.desc(), _sessions.c.pk.desc())
                .offset(max_sessions)
            ).fetchall()
            if stale:
                conn.execute(_sessions.delete().where(_sessions.c.pk.in_([r.pk for r in stale])))
        return True

    def list_sessions(self, account_id: int, active_since: Optional[datetime] = None) -> list[Session]:
        """Return sessions in creation order, optionally only those active since a cutoff."""
        query = _sessions.select().where(_sessions.c.account_id == account_id)
        if active_since is not None:
            query = query.where(_sessions.c.last_activity > active_since.timestamp())
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_sessions.c.created_at, _sessions.c.pk)).fetchall()
        return [_row_to_session(r) for r in rows]

    def has_session(self, account_id: int, token_ref: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_sessions.c.pk).where(
                    (_sessions.c.account_id == account_id) & (_sessions.c.token_ref == token_ref)
                )
            ).fetchone()
        return row is not None

    def touch_session(self, account_id: int, token_ref: str, now: datetime) -> bool:
        """Stamp last_activity on the session matching token_ref. Returns False if none matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.account_id == account_id) & (_sessions.c.token_ref == token_ref))
                .values(last_activity=now.timestamp())
            )
        return result.rowcount > 0

    def replace_session_token(self, account_id: int, old_ref: str, new_ref: str, now: datetime) -> bool:
        """Point the session for old_ref at a refreshed token. Returns False if none matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.account_id == account_id) & (_sessions.c.token_ref == old_ref))
                .values(token_ref=new_ref, last_activity=now.timestamp())
            )
        return result.rowcount > 0

    def delete_session(self, account_id: int, session_id: str) -> bool:
        """Remove one session. account_id is part of the WHERE clause [IDOR guard]."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.account_id == account_id) & (_sessions.c.id == session_id))
            )
        return result.rowcount > 0

    def delete_session_by_token(self, account_id: int, token_ref: str) -> bool:
        """Remove the session matching token_ref (logout)."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.account_id == account_id) & (_sessions.c.token_ref == token_ref))
            )
        return result.rowcount > 0

    def delete_sessions_except(self, account_id: int, token_ref: str) -> int:
        """Remove every session of the account except the one matching token_ref."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.account_id == account_id) & (_sessions.c.token_ref != token_ref))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Passwords and reset tokens
    # ------------------------------------------------------------------

    def get_password_history(self, account_id: int, limit: int) -> list[str]:
        """Return up to `limit` stored hashes, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_password_history.c.hashed_password)
                .where(_password_history.c.account_id == account_id)
                .order_by(_password_history.c.changed_at.desc(), _password_history.c.pk.desc())
                .limit(limit)
            ).fetchall()
        return [r.hashed_password for r in rows]

    def change_password(self, account_id: int, hashed_password: str, now: datetime, history_depth: int) -> bool:
        """Store a new hash, record it in the history, and trim the history."""
        now_ts = now.timestamp()
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(hashed_password=hashed_password, password_changed_at=now_ts, updated_at=now_ts)
            )
            if result.rowcount == 0:
                return False
            _push_history(conn, account_id, hashed_password, now_ts, history_depth)
        return True

    def set_reset_token(self, account_id: int, token_digest: str, expires: datetime, now: datetime) -> bool:
        """Store the reset token digest and expiry, overwriting any previous token."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.id == account_id)
                .values(
                    reset_password_token=token_digest,
                    reset_password_expires=expires.timestamp(),
                    updated_at=now.timestamp(),
                )
            )
        return result.rowcount > 0

    def consume_reset_token(
        self,
        account_id: int,
        token_digest: str,
        hashed_password: str,
        now: datetime,
        history_depth: int,
    ) -> bool:
        """Swap in the new password if and only if the reset token is still outstanding.

        The token digest and expiry are part of the WHERE clause, and the same
        UPDATE clears both reset fields. Two concurrent resets with the same
        token cannot both succeed: the second matches zero rows.
        """
        now_ts = now.timestamp()
        c = _accounts.c
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(
                    (c.id == account_id)
                    & (c.reset_password_token == token_digest)
                    & (c.reset_password_expires > now_ts)
                )
                .values(
                    hashed_password=hashed_password,
                    reset_password_token=None,
                    reset_password_expires=None,
                    password_changed_at=now_ts,
                    updated_at=now_ts,
                )
            )
            if result.rowcount == 0:
                return False
            _push_history(conn, account_id, hashed_password, now_ts, history_depth)
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------


def _lock_account(conn: Connection, account_id: int, now_ts: float) -> bool:
    """Write the account row first so the rest of the transaction is serialized per account."""
    result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(updated_at=now_ts))
    return result.rowcount > 0


def _push_history(conn: Connection, account_id: int, hashed_password: str, now_ts: float, depth: int) -> None:
    conn.execute(
        _password_history.insert().values(account_id=account_id, hashed_password=hashed_password, changed_at=now_ts)
    )
    stale = conn.execute(
        select(_password_history.c.pk)
        .where(_password_history.c.account_id == account_id)
        .order_by(_password_history.c.changed_at.desc(), _password_history.c.pk.desc())
        .offset(depth)
    ).fetchall()
    if stale:
        conn.execute(_password_history.delete().where(_password_history.c.pk.in_([r.pk for r in stale])))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        role=row.role,
        is_active=bool(row.is_active),
        login_attempts=row.login_attempts or 0,
        lock_until=_dt(row.lock_until),
        reset_password_token=row.reset_password_token,
        reset_password_expires=_dt(row.reset_password_expires),
        last_login=_dt(row.last_login),
        password_changed_at=_dt(row.password_changed_at),
        created_at=_dt(row.created_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        account_id=row.account_id,
        token_ref=row.token_ref,
        device=row.device,
        ip=row.ip,
        created_at=_dt(row.created_at),
        last_activity=_dt(row.last_activity),
    )
