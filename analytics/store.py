"""
analytics/store.py -- SQLAlchemy-backed append-only log of login events.

Uses SQLAlchemy Core (not ORM) so the dataclasses in analytics/models.py stay
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. AnalyticsLog is the repository; _row_to_event
is the mapper. The risk scorer and the report routes never touch SQL directly.

Append-only: there is no update or delete method. Rows are written once by
append() and only ever read afterwards.

Derived columns (location, browser, os, is_mobile) are computed once at append
time from the raw address and User-Agent, so every report groups on stored
values instead of re-parsing strings per query.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    log = AnalyticsLog()                               # SQLite default
    log = AnalyticsLog("postgresql://user:pw@host/db") # PostgreSQL
    log.append(LoginEvent(account_id=1, kind="success", ip="203.0.113.9", user_agent="curl/8.0"))
    events = log.query(1, since)
    log.close()
"""

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from analytics.classify import address_bucket, parse_client
from analytics.models import EventKind, LoginEvent
from core.clock import utcnow

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'gatehouse_analytics.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_events = Table(
    "login_events",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("kind", String(20), nullable=False),
    Column("ip", String(64), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("location", String(64), nullable=False),
    Column("browser", String(32), nullable=False),
    Column("os", String(32), nullable=False),
    Column("is_mobile", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("risk_score", Integer, nullable=False, server_default="0"),
    Column("is_suspicious", Integer, nullable=False, server_default="0"),
    Column("details", Text),  # JSON object serialized as text
    Column("timestamp", Float, nullable=False),  # UTC epoch seconds
    Index("ix_login_events_account_time", "account_id", "timestamp"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so report reads never block login writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _dt(value: Optional[float]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value is not None else None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AnalyticsLog:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def append(self, login_event: LoginEvent) -> int:
        """Write one event and return its ID. Derived columns are filled in here."""
        client = parse_client(login_event.user_agent)
        timestamp = login_event.timestamp or utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                _events.insert().values(
                    account_id=login_event.account_id,
                    kind=EventKind(login_event.kind).value,
                    ip=login_event.ip,
                    user_agent=login_event.user_agent,
                    location=address_bucket(login_event.ip),
                    browser=client.browser,
                    os=client.os,
                    is_mobile=1 if client.is_mobile else 0,
                    risk_score=max(0, min(100, int(login_event.risk_score))),
                    is_suspicious=1 if login_event.is_suspicious else 0,
                    details=json.dumps(login_event.details) if login_event.details else None,
                    timestamp=timestamp.timestamp(),
                )
            )
        return result.inserted_primary_key[0]

    def query(self, account_id: int, since: datetime, kind: Optional[str] = None) -> list[LoginEvent]:
        """Events for one account at or after `since`, newest first."""
        stmt = _events.select().where(
            (_events.c.account_id == account_id) & (_events.c.timestamp >= since.timestamp())
        )
        if kind is not None:
            stmt = stmt.where(_events.c.kind == kind)
        stmt = stmt.order_by(_events.c.timestamp.desc(), _events.c.id.desc())
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_event(r) for r in rows]

    # ------------------------------------------------------------------
    # Aggregate reports
    # ------------------------------------------------------------------

    def login_stats(self, account_id: int, since: datetime) -> list[dict]:
        """Per-kind event count and most recent event time."""
        stmt = (
            select(
                _events.c.kind,
                func.count().label("count"),
                func.max(_events.c.timestamp).label("last_event"),
            )
            .where((_events.c.account_id == account_id) & (_events.c.timestamp >= since.timestamp()))
            .group_by(_events.c.kind)
            .order_by(_events.c.kind)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [{"event_type": r.kind, "count": r.count, "last_event": _dt(r.last_event)} for r in rows]

    def daily_counts(self, account_id: int, since: datetime) -> list[dict]:
        """Per-day (UTC) counts of each event kind, oldest day first.

        Bucketed in Python rather than SQL: date functions differ between
        SQLite and PostgreSQL, and the window is bounded by `since`.
        """
        stmt = select(_events.c.kind, _events.c.timestamp).where(
            (_events.c.account_id == account_id) & (_events.c.timestamp >= since.timestamp())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        counts: Counter = Counter()
        for row in rows:
            counts[(_dt(row.timestamp).date(), row.kind)] += 1
        days: dict = {}
        for (day, kind), n in sorted(counts.items()):
            bucket = days.setdefault(day, {"date": day.isoformat(), "success": 0, "failed": 0, "other": 0})
            bucket[kind] = bucket.get(kind, 0) + n
        return list(days.values())

    def geographic_breakdown(self, account_id: int, since: datetime) -> list[dict]:
        """Event counts per address bucket, busiest first."""
        stmt = (
            select(
                _events.c.location,
                func.count().label("count"),
                func.max(_events.c.timestamp).label("last_seen"),
            )
            .where((_events.c.account_id == account_id) & (_events.c.timestamp >= since.timestamp()))
            .group_by(_events.c.location)
            .order_by(func.count().desc(), _events.c.location)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [{"location": r.location, "count": r.count, "last_seen": _dt(r.last_seen)} for r in rows]

    def device_breakdown(self, account_id: int, since: datetime) -> list[dict]:
        """Event counts per (browser, os, is_mobile), busiest first."""
        stmt = (
            select(
                _events.c.browser,
                _events.c.os,
                _events.c.is_mobile,
                func.count().label("count"),
                func.max(_events.c.timestamp).label("last_seen"),
            )
            .where((_events.c.account_id == account_id) & (_events.c.timestamp >= since.timestamp()))
            .group_by(_events.c.browser, _events.c.os, _events.c.is_mobile)
            .order_by(func.count().desc(), _events.c.browser, _events.c.os)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [
            {
                "browser": r.browser,
                "os": r.os,
                "is_mobile": bool(r.is_mobile),
                "count": r.count,
                "last_seen": _dt(r.last_seen),
            }
            for r in rows
        ]

    def recent_suspicious(self, account_id: int, since: datetime, limit: int = 10) -> list[LoginEvent]:
        """Most recent events flagged suspicious, newest first."""
        stmt = (
            _events.select()
            .where(
                (_events.c.account_id == account_id)
                & (_events.c.is_suspicious == 1)
                & (_events.c.timestamp >= since.timestamp())
            )
            .order_by(_events.c.timestamp.desc(), _events.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_event(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_event(row) -> LoginEvent:
    return LoginEvent(
        id=row.id,
        account_id=row.account_id,
        kind=row.kind,
        ip=row.ip,
        user_agent=row.user_agent,
        location=row.location,
        browser=row.browser,
        os=row.os,
        is_mobile=bool(row.is_mobile),
        risk_score=row.risk_score,
        is_suspicious=bool(row.is_suspicious),
        details=json.loads(row.details) if row.details else {},
        timestamp=_dt(row.timestamp),
    )
