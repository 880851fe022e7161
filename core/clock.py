"""
core/clock.py -- The single source of "now" for the auth and analytics layers.

Every time-dependent component takes a `clock` callable that defaults to
utcnow(). Tests pass a controllable clock instead, so lock expiry, session
idleness and token expiry can be exercised without sleeping.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
