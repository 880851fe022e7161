"""
analytics/models.py -- Domain dataclasses for the login analytics log.

These are pure data containers with zero logic. Aggregation lives in
analytics/store.py; scoring lives in analytics/risk.py.

Separation of concerns: analytics/ is the sign-in history, auth/ is the
identity truth. analytics/ never imports auth/ -- the orchestrator in
auth/service.py passes account ids and raw request metadata in.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class EventKind(str, Enum):
    """Closed set of login event kinds.

    `other` covers attempts that never reached credential verification
    (e.g. rejected while locked). The specific action goes in details["reason"].
    """

    success = "success"
    failed = "failed"
    other = "other"


@dataclass
class LoginEvent:
    """One append-only entry in the analytics log.

    location, browser, os and is_mobile are derived by the store at append
    time (see analytics/classify.py); callers leave them empty.

    id and timestamp are None before the record is written to the database.
    """

    account_id: int
    kind: str  # one of EventKind
    ip: str
    user_agent: str
    risk_score: int = 0
    is_suspicious: bool = False
    details: dict = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    location: str = ""
    browser: str = ""
    os: str = ""
    is_mobile: bool = False
    id: Optional[int] = None


@dataclass(frozen=True)
class RiskAssessment:
    """Result of scoring one sign-in. risk_score is always within 0-100."""

    risk_score: int
    is_suspicious: bool
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SecurityInsights:
    """24h account health report.

    security_score -- 100 minus penalties, never below 0
    recommendations -- one human-readable line per penalty that fired
    """

    security_score: int
    failed_attempts: int
    successful_logins: int
    unique_ips: int
    unique_devices: int
    recommendations: list[str] = field(default_factory=list)
    last_login: Optional[datetime] = None
    account_age_days: int = 0


@dataclass(frozen=True)
class AnalyticsReport:
    """Aggregate sign-in report for one account over period_days.

    recent_suspicious uses its own, shorter window (7 days by default).
    """

    period_days: int
    login_stats: list[dict] = field(default_factory=list)
    daily_counts: list[dict] = field(default_factory=list)
    geographic: list[dict] = field(default_factory=list)
    devices: list[dict] = field(default_factory=list)
    recent_suspicious: list[LoginEvent] = field(default_factory=list)
