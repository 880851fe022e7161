"""
analytics/risk.py -- RiskScorer: heuristic 0-100 score for a sign-in.

Pattern: a flat list of independent rules, each adding a fixed weight and a
reason string. The sum is capped at 100; a login is suspicious at or above the threshold.

Rules, evaluated over the lookback window (default 24h) of this account's
events:

  +30  >= 5 failed attempts in the window
  +20  address not seen in the window (only when there is history)
  +15  device descriptor not seen in the window (only when there is history)
  +25  >= 3 successful logins in the last hour
  +10  login hour more than 6h from the account's average success hour
       (circular mean, distance measured around the clock)
  +20  distinct addresses, counting this one, above max_addresses
  +15  distinct devices, counting this one, above max_devices

security_insights() is the account-facing 24h health report: 100 minus 10 per
failure, minus 20 for many addresses, minus 15 for many devices, never below 0.

Layer rule: analytics/ imports only stdlib, third-party libraries and core/.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from analytics.models import EventKind, LoginEvent, RiskAssessment, SecurityInsights
from core.clock import utcnow

if TYPE_CHECKING:
    from analytics.store import AnalyticsLog

FAILED_ATTEMPTS_THRESHOLD = 5
RAPID_LOGIN_THRESHOLD = 3
UNUSUAL_HOUR_DELTA = 6

RECOMMEND_2FA = "Consider enabling two-factor authentication"
RECOMMEND_REVIEW_IPS = "Multiple IP addresses detected - review recent logins"
RECOMMEND_REVIEW_DEVICES = "Multiple devices detected - consider reviewing active sessions"
RECOMMEND_LOW_SCORE = "Security score is low - review account security settings"


def security_score(failed: int, unique_ips: int, unique_devices: int, max_ips: int = 3, max_devices: int = 2) -> int:
    """Pure scoring function behind security_insights(). Always within [0, 100]."""
    score = 100 - 10 * max(0, failed)
    if unique_ips > max_ips:
        score -= 20
    if unique_devices > max_devices:
        score -= 15
    return max(0, score)


def _hour_distance(a: float, b: float) -> float:
    """Distance between two hours of the day on a 24h clock face."""
    d = abs(a - b) % 24
    return min(d, 24 - d)


class RiskScorer:
    def __init__(
        self,
        log: AnalyticsLog,
        lookback: timedelta = timedelta(hours=24),
        max_addresses: int = 3,
        max_devices: int = 2,
        suspicious_threshold: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log = log
        self.lookback = lookback
        self.max_addresses = max_addresses
        self.max_devices = max_devices
        self.suspicious_threshold = suspicious_threshold
        self._clock = clock

    def score(self, account_id: int, ip: str, user_agent: str) -> RiskAssessment:
        """Score a sign-in from (ip, user_agent) against this account's recent history.

        Call before appending the event being scored, so "unseen" means unseen
        before this login.
        """
        now = self._clock()
        events = self._log.query(account_id, now - self.lookback)
        score = 0
        reasons: list[str] = []

        failed = [e for e in events if e.kind == EventKind.failed.value]
        if len(failed) >= FAILED_ATTEMPTS_THRESHOLD:
            score += 30
            reasons.append("Multiple failed login attempts")

        seen_ips = {e.ip for e in events}
        seen_devices = {e.user_agent for e in events}
        if events and ip not in seen_ips:
            score += 20
            reasons.append("Login from new IP address")
        if events and user_agent not in seen_devices:
            score += 15
            reasons.append("Login from new device")

        successes = [e for e in events if e.kind == EventKind.success.value]
        if len([e for e in successes if e.timestamp and e.timestamp > now - timedelta(hours=1)]) >= RAPID_LOGIN_THRESHOLD:
            score += 25
            reasons.append("Rapid successive logins")

        average_hour = _average_hour(successes)
        if average_hour is not None and _hour_distance(now.hour, average_hour) > UNUSUAL_HOUR_DELTA:
            score += 10
            reasons.append("Unusual login time")

        if len(seen_ips | {ip}) > self.max_addresses:
            score += 20
            reasons.append("Logins from many network addresses")
        if len(seen_devices | {user_agent}) > self.max_devices:
            score += 15
            reasons.append("Logins from many devices")

        score = min(100, score)
        return RiskAssessment(risk_score=score, is_suspicious=score >= self.suspicious_threshold, reasons=reasons)

    def security_insights(
        self,
        account_id: int,
        window: timedelta = timedelta(hours=24),
        last_login: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> SecurityInsights:
        now = self._clock()
        events = self._log.query(account_id, now - window)
        failed = sum(1 for e in events if e.kind == EventKind.failed.value)
        successful = sum(1 for e in events if e.kind == EventKind.success.value)
        unique_ips = len({e.ip for e in events})
        unique_devices = len({e.user_agent for e in events})

        score = security_score(failed, unique_ips, unique_devices, self.max_addresses, self.max_devices)
        recommendations: list[str] = []
        if failed > 0:
            recommendations.append(RECOMMEND_2FA)
        if unique_ips > self.max_addresses:
            recommendations.append(RECOMMEND_REVIEW_IPS)
        if unique_devices > self.max_devices:
            recommendations.append(RECOMMEND_REVIEW_DEVICES)
        if score < 70:
            recommendations.append(RECOMMEND_LOW_SCORE)

        return SecurityInsights(
            security_score=score,
            failed_attempts=failed,
            successful_logins=successful,
            unique_ips=unique_ips,
            unique_devices=unique_devices,
            recommendations=recommendations,
            last_login=last_login,
            account_age_days=(now - created_at).days if created_at else 0,
        )


def _average_hour(events: list[LoginEvent]) -> Optional[float]:
    """Circular mean of the event hours, so 23:00 and 01:00 average to 00:00.

    None when there are no events or the hours cancel out (06:00 and 18:00).
    """
    angles = [e.timestamp.hour * math.tau / 24 for e in events if e.timestamp is not None]
    x = sum(math.cos(a) for a in angles)
    y = sum(math.sin(a) for a in angles)
    if not angles or math.hypot(x, y) < 1e-9:
        return None
    return (math.atan2(y, x) * 24 / math.tau) % 24
