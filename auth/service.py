"""
auth/service.py -- AuthService: orchestration of the sign-in subsystem.

Pattern: Facade. Route handlers call one AuthService method per endpoint; the
service composes the single-purpose components and owns the ordering rules
between them. Components never call each other sideways.

  CredentialVerifier  password checks, history
  LockoutPolicy       failed-attempt counter and lock
  SessionRegistry     bounded per-account session list
  TokenIssuer         signed bearer and reset tokens
  ResetTokenFlow      forgot/verify/complete password reset
  RiskScorer          heuristic score over AnalyticsLog history
  AnalyticsLog        append-only login events (injected, not looked up)
  EmailNotifier       welcome and reset mail (injected, optional)

Login ordering:
  1. unknown or inactive email -> dummy bcrypt run, InvalidCredentials
  2. locked -> AccountLocked, password is NOT checked
  3. wrong password -> counter++ (maybe lock), failed event, InvalidCredentials
  4. user_type given and != role -> RoleMismatch (counter untouched)
  5. token minted, then lockout reset + last_login + session append in ONE
     store transaction, conditional on the account still being unlocked
     (a lock set concurrently during step 3 -> AccountLocked)
  6. risk scored against prior history, success event appended

Best-effort side effects (analytics append, email) are wrapped: a failure is
logged and the primary operation still succeeds.

Layer rule: this is the one module in auth/ that imports analytics/ and
notify/. Nothing in auth/ imports api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.exc import IntegrityError

from analytics.models import AnalyticsReport, EventKind, LoginEvent, RiskAssessment, SecurityInsights
from analytics.risk import RiskScorer
from auth.credentials import CredentialVerifier
from auth.errors import (
    AccountExists,
    AccountLocked,
    InvalidCredentials,
    InvalidOrExpiredToken,
    InvalidPassword,
    NotFound,
    RoleMismatch,
    ValidationError,
)
from auth.lockout import LockoutPolicy
from auth.models import Account, Role, Session, TokenClaims
from auth.reset import ResetTokenFlow
from auth.sessions import SessionRegistry
from auth.tokens import TokenIssuer
from core.clock import utcnow

if TYPE_CHECKING:
    from analytics.store import AnalyticsLog
    from auth.store import AccountStore
    from core.config import Settings
    from notify.email import EmailNotifier

logger = logging.getLogger("gatehouse.auth")

# Roles a visitor may pick at registration. admin is provisioned via the CLI.
SELF_SERVICE_ROLES = frozenset({Role.user.value, Role.owner.value, Role.student.value})

_REDIRECTS: dict[str, str] = {
    Role.student.value: "/student-dashboard",
    Role.owner.value: "/owner-dashboard",
}
_DEFAULT_REDIRECT = "/dashboard"


def redirect_for(role: str) -> str:
    return _REDIRECTS.get(role, _DEFAULT_REDIRECT)


@dataclass(frozen=True)
class LoginResult:
    token: str
    account: Account
    session: Session
    expires_in: int  # seconds
    remember_me: bool = False
    redirect_to: str = _DEFAULT_REDIRECT
    risk: Optional[RiskAssessment] = None


@dataclass(frozen=True)
class RefreshResult:
    token: str
    expires_in: int  # seconds


class AuthService:
    """Facade over the auth components. Build it with from_settings() in production."""

    def __init__(
        self,
        store: AccountStore,
        analytics: AnalyticsLog,
        *,
        credentials: CredentialVerifier,
        lockout: LockoutPolicy,
        sessions: SessionRegistry,
        tokens: TokenIssuer,
        resets: ResetTokenFlow,
        risk: RiskScorer,
        notifier: Optional[EmailNotifier] = None,
        strict_refresh: bool = False,
        password_min_length: int = 6,
        report_days: int = 30,
        suspicious_days: int = 7,
        insights_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.analytics = analytics
        self.credentials = credentials
        self.lockout = lockout
        self.sessions = sessions
        self.tokens = tokens
        self.resets = resets
        self.risk = risk
        self.notifier = notifier
        self.strict_refresh = strict_refresh
        self.password_min_length = password_min_length
        self.report_days = report_days
        self.suspicious_days = suspicious_days
        self.insights_window = insights_window
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: AccountStore,
        analytics: AnalyticsLog,
        notifier: Optional[EmailNotifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> AuthService:
        """Wire every component from one Settings object.

        Raises ConfigError (via TokenIssuer) when SECRET_KEY is missing, so a
        misconfigured process fails here, at startup.
        """
        tokens = TokenIssuer(
            settings.secret_key,
            default_ttl=timedelta(seconds=settings.token_expire_seconds),
            extended_ttl=timedelta(seconds=settings.remember_me_expire_seconds),
            clock=clock,
        )
        credentials = CredentialVerifier(
            store, rounds=settings.bcrypt_rounds, history_depth=settings.password_history_depth
        )
        return cls(
            store,
            analytics,
            credentials=credentials,
            lockout=LockoutPolicy(
                store,
                max_attempts=settings.max_login_attempts,
                lock_duration=timedelta(minutes=settings.lockout_minutes),
                clock=clock,
            ),
            sessions=SessionRegistry(
                store,
                max_sessions=settings.max_sessions,
                idle_window=timedelta(hours=settings.session_idle_hours),
                clock=clock,
            ),
            tokens=tokens,
            resets=ResetTokenFlow(
                store,
                tokens,
                credentials,
                ttl=timedelta(seconds=settings.reset_token_expire_seconds),
                clock=clock,
            ),
            risk=RiskScorer(
                analytics,
                lookback=timedelta(hours=settings.risk_lookback_hours),
                max_addresses=settings.risk_max_addresses,
                max_devices=settings.risk_max_devices,
                suspicious_threshold=settings.risk_suspicious_threshold,
                clock=clock,
            ),
            notifier=notifier,
            strict_refresh=settings.strict_refresh,
            password_min_length=settings.password_min_length,
            report_days=settings.analytics_default_days,
            suspicious_days=settings.suspicious_lookback_days,
            insights_window=timedelta(hours=settings.insights_window_hours),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Registration and sign-in
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: str = Role.user.value,
        *,
        ip: str,
        user_agent: str,
    ) -> LoginResult:
        if role not in SELF_SERVICE_ROLES:
            raise ValidationError({"role": f"Must be one of: {', '.join(sorted(SELF_SERVICE_ROLES))}."})
        self.check_password_policy(password, field="password")
        if self.store.get_by_email(email) is not None:
            raise AccountExists()
        account = Account(
            email=email.strip().lower(),
            username=username.strip(),
            role=role,
            hashed_password=self.credentials.hash(password),
        )
        try:
            account_id = self.store.create_account(account, now=self._clock())
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same email.
            raise AccountExists() from exc
        account = self.store.get_by_id(account_id)
        token = self.tokens.issue_for(account, self.tokens.default_ttl)
        session = self.sessions.add_session(account.id, token, user_agent, ip)
        logger.info("Account %s registered with role %s", account.id, account.role)

        if self.notifier is not None:
            self._best_effort("welcome email", self.notifier.send_welcome, account.email, account.username)
        return LoginResult(
            token=token,
            account=account,
            session=session,
            expires_in=int(self.tokens.default_ttl.total_seconds()),
            redirect_to=redirect_for(account.role),
        )

    def login(
        self,
        email: str,
        password: str,
        *,
        ip: str,
        user_agent: str,
        user_type: Optional[str] = None,
        remember_me: bool = False,
    ) -> LoginResult:
        account = self.store.get_by_email(email)
        if account is None or not account.is_active:
            self.credentials.verify_account(None, password)
            raise InvalidCredentials()

        locked, remaining = self.lockout.lock_state(account)
        if locked:
            self._record(account.id, EventKind.other, ip, user_agent, reason="account_locked")
            raise AccountLocked(remaining)

        if not self.credentials.verify_account(account, password):
            outcome = self.lockout.record_failure(account.id)
            attempts = outcome.attempts if outcome else account.login_attempts + 1
            self._record(
                account.id, EventKind.failed, ip, user_agent, reason="invalid_password", attempt_count=attempts
            )
            remaining_attempts = outcome.attempts_remaining if outcome else 0
            raise InvalidCredentials(remaining_attempts=remaining_attempts)

        if user_type and account.role != user_type:
            raise RoleMismatch(account.role)

        ttl = self.tokens.ttl_for(remember_me)
        token = self.tokens.issue_for(account, ttl)
        try:
            session = self.sessions.add_session(account.id, token, user_agent, ip, complete_login=True)
        except LookupError:
            # Locked (or removed) between the lock check above and this write.
            current = self.store.get_by_id(account.id)
            locked, remaining = self.lockout.lock_state(current) if current is not None else (False, 0)
            if not locked:
                raise InvalidCredentials()
            self._record(account.id, EventKind.other, ip, user_agent, reason="account_locked")
            raise AccountLocked(remaining)

        risk = self._score(account.id, ip, user_agent)
        self._record(
            account.id,
            EventKind.success,
            ip,
            user_agent,
            risk=risk,
            reason="login",
            session_id=session.id,
        )
        if risk is not None and risk.is_suspicious:
            logger.warning("Suspicious login for account %s (score %d)", account.id, risk.risk_score)

        return LoginResult(
            token=token,
            account=self.store.get_by_id(account.id) or account,
            session=session,
            expires_in=int(ttl.total_seconds()),
            remember_me=remember_me,
            redirect_to=redirect_for(account.role),
            risk=risk,
        )

    def authenticate(self, token: str) -> tuple[Account, TokenClaims]:
        """Resolve a bearer token to an active account. Raises InvalidOrExpiredToken."""
        claims = self.tokens.verify(token)
        account = self.store.get_by_id(claims.account_id)
        if account is None or not account.is_active:
            raise InvalidOrExpiredToken()
        return account, claims

    def logout(self, account: Account, token: str, *, ip: str = "", user_agent: str = "") -> bool:
        revoked = self.sessions.revoke_current(account.id, token)
        self._record(account.id, EventKind.other, ip, user_agent, reason="logout")
        return revoked

    def refresh(self, token: str) -> RefreshResult:
        """Re-issue a still-valid access token with the default TTL.

        The account must still exist and be active. Beyond that, refresh is
        stateless unless strict_refresh is on: then the token's session must
        still exist, and the session is carried over to the new token.
        """
        _, claims = self.authenticate(token)
        if self.strict_refresh and not self.sessions.contains(claims.account_id, token):
            raise InvalidOrExpiredToken()
        new_token = self.tokens.refresh(token)
        if self.strict_refresh:
            self.sessions.rebind(claims.account_id, token, new_token)
        return RefreshResult(token=new_token, expires_in=int(self.tokens.default_ttl.total_seconds()))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def check_password_policy(self, password: str, field: str = "new_password") -> None:
        if len(password) < self.password_min_length:
            raise ValidationError({field: f"Password must be at least {self.password_min_length} characters long."})

    def change_password(self, account: Account, current_password: str, new_password: str) -> None:
        if not self.credentials.verify_account(account, current_password):
            raise InvalidPassword()
        self.check_password_policy(new_password)
        if self.credentials.is_reused(account.id, new_password):
            raise ValidationError(
                {"new_password": f"Password must differ from your last {self.credentials.history_depth} passwords."}
            )
        self.store.change_password(
            account.id, self.credentials.hash(new_password), self._clock(), self.credentials.history_depth
        )
        logger.info("Password changed for account %s", account.id)

    def request_password_reset(self, email: str) -> None:
        """Start a reset for `email`. Returns nothing either way (no enumeration)."""
        issued = self.resets.request_reset(email)
        if issued is None or self.notifier is None:
            return
        account, token = issued
        self._best_effort("password reset email", self.notifier.send_password_reset, account.email, token)

    def verify_reset_token(self, token: str) -> str:
        return self.resets.verify_reset_token(token)

    def complete_password_reset(self, token: str, new_password: str) -> None:
        self.check_password_policy(new_password)
        self.resets.complete_reset(token, new_password)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self, account: Account, token: str) -> list[tuple[Session, bool]]:
        """Active sessions, oldest first, each paired with an is-current flag."""
        return [(s, self.sessions.is_current(s, token)) for s in self.sessions.list_active(account.id)]

    def revoke_session(self, account: Account, session_id: str) -> None:
        if not self.sessions.revoke(account.id, session_id):
            raise NotFound("Session not found.")

    def revoke_other_sessions(self, account: Account, token: str) -> int:
        return self.sessions.revoke_all_except_current(account.id, token)

    def touch_session(self, account: Account, token: str) -> None:
        if not self.sessions.touch(account.id, token):
            raise NotFound("Session not found.")

    # ------------------------------------------------------------------
    # Reports and administration
    # ------------------------------------------------------------------

    def analytics_report(self, account: Account, days: Optional[int] = None) -> AnalyticsReport:
        days = days or self.report_days
        now = self._clock()
        since = now - timedelta(days=days)
        return AnalyticsReport(
            period_days=days,
            login_stats=self.analytics.login_stats(account.id, since),
            daily_counts=self.analytics.daily_counts(account.id, since),
            geographic=self.analytics.geographic_breakdown(account.id, since),
            devices=self.analytics.device_breakdown(account.id, since),
            recent_suspicious=self.analytics.recent_suspicious(
                account.id, now - timedelta(days=self.suspicious_days), limit=10
            ),
        )

    def security_insights(self, account: Account) -> SecurityInsights:
        return self.risk.security_insights(
            account.id,
            window=self.insights_window,
            last_login=account.last_login,
            created_at=account.created_at,
        )

    def unlock(self, account_id: int) -> Account:
        """Clear the lockout on an account (admin action)."""
        if self.store.get_by_id(account_id) is None:
            raise NotFound("Account not found.")
        self.lockout.record_success(account_id)
        logger.info("Lockout cleared for account %s", account_id)
        return self.store.get_by_id(account_id)

    # ------------------------------------------------------------------
    # Best-effort helpers
    # ------------------------------------------------------------------

    def _score(self, account_id: int, ip: str, user_agent: str) -> Optional[RiskAssessment]:
        try:
            return self.risk.score(account_id, ip, user_agent)
        except Exception:
            logger.exception("Risk scoring failed for account %s", account_id)
            return None

    def _record(
        self,
        account_id: int,
        kind: EventKind,
        ip: str,
        user_agent: str,
        risk: Optional[RiskAssessment] = None,
        **details,
    ) -> None:
        if risk is not None and risk.reasons:
            details["risk_reasons"] = list(risk.reasons)
        event = LoginEvent(
            account_id=account_id,
            kind=kind.value,
            ip=ip,
            user_agent=user_agent,
            risk_score=risk.risk_score if risk else 0,
            is_suspicious=risk.is_suspicious if risk else False,
            details=details,
            timestamp=self._clock(),
        )
        self._best_effort("analytics append", self.analytics.append, event)

    @staticmethod
    def _best_effort(what: str, fn: Callable, *args) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("%s failed; continuing", what)
