"""
API request and response models for the Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
analytics/models.py, which own the internal domain representation. The
from_* factory methods below do the mapping, so route handlers stay thin.

Separation of concerns: auth/ and analytics/ models = domain truth;
api/ models = API contract.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from analytics.models import AnalyticsReport, LoginEvent, SecurityInsights
from auth.models import Account, Session

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is the mail server's problem; this only rejects obvious garbage.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only reads the first 72 bytes; 128 chars caps request size.
PASSWORD_MAX = 128


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    owner = "owner"
    student = "student"
    admin = "admin"


class RegisterRoleEnum(str, Enum):
    """Roles a visitor may choose at sign-up. admin is provisioned via the CLI."""

    user = "user"
    owner = "owner"
    student = "student"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    role: RegisterRoleEnum = RegisterRoleEnum.user


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    user_type and remember_me also accept the camelCase names older clients send.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    user_type: Optional[RoleEnum] = Field(default=None, validation_alias=AliasChoices("user_type", "userType"))
    remember_me: bool = Field(default=False, validation_alias=AliasChoices("remember_me", "rememberMe"))


class RefreshRequest(BaseModel):
    """Optional body for POST /api/v1/auth/refresh. The Authorization header wins."""

    token: Optional[str] = Field(default=None, max_length=4096)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetTokenRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=4096)
    new_password: str = Field(
        min_length=1,
        max_length=PASSWORD_MAX,
        validation_alias=AliasChoices("new_password", "newPassword", "password"),
    )


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(
        min_length=1, max_length=PASSWORD_MAX, validation_alias=AliasChoices("current_password", "currentPassword")
    )
    new_password: str = Field(
        min_length=1, max_length=PASSWORD_MAX, validation_alias=AliasChoices("new_password", "newPassword")
    )


# ---------------------------------------------------------------------------
# Response models -- accounts and tokens
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Never includes hashes, counters or reset fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: Account) -> UserResponse:
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            is_active=account.is_active,
            last_login=account.last_login,
            created_at=account.created_at,
        )


class LoginResponse(BaseModel):
    """Response for POST /login (200) and POST /register (201)."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    remember_me: bool = False
    redirect_to: str
    session_id: str
    user: UserResponse


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class VerifyResetResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool = True
    email: str


# ---------------------------------------------------------------------------
# Response models -- sessions
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    device: str
    ip: str
    created_at: datetime
    last_activity: datetime
    is_current: bool

    @classmethod
    def from_session(cls, session: Session, is_current: bool) -> SessionInfo:
        return cls(
            id=session.id,
            device=session.device,
            ip=session.ip,
            created_at=session.created_at,
            last_activity=session.last_activity,
            is_current=is_current,
        )


class SessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    sessions: list[SessionInfo]
    total: int


class RevokeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    revoked: int


# ---------------------------------------------------------------------------
# Response models -- analytics and insights
# ---------------------------------------------------------------------------


class LoginStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str
    count: int
    last_event: Optional[datetime] = None


class DailyCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str  # YYYY-MM-DD (UTC)
    success: int = 0
    failed: int = 0
    other: int = 0


class LocationBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str
    count: int
    last_seen: Optional[datetime] = None


class DeviceBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    browser: str
    os: str
    is_mobile: bool
    count: int
    last_seen: Optional[datetime] = None


class LoginEventResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    event_type: str
    ip: str
    user_agent: str
    location: str
    risk_score: int
    is_suspicious: bool
    details: dict
    timestamp: datetime

    @classmethod
    def from_event(cls, event: LoginEvent) -> LoginEventResponse:
        return cls(
            id=event.id,
            event_type=event.kind,
            ip=event.ip,
            user_agent=event.user_agent,
            location=event.location,
            risk_score=event.risk_score,
            is_suspicious=event.is_suspicious,
            details=event.details,
            timestamp=event.timestamp,
        )


class AnalyticsResponse(BaseModel):
    """Response for GET /api/v1/auth/analytics."""

    model_config = ConfigDict(frozen=True)

    period_days: int
    login_stats: list[LoginStat]
    daily_counts: list[DailyCount]
    geographic: list[LocationBucket]
    devices: list[DeviceBucket]
    recent_suspicious: list[LoginEventResponse]

    @classmethod
    def from_report(cls, report: AnalyticsReport) -> AnalyticsResponse:
        return cls(
            period_days=report.period_days,
            login_stats=[LoginStat(**row) for row in report.login_stats],
            daily_counts=[DailyCount(**row) for row in report.daily_counts],
            geographic=[LocationBucket(**row) for row in report.geographic],
            devices=[DeviceBucket(**row) for row in report.devices],
            recent_suspicious=[LoginEventResponse.from_event(e) for e in report.recent_suspicious],
        )


class SecurityInsightsResponse(BaseModel):
    """Response for GET /api/v1/auth/security-insights."""

    model_config = ConfigDict(frozen=True)

    security_score: int = Field(ge=0, le=100)
    failed_attempts: int
    successful_logins: int
    unique_ips: int
    unique_devices: int
    recommendations: list[str]
    last_login: Optional[datetime] = None
    account_age_days: int

    @classmethod
    def from_insights(cls, insights: SecurityInsights) -> SecurityInsightsResponse:
        return cls(
            security_score=insights.security_score,
            failed_attempts=insights.failed_attempts,
            successful_logins=insights.successful_logins,
            unique_ips=insights.unique_ips,
            unique_devices=insights.unique_devices,
            recommendations=list(insights.recommendations),
            last_login=insights.last_login,
            account_age_days=insights.account_age_days,
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    extra="allow" carries error context (remaining_minutes, actual_role,
    remaining_attempts, fields) through to the JSON body.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
