"""
api/routes/v1/security.py -- Login analytics, security insights and admin unlock.

Routes:
  GET  /api/v1/auth/analytics?days=N                  -- aggregate sign-in report
  GET  /api/v1/auth/security-insights                 -- 24h score + recommendations
  POST /api/v1/auth/admin/accounts/{id}/unlock        -- clear a lockout (admin only)

This is a read-only aggregate surface apart from the unlock action. Reports
are always scoped to the caller's own account.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request

from api.models import AnalyticsResponse, SecurityInsightsResponse, UserResponse
from auth.dependencies import Principal, get_principal, require_roles
from auth.models import Role
from auth.service import AuthService

# Auth policy:
# - GET  /auth/analytics, /auth/security-insights: requires auth (get_principal)
# - POST /auth/admin/accounts/{id}/unlock:         requires admin (require_roles)
router = APIRouter()


@router.get("/auth/analytics", response_model=AnalyticsResponse)
def analytics(
    request: Request,
    days: Optional[int] = Query(default=None, ge=1, le=365, description="Report window in days (default 30)."),
    principal: Principal = Depends(get_principal),
) -> AnalyticsResponse:
    """Return per-kind stats, daily counts, location and device buckets,
    and the 10 most recent suspicious events of the last 7 days.
    """
    service: AuthService = request.app.state.auth_service
    return AnalyticsResponse.from_report(service.analytics_report(principal.account, days))


@router.get("/auth/security-insights", response_model=SecurityInsightsResponse)
def security_insights(request: Request, principal: Principal = Depends(get_principal)) -> SecurityInsightsResponse:
    service: AuthService = request.app.state.auth_service
    return SecurityInsightsResponse.from_insights(service.security_insights(principal.account))


@router.post("/auth/admin/accounts/{account_id}/unlock", response_model=UserResponse)
def unlock_account(
    request: Request,
    account_id: int = Path(ge=1),
    principal: Principal = Depends(require_roles(Role.admin)),
) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    return UserResponse.from_account(service.unlock(account_id))
