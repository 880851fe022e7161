"""
api/routes/v1/sessions.py -- Session management for the signed-in account.

Routes:
  GET    /api/v1/auth/sessions            -- sessions active within the idle window
  DELETE /api/v1/auth/sessions/{id}       -- revoke one session
  DELETE /api/v1/auth/sessions            -- revoke every session except the current one
  PUT    /api/v1/auth/sessions/activity   -- stamp last_activity on the current session

"Current" means the session created for the bearer token on this request.

IDOR guard: every store call is scoped by the caller's account id, so a
session id belonging to another account is simply "not found".
"""

from fastapi import APIRouter, Depends, Path, Request

from api.models import MessageResponse, RevokeResponse, SessionInfo, SessionListResponse
from auth.dependencies import Principal, get_principal
from auth.service import AuthService

# Auth policy:
# - every route: requires auth (get_principal)
router = APIRouter()


@router.get("/auth/sessions", response_model=SessionListResponse)
def list_sessions(request: Request, principal: Principal = Depends(get_principal)) -> SessionListResponse:
    """Active sessions, oldest first, each flagged is_current for the caller's token."""
    service: AuthService = request.app.state.auth_service
    sessions = [
        SessionInfo.from_session(s, current) for s, current in service.list_sessions(principal.account, principal.token)
    ]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.put("/auth/sessions/activity", response_model=MessageResponse)
def touch_session(request: Request, principal: Principal = Depends(get_principal)) -> MessageResponse:
    service: AuthService = request.app.state.auth_service
    service.touch_session(principal.account, principal.token)
    return MessageResponse(message="Session activity updated.")


@router.delete("/auth/sessions/{session_id}", response_model=RevokeResponse)
def revoke_session(
    request: Request,
    session_id: str = Path(min_length=1, max_length=64),
    principal: Principal = Depends(get_principal),
) -> RevokeResponse:
    """404 not_found if the session does not exist or belongs to another account."""
    service: AuthService = request.app.state.auth_service
    service.revoke_session(principal.account, session_id)
    return RevokeResponse(message="Session revoked.", revoked=1)


@router.delete("/auth/sessions", response_model=RevokeResponse)
def revoke_other_sessions(request: Request, principal: Principal = Depends(get_principal)) -> RevokeResponse:
    service: AuthService = request.app.state.auth_service
    revoked = service.revoke_other_sessions(principal.account, principal.token)
    return RevokeResponse(message="All other sessions revoked.", revoked=revoked)
