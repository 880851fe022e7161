"""
api/routes/v1/auth.py -- Account, sign-in, token and password endpoints.

Routes:
  POST /api/v1/auth/register            -- create account; 201 with token + user
  POST /api/v1/auth/login               -- password login; 401/423/403/200
  POST /api/v1/auth/logout              -- revoke the current session (requires auth)
  GET  /api/v1/auth/me                  -- current account (requires auth)
  POST /api/v1/auth/refresh             -- re-issue a still-valid token, default TTL
  POST /api/v1/auth/forgot-password     -- always 200, generic message
  POST /api/v1/auth/verify-reset-token  -- 200 with email, or 400
  POST /api/v1/auth/reset-password      -- 200, or 400
  POST /api/v1/auth/change-password     -- verify current, reject reuse (requires auth)

Errors are raised as auth.errors.AuthError subclasses and rendered by the
handler in api/main.py, so handlers here contain no status-code branching.

Security:
  [H2] POST /login, /forgot-password and /reset-password are rate-limited per IP.
  [C1] AuthService.login() provides timing equalization for unknown emails.
  [M5] Cache-Control: no-store on every response that carries a credential.
  Non-enumeration: /forgot-password returns the same body whether or not the
       email is registered.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, RESET_LIMIT, limiter
from api.models import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenRequest,
    UserResponse,
    VerifyResetResponse,
)
from auth.dependencies import Principal, bearer_token, get_principal
from auth.errors import InvalidOrExpiredToken
from auth.service import AuthService, LoginResult

# Auth policy:
# - POST /auth/register, /auth/login:                      public
# - POST /auth/refresh:                                    token in header or body
# - POST /auth/forgot-password, /verify-reset-token,
#        /reset-password:                                  public (reset token in body)
# - POST /auth/logout, GET /auth/me, POST /change-password: requires auth (get_principal)
router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def client_meta(request: Request) -> tuple[str, str]:
    """Return (ip, user_agent) for analytics and session records."""
    ip = request.client.host if request.client else "unknown"
    return ip, request.headers.get("user-agent", "Unknown")


def no_store(content: dict, status_code: int = 200) -> JSONResponse:
    """JSONResponse that caches nowhere [M5]."""
    resp = JSONResponse(status_code=status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    return resp


def _login_body(result: LoginResult) -> dict:
    return LoginResponse(
        token=result.token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=result.expires_in,
        remember_me=result.remember_me,
        redirect_to=result.redirect_to,
        session_id=result.session.id,
        user=UserResponse.from_account(result.account),
    ).model_dump(mode="json")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and sign it in. 409 if the email is already registered."""
    service: AuthService = request.app.state.auth_service
    ip, user_agent = client_meta(request)
    result = service.register(
        body.username, body.email, body.password, body.role.value, ip=ip, user_agent=user_agent
    )
    return no_store(_login_body(result), status_code=201)


@limiter.limit(LOGIN_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    401 invalid_credentials (with remaining_attempts once the email is known),
    423 account_locked (with remaining_minutes), 403 role_mismatch (with
    actual_role) when user_type does not match the account.
    """
    service: AuthService = request.app.state.auth_service
    ip, user_agent = client_meta(request)
    result = service.login(
        body.email,
        body.password,
        ip=ip,
        user_agent=user_agent,
        user_type=body.user_type.value if body.user_type else None,
        remember_me=body.remember_me,
    )
    return no_store(_login_body(result))


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Re-issue a still-valid token with the default TTL.

    Every failure is the same 401 invalid_token.
    """
    token = bearer_token(request) or (body.token if body else None)
    if not token:
        raise InvalidOrExpiredToken()
    service: AuthService = request.app.state.auth_service
    result = service.refresh(token)
    return no_store(RefreshResponse(token=result.token, expires_in=result.expires_in).model_dump(mode="json"))


@limiter.limit(RESET_LIMIT)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Start a password reset. The response never reveals whether the email exists."""
    service: AuthService = request.app.state.auth_service
    service.request_password_reset(body.email)
    return no_store(MessageResponse(message=FORGOT_PASSWORD_MESSAGE).model_dump())


@router.post("/auth/verify-reset-token", response_model=VerifyResetResponse)
def verify_reset_token(request: Request, body: ResetTokenRequest) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    email = service.verify_reset_token(body.token)
    return no_store(VerifyResetResponse(valid=True, email=email).model_dump())


@limiter.limit(RESET_LIMIT)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    service.complete_password_reset(body.token, body.new_password)
    return no_store(MessageResponse(message="Password has been reset. You can now sign in.").model_dump())


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_principal)) -> MessageResponse:
    """Revoke the session behind the presented token."""
    service: AuthService = request.app.state.auth_service
    ip, user_agent = client_meta(request)
    service.logout(principal.account, principal.token, ip=ip, user_agent=user_agent)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=UserResponse)
def me(principal: Principal = Depends(get_principal)) -> UserResponse:
    return UserResponse.from_account(principal.account)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_principal),
) -> JSONResponse:
    """400 invalid_password if the current password is wrong; 400 validation_error on reuse."""
    service: AuthService = request.app.state.auth_service
    service.change_password(principal.account, body.current_password, body.new_password)
    return no_store(MessageResponse(message="Password changed.").model_dump())
