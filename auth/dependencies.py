"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Bearer tokens only: Authorization: Bearer <token>. There is no cookie or
API-key path; every client is an API client.

get_principal() resolves the header into a Principal (account + raw token +
claims) through AuthService.authenticate(). Any failure -- missing header,
bad signature, expired, wrong token type, unknown or inactive account --
surfaces as the same InvalidOrExpiredToken (401).

require_roles(*roles) is the single authorization check. Routes declare the
role set they need instead of branching on account.role inline:

    @router.post("/admin/accounts/{account_id}/unlock")
    async def unlock(principal: Principal = Depends(require_roles("admin"))): ...

Layer rule: no imports from api/, analytics/, or notify/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Request

from auth.errors import Forbidden, InvalidOrExpiredToken
from auth.models import Account, TokenClaims


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of one request."""

    account: Account
    token: str
    claims: TokenClaims


def bearer_token(request: Request) -> Optional[str]:
    """Return the raw bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> Principal:
    """Require a valid bearer token. Raises InvalidOrExpiredToken (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise InvalidOrExpiredToken("Authentication required.")
    account, claims = request.app.state.auth_service.authenticate(token)
    return Principal(account=account, token=token, claims=claims)


def require_roles(*roles: str) -> Callable[..., Principal]:
    """Build a dependency that admits only accounts whose role is in `roles`.

    401 if unauthenticated, 403 (Forbidden) if authenticated with another role.
    """
    allowed = frozenset(getattr(r, "value", r) for r in roles)

    def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.account.role not in allowed:
            raise Forbidden()
        return principal

    return dependency
