"""
auth/tokens.py -- JWT issuance/verification and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       account id (sub), role, email, a random jti, iat, exp and a type claim.
       The type claim separates bearer tokens ("access") from reset tokens
       ("password_reset"); verify() rejects a token of the wrong type.
       Verification raises InvalidOrExpiredToken on any failure -- the caller
       never learns whether the signature, the type, or the expiry failed.

       Expiry is checked against the injected clock rather than inside jose,
       so every component of the subsystem shares one notion of "now".

  Passwords: bcrypt directly (no passlib wrapper). Bcrypt is the right choice
       for low-entropy secrets because its cost factor makes brute-force
       expensive. Comparison always goes through bcrypt.checkpw, never ==.

  Token references: sessions store sha256(token) rather than the token, so a
       leaked sessions table cannot be replayed as bearer credentials.

  SECRET_KEY: passed in explicitly. TokenIssuer raises ConfigError in its
       constructor when it is empty, so a misconfigured process fails at
       startup instead of after a password has already been verified.

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

import bcrypt
from jose import JWTError, jwt

from auth.errors import ConfigError, InvalidOrExpiredToken
from auth.models import Account, TokenClaims
from core.clock import utcnow

logger = logging.getLogger("gatehouse.auth")

_ALGORITHM = "HS256"

ACCESS_PURPOSE = "access"
RESET_PURPOSE = "password_reset"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password fields at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch.
        return False


def token_ref(token: str) -> str:
    """Return the SHA-256 hex digest used to reference a token at rest."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JWT issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies signed, time-limited tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key)
        token = issuer.issue(TokenClaims(account_id=1, role="user", email="a@example.com"), issuer.default_ttl)
        claims = issuer.verify(token)
    """

    def __init__(
        self,
        secret_key: str,
        default_ttl: timedelta = timedelta(hours=24),
        extended_ttl: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret_key:
            logger.error("SECRET_KEY is not configured -- refusing to start the token issuer")
            raise ConfigError()
        self._secret_key = secret_key
        self.default_ttl = default_ttl
        self.extended_ttl = extended_ttl
        self._clock = clock

    def ttl_for(self, remember_me: bool) -> timedelta:
        """Extended TTL only when the caller asked to be remembered at login."""
        return self.extended_ttl if remember_me else self.default_ttl

    def issue(self, claims: TokenClaims, ttl: timedelta) -> str:
        """Encode a signed JWT for the given claims, expiring ttl from now."""
        now = self._clock()
        payload: dict = {
            "sub": str(claims.account_id),
            "type": claims.purpose,
            "jti": claims.jti or uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        if claims.role is not None:
            payload["role"] = claims.role
        if claims.email is not None:
            payload["email"] = claims.email
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_for(self, account: Account, ttl: timedelta) -> str:
        return self.issue(TokenClaims(account_id=account.id, role=account.role, email=account.email), ttl)

    def verify(self, token: str, purpose: str = ACCESS_PURPOSE) -> TokenClaims:
        """Decode and verify a JWT. Raises InvalidOrExpiredToken on any failure.

        Pure computation -- never touches the account store.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidOrExpiredToken() from exc
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp <= self._clock().timestamp():
            raise InvalidOrExpiredToken()
        if payload.get("type") != purpose:
            raise InvalidOrExpiredToken()
        try:
            account_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidOrExpiredToken() from exc
        return TokenClaims(
            account_id=account_id,
            role=payload.get("role"),
            email=payload.get("email"),
            purpose=payload["type"],
            jti=payload.get("jti", ""),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def refresh(self, old_token: str) -> str:
        """Re-issue a token for the identity in a still-valid token, with the default TTL.

        Does NOT consult the session registry: a token whose session was
        revoked stays refreshable until it expires on its own. Deployments
        that need the stricter behavior set STRICT_REFRESH=true, which makes
        AuthService.refresh check session membership before calling this.
        """
        claims = self.verify(old_token)
        return self.issue(TokenClaims(account_id=claims.account_id, role=claims.role, email=claims.email), self.default_ttl)

