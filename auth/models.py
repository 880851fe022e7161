"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in analytics/models.py -- dataclasses own domain shape; stores, policies, and
routes do the work.

Layer rule: no imports from api/, analytics/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    """Closed set of account roles."""

    user = "user"
    owner = "owner"
    student = "student"
    admin = "admin"


@dataclass
class Account:
    """An identity that can sign in.

    hashed_password is a bcrypt hash; the plaintext is never stored.
    reset_password_token holds the SHA-256 digest of the outstanding reset
    token, never the token itself, so a leaked DB row cannot be replayed.

    login_attempts / lock_until are owned by LockoutPolicy and only ever
    changed through the store's atomic update methods.
    """

    email: str
    username: str
    role: str  # one of Role
    hashed_password: str
    id: Optional[int] = None
    is_active: bool = True
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class Session:
    """One signed-in device/client.

    token_ref is the SHA-256 digest of the bearer token issued at login. The
    raw token is never persisted; callers present a token and the registry
    hashes it to find the matching session.
    """

    id: str
    account_id: int
    token_ref: str
    device: str
    ip: str
    created_at: datetime
    last_activity: datetime


@dataclass
class TokenClaims:
    """Identity claims carried by a signed token.

    purpose is "access" for bearer tokens and "password_reset" for reset
    tokens. TokenIssuer.verify() checks it so a reset token can never be used
    as a bearer credential, and vice versa.
    """

    account_id: int
    role: Optional[str]
    email: Optional[str]
    purpose: str = "access"
    jti: str = ""
    expires_at: Optional[datetime] = None
