"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (15min), presented on every API call
- Refresh token: long-lived (7 days), exchanged for new access tokens

The two families are signed with DIFFERENT keys, so leaking the access
key does not let anyone mint refresh tokens (and vice versa). Each token
also carries a "type" claim and a random "jti", so the families can't be
swapped and two tokens minted in the same second are never identical.

Payload: {sub, roles[], permissions[], type, jti, iat, exp}
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

import jwt

from warden.config import Settings

TokenKind = Literal["access", "refresh"]

ACCESS: TokenKind = "access"
REFRESH: TokenKind = "refresh"


class TokenError(Exception):
    """Raised when token verification fails."""


class TokenExpiredError(TokenError):
    """Signature is fine but the token is past its exp claim."""


class TokenInvalidError(TokenError):
    """Bad signature, wrong token family, or malformed token."""


@dataclass
class TokenPayload:
    """Decoded claims of a verified token."""

    sub: str
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    type: str = ACCESS
    jti: Optional[str] = None
    exp: Optional[datetime] = None

    @property
    def user_id(self) -> int:
        return int(self.sub)


class TokenCodec:
    """Signs and verifies access/refresh tokens with the configured keys."""

    def __init__(self, settings: Settings):
        self.algorithm = settings.jwt_algorithm
        self._keys = {
            ACCESS: settings.jwt_access_secret,
            REFRESH: settings.jwt_refresh_secret,
        }
        self.lifetimes = {
            ACCESS: timedelta(minutes=settings.access_token_expire_minutes),
            REFRESH: timedelta(days=settings.refresh_token_expire_days),
        }

    def sign(
        self,
        payload: TokenPayload,
        kind: TokenKind,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Create a signed token of the given family."""
        now = datetime.now(timezone.utc)
        claims = {
            "sub": payload.sub,
            "roles": list(payload.roles),
            "permissions": list(payload.permissions),
            "type": kind,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + (expires_delta if expires_delta is not None else self.lifetimes[kind]),
        }
        return jwt.encode(claims, self._keys[kind], algorithm=self.algorithm)

    def verify(self, token: str, kind: TokenKind) -> TokenPayload:
        """Verify signature, expiry and family of a token.

        Returns the decoded payload on success.
        Raises TokenExpiredError or TokenInvalidError on failure.
        """
        try:
            claims = jwt.decode(
                token,
                self._keys[kind],
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "type"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {e}")

        if claims.get("type") != kind:
            raise TokenInvalidError(f"Wrong token type, expected {kind}")
        return _to_payload(claims)

    def expiry_of(self, token: str, kind: TokenKind) -> datetime:
        """When a token stops being valid on its own.

        Used to size denylist entries. Expired tokens still report their
        exp; tokens we can't authenticate get a full lifetime from now.
        """
        try:
            claims = jwt.decode(
                token,
                self._keys[kind],
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
            return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
            return datetime.now(timezone.utc) + self.lifetimes[kind]


def _to_payload(claims: dict) -> TokenPayload:
    exp = claims.get("exp")
    return TokenPayload(
        sub=str(claims["sub"]),
        roles=list(claims.get("roles") or []),
        permissions=list(claims.get("permissions") or []),
        type=claims["type"],
        jti=claims.get("jti"),
        exp=datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None,
    )
