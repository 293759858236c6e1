"""Revocation registry — refresh-token lifecycle and the access-token denylist.

Learn: Two kinds of server-side token state live here.

1. Refresh tokens (single-session policy). Each user has at most one live
   refresh token. Issuing one deletes every older one for that user, so a
   login from a second device ends the first device's ability to refresh.
   The first device's current access token keeps working until it expires
   or is revoked at logout.

2. Revoked access tokens (denylist). Access tokens are stateless JWTs, so
   logout can't "delete" one; instead we record its digest and every
   authenticated request checks the denylist after verifying the JWT.
   Rows remember when the token would have expired anyway; past that they
   are dead weight and prune_expired() removes them.

Every method that changes state commits its own transaction.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.jwt import ACCESS, REFRESH, TokenCodec, TokenError, TokenPayload
from warden.config import Settings
from warden.db.models import (
    PasswordResetToken,
    RefreshToken,
    RevokedToken,
    TwoFactorToken,
    User,
    as_utc,
    token_digest,
    utcnow,
)
from warden.services.errors import InvalidRefreshTokenError
from warden.services.locks import lock_user

logger = structlog.get_logger()


def payload_for(user: User) -> TokenPayload:
    """Token claims from the user's current roles and permissions."""
    return TokenPayload(
        sub=str(user.id),
        roles=user.role_names,
        permissions=[p.name for p in user.permissions],
    )


@dataclass
class PruneResult:
    revoked_tokens: int = 0
    refresh_tokens: int = 0
    two_factor_tokens: int = 0
    password_reset_tokens: int = 0

    @property
    def total(self) -> int:
        return (
            self.revoked_tokens
            + self.refresh_tokens
            + self.two_factor_tokens
            + self.password_reset_tokens
        )


class RevocationRegistry:
    """Owns refresh_tokens and revoked_tokens rows."""

    def __init__(self, db: AsyncSession, settings: Settings, codec: Optional[TokenCodec] = None):
        self.db = db
        self.codec = codec or TokenCodec(settings)
        self.refresh_lifetime = timedelta(days=settings.refresh_token_expire_days)

    # ─── Access-token denylist ────────────────────────────

    async def revoke_access_token(self, token: str) -> None:
        """Denylist an access token. Revoking twice is a no-op."""
        await self._add_revoked(token)
        await self.db.commit()

    async def is_revoked(self, token: str) -> bool:
        """Indexed existence check on the token digest."""
        result = await self.db.execute(
            select(RevokedToken.id).where(RevokedToken.token_hash == token_digest(token))
        )
        return result.first() is not None

    async def _add_revoked(self, token: str) -> None:
        """INSERT ... ON CONFLICT DO NOTHING on the digest.

        Concurrent revocations of the same token race on the unique index;
        the loser inserts nothing instead of failing its transaction.
        """
        dialect = self.db.get_bind().dialect.name
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = (
            insert(RevokedToken)
            .values(
                token_hash=token_digest(token),
                revoked_at=utcnow(),
                token_expires_at=self.codec.expiry_of(token, ACCESS),
            )
            .on_conflict_do_nothing(index_elements=["token_hash"])
        )
        await self.db.execute(stmt)

    # ─── Refresh tokens ───────────────────────────────────

    async def issue_refresh_token(self, user_id: int, payload: TokenPayload) -> str:
        """Replace all of a user's refresh tokens with one new token.

        Lock, delete and insert happen in one transaction, so concurrent
        logins for the same user serialize and exactly one token survives.
        """
        await lock_user(self.db, user_id)
        await self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))

        token = self.codec.sign(payload, REFRESH)
        now = utcnow()
        self.db.add(
            RefreshToken(
                token_hash=token_digest(token),
                user_id=user_id,
                created_at=now,
                expires_at=now + self.refresh_lifetime,
            )
        )
        await self.db.commit()
        logger.info("revocation.refresh_issued", user_id=user_id)
        return token

    async def rotate_on_refresh(self, refresh_token: str) -> str:
        """Exchange a live refresh token for a new access token.

        The JWT must verify AND its server-side row must still exist,
        belong to the token's subject, and be unexpired. A later login,
        a logout or a password reset deletes the row, which kills the
        token even though its signature is still good.
        """
        try:
            claims = self.codec.verify(refresh_token, REFRESH)
            user_id = claims.user_id
        except (TokenError, ValueError) as e:
            logger.info("revocation.refresh_rejected", reason=str(e))
            raise InvalidRefreshTokenError()

        result = await self.db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == token_digest(refresh_token),
                RefreshToken.user_id == user_id,
            )
        )
        stored = result.scalars().first()
        if stored is None or as_utc(stored.expires_at) <= utcnow():
            logger.info("revocation.refresh_rejected", user_id=user_id, reason="not_stored")
            raise InvalidRefreshTokenError()

        # Roles may have changed since login; re-read them.
        user = await self.db.get(User, user_id)
        if user is None:
            raise InvalidRefreshTokenError()

        return self.codec.sign(payload_for(user), ACCESS)

    async def revoke_on_logout(
        self,
        refresh_token: Optional[str],
        *access_tokens: Optional[str],
        user_id: Optional[int] = None,
    ) -> None:
        """Drop the refresh row and denylist the access token(s), atomically.

        Every part is optional and idempotent: unknown or already-revoked
        tokens are silently accepted, so repeating a logout succeeds.
        With user_id set, only a refresh row owned by that user is dropped.
        """
        if refresh_token:
            stmt = delete(RefreshToken).where(
                RefreshToken.token_hash == token_digest(refresh_token)
            )
            if user_id is not None:
                stmt = stmt.where(RefreshToken.user_id == user_id)
            await self.db.execute(stmt)
        for token in dict.fromkeys(t for t in access_tokens if t):
            await self._add_revoked(token)
        await self.db.commit()
        logger.info("revocation.logout", user_id=user_id)

    async def revoke_all_refresh_tokens(self, user_id: int, commit: bool = True) -> None:
        """End every session of a user (password reset/change)."""
        await self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
        if commit:
            await self.db.commit()
        logger.info("revocation.all_sessions_revoked", user_id=user_id)

    # ─── Housekeeping ─────────────────────────────────────

    async def prune_expired(self) -> PruneResult:
        """Delete rows that can no longer affect any check.

        Safe to run at any time: every read path re-checks expiry.
        """
        now = utcnow()
        result = PruneResult()

        r = await self.db.execute(delete(RevokedToken).where(RevokedToken.token_expires_at <= now))
        result.revoked_tokens = r.rowcount or 0
        r = await self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at <= now))
        result.refresh_tokens = r.rowcount or 0
        r = await self.db.execute(delete(TwoFactorToken).where(TwoFactorToken.expires_at <= now))
        result.two_factor_tokens = r.rowcount or 0
        r = await self.db.execute(
            delete(PasswordResetToken).where(PasswordResetToken.expires_at <= now)
        )
        result.password_reset_tokens = r.rowcount or 0

        await self.db.commit()
        logger.info(
            "revocation.pruned",
            revoked_tokens=result.revoked_tokens,
            refresh_tokens=result.refresh_tokens,
            two_factor_tokens=result.two_factor_tokens,
            password_reset_tokens=result.password_reset_tokens,
        )
        return result
