"""Password reset flow — single-use, time-limited emailed tokens.

Learn: The request step never reveals whether an email is registered:
unknown emails get the same "check your inbox" answer as known ones.
For a known email we store only the SHA-256 of a 32-byte random token and
mail the raw token in a link. If that mail can't be delivered, the row is
rolled back, so no token exists that its owner never saw.

Redeeming sets the new password, burns every reset token for that email
AND every refresh token of the user, in one transaction. A reset is a
forced logout of all sessions.
"""

import secrets
from datetime import timedelta
from urllib.parse import urlencode

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.password import hash_password
from warden.config import Settings
from warden.db.models import PasswordResetToken, User, as_utc, token_digest, utcnow
from warden.services.email_service import Mailer, password_reset_message, redact_email
from warden.services.errors import DeliveryError, InvalidOrExpiredResetTokenError
from warden.services.revocation import RevocationRegistry

logger = structlog.get_logger()

RESET_TOKEN_BYTES = 32


class PasswordResetService:
    """Issues and redeems password reset tokens."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        mailer: Mailer,
        registry: RevocationRegistry,
    ):
        self.db = db
        self.settings = settings
        self.mailer = mailer
        self.registry = registry
        self.expire_hours = settings.password_reset_expire_hours

    def reset_url(self, token: str) -> str:
        base = self.settings.frontend_url.rstrip("/")
        return f"{base}/reset-password?{urlencode({'token': token})}"

    async def request_reset(self, email: str) -> None:
        """Email a reset link if the address belongs to a user.

        Returns normally for unknown addresses. Raises DeliveryError
        (after rolling the token back) if the mail can't be sent.
        """
        result = await self.db.execute(select(User.id).where(User.email == email))
        if result.first() is None:
            logger.info("password_reset.unknown_email", to=redact_email(email))
            return

        await self.db.execute(
            delete(PasswordResetToken).where(PasswordResetToken.email == email)
        )
        token = secrets.token_hex(RESET_TOKEN_BYTES)
        self.db.add(
            PasswordResetToken(
                token_hash=token_digest(token),
                email=email,
                expires_at=utcnow() + timedelta(hours=self.expire_hours),
            )
        )
        await self.db.flush()

        subject, text, html = password_reset_message(self.reset_url(token), self.expire_hours)
        try:
            await self.mailer.send(email, subject, text, html)
        except DeliveryError:
            # Deliberately asymmetric with the unknown-email branch above: a
            # known email answers 502 here rather than claim a link was sent.
            await self.db.rollback()
            logger.warning("password_reset.delivery_failed", to=redact_email(email))
            raise

        await self.db.commit()
        logger.info("password_reset.requested", to=redact_email(email))

    async def redeem(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token.

        Missing, expired and already-used tokens all raise the same
        InvalidOrExpiredResetTokenError. The caller validates password
        length before calling.
        """
        result = await self.db.execute(
            select(PasswordResetToken)
            .where(PasswordResetToken.token_hash == token_digest(token))
            .with_for_update()
        )
        reset = result.scalars().first()
        if reset is None:
            raise InvalidOrExpiredResetTokenError()

        email = reset.email
        if as_utc(reset.expires_at) <= utcnow():
            await self.db.delete(reset)
            await self.db.commit()
            logger.info("password_reset.expired", to=redact_email(email))
            raise InvalidOrExpiredResetTokenError()

        user_result = await self.db.execute(select(User).where(User.email == email))
        user = user_result.scalars().first()
        if user is None:
            await self.db.delete(reset)
            await self.db.commit()
            raise InvalidOrExpiredResetTokenError()

        user_id = user.id
        user.password_hash = hash_password(new_password, self.settings.bcrypt_rounds)
        await self.db.execute(
            delete(PasswordResetToken).where(PasswordResetToken.email == email)
        )
        await self.registry.revoke_all_refresh_tokens(user_id, commit=False)
        await self.db.commit()
        logger.info("password_reset.completed", user_id=user_id)
