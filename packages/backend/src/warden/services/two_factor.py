"""Two-factor challenge service — emailed one-time login codes.

Learn: Lifecycle of a challenge, per user:

  (none) → pending → consumed   (right code, in time: row deleted)
                   → expired    (15 min passed: row deleted on next look)
                   → burned     (too many wrong codes: row deleted)

Only one challenge per user is ever pending: issuing a new one deletes
the old one in the same transaction, under a lock on the user row, so two
parallel logins can't leave two live codes behind.

Every failure raised to callers is a ChallengeNotFoundOrExpiredError
subclass with the same message, so a caller can't tell "no challenge"
from "wrong code" from "expired".
"""

import secrets
from datetime import timedelta

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from warden.config import Settings
from warden.db.models import TwoFactorToken, User, as_utc, utcnow
from warden.services.email_service import Mailer, redact_email, two_factor_message
from warden.services.errors import (
    ChallengeExpiredError,
    ChallengeNotFoundError,
    DeliveryError,
)
from warden.services.locks import lock_user

logger = structlog.get_logger()


def generate_code() -> str:
    """Uniform 6-digit code in [100000, 999999] from the OS CSPRNG."""
    return str(100_000 + secrets.randbelow(900_000))


class TwoFactorService:
    """Issues and checks emailed login codes."""

    def __init__(self, db: AsyncSession, settings: Settings, mailer: Mailer):
        self.db = db
        self.mailer = mailer
        self.expire_minutes = settings.two_factor_expire_minutes
        self.max_attempts = settings.two_factor_max_attempts

    async def issue(self, user: User) -> str:
        """Replace any pending challenge with a fresh one and email the code.

        If the email can't be delivered the new challenge is rolled back
        and DeliveryError propagates: the user must not be told a code
        was sent when it wasn't.
        """
        user_id, email = user.id, user.email
        await lock_user(self.db, user_id)

        await self.db.execute(
            delete(TwoFactorToken).where(TwoFactorToken.user_id == user_id)
        )
        code = generate_code()
        self.db.add(
            TwoFactorToken(
                user_id=user_id,
                code=code,
                expires_at=utcnow() + timedelta(minutes=self.expire_minutes),
            )
        )
        await self.db.flush()

        subject, text, html = two_factor_message(code, self.expire_minutes)
        try:
            await self.mailer.send(email, subject, text, html)
        except DeliveryError:
            await self.db.rollback()
            logger.warning(
                "two_factor.delivery_failed", user_id=user_id, to=redact_email(email)
            )
            raise

        await self.db.commit()
        logger.info("two_factor.issued", user_id=user_id)
        return code

    async def verify(self, user_id: int, code: str) -> None:
        """Consume the pending challenge if `code` matches it exactly.

        Raises ChallengeNotFoundError (absent, wrong code) or
        ChallengeExpiredError (stale row, now deleted).
        """
        result = await self.db.execute(
            select(TwoFactorToken)
            .where(TwoFactorToken.user_id == user_id)
            .with_for_update()
        )
        challenge = result.scalars().first()

        if challenge is None:
            raise ChallengeNotFoundError()

        if as_utc(challenge.expires_at) <= utcnow():
            await self.db.delete(challenge)
            await self.db.commit()
            logger.info("two_factor.expired", user_id=user_id)
            raise ChallengeExpiredError()

        if not secrets.compare_digest(challenge.code.encode(), code.encode()):
            challenge.attempts += 1
            attempts = challenge.attempts
            burned = attempts >= self.max_attempts
            if burned:
                await self.db.delete(challenge)
            await self.db.commit()
            logger.info(
                "two_factor.mismatch",
                user_id=user_id,
                attempts=attempts,
                burned=burned,
            )
            raise ChallengeNotFoundError()

        await self.db.delete(challenge)
        await self.db.commit()
        logger.info("two_factor.consumed", user_id=user_id)
