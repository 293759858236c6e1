"""Auth service — the session orchestrator.

Learn: This is the one place that sequences the protocol. Per identity:

  anonymous ──register──▶ (user row)
  anonymous ──login(email, password)──▶ two-factor pending   (code emailed, no tokens)
  pending ──verify_two_factor(email, code)──▶ authenticated  (access + refresh)
  authenticated ──refresh──▶ authenticated                   (new access token only)
  authenticated ──logout──▶ logged out                       (refresh row gone, access denylisted)

Building blocks, each owning its own tables:
- TokenCodec          (auth/jwt.py)      — sign/verify JWTs, two keys
- TwoFactorService    (two_factor.py)    — emailed 6-digit codes
- RevocationRegistry  (revocation.py)    — refresh rows + denylist
- PasswordResetService(password_reset.py)— reset tokens

Failures that could leak account state (unknown email vs wrong password,
missing vs expired code or token) collapse into one error each.
"""

import uuid
from datetime import date, datetime
from typing import Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from warden.auth.jwt import ACCESS, TokenCodec, TokenError, TokenPayload
from warden.auth.password import burn_verify, hash_password, verify_password
from warden.config import Settings
from warden.db.models import Role, User
from warden.schemas.auth import (
    AccessTokenResponse,
    NamedRef,
    TokenPair,
    UserDetail,
    UserProfile,
)
from warden.services.email_service import Mailer, redact_email
from warden.services.errors import (
    AlreadyExistsError,
    ChallengeNotFoundError,
    InvalidCredentialsError,
    InvalidFieldError,
    RoleNotFoundError,
    UnauthorizedError,
    UserNotFoundError,
    WeakPasswordError,
)
from warden.services.password_reset import PasswordResetService
from warden.services.revocation import RevocationRegistry, payload_for
from warden.services.two_factor import TwoFactorService

logger = structlog.get_logger()

LOGIN_CHALLENGE_MESSAGE = "A verification code has been sent to your email"
RESET_REQUESTED_MESSAGE = (
    "If an account exists for that email, a password reset link has been sent"
)

DEFAULT_ROLE = "administrator"


def parse_birth_date(value: Union[str, date, None]) -> Optional[date]:
    """Accept a date, "YYYY-MM-DD", or a full ISO timestamp."""
    if value is None or isinstance(value, date):
        return value
    try:
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidFieldError(f"Invalid birth_date: {value!r}")


def _refs(items) -> list[NamedRef]:
    return [NamedRef(id=i.id, name=i.name) for i in items]


def _profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        uid=user.uid,
        email=user.email,
        name=user.name,
        roles=_refs(user.roles),
        permissions=_refs(user.permissions),
    )


class AuthService:
    """Register / login / 2FA / refresh / logout / password flows."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        mailer: Mailer,
        codec: Optional[TokenCodec] = None,
    ):
        self.db = db
        self.settings = settings
        self.codec = codec or TokenCodec(settings)
        self.registry = RevocationRegistry(db, settings, self.codec)
        self.two_factor = TwoFactorService(db, settings, mailer)
        self.password_reset = PasswordResetService(db, settings, mailer, self.registry)

    # ─── Registration ─────────────────────────────────────

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        role: str = DEFAULT_ROLE,
        avatar_url: Optional[str] = None,
        display_name: Optional[str] = None,
        gender: Optional[str] = None,
        birth_date: Union[str, date, None] = None,
        asset_user_id: Optional[str] = None,
    ) -> UserProfile:
        """Create a user with one role. Returns the public profile."""
        self._check_password(password)

        if await self._user_by_email(email) is not None:
            raise AlreadyExistsError()

        result = await self.db.execute(select(Role).where(Role.name == role))
        role_obj = result.scalars().first()
        if role_obj is None:
            raise RoleNotFoundError(f"Role not found: {role}")

        user = User(
            uid=uuid.uuid4(),
            email=email,
            name=name,
            password_hash=hash_password(password, self.settings.bcrypt_rounds),
            avatar_url=avatar_url,
            display_name=display_name,
            gender=gender,
            birth_date=parse_birth_date(birth_date),
            asset_user_id=asset_user_id,
            roles=[role_obj],
        )
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same email.
            await self.db.rollback()
            raise AlreadyExistsError()

        logger.info("auth.registered", user_id=user.id, role=role)
        return _profile(user)

    # ─── Login (step 1: credentials) ──────────────────────

    async def login(self, email: str, password: str) -> str:
        """Check credentials and email a verification code. No tokens yet."""
        user = await self._user_by_email(email)
        if user is None:
            burn_verify(password, self.settings.bcrypt_rounds)
            logger.info("auth.login_failed", to=redact_email(email))
            raise InvalidCredentialsError()
        if not verify_password(password, user.password_hash):
            logger.info("auth.login_failed", user_id=user.id)
            raise InvalidCredentialsError()

        user_id = user.id
        await self.two_factor.issue(user)
        logger.info("auth.login_challenge_issued", user_id=user_id)
        return LOGIN_CHALLENGE_MESSAGE

    # ─── Login (step 2: second factor) ────────────────────

    async def verify_two_factor(self, email: str, code: str) -> TokenPair:
        """Consume the emailed code and issue access + refresh tokens."""
        user = await self._user_by_email(email)
        if user is None:
            raise ChallengeNotFoundError()

        await self.two_factor.verify(user.id, code)

        payload = payload_for(user)
        access_token = self.codec.sign(payload, ACCESS)
        refresh_token = await self.registry.issue_refresh_token(user.id, payload)
        logger.info("auth.authenticated", user_id=user.id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ─── Refresh / logout ─────────────────────────────────

    async def refresh(self, refresh_token: str) -> AccessTokenResponse:
        """New access token for a live refresh token. The refresh token is kept."""
        access_token = await self.registry.rotate_on_refresh(refresh_token)
        return AccessTokenResponse(access_token=access_token)

    async def logout(
        self,
        refresh_token: Optional[str],
        *access_tokens: Optional[str],
        user_id: Optional[int] = None,
    ) -> None:
        """Idempotent: unknown or already-revoked tokens are fine."""
        await self.registry.revoke_on_logout(refresh_token, *access_tokens, user_id=user_id)

    # ─── Authenticated-request check ──────────────────────

    async def authenticate(self, access_token: str) -> TokenPayload:
        """Verify an access token and make sure it wasn't revoked.

        Every failure is the same UnauthorizedError.
        """
        try:
            payload = self.codec.verify(access_token, ACCESS)
        except TokenError as e:
            logger.debug("auth.token_rejected", reason=str(e))
            raise UnauthorizedError()
        if await self.registry.is_revoked(access_token):
            logger.info("auth.revoked_token_used", user_id=payload.sub)
            raise UnauthorizedError()
        return payload

    # ─── Profile ──────────────────────────────────────────

    async def get_user(self, user_id: int) -> UserDetail:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        return UserDetail(
            **_profile(user).model_dump(),
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            gender=user.gender,
            birth_date=user.birth_date,
            asset_user_id=user.asset_user_id,
        )

    async def check_email_exists(self, email: Optional[str]) -> bool:
        if not email:
            return False
        return await self._user_by_email(email) is not None

    # ─── Passwords ────────────────────────────────────────

    async def request_password_reset(self, email: str) -> str:
        """Same answer whether or not the email is registered."""
        await self.password_reset.request_reset(email)
        return RESET_REQUESTED_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> None:
        self._check_password(new_password)
        await self.password_reset.redeem(token, new_password)

    async def change_password(
        self, user_id: int, current_password: str, new_password: str
    ) -> None:
        """Change a password while signed in. Ends all refresh sessions."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError()
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError()
        self._check_password(new_password)

        user.password_hash = hash_password(new_password, self.settings.bcrypt_rounds)
        await self.registry.revoke_all_refresh_tokens(user_id, commit=False)
        await self.db.commit()
        logger.info("auth.password_changed", user_id=user_id)

    # ─── Helpers ──────────────────────────────────────────

    def _check_password(self, password: str) -> None:
        if len(password or "") < self.settings.password_min_length:
            raise WeakPasswordError(
                f"Password must be at least {self.settings.password_min_length} characters"
            )

    async def _user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()
