"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to build the auth
service and to extract/validate the current identity from the request.

The bearer token is checked in two steps by AuthService.authenticate:
signature + expiry, then the revocation denylist. Any failure is a 401
with the same body, so a client can't tell "expired" from "revoked".

require_role / require_permission are dependency factories for
membership checks on top of get_current_user:

    @router.get("/admin", dependencies=[Depends(require_role("administrator"))])
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from warden.config import Settings, get_settings
from warden.db.engine import get_db
from warden.services.auth_service import AuthService
from warden.services.email_service import EmailService, Mailer
from warden.services.errors import ForbiddenError, UnauthorizedError


class CurrentIdentity:
    """The authenticated user making the request, as claimed by the access token."""

    def __init__(
        self,
        user_id: int,
        roles: Optional[list[str]] = None,
        permissions: Optional[list[str]] = None,
        access_token: Optional[str] = None,
    ):
        self.user_id = user_id
        self.roles = roles or []
        self.permissions = permissions or []
        self.access_token = access_token

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    """Production mailer. Tests override this with a recording fake."""
    return EmailService(settings)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
) -> AuthService:
    return AuthService(db, settings, mailer)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Authentication token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return authorization[7:].strip()


async def get_current_user(
    authorization: Optional[str] = Header(None),
    service: AuthService = Depends(get_auth_service),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if missing, bad or revoked)."""
    token = _bearer_token(authorization)
    try:
        payload = await service.authenticate(token)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=401,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(
        user_id=payload.user_id,
        roles=payload.roles,
        permissions=payload.permissions,
        access_token=token,
    )


def require_role(role: str):
    """Dependency factory: 403 unless the caller holds `role`."""

    async def _check(
        identity: CurrentIdentity = Depends(get_current_user),
    ) -> CurrentIdentity:
        if not identity.has_role(role):
            raise ForbiddenError("Insufficient role")
        return identity

    return _check


def require_permission(permission: str):
    """Dependency factory: 403 unless the caller holds `permission`."""

    async def _check(
        identity: CurrentIdentity = Depends(get_current_user),
    ) -> CurrentIdentity:
        if not identity.has_permission(permission):
            raise ForbiddenError("Insufficient permission")
        return identity

    return _check
