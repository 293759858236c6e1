"""Auth API — thin HTTP wrapper around AuthService.

Learn: Routes for the credential lifecycle:
- POST /auth/register                 → create a user with a role
- POST /auth/login                    → email/password → code emailed (no tokens)
- POST /auth/verify-2fa               → email/code → access + refresh tokens
- POST /auth/refresh-token            → refresh token → new access token
- POST /auth/logout                   → drop refresh token, revoke access token
- GET  /auth/me                       → current user profile
- GET  /auth/check-email              → is this email registered?
- POST /auth/password-reset/request   → email a reset link (always 200)
- POST /auth/password-reset/confirm   → reset token + new password
- POST /auth/password/change          → current + new password (signed in)

Domain errors (AuthError) are turned into responses by the handler in
main.py, so routes contain no try/except.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from warden.auth.dependencies import (
    CurrentIdentity,
    get_auth_service,
    get_current_user,
)
from warden.schemas.auth import (
    AccessTokenResponse,
    EmailExistsResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
    UserDetail,
    UserProfile,
    VerifyTwoFactorRequest,
)
from warden.services.auth_service import AuthService

router = APIRouter(prefix="/auth")


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserProfile, status_code=201)
async def register(
    body: RegisterRequest, service: AuthService = Depends(get_auth_service)
):
    """Create a new user account."""
    return await service.register(**body.model_dump())


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=MessageResponse)
async def login(body: LoginRequest, service: AuthService = Depends(get_auth_service)):
    """Check credentials and send the second-factor code."""
    message = await service.login(body.email, body.password)
    return MessageResponse(message=message)


@router.post("/verify-2fa", response_model=TokenPair)
async def verify_two_factor(
    body: VerifyTwoFactorRequest, service: AuthService = Depends(get_auth_service)
):
    """Exchange the emailed code for tokens."""
    return await service.verify_two_factor(body.email, body.code)


# ─── Refresh / logout ───────────────────────────────────


@router.post("/refresh-token", response_model=AccessTokenResponse)
async def refresh_token(
    body: RefreshRequest, service: AuthService = Depends(get_auth_service)
):
    """Exchange a refresh token for a new access token."""
    return await service.refresh(body.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Revoke the session: the caller's refresh token and the bearer token.

    An access_token in the body is denylisted as well.
    """
    await service.logout(
        body.refresh_token,
        identity.access_token,
        body.access_token,
        user_id=identity.user_id,
    )
    return MessageResponse(message="Logged out successfully")


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserDetail)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    """Get the current authenticated user's profile."""
    return await service.get_user(identity.user_id)


@router.get("/check-email", response_model=EmailExistsResponse)
async def check_email(
    email: Optional[str] = None, service: AuthService = Depends(get_auth_service)
):
    return EmailExistsResponse(exists=await service.check_email_exists(email))


# ─── Passwords ──────────────────────────────────────────


@router.post("/password-reset/request", response_model=MessageResponse)
async def request_password_reset(
    body: PasswordResetRequest, service: AuthService = Depends(get_auth_service)
):
    """Email a reset link. Same response whether or not the email exists."""
    message = await service.request_password_reset(body.email)
    return MessageResponse(message=message)


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(
    body: PasswordResetConfirm, service: AuthService = Depends(get_auth_service)
):
    await service.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset")


@router.post("/password/change", response_model=MessageResponse)
async def change_password(
    body: PasswordChangeRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
):
    await service.change_password(
        identity.user_id, body.current_password, body.new_password
    )
    return MessageResponse(message="Password changed")
