"""Pydantic schemas for the auth flows.

Learn: Pydantic v2 models validate request/response data. Separate
request schemas (input) from read schemas (output). The service layer
returns the read schemas directly, so the API never sees an ORM User
(and therefore never sees a password hash).

Password length is NOT checked here: the minimum is configurable and is
enforced by AuthService, which raises WeakPasswordError.
"""

import uuid
from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


# ─── Requests ───────────────────────────────────────────

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=100)
    role: str = "administrator"
    avatar_url: Optional[str] = Field(None, max_length=500)
    display_name: Optional[str] = Field(None, max_length=100)
    gender: Optional[str] = Field(None, max_length=50)
    birth_date: Optional[str] = None
    asset_user_id: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class VerifyTwoFactorRequest(BaseModel):
    email: str
    code: str = Field(..., min_length=6, max_length=6)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


# ─── Responses ──────────────────────────────────────────

class NamedRef(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class UserProfile(BaseModel):
    """Public profile returned by register."""
    id: int
    uid: uuid.UUID
    email: str
    name: str
    roles: list[NamedRef]
    permissions: list[NamedRef]


class UserDetail(UserProfile):
    """Full profile returned by /me."""
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    asset_user_id: Optional[str] = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str


class EmailExistsResponse(BaseModel):
    exists: bool
