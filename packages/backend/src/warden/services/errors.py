"""Auth error taxonomy.

Learn: Every failure a caller can see is one of these. Each class carries
the HTTP status and a stable error_code, so the API layer maps them with
a single exception handler instead of try/except in every route.

"Not found" and "expired" variants share one public class and one message:
telling them apart would let a caller probe which emails exist or
which tokens were ever issued. The service layer may raise a
more specific subclass (useful in logs and tests); the response is the same.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for auth-layer errors mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "auth_error"
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AlreadyExistsError(AuthError):
    status_code = 409
    error_code = "already_exists"
    default_message = "User already exists"


class RoleNotFoundError(AuthError):
    status_code = 404
    error_code = "role_not_found"
    default_message = "Role not found"


class UserNotFoundError(AuthError):
    status_code = 404
    error_code = "user_not_found"
    default_message = "User not found"


class WeakPasswordError(AuthError):
    status_code = 422
    error_code = "weak_password"
    default_message = "Password is too short"


class InvalidFieldError(AuthError):
    status_code = 422
    error_code = "invalid_field"
    default_message = "Invalid field value"


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password — deliberately indistinguishable."""

    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid credentials"


class ChallengeNotFoundOrExpiredError(AuthError):
    status_code = 401
    error_code = "invalid_two_factor_code"
    default_message = "Invalid or expired verification code"


class ChallengeNotFoundError(ChallengeNotFoundOrExpiredError):
    """No pending challenge, already consumed, or the code didn't match."""


class ChallengeExpiredError(ChallengeNotFoundOrExpiredError):
    """A challenge existed but its 15 minutes are up."""


class InvalidOrExpiredResetTokenError(AuthError):
    status_code = 400
    error_code = "invalid_reset_token"
    default_message = "Invalid or expired password reset token"


class InvalidRefreshTokenError(AuthError):
    status_code = 401
    error_code = "invalid_refresh_token"
    default_message = "Invalid refresh token"


class UnauthorizedError(AuthError):
    """Bad, expired or revoked access token."""

    status_code = 401
    error_code = "unauthorized"
    default_message = "Invalid or expired token"


class ForbiddenError(AuthError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Insufficient permissions"


class DeliveryError(AuthError):
    """The email collaborator could not deliver a message."""

    status_code = 502
    error_code = "delivery_failed"
    default_message = "Failed to send email"


__all__ = [
    "AuthError",
    "AlreadyExistsError",
    "RoleNotFoundError",
    "UserNotFoundError",
    "WeakPasswordError",
    "InvalidFieldError",
    "InvalidCredentialsError",
    "ChallengeNotFoundOrExpiredError",
    "ChallengeNotFoundError",
    "ChallengeExpiredError",
    "InvalidOrExpiredResetTokenError",
    "InvalidRefreshTokenError",
    "UnauthorizedError",
    "ForbiddenError",
    "DeliveryError",
]
