"""Typed exceptions for auth failures.

Every failure carries a stable ``code`` so the HTTP layer can render it
without inspecting messages. Messages are safe to show to end users.
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    code = "AUTH_ERROR"
    default_message = "Authentication failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidInputError(AuthError):
    """Malformed or unacceptable request data."""

    code = "INVALID_INPUT"
    default_message = "Invalid request"


class TokenExpiredError(AuthError):
    """
    Token is past its expiry.

    Raised for magic link tokens and for access tokens presented after `exp`.
    """

    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class TokenUsedError(AuthError):
    """One-time token was already consumed (or superseded by a newer link)."""

    code = "TOKEN_USED"
    default_message = "Token has already been used"


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class UnauthorizedError(AuthError):
    """No session, or the session/refresh token is invalid, revoked or expired."""

    code = "UNAUTHORIZED"
    default_message = "Authentication required"


class ForbiddenError(AuthError):
    """Request lacks a valid CSRF token, or the caller lacks the required role."""

    code = "FORBIDDEN"
    default_message = "Request validation failed"


class ProviderError(AuthError):
    """
    OAuth provider call failed.

    Never retried automatically: authorization codes are single-use.
    """

    code = "PROVIDER_ERROR"
    default_message = "Sign-in provider is unavailable"


class StorageUnavailableError(AuthError):
    """Backing store could not be reached. Callers may retry."""

    code = "STORAGE_UNAVAILABLE"
    default_message = "Service temporarily unavailable"


class SuspiciousActivityBlockedError(AuthError):
    """Subject is blocked after repeated failed sign-in attempts."""

    code = "SUSPICIOUS_ACTIVITY_BLOCKED"
    default_message = "Too many failed sign-in attempts. Try again later."
