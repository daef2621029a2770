"""Tests for auth/exceptions.py - Typed exceptions for auth failures."""

import pytest

from auth.exceptions import (
    AuthError,
    ForbiddenError,
    InvalidInputError,
    ProviderError,
    RateLimitedError,
    StorageUnavailableError,
    SuspiciousActivityBlockedError,
    TokenExpiredError,
    TokenUsedError,
    UnauthorizedError,
)

ALL_ERRORS = [
    InvalidInputError,
    TokenExpiredError,
    TokenUsedError,
    UnauthorizedError,
    ForbiddenError,
    ProviderError,
    StorageUnavailableError,
    SuspiciousActivityBlockedError,
]


class TestExceptionInheritance:
    """All auth exceptions should inherit from AuthError."""

    @pytest.mark.parametrize("error_type", ALL_ERRORS + [RateLimitedError])
    def test_inherits(self, error_type):
        assert issubclass(error_type, AuthError)


class TestCodes:
    """Each failure kind has its own stable code."""

    def test_codes_are_unique(self):
        codes = [e.code for e in ALL_ERRORS] + [RateLimitedError.code]
        assert len(codes) == len(set(codes))

    @pytest.mark.parametrize("error_type,code", [
        (InvalidInputError, "INVALID_INPUT"),
        (TokenExpiredError, "TOKEN_EXPIRED"),
        (TokenUsedError, "TOKEN_USED"),
        (UnauthorizedError, "UNAUTHORIZED"),
        (ForbiddenError, "FORBIDDEN"),
        (ProviderError, "PROVIDER_ERROR"),
        (StorageUnavailableError, "STORAGE_UNAVAILABLE"),
        (SuspiciousActivityBlockedError, "SUSPICIOUS_ACTIVITY_BLOCKED"),
    ])
    def test_code(self, error_type, code):
        assert error_type.code == code


class TestMessages:

    @pytest.mark.parametrize("error_type", ALL_ERRORS)
    def test_default_message(self, error_type):
        assert error_type().message

    def test_custom_message(self):
        assert UnauthorizedError("Session is gone").message == "Session is gone"


class TestRateLimitedError:
    """RateLimitedError should carry retry timing info."""

    def test_stores_retry_seconds(self):
        err = RateLimitedError(30)
        assert err.retry_after_seconds == 30

    def test_message_includes_seconds(self):
        assert "30" in str(RateLimitedError(30))
