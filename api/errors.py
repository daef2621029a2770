"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
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
from clients.email_client import EmailGatewayError

logger = logging.getLogger(__name__)

# Most specific class first; subclasses are checked via isinstance
STATUS_BY_ERROR: list[tuple[type[AuthError], int]] = [
    (InvalidInputError, 400),
    (TokenExpiredError, 401),
    (TokenUsedError, 401),
    (UnauthorizedError, 401),
    (SuspiciousActivityBlockedError, 403),
    (ForbiddenError, 403),
    (RateLimitedError, 429),
    (ProviderError, 502),
    (StorageUnavailableError, 503),
]


def status_for(exc: AuthError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def auth_error_response(exc: AuthError, request_id: str | None = None) -> JSONResponse:
    """Envelope for an AuthError. Also used by middleware, which runs outside the handlers."""
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(
        status_code=status_for(exc),
        headers=headers,
        content=error_response(exc.code, exc.message, request_id).model_dump(mode="json"),
    )


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return auth_error_response(exc, _request_id(request))

    @app.exception_handler(EmailGatewayError)
    async def email_error_handler(request: Request, exc: EmailGatewayError):
        return JSONResponse(
            status_code=503,
            content=error_response(
                ErrorCodes.EMAIL_UNAVAILABLE,
                "Could not send email. Please try again shortly.",
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                _request_id(request),
            ).model_dump(mode="json"),
        )
