"""Request-scoped middleware for API requests."""

import logging
import time
from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _incoming_request_id(request: Request) -> str | None:
    """Reuse an upstream proxy's request ID, but only if it is a UUID."""
    value = request.headers.get(REQUEST_ID_HEADER)
    if not value:
        return None
    try:
        return str(UUID(value))
    except ValueError:
        return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to every request and logs its outcome."""

    async def dispatch(self, request: Request, call_next):
        request_id = _incoming_request_id(request) or str(uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms) [{request_id}]"
        )
        return response
