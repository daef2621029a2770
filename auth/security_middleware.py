"""Security middleware for FastAPI - bearer token validation and CSRF."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from api.errors import auth_error_response
from auth.exceptions import AuthError, UnauthorizedError
from auth.service import AuthService

# Methods that change state and therefore need the CSRF header
CSRF_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the access token and CSRF header.

    For protected routes:
    1. Extracts the access token from the 'Authorization: Bearer' header
    2. Resolves it to a live session and user via AuthService
    3. For state-changing methods, checks the CSRF header against the session
    4. Sets user and session in request.state for the route

    Public paths bypass authentication entirely. Errors are returned
    directly since exception handlers do not see middleware failures.
    """

    PUBLIC_PATHS = [
        "/auth/quicksign/",
        "/auth/exchange",
        "/auth/oauth/callback",
        "/auth/refresh",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, auth_service: AuthService):
        super().__init__(app)
        self._auth_service = auth_service
        self._csrf_header = auth_service.config.csrf_header_name

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    @staticmethod
    def _bearer_token(request: Request) -> str | None:
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        if self._is_public_path(request.url.path):
            return await call_next(request)

        try:
            access_token = self._bearer_token(request)
            if access_token is None:
                raise UnauthorizedError("Authentication required")

            session, user = self._auth_service.authenticate(access_token)
            if request.method in CSRF_METHODS:
                self._auth_service.require_csrf(session.id, request.headers.get(self._csrf_header))
        except AuthError as e:
            return auth_error_response(e, getattr(request.state, "request_id", None))

        request.state.user = user
        request.state.session = session

        return await call_next(request)
