"""HTTP routes for authentication and account security."""

import ipaddress
import logging
from datetime import datetime
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse

from api.base import success_response
from api.errors import auth_error_response
from auth.config import AuthConfig
from auth.exceptions import AuthError, InvalidInputError, UnauthorizedError
from auth.service import AuthService, LoginResult
from auth.types import (
    ExchangeCodeRequest,
    MagicLinkRequest,
    OAuthCallbackRequest,
    SecurityAction,
    SecurityLogFilter,
    SecurityPreferencesUpdate,
    SecurityStatus,
    Session,
    TokenPair,
    UnblockRequest,
    User,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _ok(request: Request, data):
    """Success envelope carrying the request's X-Request-ID."""
    return success_response(data, _request_id(request))


def _current(request: Request) -> tuple[User, Session]:
    """Caller identity set by AuthMiddleware."""
    user = getattr(request.state, "user", None)
    session = getattr(request.state, "session", None)
    if user is None or session is None:
        raise UnauthorizedError()
    return user, session


def _set_auth_cookies(response: Response, tokens: TokenPair, config: AuthConfig) -> None:
    """Refresh token: HttpOnly, scoped to /auth. CSRF token: readable by the client."""
    max_age = max(int((tokens.refresh_expires_at - now_utc()).total_seconds()), 0)
    response.set_cookie(
        key=config.refresh_cookie_name,
        value=tokens.refresh_token,
        httponly=True,
        secure=config.cookie_secure,
        samesite="strict",
        path=config.refresh_cookie_path,
        max_age=max_age,
    )
    response.set_cookie(
        key=config.csrf_cookie_name,
        value=tokens.csrf_token,
        httponly=False,
        secure=config.cookie_secure,
        samesite="strict",
        path="/",
        max_age=max_age,
    )


def _clear_auth_cookies(response: Response, config: AuthConfig) -> None:
    response.delete_cookie(key=config.refresh_cookie_name, path=config.refresh_cookie_path)
    response.delete_cookie(key=config.csrf_cookie_name, path="/")


def _token_body(tokens: TokenPair, user: User | None = None, is_new_user: bool | None = None) -> dict:
    """Response body for any call that hands out tokens. Never includes the refresh token."""
    body = {
        "access_token": tokens.access_token,
        "token_type": "Bearer",
        "expires_in": tokens.expires_in(now_utc()),
        "expires_at": tokens.access_expires_at.isoformat(),
        "refresh_expires_at": tokens.refresh_expires_at.isoformat(),
        "csrf_token": tokens.csrf_token,
        "session_id": str(tokens.session_id),
    }
    if user is not None:
        body["user"] = {"id": str(user.id), "email": user.email, "role": user.role.value}
    if is_new_user is not None:
        body["is_new_user"] = is_new_user
    return body


def create_auth_router(auth_service: AuthService) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(prefix="/auth", tags=["auth"])
    config = auth_service.config

    @router.post("/quicksign/request")
    async def request_magic_link(request: Request, body: MagicLinkRequest):
        """Email a sign-in link. 429 with Retry-After while the cooldown runs."""
        result = auth_service.request_magic_link(
            email=body.email,
            purpose=body.purpose,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(request, {
            "sent": result.sent,
            "purpose": result.purpose.value,
            "expires_at": result.expires_at.isoformat(),
        })

    @router.get("/quicksign/check/{token}")
    async def check_magic_link(request: Request, token: str):
        return _ok(request, auth_service.check_magic_link(token).model_dump())

    async def _verify(request: Request, token: str) -> RedirectResponse:
        try:
            url = auth_service.verify_for_redirect(
                token,
                ip_address=_get_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
            )
        except AuthError as e:
            url = f"{auth_service.callback_url()}?error={quote(e.code)}"
        # 303 so a POST is followed by a GET
        return RedirectResponse(url=url, status_code=303)

    @router.get("/quicksign/verify/{token}")
    async def verify_magic_link_get(request: Request, token: str):
        """Link target from the email. Redirects to the client with a one-time code."""
        return await _verify(request, token)

    @router.post("/quicksign/verify/{token}")
    async def verify_magic_link_post(request: Request, token: str):
        return await _verify(request, token)

    @router.post("/exchange")
    async def exchange_code(request: Request, body: ExchangeCodeRequest, response: Response):
        """Redeem the code from the verify redirect for cookies + access token."""
        tokens, is_new_user = auth_service.redeem_exchange_code(body.code)
        _set_auth_cookies(response, tokens, config)
        return _ok(request, _token_body(tokens, is_new_user=is_new_user))

    @router.post("/oauth/callback")
    async def oauth_callback(request: Request, body: OAuthCallbackRequest, response: Response):
        result: LoginResult = auth_service.oauth_login(
            provider=body.provider,
            code=body.code,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        _set_auth_cookies(response, result.tokens, config)
        return _ok(request, _token_body(result.tokens, result.user, result.is_new_user))

    @router.post("/refresh")
    async def refresh(request: Request, response: Response):
        """Rotate the refresh cookie. A replayed cookie revokes the session."""
        try:
            tokens = auth_service.refresh(
                request.cookies.get(config.refresh_cookie_name),
                ip_address=_get_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
            )
        except UnauthorizedError as e:
            # Stale cookies would otherwise be replayed on every page load
            failure = auth_error_response(e, _request_id(request))
            _clear_auth_cookies(failure, config)
            return failure
        _set_auth_cookies(response, tokens, config)
        return _ok(request, _token_body(tokens))

    @router.post("/logout")
    async def logout(request: Request, response: Response):
        """Revoke the current session and clear cookies."""
        user, session = _current(request)
        auth_service.logout(user.id, session.id, _get_client_ip(request))
        _clear_auth_cookies(response, config)
        return _ok(request, {"message": "Logged out successfully"})

    @router.get("/sessions")
    async def list_sessions(request: Request):
        user, session = _current(request)
        views = auth_service.list_sessions(user.id, session.id)
        return _ok(request, [v.model_dump(mode="json") for v in views])

    @router.delete("/sessions/{session_id}")
    async def revoke_session(request: Request, session_id: UUID):
        user, session = _current(request)
        auth_service.revoke_session(user.id, session_id, session.id, _get_client_ip(request))
        return _ok(request, {"revoked": str(session_id)})

    @router.delete("/sessions")
    async def revoke_other_sessions(request: Request):
        user, session = _current(request)
        count = auth_service.revoke_other_sessions(user.id, session.id, _get_client_ip(request))
        return _ok(request, {"revoked_count": count})

    return router


def create_security_router(auth_service: AuthService) -> APIRouter:
    """Audit log and security preferences for the signed-in user."""
    router = APIRouter(prefix="/security", tags=["security"])

    @router.get("/logs")
    async def security_logs(
        request: Request,
        user_id: UUID | None = Query(None),
        action: SecurityAction | None = Query(None),
        status: SecurityStatus | None = Query(None),
        start_date: datetime | None = Query(None),
        end_date: datetime | None = Query(None),
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
    ):
        """Paginated audit entries. Non-admins only see their own."""
        user, _ = _current(request)
        criteria = SecurityLogFilter(
            user_id=user_id,
            action=action,
            status=status,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )
        return _ok(request, auth_service.security_logs(user, criteria).model_dump(mode="json"))

    @router.get("/logs/stats")
    async def security_stats(request: Request):
        user, _ = _current(request)
        return _ok(request, auth_service.security_stats(user.id).model_dump())

    @router.get("/preferences")
    async def get_preferences(request: Request):
        user, _ = _current(request)
        return _ok(request, auth_service.get_preferences(user.id).model_dump(mode="json"))

    @router.put("/preferences")
    async def update_preferences(request: Request, body: SecurityPreferencesUpdate):
        user, _ = _current(request)
        preferences = auth_service.update_preferences(user.id, body, _get_client_ip(request))
        return _ok(request, preferences.model_dump(mode="json"))

    @router.get("/blocks/status")
    async def block_status(
        request: Request,
        ip_address: str | None = Query(None, max_length=45),
        user_id: UUID | None = Query(None),
    ):
        """Whether an IP or user is blocked. Non-admins see only themselves."""
        user, _ = _current(request)
        if ip_address is not None:
            try:
                ipaddress.ip_address(ip_address)
            except ValueError:
                raise InvalidInputError("Invalid ip_address")
        status = auth_service.block_status(user, _get_client_ip(request), ip_address=ip_address, user_id=user_id)
        return _ok(request, status.model_dump(mode="json"))

    @router.post("/blocks/unblock")
    async def unblock(request: Request, body: UnblockRequest):
        """Lift active blocks on an IP and/or user. Admin only."""
        user, _ = _current(request)
        lifted = auth_service.unblock(user, body, _get_client_ip(request))
        return _ok(request, {"lifted_count": lifted})

    @router.post("/blocks/cleanup")
    async def cleanup_blocks(request: Request):
        user, _ = _current(request)
        return _ok(request, {"deleted_count": auth_service.cleanup_blocks(user)})

    return router
